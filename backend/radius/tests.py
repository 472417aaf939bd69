import struct
import threading
from datetime import timedelta
from unittest import mock

from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from pyrad import packet
from pyrad.dictionary import Dictionary

from nas.models import NASClient
from radius.acct_handler import AccountingHandler
from radius.attributes import AttributeView
from radius.counters import decode_counter, decode_traffic
from radius.exceptions import (
    MalformedAttribute,
    PersistenceError,
    SessionNotFound,
    UnknownSubscriber,
    UnresolvedSession,
    UnsupportedStatusType,
)
from radius.models import RadiusLog
from radius.server import DEFAULT_DICTIONARY, RadiusServer
from sessions.models import OnlineSession, UsageLog
from sessions.reconciliation import reconcile_nas
from users.models import RadiusUser

SECRET = b'testing123'
RADIUS_DICT = Dictionary(str(DEFAULT_DICTIONARY))


def build_request(**attributes):
    """Encode an Accounting-Request and decode it again, as the server would receive it."""
    pkt = packet.AcctPacket(dict=RADIUS_DICT, secret=SECRET)
    for name, value in attributes.items():
        pkt[name.replace('_', '-')] = value
    raw = pkt.RequestPacket()
    received = packet.AcctPacket(dict=RADIUS_DICT, secret=SECRET, packet=raw)
    received.source = ('10.0.0.1', 50000)
    received.fd = None
    return received


def u32(value):
    return struct.pack('!I', value)


class AttributeViewTest(TestCase):
    def test_string_and_missing_attributes(self):
        view = AttributeView(build_request(User_Name='alice', Framed_IP_Address='100.64.0.7'))

        self.assertEqual(view.get_string('User-Name'), 'alice')
        self.assertEqual(view.get_string('Framed-IP-Address'), '100.64.0.7')
        self.assertIsNone(view.get_string('Acct-Session-Id'))
        self.assertIn('User-Name', view)
        self.assertNotIn('Acct-Session-Id', view)

    def test_unknown_attribute_name_is_absent(self):
        view = AttributeView(build_request(User_Name='alice'))
        self.assertIsNone(view.get_string('No-Such-Attribute'))
        self.assertIsNone(view.get_bytes('No-Such-Attribute'))

    def test_named_values_decode_to_names(self):
        view = AttributeView(build_request(Acct_Status_Type='Interim-Update'))
        self.assertEqual(view.get_string('Acct-Status-Type'), 'Interim-Update')
        self.assertEqual(view.get_bytes('Acct-Status-Type'), u32(3))

    def test_mac_address_from_calling_station_id(self):
        view = AttributeView(build_request(Calling_Station_Id='AA-BB-CC-DD-EE-0F'))
        self.assertEqual(view.mac_address(['Calling-Station-Id']), 'aa:bb:cc:dd:ee:0f')

    def test_mac_address_from_vendor_attribute(self):
        view = AttributeView(build_request(H3C_Ip_Host_Addr='10.1.2.3 00:1a:2b:3c:4d:5e'))
        self.assertEqual(
            view.mac_address(['Calling-Station-Id', 'H3C-Ip-Host-Addr']),
            '00:1a:2b:3c:4d:5e'
        )

    def test_mac_address_absent(self):
        view = AttributeView(build_request(Calling_Station_Id='not-a-mac'))
        self.assertIsNone(view.mac_address(['Calling-Station-Id', 'H3C-Ip-Host-Addr']))


class CounterDecoderTest(TestCase):
    def test_octets_and_gigawords_combine(self):
        self.assertEqual(decode_counter(u32(4294967295), u32(1)), 8589934591)

    def test_zero_and_missing_counters(self):
        self.assertEqual(decode_counter(u32(0), u32(0)), 0)
        self.assertEqual(decode_counter(None, None), 0)
        self.assertEqual(decode_counter(u32(1500), None), 1500)
        self.assertEqual(decode_counter(None, u32(2)), 2 * (1 << 32))

    def test_wrong_length_is_malformed(self):
        with self.assertRaises(MalformedAttribute) as ctx:
            decode_counter(b'\x00\x01\x02', None, 'Acct-Input-Octets', 'Acct-Input-Gigawords')
        self.assertEqual(ctx.exception.attribute, 'Acct-Input-Octets')

        with self.assertRaises(MalformedAttribute):
            decode_counter(u32(1), b'\x00' * 8)

    def test_directions_use_their_own_gigawords(self):
        view = AttributeView(build_request(
            Acct_Input_Octets=10,
            Acct_Input_Gigawords=1,
            Acct_Output_Octets=20,
            Acct_Output_Gigawords=3,
        ))
        upstream, downstream = decode_traffic(view)
        self.assertEqual(upstream, 10 + (1 << 32))
        self.assertEqual(downstream, 20 + 3 * (1 << 32))

    def test_malformed_counter_in_packet(self):
        pkt = build_request(Acct_Session_Id='s1')
        pkt[42] = [b'\x00\x01\x02']
        with self.assertRaises(MalformedAttribute):
            decode_traffic(AttributeView(pkt))


class AccountingHandlerTest(TestCase):
    def setUp(self):
        self.nas = NASClient.objects.create(
            identifier='bras-1', ip_address='10.0.0.1', shared_secret='testing123'
        )
        self.user = RadiusUser.objects.create(
            username='alice', available_flow=10_000, available_time=3600
        )
        self.handler = AccountingHandler(RADIUS_DICT)

    def handle(self, **attributes):
        return self.handler.handle_acct_request(build_request(**attributes), self.nas)

    def start(self, session_id='s1', username='alice'):
        return self.handle(
            Acct_Status_Type='Start',
            Acct_Session_Id=session_id,
            User_Name=username,
            Framed_IP_Address='100.64.0.7',
            NAS_Port_Id='eth0/1',
            Calling_Station_Id='00:11:22:33:44:55',
        )

    def test_start_creates_online_session(self):
        reply = self.start()

        self.assertEqual(reply.code, packet.AccountingResponse)
        session = OnlineSession.objects.get(session_id='s1')
        self.assertEqual(session.username, 'alice')
        self.assertEqual(session.nas_ip_address, '10.0.0.1')
        self.assertEqual(session.framed_ip_address, '100.64.0.7')
        self.assertEqual(session.nas_port_id, 'eth0/1')
        self.assertEqual(session.mac_address, '00:11:22:33:44:55')
        self.assertEqual(session.upstream_bytes, 0)
        self.assertEqual(session.downstream_bytes, 0)

    def test_duplicate_start_is_acknowledged(self):
        self.start()
        OnlineSession.objects.filter(session_id='s1').update(upstream_bytes=99)

        reply = self.start()

        self.assertEqual(reply.code, packet.AccountingResponse)
        self.assertEqual(OnlineSession.objects.count(), 1)
        self.assertEqual(OnlineSession.objects.get(session_id='s1').upstream_bytes, 99)

    def test_start_without_session_id_is_malformed(self):
        with self.assertRaises(MalformedAttribute):
            self.handle(Acct_Status_Type='Start', User_Name='alice')
        self.assertEqual(OnlineSession.objects.count(), 0)

    def test_missing_status_type_is_malformed(self):
        with self.assertRaises(MalformedAttribute):
            self.handle(Acct_Session_Id='s1', User_Name='alice')

    def test_unsupported_status_type(self):
        with self.assertRaises(UnsupportedStatusType) as ctx:
            self.handle(Acct_Status_Type=9, Acct_Session_Id='s1')
        self.assertEqual(ctx.exception.status_type, 9)

    def test_interim_updates_accumulate(self):
        self.start()
        self.handle(Acct_Status_Type='Interim-Update', Acct_Session_Id='s1',
                    Acct_Input_Octets=100, Acct_Output_Octets=200)
        self.handle(Acct_Status_Type='Interim-Update', Acct_Session_Id='s1',
                    Acct_Input_Octets=50, Acct_Output_Octets=25)

        session = OnlineSession.objects.get(session_id='s1')
        self.assertEqual(session.upstream_bytes, 150)
        self.assertEqual(session.downstream_bytes, 225)

    def test_retransmitted_interim_is_applied_once(self):
        self.start()
        interim = build_request(Acct_Status_Type='Interim-Update', Acct_Session_Id='s1',
                                Acct_Input_Octets=100, Acct_Output_Octets=200)

        self.handler.handle_acct_request(interim, self.nas)
        reply = self.handler.handle_acct_request(interim, self.nas)

        self.assertEqual(reply.code, packet.AccountingResponse)
        session = OnlineSession.objects.get(session_id='s1')
        self.assertEqual(session.upstream_bytes, 100)
        self.assertEqual(session.downstream_bytes, 200)

    def test_interim_for_unknown_session_recreates_it(self):
        self.handle(Acct_Status_Type='Interim-Update', Acct_Session_Id='lost',
                    User_Name='alice', Acct_Input_Octets=7, Acct_Output_Octets=8,
                    Acct_Output_Gigawords=1)

        session = OnlineSession.objects.get(session_id='lost')
        self.assertEqual(session.username, 'alice')
        self.assertEqual(session.upstream_bytes, 7)
        self.assertEqual(session.downstream_bytes, 8 + (1 << 32))

    def test_interim_for_unknown_session_without_username(self):
        with self.assertRaises(UnresolvedSession):
            self.handle(Acct_Status_Type='Interim-Update', Acct_Session_Id='lost')
        self.assertEqual(OnlineSession.objects.count(), 0)

    def test_interim_for_unknown_subscriber(self):
        with self.assertRaises(UnknownSubscriber) as ctx:
            self.handle(Acct_Status_Type='Interim-Update', Acct_Session_Id='lost',
                        User_Name='mallory')
        self.assertEqual(ctx.exception.username, 'mallory')
        self.assertEqual(OnlineSession.objects.count(), 0)

    def test_stop_for_unknown_session_writes_nothing(self):
        with self.assertRaises(SessionNotFound):
            self.handle(Acct_Status_Type='Stop', Acct_Session_Id='ghost', User_Name='alice',
                        Acct_Input_Octets=100)

        self.assertEqual(UsageLog.objects.count(), 0)
        self.user.refresh_from_db()
        self.assertEqual(self.user.available_flow, 10_000)

    def test_repeated_stop_is_acknowledged_once_settled(self):
        self.start()
        self.handle(Acct_Status_Type='Stop', Acct_Session_Id='s1',
                    Acct_Input_Octets=100, Acct_Output_Octets=200)

        reply = self.handle(Acct_Status_Type='Stop', Acct_Session_Id='s1',
                            Acct_Input_Octets=100, Acct_Output_Octets=200)

        self.assertEqual(reply.code, packet.AccountingResponse)
        self.assertEqual(UsageLog.objects.filter(acct_session_id='s1').count(), 1)
        self.user.refresh_from_db()
        self.assertEqual(self.user.available_flow, 10_000 - 300)

    def test_stop_records_terminate_cause(self):
        self.start()
        self.handle(Acct_Status_Type='Stop', Acct_Session_Id='s1',
                    Acct_Terminate_Cause='Idle-Timeout')

        usage = UsageLog.objects.get(acct_session_id='s1')
        self.assertEqual(usage.terminate_cause, UsageLog.TERMINATE_CAUSE_IDLE_TIMEOUT)

    def test_session_round_trip(self):
        self.start()
        self.handle(Acct_Status_Type='Interim-Update', Acct_Session_Id='s1',
                    Acct_Input_Octets=100, Acct_Output_Octets=200)
        self.handle(Acct_Status_Type='Interim-Update', Acct_Session_Id='s1',
                    Acct_Input_Octets=50, Acct_Output_Octets=50)
        self.handle(Acct_Status_Type='Stop', Acct_Session_Id='s1',
                    Acct_Input_Octets=10, Acct_Output_Octets=20,
                    Acct_Terminate_Cause='User-Request')

        self.assertFalse(OnlineSession.objects.filter(session_id='s1').exists())
        usage = UsageLog.objects.get(acct_session_id='s1')
        self.assertEqual(usage.username, 'alice')
        self.assertEqual(usage.total_upstream, 160)
        self.assertEqual(usage.total_downstream, 270)
        self.assertEqual(usage.mac_address, '00:11:22:33:44:55')
        self.assertEqual(usage.terminate_cause, UsageLog.TERMINATE_CAUSE_USER_REQUEST)

        self.user.refresh_from_db()
        self.assertEqual(self.user.available_flow, 10_000 - 430)
        self.assertEqual(self.user.available_time, 3600 - usage.used_duration)

    def test_late_interim_after_stop_does_not_recreate_session(self):
        self.start()
        self.handle(Acct_Status_Type='Stop', Acct_Session_Id='s1',
                    Acct_Input_Octets=100, Acct_Output_Octets=200)

        reply = self.handle(Acct_Status_Type='Interim-Update', Acct_Session_Id='s1',
                            User_Name='alice', Acct_Input_Octets=300, Acct_Output_Octets=400)

        self.assertEqual(reply.code, packet.AccountingResponse)
        self.assertFalse(OnlineSession.objects.filter(session_id='s1').exists())
        self.assertEqual(UsageLog.objects.filter(acct_session_id='s1').count(), 1)
        self.user.refresh_from_db()
        self.assertEqual(self.user.available_flow, 10_000 - 300)

    def test_interim_beyond_counter_range_is_not_applied(self):
        self.start()

        with self.assertRaises(PersistenceError):
            self.handle(Acct_Status_Type='Interim-Update', Acct_Session_Id='s1',
                        Acct_Input_Octets=0xFFFFFFFF, Acct_Input_Gigawords=0x80000000)

        session = OnlineSession.objects.get(session_id='s1')
        self.assertEqual(session.upstream_bytes, 0)

    @mock.patch('radius.acct_handler.schedule_reconciliation')
    def test_accounting_on_schedules_reconciliation(self, schedule):
        before = timezone.now()
        reply = self.handle(Acct_Status_Type='Accounting-On')

        self.assertEqual(reply.code, packet.AccountingResponse)
        schedule.assert_called_once_with('10.0.0.1', UsageLog.TERMINATE_CAUSE_NAS_REBOOT, mock.ANY)
        received_at = schedule.call_args.args[2]
        self.assertTrue(before <= received_at <= timezone.now())

    @mock.patch('radius.acct_handler.schedule_reconciliation')
    def test_accounting_off_schedules_reconciliation(self, schedule):
        self.handle(Acct_Status_Type='Accounting-Off')
        schedule.assert_called_once_with('10.0.0.1', UsageLog.TERMINATE_CAUSE_NAS_REQUEST, mock.ANY)

    @mock.patch('radius.acct_handler.schedule_reconciliation')
    def test_accounting_on_spares_sessions_started_after_it(self, schedule):
        self.start('old')
        OnlineSession.objects.filter(session_id='old').update(
            start_time=timezone.now() - timedelta(minutes=10)
        )
        received_at = timezone.now() - timedelta(seconds=1)
        with mock.patch('radius.acct_handler.timezone.now', return_value=received_at):
            self.handle(Acct_Status_Type='Accounting-On')
        self.start('fresh')

        # The queued job runs only after the NAS has opened a new session
        result = reconcile_nas(*schedule.call_args.args)

        self.assertEqual(result.settled, ['old'])
        self.assertTrue(OnlineSession.objects.filter(session_id='fresh').exists())
        self.assertFalse(UsageLog.objects.filter(acct_session_id='fresh').exists())
        usage = UsageLog.objects.get(acct_session_id='old')
        self.assertEqual(usage.terminate_cause, UsageLog.TERMINATE_CAUSE_NAS_REBOOT)


class InMemoryLedger:
    """Ledger stand-in whose counter update can be held open from the test."""

    def __init__(self, *sessions):
        self.sessions = {s.session_id: s for s in sessions}
        self.created = []
        self.updating = threading.Event()
        self.update_gate = None

    def find(self, session_id):
        return self.sessions.get(session_id)

    def create(self, session):
        self.created.append(session.session_id)
        self.sessions[session.session_id] = session
        return session

    def update_counters(self, session_id, upstream_bytes, downstream_bytes, **fields):
        self.updating.set()
        if self.update_gate is not None:
            self.update_gate.wait(5)
        session = self.sessions[session_id]
        session.upstream_bytes = upstream_bytes
        session.downstream_bytes = downstream_bytes
        for name, value in fields.items():
            setattr(session, name, value)

    def delete(self, session_id):
        del self.sessions[session_id]


@mock.patch('radius.acct_handler.logger')
class ConcurrentStopInterimTest(SimpleTestCase):
    """Stop and Interim-Update for one session arriving on two workers."""

    def setUp(self):
        now = timezone.now()
        self.ledger = InMemoryLedger(OnlineSession(
            session_id='s1', username='alice', nas_ip_address='10.0.0.1',
            upstream_bytes=100, downstream_bytes=200, start_time=now, last_updated=now,
        ))
        self.handler = AccountingHandler(RADIUS_DICT, ledger=self.ledger)
        self.nas = mock.Mock(ip_address='10.0.0.1')
        self.settled = []
        self.closing = threading.Event()
        self.close_gate = threading.Event()
        self.errors = []

    def fake_close(self, session, upstream, downstream, terminate_cause=None, ledger=None):
        self.closing.set()
        self.close_gate.wait(5)
        self.settled.append((session.session_id, upstream, downstream))
        ledger.delete(session.session_id)

    def was_settled(self, session_id):
        return any(entry[0] == session_id for entry in self.settled)

    def run_in_thread(self, **attributes):
        request = build_request(**attributes)

        def target():
            try:
                self.handler.handle_acct_request(request, self.nas)
            except Exception as e:
                self.errors.append(e)

        thread = threading.Thread(target=target)
        thread.start()
        return thread

    def test_interim_waiting_on_stop_does_not_resurrect_session(self, _logger):
        with mock.patch('radius.acct_handler.close_session', side_effect=self.fake_close), \
                mock.patch.object(self.handler, '_recently_settled', side_effect=self.was_settled):
            stop = self.run_in_thread(Acct_Status_Type='Stop', Acct_Session_Id='s1',
                                      Acct_Input_Octets=10, Acct_Output_Octets=20)
            self.assertTrue(self.closing.wait(5))
            interim = self.run_in_thread(Acct_Status_Type='Interim-Update', Acct_Session_Id='s1',
                                         User_Name='alice', Acct_Input_Octets=5,
                                         Acct_Output_Octets=5)

            interim.join(0.1)
            self.assertTrue(interim.is_alive())

            self.close_gate.set()
            stop.join(5)
            interim.join(5)

        self.assertEqual(self.errors, [])
        self.assertEqual(self.settled, [('s1', 110, 220)])
        self.assertEqual(self.ledger.sessions, {})
        self.assertEqual(self.ledger.created, [])

    def test_stop_waiting_on_interim_settles_updated_totals(self, _logger):
        self.ledger.update_gate = threading.Event()
        self.close_gate.set()

        with mock.patch('radius.acct_handler.close_session', side_effect=self.fake_close), \
                mock.patch.object(self.handler, '_recently_settled', side_effect=self.was_settled):
            interim = self.run_in_thread(Acct_Status_Type='Interim-Update', Acct_Session_Id='s1',
                                         Acct_Input_Octets=5, Acct_Output_Octets=5)
            self.assertTrue(self.ledger.updating.wait(5))
            stop = self.run_in_thread(Acct_Status_Type='Stop', Acct_Session_Id='s1',
                                      Acct_Input_Octets=10, Acct_Output_Octets=20)

            stop.join(0.1)
            self.assertTrue(stop.is_alive())
            self.assertEqual(self.settled, [])

            self.ledger.update_gate.set()
            interim.join(5)
            stop.join(5)

        self.assertEqual(self.errors, [])
        self.assertEqual(self.settled, [('s1', 115, 225)])
        self.assertEqual(self.ledger.sessions, {})


@mock.patch('django.db.close_old_connections')
class ServerProcessPacketTest(TestCase):
    def setUp(self):
        self.nas = NASClient.objects.create(
            identifier='bras-1', ip_address='10.0.0.1', shared_secret='testing123'
        )
        self.server = RadiusServer(workers=1)
        self.server.SendReplyPacket = mock.Mock()

    def tearDown(self):
        self.server.shutdown()

    def request(self, **attributes):
        pkt = build_request(**attributes)
        pkt.nas = self.nas
        return pkt

    def test_accepted_packet_is_answered(self, _close):
        pkt = self.request(Acct_Status_Type='Start', Acct_Session_Id='s1', User_Name='alice')

        self.server.process_acct_packet(pkt)

        self.server.SendReplyPacket.assert_called_once()
        reply = self.server.SendReplyPacket.call_args[0][1]
        self.assertEqual(reply.code, packet.AccountingResponse)
        self.assertTrue(OnlineSession.objects.filter(session_id='s1').exists())

    def test_failed_packet_is_dropped(self, _close):
        pkt = self.request(Acct_Status_Type='Stop', Acct_Session_Id='ghost')

        self.server.process_acct_packet(pkt)

        self.server.SendReplyPacket.assert_not_called()

    def test_unknown_nas_is_dropped(self, _close):
        pkt = build_request(Acct_Status_Type='Start', Acct_Session_Id='s1')

        self.server.process_acct_packet(pkt)

        self.server.SendReplyPacket.assert_not_called()
        self.assertFalse(OnlineSession.objects.exists())

    def test_bad_authenticator_is_dropped(self, _close):
        pkt = self.request(Acct_Status_Type='Start', Acct_Session_Id='s1')
        pkt.secret = b'wrong-secret'

        self.server.process_acct_packet(pkt)

        self.server.SendReplyPacket.assert_not_called()
        self.assertFalse(OnlineSession.objects.exists())

    def test_secret_resolved_by_nas_identifier(self, _close):
        NASClient.objects.create(
            identifier='bras-2', ip_address='10.0.0.1', shared_secret='other-secret'
        )
        pkt = build_request(Acct_Status_Type='Start', Acct_Session_Id='s1',
                            NAS_Identifier='bras-2')

        self.server._AddSecret(pkt)

        self.assertEqual(pkt.secret, b'other-secret')
        self.assertEqual(pkt.nas.identifier, 'bras-2')


class RadiusLogTest(TestCase):
    def test_trim_keeps_newest_entries(self):
        for i in range(5):
            RadiusLog.objects.create(level='INFO', logger='radius', message=f'entry {i}')

        deleted = RadiusLog.trim(2)

        self.assertEqual(deleted, 3)
        self.assertEqual(
            sorted(RadiusLog.objects.values_list('message', flat=True)),
            ['entry 3', 'entry 4']
        )

    def test_trim_below_limit_is_noop(self):
        RadiusLog.objects.create(level='INFO', logger='radius', message='only')
        self.assertEqual(RadiusLog.trim(10), 0)
