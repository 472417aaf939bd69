import threading
import time
from datetime import timedelta
from io import StringIO
from unittest import mock

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from radius.exceptions import DuplicateSession, PersistenceError, SessionNotFound
from sessions.ledger import SessionLedger
from sessions.locks import SessionLockRegistry
from sessions.models import OnlineSession, UsageLog
from sessions.reconciliation import (
    reap_stale_sessions,
    reconcile_nas,
    run_reconciliation_job,
    schedule_reconciliation,
)
from sessions.settlement import close_session, quota_debit, settle
from users.models import RadiusUser


def make_session(session_id, username='alice', nas_ip_address='10.0.0.1', **fields):
    return OnlineSession(
        session_id=session_id,
        username=username,
        nas_ip_address=nas_ip_address,
        **fields
    )


class SessionLedgerTest(TestCase):
    def setUp(self):
        self.ledger = SessionLedger()

    def test_create_and_find(self):
        self.ledger.create(make_session('s1'))

        session = self.ledger.find('s1')
        self.assertIsNotNone(session)
        self.assertEqual(session.username, 'alice')
        self.assertIsNone(self.ledger.find('s2'))

    def test_create_duplicate(self):
        self.ledger.create(make_session('s1'))
        with self.assertRaises(DuplicateSession):
            self.ledger.create(make_session('s1', username='bob'))
        self.assertEqual(OnlineSession.objects.get(session_id='s1').username, 'alice')

    def test_update_counters(self):
        self.ledger.create(make_session('s1', username=''))
        before = OnlineSession.objects.get(session_id='s1').last_updated

        self.ledger.update_counters('s1', 1000, 2000, username='alice', last_authenticator='ab' * 16)

        session = self.ledger.find('s1')
        self.assertEqual(session.upstream_bytes, 1000)
        self.assertEqual(session.downstream_bytes, 2000)
        self.assertEqual(session.username, 'alice')
        self.assertEqual(session.last_authenticator, 'ab' * 16)
        self.assertGreaterEqual(session.last_updated, before)

    def test_update_counters_rejects_other_fields(self):
        self.ledger.create(make_session('s1'))
        with self.assertRaises(ValueError):
            self.ledger.update_counters('s1', 1, 1, nas_ip_address='10.9.9.9')

    def test_update_and_delete_unknown_session(self):
        with self.assertRaises(SessionNotFound):
            self.ledger.update_counters('missing', 1, 1)
        with self.assertRaises(SessionNotFound):
            self.ledger.delete('missing')

    def test_delete(self):
        self.ledger.create(make_session('s1'))
        self.ledger.delete('s1')
        self.assertIsNone(self.ledger.find('s1'))

    def test_list_all_filters_by_nas(self):
        now = timezone.now()
        self.ledger.create(make_session('late', start_time=now))
        self.ledger.create(make_session('early', start_time=now - timedelta(hours=1)))
        self.ledger.create(make_session('other', nas_ip_address='10.0.0.2'))

        sessions = self.ledger.list_all('10.0.0.1')

        self.assertEqual([s.session_id for s in sessions], ['early', 'late'])

    def test_list_all_started_before(self):
        now = timezone.now()
        self.ledger.create(make_session('before', start_time=now - timedelta(minutes=5)))
        self.ledger.create(make_session('after', start_time=now + timedelta(seconds=1)))

        sessions = self.ledger.list_all('10.0.0.1', started_before=now)

        self.assertEqual([s.session_id for s in sessions], ['before'])

    def test_counters_beyond_column_range(self):
        self.ledger.create(make_session('s1'))

        with self.assertRaises(PersistenceError):
            self.ledger.update_counters('s1', 1 << 63, 0)

        self.assertEqual(self.ledger.find('s1').upstream_bytes, 0)


class QuotaDebitTest(SimpleTestCase):
    def test_total_policy(self):
        self.assertEqual(quota_debit(300, 700, 'total'), 1000)

    def test_net_policy(self):
        self.assertEqual(quota_debit(300, 700, 'net'), 400)
        self.assertEqual(quota_debit(900, 700, 'net'), 0)

    def test_default_policy_comes_from_settings(self):
        self.assertEqual(quota_debit(300, 700), 1000)
        with self.settings(RADIUS_CONFIG={**settings.RADIUS_CONFIG, 'QUOTA_DEBIT_POLICY': 'net'}):
            self.assertEqual(quota_debit(300, 700), 400)

    def test_unknown_policy(self):
        with self.assertRaises(ValueError):
            quota_debit(1, 1, 'half')


class SettlementTest(TestCase):
    def setUp(self):
        self.user = RadiusUser.objects.create(
            username='alice', available_flow=10_000, available_time=3600
        )
        self.start = timezone.now() - timedelta(seconds=120)
        self.session = SessionLedger().create(make_session(
            's1',
            start_time=self.start,
            framed_ip_address='100.64.0.7',
            mac_address='00:11:22:33:44:55',
        ))

    def test_settle_writes_usage_and_debits_quota(self):
        usage = settle(self.session, 1000, 3000, UsageLog.TERMINATE_CAUSE_USER_REQUEST,
                       now=self.start + timedelta(seconds=120))

        self.assertEqual(usage.acct_session_id, 's1')
        self.assertEqual(usage.used_duration, 120)
        self.assertEqual(usage.total_upstream, 1000)
        self.assertEqual(usage.total_downstream, 3000)
        self.assertEqual(usage.framed_ip_address, '100.64.0.7')
        self.assertEqual(usage.mac_address, '00:11:22:33:44:55')

        self.user.refresh_from_db()
        self.assertEqual(self.user.available_flow, 6000)
        self.assertEqual(self.user.available_time, 3480)

    def test_quota_is_floored_at_zero(self):
        settle(self.session, 50_000, 50_000, now=self.start + timedelta(hours=5))

        self.user.refresh_from_db()
        self.assertEqual(self.user.available_flow, 0)
        self.assertEqual(self.user.available_time, 0)

    def test_exhausted_quota_stays_at_zero(self):
        RadiusUser.objects.filter(pk=self.user.pk).update(available_flow=0, available_time=0)

        settle(self.session, 10, 10, now=self.start + timedelta(seconds=10))

        self.user.refresh_from_db()
        self.assertEqual(self.user.available_flow, 0)
        self.assertEqual(self.user.available_time, 0)

    def test_clock_skew_gives_zero_duration(self):
        usage = settle(self.session, 0, 0, now=self.start - timedelta(seconds=30))
        self.assertEqual(usage.used_duration, 0)

    def test_net_policy_debits_downstream_minus_upstream(self):
        with self.settings(RADIUS_CONFIG={**settings.RADIUS_CONFIG, 'QUOTA_DEBIT_POLICY': 'net'}):
            settle(self.session, 1000, 3000, now=self.start)

        self.user.refresh_from_db()
        self.assertEqual(self.user.available_flow, 8000)

    def test_subscriber_without_quota_row_still_logged(self):
        session = SessionLedger().create(make_session('s2', username='nobody'))

        usage = settle(session, 10, 20)

        self.assertEqual(usage.username, 'nobody')
        self.assertTrue(UsageLog.objects.filter(acct_session_id='s2').exists())

    def test_usage_log_is_immutable(self):
        usage = settle(self.session, 10, 20)
        usage.total_upstream = 0
        with self.assertRaises(ValueError):
            usage.save()

    def test_close_session_removes_online_row(self):
        close_session(self.session, 10, 20, UsageLog.TERMINATE_CAUSE_ADMIN_RESET)

        self.assertFalse(OnlineSession.objects.filter(session_id='s1').exists())
        usage = UsageLog.objects.get(acct_session_id='s1')
        self.assertEqual(usage.terminate_cause, UsageLog.TERMINATE_CAUSE_ADMIN_RESET)

    @mock.patch('sessions.settlement._write_usage_log', side_effect=DatabaseError('disk full'))
    def test_failed_settlement_keeps_session_online(self, _write):
        with self.assertRaises(PersistenceError):
            close_session(self.session, 10, 20)

        self.assertTrue(OnlineSession.objects.filter(session_id='s1').exists())
        self.assertFalse(UsageLog.objects.exists())
        self.user.refresh_from_db()
        self.assertEqual(self.user.available_flow, 10_000)

    def test_settle_beyond_column_range_keeps_session_online(self):
        with self.assertRaises(PersistenceError):
            close_session(self.session, (1 << 63) + 10, 0)

        self.assertTrue(OnlineSession.objects.filter(session_id='s1').exists())
        self.assertFalse(UsageLog.objects.exists())

    def test_close_session_already_offline_rolls_back(self):
        SessionLedger().delete('s1')

        with self.assertRaises(SessionNotFound):
            close_session(self.session, 10, 20)

        self.assertFalse(UsageLog.objects.exists())
        self.user.refresh_from_db()
        self.assertEqual(self.user.available_flow, 10_000)


class ReconciliationTest(TestCase):
    def setUp(self):
        self.user = RadiusUser.objects.create(
            username='alice', available_flow=1_000_000, available_time=1_000_000
        )
        ledger = SessionLedger()
        for i in range(3):
            ledger.create(make_session(f'n{i}', upstream_bytes=100, downstream_bytes=200))
        ledger.create(make_session('other', nas_ip_address='10.0.0.2'))

    def test_reconcile_nas_settles_every_session(self):
        result = reconcile_nas('10.0.0.1')

        self.assertEqual(sorted(result.settled), ['n0', 'n1', 'n2'])
        self.assertEqual(result.skipped, [])
        self.assertEqual(list(OnlineSession.objects.values_list('session_id', flat=True)), ['other'])

        usages = UsageLog.objects.filter(nas_ip_address='10.0.0.1')
        self.assertEqual(usages.count(), 3)
        for usage in usages:
            self.assertEqual(usage.terminate_cause, UsageLog.TERMINATE_CAUSE_NAS_REBOOT)
            self.assertEqual(usage.total_upstream, 100)
            self.assertEqual(usage.total_downstream, 200)

        self.user.refresh_from_db()
        self.assertEqual(self.user.available_flow, 1_000_000 - 900)

    def test_transient_failure_is_retried(self):
        failures = []

        def flaky(session, *args, **kwargs):
            if session.session_id == 'n1' and not failures:
                failures.append(session.session_id)
                raise PersistenceError('database is locked')
            return close_session(session, *args, **kwargs)

        with mock.patch('sessions.reconciliation.close_session', side_effect=flaky), \
                mock.patch('sessions.reconciliation.time.sleep') as sleep:
            result = reconcile_nas('10.0.0.1')

        self.assertEqual(failures, ['n1'])
        sleep.assert_called_once_with(0.5)
        self.assertEqual(sorted(result.settled), ['n0', 'n1', 'n2'])
        self.assertEqual(UsageLog.objects.filter(acct_session_id='n1').count(), 1)

    def test_persistent_failure_skips_only_that_session(self):
        def broken(session, *args, **kwargs):
            if session.session_id == 'n1':
                raise PersistenceError('constraint failed')
            return close_session(session, *args, **kwargs)

        with mock.patch('sessions.reconciliation.close_session', side_effect=broken), \
                mock.patch('sessions.reconciliation.time.sleep') as sleep:
            result = reconcile_nas('10.0.0.1', UsageLog.TERMINATE_CAUSE_NAS_REQUEST)

        # Backoff doubles between the three attempts, none after the last
        self.assertEqual([c.args[0] for c in sleep.call_args_list], [0.5, 1.0])

        self.assertEqual(sorted(result.settled), ['n0', 'n2'])
        self.assertEqual(result.skipped, ['n1'])
        self.assertTrue(OnlineSession.objects.filter(session_id='n1').exists())

    def test_session_closed_meanwhile_is_not_counted(self):
        sessions = SessionLedger().list_all('10.0.0.1')
        close_session(sessions[0], 0, 0)

        with mock.patch('sessions.ledger.SessionLedger.list_all', return_value=sessions):
            result = reconcile_nas('10.0.0.1')

        self.assertEqual(result.total, 2)
        self.assertEqual(UsageLog.objects.filter(acct_session_id=sessions[0].session_id).count(), 1)

    def test_sessions_started_after_cutoff_stay_online(self):
        cutoff = timezone.now()
        OnlineSession.objects.filter(session_id='n2').update(start_time=cutoff + timedelta(seconds=5))

        result = reconcile_nas('10.0.0.1', UsageLog.TERMINATE_CAUSE_NAS_REBOOT, cutoff)

        self.assertEqual(sorted(result.settled), ['n0', 'n1'])
        self.assertTrue(OnlineSession.objects.filter(session_id='n2').exists())
        self.assertFalse(UsageLog.objects.filter(acct_session_id='n2').exists())

    def test_session_restarted_while_queued_is_left_online(self):
        cutoff = timezone.now()
        sessions = SessionLedger().list_all('10.0.0.1', started_before=cutoff)
        OnlineSession.objects.filter(session_id='n0').update(start_time=cutoff + timedelta(seconds=5))

        with mock.patch('sessions.ledger.SessionLedger.list_all', return_value=sessions):
            result = reconcile_nas('10.0.0.1', UsageLog.TERMINATE_CAUSE_NAS_REBOOT, cutoff)

        self.assertEqual(sorted(result.settled), ['n1', 'n2'])
        self.assertEqual(result.skipped, [])
        self.assertTrue(OnlineSession.objects.filter(session_id='n0').exists())

    def test_reconcile_unknown_nas(self):
        result = reconcile_nas('192.0.2.1')
        self.assertEqual(result.total, 0)

    @mock.patch('sessions.reconciliation.close_old_connections')
    def test_run_reconciliation_job(self, close_connections):
        result = run_reconciliation_job('10.0.0.1', UsageLog.TERMINATE_CAUSE_NAS_REBOOT)

        self.assertEqual(len(result.settled), 3)
        close_connections.assert_called_once()

    @mock.patch('scheduler.scheduler.submit_job')
    def test_schedule_reconciliation_submits_background_job(self, submit_job):
        received_at = timezone.now()
        schedule_reconciliation('10.0.0.1', UsageLog.TERMINATE_CAUSE_NAS_REBOOT, received_at)

        submit_job.assert_called_once_with(
            run_reconciliation_job,
            job_id='reconcile_nas:10.0.0.1',
            name='Reconcile NAS 10.0.0.1',
            args=('10.0.0.1', UsageLog.TERMINATE_CAUSE_NAS_REBOOT, received_at),
        )
        self.assertEqual(OnlineSession.objects.count(), 4)

    def test_reap_stale_sessions(self):
        old = timezone.now() - timedelta(hours=2)
        OnlineSession.objects.filter(session_id__in=['n0', 'other']).update(last_updated=old)

        result = reap_stale_sessions()

        self.assertEqual(sorted(result.settled), ['n0', 'other'])
        self.assertEqual(
            sorted(OnlineSession.objects.values_list('session_id', flat=True)),
            ['n1', 'n2']
        )
        usage = UsageLog.objects.get(acct_session_id='n0')
        self.assertEqual(usage.terminate_cause, UsageLog.TERMINATE_CAUSE_LOST_CARRIER)

    def test_reap_without_stale_sessions(self):
        self.assertEqual(reap_stale_sessions().total, 0)
        self.assertEqual(OnlineSession.objects.count(), 4)


class SessionLockRegistryTest(SimpleTestCase):
    def test_same_key_is_serialized(self):
        registry = SessionLockRegistry()
        active = []
        overlaps = []

        def worker():
            with registry.hold('s1'):
                active.append(1)
                if len(active) > 1:
                    overlaps.append(len(active))
                time.sleep(0.01)
                active.pop()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(overlaps, [])
        self.assertEqual(len(registry), 0)

    def test_different_keys_do_not_block(self):
        registry = SessionLockRegistry()
        entered = threading.Event()

        def worker():
            with registry.hold('s2'):
                entered.set()

        with registry.hold('s1'):
            t = threading.Thread(target=worker)
            t.start()
            self.assertTrue(entered.wait(timeout=2))
            t.join()

        self.assertEqual(len(registry), 0)

    def test_entry_released_after_exception(self):
        registry = SessionLockRegistry()
        with self.assertRaises(RuntimeError):
            with registry.hold('s1'):
                raise RuntimeError('boom')

        self.assertEqual(len(registry), 0)
        with registry.hold('s1'):
            self.assertEqual(len(registry), 1)


class SessionsCommandTest(TestCase):
    def setUp(self):
        RadiusUser.objects.create(username='alice', available_flow=1000, available_time=1000)
        SessionLedger().create(make_session('s1', upstream_bytes=10, downstream_bytes=20))

    def call(self, *args):
        out = StringIO()
        call_command('sessions', *args, stdout=out)
        return out.getvalue()

    def test_list(self):
        output = self.call('list')
        self.assertIn('s1', output)
        self.assertIn('Total: 1 session(s)', output)

    def test_kick_settles_with_admin_reset(self):
        self.call('kick', 's1', '--force')

        self.assertFalse(OnlineSession.objects.exists())
        usage = UsageLog.objects.get(acct_session_id='s1')
        self.assertEqual(usage.terminate_cause, UsageLog.TERMINATE_CAUSE_ADMIN_RESET)
        self.assertEqual(usage.total_bytes, 30)

    def test_kick_unknown_session(self):
        with self.assertRaises(CommandError):
            self.call('kick', 'missing', '--force')

    def test_reconcile_and_history(self):
        output = self.call('reconcile', '10.0.0.1')
        self.assertIn('Settled 1 session(s)', output)

        output = self.call('history', '--user', 'alice')
        self.assertIn('s1', output)


class SessionsApiTest(TestCase):
    def setUp(self):
        self.client = APIClient()
        admin = get_user_model().objects.create_user(username='admin', password='secret')
        self.client.force_authenticate(user=admin)
        SessionLedger().create(make_session('s1', upstream_bytes=10, downstream_bytes=20))

    def test_list_online_sessions(self):
        response = self.client.get('/api/sessions/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['total_bytes'], 30)

    def test_online_sessions_are_read_only(self):
        response = self.client.delete('/api/sessions/1/')
        self.assertEqual(response.status_code, 405)

    def test_usage_logs_filter_by_username(self):
        close_session(SessionLedger().find('s1'), 10, 20)

        response = self.client.get('/api/usage-logs/', {'username': 'alice'})
        self.assertEqual(response.data['count'], 1)

        response = self.client.get('/api/usage-logs/', {'username': 'bob'})
        self.assertEqual(response.data['count'], 0)
