"""
RADIUS Accounting Handler

This module handles Accounting-Request packets from NAS clients: it keeps
the online session table in step with Start, Interim-Update and Stop
records, settles closed sessions, and flushes a NAS's sessions when it
reports Accounting-On or Accounting-Off.
"""

import logging
from datetime import timedelta
from enum import IntEnum
from typing import Callable, Dict, Optional

from django.conf import settings
from django.utils import timezone
from pyrad import packet
from pyrad.dictionary import Dictionary

from radius.attributes import AttributeView
from radius.counters import decode_traffic
from radius.exceptions import (
    DuplicateSession,
    MalformedAttribute,
    SessionNotFound,
    UnknownSubscriber,
    UnresolvedSession,
    UnsupportedStatusType,
)
from sessions.ledger import SessionLedger
from sessions.locks import session_lock
from sessions.models import OnlineSession, UsageLog
from sessions.reconciliation import schedule_reconciliation
from sessions.settlement import close_session
from users.models import RadiusUser

logger = logging.getLogger(__name__)


class AcctStatusType(IntEnum):
    """Acct-Status-Type values (RFC 2866) handled by this server."""
    START = 1
    STOP = 2
    INTERIM_UPDATE = 3
    ACCOUNTING_ON = 7
    ACCOUNTING_OFF = 8


# Mapping for string values returned by pyrad
ACCT_STATUS_MAP = {
    'Start': AcctStatusType.START,
    'Stop': AcctStatusType.STOP,
    'Interim-Update': AcctStatusType.INTERIM_UPDATE,
    'Accounting-On': AcctStatusType.ACCOUNTING_ON,
    'Accounting-Off': AcctStatusType.ACCOUNTING_OFF,
}

ACCT_TERMINATE_CAUSE_MAP = {
    'User-Request': 1,
    'Lost-Carrier': 2,
    'Lost-Service': 3,
    'Idle-Timeout': 4,
    'Session-Timeout': 5,
    'Admin-Reset': 6,
    'Admin-Reboot': 7,
    'Port-Error': 8,
    'NAS-Error': 9,
    'NAS-Request': 10,
    'NAS-Reboot': 11,
    'Port-Unneeded': 12,
    'Port-Preempted': 13,
    'Port-Suspended': 14,
    'Service-Unavailable': 15,
    'Callback': 16,
    'User-Error': 17,
    'Host-Request': 18,
}


class AccountingHandler:
    """
    Handles RADIUS accounting requests.

    Each status type is routed to one handler through a dispatch table.
    Handlers raise AccountingError subclasses for packets that must not be
    acknowledged; a returned reply means the packet was applied (or was a
    harmless retransmission) and may be acknowledged.
    """

    def __init__(self, dictionary: Optional[Dictionary] = None,
                 ledger: Optional[SessionLedger] = None):
        """
        Initialize the accounting handler.

        Args:
            dictionary: RADIUS dictionary for attribute parsing
            ledger: Session ledger (a default one is created if omitted)
        """
        self.dictionary = dictionary
        self.ledger = ledger or SessionLedger()
        self._handlers: Dict[AcctStatusType, Callable[[AttributeView, object], None]] = {
            AcctStatusType.START: self._handle_start,
            AcctStatusType.STOP: self._handle_stop,
            AcctStatusType.INTERIM_UPDATE: self._handle_interim_update,
            AcctStatusType.ACCOUNTING_ON: self._handle_accounting_on,
            AcctStatusType.ACCOUNTING_OFF: self._handle_accounting_off,
        }

    def handle_acct_request(self, pkt: packet.AcctPacket, nas) -> packet.AcctPacket:
        """
        Handle an Accounting-Request packet.

        Args:
            pkt: The incoming Accounting-Request packet
            nas: The NAS the packet came from (needs an ip_address attribute)

        Returns:
            Accounting-Response packet

        Raises:
            AccountingError: the packet was not applied and must not be acknowledged
        """
        view = AttributeView(pkt)
        status_type = self._get_status_type(view)

        logger.info(f"Acct request: type={status_type.name}, "
                    f"user={view.get_string('User-Name')}, "
                    f"session={view.get_string('Acct-Session-Id')}, nas={nas.ip_address}")

        self._handlers[status_type](view, nas)
        return self._create_response(pkt)

    def _handle_start(self, view: AttributeView, nas) -> None:
        """
        Handle Accounting-Start request.

        Creates the online session. A Start for a session that is already
        online is a retransmission and is acknowledged without changes.
        """
        session_id = self._require_session_id(view)

        with session_lock(session_id):
            session = self._build_session(view, nas, session_id, view.get_string('User-Name') or '')
            try:
                self.ledger.create(session)
            except DuplicateSession:
                logger.warning(f"Session {session_id} already online, ignoring duplicate start")

    def _handle_stop(self, view: AttributeView, nas) -> None:
        """
        Handle Accounting-Stop request.

        Adds the final counters to the running totals, settles the session
        and takes it offline.
        """
        session_id = self._require_session_id(view)
        upstream, downstream = decode_traffic(view)
        terminate_cause = self._get_terminate_cause(view)

        with session_lock(session_id):
            session = self.ledger.find(session_id)
            if session is None:
                if self._recently_settled(session_id):
                    logger.info(f"Session {session_id} already settled, acknowledging repeated stop")
                    return
                raise SessionNotFound(session_id)

            close_session(
                session,
                session.upstream_bytes + upstream,
                session.downstream_bytes + downstream,
                terminate_cause,
                ledger=self.ledger
            )

    def _handle_interim_update(self, view: AttributeView, nas) -> None:
        """
        Handle Accounting-Interim-Update request.

        Adds the reported counters to the running totals. When the session is
        unknown (its Start was lost) and the subscriber exists, the session is
        recreated from this packet. A late update for a session settled inside
        the repeated-stop window is acknowledged without recreating it.
        """
        session_id = self._require_session_id(view)
        upstream, downstream = decode_traffic(view)
        authenticator = view.authenticator.hex() if view.authenticator else ''

        with session_lock(session_id):
            session = self.ledger.find(session_id)

            if session is not None:
                if authenticator and authenticator == session.last_authenticator:
                    logger.info(f"Repeated interim update for session {session_id}, ignoring")
                    return

                fields = {'last_authenticator': authenticator}
                username = view.get_string('User-Name')
                if username and not session.username:
                    fields['username'] = username

                self.ledger.update_counters(
                    session_id,
                    session.upstream_bytes + upstream,
                    session.downstream_bytes + downstream,
                    **fields
                )
                return

            if self._recently_settled(session_id):
                logger.info(f"Interim update for settled session {session_id}, ignoring")
                return

            username = view.get_string('User-Name')
            if not username:
                raise UnresolvedSession(session_id)
            if not RadiusUser.objects.filter(username=username).exists():
                raise UnknownSubscriber(username, session_id)

            logger.warning(f"Interim update for unknown session {session_id}, "
                           f"recreating it for {username}")
            session = self._build_session(view, nas, session_id, username)
            session.upstream_bytes = upstream
            session.downstream_bytes = downstream
            session.last_authenticator = authenticator
            self.ledger.create(session)

    def _handle_accounting_on(self, view: AttributeView, nas) -> None:
        """
        Handle Accounting-On request (NAS restart).

        Every session the NAS reported before restarting is gone; they are
        settled in the background so the response is not delayed. Sessions the
        NAS starts after this packet are left alone.
        """
        logger.info(f"Accounting-On from NAS {nas.ip_address}, settling its sessions")
        schedule_reconciliation(nas.ip_address, UsageLog.TERMINATE_CAUSE_NAS_REBOOT,
                                timezone.now())

    def _handle_accounting_off(self, view: AttributeView, nas) -> None:
        """
        Handle Accounting-Off request (NAS shutdown).
        """
        logger.info(f"Accounting-Off from NAS {nas.ip_address}, settling its sessions")
        schedule_reconciliation(nas.ip_address, UsageLog.TERMINATE_CAUSE_NAS_REQUEST,
                                timezone.now())

    def _build_session(self, view: AttributeView, nas, session_id: str,
                       username: str) -> OnlineSession:
        """Create an unsaved online session from the packet's attributes."""
        now = timezone.now()
        mac_sources = settings.RADIUS_CONFIG.get(
            'MAC_ADDRESS_ATTRIBUTES', ['Calling-Station-Id', 'H3C-Ip-Host-Addr']
        )
        return OnlineSession(
            session_id=session_id,
            nas_ip_address=nas.ip_address,
            username=username,
            framed_ip_address=view.get_string('Framed-IP-Address'),
            nas_port_id=view.get_string('NAS-Port-Id') or '',
            mac_address=view.mac_address(mac_sources) or '',
            start_time=now,
            last_updated=now,
        )

    def _recently_settled(self, session_id: str) -> bool:
        """Check for a usage log written inside the repeated-stop window."""
        window = settings.RADIUS_CONFIG.get('DUPLICATE_STOP_WINDOW', 300)
        return UsageLog.objects.filter(
            acct_session_id=session_id,
            stop_time__gte=timezone.now() - timedelta(seconds=window)
        ).exists()

    def _require_session_id(self, view: AttributeView) -> str:
        session_id = view.get_string('Acct-Session-Id')
        if not session_id:
            raise MalformedAttribute("Acct-Session-Id is missing", attribute='Acct-Session-Id')
        return session_id

    def _get_status_type(self, view: AttributeView) -> AcctStatusType:
        """
        Resolve Acct-Status-Type to a handled status.

        Raises:
            MalformedAttribute: missing or not a number / known name
            UnsupportedStatusType: a valid number this server does not handle
        """
        value = view.get_string('Acct-Status-Type')
        if value is None:
            raise MalformedAttribute("Acct-Status-Type is missing", attribute='Acct-Status-Type')

        if value in ACCT_STATUS_MAP:
            return ACCT_STATUS_MAP[value]

        try:
            code = int(value)
        except ValueError:
            raise MalformedAttribute(
                f"Acct-Status-Type '{value}' is not a status code",
                attribute='Acct-Status-Type',
                value=value
            )

        try:
            return AcctStatusType(code)
        except ValueError:
            raise UnsupportedStatusType(code)

    def _get_terminate_cause(self, view: AttributeView) -> Optional[int]:
        value = view.get_string('Acct-Terminate-Cause')
        if value is None:
            return None
        if value in ACCT_TERMINATE_CAUSE_MAP:
            return ACCT_TERMINATE_CAUSE_MAP[value]
        try:
            return int(value)
        except ValueError:
            logger.warning(f"Could not map Acct-Terminate-Cause value '{value}'")
            return None

    def _create_response(self, request: packet.AcctPacket) -> packet.AcctPacket:
        """
        Create an Accounting-Response packet.

        Args:
            request: The original request packet

        Returns:
            Accounting-Response packet
        """
        return request.CreateReply()
