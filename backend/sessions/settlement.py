"""
Usage Settlement

Closes the books on a session: writes its usage log row and debits the
subscriber's quota.
"""

import logging
from datetime import datetime
from typing import Optional

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from radius.exceptions import PersistenceError
from sessions.ledger import SessionLedger
from sessions.models import OnlineSession, UsageLog
from users.models import RadiusUser

logger = logging.getLogger(__name__)

QUOTA_DEBIT_TOTAL = 'total'
QUOTA_DEBIT_NET = 'net'


def quota_debit(upstream: int, downstream: int, policy: Optional[str] = None) -> int:
    """
    Compute how many bytes a closed session costs the subscriber.

    Policies (RADIUS_CONFIG['QUOTA_DEBIT_POLICY']):
        total: upstream + downstream (default)
        net: downstream - upstream, never below zero
    """
    if policy is None:
        policy = settings.RADIUS_CONFIG.get('QUOTA_DEBIT_POLICY', QUOTA_DEBIT_TOTAL)

    if policy == QUOTA_DEBIT_TOTAL:
        return upstream + downstream
    if policy == QUOTA_DEBIT_NET:
        return max(0, downstream - upstream)
    raise ValueError(f"Unknown quota debit policy: {policy}")


def _write_usage_log(session: OnlineSession, stop_time: datetime, used_duration: int,
                     upstream: int, downstream: int,
                     terminate_cause: Optional[int]) -> UsageLog:
    return UsageLog.objects.create(
        acct_session_id=session.session_id,
        username=session.username,
        start_time=session.start_time,
        stop_time=stop_time,
        used_duration=used_duration,
        total_upstream=upstream,
        total_downstream=downstream,
        nas_ip_address=session.nas_ip_address,
        framed_ip_address=session.framed_ip_address,
        mac_address=session.mac_address,
        terminate_cause=terminate_cause,
    )


def settle(session: OnlineSession, final_upstream: int, final_downstream: int,
           terminate_cause: Optional[int] = None,
           now: Optional[datetime] = None) -> UsageLog:
    """
    Record the usage of a closing session and debit the subscriber.

    The usage log is written even when the subscriber has no quota row; the
    debit is then skipped. Both writes happen in one transaction.

    Args:
        session: The online session being closed
        final_upstream: Total bytes sent by the subscriber
        final_downstream: Total bytes received by the subscriber
        terminate_cause: RFC 2866 terminate cause to record
        now: Stop time (defaults to the current time)

    Returns:
        The written UsageLog

    Raises:
        PersistenceError: any write failed; nothing was committed
    """
    stop_time = now or timezone.now()
    used_duration = max(0, int((stop_time - session.start_time).total_seconds()))
    flow = quota_debit(final_upstream, final_downstream)

    try:
        with transaction.atomic():
            usage = _write_usage_log(session, stop_time, used_duration,
                                     final_upstream, final_downstream, terminate_cause)
            debited = False
            if session.username:
                debited = RadiusUser.debit_quota(session.username, flow, used_duration)
    except (DatabaseError, OverflowError) as e:
        raise PersistenceError(f"Failed to settle session {session.session_id}: {e}") from e

    if session.username and not debited:
        logger.warning(f"No quota for subscriber '{session.username}' "
                       f"(session {session.session_id}), debit skipped")

    logger.info(f"Session settled: {session.session_id} user={session.username} "
                f"duration={used_duration}s up={final_upstream}B down={final_downstream}B "
                f"debit={flow}B")
    return usage


def close_session(session: OnlineSession, final_upstream: int, final_downstream: int,
                  terminate_cause: Optional[int] = None,
                  ledger: Optional[SessionLedger] = None) -> UsageLog:
    """
    Settle a session and take it offline in a single transaction.

    If settlement fails the online row is kept so a retransmitted Stop (or
    the next reconciliation) can settle it again.

    Raises:
        PersistenceError: settlement or delete failed
        SessionNotFound: the session went offline concurrently
    """
    ledger = ledger or SessionLedger()
    try:
        with transaction.atomic():
            usage = settle(session, final_upstream, final_downstream, terminate_cause)
            ledger.delete(session.session_id)
    except (DatabaseError, OverflowError) as e:
        raise PersistenceError(f"Failed to close session {session.session_id}: {e}") from e
    return usage
