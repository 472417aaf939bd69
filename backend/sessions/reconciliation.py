"""
Bulk Reconciliation

Force-closes online sessions that can no longer receive a Stop: every session
of a NAS that announced Accounting-On/Off, and sessions that went silent for
longer than the interim interval allows.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from django.conf import settings
from django.db import close_old_connections
from django.utils import timezone

from radius.exceptions import AccountingError, SessionNotFound
from sessions.ledger import SessionLedger
from sessions.locks import session_lock
from sessions.models import OnlineSession, UsageLog
from sessions.settlement import close_session

logger = logging.getLogger(__name__)

# Upper bound for the pause between attempts on one session, in seconds
MAX_RETRY_DELAY = 5.0


@dataclass
class ReconciliationResult:
    """Outcome of a bulk close."""
    settled: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.settled) + len(self.skipped)


def _close_with_retry(ledger: SessionLedger, session_id: str, terminate_cause: int,
                      max_attempts: int, retry_delay: float,
                      started_before: Optional[datetime] = None) -> Optional[bool]:
    """
    Close one session under its lock, retrying transient failures with
    exponential backoff.

    Returns:
        True if settled, False if every attempt failed, None if the session
        was already offline or was started after started_before
    """
    with session_lock(session_id):
        for attempt in range(1, max_attempts + 1):
            try:
                # Re-read: a Stop may have closed it while we were waiting
                session = ledger.find(session_id)
                if session is None:
                    return None
                if started_before is not None and session.start_time > started_before:
                    logger.info(f"Session {session_id} started after the cutoff, left online")
                    return None
                close_session(session, session.upstream_bytes, session.downstream_bytes,
                              terminate_cause, ledger=ledger)
                return True
            except SessionNotFound:
                return None
            except AccountingError as e:
                logger.warning(f"Closing session {session_id} failed "
                               f"(attempt {attempt}/{max_attempts}): {e}")
                if attempt < max_attempts and retry_delay > 0:
                    time.sleep(min(retry_delay * (2 ** (attempt - 1)), MAX_RETRY_DELAY))
    return False


def close_sessions(sessions: Iterable[OnlineSession], terminate_cause: int,
                   ledger: Optional[SessionLedger] = None,
                   started_before: Optional[datetime] = None) -> ReconciliationResult:
    """
    Settle and remove each session with its last known running totals.

    One failing session never stops the batch; it is logged and skipped.
    Sessions re-read with a start time after started_before are left online.
    """
    ledger = ledger or SessionLedger()
    max_attempts = max(1, settings.RADIUS_CONFIG.get('RECONCILE_MAX_ATTEMPTS', 3))
    retry_delay = settings.RADIUS_CONFIG.get('RECONCILE_RETRY_DELAY', 0.5)
    result = ReconciliationResult()

    for session in sessions:
        outcome = _close_with_retry(ledger, session.session_id, terminate_cause,
                                    max_attempts, retry_delay, started_before)
        if outcome is True:
            result.settled.append(session.session_id)
        elif outcome is False:
            logger.error(f"Giving up on session {session.session_id}, left online")
            result.skipped.append(session.session_id)

    return result


def reconcile_nas(nas_ip_address: str,
                  terminate_cause: int = UsageLog.TERMINATE_CAUSE_NAS_REBOOT,
                  started_before: Optional[datetime] = None) -> ReconciliationResult:
    """
    Force-close every online session a NAS started up to a point in time.

    Args:
        nas_ip_address: The NAS that rebooted or is about to
        terminate_cause: Cause recorded in the usage logs
        started_before: Only sessions started at or before this time are
            closed (defaults to now); the Accounting-On/Off receive time

    Returns:
        ReconciliationResult with settled and skipped session ids
    """
    started_before = started_before or timezone.now()
    ledger = SessionLedger()
    sessions = ledger.list_all(nas_ip_address, started_before=started_before)
    logger.info(f"Reconciling {len(sessions)} online sessions of NAS {nas_ip_address} "
                f"started before {started_before}")

    result = close_sessions(sessions, terminate_cause, ledger, started_before)

    logger.info(f"Reconciliation of NAS {nas_ip_address} complete: "
                f"{len(result.settled)} settled, {len(result.skipped)} skipped")
    return result


def run_reconciliation_job(nas_ip_address: str, terminate_cause: int,
                           started_before: Optional[datetime] = None) -> ReconciliationResult:
    """Scheduler entry point for reconcile_nas."""
    try:
        return reconcile_nas(nas_ip_address, terminate_cause, started_before)
    finally:
        close_old_connections()


def schedule_reconciliation(nas_ip_address: str, terminate_cause: int,
                            started_before: Optional[datetime] = None) -> None:
    """
    Queue reconcile_nas on the background executor and return immediately.

    started_before is fixed here, so sessions the NAS opens while the job
    waits in the queue are not closed.
    """
    from scheduler.scheduler import submit_job

    submit_job(
        run_reconciliation_job,
        job_id=f'reconcile_nas:{nas_ip_address}',
        name=f'Reconcile NAS {nas_ip_address}',
        args=(nas_ip_address, terminate_cause, started_before or timezone.now()),
    )


def reap_stale_sessions() -> ReconciliationResult:
    """
    Close sessions that have not been updated for too long.

    A session is stale when no accounting packet was applied within
    ACCT_INTERIM_INTERVAL * STALE_SESSION_MULTIPLIER seconds.
    """
    interim_interval = settings.RADIUS_CONFIG.get('ACCT_INTERIM_INTERVAL', 600)
    multiplier = settings.RADIUS_CONFIG.get('STALE_SESSION_MULTIPLIER', 5)
    cutoff_time = timezone.now() - timezone.timedelta(seconds=interim_interval * multiplier)

    stale = list(OnlineSession.objects.filter(last_updated__lt=cutoff_time).order_by('start_time'))
    if not stale:
        return ReconciliationResult()

    logger.info(f"Found {len(stale)} stale sessions (no update since {cutoff_time})")
    return close_sessions(stale, UsageLog.TERMINATE_CAUSE_LOST_CARRIER)
