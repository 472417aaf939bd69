"""
Session Ledger

Point operations on the online session table. The ledger is the single source
of truth for whether a session is online; it keeps no in-memory copy.

Counters are stored in signed 64-bit columns. A total the backend cannot
store surfaces as PersistenceError like any other failed write.
"""

import logging
from datetime import datetime
from typing import List, Optional

from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from radius.exceptions import DuplicateSession, PersistenceError, SessionNotFound
from sessions.models import OnlineSession

logger = logging.getLogger(__name__)


class SessionLedger:
    """
    Create, find, update and delete online sessions by Acct-Session-Id.

    Callers serialize work on one session with sessions.locks.session_lock;
    the unique constraint on session_id still guards against duplicates.
    """

    # Columns update_counters may touch besides the counters themselves
    UPDATABLE_FIELDS = frozenset({'username', 'last_authenticator'})

    def create(self, session: OnlineSession) -> OnlineSession:
        """
        Insert a new online session.

        Raises:
            DuplicateSession: the session id is already online
            PersistenceError: the insert failed
        """
        try:
            with transaction.atomic():
                if OnlineSession.objects.filter(session_id=session.session_id).exists():
                    raise DuplicateSession(session.session_id)
                session.save(force_insert=True)
        except IntegrityError:
            raise DuplicateSession(session.session_id)
        except (DatabaseError, OverflowError) as e:
            raise PersistenceError(f"Failed to create session {session.session_id}: {e}") from e

        logger.info(f"Session online: {session.session_id} user={session.username or '?'} "
                    f"nas={session.nas_ip_address}")
        return session

    def find(self, session_id: str) -> Optional[OnlineSession]:
        """
        Look up an online session.

        Returns:
            The session, or None if it is not online
        """
        try:
            return OnlineSession.objects.filter(session_id=session_id).first()
        except DatabaseError as e:
            raise PersistenceError(f"Failed to look up session {session_id}: {e}") from e

    def update_counters(self, session_id: str, upstream_bytes: int,
                        downstream_bytes: int, **fields) -> None:
        """
        Store new running totals for a session.

        Only the counters, last_updated and the explicitly passed
        UPDATABLE_FIELDS are written.

        Raises:
            SessionNotFound: the session is not online
            PersistenceError: the update failed
        """
        unknown = set(fields) - self.UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update session fields: {', '.join(sorted(unknown))}")

        try:
            updated = OnlineSession.objects.filter(session_id=session_id).update(
                upstream_bytes=upstream_bytes,
                downstream_bytes=downstream_bytes,
                last_updated=timezone.now(),
                **fields
            )
        except (DatabaseError, OverflowError) as e:
            raise PersistenceError(f"Failed to update session {session_id}: {e}") from e

        if not updated:
            raise SessionNotFound(session_id)
        logger.debug(f"Session {session_id} counters: up={upstream_bytes} down={downstream_bytes}")

    def delete(self, session_id: str) -> None:
        """
        Remove a session from the online table.

        Raises:
            SessionNotFound: the session is not online
            PersistenceError: the delete failed
        """
        try:
            deleted, _ = OnlineSession.objects.filter(session_id=session_id).delete()
        except DatabaseError as e:
            raise PersistenceError(f"Failed to delete session {session_id}: {e}") from e

        if not deleted:
            raise SessionNotFound(session_id)
        logger.debug(f"Session offline: {session_id}")

    def list_all(self, nas_ip_address: str,
                 started_before: Optional[datetime] = None) -> List[OnlineSession]:
        """
        List the online sessions reported by one NAS, oldest first.

        Args:
            nas_ip_address: The NAS to list
            started_before: Only include sessions started at or before this time
        """
        queryset = OnlineSession.objects.filter(nas_ip_address=nas_ip_address)
        if started_before is not None:
            queryset = queryset.filter(start_time__lte=started_before)
        try:
            return list(queryset.order_by('start_time'))
        except DatabaseError as e:
            raise PersistenceError(f"Failed to list sessions for NAS {nas_ip_address}: {e}") from e
