"""
Database Log Handler for RADIUS Server

This module provides a logging handler that stores log messages in the
database so operators can read them with the `logs` command or the API.
Retention is enforced periodically rather than on every record.
"""

import logging
import threading
import time

# Track last cleanup time to avoid running on every log emit
_last_cleanup_time = 0.0
_cleanup_lock = threading.Lock()


class DatabaseLogHandler(logging.Handler):
    """
    A logging handler that stores log messages in the database.

    Records emitted while the current transaction is marked for rollback
    are dropped; writing them would fail and poison the caller's error path.
    """

    # Minimum seconds between cleanup runs
    CLEANUP_INTERVAL = 60

    def emit(self, record):
        """
        Emit a log record to the database.

        Args:
            record: The log record to emit
        """
        from django.conf import settings
        from django.db import connection
        from .models import RadiusLog

        try:
            if connection.in_atomic_block and connection.needs_rollback:
                return

            RadiusLog.objects.create(
                level=record.levelname,
                logger=record.name,
                message=self.format(record)
            )
            self._maybe_run_cleanup(getattr(settings, 'RADIUS_LOG_RETENTION', 10000))

        except Exception:
            self.handleError(record)

    def _maybe_run_cleanup(self, limit):
        """
        Trim old entries if CLEANUP_INTERVAL has passed since the last trim.
        Only one thread trims at a time; others skip instead of waiting.
        """
        global _last_cleanup_time

        current_time = time.time()
        if current_time - _last_cleanup_time < self.CLEANUP_INTERVAL:
            return

        if not _cleanup_lock.acquire(blocking=False):
            return

        try:
            if current_time - _last_cleanup_time < self.CLEANUP_INTERVAL:
                return

            if limit and limit > 0:
                from .models import RadiusLog
                RadiusLog.trim(limit)

            _last_cleanup_time = current_time
        finally:
            _cleanup_lock.release()
