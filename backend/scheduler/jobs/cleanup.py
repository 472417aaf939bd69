"""
Cleanup Jobs

This module contains scheduled jobs for cleaning up old data:
- Log entries
- Stale online sessions
"""

import logging

from django.db import close_old_connections

logger = logging.getLogger(__name__)


def cleanup_radius_logs() -> int:
    """
    Clean up old RADIUS log entries based on retention setting.

    Keeps only the most recent N log entries where N is configured
    via RADIUS_LOG_RETENTION setting.

    Returns:
        Number of log entries deleted
    """
    from django.conf import settings
    from radius.models import RadiusLog

    try:
        limit = getattr(settings, 'RADIUS_LOG_RETENTION', 10000)
        if not limit or limit <= 0:
            return 0

        deleted = RadiusLog.trim(limit)
        if deleted > 0:
            logger.info(f"Cleaned up {deleted} old log entries")
        return deleted

    except Exception as e:
        logger.error(f"Error cleaning up radius logs: {e}")
        return 0
    finally:
        close_old_connections()


def cleanup_stale_sessions() -> int:
    """
    Settle online sessions that stopped sending accounting updates.

    Returns:
        Number of sessions settled
    """
    from sessions.reconciliation import reap_stale_sessions

    try:
        result = reap_stale_sessions()
        if result.settled:
            logger.info(f"Settled {len(result.settled)} stale sessions")
        return len(result.settled)

    except Exception as e:
        logger.error(f"Error cleaning up stale sessions: {e}")
        return 0
    finally:
        close_old_connections()
