"""
Scheduler Jobs Package

This package contains the periodic job functions:
- cleanup.py: Log retention and stale session reaping
"""

from scheduler.jobs.cleanup import (
    cleanup_radius_logs,
    cleanup_stale_sessions,
)

__all__ = [
    'cleanup_radius_logs',
    'cleanup_stale_sessions',
]
