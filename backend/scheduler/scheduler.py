"""
Core Scheduler Module

This module provides the APScheduler-based background scheduler for
periodic maintenance jobs and for one-off background jobs such as NAS
reconciliation. Job failures are reported through a scheduler listener.
"""

import logging
import atexit
from typing import Optional, Callable, Any, Sequence

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED, JobExecutionEvent
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore

logger = logging.getLogger(__name__)

# Executor running one-off background jobs
BACKGROUND_EXECUTOR = 'background'

# Global scheduler instance
_scheduler: Optional[BackgroundScheduler] = None
_scheduler_started: bool = False


def _job_listener(event: JobExecutionEvent) -> None:
    """Log failed and missed jobs."""
    if event.code == EVENT_JOB_MISSED:
        logger.warning(f"Job {event.job_id} missed its run time")
        return
    logger.error(f"Job {event.job_id} failed: {event.exception!r}\n{event.traceback or ''}")


def get_scheduler() -> BackgroundScheduler:
    """
    Get or create the global scheduler instance.

    Returns:
        The BackgroundScheduler instance
    """
    global _scheduler

    if _scheduler is None:
        from django.conf import settings

        workers = settings.RADIUS_CONFIG.get('RECONCILE_WORKERS', 2)

        # Periodic jobs share a single thread; one-off jobs get their own pool
        executors = {
            'default': ThreadPoolExecutor(1),
            BACKGROUND_EXECUTOR: ThreadPoolExecutor(workers),
        }

        # Use in-memory job store
        jobstores = {
            'default': MemoryJobStore(),
        }

        # Job defaults - don't allow concurrent execution of same job
        job_defaults = {
            'coalesce': True,  # Merge missed runs into one
            'max_instances': 1,  # Only one instance of each job at a time
            'misfire_grace_time': 60,  # Allow 60 seconds delay before considering missed
        }

        _scheduler = BackgroundScheduler(
            executors=executors,
            jobstores=jobstores,
            job_defaults=job_defaults,
            timezone='UTC'
        )
        _scheduler.add_listener(_job_listener, EVENT_JOB_ERROR | EVENT_JOB_MISSED)

        # Register shutdown handler
        atexit.register(stop_scheduler)

    return _scheduler


def add_job(
    func: Callable,
    job_id: str,
    name: str,
    interval_seconds: int,
    **kwargs: Any
) -> None:
    """
    Add an interval job to the scheduler.

    Args:
        func: The function to execute
        job_id: Unique identifier for the job
        name: Human-readable name for the job
        interval_seconds: Interval between job executions
        **kwargs: Additional arguments passed to the job function
    """
    scheduler = get_scheduler()

    scheduler.add_job(
        func,
        'interval',
        seconds=interval_seconds,
        id=job_id,
        name=name,
        replace_existing=True,
        **kwargs
    )
    logger.info(f"Job added: {name} (every {interval_seconds}s)")


def submit_job(func: Callable, job_id: str, name: str,
               args: Sequence[Any] = ()) -> None:
    """
    Run a function once, as soon as possible, on the background executor.

    A job with the same id that is still queued is replaced, so repeated
    submissions for the same target collapse into one run. The scheduler is
    started on demand.

    Args:
        func: The function to execute
        job_id: Identifier for the job
        name: Human-readable name for the job
        args: Positional arguments for the function
    """
    if not is_scheduler_running():
        start_scheduler()

    scheduler = get_scheduler()
    scheduler.add_job(
        func,
        args=list(args),
        id=job_id,
        name=name,
        executor=BACKGROUND_EXECUTOR,
        replace_existing=True,
        # Queued behind busy workers, never dropped as missed
        misfire_grace_time=None,
    )
    logger.info(f"Background job submitted: {name}")


def start_scheduler() -> bool:
    """
    Start the scheduler with all configured jobs.

    Returns:
        True if scheduler was started, False if already running
    """
    global _scheduler_started

    if _scheduler_started:
        logger.debug("Scheduler already started")
        return False

    try:
        _register_cleanup_jobs()

        scheduler = get_scheduler()
        scheduler.start()
        _scheduler_started = True

        logger.info("Scheduler started successfully")
        return True

    except Exception as e:
        logger.error(f"Error starting scheduler: {e}")
        return False


def _register_cleanup_jobs() -> None:
    """Register all cleanup jobs with the scheduler."""
    from django.conf import settings
    from scheduler.jobs.cleanup import (
        cleanup_radius_logs,
        cleanup_stale_sessions,
    )

    cleanup_config = getattr(settings, 'CLEANUP_CONFIG', {})

    # Log cleanup - runs every 5 minutes by default
    log_cleanup_interval = cleanup_config.get('LOG_INTERVAL', 300)
    add_job(
        cleanup_radius_logs,
        job_id='cleanup_radius_logs',
        name='Cleanup Radius Logs',
        interval_seconds=log_cleanup_interval
    )

    # Stale session reaping - runs every 5 minutes by default
    stale_session_interval = cleanup_config.get('STALE_SESSION_INTERVAL', 300)
    add_job(
        cleanup_stale_sessions,
        job_id='cleanup_stale_sessions',
        name='Cleanup Stale Sessions',
        interval_seconds=stale_session_interval
    )


def stop_scheduler() -> None:
    """
    Stop the scheduler gracefully.
    """
    global _scheduler, _scheduler_started

    if _scheduler is not None and _scheduler_started:
        try:
            # Let running reconciliations finish their current session
            _scheduler.shutdown(wait=True)
            logger.info("Scheduler stopped")
        except Exception as e:
            logger.error(f"Error stopping scheduler: {e}")
        finally:
            _scheduler_started = False


def is_scheduler_running() -> bool:
    """
    Check if the scheduler is currently running.

    Returns:
        True if running, False otherwise
    """
    return _scheduler_started and _scheduler is not None and _scheduler.running
