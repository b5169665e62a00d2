"""
APScheduler configuration for Rumi.

Manages:
- The daily retention sweep over the remote backup catalog
- Manual retention triggers
"""

import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.executors.pool import ThreadPoolExecutor

from rumi.backup.retention import enforce_retention

logger = logging.getLogger(__name__)

RETENTION_JOB_ID = 'retention_cleanup'

# Global scheduler instance and the settings its jobs run with
scheduler = None
scheduler_config = None
scheduler_credentials = None


def init_scheduler(config, credentials):
    """
    Initialize and configure APScheduler.

    Args:
        config: Configuration class (RETENTION_HOUR, BACKUP_RETENTION_DAYS, ...)
        credentials: SSH credentials of the host holding the backup catalog

    Returns:
        The scheduler instance (the existing one if already initialized)
    """
    global scheduler, scheduler_config, scheduler_credentials

    if scheduler is not None:
        return scheduler

    scheduler_config = config
    scheduler_credentials = credentials

    # One worker: a sweep owns its connection for its whole run
    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BackgroundScheduler(
        executors=executors,
        job_defaults=job_defaults,
        timezone=config.SCHEDULER_TIMEZONE
    )

    scheduler.add_job(
        func=_run_retention,
        trigger=CronTrigger(hour=config.RETENTION_HOUR, minute=0, timezone=config.SCHEDULER_TIMEZONE),
        id=RETENTION_JOB_ID,
        name='Daily Retention Cleanup',
        replace_existing=True
    )

    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Raises:
        RuntimeError: If init_scheduler() has not been called
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if scheduler.running:
        logger.info("Scheduler already running (state=%s)", scheduler.state)
        return

    scheduler.start()
    logger.info("APScheduler started (state=%s)", scheduler.state)

    for job in scheduler.get_jobs():
        next_run = _next_run(job) or 'N/A'
        logger.info("  - %s: %s (next run: %s)", job.id, job.name, next_run)


def stop_scheduler():
    """Stop the APScheduler."""
    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")


def _run_retention():
    """
    Run one retention sweep in scheduler context.

    Errors are logged rather than raised into the scheduler thread.
    """
    try:
        deleted = enforce_retention(scheduler_credentials, scheduler_config)
        logger.info("Scheduled retention sweep deleted %d backups", deleted)
    except Exception as e:
        logger.exception("Scheduled retention sweep failed: %s", e)


def trigger_retention_now():
    """
    Run the retention sweep once, as soon as possible.

    Raises:
        RuntimeError: If the scheduler is not initialized
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    now = datetime.now(timezone.utc)
    scheduler.add_job(
        func=_run_retention,
        trigger=DateTrigger(run_date=now + timedelta(seconds=1)),
        id=f"manual_retention_{int(now.timestamp())}",
        name='Manual Retention Cleanup',
        replace_existing=False
    )

    logger.info("Manually triggered retention sweep")


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs.

    Returns:
        List of dicts with job information
    """
    if scheduler is None:
        return []

    jobs = []

    for job in scheduler.get_jobs():
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': _next_run(job),
            'trigger': str(job.trigger)
        })

    return jobs


def _next_run(job):
    # pending jobs have no next_run_time until the scheduler starts
    next_run_time = getattr(job, 'next_run_time', None)
    return next_run_time.isoformat() if next_run_time else None


def is_scheduler_running() -> bool:
    """
    Check if the scheduler is running.

    Returns:
        True if scheduler is initialized and running
    """
    return scheduler is not None and scheduler.running
