"""
APScheduler configuration for backsync.

Runs the backup sync on the SCHEDULE_CRON crontab. A single worker and
max_instances=1 keep scheduled runs from overlapping.
"""

import logging

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from backsync.backup.credentials import ConfigurationError
from backsync.backup.executor import execute_backup_sync


logger = logging.getLogger(__name__)

SYNC_JOB_ID = 'backup_sync'

# Global scheduler instance and Flask app reference
scheduler = None
flask_app = None


def init_scheduler(app):
    """
    Initialize and configure APScheduler.

    Args:
        app: Flask app instance

    Raises:
        ConfigurationError: If SCHEDULE_CRON is missing or invalid
    """
    global scheduler, flask_app

    if scheduler is not None:
        return scheduler

    cron = app.config.get('SCHEDULE_CRON')
    if not cron:
        raise ConfigurationError("SCHEDULE_CRON must be set when the scheduler is enabled")

    timezone_name = app.config.get('SCHEDULER_TIMEZONE', 'UTC')
    try:
        trigger = CronTrigger.from_crontab(cron, timezone=timezone_name)
    except ValueError as e:
        raise ConfigurationError(f"Invalid SCHEDULE_CRON {cron!r}: {e}") from e

    # Store Flask app reference for use in background threads
    flask_app = app

    scheduler = BackgroundScheduler(
        jobstores={'default': MemoryJobStore()},
        executors={'default': ThreadPoolExecutor(max_workers=1)},
        job_defaults={
            'coalesce': True,  # Combine multiple pending runs into one
            'max_instances': 1,  # Only one sync at a time
            'misfire_grace_time': 300  # 5 minutes grace period for misfires
        },
        timezone=timezone_name
    )

    scheduler.add_job(
        func=_execute_sync_wrapper,
        trigger=trigger,
        id=SYNC_JOB_ID,
        name='Scheduled Backup Sync',
        replace_existing=True
    )
    logger.info(f"Scheduled backup sync ({cron})")

    return scheduler


def start_scheduler():
    """Start the APScheduler."""
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        scheduler.start()
        for job in scheduler.get_jobs():
            next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
            logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")
    else:
        logger.info(f"Scheduler already running (state={scheduler.state})")


def stop_scheduler():
    """Stop the APScheduler."""
    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")


def _execute_sync_wrapper():
    """Run one backup sync inside the Flask app context."""
    with flask_app.app_context():
        try:
            result = execute_backup_sync(flask_app.config)
        except ConfigurationError as e:
            logger.error(f"Scheduled backup sync not started: {e}")
            return

        if result.ok:
            level = logging.WARNING if result.partial else logging.INFO
            logger.log(level, f"Scheduled backup sync finished: {result.state.value} ({result.destination_path})")
        else:
            logger.error(f"Scheduled backup sync failed ({result.error_kind}): {result.error}")


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs.

    Returns:
        List of dicts with job information
    """
    if scheduler is None:
        return []

    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
            'trigger': str(job.trigger)
        }
        for job in scheduler.get_jobs()
    ]


def is_scheduler_running() -> bool:
    return scheduler is not None and scheduler.running
