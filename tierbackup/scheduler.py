"""
APScheduler configuration for tierbackup.

Manages:
- One cron-scheduled backup job per backup type
- Manual job triggers
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.executors.pool import ThreadPoolExecutor

from tierbackup.models import BackupType
from tierbackup.backup.executor import run_configured_backup


logger = logging.getLogger(__name__)

# Global scheduler instance and the config class jobs are built from
scheduler = None
backup_config = None

CRON_SETTINGS = {
    BackupType.HOURLY: 'BACKUP_HOURLY_CRON',
    BackupType.DAILY: 'BACKUP_DAILY_CRON',
    BackupType.WEEKLY: 'BACKUP_WEEKLY_CRON',
    BackupType.MONTHLY: 'BACKUP_MONTHLY_CRON',
}


def init_scheduler(config_obj):
    """
    Initialize and configure APScheduler.

    Args:
        config_obj: Config class (see tierbackup.config)
    """
    global scheduler, backup_config

    if scheduler is not None:
        return scheduler

    backup_config = config_obj

    # Runs share one work directory, so only one may execute at a time
    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BlockingScheduler(
        executors=executors,
        job_defaults=job_defaults,
        timezone=getattr(config_obj, 'SCHEDULER_TIMEZONE', 'UTC')
    )

    register_backup_jobs(config_obj)
    return scheduler


def register_backup_jobs(config_obj):
    """
    Add one cron job per backup type. Types with an empty cron expression
    are not scheduled.

    Raises:
        RuntimeError: If the scheduler is not initialized
        ValueError: If a cron expression is invalid
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    tz = getattr(config_obj, 'SCHEDULER_TIMEZONE', 'UTC')

    for backup_type, setting in CRON_SETTINGS.items():
        expression = getattr(config_obj, setting, None)
        if not expression:
            logger.info(f"No schedule for {backup_type.value} backups, skipping")
            continue

        scheduler.add_job(
            func=_execute_backup_wrapper,
            args=[backup_type.value],
            trigger=CronTrigger.from_crontab(expression, timezone=tz),
            id=f"backup_{backup_type.value}",
            name=f"Backup: {backup_type.value}",
            replace_existing=True
        )
        logger.info(f"Scheduled {backup_type.value} backup ({expression})")


def start_scheduler():
    """
    Start the APScheduler. Blocks until the scheduler is shut down.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    jobs = scheduler.get_jobs()
    logger.info(f"Starting scheduler with {len(jobs)} scheduled jobs")
    for job in jobs:
        logger.info(f"  - {job.id}: {job.name} ({job.trigger})")

    scheduler.start()


def stop_scheduler():
    """Stop the APScheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")
    scheduler = None


def _execute_backup_wrapper(backup_type: str):
    """
    Run a backup inside a scheduler job.

    Failures are logged here since APScheduler would otherwise only report
    them as job exceptions.
    """
    logger.info(f"Scheduler executing {backup_type} backup")
    try:
        result = run_configured_backup(backup_type, backup_config)
    except Exception as e:
        logger.exception(f"Scheduler {backup_type} backup failed: {e}")
        return None

    if result.completed:
        logger.info(f"Scheduled {backup_type} backup completed: key={result.remote_key}")
    else:
        logger.error(f"Scheduled {backup_type} backup failed")
    return result


def trigger_backup_now(backup_type: str):
    """
    Queue a one-off backup to run as soon as the worker is free.

    Raises:
        RuntimeError: If the scheduler is not initialized
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    now = datetime.now(timezone.utc)
    scheduler.add_job(
        func=_execute_backup_wrapper,
        args=[backup_type],
        trigger=DateTrigger(run_date=now + timedelta(seconds=1)),
        id=f"manual_{backup_type}_{uuid.uuid4().hex}",
        name=f"Manual: {backup_type}",
        replace_existing=False
    )
    logger.info(f"Manually triggered {backup_type} backup")


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
        next_run = getattr(job, 'next_run_time', None)
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': next_run.isoformat() if next_run else None,
            'trigger': str(job.trigger)
        })

    return jobs
