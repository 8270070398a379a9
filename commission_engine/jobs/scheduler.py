"""
APScheduler Configuration

Runs the automatic payout job on the schedule chosen by
AUTO_PAYOUT_SCHEDULE:
- disabled: no job is registered
- daily: every day at PAYOUT_JOB_HOUR
- weekly: every Monday at PAYOUT_JOB_HOUR
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from commission_engine.config import Settings, get_settings
from commission_engine.jobs.payout_jobs import run_scheduled_payouts
from commission_engine.services.event_service import EventSink
from commission_engine.services.transfer_service import TransferProvider

logger = logging.getLogger(__name__)

PAYOUT_JOB_ID = 'process_scheduled_payouts'

# Job stores
jobstores = {
    'default': MemoryJobStore()
}

# Executors
executors = {
    'default': AsyncIOExecutor(),
}

# Job defaults
job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 3600,
}

scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
)


def register_payout_job(
    target: AsyncIOScheduler,
    transfers: TransferProvider,
    events: Optional[EventSink] = None,
    config: Optional[Settings] = None,
) -> bool:
    """Add the payout job to a scheduler. Returns False when payouts are disabled."""
    config = config or get_settings()
    schedule = config.AUTO_PAYOUT_SCHEDULE

    if schedule == 'disabled':
        logger.info("Automatic payouts are disabled")
        return False

    trigger_args = {'hour': config.PAYOUT_JOB_HOUR, 'minute': 0}
    if schedule == 'weekly':
        trigger_args['day_of_week'] = 'mon'

    target.add_job(
        run_scheduled_payouts,
        'cron',
        timezone=config.SCHEDULER_TIMEZONE,
        kwargs={'transfers': transfers, 'events': events, 'config': config},
        id=PAYOUT_JOB_ID,
        name=f'Process Scheduled Payouts ({schedule})',
        replace_existing=True,
        **trigger_args,
    )
    return True


def start_scheduler(
    transfers: TransferProvider,
    events: Optional[EventSink] = None,
    config: Optional[Settings] = None,
):
    """Start the background job scheduler."""
    if not scheduler.running:
        register_payout_job(scheduler, transfers, events=events, config=config)

        scheduler.start()
        logger.info("Background job scheduler started")

        # Log all scheduled jobs
        jobs = scheduler.get_jobs()
        for job in jobs:
            logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status():
    """Get status of all scheduled jobs."""
    jobs = scheduler.get_jobs()
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in jobs
    ]
