# sourcing_service/scheduler.py
"""
Background task scheduler for the sourcing engine's sweeps.

Uses APScheduler to run periodic background jobs for:
- Expiring stale counter-offers
- Auto-converting stalled negotiations
- Expiring quotes and RFQs past their validity
"""

import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED

from sourcing_service.core.config import settings
from sourcing_service.background_tasks.negotiation_tasks import (
    expire_negotiations,
    auto_convert_negotiations,
    expire_quotes,
    expire_rfqs,
)

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = None


def _on_job_error(event):
    """Log scheduler job errors with full context."""
    job_id = event.job_id
    exc = event.exception
    tb = event.traceback
    logger.error(
        "Scheduled job FAILED: job_id=%s error=%s",
        job_id, exc,
        exc_info=(type(exc), exc, None) if exc else None,
    )
    if tb:
        logger.error("Traceback for job %s:\n%s", job_id, tb)


def _on_job_missed(event):
    logger.warning(
        "Scheduled job MISSED: job_id=%s scheduled_run_time=%s",
        event.job_id,
        event.scheduled_run_time,
    )


def init_scheduler():
    """
    Initialize the background scheduler with all periodic tasks.

    This is called once when the application starts up.
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already initialized")
        return scheduler

    scheduler = BackgroundScheduler(
        timezone="UTC",
        job_defaults={
            'coalesce': True,  # Combine missed executions
            'max_instances': 1,  # Only one instance of each job at a time
            'misfire_grace_time': 60
        }
    )

    # Job 1: Expire stale counter-offers
    scheduler.add_job(
        func=expire_negotiations,
        trigger=IntervalTrigger(minutes=settings.NEGOTIATION_SWEEP_INTERVAL_MINUTES),
        id='expire_negotiations',
        name='Expire Stale Counter-Offers',
        replace_existing=True
    )
    logger.info(
        f"Scheduled job: expire_negotiations (every {settings.NEGOTIATION_SWEEP_INTERVAL_MINUTES} minutes)"
    )

    # Job 2: Auto-accept stalled counter-offers within tolerance
    if settings.AUTO_CONVERSION_ENABLED:
        scheduler.add_job(
            func=auto_convert_negotiations,
            trigger=IntervalTrigger(minutes=settings.AUTO_CONVERSION_INTERVAL_MINUTES),
            id='auto_convert_negotiations',
            name='Auto-Convert Stalled Negotiations',
            replace_existing=True
        )
        logger.info(
            f"Scheduled job: auto_convert_negotiations (every {settings.AUTO_CONVERSION_INTERVAL_MINUTES} minutes)"
        )

    # Job 3: Expire pending quotes past validity
    scheduler.add_job(
        func=expire_quotes,
        trigger=IntervalTrigger(minutes=settings.QUOTE_SWEEP_INTERVAL_MINUTES),
        id='expire_quotes',
        name='Expire Overdue Quotes',
        replace_existing=True
    )
    logger.info(f"Scheduled job: expire_quotes (every {settings.QUOTE_SWEEP_INTERVAL_MINUTES} minutes)")

    # Job 4: Expire RFQs and their open quotes
    scheduler.add_job(
        func=expire_rfqs,
        trigger=IntervalTrigger(minutes=settings.RFQ_SWEEP_INTERVAL_MINUTES),
        id='expire_rfqs',
        name='Expire Overdue RFQs',
        replace_existing=True
    )
    logger.info(f"Scheduled job: expire_rfqs (every {settings.RFQ_SWEEP_INTERVAL_MINUTES} minutes)")

    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    scheduler.add_listener(_on_job_missed, EVENT_JOB_MISSED)

    scheduler.start()
    logger.info("Background scheduler started successfully")

    return scheduler


def shutdown_scheduler():
    """
    Gracefully shutdown the scheduler.

    This is called when the application shuts down.
    """
    global scheduler

    if scheduler is not None:
        scheduler.shutdown(wait=True)
        logger.info("Background scheduler shutdown complete")
        scheduler = None


def get_scheduler_status():
    """
    Get the current status of all scheduled jobs.

    Returns:
        Dict with scheduler state and per-job next run time
    """
    if scheduler is None:
        return {"status": "not_initialized", "jobs": []}

    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            "trigger": str(job.trigger)
        })

    return {
        "status": "running" if scheduler.running else "stopped",
        "jobs": jobs
    }
