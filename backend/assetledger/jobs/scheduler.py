"""
APScheduler configuration.

One daily job checks every active depreciation schedule and runs the ones due
today. Whether a schedule is due is decided in the schedule runner, not by
APScheduler triggers, so adding or editing schedules needs no job changes.
"""
import logging

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler

from assetledger.core.executor import DepreciationExecutor
from assetledger.core.schedule_runner import run_due_schedules
from assetledger.db.database import get_session_factory
from assetledger.utils.settings_loader import EngineSettings, get_settings

logger = logging.getLogger(__name__)

JOB_ID = "run_due_depreciation_schedules"

job_defaults = {
    "coalesce": True,  # a missed day runs once, not once per missed trigger
    "max_instances": 1,
    "misfire_grace_time": 3600,
}

_scheduler: BackgroundScheduler | None = None


def run_depreciation_job():
    """Called by APScheduler once a day."""
    session_factory = get_session_factory()
    results = run_due_schedules(session_factory, DepreciationExecutor(session_factory))
    failed = [r for r in results if r.error]
    logger.info(f"Job '{JOB_ID}' finished: {len(results) - len(failed)}/{len(results)} schedules ran")


def start_scheduler(settings: EngineSettings | None = None) -> BackgroundScheduler:
    global _scheduler
    settings = settings or get_settings()
    if _scheduler is not None and _scheduler.running:
        return _scheduler

    _scheduler = BackgroundScheduler(
        jobstores={"default": MemoryJobStore()},
        executors={"default": ThreadPoolExecutor(1)},
        job_defaults=job_defaults,
        timezone=settings.scheduler_timezone,
    )
    _scheduler.add_job(
        run_depreciation_job,
        "cron",
        hour=settings.scheduler_hour,
        minute=settings.scheduler_minute,
        id=JOB_ID,
        name="Run due depreciation schedules",
        replace_existing=True,
    )
    _scheduler.start()
    logger.info(
        f"Depreciation scheduler started: daily at {settings.scheduler_hour:02d}:"
        f"{settings.scheduler_minute:02d} ({settings.scheduler_timezone})"
    )
    return _scheduler


def shutdown_scheduler():
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Depreciation scheduler stopped")
    _scheduler = None
