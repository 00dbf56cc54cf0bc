"""
Time-based trigger: decide which active schedules are due today and run each of
them through the batch executor. A failing or busy schedule does not stop the others.
"""
import calendar
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from assetledger.core.depreciation import ScheduleType
from assetledger.core.exceptions import DepreciationError, ScheduleBusyError
from assetledger.core.executor import DepreciationExecutor, RunSummary
from assetledger.models.execution import DepreciationExecution
from assetledger.models.schedule import DepreciationSchedule

logger = logging.getLogger(__name__)

# months in which a non-monthly schedule fires
_RUN_MONTHS = {
    ScheduleType.MONTHLY: set(range(1, 13)),
    ScheduleType.QUARTERLY: {3, 6, 9, 12},
    ScheduleType.ANNUALLY: {12},
}


def effective_execution_day(execution_day: int, year: int, month: int) -> int:
    """Day 31 in a 30-day month (or 29-31 in February) fires on the last day."""
    return min(execution_day, calendar.monthrange(year, month)[1])


def is_due(schedule: DepreciationSchedule, today: date) -> bool:
    if not schedule.is_active:
        return False
    try:
        run_months = _RUN_MONTHS[ScheduleType(schedule.schedule_type)]
    except ValueError:
        return False
    if today.month not in run_months:
        return False
    return today.day == effective_execution_day(schedule.execution_day, today.year, today.month)


@dataclass(frozen=True)
class ScheduleDispatch:
    schedule_id: int
    summary: RunSummary | None = None
    error: str | None = None


def _ran_today(db, schedule_id: int, today: date) -> bool:
    start = datetime.combine(today, time.min)
    end = start + timedelta(days=1)
    count = db.scalar(
        select(func.count(DepreciationExecution.id)).where(
            DepreciationExecution.schedule_id == schedule_id,
            DepreciationExecution.execution_date >= start,
            DepreciationExecution.execution_date < end,
        )
    )
    return count > 0


def due_schedules(session_factory: sessionmaker, today: date) -> list[tuple[int, int]]:
    """(business_unit_id, schedule_id) of every active schedule due today and not yet run."""
    with session_factory() as db:
        schedules = db.scalars(
            select(DepreciationSchedule)
            .where(DepreciationSchedule.is_active.is_(True))
            .order_by(DepreciationSchedule.business_unit_id, DepreciationSchedule.id)
        ).all()
        return [
            (s.business_unit_id, s.id)
            for s in schedules
            if is_due(s, today) and not _ran_today(db, s.id, today)
        ]


def run_due_schedules(
    session_factory: sessionmaker,
    executor: DepreciationExecutor | None = None,
    today: date | None = None,
) -> list[ScheduleDispatch]:
    executor = executor or DepreciationExecutor(session_factory)
    today = today or executor.clock().date()

    try:
        due = due_schedules(session_factory, today)
    except SQLAlchemyError:
        logger.exception("Could not load depreciation schedules")
        return []

    logger.info(f"{len(due)} depreciation schedules due on {today}")
    results = []
    for business_unit_id, schedule_id in due:
        try:
            summary = executor.run(business_unit_id, schedule_id=schedule_id, run_date=today)
            results.append(ScheduleDispatch(schedule_id=schedule_id, summary=summary))
        except ScheduleBusyError as e:
            logger.warning(f"Schedule {schedule_id} skipped: {e.message}")
            results.append(ScheduleDispatch(schedule_id=schedule_id, error=e.message))
        except DepreciationError as e:
            logger.error(f"Schedule {schedule_id} failed: {e.message}")
            results.append(ScheduleDispatch(schedule_id=schedule_id, error=e.message))
    return results
