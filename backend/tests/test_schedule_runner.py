"""Tests for the time-based trigger."""
from datetime import date, datetime, time

import pytest
from sqlalchemy import func, select

from assetledger.core.executor import DepreciationExecutor
from assetledger.core.schedule_runner import is_due, run_due_schedules
from assetledger.models import DepreciationExecution, DepreciationSchedule, ExecutionLock, ExecutionStatus


def _schedule(**values) -> DepreciationSchedule:
    defaults = {"schedule_type": "MONTHLY", "execution_day": 30, "is_active": True}
    defaults.update(values)
    return DepreciationSchedule(**defaults)


class TestIsDue:
    def test_monthly_on_execution_day(self):
        assert is_due(_schedule(execution_day=15), date(2026, 4, 15))
        assert not is_due(_schedule(execution_day=15), date(2026, 4, 14))

    @pytest.mark.parametrize("today", [date(2026, 2, 28), date(2026, 4, 30)])
    def test_day_31_fires_on_last_day_of_short_months(self, today):
        assert is_due(_schedule(execution_day=31), today)

    def test_day_30_in_leap_february(self):
        assert is_due(_schedule(execution_day=30), date(2028, 2, 29))
        assert not is_due(_schedule(execution_day=30), date(2028, 2, 28))

    def test_quarterly_months(self):
        schedule = _schedule(schedule_type="QUARTERLY", execution_day=30)
        assert is_due(schedule, date(2026, 6, 30))
        assert not is_due(schedule, date(2026, 5, 30))

    def test_annually_in_december(self):
        schedule = _schedule(schedule_type="ANNUALLY", execution_day=31)
        assert is_due(schedule, date(2026, 12, 31))
        assert not is_due(schedule, date(2026, 11, 30))

    def test_inactive_never_due(self):
        assert not is_due(_schedule(is_active=False, execution_day=15), date(2026, 4, 15))


class TestRunDueSchedules:
    def _executor(self, session_factory, settings, clock_at, today):
        return DepreciationExecutor(session_factory, settings=settings, clock=clock_at(datetime.combine(today, time(23, 30))))

    def test_runs_due_schedule_once_per_day(self, db, session_factory, settings, clock_at, unit, make_asset, make_schedule):
        today = date(2026, 1, 31)
        make_asset(unit)
        due = make_schedule(unit, execution_day=31)
        make_schedule(unit, execution_day=15)
        make_schedule(unit, execution_day=31, is_active=False)
        executor = self._executor(session_factory, settings, clock_at, today)

        results = run_due_schedules(session_factory, executor, today=today)
        assert [r.schedule_id for r in results] == [due.id]
        assert results[0].summary.status is ExecutionStatus.COMPLETED
        assert results[0].summary.successful_calculations == 1

        assert run_due_schedules(session_factory, executor, today=today) == []
        assert db.scalar(select(func.count(DepreciationExecution.id))) == 1

    def test_busy_schedule_does_not_block_others(self, db, session_factory, settings, clock_at, make_unit, make_asset, make_schedule):
        today = date(2026, 1, 31)
        first_unit, second_unit = make_unit("First"), make_unit("Second")
        make_asset(first_unit)
        make_asset(second_unit)
        busy = make_schedule(first_unit, execution_day=31)
        free = make_schedule(second_unit, execution_day=31)
        db.add(ExecutionLock(lock_key=f"schedule:{busy.id}", execution_id=99, acquired_at=datetime(2026, 1, 31, 23, 0)))
        db.commit()

        executor = self._executor(session_factory, settings, clock_at, today)
        results = {r.schedule_id: r for r in run_due_schedules(session_factory, executor, today=today)}

        assert results[busy.id].summary is None
        assert "already in progress" in results[busy.id].error
        assert results[free.id].summary.status is ExecutionStatus.COMPLETED
