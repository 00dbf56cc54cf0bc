"""
Read side of the execution ledger: run history, run detail, lifetime summary,
per-asset ledger history and projections. Nothing here writes.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload

from assetledger.core.depreciation import AssetState, ScheduleEntry, project_schedule
from assetledger.core.exceptions import NotFoundError, ValidationError
from assetledger.models.asset import Asset
from assetledger.models.execution import (
    AssetDepreciationDetail,
    DepreciationExecution,
    DetailStatus,
    ExecutionStatus,
)
from assetledger.models.ledger import AssetDepreciation
from assetledger.models.schedule import DepreciationSchedule

SUMMARY_STATUSES = (ExecutionStatus.COMPLETED.value, ExecutionStatus.COMPLETED_WITH_ERRORS.value)


@dataclass(frozen=True)
class ExecutionFilter:
    status: ExecutionStatus | None = None
    date_from: date | None = None
    date_to: date | None = None
    schedule_id: int | None = None


@dataclass(frozen=True)
class Page:
    items: list
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


@dataclass(frozen=True)
class ExecutionRow:
    execution: DepreciationExecution
    schedule_name: str | None


@dataclass(frozen=True)
class ExecutionDetail:
    execution: DepreciationExecution
    schedule_name: str | None
    details: list[AssetDepreciationDetail]
    failed: list[AssetDepreciationDetail]


@dataclass(frozen=True)
class LifetimeSummary:
    total_executions: int
    total_assets_processed: int
    total_successful_calculations: int
    total_depreciation_amount: Decimal


def _filter_conditions(business_unit_id: int, execution_filter: ExecutionFilter) -> list:
    conditions = [DepreciationExecution.business_unit_id == business_unit_id]
    if execution_filter.status is not None:
        conditions.append(DepreciationExecution.status == ExecutionStatus(execution_filter.status).value)
    if execution_filter.schedule_id is not None:
        conditions.append(DepreciationExecution.schedule_id == execution_filter.schedule_id)
    if execution_filter.date_from is not None:
        conditions.append(
            DepreciationExecution.execution_date >= datetime.combine(execution_filter.date_from, time.min)
        )
    if execution_filter.date_to is not None:
        # inclusive of the whole end day
        end = datetime.combine(execution_filter.date_to + timedelta(days=1), time.min)
        conditions.append(DepreciationExecution.execution_date < end)
    return conditions


def list_executions(
    db: Session,
    business_unit_id: int,
    execution_filter: ExecutionFilter | None = None,
    page: int = 1,
    limit: int = 20,
    max_limit: int = 100,
) -> Page:
    """Executions of a business unit, newest first, with the schedule name."""
    execution_filter = execution_filter or ExecutionFilter()
    if page < 1:
        raise ValidationError("page must be at least 1")
    if limit < 1:
        raise ValidationError("limit must be at least 1")
    limit = min(limit, max_limit)

    if (
        execution_filter.date_from is not None
        and execution_filter.date_to is not None
        and execution_filter.date_from > execution_filter.date_to
    ):
        raise ValidationError("date_from must not be after date_to")

    conditions = _filter_conditions(business_unit_id, execution_filter)
    total = db.scalar(select(func.count(DepreciationExecution.id)).where(*conditions))
    rows = db.execute(
        select(DepreciationExecution, DepreciationSchedule.name)
        .outerjoin(DepreciationSchedule, DepreciationExecution.schedule_id == DepreciationSchedule.id)
        .where(*conditions)
        .order_by(DepreciationExecution.execution_date.desc(), DepreciationExecution.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    return Page(
        items=[ExecutionRow(execution=execution, schedule_name=name) for execution, name in rows],
        total=total,
        page=page,
        limit=limit,
    )


def get_execution_detail(db: Session, business_unit_id: int, execution_id: int) -> ExecutionDetail:
    execution = db.scalar(
        select(DepreciationExecution)
        .options(joinedload(DepreciationExecution.schedule))
        .where(
            DepreciationExecution.id == execution_id,
            DepreciationExecution.business_unit_id == business_unit_id,
        )
    )
    if execution is None:
        raise NotFoundError("Depreciation execution", execution_id)

    details = list(
        db.scalars(
            select(AssetDepreciationDetail)
            .options(joinedload(AssetDepreciationDetail.asset).joinedload(Asset.category))
            .where(AssetDepreciationDetail.execution_id == execution_id)
            .order_by(AssetDepreciationDetail.id)
        ).unique()
    )
    return ExecutionDetail(
        execution=execution,
        schedule_name=execution.schedule.name if execution.schedule else None,
        details=details,
        failed=[d for d in details if d.status == DetailStatus.FAILED.value],
    )


def lifetime_summary(db: Session, business_unit_id: int) -> LifetimeSummary:
    """Totals over finished runs. FAILED and RUNNING executions are not counted."""
    count, processed, successful, amount = db.execute(
        select(
            func.count(DepreciationExecution.id),
            func.coalesce(func.sum(DepreciationExecution.total_assets_processed), 0),
            func.coalesce(func.sum(DepreciationExecution.successful_calculations), 0),
            func.coalesce(func.sum(DepreciationExecution.total_depreciation_amount), 0),
        ).where(
            DepreciationExecution.business_unit_id == business_unit_id,
            DepreciationExecution.status.in_(SUMMARY_STATUSES),
        )
    ).one()
    return LifetimeSummary(
        total_executions=count,
        total_assets_processed=int(processed),
        total_successful_calculations=int(successful),
        total_depreciation_amount=Decimal(str(amount)).quantize(Decimal("0.01")),
    )


def get_asset(db: Session, business_unit_id: int, asset_id: int) -> Asset:
    asset = db.scalar(
        select(Asset)
        .options(joinedload(Asset.category))
        .where(Asset.id == asset_id, Asset.business_unit_id == business_unit_id)
    )
    if asset is None:
        raise NotFoundError("Asset", asset_id)
    return asset


def asset_ledger(db: Session, business_unit_id: int, asset_id: int) -> list[AssetDepreciation]:
    get_asset(db, business_unit_id, asset_id)
    return list(
        db.scalars(
            select(AssetDepreciation)
            .where(AssetDepreciation.asset_id == asset_id)
            .order_by(
                AssetDepreciation.period_year.desc(),
                AssetDepreciation.period_month.desc(),
                AssetDepreciation.id.desc(),
            )
        )
    )


def asset_projection(
    db: Session, business_unit_id: int, asset_id: int, declining_factor: Decimal = Decimal("2")
) -> list[ScheduleEntry]:
    """Booked ledger periods followed by the projected remaining months. Read only."""
    asset = get_asset(db, business_unit_id, asset_id)
    entries = db.scalars(
        select(AssetDepreciation)
        .where(AssetDepreciation.asset_id == asset_id)
        .order_by(AssetDepreciation.depreciation_date, AssetDepreciation.id)
    )

    elapsed = asset.prior_depreciation_months or 0
    booked = []
    for entry in entries:
        elapsed += entry.months_covered
        booked.append(
            ScheduleEntry(
                period=elapsed,
                date=entry.depreciation_date,
                depreciation_amount=Decimal(entry.depreciation_amount),
                accumulated_depreciation=Decimal(entry.accumulated_depreciation),
                book_value=Decimal(entry.book_value_end),
                is_completed=True,
            )
        )

    state = AssetState(
        purchase_price=asset.purchase_price,
        salvage_value=Decimal(asset.salvage_value or 0),
        current_book_value=asset.current_book_value,
        accumulated_depreciation=Decimal(asset.accumulated_depreciation or 0),
        useful_life_months=asset.useful_life.total_months,
        elapsed_months=elapsed,
        depreciation_rate=asset.depreciation_rate,
        total_expected_units=asset.total_expected_units,
    )
    start_date = asset.next_depreciation_date or asset.depreciation_start_date or date.today()
    return booked + project_schedule(state, asset.depreciation_method, start_date, declining_factor)
