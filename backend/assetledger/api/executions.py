import logging
from datetime import date, datetime
from decimal import Decimal

from fastapi import APIRouter, BackgroundTasks, Depends, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from assetledger.api.deps import get_actor, get_business_unit_id, get_engine_settings, get_executor
from assetledger.core.exceptions import DepreciationError, ValidationError
from assetledger.core.executor import DepreciationExecutor, RunHandle
from assetledger.core.history import ExecutionFilter, get_execution_detail, lifetime_summary, list_executions
from assetledger.core.permissions import Actor
from assetledger.db.database import get_db
from assetledger.models.execution import ExecutionStatus
from assetledger.utils.settings_loader import EngineSettings

logger = logging.getLogger(__name__)

router = APIRouter()


class TriggerRequest(BaseModel):
    asset_ids: list[int] | None = None
    include_categories: list[int] = []
    exclude_categories: list[int] = []
    run_date: date | None = None
    # units consumed this period, per asset id (units-of-production assets)
    usage: dict[int, Decimal] = {}

    @field_validator("usage")
    @classmethod
    def usage_not_negative(cls, v):
        for asset_id, units in v.items():
            if units < 0:
                raise ValueError(f"Usage for asset {asset_id} cannot be negative.")
        return v


class RunAccepted(BaseModel):
    execution_id: int
    status: ExecutionStatus
    lock_key: str
    run_date: date


class ExecutionResponse(BaseModel):
    id: int
    schedule_id: int | None
    business_unit_id: int
    execution_date: datetime
    run_date: date
    status: ExecutionStatus
    total_assets_processed: int
    successful_calculations: int
    failed_calculations: int
    skipped_calculations: int
    total_depreciation_amount: Decimal
    execution_duration_ms: int | None
    error_message: str | None
    executor_id: int | None
    completed_at: datetime | None

    model_config = {"from_attributes": True}


class ExecutionListItem(ExecutionResponse):
    schedule_name: str | None = None


class ExecutionPage(BaseModel):
    items: list[ExecutionListItem]
    total: int
    page: int
    limit: int
    pages: int


class ExecutionAssetResponse(BaseModel):
    id: int
    asset_id: int | None
    item_code: str | None
    description: str | None
    category_name: str | None
    status: str
    depreciation_amount: Decimal
    book_value_before: Decimal
    book_value_after: Decimal
    error_message: str | None
    calculation_details: dict | None


class ExecutionDetailResponse(ExecutionResponse):
    schedule_name: str | None = None
    assets: list[ExecutionAssetResponse]
    failed_assets: list[ExecutionAssetResponse]


class SummaryResponse(BaseModel):
    total_executions: int
    total_assets_processed: int
    total_successful_calculations: int
    total_depreciation_amount: Decimal


def _asset_row(detail) -> ExecutionAssetResponse:
    asset = detail.asset
    return ExecutionAssetResponse(
        id=detail.id,
        asset_id=detail.asset_id,
        item_code=asset.item_code if asset else None,
        description=asset.description if asset else None,
        category_name=asset.category.name if asset and asset.category else None,
        status=detail.status,
        depreciation_amount=detail.depreciation_amount,
        book_value_before=detail.book_value_before,
        book_value_after=detail.book_value_after,
        error_message=detail.error_message,
        calculation_details=detail.calculation_details,
    )


def process_in_background(executor: DepreciationExecutor, handle: RunHandle):
    try:
        executor.process(handle)
    except DepreciationError:
        logger.exception(f"Background run of execution {handle.execution_id} failed")


def accept_run(handle: RunHandle, executor: DepreciationExecutor, background_tasks: BackgroundTasks) -> RunAccepted:
    background_tasks.add_task(process_in_background, executor, handle)
    return RunAccepted(
        execution_id=handle.execution_id,
        status=ExecutionStatus.RUNNING,
        lock_key=handle.lock_key,
        run_date=handle.run_date,
    )


@router.post("/trigger", response_model=RunAccepted, status_code=status.HTTP_202_ACCEPTED)
def trigger_run(
    data: TriggerRequest,
    background_tasks: BackgroundTasks,
    business_unit_id: int = Depends(get_business_unit_id),
    actor: Actor = Depends(get_actor),
    executor: DepreciationExecutor = Depends(get_executor),
):
    """
    Start an ad-hoc run for the business unit. The run is registered (lock taken,
    execution RUNNING) before the response; assets are processed in the background.
    """
    overlap = set(data.include_categories) & set(data.exclude_categories)
    if overlap:
        raise ValidationError("Categories cannot be both included and excluded.")

    handle = executor.start_manual(
        actor,
        business_unit_id,
        run_date=data.run_date,
        asset_ids=data.asset_ids,
        include_categories=data.include_categories,
        exclude_categories=data.exclude_categories,
        usage=data.usage,
    )
    return accept_run(handle, executor, background_tasks)


@router.get("/", response_model=ExecutionPage)
def list_runs(
    status: ExecutionStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    schedule_id: int | None = None,
    page: int = 1,
    limit: int | None = None,
    business_unit_id: int = Depends(get_business_unit_id),
    settings: EngineSettings = Depends(get_engine_settings),
    db: Session = Depends(get_db),
):
    result = list_executions(
        db,
        business_unit_id,
        ExecutionFilter(status=status, date_from=date_from, date_to=date_to, schedule_id=schedule_id),
        page=page,
        limit=limit or settings.default_page_size,
        max_limit=settings.max_page_size,
    )
    items = [
        ExecutionListItem.model_validate(row.execution).model_copy(update={"schedule_name": row.schedule_name})
        for row in result.items
    ]
    return ExecutionPage(items=items, total=result.total, page=result.page, limit=result.limit, pages=result.pages)


@router.get("/summary", response_model=SummaryResponse)
def get_summary(business_unit_id: int = Depends(get_business_unit_id), db: Session = Depends(get_db)):
    return lifetime_summary(db, business_unit_id)


@router.get("/{execution_id}", response_model=ExecutionDetailResponse)
def get_run(execution_id: int, business_unit_id: int = Depends(get_business_unit_id), db: Session = Depends(get_db)):
    detail = get_execution_detail(db, business_unit_id, execution_id)
    base = ExecutionResponse.model_validate(detail.execution).model_dump()
    return ExecutionDetailResponse(
        **base,
        schedule_name=detail.schedule_name,
        assets=[_asset_row(d) for d in detail.details],
        failed_assets=[_asset_row(d) for d in detail.failed],
    )
