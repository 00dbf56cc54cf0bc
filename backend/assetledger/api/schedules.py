from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, BackgroundTasks, Depends, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from assetledger.api.deps import get_actor, get_business_unit_id, get_engine_settings, get_executor
from assetledger.api.executions import ExecutionResponse, RunAccepted, accept_run
from assetledger.core import schedules as registry
from assetledger.core.executor import DepreciationExecutor
from assetledger.core.permissions import Actor
from assetledger.db.database import get_db
from assetledger.utils.settings_loader import EngineSettings

router = APIRouter()


class ScheduleCreate(BaseModel):
    name: str
    description: str | None = None
    schedule_type: str = "MONTHLY"
    execution_day: int = 30
    include_categories: list[int] = []
    exclude_categories: list[int] = []
    is_active: bool = True

    @field_validator("schedule_type")
    @classmethod
    def upper_schedule_type(cls, v):
        return v.strip().upper()


class ScheduleUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    schedule_type: str | None = None
    execution_day: int | None = None
    include_categories: list[int] | None = None
    exclude_categories: list[int] | None = None
    is_active: bool | None = None

    @field_validator("schedule_type")
    @classmethod
    def upper_schedule_type(cls, v):
        return v.strip().upper() if v else v


class ActiveToggle(BaseModel):
    is_active: bool


class ScheduleResponse(BaseModel):
    id: int
    business_unit_id: int
    name: str
    description: str | None
    schedule_type: str
    execution_day: int
    include_categories: list[int]
    exclude_categories: list[int]
    is_active: bool
    created_by: int | None
    created_at: datetime | None
    updated_at: datetime | None

    model_config = {"from_attributes": True}


class ScheduleListResponse(ScheduleResponse):
    execution_count: int = 0
    last_execution_date: datetime | None = None


class ScheduleDetailResponse(ScheduleResponse):
    execution_count: int
    recent_executions: list[ExecutionResponse]
    include_category_names: list[str]
    exclude_category_names: list[str]
    affected_asset_count: int
    affected_book_value: Decimal


class CategoryResponse(BaseModel):
    id: int
    name: str
    asset_count: int


@router.get("/", response_model=list[ScheduleListResponse])
def list_schedules(business_unit_id: int = Depends(get_business_unit_id), db: Session = Depends(get_db)):
    return [
        ScheduleListResponse.model_validate(item.schedule).model_copy(
            update={"execution_count": item.execution_count, "last_execution_date": item.last_execution_date}
        )
        for item in registry.list_schedules(db, business_unit_id)
    ]


@router.post("/", response_model=ScheduleResponse, status_code=status.HTTP_201_CREATED)
def create_schedule(
    data: ScheduleCreate,
    business_unit_id: int = Depends(get_business_unit_id),
    actor: Actor = Depends(get_actor),
    settings: EngineSettings = Depends(get_engine_settings),
    db: Session = Depends(get_db),
):
    return registry.create_schedule(db, actor, business_unit_id, data.model_dump(), settings)


@router.get("/categories", response_model=list[CategoryResponse])
def list_categories(business_unit_id: int = Depends(get_business_unit_id), db: Session = Depends(get_db)):
    """Categories available to the include/exclude filters."""
    return registry.list_categories(db, business_unit_id)


@router.get("/{schedule_id}", response_model=ScheduleDetailResponse)
def get_schedule(schedule_id: int, business_unit_id: int = Depends(get_business_unit_id), db: Session = Depends(get_db)):
    detail = registry.get_schedule_detail(db, business_unit_id, schedule_id)
    base = ScheduleResponse.model_validate(detail.schedule).model_dump()
    return ScheduleDetailResponse(
        **base,
        execution_count=detail.execution_count,
        recent_executions=[ExecutionResponse.model_validate(e) for e in detail.recent_executions],
        include_category_names=detail.include_category_names,
        exclude_category_names=detail.exclude_category_names,
        affected_asset_count=detail.affected_asset_count,
        affected_book_value=detail.affected_book_value,
    )


@router.put("/{schedule_id}", response_model=ScheduleResponse)
def update_schedule(
    schedule_id: int,
    data: ScheduleUpdate,
    business_unit_id: int = Depends(get_business_unit_id),
    actor: Actor = Depends(get_actor),
    settings: EngineSettings = Depends(get_engine_settings),
    db: Session = Depends(get_db),
):
    changes = data.model_dump(exclude_unset=True)
    return registry.update_schedule(db, actor, business_unit_id, schedule_id, changes, settings)


@router.patch("/{schedule_id}/active", response_model=ScheduleResponse)
def toggle_schedule(
    schedule_id: int,
    data: ActiveToggle,
    business_unit_id: int = Depends(get_business_unit_id),
    actor: Actor = Depends(get_actor),
    settings: EngineSettings = Depends(get_engine_settings),
    db: Session = Depends(get_db),
):
    return registry.set_schedule_active(db, actor, business_unit_id, schedule_id, data.is_active, settings)


@router.delete("/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_schedule(
    schedule_id: int,
    business_unit_id: int = Depends(get_business_unit_id),
    actor: Actor = Depends(get_actor),
    settings: EngineSettings = Depends(get_engine_settings),
    db: Session = Depends(get_db),
):
    registry.delete_schedule(db, actor, business_unit_id, schedule_id, settings)


@router.post("/{schedule_id}/run", response_model=RunAccepted, status_code=status.HTTP_202_ACCEPTED)
def run_schedule_now(
    schedule_id: int,
    background_tasks: BackgroundTasks,
    business_unit_id: int = Depends(get_business_unit_id),
    actor: Actor = Depends(get_actor),
    executor: DepreciationExecutor = Depends(get_executor),
):
    """Run a schedule immediately. Shares the schedule's lock with the daily job."""
    handle = executor.start_manual(actor, business_unit_id, schedule_id=schedule_id)
    return accept_run(handle, executor, background_tasks)
