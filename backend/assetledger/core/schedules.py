"""
Schedule registry: create, edit, toggle and delete depreciation schedules.
All mutations require the administrative role; every lookup is scoped to the
business unit, so a schedule of another unit reads as not found.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from assetledger.core.depreciation import ScheduleType
from assetledger.core.eligibility import AssetFilter, affected_assets_summary
from assetledger.core.exceptions import NotFoundError, ValidationError
from assetledger.core.permissions import Actor, require_admin
from assetledger.models.asset import Asset, AssetCategory, BusinessUnit
from assetledger.models.execution import DepreciationExecution
from assetledger.models.schedule import DepreciationSchedule
from assetledger.utils.settings_loader import EngineSettings

logger = logging.getLogger(__name__)

NAME_MAX_LENGTH = 100
RECENT_EXECUTIONS = 20
EDITABLE_FIELDS = (
    "name",
    "description",
    "schedule_type",
    "execution_day",
    "include_categories",
    "exclude_categories",
    "is_active",
)


@dataclass(frozen=True)
class ScheduleListItem:
    schedule: DepreciationSchedule
    execution_count: int
    last_execution_date: datetime | None


@dataclass(frozen=True)
class ScheduleDetail:
    schedule: DepreciationSchedule
    execution_count: int
    recent_executions: list[DepreciationExecution]
    include_category_names: list[str]
    exclude_category_names: list[str]
    affected_asset_count: int
    affected_book_value: Decimal


@dataclass(frozen=True)
class CategoryOption:
    id: int
    name: str
    asset_count: int


def get_business_unit(db: Session, business_unit_id: int) -> BusinessUnit:
    unit = db.query(BusinessUnit).filter(BusinessUnit.id == business_unit_id).first()
    if not unit:
        raise NotFoundError("Business unit", business_unit_id)
    return unit


def get_schedule(db: Session, business_unit_id: int, schedule_id: int) -> DepreciationSchedule:
    schedule = (
        db.query(DepreciationSchedule)
        .filter(
            DepreciationSchedule.id == schedule_id,
            DepreciationSchedule.business_unit_id == business_unit_id,
        )
        .first()
    )
    if not schedule:
        raise NotFoundError("Depreciation schedule", schedule_id)
    return schedule


def _category_ids(values) -> list[int]:
    try:
        ids = sorted({int(v) for v in values or ()})
    except (TypeError, ValueError):
        raise ValidationError("Category ids must be integers")
    return ids


def validate_schedule(
    db: Session,
    business_unit_id: int,
    values: dict,
    schedule_id: int | None = None,
) -> dict:
    """Check and normalise a full set of schedule fields. Returns the cleaned values."""
    name = (values.get("name") or "").strip()
    if not name:
        raise ValidationError("Schedule name is required")
    if len(name) > NAME_MAX_LENGTH:
        raise ValidationError(f"Schedule name must be at most {NAME_MAX_LENGTH} characters")

    try:
        schedule_type = ScheduleType(values.get("schedule_type")).value
    except ValueError:
        raise ValidationError(
            f"Unknown schedule type: {values.get('schedule_type')} "
            f"(expected one of {', '.join(t.value for t in ScheduleType)})"
        )

    execution_day = values.get("execution_day")
    if not isinstance(execution_day, int) or isinstance(execution_day, bool) or not 1 <= execution_day <= 31:
        raise ValidationError("Execution day must be between 1 and 31")

    include = _category_ids(values.get("include_categories"))
    exclude = _category_ids(values.get("exclude_categories"))
    overlap = set(include) & set(exclude)
    if overlap:
        raise ValidationError(
            f"Categories cannot be both included and excluded: {', '.join(map(str, sorted(overlap)))}"
        )

    requested = set(include) | set(exclude)
    if requested:
        known = {
            row.id
            for row in db.query(AssetCategory.id).filter(
                AssetCategory.business_unit_id == business_unit_id,
                AssetCategory.id.in_(requested),
            )
        }
        unknown = requested - known
        if unknown:
            raise ValidationError(
                f"Unknown categories for this business unit: {', '.join(map(str, sorted(unknown)))}"
            )

    duplicate = db.query(DepreciationSchedule.id).filter(
        DepreciationSchedule.business_unit_id == business_unit_id,
        DepreciationSchedule.name == name,
    )
    if schedule_id is not None:
        duplicate = duplicate.filter(DepreciationSchedule.id != schedule_id)
    if duplicate.first():
        raise ValidationError(f"A schedule named '{name}' already exists")

    return {
        "name": name,
        "description": values.get("description"),
        "schedule_type": schedule_type,
        "execution_day": execution_day,
        "include_categories": include,
        "exclude_categories": exclude,
        "is_active": bool(values.get("is_active", True)),
    }


def _commit(db: Session, name: str):
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError(f"A schedule named '{name}' already exists")


def create_schedule(
    db: Session, actor: Actor, business_unit_id: int, values: dict, settings: EngineSettings
) -> DepreciationSchedule:
    require_admin(actor, settings)
    get_business_unit(db, business_unit_id)
    cleaned = validate_schedule(db, business_unit_id, values)

    schedule = DepreciationSchedule(business_unit_id=business_unit_id, created_by=actor.user_id, **cleaned)
    db.add(schedule)
    _commit(db, cleaned["name"])
    db.refresh(schedule)
    logger.info(f"Schedule {schedule.id} '{schedule.name}' created by user {actor.user_id}")
    return schedule


def update_schedule(
    db: Session,
    actor: Actor,
    business_unit_id: int,
    schedule_id: int,
    changes: dict,
    settings: EngineSettings,
) -> DepreciationSchedule:
    """Apply a partial update. The merged result is validated as a whole."""
    require_admin(actor, settings)
    schedule = get_schedule(db, business_unit_id, schedule_id)

    merged = {field: getattr(schedule, field) for field in EDITABLE_FIELDS}
    merged.update({k: v for k, v in changes.items() if k in EDITABLE_FIELDS})
    cleaned = validate_schedule(db, business_unit_id, merged, schedule_id=schedule.id)

    for field, value in cleaned.items():
        setattr(schedule, field, value)
    _commit(db, cleaned["name"])
    db.refresh(schedule)
    logger.info(f"Schedule {schedule.id} updated by user {actor.user_id}")
    return schedule


def set_schedule_active(
    db: Session,
    actor: Actor,
    business_unit_id: int,
    schedule_id: int,
    is_active: bool,
    settings: EngineSettings,
) -> DepreciationSchedule:
    require_admin(actor, settings)
    schedule = get_schedule(db, business_unit_id, schedule_id)
    schedule.is_active = is_active
    db.commit()
    db.refresh(schedule)
    logger.info(f"Schedule {schedule.id} {'activated' if is_active else 'deactivated'} by user {actor.user_id}")
    return schedule


def delete_schedule(
    db: Session, actor: Actor, business_unit_id: int, schedule_id: int, settings: EngineSettings
) -> None:
    """Delete a schedule together with its execution history."""
    require_admin(actor, settings)
    schedule = get_schedule(db, business_unit_id, schedule_id)
    db.delete(schedule)
    db.commit()
    logger.info(f"Schedule {schedule_id} deleted by user {actor.user_id}")


def list_schedules(db: Session, business_unit_id: int) -> list[ScheduleListItem]:
    stats = (
        db.query(
            DepreciationExecution.schedule_id.label("schedule_id"),
            func.count(DepreciationExecution.id).label("execution_count"),
            func.max(DepreciationExecution.execution_date).label("last_execution_date"),
        )
        .filter(DepreciationExecution.business_unit_id == business_unit_id)
        .group_by(DepreciationExecution.schedule_id)
        .subquery()
    )
    rows = (
        db.query(DepreciationSchedule, stats.c.execution_count, stats.c.last_execution_date)
        .outerjoin(stats, stats.c.schedule_id == DepreciationSchedule.id)
        .filter(DepreciationSchedule.business_unit_id == business_unit_id)
        .order_by(DepreciationSchedule.name)
        .all()
    )
    return [
        ScheduleListItem(schedule=schedule, execution_count=count or 0, last_execution_date=last)
        for schedule, count, last in rows
    ]


def _category_names(db: Session, ids) -> list[str]:
    if not ids:
        return []
    return [
        name
        for (name,) in db.query(AssetCategory.name)
        .filter(AssetCategory.id.in_(ids))
        .order_by(AssetCategory.name)
    ]


def get_schedule_detail(db: Session, business_unit_id: int, schedule_id: int) -> ScheduleDetail:
    schedule = get_schedule(db, business_unit_id, schedule_id)
    execution_count = (
        db.query(func.count(DepreciationExecution.id))
        .filter(DepreciationExecution.schedule_id == schedule.id)
        .scalar()
    )
    recent = (
        db.query(DepreciationExecution)
        .filter(DepreciationExecution.schedule_id == schedule.id)
        .order_by(DepreciationExecution.execution_date.desc(), DepreciationExecution.id.desc())
        .limit(RECENT_EXECUTIONS)
        .all()
    )
    count, book_value = affected_assets_summary(db, AssetFilter.for_schedule(schedule, run_date=None))
    return ScheduleDetail(
        schedule=schedule,
        execution_count=execution_count,
        recent_executions=recent,
        include_category_names=_category_names(db, schedule.include_categories),
        exclude_category_names=_category_names(db, schedule.exclude_categories),
        affected_asset_count=count,
        affected_book_value=book_value,
    )


def list_categories(db: Session, business_unit_id: int) -> list[CategoryOption]:
    """Categories of the unit with their active asset counts, for the include/exclude picker."""
    rows = (
        db.query(AssetCategory.id, AssetCategory.name, func.count(Asset.id))
        .outerjoin(Asset, (Asset.category_id == AssetCategory.id) & Asset.is_active.is_(True))
        .filter(AssetCategory.business_unit_id == business_unit_id)
        .group_by(AssetCategory.id, AssetCategory.name)
        .order_by(AssetCategory.name)
        .all()
    )
    return [CategoryOption(id=cid, name=name, asset_count=count) for cid, name, count in rows]
