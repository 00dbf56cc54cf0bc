from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from assetledger.api.deps import get_actor, get_business_unit_id, get_engine_settings
from assetledger.core.exceptions import PermissionDeniedError
from assetledger.core.history import asset_ledger, asset_projection
from assetledger.core.notifier import due_asset_count, due_assets, useful_life_review
from assetledger.core.permissions import Actor, can_see_due_work
from assetledger.db.database import get_db
from assetledger.utils.settings_loader import EngineSettings

router = APIRouter()


class DueAssetResponse(BaseModel):
    id: int
    item_code: str
    description: str
    category_name: str | None
    depreciation_method: str | None
    current_book_value: Decimal
    monthly_depreciation: Decimal | None
    next_depreciation_date: date | None
    last_depreciation_date: date | None


class DueAssetsResponse(BaseModel):
    count: int
    assets: list[DueAssetResponse]


class DueCountResponse(BaseModel):
    count: int


class UsefulLifeReviewResponse(BaseModel):
    id: int
    item_code: str
    description: str
    useful_life_years: int | None
    useful_life_months: int | None
    total_months: int
    reason: str | None


class ProjectionEntryResponse(BaseModel):
    period: int
    date: date
    depreciation_amount: Decimal
    accumulated_depreciation: Decimal
    book_value: Decimal
    is_completed: bool


class LedgerEntryResponse(BaseModel):
    id: int
    execution_id: int | None
    depreciation_date: date
    period_year: int
    period_month: int
    months_covered: int
    method: str
    book_value_start: Decimal
    depreciation_amount: Decimal
    book_value_end: Decimal
    accumulated_depreciation: Decimal
    notes: str | None

    model_config = {"from_attributes": True}


def _require_due_work_role(actor: Actor, settings: EngineSettings):
    if not can_see_due_work(actor, settings):
        raise PermissionDeniedError("Your role does not receive depreciation reminders")


@router.get("/due", response_model=DueAssetsResponse)
def list_due_assets(
    business_unit_id: int = Depends(get_business_unit_id),
    actor: Actor = Depends(get_actor),
    settings: EngineSettings = Depends(get_engine_settings),
    db: Session = Depends(get_db),
):
    _require_due_work_role(actor, settings)
    assets = due_assets(db, business_unit_id)
    return DueAssetsResponse(
        count=len(assets),
        assets=[
            DueAssetResponse(
                id=a.id,
                item_code=a.item_code,
                description=a.description,
                category_name=a.category.name if a.category else None,
                depreciation_method=a.depreciation_method,
                current_book_value=a.book_value,
                monthly_depreciation=a.monthly_depreciation,
                next_depreciation_date=a.next_depreciation_date,
                last_depreciation_date=a.last_depreciation_date,
            )
            for a in assets
        ],
    )


@router.get("/due/count", response_model=DueCountResponse)
def count_due_assets(
    business_unit_id: int = Depends(get_business_unit_id),
    actor: Actor = Depends(get_actor),
    settings: EngineSettings = Depends(get_engine_settings),
    db: Session = Depends(get_db),
):
    _require_due_work_role(actor, settings)
    return DueCountResponse(count=due_asset_count(db, business_unit_id))


@router.get("/useful-life-review", response_model=list[UsefulLifeReviewResponse])
def list_useful_life_review(business_unit_id: int = Depends(get_business_unit_id), db: Session = Depends(get_db)):
    return [
        UsefulLifeReviewResponse(
            id=item.asset.id,
            item_code=item.asset.item_code,
            description=item.asset.description,
            useful_life_years=item.asset.useful_life_years,
            useful_life_months=item.asset.useful_life_months,
            total_months=item.useful_life.total_months,
            reason=item.useful_life.reason,
        )
        for item in useful_life_review(db, business_unit_id)
    ]


@router.get("/{asset_id}/projection", response_model=list[ProjectionEntryResponse])
def get_projection(
    asset_id: int,
    business_unit_id: int = Depends(get_business_unit_id),
    settings: EngineSettings = Depends(get_engine_settings),
    db: Session = Depends(get_db),
):
    """Month-by-month schedule over the remaining useful life. Nothing is written."""
    return asset_projection(db, business_unit_id, asset_id, settings.declining_balance_factor)


@router.get("/{asset_id}/ledger", response_model=list[LedgerEntryResponse])
def get_ledger(asset_id: int, business_unit_id: int = Depends(get_business_unit_id), db: Session = Depends(get_db)):
    return asset_ledger(db, business_unit_id, asset_id)
