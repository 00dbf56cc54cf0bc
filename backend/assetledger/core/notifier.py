"""
Due-work notifier. Stateless: how often the reminder is shown is up to the UI.
"""
import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload

from assetledger.core.depreciation import UsefulLife
from assetledger.core.eligibility import due_date_column, due_on
from assetledger.models.asset import Asset

logger = logging.getLogger(__name__)


def _due_conditions(business_unit_id: int, today: date) -> list:
    return [
        Asset.business_unit_id == business_unit_id,
        Asset.is_active.is_(True),
        Asset.depreciation_method.is_not(None),
        Asset.is_fully_depreciated.is_(False),
        due_on(today),
    ]


def due_asset_count(db: Session, business_unit_id: int, today: date | None = None) -> int:
    today = today or date.today()
    return db.scalar(select(func.count(Asset.id)).where(*_due_conditions(business_unit_id, today)))


def due_assets(db: Session, business_unit_id: int, today: date | None = None) -> list[Asset]:
    """Assets the next run on `today` would pick up, oldest due first."""
    today = today or date.today()
    query = (
        select(Asset)
        .options(joinedload(Asset.category))
        .where(*_due_conditions(business_unit_id, today))
        .order_by(due_date_column(), Asset.item_code)
    )
    return list(db.scalars(query).unique())


@dataclass(frozen=True)
class ReviewItem:
    asset: Asset
    useful_life: UsefulLife


def useful_life_review(db: Session, business_unit_id: int) -> list[ReviewItem]:
    """Assets whose legacy useful-life pair is ambiguous and needs a person to confirm it."""
    # only rows with months > 12 and years set can be ambiguous; the rest is decided in Python
    candidates = db.scalars(
        select(Asset)
        .options(joinedload(Asset.category))
        .where(
            Asset.business_unit_id == business_unit_id,
            Asset.is_active.is_(True),
            Asset.useful_life_months > 12,
            Asset.useful_life_years > 0,
        )
        .order_by(Asset.item_code)
    ).unique()

    items = []
    for asset in candidates:
        life = asset.useful_life
        if life.needs_review:
            items.append(ReviewItem(asset=asset, useful_life=life))
    if items:
        logger.warning(f"Business unit {business_unit_id}: {len(items)} assets need a useful-life review")
    return items
