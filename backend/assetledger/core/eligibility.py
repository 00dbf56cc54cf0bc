"""
Eligibility selector: which assets a run depreciates.
Filters are an explicit value type, not a dictionary assembled per query.
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from assetledger.models.asset import Asset
from assetledger.models.schedule import DepreciationSchedule


def due_date_column():
    """Next depreciation date, or the start date for an asset that was never depreciated."""
    return func.coalesce(Asset.next_depreciation_date, Asset.depreciation_start_date)


def due_on(run_date: date):
    due_date = due_date_column()
    return and_(due_date.is_not(None), due_date <= run_date)


@dataclass(frozen=True)
class AssetFilter:
    business_unit_id: int
    # None: ignore due dates (schedule previews)
    run_date: date | None = None
    include_categories: frozenset[int] = frozenset()
    exclude_categories: frozenset[int] = frozenset()
    # explicit selection: every listed asset is attempted, set up or not
    asset_ids: frozenset[int] | None = None

    @classmethod
    def for_schedule(cls, schedule: DepreciationSchedule, run_date: date | None) -> "AssetFilter":
        return cls(
            business_unit_id=schedule.business_unit_id,
            run_date=run_date,
            include_categories=frozenset(schedule.include_categories or ()),
            exclude_categories=frozenset(schedule.exclude_categories or ()),
        )

    @classmethod
    def ad_hoc(
        cls,
        business_unit_id: int,
        run_date: date,
        asset_ids=None,
        include_categories=(),
        exclude_categories=(),
    ) -> "AssetFilter":
        return cls(
            business_unit_id=business_unit_id,
            run_date=run_date,
            include_categories=frozenset(include_categories or ()),
            exclude_categories=frozenset(exclude_categories or ()),
            asset_ids=frozenset(asset_ids) if asset_ids else None,
        )


def _conditions(asset_filter: AssetFilter) -> list:
    conditions = [
        Asset.business_unit_id == asset_filter.business_unit_id,
        Asset.is_active.is_(True),
        Asset.is_fully_depreciated.is_(False),
    ]

    if asset_filter.asset_ids is not None:
        conditions.append(Asset.id.in_(asset_filter.asset_ids))
    else:
        conditions.append(Asset.depreciation_method.is_not(None))
        if asset_filter.run_date is not None:
            conditions.append(due_on(asset_filter.run_date))

    if asset_filter.include_categories:
        conditions.append(Asset.category_id.in_(asset_filter.include_categories))
    if asset_filter.exclude_categories:
        conditions.append(Asset.category_id.not_in(asset_filter.exclude_categories))
    return conditions


def select_eligible_asset_ids(db: Session, asset_filter: AssetFilter) -> list[int]:
    query = select(Asset.id).where(*_conditions(asset_filter)).order_by(Asset.item_code, Asset.id)
    return list(db.scalars(query))


def affected_assets_summary(db: Session, asset_filter: AssetFilter) -> tuple[int, Decimal]:
    """Count and total book value of the assets a filter covers."""
    book_value = func.coalesce(Asset.current_book_value, Asset.purchase_price, 0)
    count, total = db.execute(
        select(func.count(Asset.id), func.coalesce(func.sum(book_value), 0)).where(*_conditions(asset_filter))
    ).one()
    return count, Decimal(str(total))
