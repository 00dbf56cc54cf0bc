"""
Seed script: loads sample_assets.json into the database.
Usage: python -m assetledger.db.seed
"""
import json
from datetime import date
from decimal import Decimal
from pathlib import Path

from sqlalchemy.orm import Session

from assetledger.db.database import SessionLocal, init_db
from assetledger.models import Asset, AssetCategory, BusinessUnit, DepreciationSchedule

DATASET_PATH = Path(__file__).parent.parent.parent / "tests" / "fixtures" / "sample_assets.json"


def _optional_date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


def _optional_decimal(value: str | None) -> Decimal | None:
    return Decimal(value) if value is not None else None


def load_dataset(db: Session, data: dict) -> BusinessUnit:
    unit_data = data["business_unit"]
    unit = BusinessUnit(name=unit_data["name"], code=unit_data["code"])
    db.add(unit)
    db.flush()

    categories = {}
    for name in data["categories"]:
        category = AssetCategory(business_unit_id=unit.id, name=name)
        db.add(category)
        categories[name] = category
    db.flush()

    for item in data["assets"]:
        start = _optional_date(item.get("depreciation_start_date"))
        db.add(Asset(
            business_unit_id=unit.id,
            category_id=categories[item["category"]].id,
            item_code=item["item_code"],
            description=item["description"],
            purchase_price=Decimal(item["purchase_price"]),
            salvage_value=Decimal(item.get("salvage_value", "0")),
            useful_life_years=item.get("useful_life_years"),
            useful_life_months=item.get("useful_life_months"),
            depreciation_method=item.get("depreciation_method"),
            total_expected_units=_optional_decimal(item.get("total_expected_units")),
            depreciation_start_date=start,
            next_depreciation_date=start,
        ))

    for sched in data["schedules"]:
        db.add(DepreciationSchedule(
            business_unit_id=unit.id,
            name=sched["name"],
            description=sched.get("description"),
            schedule_type=sched["schedule_type"],
            execution_day=sched["execution_day"],
            include_categories=[categories[n].id for n in sched.get("include_categories", [])],
            exclude_categories=[categories[n].id for n in sched.get("exclude_categories", [])],
        ))

    db.commit()
    return unit


def seed(dataset_path: Path = DATASET_PATH):
    init_db()
    with open(dataset_path) as f:
        data = json.load(f)

    with SessionLocal() as db:
        unit = load_dataset(db, data)
        print(
            f"Seed completed: business unit '{unit.name}' with {len(data['assets'])} assets "
            f"and {len(data['schedules'])} schedules."
        )


if __name__ == "__main__":
    seed()
