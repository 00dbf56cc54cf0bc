import os
import tempfile
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Set env vars BEFORE any assetledger imports
# Locally: backend/tests/conftest.py → ../../config/engine.yaml
_here = Path(__file__).parent
_candidates = [
    _here.parent.parent / "config" / "engine.yaml",  # project root (local)
    _here.parent / "config" / "engine.yaml",         # inside backend dir
]
_config_path = next((p for p in _candidates if p.exists()), _candidates[0])
os.environ["ENGINE_CONFIG_PATH"] = str(_config_path)
os.environ["DEPRECIATION_SCHEDULER_ENABLED"] = "false"

# Use a temp file-based SQLite so the executor's worker sessions share the same database
_db_file = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
_db_file.close()
os.environ["DATABASE_URL"] = f"sqlite:///{_db_file.name}"

import assetledger.models  # noqa: E402,F401
from assetledger.core.executor import DepreciationExecutor  # noqa: E402
from assetledger.db.database import Base, SessionLocal, engine, get_db, get_session_factory  # noqa: E402
from assetledger.main import app  # noqa: E402
from assetledger.models import Asset, AssetCategory, BusinessUnit, DepreciationSchedule  # noqa: E402
from assetledger.utils.settings_loader import clear_cache, get_settings  # noqa: E402

@pytest.fixture(autouse=True)
def setup_db():
    """Create all tables before each test, drop after."""
    clear_cache()
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def session_factory():
    return SessionLocal


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def executor(session_factory, settings):
    return DepreciationExecutor(session_factory, settings=settings)


@pytest.fixture
def client():
    def override_get_db():
        session = SessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: SessionLocal
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_unit(db):
    counter = {"n": 0}

    def _make(name: str = "Main Warehouse") -> BusinessUnit:
        counter["n"] += 1
        unit = BusinessUnit(name=name, code=f"BU{counter['n']:03d}")
        db.add(unit)
        db.commit()
        return unit

    return _make


@pytest.fixture
def unit(make_unit):
    return make_unit()


@pytest.fixture
def make_category(db):
    def _make(business_unit: BusinessUnit, name: str = "Vehicles") -> AssetCategory:
        category = AssetCategory(business_unit_id=business_unit.id, name=name)
        db.add(category)
        db.commit()
        return category

    return _make


@pytest.fixture
def make_asset(db, make_category):
    counter = {"n": 0}

    def _make(business_unit: BusinessUnit, category: AssetCategory | None = None, **overrides) -> Asset:
        counter["n"] += 1
        category = category or make_category(business_unit, f"Category {counter['n']}")
        start = overrides.pop("depreciation_start_date", date(2026, 1, 31))
        values = {
            "item_code": f"AST-{counter['n']:04d}",
            "description": f"Test asset {counter['n']}",
            "purchase_price": Decimal("120000.00"),
            "salvage_value": Decimal("0.00"),
            "useful_life_years": 2,
            "useful_life_months": 0,
            "depreciation_method": "STRAIGHT_LINE",
            "depreciation_start_date": start,
            "next_depreciation_date": start,
        }
        values.update(overrides)
        asset = Asset(business_unit_id=business_unit.id, category_id=category.id, **values)
        db.add(asset)
        db.commit()
        return asset

    return _make


@pytest.fixture
def make_schedule(db):
    counter = {"n": 0}

    def _make(business_unit: BusinessUnit, **overrides) -> DepreciationSchedule:
        counter["n"] += 1
        values = {
            "name": f"Schedule {counter['n']}",
            "schedule_type": "MONTHLY",
            "execution_day": 31,
            "include_categories": [],
            "exclude_categories": [],
            "is_active": True,
        }
        values.update(overrides)
        schedule = DepreciationSchedule(business_unit_id=business_unit.id, **values)
        db.add(schedule)
        db.commit()
        return schedule

    return _make


@pytest.fixture
def clock_at():
    """Build a clock returning a fixed moment."""
    return lambda moment: (lambda: moment)


@pytest.fixture
def admin_headers():
    return {"X-User-Id": "1", "X-User-Role": "ADMIN"}


@pytest.fixture
def headers_for():
    def _headers(role: str, business_unit_id: int | None = None, user_id: int = 2) -> dict:
        headers = {"X-User-Id": str(user_id), "X-User-Role": role}
        if business_unit_id is not None:
            headers["X-Business-Unit-Id"] = str(business_unit_id)
        return headers

    return _headers
