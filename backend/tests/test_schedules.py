"""Tests for the schedule registry."""
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from assetledger.core import schedules as registry
from assetledger.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from assetledger.core.permissions import Actor
from assetledger.models import DepreciationExecution

ADMIN = Actor(user_id=1, role="ADMIN")
ACCOUNTANT = Actor(user_id=2, role="ACCTG")


def _values(**overrides) -> dict:
    values = {
        "name": "Month-end close",
        "description": "Every asset, every month",
        "schedule_type": "MONTHLY",
        "execution_day": 30,
        "include_categories": [],
        "exclude_categories": [],
    }
    values.update(overrides)
    return values


class TestCreate:
    def test_create_schedule(self, db, settings, unit):
        schedule = registry.create_schedule(db, ADMIN, unit.id, _values(), settings)
        assert schedule.id > 0
        assert schedule.is_active
        assert schedule.created_by == 1
        assert schedule.business_unit_id == unit.id

    def test_name_is_trimmed(self, db, settings, unit):
        schedule = registry.create_schedule(db, ADMIN, unit.id, _values(name="  Close  "), settings)
        assert schedule.name == "Close"

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"name": ""}, "name is required"),
            ({"name": "x" * 101}, "at most 100"),
            ({"execution_day": 0}, "between 1 and 31"),
            ({"execution_day": 32}, "between 1 and 31"),
            ({"schedule_type": "WEEKLY"}, "Unknown schedule type"),
        ],
    )
    def test_rejects_invalid_fields(self, db, settings, unit, overrides, message):
        with pytest.raises(ValidationError, match=message):
            registry.create_schedule(db, ADMIN, unit.id, _values(**overrides), settings)

    def test_rejects_overlapping_categories(self, db, settings, unit, make_category):
        vehicles = make_category(unit, "Vehicles")
        with pytest.raises(ValidationError, match="both included and excluded"):
            registry.create_schedule(
                db, ADMIN, unit.id,
                _values(include_categories=[vehicles.id], exclude_categories=[vehicles.id]),
                settings,
            )

    def test_rejects_category_of_another_unit(self, db, settings, make_unit, make_category):
        own, other = make_unit("Own"), make_unit("Other")
        foreign = make_category(other, "Vehicles")
        with pytest.raises(ValidationError, match="Unknown categories"):
            registry.create_schedule(db, ADMIN, own.id, _values(include_categories=[foreign.id]), settings)

    def test_rejects_duplicate_name_in_unit(self, db, settings, unit):
        registry.create_schedule(db, ADMIN, unit.id, _values(), settings)
        with pytest.raises(ValidationError, match="already exists"):
            registry.create_schedule(db, ADMIN, unit.id, _values(), settings)

    def test_same_name_in_another_unit(self, db, settings, make_unit):
        first, second = make_unit("First"), make_unit("Second")
        registry.create_schedule(db, ADMIN, first.id, _values(), settings)
        schedule = registry.create_schedule(db, ADMIN, second.id, _values(), settings)
        assert schedule.business_unit_id == second.id

    def test_requires_admin(self, db, settings, unit):
        with pytest.raises(PermissionDeniedError):
            registry.create_schedule(db, ACCOUNTANT, unit.id, _values(), settings)


class TestUpdate:
    def test_partial_update(self, db, settings, unit):
        schedule = registry.create_schedule(db, ADMIN, unit.id, _values(), settings)
        updated = registry.update_schedule(
            db, ADMIN, unit.id, schedule.id, {"execution_day": 15, "schedule_type": "QUARTERLY"}, settings
        )
        assert updated.execution_day == 15
        assert updated.schedule_type == "QUARTERLY"
        assert updated.name == "Month-end close"

    def test_update_keeps_own_name(self, db, settings, unit):
        schedule = registry.create_schedule(db, ADMIN, unit.id, _values(), settings)
        updated = registry.update_schedule(db, ADMIN, unit.id, schedule.id, {"name": "Month-end close"}, settings)
        assert updated.id == schedule.id

    def test_update_to_taken_name(self, db, settings, unit):
        registry.create_schedule(db, ADMIN, unit.id, _values(name="A"), settings)
        second = registry.create_schedule(db, ADMIN, unit.id, _values(name="B"), settings)
        with pytest.raises(ValidationError):
            registry.update_schedule(db, ADMIN, unit.id, second.id, {"name": "A"}, settings)

    def test_other_unit_reads_as_not_found(self, db, settings, make_unit):
        own, other = make_unit("Own"), make_unit("Other")
        schedule = registry.create_schedule(db, ADMIN, other.id, _values(), settings)
        with pytest.raises(NotFoundError):
            registry.update_schedule(db, ADMIN, own.id, schedule.id, {"execution_day": 1}, settings)
        with pytest.raises(NotFoundError):
            registry.delete_schedule(db, ADMIN, own.id, schedule.id, settings)
        with pytest.raises(NotFoundError):
            registry.get_schedule_detail(db, own.id, schedule.id)


class TestToggleAndDelete:
    def test_toggle_keeps_history(self, db, settings, executor, unit, make_asset):
        make_asset(unit)
        schedule = registry.create_schedule(db, ADMIN, unit.id, _values(), settings)
        executor.run(unit.id, schedule_id=schedule.id, run_date=date(2026, 1, 31))

        toggled = registry.set_schedule_active(db, ADMIN, unit.id, schedule.id, False, settings)
        assert not toggled.is_active
        count = db.scalar(
            select(func.count(DepreciationExecution.id)).where(DepreciationExecution.schedule_id == schedule.id)
        )
        assert count == 1

    def test_toggle_requires_admin(self, db, settings, unit):
        schedule = registry.create_schedule(db, ADMIN, unit.id, _values(), settings)
        with pytest.raises(PermissionDeniedError):
            registry.set_schedule_active(db, ACCOUNTANT, unit.id, schedule.id, False, settings)

    def test_delete_removes_history(self, db, settings, executor, unit, make_asset):
        make_asset(unit)
        schedule = registry.create_schedule(db, ADMIN, unit.id, _values(), settings)
        executor.run(unit.id, schedule_id=schedule.id, run_date=date(2026, 1, 31))

        registry.delete_schedule(db, ADMIN, unit.id, schedule.id, settings)
        assert db.scalar(select(func.count(DepreciationExecution.id))) == 0
        with pytest.raises(NotFoundError):
            registry.get_schedule(db, unit.id, schedule.id)


class TestQueries:
    def test_list_with_execution_stats(self, db, settings, executor, unit, make_asset):
        make_asset(unit)
        used = registry.create_schedule(db, ADMIN, unit.id, _values(name="Used"), settings)
        registry.create_schedule(db, ADMIN, unit.id, _values(name="Idle"), settings)
        executor.run(unit.id, schedule_id=used.id, run_date=date(2026, 1, 31))

        items = {item.schedule.name: item for item in registry.list_schedules(db, unit.id)}
        assert items["Used"].execution_count == 1
        assert items["Used"].last_execution_date is not None
        assert items["Idle"].execution_count == 0
        assert items["Idle"].last_execution_date is None

    def test_detail_counts_affected_assets(self, db, settings, unit, make_category, make_asset):
        vehicles = make_category(unit, "Vehicles")
        machinery = make_category(unit, "Machinery")
        make_asset(unit, vehicles, purchase_price=Decimal("1000.00"))
        make_asset(unit, vehicles, purchase_price=Decimal("500.00"), current_book_value=Decimal("250.00"))
        make_asset(unit, machinery)
        schedule = registry.create_schedule(
            db, ADMIN, unit.id, _values(exclude_categories=[machinery.id]), settings
        )

        detail = registry.get_schedule_detail(db, unit.id, schedule.id)
        assert detail.affected_asset_count == 2
        assert detail.affected_book_value == Decimal("1250.00")
        assert detail.exclude_category_names == ["Machinery"]
        assert detail.include_category_names == []
        assert detail.execution_count == 0

    def test_categories_with_asset_counts(self, db, unit, make_category, make_asset):
        vehicles = make_category(unit, "Vehicles")
        make_category(unit, "Furniture")
        make_asset(unit, vehicles)
        make_asset(unit, vehicles)
        make_asset(unit, vehicles, is_active=False)

        options = {o.name: o.asset_count for o in registry.list_categories(db, unit.id)}
        assert options == {"Vehicles": 2, "Furniture": 0}
