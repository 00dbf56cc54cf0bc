"""Tests for the due-work notifier and the useful-life review list."""
from datetime import date

from assetledger.core.notifier import due_asset_count, due_assets, useful_life_review

TODAY = date(2026, 3, 15)


class TestDueAssets:
    def test_only_due_configured_active_assets(self, db, make_unit, make_asset):
        unit, other = make_unit("Own"), make_unit("Other")
        overdue = make_asset(unit, next_depreciation_date=date(2026, 2, 28))
        due_today = make_asset(unit, next_depreciation_date=TODAY)
        make_asset(unit, next_depreciation_date=date(2026, 3, 31))  # not yet
        make_asset(unit, next_depreciation_date=date(2026, 1, 31), is_active=False)
        make_asset(unit, next_depreciation_date=date(2026, 1, 31), depreciation_method=None)
        make_asset(unit, next_depreciation_date=date(2026, 1, 31), is_fully_depreciated=True)
        make_asset(unit, depreciation_start_date=None, next_depreciation_date=None)
        make_asset(other, next_depreciation_date=date(2026, 1, 31))

        assets = due_assets(db, unit.id, today=TODAY)
        assert [a.id for a in assets] == [overdue.id, due_today.id]
        assert due_asset_count(db, unit.id, today=TODAY) == 2

    def test_nothing_due(self, db, unit, make_asset):
        make_asset(unit, next_depreciation_date=date(2026, 4, 30))
        assert due_assets(db, unit.id, today=TODAY) == []
        assert due_asset_count(db, unit.id, today=TODAY) == 0

    def test_run_clears_due_work(self, db, executor, unit, make_asset):
        make_asset(unit, next_depreciation_date=date(2026, 1, 31))
        assert due_asset_count(db, unit.id, today=date(2026, 1, 31)) == 1
        executor.run(unit.id, run_date=date(2026, 1, 31))
        assert due_asset_count(db, unit.id, today=date(2026, 1, 31)) == 0

    def test_never_depreciated_asset_is_due_from_its_start_date(self, db, executor, unit, make_asset):
        asset = make_asset(unit, depreciation_start_date=date(2020, 1, 31), next_depreciation_date=None)
        assert [a.id for a in due_assets(db, unit.id, today=TODAY)] == [asset.id]
        assert due_asset_count(db, unit.id, today=TODAY) == 1

        summary = executor.run(unit.id, run_date=TODAY)
        assert summary.successful_calculations == 1
        assert due_asset_count(db, unit.id, today=TODAY) == 0


class TestUsefulLifeReview:
    def test_flags_disagreeing_pairs_only(self, db, unit, make_asset):
        flagged = make_asset(unit, useful_life_years=5, useful_life_months=84)
        make_asset(unit, useful_life_years=3, useful_life_months=36)
        make_asset(unit, useful_life_years=2, useful_life_months=6)
        make_asset(unit, useful_life_years=None, useful_life_months=48)

        items = useful_life_review(db, unit.id)
        assert [item.asset.id for item in items] == [flagged.id]
        assert items[0].useful_life.total_months == 84
        assert items[0].useful_life.needs_review
