"""Tests for the YAML engine configuration loader."""
from decimal import Decimal

from assetledger.utils.settings_loader import clear_cache, get_settings, load_engine_config


class TestEngineSettings:
    def test_repository_config(self):
        settings = get_settings()
        assert settings.max_workers == 4
        assert settings.declining_balance_factor == Decimal("2")
        assert "ADMIN" in settings.admin_roles
        assert settings.scheduler_timezone == "Asia/Manila"

    def test_env_disables_scheduler(self):
        # conftest sets DEPRECIATION_SCHEDULER_ENABLED=false
        assert get_settings().scheduler_enabled is False

    def test_missing_file_uses_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ENGINE_CONFIG_PATH", str(tmp_path / "absent.yaml"))
        clear_cache()
        settings = get_settings()
        assert settings.max_run_seconds == 900
        assert settings.lock_stale_after_seconds == 3600
        assert settings.max_page_size == 100

    def test_partial_file_merges_over_defaults(self, tmp_path, monkeypatch):
        path = tmp_path / "engine.yaml"
        path.write_text("executor:\n  max_workers: 2\ncalculator:\n  declining_balance_factor: '1.5'\n")
        monkeypatch.setenv("ENGINE_CONFIG_PATH", str(path))
        clear_cache()

        settings = get_settings()
        assert settings.max_workers == 2
        assert settings.max_run_seconds == 900
        assert settings.declining_balance_factor == Decimal("1.5")

    def test_env_overrides_file(self, monkeypatch):
        monkeypatch.setenv("DEPRECIATION_MAX_WORKERS", "8")
        monkeypatch.setenv("DEPRECIATION_MAX_RUN_SECONDS", "30")
        settings = get_settings()
        assert settings.max_workers == 8
        assert settings.max_run_seconds == 30.0

    def test_config_is_cached_per_path(self, tmp_path, monkeypatch):
        path = tmp_path / "engine.yaml"
        path.write_text("executor:\n  max_workers: 2\n")
        monkeypatch.setenv("ENGINE_CONFIG_PATH", str(path))
        clear_cache()
        first = load_engine_config()

        path.write_text("executor:\n  max_workers: 6\n")
        assert load_engine_config() is first
        clear_cache()
        assert load_engine_config()["executor"]["max_workers"] == 6
