import copy
import os
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

import yaml

DEFAULTS: dict = {
    "executor": {
        "max_workers": 4,
        "max_run_seconds": 900,
        "lock_stale_after_seconds": 3600,
    },
    "calculator": {
        "declining_balance_factor": "2",
    },
    "roles": {
        "admin": ["ADMIN"],
        "cross_unit": ["ADMIN", "ACCTG"],
        "due_work": ["ADMIN", "MANAGER", "ACCTG"],
    },
    "scheduler": {
        "enabled": True,
        "hour": 23,
        "minute": 30,
        "timezone": "Asia/Manila",
    },
    "history": {
        "default_page_size": 20,
        "max_page_size": 100,
    },
}

# environment variable -> (section, key, cast)
_ENV_OVERRIDES = {
    "DEPRECIATION_MAX_WORKERS": ("executor", "max_workers", int),
    "DEPRECIATION_MAX_RUN_SECONDS": ("executor", "max_run_seconds", float),
    "DEPRECIATION_SCHEDULER_ENABLED": ("scheduler", "enabled", lambda v: v.lower() in ("1", "true", "yes")),
}


@dataclass(frozen=True)
class EngineSettings:
    max_workers: int
    max_run_seconds: float
    lock_stale_after_seconds: float
    declining_balance_factor: Decimal
    admin_roles: tuple[str, ...]
    cross_unit_roles: tuple[str, ...]
    due_work_roles: tuple[str, ...]
    scheduler_enabled: bool
    scheduler_hour: int
    scheduler_minute: int
    scheduler_timezone: str
    default_page_size: int
    max_page_size: int


def _config_path() -> Path:
    """Read ENGINE_CONFIG_PATH at call time (supports env var changes in tests)."""
    return Path(os.getenv("ENGINE_CONFIG_PATH", "/app/config/engine.yaml"))


_cache: dict[str, dict] = {}


def load_engine_config() -> dict:
    """YAML config merged over the built-in defaults. A missing file means defaults only."""
    path = _config_path()
    cache_key = str(path)
    if cache_key in _cache:
        return _cache[cache_key]

    merged = copy.deepcopy(DEFAULTS)
    if path.exists():
        with open(path) as f:
            loaded = yaml.safe_load(f) or {}
        for section, values in loaded.items():
            merged.setdefault(section, {}).update(values or {})

    _cache[cache_key] = merged
    return merged


def get_settings() -> EngineSettings:
    config = copy.deepcopy(load_engine_config())
    for env_name, (section, key, cast) in _ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw is not None and raw != "":
            config[section][key] = cast(raw)

    executor = config["executor"]
    roles = config["roles"]
    scheduler = config["scheduler"]
    history = config["history"]
    return EngineSettings(
        max_workers=max(int(executor["max_workers"]), 1),
        max_run_seconds=float(executor["max_run_seconds"]),
        lock_stale_after_seconds=float(executor["lock_stale_after_seconds"]),
        declining_balance_factor=Decimal(str(config["calculator"]["declining_balance_factor"])),
        admin_roles=tuple(roles["admin"]),
        cross_unit_roles=tuple(roles["cross_unit"]),
        due_work_roles=tuple(roles["due_work"]),
        scheduler_enabled=bool(scheduler["enabled"]),
        scheduler_hour=int(scheduler["hour"]),
        scheduler_minute=int(scheduler["minute"]),
        scheduler_timezone=str(scheduler["timezone"]),
        default_page_size=int(history["default_page_size"]),
        max_page_size=int(history["max_page_size"]),
    )


def clear_cache():
    _cache.clear()
