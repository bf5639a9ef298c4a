from __future__ import annotations

import os
from pathlib import Path

from .config import PROJECT_ROOT, load_app_config

DEFAULT_DATA_DIR = PROJECT_ROOT / "data"


def _resolve_optional_path(value: str | None) -> Path | None:
    if not value:
        return None
    path = Path(value)
    if path.is_absolute():
        return path
    return PROJECT_ROOT / path


def resolve_data_dir() -> Path:
    env_path = os.getenv("CALC_DATA_DIR")
    if env_path:
        return Path(env_path)
    configured = _resolve_optional_path(load_app_config().runtime.data_dir)
    if configured is not None:
        return configured
    return DEFAULT_DATA_DIR


def resolve_log_path() -> Path:
    env_path = os.getenv("CALC_LOG_PATH")
    if env_path:
        return Path(env_path)
    configured = _resolve_optional_path(load_app_config().runtime.log_path)
    if configured is not None:
        return configured
    return resolve_data_dir() / "logs" / "calc.log"


def resolve_audit_log_path() -> Path:
    env_path = os.getenv("CALC_AUDIT_LOG_PATH")
    if env_path:
        return Path(env_path)
    configured = _resolve_optional_path(load_app_config().runtime.audit_log_path)
    if configured is not None:
        return configured
    return resolve_log_path().parent / "calc_audit.log"


def resolve_ledger_fixture_path() -> Path | None:
    env_path = os.getenv("CALC_LEDGER_FIXTURE_PATH")
    if env_path:
        return Path(env_path)
    return _resolve_optional_path(load_app_config().providers.ledger_fixture_path)


def ensure_runtime_dirs() -> None:
    data_dir = resolve_data_dir()
    log_dir = resolve_log_path().parent
    data_dir.mkdir(parents=True, exist_ok=True)
    log_dir.mkdir(parents=True, exist_ok=True)
