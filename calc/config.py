from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any


PROJECT_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_APP_CONFIG_PATH = PROJECT_ROOT / "conf" / "app.toml"
DEFAULT_LEDGER_FIXTURE_PATH = PROJECT_ROOT / "conf" / "fixtures" / "ledger_state.sample.json"
SUPPORTED_LEDGER_STATE_PROVIDERS: tuple[str, ...] = ("fixture", "memory")


@dataclass(frozen=True)
class RuntimeConfig:
    data_dir: str | None
    db_path: str | None
    log_path: str | None
    audit_log_path: str | None


@dataclass(frozen=True)
class ManagerConfig:
    address: str
    admin: str
    fee_collector: str
    strategy_code_id: int


@dataclass(frozen=True)
class RegistryConfig:
    default_page_limit: int
    max_page_limit: int


@dataclass(frozen=True)
class ProvidersConfig:
    ledger_state: str
    ledger_fixture_path: str | None


@dataclass(frozen=True)
class EngineConfig:
    contract_address: str
    max_condition_size: int


@dataclass(frozen=True)
class AppConfig:
    runtime: RuntimeConfig
    manager: ManagerConfig
    registry: RegistryConfig
    providers: ProvidersConfig
    engine: EngineConfig


def resolve_app_config_path() -> Path:
    env_path = os.getenv("CALC_APP_CONFIG")
    if env_path:
        return Path(env_path)
    return DEFAULT_APP_CONFIG_PATH


def clear_app_config_cache() -> None:
    load_app_config.cache_clear()


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any, default: str) -> str:
    if isinstance(value, str):
        normalized = value.strip()
        if normalized:
            return normalized
    return default


def _as_optional_str(value: Any) -> str | None:
    if isinstance(value, str):
        normalized = value.strip()
        if normalized:
            return normalized
    return None


def _as_int(value: Any, default: int, *, minimum: int | None = None, maximum: int | None = None) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        parsed = default
    if minimum is not None:
        parsed = max(parsed, minimum)
    if maximum is not None:
        parsed = min(parsed, maximum)
    return parsed


def _normalize_ledger_state_provider(value: Any, default: str = "fixture") -> str:
    normalized = str(value or "").strip().lower()
    if normalized in SUPPORTED_LEDGER_STATE_PROVIDERS:
        return normalized
    return default


@lru_cache(maxsize=1)
def load_app_config() -> AppConfig:
    path = resolve_app_config_path()
    raw: dict[str, Any] = {}
    if path.exists():
        try:
            raw = _as_dict(tomllib.loads(path.read_text(encoding="utf-8")))
        except tomllib.TOMLDecodeError as exc:
            raise RuntimeError(f"invalid app config TOML: {path}: {exc}") from exc

    runtime_raw = _as_dict(raw.get("runtime"))
    manager_raw = _as_dict(raw.get("manager"))
    registry_raw = _as_dict(raw.get("registry"))
    providers_raw = _as_dict(raw.get("providers"))
    engine_raw = _as_dict(raw.get("engine"))

    runtime = RuntimeConfig(
        data_dir=_as_optional_str(runtime_raw.get("data_dir")),
        db_path=_as_optional_str(runtime_raw.get("db_path")),
        log_path=_as_optional_str(runtime_raw.get("log_path")),
        audit_log_path=_as_optional_str(runtime_raw.get("audit_log_path")),
    )

    manager_address = _as_str(manager_raw.get("address"), "calc-manager")
    manager = ManagerConfig(
        address=manager_address,
        admin=_as_str(manager_raw.get("admin"), "calc-admin"),
        fee_collector=_as_str(manager_raw.get("fee_collector"), "calc-fee-collector"),
        strategy_code_id=_as_int(manager_raw.get("strategy_code_id"), 1, minimum=1),
    )

    max_page_limit = _as_int(registry_raw.get("max_page_limit"), 100, minimum=1, maximum=1000)
    registry = RegistryConfig(
        default_page_limit=_as_int(
            registry_raw.get("default_page_limit"),
            30,
            minimum=1,
            maximum=max_page_limit,
        ),
        max_page_limit=max_page_limit,
    )

    providers = ProvidersConfig(
        ledger_state=_normalize_ledger_state_provider(providers_raw.get("ledger_state")),
        ledger_fixture_path=_as_optional_str(providers_raw.get("ledger_fixture_path")),
    )

    engine = EngineConfig(
        contract_address=_as_str(engine_raw.get("contract_address"), "calc-strategy"),
        max_condition_size=_as_int(engine_raw.get("max_condition_size"), 64, minimum=1, maximum=4096),
    )

    return AppConfig(
        runtime=runtime,
        manager=manager,
        registry=registry,
        providers=providers,
        engine=engine,
    )


def resolve_page_limit(limit: int | None, *, config: AppConfig | None = None) -> int:
    cfg = config or load_app_config()
    if limit is None:
        return cfg.registry.default_page_limit
    return max(1, min(int(limit), cfg.registry.max_page_limit))
