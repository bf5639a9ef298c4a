from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Protocol, Union

from pydantic import ValidationError

from .config import DEFAULT_LEDGER_FIXTURE_PATH, load_app_config
from .errors import StateQueryError, StrategyNotFoundError, UnresolvableAssetError
from .models import (
    Coin,
    OrderResponse,
    Side,
    SimulationResult,
    StrategyHandle,
    normalize_decimal,
    to_utc,
)
from .routes import FinRoute, ThorchainRoute, route_key
from .runtime_paths import resolve_ledger_fixture_path

_LOGGER = logging.getLogger("calc.ledger_state")
NATIVE_ORACLE_ASSETS: dict[str, str] = {"rune": "THOR.RUNE"}

SimulationSource = Union[SimulationResult, Callable[[Coin], SimulationResult]]


class StateQuerier(Protocol):
    def query_balance(self, address: str, denom: str) -> Coin: ...

    def query_order(self, pair_address: str, owner: str, side: Side, price: Decimal) -> OrderResponse: ...

    def query_oracle_price(self, asset: str) -> Decimal: ...

    def query_strategy(self, manager_address: str, contract_address: str) -> StrategyHandle: ...

    def query_swap_simulation(
        self,
        route: FinRoute | ThorchainRoute,
        offer: Coin,
        ask_denom: str,
    ) -> SimulationResult: ...


class StrategyLookup(Protocol):
    def get_strategy(self, contract_address: str) -> StrategyHandle: ...


@dataclass(frozen=True)
class EvaluationContext:
    block_time: datetime
    block_height: int
    contract_address: str
    querier: StateQuerier

    def __post_init__(self) -> None:
        object.__setattr__(self, "block_time", to_utc(self.block_time))
        if self.block_height < 0:
            raise ValueError("block_height cannot be negative")


def resolve_oracle_asset(denom: str) -> str:
    """Map a native denom (``btc-btc``) to its oracle pool asset (``BTC.BTC``)."""
    normalized = str(denom or "").strip()
    if not normalized:
        raise UnresolvableAssetError(denom, "denom is empty")
    native = NATIVE_ORACLE_ASSETS.get(normalized.lower())
    if native is not None:
        return native
    if "/" in normalized:
        raise UnresolvableAssetError(denom, "denom is not a native secured asset")
    chain, sep, symbol = normalized.partition("-")
    if not sep or not chain or not symbol:
        raise UnresolvableAssetError(denom, "expected <chain>-<symbol>")
    if not chain.isalnum():
        raise UnresolvableAssetError(denom, f"invalid chain identifier {chain!r}")
    return f"{chain.upper()}.{symbol.upper()}"


class InMemoryStateQuerier:
    def __init__(self) -> None:
        self._balances: dict[tuple[str, str], int] = {}
        self._orders: dict[tuple[str, str, str, Decimal], OrderResponse] = {}
        self._oracle_prices: dict[str, Decimal] = {}
        self._simulations: dict[str, SimulationSource] = {}
        self._managers: dict[str, StrategyLookup] = {}

    def set_balance(self, address: str, coin: Coin) -> None:
        self._balances[(address, coin.denom)] = coin.amount

    def set_order(self, pair_address: str, order: OrderResponse) -> None:
        key = (pair_address, order.owner, order.side, normalize_decimal(order.price))
        self._orders[key] = order

    def set_oracle_price(self, asset: str, price: Decimal) -> None:
        self._oracle_prices[asset.strip().upper()] = normalize_decimal(price)

    def set_swap_simulation(self, key: str, source: SimulationSource) -> None:
        self._simulations[key] = source

    def register_manager(self, manager_address: str, lookup: StrategyLookup) -> None:
        self._managers[manager_address] = lookup

    def query_balance(self, address: str, denom: str) -> Coin:
        # Bank semantics: an unknown account or denom holds zero.
        return Coin(denom=denom, amount=self._balances.get((address, denom), 0))

    def query_order(self, pair_address: str, owner: str, side: Side, price: Decimal) -> OrderResponse:
        order = self._orders.get((pair_address, owner, side, normalize_decimal(price)))
        if order is None:
            raise StateQueryError(
                f"order not found pair={pair_address} owner={owner} side={side} price={price}"
            )
        return order

    def query_oracle_price(self, asset: str) -> Decimal:
        price = self._oracle_prices.get(asset.strip().upper())
        if price is None:
            raise StateQueryError(f"oracle pool not found for asset={asset}")
        return price

    def query_strategy(self, manager_address: str, contract_address: str) -> StrategyHandle:
        lookup = self._managers.get(manager_address)
        if lookup is None:
            raise StateQueryError(f"manager contract {manager_address} not found")
        try:
            return lookup.get_strategy(contract_address)
        except StrategyNotFoundError as exc:
            raise StateQueryError(
                f"manager {manager_address} query failed for strategy {contract_address}: {exc}"
            ) from exc

    def query_swap_simulation(
        self,
        route: FinRoute | ThorchainRoute,
        offer: Coin,
        ask_denom: str,
    ) -> SimulationResult:
        key = route_key(route, offer.denom, ask_denom)
        source = self._simulations.get(key)
        if source is None:
            raise StateQueryError(f"swap simulation unavailable for route={key}")
        if isinstance(source, SimulationResult):
            return source
        try:
            return source(offer)
        except (ValueError, ArithmeticError) as exc:
            raise StateQueryError(f"swap simulation failed for route={key}: {exc}") from exc


class FixtureStateQuerier(InMemoryStateQuerier):
    """Ledger state read from a JSON fixture file."""

    def __init__(self, *, fixture_path: str | Path | None = None) -> None:
        super().__init__()
        self._fixture_path = Path(fixture_path) if fixture_path is not None else DEFAULT_LEDGER_FIXTURE_PATH
        self._apply_payload(self._load_payload())

    def _load_payload(self) -> dict[str, Any]:
        if not self._fixture_path.exists():
            raise StateQueryError(f"ledger fixture file not found: {self._fixture_path}")
        try:
            payload = json.loads(self._fixture_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise StateQueryError(f"invalid ledger fixture JSON: {self._fixture_path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise StateQueryError("ledger fixture root must be a JSON object")
        return payload

    def _apply_payload(self, payload: dict[str, Any]) -> None:
        try:
            for row in payload.get("balances") or []:
                self.set_balance(
                    str(row["address"]),
                    Coin(denom=str(row["denom"]), amount=int(row["amount"])),
                )
            for row in payload.get("orders") or []:
                self.set_order(str(row["pair_address"]), OrderResponse.model_validate(row))
            for asset, price in (payload.get("oracle_prices") or {}).items():
                self.set_oracle_price(str(asset), Decimal(str(price)))
            for key, row in (payload.get("swap_simulations") or {}).items():
                self.set_swap_simulation(str(key), SimulationResult.model_validate(row))
            managers = payload.get("managers") or {}
            for manager_address, handles in managers.items():
                self.register_manager(
                    str(manager_address),
                    _StaticStrategyLookup(
                        [StrategyHandle.model_validate(item) for item in handles or []]
                    ),
                )
        except (KeyError, TypeError, ValueError, InvalidOperation, ValidationError) as exc:
            raise StateQueryError(f"invalid ledger fixture data: {self._fixture_path}: {exc}") from exc
        _LOGGER.info(
            "ledger fixture loaded path=%s balances=%s orders=%s oracle_prices=%s simulations=%s managers=%s",
            self._fixture_path,
            len(self._balances),
            len(self._orders),
            len(self._oracle_prices),
            len(self._simulations),
            len(self._managers),
        )


class _StaticStrategyLookup:
    def __init__(self, handles: list[StrategyHandle]) -> None:
        self._handles = {handle.contract_address: handle for handle in handles}

    def get_strategy(self, contract_address: str) -> StrategyHandle:
        handle = self._handles.get(contract_address)
        if handle is None:
            raise StrategyNotFoundError(contract_address)
        return handle


def build_state_querier_from_config(
    *,
    fixture_path: str | Path | None = None,
    registry: StrategyLookup | None = None,
) -> InMemoryStateQuerier:
    cfg = load_app_config()
    querier: InMemoryStateQuerier
    if cfg.providers.ledger_state == "fixture":
        querier = FixtureStateQuerier(fixture_path=fixture_path or resolve_ledger_fixture_path())
    else:
        querier = InMemoryStateQuerier()
    if registry is not None:
        querier.register_manager(cfg.manager.address, registry)
    return querier
