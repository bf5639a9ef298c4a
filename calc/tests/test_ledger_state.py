from __future__ import annotations

import json
from decimal import Decimal
from pathlib import Path

import pytest

from calc.config import DEFAULT_LEDGER_FIXTURE_PATH, clear_app_config_cache
from calc.errors import StateQueryError, UnresolvableAssetError
from calc.ledger_state import (
    FixtureStateQuerier,
    InMemoryStateQuerier,
    build_state_querier_from_config,
    resolve_oracle_asset,
)
from calc.models import Coin
from calc.routes import FinRoute, ThorchainRoute


@pytest.mark.parametrize(
    ("denom", "expected"),
    [
        ("rune", "THOR.RUNE"),
        ("RUNE", "THOR.RUNE"),
        ("btc-btc", "BTC.BTC"),
        ("eth-usdc-0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48", "ETH.USDC-0XA0B86991C6218B36C1D19D4A2E9EB0CE3606EB48"),
    ],
)
def test_resolve_oracle_asset(denom: str, expected: str) -> None:
    assert resolve_oracle_asset(denom) == expected


@pytest.mark.parametrize("denom", ["", "x/ruji", "uatom", "-btc", "b!c-btc"])
def test_resolve_oracle_asset_rejects(denom: str) -> None:
    with pytest.raises(UnresolvableAssetError) as exc_info:
        resolve_oracle_asset(denom)
    assert exc_info.value.denom == denom


def test_in_memory_missing_values() -> None:
    querier = InMemoryStateQuerier()
    assert querier.query_balance("thor1x", "rune") == Coin(denom="rune", amount=0)
    with pytest.raises(StateQueryError):
        querier.query_oracle_price("BTC.BTC")
    with pytest.raises(StateQueryError):
        querier.query_order("fin", "o", "BASE", Decimal("1"))
    with pytest.raises(StateQueryError):
        querier.query_strategy("calc-manager", "s1")
    with pytest.raises(StateQueryError, match="thorchain:rune>x/ruji"):
        querier.query_swap_simulation(ThorchainRoute(), Coin(denom="rune", amount=1), "x/ruji")


def test_sample_fixture_loads() -> None:
    querier = FixtureStateQuerier(fixture_path=DEFAULT_LEDGER_FIXTURE_PATH)
    assert querier.query_balance("calc-strategy", "rune").amount == 2_500_000_000
    assert querier.query_oracle_price("thor.rune") == Decimal("1.42")
    assert querier.query_order("fin-rune-ruji", "thor1owner", "BASE", Decimal("1.25")).remaining == 0
    simulation = querier.query_swap_simulation(
        FinRoute(pair_address="fin-rune-ruji"),
        Coin(denom="rune", amount=1_000_000),
        "x/ruji",
    )
    assert simulation.returned == 1_050_000
    assert querier.query_strategy("calc-manager-fixture", "calc-strategy-fixture").status == "ACTIVE"


def test_fixture_errors(tmp_path: Path) -> None:
    with pytest.raises(StateQueryError, match="not found"):
        FixtureStateQuerier(fixture_path=tmp_path / "missing.json")

    bad_json = tmp_path / "bad.json"
    bad_json.write_text("{", encoding="utf-8")
    with pytest.raises(StateQueryError, match="invalid ledger fixture JSON"):
        FixtureStateQuerier(fixture_path=bad_json)

    bad_row = tmp_path / "bad_row.json"
    bad_row.write_text(json.dumps({"balances": [{"address": "a"}]}), encoding="utf-8")
    with pytest.raises(StateQueryError, match="invalid ledger fixture data"):
        FixtureStateQuerier(fixture_path=bad_row)


def test_build_from_config_registers_registry(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    conf_path = tmp_path / "app.toml"
    conf_path.write_text('[manager]\naddress = "thor1mgr"\n\n[providers]\nledger_state = "memory"\n', encoding="utf-8")
    monkeypatch.setenv("CALC_APP_CONFIG", str(conf_path))
    clear_app_config_cache()

    class _Registry:
        def get_strategy(self, contract_address: str):  # type: ignore[no-untyped-def]
            raise AssertionError(f"unexpected lookup {contract_address}")

    try:
        querier = build_state_querier_from_config(registry=_Registry())
        assert not isinstance(querier, FixtureStateQuerier)
        with pytest.raises(StateQueryError):
            querier.query_strategy("calc-manager", "s1")
    finally:
        clear_app_config_cache()
