from __future__ import annotations

import base64
from pathlib import Path
from typing import Iterator
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from calc.config import clear_app_config_cache
from calc.main import app
from calc.provider_registry import reset_shared_state_querier
from calc.store import reset_store


MSG = base64.b64encode(b'{"execute":{}}').decode("ascii")


@pytest.fixture()
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    monkeypatch.delenv("CALC_APP_CONFIG", raising=False)
    monkeypatch.delenv("CALC_LEDGER_FIXTURE_PATH", raising=False)
    monkeypatch.setenv("CALC_DB_PATH", str(tmp_path / "calc_api.sqlite3"))
    clear_app_config_cache()
    reset_store()
    reset_shared_state_querier()
    yield TestClient(app)
    reset_shared_state_querier()
    reset_store()


def _create_strategy(client: TestClient, owner: str = "thor1owner") -> str:
    address = f"calc-{uuid4().hex[:8]}"
    resp = client.post(
        "/v1/strategies",
        json={"owner": owner, "contract_address": address, "label": "api dca", "config": {"k": "v"}},
    )
    assert resp.status_code == 200
    return address


def test_healthz(client: TestClient) -> None:
    resp = client.get("/v1/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_strategy_lifecycle_over_http(client: TestClient) -> None:
    address = _create_strategy(client)

    resp = client.get(f"/v1/strategies/{address}")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ACTIVE"

    resp = client.post(f"/v1/strategies/{address}/status", json={"sender": "thor1intruder", "status": "PAUSED"})
    assert resp.status_code == 403

    resp = client.post(f"/v1/strategies/{address}/status", json={"sender": "thor1owner", "status": "ARCHIVED"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "ARCHIVED"

    resp = client.post(f"/v1/strategies/{address}/status", json={"sender": "thor1owner", "status": "ACTIVE"})
    assert resp.status_code == 409
    assert resp.json()["error"] == "InvalidStatusTransitionError"

    events = client.get(f"/v1/strategies/{address}/events").json()
    assert [item["event_type"] for item in events] == ["strategy_created", "strategy_archived"]


def test_list_strategies_by_owner(client: TestClient) -> None:
    mine = _create_strategy(client, owner="thor1mine")
    _create_strategy(client, owner="thor1theirs")
    resp = client.get("/v1/strategies", params={"owner": "thor1mine"})
    assert resp.status_code == 200
    assert [item["contract_address"] for item in resp.json()] == [mine]


def test_unknown_strategy_is_404(client: TestClient) -> None:
    resp = client.get("/v1/strategies/calc-missing")
    assert resp.status_code == 404


def test_condition_identity(client: TestClient) -> None:
    body = {
        "owner": "thor1owner",
        "condition": {
            "type": "composite",
            "threshold": "ALL",
            "conditions": [
                {"type": "blocks_completed", "height": 1},
                {"type": "oracle_price", "asset": "rune", "direction": "ABOVE", "rate": "1.0"},
            ],
        },
    }
    first = client.post("/v1/conditions/id", json=body).json()
    second = client.post("/v1/conditions/id", json=body).json()
    assert first == second
    assert first["size"] == 4


def test_evaluate_against_fixture_and_registry(client: TestClient) -> None:
    address = _create_strategy(client)
    body = {
        "owner": "thor1owner",
        "block_height": 10,
        "condition": {
            "type": "composite",
            "threshold": "ALL",
            "conditions": [
                {"type": "strategy_balance_available", "amount": {"denom": "rune", "amount": 2_500_000_000}},
                {"type": "oracle_price", "asset": "rune", "direction": "ABOVE", "rate": "1.4"},
                {
                    "type": "strategy_status",
                    "manager_contract": "calc-manager",
                    "contract_address": address,
                    "status": "ACTIVE",
                },
            ],
        },
    }
    resp = client.post("/v1/conditions/evaluate", json=body)
    assert resp.status_code == 200
    assert resp.json()["satisfied"] is True
    assert resp.json()["size"] == 6


def test_evaluate_error_mapping(client: TestClient) -> None:
    unresolvable = {
        "owner": "o",
        "block_height": 1,
        "condition": {"type": "oracle_price", "asset": "x/ruji", "direction": "ABOVE", "rate": "1"},
    }
    assert client.post("/v1/conditions/evaluate", json=unresolvable).status_code == 422

    missing_pool = {
        "owner": "o",
        "block_height": 1,
        "condition": {"type": "oracle_price", "asset": "eth-eth", "direction": "ABOVE", "rate": "1"},
    }
    assert client.post("/v1/conditions/evaluate", json=missing_pool).status_code == 502

    too_big = {
        "owner": "o",
        "block_height": 1,
        "condition": {
            "type": "composite",
            "threshold": "ANY",
            "conditions": [{"type": "blocks_completed", "height": i} for i in range(70)],
        },
    }
    resp = client.post("/v1/conditions/evaluate", json=too_big)
    assert resp.status_code == 422
    assert resp.json()["error"] == "ConditionTooComplexError"


def test_trigger_flow(client: TestClient) -> None:
    created = client.post(
        "/v1/triggers",
        json={"owner": "thor1owner", "condition": {"type": "block_height", "height": 5}, "msg": MSG, "to": "calc-target"},
    )
    assert created.status_code == 200
    trigger_id = created.json()["id"]

    listed = client.get("/v1/triggers", params={"type": "block_height", "start": 5, "end": 5})
    assert [item["id"] for item in listed.json()] == [trigger_id]

    check = client.post(f"/v1/triggers/{trigger_id}/can-execute", json={"block_height": 5})
    assert check.json() == {"trigger_id": trigger_id, "can_execute": False}

    not_met = client.post(f"/v1/triggers/{trigger_id}/execute", json={"block_height": 5})
    assert not_met.status_code == 409

    executed = client.post(f"/v1/triggers/{trigger_id}/execute", json={"block_height": 6})
    assert executed.status_code == 200
    assert executed.json() == {"contract_address": "calc-target", "msg": MSG, "funds": []}

    assert client.get(f"/v1/triggers/{trigger_id}").status_code == 404


def test_limit_order_trigger_execute_is_501(client: TestClient) -> None:
    created = client.post(
        "/v1/triggers",
        json={
            "owner": "thor1owner",
            "condition": {
                "type": "limit_order",
                "swap_amount": {"denom": "rune", "amount": 10},
                "minimum_receive_amount": {"denom": "x/ruji", "amount": 9},
            },
            "msg": MSG,
            "to": "calc-target",
        },
    )
    trigger_id = created.json()["id"]
    resp = client.post(f"/v1/triggers/{trigger_id}/execute", json={"block_height": 10**6})
    assert resp.status_code == 501


def test_bad_trigger_filter_is_422(client: TestClient) -> None:
    resp = client.get("/v1/triggers", params={"type": "owner"})
    assert resp.status_code == 422


def test_manager_config(client: TestClient) -> None:
    resp = client.get("/v1/config")
    assert resp.status_code == 200
    assert resp.json() == {
        "address": "calc-manager",
        "admin": "calc-admin",
        "fee_collector": "calc-fee-collector",
        "strategy_code_id": 1,
        "max_condition_size": 64,
    }


def test_condition_size(client: TestClient) -> None:
    body = {
        "condition": {
            "type": "not",
            "condition": {
                "type": "composite",
                "threshold": "ANY",
                "conditions": [
                    {"type": "timestamp_elapsed", "timestamp": "2025-03-01T00:00:00Z"},
                    {"type": "oracle_price", "asset": "rune", "direction": "BELOW", "rate": "2"},
                ],
            },
        }
    }
    resp = client.post("/v1/conditions/size", json=body)
    assert resp.status_code == 200
    assert resp.json() == {"size": 4}


def test_strategy_execute_over_http(client: TestClient) -> None:
    address = f"calc-{uuid4().hex[:8]}"
    resp = client.post(
        "/v1/strategies",
        json={
            "owner": "thor1owner",
            "contract_address": address,
            "label": "gated dca",
            "condition": {"type": "blocks_completed", "height": 100},
        },
    )
    assert resp.status_code == 200
    assert resp.json()["condition"] == {"type": "blocks_completed", "height": 100}

    skipped = client.post(f"/v1/strategies/{address}/execute", json={"block_height": 100})
    assert skipped.status_code == 200
    assert skipped.json()["outcome"] == "SKIPPED"

    succeeded = client.post(f"/v1/strategies/{address}/execute", json={"block_height": 101})
    assert succeeded.json()["outcome"] == "SUCCEEDED"
    assert succeeded.json()["satisfied"] is True

    events = client.get(f"/v1/strategies/{address}/events").json()
    assert [item["event_type"] for item in events][-2:] == ["execution_skipped", "execution_succeeded"]

    client.post(f"/v1/strategies/{address}/status", json={"sender": "thor1owner", "status": "PAUSED"})
    paused = client.post(f"/v1/strategies/{address}/execute", json={"block_height": 200})
    assert paused.status_code == 409
    assert paused.json()["error"] == "StrategyNotActiveError"


def test_strategy_execute_failed_query_is_502(client: TestClient) -> None:
    address = f"calc-{uuid4().hex[:8]}"
    client.post(
        "/v1/strategies",
        json={
            "owner": "thor1owner",
            "contract_address": address,
            "label": "oracle gated",
            "condition": {"type": "oracle_price", "asset": "eth-eth", "direction": "ABOVE", "rate": "1"},
        },
    )
    resp = client.post(f"/v1/strategies/{address}/execute", json={"block_height": 1})
    assert resp.status_code == 502
    events = client.get(f"/v1/strategies/{address}/events").json()
    assert events[-1]["event_type"] == "execution_failed"


def test_oversized_strategy_condition_is_422(client: TestClient) -> None:
    resp = client.post(
        "/v1/strategies",
        json={
            "owner": "thor1owner",
            "contract_address": f"calc-{uuid4().hex[:8]}",
            "label": "too big",
            "condition": {
                "type": "composite",
                "threshold": "ALL",
                "conditions": [{"type": "blocks_completed", "height": i} for i in range(70)],
            },
        },
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "ConditionTooComplexError"


def test_trigger_for_paused_strategy_is_409(client: TestClient) -> None:
    address = _create_strategy(client)
    client.post(f"/v1/strategies/{address}/status", json={"sender": "thor1owner", "status": "PAUSED"})
    resp = client.post(
        "/v1/triggers",
        json={"owner": address, "condition": {"type": "block_height", "height": 5}, "msg": MSG, "to": address},
    )
    assert resp.status_code == 409
    events = client.get(f"/v1/strategies/{address}/events").json()
    assert events[-1]["event_type"] == "scheduling_skipped"
