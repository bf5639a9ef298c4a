from __future__ import annotations

import json
from datetime import datetime, timezone

from calc.events import (
    DOMAIN_EVENT_ADAPTER,
    ExecutionFailed,
    ExecutionSkipped,
    ExecutionSucceeded,
    FundsDeposited,
    FundsWithdrawn,
    SchedulingFailed,
    SchedulingSkipped,
    SchedulingSucceeded,
    StrategyArchived,
    StrategyInstantiated,
    StrategyPaused,
    StrategyResumed,
    StrategyUpdated,
    to_event_log_item,
)
from calc.models import Coin, DcaStatistics
from calc.triggers import BlockHeightTriggerCondition


TS = datetime(2025, 3, 1, tzinfo=timezone.utc)


def test_ledger_event_names() -> None:
    events = [
        (StrategyInstantiated(contract_address="s"), "strategy_created"),
        (StrategyPaused(contract_address="s", reason="r"), "strategy_paused"),
        (StrategyArchived(contract_address="s"), "strategy_archived"),
        (StrategyResumed(contract_address="s"), "strategy_resumed"),
        (StrategyUpdated(contract_address="s", old_config={}, new_config={}), "strategy_updated"),
        (FundsDeposited(contract_address="s", sender="a", funds=[]), "funds_deposited"),
        (FundsWithdrawn(contract_address="s", recipient="a", funds=[]), "funds_withdrawn"),
        (ExecutionSucceeded(contract_address="s"), "execution_succeeded"),
        (ExecutionFailed(contract_address="s", reason="r"), "execution_failed"),
        (ExecutionSkipped(contract_address="s", reason="r"), "execution_skipped"),
        (SchedulingSucceeded(contract_address="s", conditions=[]), "scheduling_succeeded"),
        (SchedulingFailed(contract_address="s", reason="r"), "scheduling_failed"),
        (SchedulingSkipped(contract_address="s", reason="r"), "scheduling_skipped"),
    ]
    for event, name in events:
        item = to_event_log_item(event, TS)
        assert item.event_type == name
        assert item.contract_address == "s"
        assert item.attributes["contract_address"] == "s"


def test_attributes_are_json_strings() -> None:
    deposit = FundsDeposited(
        contract_address="s",
        sender="thor1owner",
        funds=[Coin(denom="rune", amount=10**20)],
    )
    attrs = deposit.attributes()
    assert attrs["from"] == "thor1owner"
    assert json.loads(attrs["amount"]) == [{"denom": "rune", "amount": 10**20}]

    succeeded = ExecutionSucceeded(
        contract_address="s",
        statistics=DcaStatistics(
            amount_deposited=Coin(denom="rune", amount=100),
            amount_swapped=Coin(denom="rune", amount=40),
            amount_received=Coin(denom="x/ruji", amount=39),
        ),
    )
    stats = json.loads(succeeded.attributes()["statistics"])
    assert stats["amount_swapped"]["amount"] == 40
    assert json.loads(ExecutionSucceeded(contract_address="s").attributes()["statistics"]) is None
    assert ExecutionFailed(contract_address="s", reason="boom").attributes()["error"] == "boom"


def test_scheduling_succeeded_lists_conditions() -> None:
    event = SchedulingSucceeded(contract_address="s", conditions=[BlockHeightTriggerCondition(height=9)])
    conditions = json.loads(event.attributes()["conditions"])
    assert conditions == [{"type": "block_height", "height": 9}]


def test_domain_event_round_trips_through_json() -> None:
    event = StrategyUpdated(contract_address="s", old_config={"a": 1}, new_config={"a": 2})
    restored = DOMAIN_EVENT_ADAPTER.validate_json(event.model_dump_json())
    assert isinstance(restored, StrategyUpdated)
    assert restored.new_config == {"a": 2}
