from __future__ import annotations

import json
from datetime import datetime
from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from .models import Coin, DcaStatistics, EventLogItem, to_utc
from .triggers import TriggerCondition


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def _dump_coins(coins: list[Coin]) -> str:
    return _dumps([coin.model_dump(mode="json") for coin in coins])


class _DomainEventBase(BaseModel):
    event_name: ClassVar[str]

    contract_address: str

    def attributes(self) -> dict[str, str]:
        return {"contract_address": self.contract_address}


class StrategyInstantiated(_DomainEventBase):
    event_name: ClassVar[str] = "strategy_created"
    type: Literal["strategy_instantiated"] = "strategy_instantiated"
    config: dict[str, Any] = Field(default_factory=dict)

    def attributes(self) -> dict[str, str]:
        return {**super().attributes(), "config": _dumps(self.config)}


class StrategyPaused(_DomainEventBase):
    event_name: ClassVar[str] = "strategy_paused"
    type: Literal["strategy_paused"] = "strategy_paused"
    reason: str

    def attributes(self) -> dict[str, str]:
        return {**super().attributes(), "reason": self.reason}


class StrategyArchived(_DomainEventBase):
    event_name: ClassVar[str] = "strategy_archived"
    type: Literal["strategy_archived"] = "strategy_archived"


class StrategyResumed(_DomainEventBase):
    event_name: ClassVar[str] = "strategy_resumed"
    type: Literal["strategy_resumed"] = "strategy_resumed"


class StrategyUpdated(_DomainEventBase):
    event_name: ClassVar[str] = "strategy_updated"
    type: Literal["strategy_updated"] = "strategy_updated"
    old_config: dict[str, Any]
    new_config: dict[str, Any]

    def attributes(self) -> dict[str, str]:
        return {
            **super().attributes(),
            "old_config": _dumps(self.old_config),
            "new_config": _dumps(self.new_config),
        }


class FundsDeposited(_DomainEventBase):
    event_name: ClassVar[str] = "funds_deposited"
    type: Literal["funds_deposited"] = "funds_deposited"
    sender: str
    funds: list[Coin]

    def attributes(self) -> dict[str, str]:
        return {**super().attributes(), "from": self.sender, "amount": _dump_coins(self.funds)}


class FundsWithdrawn(_DomainEventBase):
    event_name: ClassVar[str] = "funds_withdrawn"
    type: Literal["funds_withdrawn"] = "funds_withdrawn"
    recipient: str
    funds: list[Coin]

    def attributes(self) -> dict[str, str]:
        return {**super().attributes(), "to": self.recipient, "amount": _dump_coins(self.funds)}


class ExecutionSucceeded(_DomainEventBase):
    event_name: ClassVar[str] = "execution_succeeded"
    type: Literal["execution_succeeded"] = "execution_succeeded"
    statistics: DcaStatistics | None = None

    def attributes(self) -> dict[str, str]:
        stats = None if self.statistics is None else self.statistics.model_dump(mode="json")
        return {**super().attributes(), "statistics": _dumps(stats)}


class ExecutionFailed(_DomainEventBase):
    event_name: ClassVar[str] = "execution_failed"
    type: Literal["execution_failed"] = "execution_failed"
    reason: str

    def attributes(self) -> dict[str, str]:
        return {**super().attributes(), "error": self.reason}


class ExecutionSkipped(_DomainEventBase):
    event_name: ClassVar[str] = "execution_skipped"
    type: Literal["execution_skipped"] = "execution_skipped"
    reason: str

    def attributes(self) -> dict[str, str]:
        return {**super().attributes(), "reason": self.reason}


class SchedulingSucceeded(_DomainEventBase):
    event_name: ClassVar[str] = "scheduling_succeeded"
    type: Literal["scheduling_succeeded"] = "scheduling_succeeded"
    conditions: list[TriggerCondition]

    def attributes(self) -> dict[str, str]:
        conditions = [condition.model_dump(mode="json") for condition in self.conditions]
        return {**super().attributes(), "conditions": _dumps(conditions)}


class SchedulingFailed(_DomainEventBase):
    event_name: ClassVar[str] = "scheduling_failed"
    type: Literal["scheduling_failed"] = "scheduling_failed"
    reason: str

    def attributes(self) -> dict[str, str]:
        return {**super().attributes(), "error": self.reason}


class SchedulingSkipped(_DomainEventBase):
    event_name: ClassVar[str] = "scheduling_skipped"
    type: Literal["scheduling_skipped"] = "scheduling_skipped"
    reason: str

    def attributes(self) -> dict[str, str]:
        return {**super().attributes(), "reason": self.reason}


DomainEvent = Annotated[
    Union[
        StrategyInstantiated,
        StrategyPaused,
        StrategyArchived,
        StrategyResumed,
        StrategyUpdated,
        FundsDeposited,
        FundsWithdrawn,
        ExecutionSucceeded,
        ExecutionFailed,
        ExecutionSkipped,
        SchedulingSucceeded,
        SchedulingFailed,
        SchedulingSkipped,
    ],
    Field(discriminator="type"),
]

DOMAIN_EVENT_ADAPTER: TypeAdapter[DomainEvent] = TypeAdapter(DomainEvent)


def to_event_log_item(event: DomainEvent, timestamp: datetime) -> EventLogItem:
    return EventLogItem(
        timestamp=to_utc(timestamp),
        event_type=event.event_name,
        contract_address=event.contract_address,
        attributes=event.attributes(),
    )
