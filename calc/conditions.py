from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from .config import load_app_config
from .errors import ConditionTooComplexError, StateQueryError
from .ledger_state import EvaluationContext, resolve_oracle_asset
from .models import (
    Coin,
    Direction,
    Side,
    StrategyStatus,
    Threshold,
    normalize_address,
    normalize_decimal,
    to_utc,
)
from .swaps import Swap, best_route

_LOGGER = logging.getLogger("calc.conditions")


class TimestampElapsed(BaseModel):
    type: Literal["timestamp_elapsed"] = "timestamp_elapsed"
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return to_utc(value)


class BlocksCompleted(BaseModel):
    type: Literal["blocks_completed"] = "blocks_completed"
    height: int = Field(ge=0)


class CanSwap(BaseModel):
    type: Literal["can_swap"] = "can_swap"
    swap: Swap


class LimitOrderFilled(BaseModel):
    type: Literal["limit_order_filled"] = "limit_order_filled"
    owner: str
    pair_address: str
    side: Side
    price: Decimal

    @field_validator("owner", "pair_address")
    @classmethod
    def validate_addresses(cls, value: str) -> str:
        return normalize_address(value)

    @field_validator("price")
    @classmethod
    def normalize_price(cls, value: Decimal) -> Decimal:
        return normalize_decimal(value)


class BalanceAvailable(BaseModel):
    type: Literal["balance_available"] = "balance_available"
    address: str
    amount: Coin

    @field_validator("address")
    @classmethod
    def validate_address(cls, value: str) -> str:
        return normalize_address(value)


class StrategyBalanceAvailable(BaseModel):
    type: Literal["strategy_balance_available"] = "strategy_balance_available"
    amount: Coin


class StrategyStatusCondition(BaseModel):
    """Gate on another strategy's lifecycle status, looked up through its manager."""

    type: Literal["strategy_status"] = "strategy_status"
    manager_contract: str
    contract_address: str
    status: StrategyStatus

    @field_validator("manager_contract", "contract_address")
    @classmethod
    def validate_addresses(cls, value: str) -> str:
        return normalize_address(value)


class OraclePrice(BaseModel):
    type: Literal["oracle_price"] = "oracle_price"
    asset: str
    direction: Direction
    rate: Decimal

    @field_validator("rate")
    @classmethod
    def normalize_rate(cls, value: Decimal) -> Decimal:
        return normalize_decimal(value)


class Not(BaseModel):
    type: Literal["not"] = "not"
    condition: Condition


class Composite(BaseModel):
    type: Literal["composite"] = "composite"
    conditions: list[Condition] = Field(default_factory=list)
    threshold: Threshold


Condition = Annotated[
    Union[
        TimestampElapsed,
        BlocksCompleted,
        CanSwap,
        LimitOrderFilled,
        BalanceAvailable,
        StrategyBalanceAvailable,
        StrategyStatusCondition,
        OraclePrice,
        Not,
        Composite,
    ],
    Field(discriminator="type"),
]

Not.model_rebuild()
Composite.model_rebuild()

CONDITION_ADAPTER: TypeAdapter[Condition] = TypeAdapter(Condition)

# Per-variant cost weights; state lookups other than bank balances weigh 2.
_ATOMIC_SIZES: dict[type[BaseModel], int] = {
    TimestampElapsed: 1,
    BlocksCompleted: 1,
    CanSwap: 2,
    LimitOrderFilled: 2,
    BalanceAvailable: 1,
    StrategyBalanceAvailable: 1,
    StrategyStatusCondition: 2,
    OraclePrice: 2,
}


def parse_condition(raw: object) -> Condition:
    return CONDITION_ADAPTER.validate_python(raw)


def condition_size(condition: Condition) -> int:
    if isinstance(condition, Not):
        return condition_size(condition.condition)
    if isinstance(condition, Composite):
        return 1 + sum(condition_size(child) for child in condition.conditions)
    return _ATOMIC_SIZES[type(condition)]


def ensure_condition_size(condition: Condition, limit: int | None = None) -> int:
    size = condition_size(condition)
    max_size = load_app_config().engine.max_condition_size if limit is None else limit
    if size > max_size:
        raise ConditionTooComplexError(size, max_size)
    return size


def canonical_condition_bytes(condition: Condition, owner: str) -> bytes:
    payload = [owner, CONDITION_ADAPTER.dump_python(condition, mode="json")]
    return json.dumps(payload, ensure_ascii=False, sort_keys=True, separators=(",", ":")).encode("utf-8")


def condition_id(condition: Condition, owner: str) -> int:
    digest = hashlib.blake2b(canonical_condition_bytes(condition, owner), digest_size=8).digest()
    return int.from_bytes(digest, "big")


def is_satisfied(condition: Condition, ctx: EvaluationContext) -> bool:
    querier = ctx.querier
    if isinstance(condition, TimestampElapsed):
        return ctx.block_time > condition.timestamp
    if isinstance(condition, BlocksCompleted):
        return ctx.block_height > condition.height
    if isinstance(condition, CanSwap):
        return best_route(condition.swap, ctx) is not None
    if isinstance(condition, LimitOrderFilled):
        order = querier.query_order(
            condition.pair_address,
            condition.owner,
            condition.side,
            condition.price,
        )
        return order.remaining == 0
    if isinstance(condition, BalanceAvailable):
        balance = querier.query_balance(condition.address, condition.amount.denom)
        return balance.amount >= condition.amount.amount
    if isinstance(condition, StrategyBalanceAvailable):
        balance = querier.query_balance(ctx.contract_address, condition.amount.denom)
        return balance.amount >= condition.amount.amount
    if isinstance(condition, StrategyStatusCondition):
        handle = querier.query_strategy(condition.manager_contract, condition.contract_address)
        return handle.status == condition.status
    if isinstance(condition, OraclePrice):
        asset = resolve_oracle_asset(condition.asset)
        try:
            price = querier.query_oracle_price(asset)
        except StateQueryError as exc:
            raise StateQueryError(f"failed to load oracle price for {condition.asset}, error: {exc}") from exc
        if condition.direction == "ABOVE":
            return price > condition.rate
        return price < condition.rate
    if isinstance(condition, Not):
        return not is_satisfied(condition.condition, ctx)
    if isinstance(condition, Composite):
        # Every child is evaluated so a failing lookup is never masked by an early result.
        results = [is_satisfied(child, ctx) for child in condition.conditions]
        if condition.threshold == "ALL":
            return all(results)
        return any(results)
    raise TypeError(f"unsupported condition type: {type(condition).__name__}")


def evaluate_condition(condition: Condition, owner: str, ctx: EvaluationContext) -> bool:
    satisfied = is_satisfied(condition, ctx)
    _LOGGER.info(
        "condition evaluate condition_id=%s owner=%s type=%s size=%s block_height=%s satisfied=%s",
        condition_id(condition, owner),
        owner,
        condition.type,
        condition_size(condition),
        ctx.block_height,
        satisfied,
    )
    return satisfied
