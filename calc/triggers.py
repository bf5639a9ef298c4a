from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from .errors import ConditionNotMetError, ExecutionNotImplementedError
from .models import Coin, ContractCall, normalize_address, to_utc

_LOGGER = logging.getLogger("calc.triggers")
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class TimestampTriggerCondition(BaseModel):
    type: Literal["timestamp"] = "timestamp"
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return to_utc(value)


class BlockHeightTriggerCondition(BaseModel):
    type: Literal["block_height"] = "block_height"
    height: int = Field(ge=0)


class LimitOrderTriggerCondition(BaseModel):
    type: Literal["limit_order"] = "limit_order"
    swap_amount: Coin
    minimum_receive_amount: Coin


TriggerCondition = Annotated[
    Union[TimestampTriggerCondition, BlockHeightTriggerCondition, LimitOrderTriggerCondition],
    Field(discriminator="type"),
]


class TriggerIn(BaseModel):
    owner: str
    condition: TriggerCondition
    msg: str
    to: str
    execution_rebate: list[Coin] = Field(default_factory=list)

    @field_validator("owner", "to")
    @classmethod
    def validate_addresses(cls, value: str) -> str:
        return normalize_address(value)

    @field_validator("msg")
    @classmethod
    def validate_msg(cls, value: str) -> str:
        try:
            base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("msg must be base64 encoded") from exc
        return value


class Trigger(TriggerIn):
    id: int = Field(ge=0)


class ConditionFilter(BaseModel):
    """Selects triggers by owner, by a time/height window, or by condition kind."""

    type: Literal["owner", "timestamp", "block_height", "limit_order"]
    address: str | None = None
    start: int | datetime | None = None
    end: int | datetime | None = None

    @model_validator(mode="after")
    def validate_shape(self) -> "ConditionFilter":
        if self.type == "owner" and not (self.address or "").strip():
            raise ValueError("owner filter requires address")
        if self.type == "timestamp":
            for bound in (self.start, self.end):
                if bound is not None and not isinstance(bound, datetime):
                    raise ValueError("timestamp filter bounds must be datetimes")
            self.start = to_utc(self.start) if isinstance(self.start, datetime) else None
            self.end = to_utc(self.end) if isinstance(self.end, datetime) else None
        if self.type == "block_height":
            for bound in (self.start, self.end):
                if bound is not None and (isinstance(bound, datetime) or bound < 0):
                    raise ValueError("block_height filter bounds must be non-negative integers")
        return self


@dataclass(frozen=True)
class BlockEnv:
    block_time: datetime
    block_height: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "block_time", to_utc(self.block_time))


def can_execute(trigger: Trigger, env: BlockEnv) -> bool:
    condition = trigger.condition
    if isinstance(condition, TimestampTriggerCondition):
        return env.block_time > condition.timestamp
    if isinstance(condition, BlockHeightTriggerCondition):
        return env.block_height > condition.height
    return False


def execute(trigger: Trigger, env: BlockEnv) -> ContractCall:
    """Build the single outbound call for a trigger whose condition holds.

    Limit-order triggers fail with ``ExecutionNotImplementedError`` whatever the
    ledger state; otherwise an unmet condition fails with ``ConditionNotMetError``.
    """
    if isinstance(trigger.condition, LimitOrderTriggerCondition):
        raise ExecutionNotImplementedError("limit order trigger execution")
    if not can_execute(trigger, env):
        raise ConditionNotMetError(trigger.condition)
    call = ContractCall(contract_address=trigger.to, msg=trigger.msg, funds=[])
    _LOGGER.info(
        "trigger execute trigger_id=%s owner=%s to=%s condition=%s block_height=%s",
        trigger.id,
        trigger.owner,
        trigger.to,
        trigger.condition.type,
        env.block_height,
    )
    return call


def timestamp_key(value: datetime) -> int:
    return (to_utc(value) - EPOCH) // timedelta(microseconds=1)


def condition_sort_key(condition: TriggerCondition) -> int | None:
    """Integer ordering key for range filters: epoch microseconds or block height."""
    if isinstance(condition, TimestampTriggerCondition):
        return timestamp_key(condition.timestamp)
    if isinstance(condition, BlockHeightTriggerCondition):
        return condition.height
    return None


def filter_key_range(condition_filter: ConditionFilter) -> tuple[int | None, int | None]:
    """Inclusive ``(start, end)`` bounds in ``condition_sort_key`` units."""
    if condition_filter.type not in ("timestamp", "block_height"):
        return None, None
    bounds: list[int | None] = []
    for bound in (condition_filter.start, condition_filter.end):
        if bound is None:
            bounds.append(None)
        elif isinstance(bound, datetime):
            bounds.append(timestamp_key(bound))
        else:
            bounds.append(int(bound))
    return bounds[0], bounds[1]
