from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

UTC = timezone.utc
UINT128_MAX = (1 << 128) - 1
MAX_AFFILIATE_BPS = 10_000

StrategyStatus = Literal["ACTIVE", "PAUSED", "ARCHIVED"]
Threshold = Literal["ALL", "ANY"]
Direction = Literal["ABOVE", "BELOW"]
Side = Literal["BASE", "QUOTE"]


def to_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def normalize_decimal(value: Decimal) -> Decimal:
    if not value.is_finite():
        raise ValueError("decimal value must be finite")
    if value < 0:
        raise ValueError("decimal value cannot be negative")
    # Fixed-point form so 1.0, 1.00 and 1E+0 share one canonical encoding.
    return Decimal(format(value.normalize(), "f"))


def normalize_address(value: str) -> str:
    normalized = str(value).strip()
    if not normalized:
        raise ValueError("address cannot be empty")
    return normalized


class Coin(BaseModel):
    model_config = ConfigDict(frozen=True)

    denom: str
    amount: int = Field(ge=0, le=UINT128_MAX)

    @field_validator("denom")
    @classmethod
    def normalize_denom(cls, value: str) -> str:
        v = value.strip()
        if not v:
            raise ValueError("denom cannot be empty")
        return v


class Affiliate(BaseModel):
    label: str
    address: str
    bps: int = Field(ge=0, le=MAX_AFFILIATE_BPS)

    @field_validator("address")
    @classmethod
    def validate_address(cls, value: str) -> str:
        return normalize_address(value)


class StrategyHandle(BaseModel):
    id: int
    owner: str
    contract_address: str
    created_at: datetime
    updated_at: datetime
    label: str
    status: StrategyStatus
    affiliates: list[Affiliate] = Field(default_factory=list)
    condition: dict[str, Any] | None = None


class OrderResponse(BaseModel):
    owner: str
    side: Side
    price: Decimal
    rate: Decimal
    remaining: int = Field(ge=0)
    filled: int = Field(ge=0)
    offer: int = Field(default=0, ge=0)
    updated_at: datetime | None = None


class SimulationResult(BaseModel):
    returned: int = Field(ge=0)
    fee: int = Field(default=0, ge=0)
    slippage_bps: int = Field(default=0, ge=0)


class ContractCall(BaseModel):
    model_config = ConfigDict(frozen=True)

    contract_address: str
    msg: str
    funds: list[Coin] = Field(default_factory=list)


class DcaStatistics(BaseModel):
    amount_deposited: Coin
    amount_swapped: Coin
    amount_received: Coin


class EventLogItem(BaseModel):
    timestamp: datetime
    event_type: str
    contract_address: str
    attributes: dict[str, str] = Field(default_factory=dict)


class StrategyStatusUpdateIn(BaseModel):
    sender: str
    status: StrategyStatus
    reason: str | None = None


class StrategyConfigUpdateIn(BaseModel):
    sender: str
    config: dict[str, Any]


class ControlResponse(BaseModel):
    contract_address: str
    status: StrategyStatus
    message: str
    updated_at: datetime


class FundsIn(BaseModel):
    sender: str
    funds: list[Coin] = Field(min_length=1)

    @field_validator("sender")
    @classmethod
    def validate_sender(cls, value: str) -> str:
        return normalize_address(value)


class BlockEnvIn(BaseModel):
    block_time: datetime | None = None
    block_height: int = Field(ge=0)
