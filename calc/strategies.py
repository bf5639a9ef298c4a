from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from .conditions import Condition
from .models import Affiliate, StrategyStatus, normalize_address

ExecutionOutcome = Literal["SUCCEEDED", "SKIPPED", "FAILED"]


class StrategyCreateIn(BaseModel):
    owner: str
    contract_address: str
    label: str
    affiliates: list[Affiliate] = Field(default_factory=list)
    config: dict[str, Any] = Field(default_factory=dict)
    condition: Condition | None = None

    @field_validator("owner", "contract_address")
    @classmethod
    def validate_addresses(cls, value: str) -> str:
        return normalize_address(value)

    @field_validator("label")
    @classmethod
    def validate_label(cls, value: str) -> str:
        v = value.strip()
        if not v:
            raise ValueError("label cannot be empty")
        return v


class StrategyExecutionOut(BaseModel):
    """Outcome of gating one strategy run on its stored condition.

    ``condition_id`` is ``None`` for strategies created without a condition,
    which always run.
    """

    contract_address: str
    status: StrategyStatus
    outcome: ExecutionOutcome
    satisfied: bool
    condition_id: int | None = None
    block_height: int
    executed_at: datetime
