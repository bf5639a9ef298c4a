from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, field_validator

from .models import MAX_AFFILIATE_BPS, normalize_address


class FinRoute(BaseModel):
    """Swap against a FIN order-book pair contract."""

    type: Literal["fin"] = "fin"
    pair_address: str

    @field_validator("pair_address")
    @classmethod
    def validate_pair_address(cls, value: str) -> str:
        return normalize_address(value)


class ThorchainRoute(BaseModel):
    """Swap through the base-layer pools, optionally streamed."""

    type: Literal["thorchain"] = "thorchain"
    streaming_interval: int | None = Field(default=None, ge=1)
    max_streaming_quantity: int | None = Field(default=None, ge=1)
    affiliate_code: str | None = None
    affiliate_bps: int | None = Field(default=None, ge=0, le=MAX_AFFILIATE_BPS)


SwapRoute = Annotated[Union[FinRoute, ThorchainRoute], Field(discriminator="type")]


def route_key(route: FinRoute | ThorchainRoute, offer_denom: str, ask_denom: str) -> str:
    if isinstance(route, FinRoute):
        return f"fin:{route.pair_address}"
    return f"thorchain:{offer_denom}>{ask_denom}"
