from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from .ledger_state import EvaluationContext
from .models import Coin, normalize_decimal
from .routes import FinRoute, SwapRoute, ThorchainRoute

_LOGGER = logging.getLogger("calc.swaps")
MAX_SLIPPAGE_BPS = 10_000


class FixedAdjustment(BaseModel):
    type: Literal["fixed"] = "fixed"


class LinearScalarAdjustment(BaseModel):
    """Scale the swap amount with how far the quoted return drifts from a base return.

    ``multiplier = 1 + scalar * (quoted - base) / base`` clamped to ``[0, 1]``;
    an adjusted amount under ``minimum_swap_amount`` makes the route unusable.
    """

    type: Literal["linear_scalar"] = "linear_scalar"
    base_receive_amount: Coin
    minimum_swap_amount: Coin | None = None
    scalar: Decimal

    @field_validator("scalar")
    @classmethod
    def normalize_scalar(cls, value: Decimal) -> Decimal:
        return normalize_decimal(value)


SwapAmountAdjustment = Annotated[
    Union[FixedAdjustment, LinearScalarAdjustment],
    Field(discriminator="type"),
]


class Swap(BaseModel):
    swap_amount: Coin
    minimum_receive_amount: Coin
    maximum_slippage_bps: int = Field(ge=0, le=MAX_SLIPPAGE_BPS)
    routes: list[SwapRoute] = Field(min_length=1)
    adjustment: SwapAmountAdjustment = Field(default_factory=FixedAdjustment)

    @model_validator(mode="after")
    def validate_denoms(self) -> "Swap":
        adjustment = self.adjustment
        if isinstance(adjustment, LinearScalarAdjustment):
            if adjustment.base_receive_amount.denom != self.minimum_receive_amount.denom:
                raise ValueError("base_receive_amount denom must match minimum_receive_amount")
            minimum = adjustment.minimum_swap_amount
            if minimum is not None and minimum.denom != self.swap_amount.denom:
                raise ValueError("minimum_swap_amount denom must match swap_amount")
        return self


@dataclass(frozen=True)
class RouteQuote:
    route: FinRoute | ThorchainRoute
    route_index: int
    offer: Coin
    expected_receive: Coin
    minimum_receive: Coin
    fee: int
    slippage_bps: int


def _net_return(returned: int, fee: int) -> int:
    return max(0, returned - fee)


def _scaled_minimum(swap: Swap, offer_amount: int) -> int:
    total = swap.swap_amount.amount
    minimum = swap.minimum_receive_amount.amount
    if offer_amount >= total or total == 0:
        return minimum
    # Ceiling division keeps a scaled-down swap at least as strict per unit.
    return -(-minimum * offer_amount // total)


def _adjusted_offer_amount(
    swap: Swap,
    route: FinRoute | ThorchainRoute,
    ctx: EvaluationContext,
) -> int | None:
    adjustment = swap.adjustment
    total = swap.swap_amount.amount
    if not isinstance(adjustment, LinearScalarAdjustment):
        return total
    base = adjustment.base_receive_amount.amount
    if base == 0:
        return total
    quote = ctx.querier.query_swap_simulation(route, swap.swap_amount, swap.minimum_receive_amount.denom)
    quoted = _net_return(quote.returned, quote.fee)
    delta = (Decimal(quoted) - Decimal(base)) / Decimal(base)
    multiplier = min(Decimal(1), max(Decimal(0), Decimal(1) + adjustment.scalar * delta))
    adjusted = int((Decimal(total) * multiplier).to_integral_value(rounding=ROUND_DOWN))
    minimum = adjustment.minimum_swap_amount
    if minimum is not None and adjusted < minimum.amount:
        return None
    return adjusted


def quote_route(
    swap: Swap,
    route: FinRoute | ThorchainRoute,
    route_index: int,
    ctx: EvaluationContext,
) -> RouteQuote | None:
    offer_amount = _adjusted_offer_amount(swap, route, ctx)
    if offer_amount is None or offer_amount == 0:
        _LOGGER.debug("route skipped route_index=%s reason=adjusted_amount_below_minimum", route_index)
        return None
    offer = Coin(denom=swap.swap_amount.denom, amount=offer_amount)
    simulation = ctx.querier.query_swap_simulation(route, offer, swap.minimum_receive_amount.denom)
    net = _net_return(simulation.returned, simulation.fee)
    minimum = _scaled_minimum(swap, offer_amount)
    if simulation.slippage_bps > swap.maximum_slippage_bps:
        _LOGGER.debug(
            "route skipped route_index=%s reason=slippage slippage_bps=%s maximum_slippage_bps=%s",
            route_index,
            simulation.slippage_bps,
            swap.maximum_slippage_bps,
        )
        return None
    if net < minimum:
        _LOGGER.debug(
            "route skipped route_index=%s reason=below_minimum_receive net=%s minimum=%s",
            route_index,
            net,
            minimum,
        )
        return None
    denom = swap.minimum_receive_amount.denom
    return RouteQuote(
        route=route,
        route_index=route_index,
        offer=offer,
        expected_receive=Coin(denom=denom, amount=net),
        minimum_receive=Coin(denom=denom, amount=minimum),
        fee=simulation.fee,
        slippage_bps=simulation.slippage_bps,
    )


def best_route(swap: Swap, ctx: EvaluationContext) -> RouteQuote | None:
    """Quote every route and return the one with the highest net return.

    Ties keep the earliest route in ``swap.routes``. Query failures propagate.
    """
    best: RouteQuote | None = None
    for index, route in enumerate(swap.routes):
        quote = quote_route(swap, route, index, ctx)
        if quote is None:
            continue
        if best is None or quote.expected_receive.amount > best.expected_receive.amount:
            best = quote
    return best
