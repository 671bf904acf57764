"""
Position fill math -- pure weighted-average cost accounting.

A buy adds quantity and re-weights the average cost:

    new_avg = (qty * avg + fill_qty * fill_price) / (qty + fill_qty)

A sell requires the held quantity to cover the request (within epsilon),
keeps the average cost, and zeroes the position when the residual falls
below epsilon.  All cents are rounded half-up to integers.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from guardrail_kernel.domain.movement import OrderSide
from guardrail_kernel.exceptions import InsufficientQuantityError, InvalidQuantityError

DEFAULT_EPSILON = Decimal("0.000001")


@dataclass(frozen=True)
class PositionState:
    quantity: Decimal
    average_cost_cents: int

    @classmethod
    def empty(cls) -> PositionState:
        return cls(quantity=Decimal("0"), average_cost_cents=0)


@dataclass(frozen=True)
class FillResult:
    """Position after a fill, valued at the fill price."""

    quantity: Decimal
    average_cost_cents: int
    market_value_cents: int
    closed: bool


def to_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def apply_fill(
    current: PositionState | None,
    symbol: str,
    side: OrderSide,
    fill_quantity: Decimal,
    fill_price_cents: int,
    epsilon: Decimal = DEFAULT_EPSILON,
) -> FillResult:
    """
    Apply one fill to a position.

    Raises:
        InvalidQuantityError: fill_quantity is not positive.
        InsufficientQuantityError: a sell exceeds the held quantity; the
            caller's position is left untouched.
    """
    if fill_quantity <= 0:
        raise InvalidQuantityError(fill_quantity)

    state = current or PositionState.empty()
    price = Decimal(fill_price_cents)

    if side == OrderSide.BUY:
        new_quantity = state.quantity + fill_quantity
        weighted = state.quantity * Decimal(state.average_cost_cents) + fill_quantity * price
        average = to_cents(weighted / new_quantity)
        return FillResult(
            quantity=new_quantity,
            average_cost_cents=average,
            market_value_cents=to_cents(new_quantity * price),
            closed=False,
        )

    if state.quantity + epsilon < fill_quantity:
        raise InsufficientQuantityError(
            symbol=symbol,
            held=str(state.quantity),
            requested=str(fill_quantity),
        )

    remaining = state.quantity - fill_quantity
    if remaining < epsilon:
        return FillResult(
            quantity=Decimal("0"),
            average_cost_cents=0,
            market_value_cents=0,
            closed=True,
        )

    return FillResult(
        quantity=remaining,
        average_cost_cents=state.average_cost_cents,
        market_value_cents=to_cents(remaining * price),
        closed=False,
    )
