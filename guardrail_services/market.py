"""
guardrail_services.market -- market quote providers.

Responsibility:
    Defines the QuoteProvider protocol the investing flow depends on (quotes
    and market-order fills) and a
    deterministic VirtualMarketProvider backed by configured prices.  Real
    brokerage adapters live outside this repository and implement the same
    protocol.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol, runtime_checkable

from guardrail_config.schema import QuoteDef
from guardrail_kernel.domain.clock import Clock, SystemClock
from guardrail_kernel.domain.movement import OrderSide
from guardrail_kernel.exceptions import QuoteUnavailableError
from guardrail_kernel.logging_config import get_logger

logger = get_logger("services.market")


@dataclass(frozen=True)
class Quote:
    symbol: str
    price_cents: int
    instrument_kind: str
    currency: str
    as_of: datetime

    def to_dict(self) -> dict[str, object]:
        return {
            "symbol": self.symbol,
            "price_cents": self.price_cents,
            "instrument_kind": self.instrument_kind,
            "currency": self.currency,
            "as_of": self.as_of.isoformat(),
        }


@dataclass(frozen=True)
class Fill:
    symbol: str
    side: OrderSide
    quantity: Decimal
    price_cents: int
    filled_at: datetime


@runtime_checkable
class QuoteProvider(Protocol):
    """Source of market quotes and order fills."""

    provider_id: str

    def get_quote(self, symbol: str) -> Quote | None:
        """Latest quote for ``symbol``, or None when the symbol is unknown."""
        ...

    def execute_order(self, symbol: str, side: OrderSide, quantity: Decimal) -> Fill:
        """Fill a market order; raises QuoteUnavailableError for unknown symbols."""
        ...


class VirtualMarketProvider:
    """
    Deterministic in-process market.

    Prices come from configuration and can be moved with ``set_price``.
    Thread-safe: quotes are read from provider-queue worker threads.
    """

    provider_id = "virtual"

    def __init__(self, quotes: tuple[QuoteDef, ...] = (), clock: Clock | None = None):
        self._clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._prices: dict[str, QuoteDef] = {q.symbol.upper(): q for q in quotes}

    def set_price(self, symbol: str, price_cents: int, instrument_kind: str = "equity") -> None:
        key = symbol.upper()
        with self._lock:
            existing = self._prices.get(key)
            self._prices[key] = QuoteDef(
                symbol=key,
                price_cents=price_cents,
                instrument_kind=existing.instrument_kind if existing else instrument_kind,
                currency=existing.currency if existing else "USD",
            )

    def remove(self, symbol: str) -> None:
        with self._lock:
            self._prices.pop(symbol.upper(), None)

    def get_quote(self, symbol: str) -> Quote | None:
        with self._lock:
            definition = self._prices.get(symbol.upper())
        if definition is None:
            logger.info("quote_missing", extra={"symbol": symbol.upper()})
            return None
        return Quote(
            symbol=definition.symbol,
            price_cents=definition.price_cents,
            instrument_kind=definition.instrument_kind,
            currency=definition.currency,
            as_of=self._clock.now(),
        )

    def execute_order(self, symbol: str, side: OrderSide, quantity: Decimal) -> Fill:
        """Fill at the current configured price."""
        quote = self.get_quote(symbol)
        if quote is None:
            raise QuoteUnavailableError(symbol.upper())
        fill = Fill(
            symbol=quote.symbol,
            side=side,
            quantity=quantity,
            price_cents=quote.price_cents,
            filled_at=quote.as_of,
        )
        logger.info(
            "virtual_order_filled",
            extra={"symbol": fill.symbol, "side": side.value, "price_cents": fill.price_cents},
        )
        return fill
