"""
Value objects for money.

All guardrail math runs on integer minor units.  A Money value is the
``{cents, currency}`` pair every entry point accepts; it never carries a
float and never converts between currencies.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")


@dataclass(frozen=True, slots=True)
class Money:
    """
    An amount of money in integer minor units.

    Invariants:
        - cents is an ``int`` (``bool`` is rejected).
        - currency is a three-letter uppercase ISO 4217 code.
    """

    cents: int
    currency: str = "USD"

    def __post_init__(self) -> None:
        if isinstance(self.cents, bool) or not isinstance(self.cents, int):
            raise TypeError(f"Money.cents must be int, got {type(self.cents).__name__}")
        if not isinstance(self.currency, str) or not _CURRENCY_PATTERN.match(self.currency):
            raise ValueError(f"Invalid currency code: {self.currency!r}")

    @classmethod
    def of(cls, cents: int, currency: str = "USD") -> Money:
        return cls(cents=cents, currency=currency.upper())

    @property
    def is_positive(self) -> bool:
        return self.cents > 0

    def to_dict(self) -> dict[str, int | str]:
        return {"cents": self.cents, "currency": self.currency}

    def __str__(self) -> str:
        return f"{self.cents / 100:.2f} {self.currency}"
