"""
Module: guardrail_kernel.models.position
Responsibility: ORM persistence for investment positions (one row per
    account and symbol).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One position per (account, symbol) (unique constraint).
    - Read-modify-write of quantity/average cost is serialized: the row is
      read FOR UPDATE and every UPDATE is a compare-and-swap on ``version``
      (SQLAlchemy version_id_col).  A lost race raises StaleDataError, which
      the lifecycle surfaces as OptimisticLockError.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from guardrail_kernel.db.base import Base, UUIDString


class InvestmentPositionModel(Base):
    """Holding of one symbol in one account."""

    __tablename__ = "investment_positions"

    __table_args__ = (
        UniqueConstraint("account_id", "symbol", name="uq_investment_positions_account_symbol"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    account_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    instrument_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    average_cost_cents: Mapped[int] = mapped_column(nullable=False, default=0)
    market_value_cents: Mapped[int] = mapped_column(nullable=False, default=0)
    last_price_cents: Mapped[int] = mapped_column(nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<InvestmentPosition {self.symbol} qty={self.quantity} v{self.version}>"
