"""
Module: guardrail_kernel.models.movement
Responsibility: ORM persistence for money-movement requests (transfers and
    investment orders share one table).
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - status restricted to MovementStatus values (check constraint); the
      transition rules themselves live in MovementLifecycle.
    - Movements are never deleted (ORM before_delete listener).
    - amount_cents is a positive integer of minor units.

Failure modes:
    - ImmutabilityViolationError on DELETE.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, Index, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from guardrail_kernel.db.base import Base, UUIDString
from guardrail_kernel.domain.movement import ApproverTier, MovementStatus
from guardrail_kernel.exceptions import ImmutabilityViolationError


class MoneyMovementModel(Base):
    """Persistent money-movement request."""

    __tablename__ = "money_movements"

    __table_args__ = (
        CheckConstraint(
            "status IN (" + ", ".join(f"'{s.value}'" for s in MovementStatus) + ")",
            name="ck_money_movements_status",
        ),
        CheckConstraint("kind IN ('transfer', 'order')", name="ck_money_movements_kind"),
        CheckConstraint("amount_cents > 0", name="ck_money_movements_amount_positive"),
        Index("ix_money_movements_org_status", "organization_id", "status"),
        Index("ix_money_movements_org_intent", "organization_id", "intent"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    intent: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)

    amount_cents: Mapped[int] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    source_account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    destination_account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Orders
    symbol: Mapped[str | None] = mapped_column(String(20), nullable=True)
    instrument_kind: Mapped[str | None] = mapped_column(String(20), nullable=True)
    side: Mapped[str | None] = mapped_column(String(4), nullable=True)
    quantity: Mapped[Decimal | None] = mapped_column(nullable=True)
    execution_price_cents: Mapped[int | None] = mapped_column(nullable=True)
    notional_cents: Mapped[int | None] = mapped_column(nullable=True)

    approver_tier: Mapped[str] = mapped_column(String(20), nullable=False, default=ApproverTier.GUARDIAN.value)
    requested_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    requested_at: Mapped[datetime] = mapped_column(nullable=False)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<MoneyMovement {self.id} {self.kind}/{self.intent} {self.status}>"


@event.listens_for(MoneyMovementModel, "before_delete")
def prevent_movement_delete(mapper, connection, target):
    """Movements are append-only financial records."""
    raise ImmutabilityViolationError(
        entity_type="MoneyMovement",
        entity_id=str(target.id),
        reason="Money movements are never deleted",
    )
