"""
Module: guardrail_kernel.models.planning
Responsibility: ORM persistence for the planning records that introduce
    fundable or spendable targets: savings goals, budgets, income streams.
Architecture position: Kernel > Models.  May import from db/base.py only.

Each of these records is paired with a provisioned guardrail at creation
time (see services/provisioning.py).
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from guardrail_kernel.db.base import TrackedBase, UUIDString


class SavingsGoalModel(TrackedBase):
    """A savings goal backed by a goal node and a savings account."""

    __tablename__ = "savings_goals"

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'paused', 'achieved', 'archived')",
            name="ck_savings_goals_status",
        ),
        CheckConstraint("target_cents > 0", name="ck_savings_goals_target_positive"),
        Index("ix_savings_goals_org", "organization_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    node_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    account_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    target_cents: Mapped[int] = mapped_column(nullable=False)
    starting_cents: Mapped[int] = mapped_column(nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    achieved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    archived_at: Mapped[datetime | None] = mapped_column(nullable=True)


class BudgetModel(TrackedBase):
    """Planned spend for one money-map node in one YYYY-MM period."""

    __tablename__ = "budgets"

    __table_args__ = (
        Index("ix_budgets_org_period", "organization_id", "period_key"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    node_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    period_key: Mapped[str] = mapped_column(String(7), nullable=False)
    planned_cents: Mapped[int] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    over_limit_alerted_at: Mapped[datetime | None] = mapped_column(nullable=True)


class IncomeStreamModel(TrackedBase):
    """Recurring income (allowance, chores, wages) paid into an account."""

    __tablename__ = "income_streams"

    __table_args__ = (
        CheckConstraint(
            "cadence IN ('daily', 'weekly', 'biweekly', 'monthly', 'quarterly', 'yearly')",
            name="ck_income_streams_cadence",
        ),
        CheckConstraint("status IN ('active', 'paused')", name="ck_income_streams_status"),
        Index("ix_income_streams_due", "organization_id", "status", "next_scheduled_at"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    cadence: Mapped[str] = mapped_column(String(20), nullable=False)
    amount_cents: Mapped[int] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    source_account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    destination_account_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_schedule: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    next_scheduled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
