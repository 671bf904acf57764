"""
Module: guardrail_kernel.models.money_map
Responsibility: ORM persistence for the money map (nodes), financial accounts
    attached to nodes, and posted account transactions.
Architecture position: Kernel > Models.  May import from db/base.py only.

Accounts are written by account sync from externally supplied records; the
guardrail engine only reads them to derive scopes (account -> owning node).
Balances are owned by sync: executing a transfer does NOT mutate
``balance_cents``.  Spend execution records an AccountTransaction instead.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from guardrail_kernel.db.base import Base, UUIDString

NODE_KINDS = ("account", "goal", "category", "income", "pod")
ACCOUNT_KINDS = ("checking", "hysa", "utma", "brokerage", "credit", "donation", "liability")


class MoneyMapNodeModel(Base):
    """A node on the organization's money map."""

    __tablename__ = "money_map_nodes"

    __table_args__ = (
        CheckConstraint(
            "kind IN ('account', 'goal', 'category', 'income', 'pod')",
            name="ck_money_map_nodes_kind",
        ),
        Index("ix_money_map_nodes_org_key", "organization_id", "key"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    key: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    label: Mapped[str] = mapped_column(String(200), nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<MoneyMapNode {self.key} ({self.kind})>"


class FinancialAccountModel(Base):
    """A financial account, optionally placed on a money-map node."""

    __tablename__ = "financial_accounts"

    __table_args__ = (
        Index("ix_financial_accounts_org", "organization_id"),
        Index("ix_financial_accounts_provider", "provider", "provider_account_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    money_map_node_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    balance_cents: Mapped[int] = mapped_column(nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    provider_account_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<FinancialAccount {self.name} ({self.kind})>"


class AccountTransactionModel(Base):
    """A posted transaction on an account (spend execution or account sync)."""

    __tablename__ = "account_transactions"

    __table_args__ = (
        CheckConstraint("direction IN ('debit', 'credit')", name="ck_account_transactions_direction"),
        Index("ix_account_transactions_account_time", "account_id", "occurred_at"),
        Index("ix_account_transactions_node_time", "money_map_node_id", "occurred_at"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    account_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    movement_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    external_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    money_map_node_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    direction: Mapped[str] = mapped_column(String(6), nullable=False)
    amount_cents: Mapped[int] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    description: Mapped[str] = mapped_column(String(300), nullable=False, default="")
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
