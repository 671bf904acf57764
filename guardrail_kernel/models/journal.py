"""
Module: guardrail_kernel.models.journal
Responsibility: ORM persistence for the event journal -- one immutable row per
    guardrail decision and lifecycle transition.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: UPDATE and DELETE raise ImmutabilityViolationError.

Audit relevance:
    The journal IS the timeline.  Event kinds include transfer_requested,
    transfer_executed, order_submitted, order_executed, order_failed,
    guardrail_updated, goal_created, income_completed, budget_over_limit.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Index, String, event
from sqlalchemy.orm import Mapped, mapped_column

from guardrail_kernel.db.base import Base, UUIDString
from guardrail_kernel.exceptions import ImmutabilityViolationError


class JournalEventKind(str, Enum):
    """Kinds of journal entries.

    Every movement emits a ``*_requested`` / ``order_submitted`` entry, plus
    an ``*_executed`` entry when it executes.
    """

    # Transfers
    TRANSFER_REQUESTED = "transfer_requested"
    TRANSFER_APPROVED = "transfer_approved"
    TRANSFER_EXECUTED = "transfer_executed"
    TRANSFER_DECLINED = "transfer_declined"
    TRANSFER_CANCELED = "transfer_canceled"
    TRANSFER_FAILED = "transfer_failed"

    # Orders
    ORDER_SUBMITTED = "order_submitted"
    ORDER_APPROVED = "order_approved"
    ORDER_EXECUTED = "order_executed"
    ORDER_FAILED = "order_failed"

    # Domain completions
    DONATION_COMPLETED = "donation_completed"
    INCOME_COMPLETED = "income_completed"
    INCOME_SKIPPED = "income_skipped"
    GOAL_ACHIEVED = "goal_achieved"

    # Configuration and planning
    GUARDRAIL_UPDATED = "guardrail_updated"
    GOAL_CREATED = "goal_created"
    GOAL_ARCHIVED = "goal_archived"
    BUDGET_CREATED = "budget_created"
    BUDGET_OVER_LIMIT = "budget_over_limit"
    INCOME_STREAM_UPDATED = "income_stream_updated"
    ACCOUNT_SYNCED = "account_synced"


class JournalEntryModel(Base):
    """Immutable event-journal entry."""

    __tablename__ = "event_journal"

    __table_args__ = (
        Index("ix_event_journal_org_created", "organization_id", "created_at"),
        Index("ix_event_journal_primary", "primary_entity_table", "primary_entity_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    event_kind: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    primary_entity_table: Mapped[str] = mapped_column(String(50), nullable=False)
    primary_entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    related_entities: Mapped[list[dict[str, str]]] = mapped_column(JSON, nullable=False, default=list)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<JournalEntry {self.event_kind} {self.primary_entity_table}:{self.primary_entity_id}>"


@event.listens_for(JournalEntryModel, "before_update")
def prevent_journal_update(mapper, connection, target):
    """Prevent updates to journal entries."""
    raise ImmutabilityViolationError(
        entity_type="JournalEntry",
        entity_id=str(target.id),
        reason="Journal entries are append-only -- cannot modify",
    )


@event.listens_for(JournalEntryModel, "before_delete")
def prevent_journal_delete(mapper, connection, target):
    """Prevent deletion of journal entries."""
    raise ImmutabilityViolationError(
        entity_type="JournalEntry",
        entity_id=str(target.id),
        reason="Journal entries are append-only -- cannot delete",
    )
