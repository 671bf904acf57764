"""
EventJournal -- append-only timeline writer.

Responsibility:
    Appends one immutable JournalEntryModel per guardrail decision, lifecycle
    transition, and provisioning change, and answers simple timeline queries.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - Entries are only ever INSERTed (model listeners reject UPDATE/DELETE).
    - created_at comes from the injected Clock.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from guardrail_kernel.domain.clock import Clock, SystemClock
from guardrail_kernel.logging_config import get_logger
from guardrail_kernel.models.journal import JournalEntryModel, JournalEventKind

logger = get_logger("services.event_journal")


def entity_ref(table: str, entity_id: UUID | str) -> dict[str, str]:
    """Reference to a related record, as stored in related_entities."""
    return {"table": table, "id": str(entity_id)}


class EventJournal:
    """
    Writes journal entries inside the caller's transaction.

    Contract:
        ``record()`` adds and flushes one entry.  Does NOT commit; the
        surrounding session_scope decides.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def record(
        self,
        organization_id: UUID,
        event_kind: JournalEventKind,
        primary_table: str,
        primary_id: UUID | str,
        *,
        actor_id: UUID | None = None,
        related: list[dict[str, str]] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> JournalEntryModel:
        entry = JournalEntryModel(
            organization_id=organization_id,
            event_kind=event_kind.value,
            actor_id=actor_id,
            primary_entity_table=primary_table,
            primary_entity_id=str(primary_id),
            related_entities=list(related or []),
            payload=dict(payload or {}),
            created_at=self._clock.now(),
        )
        self._session.add(entry)
        self._session.flush()

        logger.debug(
            "journal_entry_recorded",
            extra={
                "event_kind": event_kind.value,
                "primary_entity_table": primary_table,
                "primary_entity_id": str(primary_id),
            },
        )
        return entry

    def entries_for(
        self,
        organization_id: UUID,
        *,
        primary_id: UUID | str | None = None,
        event_kind: JournalEventKind | None = None,
    ) -> list[JournalEntryModel]:
        """Entries for an organization in insertion-time order."""
        stmt = select(JournalEntryModel).where(
            JournalEntryModel.organization_id == organization_id
        )
        if primary_id is not None:
            stmt = stmt.where(JournalEntryModel.primary_entity_id == str(primary_id))
        if event_kind is not None:
            stmt = stmt.where(JournalEntryModel.event_kind == event_kind.value)
        stmt = stmt.order_by(JournalEntryModel.created_at)
        return list(self._session.execute(stmt).scalars().all())
