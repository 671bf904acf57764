"""
GuardrailStore -- transactional access to guardrail records.

Responsibility:
    The store interface the engine needs: indexed lookup by (organization,
    intent), point lookup by id, insert, and patch-by-id.  All calls run in
    the caller's session/transaction.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - list_for_intent returns guardrails in stored (sequence) order so that
      resolver ties are deterministic.
    - list_for_intent(for_update=True) row-locks the candidates, so a
      concurrent guardrail edit cannot land between evaluate and create.
    - sequence is allocated per organization as max + 1 inside the
      inserting transaction.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from guardrail_kernel.domain.clock import Clock, SystemClock
from guardrail_kernel.domain.guardrail import (
    ApprovalPolicy,
    Guardrail,
    GuardrailDirection,
    GuardrailIntent,
    GuardrailScope,
)
from guardrail_kernel.exceptions import GuardrailNotFoundError
from guardrail_kernel.logging_config import get_logger
from guardrail_kernel.models.guardrail import GuardrailModel

logger = get_logger("services.guardrail_store")

PATCHABLE_FIELDS = frozenset({
    "approval_policy",
    "auto_approve_up_to_cents",
    "daily_limit_cents",
    "weekly_limit_cents",
    "allowed_instrument_kinds",
    "blocked_symbols",
    "max_order_amount_cents",
    "require_approval_for_sell",
    "allowed_roles_to_initiate",
})


class GuardrailStore:
    """Guardrail persistence within one session."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_for_intent(
        self,
        organization_id: UUID,
        intent: GuardrailIntent,
        *,
        for_update: bool = False,
    ) -> list[Guardrail]:
        """All guardrails for (organization, intent), in stored order."""
        stmt = (
            select(GuardrailModel)
            .where(
                GuardrailModel.organization_id == organization_id,
                GuardrailModel.intent == intent.value,
            )
            .order_by(GuardrailModel.sequence)
        )
        if for_update:
            stmt = stmt.with_for_update()
        models = self._session.execute(stmt).scalars().all()
        return [m.to_dto() for m in models]

    def list_for_organization(self, organization_id: UUID) -> list[GuardrailModel]:
        stmt = (
            select(GuardrailModel)
            .where(GuardrailModel.organization_id == organization_id)
            .order_by(GuardrailModel.sequence)
        )
        return list(self._session.execute(stmt).scalars().all())

    def get(self, guardrail_id: UUID, *, for_update: bool = False) -> GuardrailModel:
        stmt = select(GuardrailModel).where(GuardrailModel.id == guardrail_id)
        if for_update:
            stmt = stmt.with_for_update()
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise GuardrailNotFoundError(str(guardrail_id))
        return model

    def find_matching(
        self,
        organization_id: UUID,
        intent: GuardrailIntent,
        scope: GuardrailScope,
        direction: GuardrailDirection | None = None,
    ) -> GuardrailModel | None:
        """
        First stored guardrail with this scope key.

        When ``direction`` is given it must match exactly; otherwise direction
        is ignored.
        """
        stmt = (
            select(GuardrailModel)
            .where(
                GuardrailModel.organization_id == organization_id,
                GuardrailModel.intent == intent.value,
                GuardrailModel.scope_type == scope.scope_type.value,
            )
            .order_by(GuardrailModel.sequence)
        )
        for model in self._session.execute(stmt).scalars():
            if model.scope.key != scope.key:
                continue
            if direction is not None and model.direction != direction:
                continue
            return model
        return None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(
        self,
        organization_id: UUID,
        intent: GuardrailIntent,
        scope: GuardrailScope,
        *,
        approval_policy: ApprovalPolicy,
        created_by_id: UUID,
        direction: GuardrailDirection | None = None,
        **attributes: Any,
    ) -> GuardrailModel:
        unknown = set(attributes) - PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown guardrail attributes: {sorted(unknown)}")

        now = self._clock.now()
        model = GuardrailModel(
            organization_id=organization_id,
            intent=intent.value,
            sequence=self._next_sequence(organization_id),
            scope_type=scope.scope_type.value,
            scope_node_id=scope.node_id,
            scope_account_id=scope.account_id,
            direction_source_node_id=direction.source_node_id if direction else None,
            direction_destination_node_id=direction.destination_node_id if direction else None,
            approval_policy=approval_policy.value,
            blocked_symbols=[],
            allowed_roles_to_initiate=[],
            created_by_id=created_by_id,
            created_at=now,
            updated_at=now,
        )
        self._apply(model, attributes)
        self._session.add(model)
        self._session.flush()

        logger.info(
            "guardrail_inserted",
            extra={
                "guardrail_id": str(model.id),
                "intent": intent.value,
                "scope_type": scope.scope_type.value,
                "approval_policy": approval_policy.value,
            },
        )
        return model

    def patch(self, guardrail_id: UUID, *, actor_id: UUID, **changes: Any) -> GuardrailModel:
        unknown = set(changes) - PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown guardrail attributes: {sorted(unknown)}")

        model = self.get(guardrail_id, for_update=True)
        self._apply(model, changes)
        model.updated_at = self._clock.now()
        model.updated_by_id = actor_id
        self._session.flush()

        logger.info(
            "guardrail_patched",
            extra={"guardrail_id": str(guardrail_id), "fields": sorted(changes)},
        )
        return model

    def _apply(self, model: GuardrailModel, values: dict[str, Any]) -> None:
        for name, value in values.items():
            if name == "approval_policy":
                value = ApprovalPolicy(value).value
            elif name == "blocked_symbols":
                value = [str(s).upper() for s in value or ()]
            elif name in ("allowed_instrument_kinds",) and value is not None:
                value = [str(k).lower() for k in value]
            elif name == "allowed_roles_to_initiate":
                value = [str(r) for r in value or ()]
            setattr(model, name, value)

    def _next_sequence(self, organization_id: UUID) -> int:
        current = self._session.execute(
            select(func.max(GuardrailModel.sequence)).where(
                GuardrailModel.organization_id == organization_id
            )
        ).scalar()
        return (current or 0) + 1
