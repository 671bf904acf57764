"""
guardrail_services.transfers -- approval inbox for pending transfers.

Approve / decline / cancel delegate to MovementLifecycle, which owns role
checks and transitions.  The pending listing annotates each movement with
the reason it is waiting, derived from the guardrail summary captured when
the movement was created.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from uuid import UUID

from guardrail_engines.evaluator import derive_guardrail_reason
from guardrail_kernel.domain.actor import ActorSession
from guardrail_kernel.domain.guardrail import ApprovalPolicy, GuardrailIntent, GuardrailSummary, ReasonCode
from guardrail_kernel.domain.movement import MovementKind, PENDING_MOVEMENT_STATUSES
from guardrail_kernel.exceptions import MovementNotFoundError
from guardrail_kernel.logging_config import get_logger
from guardrail_kernel.models.movement import MoneyMovementModel
from guardrail_kernel.services.lifecycle import MovementLifecycle
from guardrail_services.authorization import ensure_organization_access

logger = get_logger("services.transfers")


@dataclass(frozen=True)
class PendingMovement:
    movement: MoneyMovementModel
    reason: ReasonCode | None
    limit_cents: int | None


def _summary_from_details(details: dict[str, Any]) -> GuardrailSummary | None:
    snapshot = details.get("guardrail")
    if not snapshot or not snapshot.get("approval_policy"):
        return None
    return GuardrailSummary(
        approval_policy=ApprovalPolicy(snapshot["approval_policy"]),
        auto_approve_up_to_cents=snapshot.get("auto_approve_up_to_cents"),
    )


class TransferService:
    def __init__(self, lifecycle: MovementLifecycle):
        self._lifecycle = lifecycle

    def approve_transfer(self, actor: ActorSession, movement_id: UUID) -> MoneyMovementModel:
        self._load_transfer(movement_id)
        return self._lifecycle.approve(movement_id, actor)

    def decline_transfer(
        self,
        actor: ActorSession,
        movement_id: UUID,
        reason: str | None = None,
    ) -> MoneyMovementModel:
        self._load_transfer(movement_id)
        return self._lifecycle.decline(movement_id, actor, reason)

    def cancel_transfer(
        self,
        actor: ActorSession,
        movement_id: UUID,
        reason: str | None = None,
    ) -> MoneyMovementModel:
        self._load_transfer(movement_id)
        return self._lifecycle.cancel(movement_id, actor, reason)

    def list_pending(
        self,
        actor: ActorSession,
        organization_id: UUID,
        intent: GuardrailIntent | None = None,
    ) -> list[PendingMovement]:
        """Pending transfers and orders, oldest first."""
        ensure_organization_access(actor, organization_id)
        movements = self._lifecycle.list_movements(
            organization_id,
            intent=intent,
            statuses=tuple(PENDING_MOVEMENT_STATUSES),
        )
        pending = []
        for movement in movements:
            details = movement.details or {}
            recorded = (details.get("guardrail") or {}).get("reason")
            if movement.kind == MovementKind.ORDER.value and recorded:
                reason, limit = ReasonCode(recorded), details["guardrail"].get("limit_cents")
            else:
                derived = derive_guardrail_reason(_summary_from_details(details), movement.amount_cents)
                reason, limit = derived if derived else (None, None)
            pending.append(PendingMovement(movement=movement, reason=reason, limit_cents=limit))
        return pending

    def _load_transfer(self, movement_id: UUID) -> MoneyMovementModel:
        movement = self._lifecycle.get(movement_id)
        if movement.kind != MovementKind.TRANSFER.value:
            raise MovementNotFoundError(str(movement_id))
        return movement
