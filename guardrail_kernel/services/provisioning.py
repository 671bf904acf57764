"""
GuardrailProvisioner -- idempotent "ensure a guardrail exists" helpers.

Responsibility:
    Every domain that introduces a fundable or spendable target (a savings
    goal, a budget line, a synced account) calls one of these helpers so that
    at least one guardrail exists for its (organization, intent, scope)
    before any movement against it is evaluated.

Architecture position:
    Kernel > Services.  Uses GuardrailStore and EventJournal.  Policy
    defaults arrive as arguments; the kernel does not read configuration.

Invariants enforced:
    - Idempotent: look up by scope key (and direction where given), insert
      only if absent.  Calling any helper twice never yields two guardrails.
    - Inbound accumulation (deposits) defaults to auto/unlimited; outbound
      movement (withdrawals, spends) defaults to parent_required.
    - Each insert emits exactly one guardrail_updated journal entry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from guardrail_kernel.domain.clock import Clock, SystemClock
from guardrail_kernel.domain.guardrail import (
    ApprovalPolicy,
    GuardrailDirection,
    GuardrailIntent,
    GuardrailScope,
)
from guardrail_kernel.logging_config import get_logger
from guardrail_kernel.models.guardrail import GuardrailModel
from guardrail_kernel.models.journal import JournalEventKind
from guardrail_kernel.services.event_journal import EventJournal
from guardrail_kernel.services.guardrail_store import GuardrailStore

logger = get_logger("services.provisioning")


@dataclass(frozen=True)
class GuardrailDefaults:
    """Attributes written when a guardrail has to be created."""

    approval_policy: ApprovalPolicy
    auto_approve_up_to_cents: int | None = None
    allowed_roles_to_initiate: tuple[str, ...] = ()
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProvisionResult:
    guardrail: GuardrailModel
    created: bool


class GuardrailProvisioner:
    """Ensure-style guardrail creation."""

    def __init__(
        self,
        session: Session,
        journal: EventJournal,
        clock: Clock | None = None,
        store: GuardrailStore | None = None,
    ):
        self._session = session
        self._journal = journal
        self._clock = clock or SystemClock()
        self._store = store or GuardrailStore(session, self._clock)

    def ensure_guardrail(
        self,
        organization_id: UUID,
        intent: GuardrailIntent,
        scope: GuardrailScope,
        defaults: GuardrailDefaults,
        *,
        actor_id: UUID,
        direction: GuardrailDirection | None = None,
    ) -> ProvisionResult:
        """Return the existing guardrail for the scope, or create one from ``defaults``."""
        existing = self._store.find_matching(organization_id, intent, scope, direction)
        if existing is not None:
            logger.debug(
                "guardrail_already_provisioned",
                extra={"guardrail_id": str(existing.id), "intent": intent.value},
            )
            return ProvisionResult(guardrail=existing, created=False)

        model = self._store.insert(
            organization_id,
            intent,
            scope,
            approval_policy=defaults.approval_policy,
            created_by_id=actor_id,
            direction=direction,
            auto_approve_up_to_cents=defaults.auto_approve_up_to_cents,
            allowed_roles_to_initiate=defaults.allowed_roles_to_initiate,
            **defaults.attributes,
        )
        self._journal.record(
            organization_id,
            JournalEventKind.GUARDRAIL_UPDATED,
            "guardrails",
            model.id,
            actor_id=actor_id,
            payload={
                "action": "created",
                "intent": intent.value,
                "scope": scope.to_dict(),
                "approval_policy": defaults.approval_policy.value,
                "auto_approve_up_to_cents": defaults.auto_approve_up_to_cents,
            },
        )
        logger.info(
            "guardrail_provisioned",
            extra={
                "guardrail_id": str(model.id),
                "intent": intent.value,
                "scope_type": scope.scope_type.value,
            },
        )
        return ProvisionResult(guardrail=model, created=True)

    def ensure_goal_guardrails(
        self,
        organization_id: UUID,
        goal_node_id: UUID,
        *,
        actor_id: UUID,
        deposit_policy: ApprovalPolicy = ApprovalPolicy.AUTO,
        withdrawal_policy: ApprovalPolicy = ApprovalPolicy.PARENT_REQUIRED,
        allowed_roles: tuple[str, ...] = (),
    ) -> tuple[ProvisionResult, ProvisionResult]:
        """Deposit (into the goal node) and withdrawal (out of it) save guardrails."""
        scope = GuardrailScope.node(goal_node_id)
        deposit = self.ensure_guardrail(
            organization_id,
            GuardrailIntent.SAVE,
            scope,
            GuardrailDefaults(approval_policy=deposit_policy, allowed_roles_to_initiate=allowed_roles),
            actor_id=actor_id,
            direction=GuardrailDirection(destination_node_id=goal_node_id),
        )
        withdrawal = self.ensure_guardrail(
            organization_id,
            GuardrailIntent.SAVE,
            scope,
            GuardrailDefaults(approval_policy=withdrawal_policy, allowed_roles_to_initiate=allowed_roles),
            actor_id=actor_id,
            direction=GuardrailDirection(source_node_id=goal_node_id),
        )
        return deposit, withdrawal

    def ensure_budget_guardrail(
        self,
        organization_id: UUID,
        node_id: UUID,
        *,
        actor_id: UUID,
        limit_cents: int | None,
        allowed_roles: tuple[str, ...] = (),
    ) -> ProvisionResult:
        """Spend guardrail on a budget node: auto up to a positive limit, else parent_required."""
        if limit_cents is not None and limit_cents > 0:
            defaults = GuardrailDefaults(
                approval_policy=ApprovalPolicy.AUTO,
                auto_approve_up_to_cents=limit_cents,
                allowed_roles_to_initiate=allowed_roles,
            )
        else:
            defaults = GuardrailDefaults(
                approval_policy=ApprovalPolicy.PARENT_REQUIRED,
                allowed_roles_to_initiate=allowed_roles,
            )
        return self.ensure_guardrail(
            organization_id,
            GuardrailIntent.SPEND,
            GuardrailScope.node(node_id),
            defaults,
            actor_id=actor_id,
        )

    def ensure_account_guardrail(
        self,
        organization_id: UUID,
        account_id: UUID,
        intent: GuardrailIntent,
        *,
        actor_id: UUID,
        approval_policy: ApprovalPolicy,
        allowed_roles: tuple[str, ...] = (),
    ) -> ProvisionResult:
        """Account-scoped guardrail for a newly synced account."""
        return self.ensure_guardrail(
            organization_id,
            intent,
            GuardrailScope.account(account_id),
            GuardrailDefaults(approval_policy=approval_policy, allowed_roles_to_initiate=allowed_roles),
            actor_id=actor_id,
        )
