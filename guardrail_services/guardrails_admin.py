"""
guardrail_services.guardrails_admin -- listing and editing guardrails.

Listing is open to any member of the organization.  Edits require a
guardrail-editor role and are journaled as ``guardrail_updated`` with the
fields that changed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from guardrail_config.schema import GuardrailSettings
from guardrail_kernel.domain.actor import ActorSession
from guardrail_kernel.domain.guardrail import (
    ApprovalPolicy,
    Guardrail,
    GuardrailIntent,
    ScopeType,
    normalize_instrument_kind,
)
from guardrail_kernel.exceptions import InvalidAmountError
from guardrail_kernel.logging_config import get_logger
from guardrail_kernel.models.journal import JournalEventKind
from guardrail_kernel.models.money_map import FinancialAccountModel, MoneyMapNodeModel
from guardrail_kernel.services.event_journal import EventJournal
from guardrail_kernel.services.guardrail_store import PATCHABLE_FIELDS, GuardrailStore
from guardrail_services.authorization import ensure_member_with_role, ensure_organization_access

logger = get_logger("services.guardrails_admin")

_AMOUNT_FIELDS = (
    "auto_approve_up_to_cents",
    "daily_limit_cents",
    "weekly_limit_cents",
    "max_order_amount_cents",
)


@dataclass(frozen=True)
class GuardrailListing:
    guardrail: Guardrail
    scope_label: str


class GuardrailAdminService:
    def __init__(
        self,
        session: Session,
        store: GuardrailStore,
        journal: EventJournal,
        settings: GuardrailSettings,
    ):
        self._session = session
        self._store = store
        self._journal = journal
        self._settings = settings

    def list_guardrails(
        self,
        actor: ActorSession,
        organization_id: UUID,
        intent: GuardrailIntent | None = None,
    ) -> list[GuardrailListing]:
        """Guardrails in stored order, each with a human-readable scope label."""
        ensure_organization_access(actor, organization_id)
        models = self._store.list_for_organization(organization_id)
        return [
            GuardrailListing(guardrail=dto, scope_label=self._scope_label(dto))
            for dto in (m.to_dto() for m in models)
            if intent is None or dto.intent == intent
        ]

    def update_guardrail(self, actor: ActorSession, guardrail_id: UUID, **changes: Any) -> Guardrail:
        """
        Patch a guardrail.

        Raises:
            GuardrailNotFoundError: unknown id.
            OrganizationAccessError / InsufficientRoleError.
            InvalidAmountError: a negative limit.
            ValueError: unknown field, policy or instrument kind.
        """
        model = self._store.get(guardrail_id)
        ensure_member_with_role(
            actor, model.organization_id, self._settings.roles.guardrail_editors, "update guardrail"
        )
        unknown = set(changes) - PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown guardrail attributes: {sorted(unknown)}")

        for name in _AMOUNT_FIELDS:
            value = changes.get(name)
            if value is not None and value < 0:
                raise InvalidAmountError(value, f"{name} cannot be negative")
        if "approval_policy" in changes:
            changes["approval_policy"] = ApprovalPolicy(changes["approval_policy"])
        if changes.get("allowed_instrument_kinds") is not None:
            kinds = []
            for label in changes["allowed_instrument_kinds"]:
                kind = normalize_instrument_kind(label)
                if kind is None:
                    raise ValueError(f"Unknown instrument kind: {label!r}")
                kinds.append(kind.value)
            changes["allowed_instrument_kinds"] = kinds

        model = self._store.patch(guardrail_id, actor_id=actor.actor_id, **changes)
        self._journal.record(
            model.organization_id,
            JournalEventKind.GUARDRAIL_UPDATED,
            model.__tablename__,
            model.id,
            actor_id=actor.actor_id,
            payload={
                "action": "updated",
                "intent": model.intent,
                "scope": model.scope.to_dict(),
                "changes": {k: _jsonable(v) for k, v in changes.items()},
            },
        )
        logger.info(
            "guardrail_updated",
            extra={"guardrail_id": str(model.id), "fields": sorted(changes)},
        )
        return model.to_dto()

    def _scope_label(self, guardrail: Guardrail) -> str:
        scope = guardrail.scope
        if scope.scope_type == ScopeType.ACCOUNT:
            account = self._session.get(FinancialAccountModel, scope.account_id)
            return f"Account: {account.name}" if account else "Account"
        if scope.scope_type == ScopeType.MONEY_MAP_NODE:
            node = self._session.get(MoneyMapNodeModel, scope.node_id)
            return f"Node: {node.label}" if node else "Node"
        return "Organization"


def _jsonable(value: Any) -> Any:
    if isinstance(value, ApprovalPolicy):
        return value.value
    if isinstance(value, tuple):
        return list(value)
    return value
