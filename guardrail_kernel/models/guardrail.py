"""
Module: guardrail_kernel.models.guardrail
Responsibility: ORM persistence for guardrails (approval policies bound to a
    scope and an intent).
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Exactly one scope variant per row (check constraint ck_guardrails_scope).
    - Intent and approval policy restricted to their enum values.
    - At most one guardrail per (organization, intent, scope key[, direction])
      is a PROVISIONING invariant (GuardrailStore.find_matching before insert),
      deliberately not a unique constraint.
    - ``sequence`` records per-organization insertion order; resolution ties
      break on it.

Audit relevance:
    Every insert and patch emits a ``guardrail_updated`` journal entry from the
    service layer.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import JSON, Boolean, CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from guardrail_kernel.db.base import TrackedBase, UUIDString
from guardrail_kernel.domain.guardrail import (
    ApprovalPolicy,
    Guardrail,
    GuardrailDirection,
    GuardrailIntent,
    GuardrailScope,
    ScopeType,
)


class GuardrailModel(TrackedBase):
    """Persistent guardrail record."""

    __tablename__ = "guardrails"

    __table_args__ = (
        CheckConstraint(
            "intent IN ('save', 'spend', 'donate', 'earn', 'invest', 'manual')",
            name="ck_guardrails_intent",
        ),
        CheckConstraint(
            "approval_policy IN ('auto', 'parent_required', 'admin_only')",
            name="ck_guardrails_policy",
        ),
        CheckConstraint(
            "(scope_type = 'organization' AND scope_node_id IS NULL AND scope_account_id IS NULL)"
            " OR (scope_type = 'money_map_node' AND scope_node_id IS NOT NULL AND scope_account_id IS NULL)"
            " OR (scope_type = 'account' AND scope_account_id IS NOT NULL AND scope_node_id IS NULL)",
            name="ck_guardrails_scope",
        ),
        Index("ix_guardrails_org_intent", "organization_id", "intent"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    intent: Mapped[str] = mapped_column(String(20), nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False, default=0)

    scope_type: Mapped[str] = mapped_column(String(20), nullable=False)
    scope_node_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    scope_account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    direction_source_node_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    direction_destination_node_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    approval_policy: Mapped[str] = mapped_column(String(20), nullable=False)
    auto_approve_up_to_cents: Mapped[int | None] = mapped_column(nullable=True)
    daily_limit_cents: Mapped[int | None] = mapped_column(nullable=True)
    weekly_limit_cents: Mapped[int | None] = mapped_column(nullable=True)

    # Investing-only
    allowed_instrument_kinds: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    blocked_symbols: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    max_order_amount_cents: Mapped[int | None] = mapped_column(nullable=True)
    require_approval_for_sell: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    allowed_roles_to_initiate: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    def __repr__(self) -> str:
        return (
            f"<Guardrail {self.id} {self.intent} {self.scope_type} "
            f"policy={self.approval_policy}>"
        )

    @property
    def scope(self) -> GuardrailScope:
        return GuardrailScope(
            ScopeType(self.scope_type),
            node_id=self.scope_node_id,
            account_id=self.scope_account_id,
        )

    @property
    def direction(self) -> GuardrailDirection | None:
        if self.direction_source_node_id is None and self.direction_destination_node_id is None:
            return None
        return GuardrailDirection(
            source_node_id=self.direction_source_node_id,
            destination_node_id=self.direction_destination_node_id,
        )

    def to_dto(self) -> Guardrail:
        return Guardrail(
            id=self.id,
            organization_id=self.organization_id,
            intent=GuardrailIntent(self.intent),
            scope=self.scope,
            approval_policy=ApprovalPolicy(self.approval_policy),
            auto_approve_up_to_cents=self.auto_approve_up_to_cents,
            daily_limit_cents=self.daily_limit_cents,
            weekly_limit_cents=self.weekly_limit_cents,
            allowed_instrument_kinds=(
                tuple(self.allowed_instrument_kinds)
                if self.allowed_instrument_kinds is not None
                else None
            ),
            blocked_symbols=tuple(self.blocked_symbols or ()),
            max_order_amount_cents=self.max_order_amount_cents,
            require_approval_for_sell=self.require_approval_for_sell,
            allowed_roles_to_initiate=tuple(self.allowed_roles_to_initiate or ()),
            direction=self.direction,
            created_by_id=self.created_by_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
