"""
Guardrail -- pure domain types for approval policies.

Responsibility:
    Defines the value types shared by the store, resolver, evaluator and
    lifecycle: intents, scopes, approval policies, the immutable Guardrail
    record, the normalized GuardrailSummary the evaluator consumes, and the
    GuardrailDecision it produces.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Imported by models (to_dto/from_dto),
    guardrail_engines, and services.

Invariants enforced:
    - A GuardrailScope carries exactly one variant: organization (no id),
      money_map_node (node_id only) or account (account_id only).
    - Instrument kinds are compared only after legacy labels are normalized
      (stock -> equity, bond -> cash).
    - A decision with outcome execute/auto_execute never carries a reason.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class GuardrailIntent(str, Enum):
    """Category of financial action a guardrail governs."""

    SAVE = "save"
    SPEND = "spend"
    DONATE = "donate"
    EARN = "earn"
    INVEST = "invest"
    MANUAL = "manual"


class ApprovalPolicy(str, Enum):
    """Who must approve a movement governed by a guardrail."""

    AUTO = "auto"
    PARENT_REQUIRED = "parent_required"
    ADMIN_ONLY = "admin_only"


class ScopeType(str, Enum):
    """Breadth at which a guardrail applies, most specific last."""

    ORGANIZATION = "organization"
    MONEY_MAP_NODE = "money_map_node"
    ACCOUNT = "account"


class InstrumentKind(str, Enum):
    """Canonical instrument kinds an investing guardrail can allow."""

    EQUITY = "equity"
    ETF = "etf"
    CASH = "cash"


_LEGACY_INSTRUMENT_KINDS: dict[str, InstrumentKind] = {
    "stock": InstrumentKind.EQUITY,
    "bond": InstrumentKind.CASH,
}


def normalize_instrument_kind(value: Any) -> InstrumentKind | None:
    """
    Map an instrument label to its canonical kind.

    Legacy labels ``stock`` and ``bond`` map to ``equity`` and ``cash``.
    Unknown labels and non-strings return None.
    """
    if isinstance(value, InstrumentKind):
        return value
    if not isinstance(value, str):
        return None
    label = value.strip().lower()
    if label in _LEGACY_INSTRUMENT_KINDS:
        return _LEGACY_INSTRUMENT_KINDS[label]
    try:
        return InstrumentKind(label)
    except ValueError:
        return None


@dataclass(frozen=True)
class GuardrailScope:
    """
    Scope of a guardrail: organization-wide, one map node, or one account.

    Use the ``organization()``, ``node()`` and ``account()`` constructors.
    """

    scope_type: ScopeType
    node_id: UUID | None = None
    account_id: UUID | None = None

    def __post_init__(self) -> None:
        if self.scope_type == ScopeType.ORGANIZATION:
            valid = self.node_id is None and self.account_id is None
        elif self.scope_type == ScopeType.MONEY_MAP_NODE:
            valid = self.node_id is not None and self.account_id is None
        else:
            valid = self.account_id is not None and self.node_id is None
        if not valid:
            raise ValueError(
                f"Scope {self.scope_type.value} requires exactly its own identifier "
                f"(node_id={self.node_id}, account_id={self.account_id})"
            )

    @classmethod
    def organization(cls) -> GuardrailScope:
        return cls(ScopeType.ORGANIZATION)

    @classmethod
    def node(cls, node_id: UUID) -> GuardrailScope:
        return cls(ScopeType.MONEY_MAP_NODE, node_id=node_id)

    @classmethod
    def account(cls, account_id: UUID) -> GuardrailScope:
        return cls(ScopeType.ACCOUNT, account_id=account_id)

    @property
    def key(self) -> tuple[str, UUID | None]:
        """Identity of the scope within an (organization, intent) pair."""
        if self.scope_type == ScopeType.MONEY_MAP_NODE:
            return (self.scope_type.value, self.node_id)
        if self.scope_type == ScopeType.ACCOUNT:
            return (self.scope_type.value, self.account_id)
        return (self.scope_type.value, None)

    def to_dict(self) -> dict[str, str]:
        data = {"type": self.scope_type.value}
        if self.node_id is not None:
            data["node_id"] = str(self.node_id)
        if self.account_id is not None:
            data["account_id"] = str(self.account_id)
        return data


@dataclass(frozen=True)
class GuardrailDirection:
    """Optional flow direction used to tell a deposit guardrail from a withdrawal."""

    source_node_id: UUID | None = None
    destination_node_id: UUID | None = None


@dataclass(frozen=True)
class Guardrail:
    """Immutable snapshot of a stored guardrail."""

    id: UUID
    organization_id: UUID
    intent: GuardrailIntent
    scope: GuardrailScope
    approval_policy: ApprovalPolicy
    auto_approve_up_to_cents: int | None = None
    daily_limit_cents: int | None = None
    weekly_limit_cents: int | None = None
    allowed_instrument_kinds: tuple[str, ...] | None = None
    blocked_symbols: tuple[str, ...] = ()
    max_order_amount_cents: int | None = None
    require_approval_for_sell: bool | None = None
    allowed_roles_to_initiate: tuple[str, ...] = ()
    direction: GuardrailDirection | None = None
    created_by_id: UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class GuardrailSummary:
    """
    Normalized view of the guardrail (or fallback) that drove a decision.

    Returned to callers with every movement so interfaces can explain why a
    request is pending.  ``guardrail_id`` is None when no stored guardrail
    matched and a fallback policy was used.
    """

    approval_policy: ApprovalPolicy
    auto_approve_up_to_cents: int | None = None
    max_order_amount_cents: int | None = None
    blocked_symbols: tuple[str, ...] = ()
    allowed_instrument_kinds: tuple[InstrumentKind, ...] = ()
    require_approval_for_sell: bool = False
    scope: GuardrailScope | None = None
    guardrail_id: UUID | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "guardrail_id": str(self.guardrail_id) if self.guardrail_id else None,
            "approval_policy": self.approval_policy.value,
            "auto_approve_up_to_cents": self.auto_approve_up_to_cents,
            "max_order_amount_cents": self.max_order_amount_cents,
            "blocked_symbols": list(self.blocked_symbols),
            "allowed_instrument_kinds": [k.value for k in self.allowed_instrument_kinds],
            "require_approval_for_sell": self.require_approval_for_sell,
            "scope": self.scope.to_dict() if self.scope else None,
        }


class DecisionOutcome(str, Enum):
    """
    Evaluator outcome.

    Transfers use execute / pending.  Orders use auto_execute / needs_parent /
    needs_admin / blocked.
    """

    EXECUTE = "execute"
    PENDING = "pending"
    BLOCKED = "blocked"
    AUTO_EXECUTE = "auto_execute"
    NEEDS_PARENT = "needs_parent"
    NEEDS_ADMIN = "needs_admin"

    @property
    def executes(self) -> bool:
        return self in (DecisionOutcome.EXECUTE, DecisionOutcome.AUTO_EXECUTE)

    @property
    def awaits_approval(self) -> bool:
        return self in (
            DecisionOutcome.PENDING,
            DecisionOutcome.NEEDS_PARENT,
            DecisionOutcome.NEEDS_ADMIN,
        )


class ReasonCode(str, Enum):
    """Machine-readable reasons attached to non-executing decisions."""

    # Transfer path
    ABOVE_AUTO_LIMIT = "above_auto_limit"
    PARENT_REQUIRED = "parent_required"
    ADMIN_REQUIRED = "admin_required"
    MANUAL_REVIEW = "manual_review"

    # Investing path
    SYMBOL_BLOCKED = "symbol_blocked"
    INSTRUMENT_NOT_ALLOWED = "instrument_not_allowed"
    ADMIN_POLICY = "admin_policy"
    SELL_REQUIRES_APPROVAL = "sell_requires_approval"
    PARENT_POLICY = "parent_policy"
    EXCEEDS_AUTO_LIMIT = "exceeds_auto_limit"


@dataclass(frozen=True)
class GuardrailDecision:
    """Transient evaluator result, summarized into movement metadata."""

    outcome: DecisionOutcome
    reason_code: ReasonCode | None = None
    limit_cents: int | None = None
    guardrail_id: UUID | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.outcome.executes and self.reason_code is not None:
            raise ValueError("Executing decisions carry no reason code")

    @property
    def executes(self) -> bool:
        return self.outcome.executes

    @property
    def is_blocked(self) -> bool:
        return self.outcome == DecisionOutcome.BLOCKED

    @property
    def awaits_approval(self) -> bool:
        return self.outcome.awaits_approval

    @property
    def requires_admin(self) -> bool:
        return self.outcome == DecisionOutcome.NEEDS_ADMIN

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision": self.outcome.value,
            "reason": self.reason_code.value if self.reason_code else None,
            "limit_cents": self.limit_cents,
            "guardrail_id": str(self.guardrail_id) if self.guardrail_id else None,
        }
