"""Pure domain types for the guardrail kernel.  No I/O, no ORM."""

from guardrail_kernel.domain.actor import ActorSession, MemberRole
from guardrail_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from guardrail_kernel.domain.guardrail import (
    ApprovalPolicy,
    DecisionOutcome,
    Guardrail,
    GuardrailDecision,
    GuardrailDirection,
    GuardrailIntent,
    GuardrailScope,
    GuardrailSummary,
    InstrumentKind,
    ReasonCode,
    ScopeType,
    normalize_instrument_kind,
)
from guardrail_kernel.domain.movement import (
    MOVEMENT_TRANSITIONS,
    PENDING_MOVEMENT_STATUSES,
    TERMINAL_MOVEMENT_STATUSES,
    ApproverTier,
    MovementKind,
    MovementStatus,
    OrderSide,
    can_transition,
    pending_status_for,
)
from guardrail_kernel.domain.values import Money

__all__ = [
    "MOVEMENT_TRANSITIONS",
    "PENDING_MOVEMENT_STATUSES",
    "TERMINAL_MOVEMENT_STATUSES",
    "ActorSession",
    "ApprovalPolicy",
    "ApproverTier",
    "Clock",
    "DecisionOutcome",
    "DeterministicClock",
    "Guardrail",
    "GuardrailDecision",
    "GuardrailDirection",
    "GuardrailIntent",
    "GuardrailScope",
    "GuardrailSummary",
    "InstrumentKind",
    "MemberRole",
    "Money",
    "MovementKind",
    "MovementStatus",
    "OrderSide",
    "ReasonCode",
    "ScopeType",
    "SystemClock",
    "can_transition",
    "normalize_instrument_kind",
    "pending_status_for",
]
