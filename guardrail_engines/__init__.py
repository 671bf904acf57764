"""
Pure engines: guardrail resolution, decision evaluation, fill math, schedules.

Nothing in this package touches the database, the clock, or configuration.
"""

from guardrail_engines.evaluator import (
    check_order_vetoes,
    derive_guardrail_reason,
    evaluate_order,
    evaluate_transfer,
    summarize_guardrail,
)
from guardrail_engines.positions import FillResult, PositionState, apply_fill
from guardrail_engines.resolver import (
    CandidateScopes,
    deposit_into,
    resolve_guardrail,
    withdrawal_from,
)
from guardrail_engines.schedule import (
    Cadence,
    advance_past,
    monthly_amount_cents,
    next_scheduled_at,
    project_payouts,
)

__all__ = [
    "Cadence",
    "CandidateScopes",
    "FillResult",
    "PositionState",
    "advance_past",
    "apply_fill",
    "check_order_vetoes",
    "deposit_into",
    "derive_guardrail_reason",
    "evaluate_order",
    "evaluate_transfer",
    "monthly_amount_cents",
    "next_scheduled_at",
    "project_payouts",
    "resolve_guardrail",
    "summarize_guardrail",
    "withdrawal_from",
]
