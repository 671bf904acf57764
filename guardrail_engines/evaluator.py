"""
Guardrail Decision Evaluator -- pure policy evaluation.

Responsibility:
    Turns a resolved guardrail (normalized into a GuardrailSummary) plus an
    amount and action attributes into a GuardrailDecision.  Two algorithms:

    Transfer path (save / spend / donate / earn / manual):
        auto and (no limit or amount <= limit)  -> execute
        otherwise                               -> pending with
            above_auto_limit | parent_required | admin_required

    Investing path (ordered, first match wins):
        1. symbol in blocked_symbols            -> blocked  symbol_blocked
        2. kind not in allowed_instrument_kinds -> blocked  instrument_not_allowed
        3. admin_only, or sell with sell-approval
                                                -> needs_admin admin_policy
                                                   | needs_parent sell_requires_approval
        4. parent_required, or notional > max   -> needs_parent parent_policy
                                                   | exceeds_auto_limit
        5. otherwise                            -> auto_execute

Architecture position:
    Engines -- pure functions, zero I/O, no clock.

Invariants enforced:
    - Vetoes (steps 1-2) never depend on amount and short-circuit before any
      approval-tier logic; check_order_vetoes runs them without a notional so
      callers can reject before a quote lookup.
    - Sell-approval takes precedence over a plain auto threshold.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from guardrail_kernel.domain.guardrail import (
    ApprovalPolicy,
    DecisionOutcome,
    Guardrail,
    GuardrailDecision,
    GuardrailSummary,
    InstrumentKind,
    ReasonCode,
    normalize_instrument_kind,
)
from guardrail_kernel.domain.movement import OrderSide


def _round_cents(value: int | float | Decimal | None) -> int | None:
    if value is None:
        return None
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def summarize_guardrail(
    guardrail: Guardrail | None,
    fallback_policy: ApprovalPolicy = ApprovalPolicy.PARENT_REQUIRED,
) -> GuardrailSummary:
    """
    Normalize a guardrail (or its absence) into the summary evaluators use.

    Symbols are uppercased; instrument kinds are normalized and unknown labels
    dropped.  With no guardrail, the summary carries ``fallback_policy`` and no
    thresholds.
    """
    if guardrail is None:
        return GuardrailSummary(approval_policy=fallback_policy)

    allowed: list[InstrumentKind] = []
    for label in guardrail.allowed_instrument_kinds or ():
        kind = normalize_instrument_kind(label)
        if kind is not None and kind not in allowed:
            allowed.append(kind)

    return GuardrailSummary(
        approval_policy=guardrail.approval_policy,
        auto_approve_up_to_cents=_round_cents(guardrail.auto_approve_up_to_cents),
        max_order_amount_cents=_round_cents(guardrail.max_order_amount_cents),
        blocked_symbols=tuple(s.upper() for s in guardrail.blocked_symbols),
        allowed_instrument_kinds=tuple(allowed),
        require_approval_for_sell=bool(guardrail.require_approval_for_sell),
        scope=guardrail.scope,
        guardrail_id=guardrail.id,
    )


def evaluate_transfer(summary: GuardrailSummary, amount_cents: int) -> GuardrailDecision:
    """
    Evaluate a transfer-style movement against its guardrail.

    Args:
        summary: Normalized guardrail summary.
        amount_cents: Requested amount in minor units.

    Returns:
        ``execute`` or ``pending`` with a reason code and the limit that
        applied.
    """
    limit = summary.auto_approve_up_to_cents
    amount = _round_cents(amount_cents)
    policy = summary.approval_policy

    if policy == ApprovalPolicy.AUTO and (limit is None or amount <= limit):
        return GuardrailDecision(
            outcome=DecisionOutcome.EXECUTE,
            limit_cents=limit,
            guardrail_id=summary.guardrail_id,
        )

    if policy == ApprovalPolicy.AUTO:
        reason = ReasonCode.ABOVE_AUTO_LIMIT
    elif policy == ApprovalPolicy.ADMIN_ONLY:
        reason = ReasonCode.ADMIN_REQUIRED
    else:
        reason = ReasonCode.PARENT_REQUIRED

    return GuardrailDecision(
        outcome=DecisionOutcome.PENDING,
        reason_code=reason,
        limit_cents=limit,
        guardrail_id=summary.guardrail_id,
    )


def check_order_vetoes(
    summary: GuardrailSummary,
    symbol: str,
    instrument_kind: str,
) -> GuardrailDecision | None:
    """Run the amount-independent investing vetoes; None if the order passes."""
    if symbol.upper() in summary.blocked_symbols:
        return GuardrailDecision(
            outcome=DecisionOutcome.BLOCKED,
            reason_code=ReasonCode.SYMBOL_BLOCKED,
            guardrail_id=summary.guardrail_id,
        )

    if summary.allowed_instrument_kinds:
        kind = normalize_instrument_kind(instrument_kind)
        if kind is None or kind not in summary.allowed_instrument_kinds:
            return GuardrailDecision(
                outcome=DecisionOutcome.BLOCKED,
                reason_code=ReasonCode.INSTRUMENT_NOT_ALLOWED,
                guardrail_id=summary.guardrail_id,
            )

    return None


def evaluate_order(
    summary: GuardrailSummary,
    symbol: str,
    instrument_kind: str,
    side: OrderSide,
    notional_cents: int,
) -> GuardrailDecision:
    """
    Evaluate an investment order against its guardrail.

    Args:
        summary: Normalized guardrail summary.
        symbol: Ticker symbol (case-insensitive).
        instrument_kind: Instrument label; legacy labels are normalized.
        side: Buy or sell.
        notional_cents: Quantity times quote price, rounded to minor units.

    Returns:
        The first matching decision in veto / admin / parent / auto order.
    """
    veto = check_order_vetoes(summary, symbol, instrument_kind)
    if veto is not None:
        return veto

    policy = summary.approval_policy
    max_order = summary.max_order_amount_cents
    requires_sell_approval = summary.require_approval_for_sell and side == OrderSide.SELL
    exceeds_max = max_order is not None and max_order > 0 and notional_cents > max_order

    if policy == ApprovalPolicy.ADMIN_ONLY or requires_sell_approval:
        return GuardrailDecision(
            outcome=(
                DecisionOutcome.NEEDS_ADMIN
                if policy == ApprovalPolicy.ADMIN_ONLY
                else DecisionOutcome.NEEDS_PARENT
            ),
            reason_code=(
                ReasonCode.SELL_REQUIRES_APPROVAL
                if requires_sell_approval
                else ReasonCode.ADMIN_POLICY
            ),
            limit_cents=max_order,
            guardrail_id=summary.guardrail_id,
        )

    if policy == ApprovalPolicy.PARENT_REQUIRED or exceeds_max:
        return GuardrailDecision(
            outcome=DecisionOutcome.NEEDS_PARENT,
            reason_code=ReasonCode.EXCEEDS_AUTO_LIMIT if exceeds_max else ReasonCode.PARENT_POLICY,
            limit_cents=max_order,
            guardrail_id=summary.guardrail_id,
        )

    return GuardrailDecision(
        outcome=DecisionOutcome.AUTO_EXECUTE,
        limit_cents=max_order,
        guardrail_id=summary.guardrail_id,
    )


def derive_guardrail_reason(
    summary: GuardrailSummary | None,
    amount_cents: int | None,
) -> tuple[ReasonCode, int | None] | None:
    """
    Explain why a transfer governed by ``summary`` is (or would be) pending.

    Used to annotate pending movements for display.  Returns
    ``(reason_code, limit_cents)`` or None when there is no summary.  An
    ``auto`` policy that is pending for a reason other than its threshold
    reports ``manual_review``.
    """
    if summary is None:
        return None

    limit = summary.auto_approve_up_to_cents
    if limit is not None:
        limit = max(0, limit)
    amount = max(0, amount_cents) if amount_cents is not None else None

    if summary.approval_policy == ApprovalPolicy.ADMIN_ONLY:
        return ReasonCode.ADMIN_REQUIRED, limit
    if summary.approval_policy == ApprovalPolicy.PARENT_REQUIRED:
        return ReasonCode.PARENT_REQUIRED, limit
    if limit is not None and amount is not None and amount > limit:
        return ReasonCode.ABOVE_AUTO_LIMIT, limit
    return ReasonCode.MANUAL_REVIEW, limit
