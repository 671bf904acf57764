"""
guardrail_services.movement_orchestrator -- resolve, evaluate, create.

Responsibility:
    The single path every domain uses to turn a requested money movement
    into a persisted movement record:

        lock guardrails for (organization, intent)
        -> resolve_guardrail(...)              (most specific scope)
        -> initiator role check                (allowed_roles_to_initiate)
        -> evaluate_transfer / evaluate_order  (pure decision)
        -> MovementLifecycle.create(...)       (persist, maybe execute)

Architecture position:
    Services.  Composes guardrail_engines (pure) with kernel services.
    Domains supply only their CandidateScopes and fallback policy.

Invariants enforced:
    - Guardrail reads that feed a decision use SELECT ... FOR UPDATE in the
      same session as the movement insert.
    - Order vetoes (blocked symbol, instrument kind) run before the quote
      lookup; a blocked order persists nothing.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from uuid import UUID

from guardrail_config.schema import FallbackPolicies
from guardrail_engines.evaluator import (
    check_order_vetoes,
    evaluate_order,
    evaluate_transfer,
    summarize_guardrail,
)
from guardrail_engines.positions import to_cents
from guardrail_engines.resolver import CandidateScopes, resolve_guardrail
from guardrail_kernel.domain.actor import ActorSession
from guardrail_kernel.domain.guardrail import (
    ApprovalPolicy,
    Guardrail,
    GuardrailDecision,
    GuardrailIntent,
    GuardrailSummary,
    ReasonCode,
)
from guardrail_kernel.domain.movement import MovementKind, OrderSide
from guardrail_kernel.domain.values import Money
from guardrail_kernel.exceptions import (
    InvalidQuantityError,
    OrderBlockedError,
    QuoteUnavailableError,
    RoleNotAllowedToInitiateError,
)
from guardrail_kernel.logging_config import LogContext, get_logger
from guardrail_kernel.models.movement import MoneyMovementModel
from guardrail_kernel.services.guardrail_store import GuardrailStore
from guardrail_kernel.services.lifecycle import MovementLifecycle

logger = get_logger("services.movement_orchestrator")


@dataclass(frozen=True)
class ResolvedGuardrail:
    guardrail: Guardrail | None
    summary: GuardrailSummary


@dataclass(frozen=True)
class MovementOutcome:
    """What every domain entry point returns for a requested movement."""

    movement: MoneyMovementModel
    summary: GuardrailSummary
    decision: GuardrailDecision

    @property
    def reason(self) -> ReasonCode | None:
        return self.decision.reason_code

    @property
    def status(self) -> str:
        return self.movement.status

    def to_dict(self) -> dict[str, Any]:
        return {
            "movement_id": str(self.movement.id),
            "status": self.movement.status,
            "guardrail": {**self.summary.to_dict(), **self.decision.to_dict()},
        }


class MovementOrchestrator:
    """Shared resolve -> evaluate -> create pipeline."""

    def __init__(
        self,
        store: GuardrailStore,
        lifecycle: MovementLifecycle,
        fallbacks: FallbackPolicies | None = None,
    ):
        self._store = store
        self._lifecycle = lifecycle
        self._fallbacks = fallbacks or FallbackPolicies()

    def resolve(
        self,
        organization_id: UUID,
        intent: GuardrailIntent,
        scopes: CandidateScopes,
        *,
        fallback_policy: ApprovalPolicy | None = None,
        for_update: bool = False,
    ) -> ResolvedGuardrail:
        """Resolve and summarize the guardrail for an action without creating anything."""
        guardrails = self._store.list_for_intent(organization_id, intent, for_update=for_update)
        guardrail = resolve_guardrail(guardrails, intent, scopes)
        fallback = fallback_policy or self._fallbacks.for_intent(intent)
        summary = summarize_guardrail(guardrail, fallback)

        logger.info(
            "guardrail_resolved",
            extra={
                "intent": intent.value,
                "guardrail_id": str(guardrail.id) if guardrail else None,
                "scope_type": guardrail.scope.scope_type.value if guardrail else None,
                "approval_policy": summary.approval_policy.value,
                "candidate_count": len(guardrails),
            },
        )
        return ResolvedGuardrail(guardrail=guardrail, summary=summary)

    def request_transfer(
        self,
        actor: ActorSession,
        intent: GuardrailIntent,
        scopes: CandidateScopes,
        amount: Money,
        *,
        source_account_id: UUID | None = None,
        destination_account_id: UUID | None = None,
        fallback_policy: ApprovalPolicy | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> MovementOutcome:
        """
        Request a transfer-style movement.

        Raises:
            RoleNotAllowedToInitiateError: resolved guardrail restricts initiators.
            InvalidAmountError: non-positive amount.
            ExecutionError: auto-execution failed (movement recorded as failed).
        """
        with LogContext.bind(
            organization_id=str(actor.organization_id),
            actor_id=str(actor.actor_id),
            intent=intent.value,
        ):
            resolved = self.resolve(
                actor.organization_id,
                intent,
                scopes,
                fallback_policy=fallback_policy,
                for_update=True,
            )
            self._check_initiator(actor, resolved.guardrail)
            decision = evaluate_transfer(resolved.summary, amount.cents)

            movement = self._lifecycle.create(
                organization_id=actor.organization_id,
                kind=MovementKind.TRANSFER,
                intent=intent,
                amount=amount,
                requested_by=actor.actor_id,
                decision=decision,
                summary=resolved.summary,
                source_account_id=source_account_id,
                destination_account_id=destination_account_id,
                metadata=metadata,
            )
            return MovementOutcome(movement=movement, summary=resolved.summary, decision=decision)

    def request_order(
        self,
        actor: ActorSession,
        scopes: CandidateScopes,
        *,
        account_id: UUID,
        symbol: str,
        instrument_kind: str,
        side: OrderSide,
        quantity: Decimal,
        price_lookup: Callable[[str], int | None],
        currency: str = "USD",
        fallback_policy: ApprovalPolicy | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> MovementOutcome:
        """
        Request an investment order.

        ``price_lookup(symbol)`` is called only after the amount-independent
        vetoes pass.

        Raises:
            InvalidQuantityError: quantity is not positive.
            OrderBlockedError: symbol blocked or instrument kind not allowed.
            QuoteUnavailableError: no price for the symbol.
            RoleNotAllowedToInitiateError.
        """
        if quantity <= 0:
            raise InvalidQuantityError(quantity)
        symbol = symbol.upper()

        with LogContext.bind(
            organization_id=str(actor.organization_id),
            actor_id=str(actor.actor_id),
            intent=GuardrailIntent.INVEST.value,
        ):
            resolved = self.resolve(
                actor.organization_id,
                GuardrailIntent.INVEST,
                scopes,
                fallback_policy=fallback_policy,
                for_update=True,
            )
            self._check_initiator(actor, resolved.guardrail)

            veto = check_order_vetoes(resolved.summary, symbol, instrument_kind)
            if veto is not None:
                logger.info(
                    "order_blocked",
                    extra={"symbol": symbol, "reason_code": veto.reason_code.value},
                )
                raise OrderBlockedError(
                    symbol=symbol,
                    reason_code=veto.reason_code.value,
                    guardrail_id=str(veto.guardrail_id) if veto.guardrail_id else None,
                )

            price_cents = price_lookup(symbol)
            if price_cents is None:
                raise QuoteUnavailableError(symbol)
            notional_cents = to_cents(quantity * Decimal(price_cents))

            decision = evaluate_order(resolved.summary, symbol, instrument_kind, side, notional_cents)
            details = dict(metadata or {})
            details["quote_price_cents"] = price_cents

            movement = self._lifecycle.create(
                organization_id=actor.organization_id,
                kind=MovementKind.ORDER,
                intent=GuardrailIntent.INVEST,
                amount=Money(notional_cents, currency),
                requested_by=actor.actor_id,
                decision=decision,
                summary=resolved.summary,
                source_account_id=account_id,
                symbol=symbol,
                instrument_kind=instrument_kind,
                side=side,
                quantity=quantity,
                metadata=details,
            )
            return MovementOutcome(movement=movement, summary=resolved.summary, decision=decision)

    @staticmethod
    def _check_initiator(actor: ActorSession, guardrail: Guardrail | None) -> None:
        if guardrail is None or not guardrail.allowed_roles_to_initiate:
            return
        if actor.role_value not in guardrail.allowed_roles_to_initiate:
            raise RoleNotAllowedToInitiateError(
                actor.role_value,
                str(guardrail.id),
                guardrail.allowed_roles_to_initiate,
            )
