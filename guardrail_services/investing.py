"""
guardrail_services.investing -- guardrail-checked investment orders.

Responsibility:
    Submit, approve and cancel market orders.  Quotes and fills come from a
    QuoteProvider whose calls are funnelled through the provider's
    ProviderQueue, so slow or stalled providers are bounded by the queue's
    concurrency and timeout.

Flow:
    submit_order
        org access -> account lookup -> resolve INVEST guardrail
        -> symbol / instrument vetoes (no quote yet)
        -> quote via provider queue -> notional -> evaluate -> create
    approve_order -> MovementLifecycle.approve -> fill via provider queue

Failure modes:
    - OrderBlockedError: vetoed before any quote lookup; nothing persisted.
    - QuoteUnavailableError at submit time: nothing persisted.
    - QuoteUnavailableError / InsufficientQuantityError /
      ProviderQueueRejectedError during execution: order recorded as failed
      with an ``order_failed`` journal entry, then re-raised.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from guardrail_kernel.domain.actor import ActorSession
from guardrail_kernel.domain.movement import MovementKind, OrderSide
from guardrail_kernel.exceptions import MovementNotFoundError
from guardrail_kernel.logging_config import LogContext, get_logger
from guardrail_kernel.models.movement import MoneyMovementModel
from guardrail_kernel.models.position import InvestmentPositionModel
from guardrail_kernel.services.lifecycle import MovementLifecycle
from guardrail_services._records import account_scopes, load_account
from guardrail_services.authorization import ensure_organization_access
from guardrail_services.market import QuoteProvider
from guardrail_services.movement_orchestrator import MovementOrchestrator, MovementOutcome
from guardrail_services.provider_queue import ProviderQueue

logger = get_logger("services.investing")


class InvestingService:
    def __init__(
        self,
        session: Session,
        orchestrator: MovementOrchestrator,
        lifecycle: MovementLifecycle,
        provider: QuoteProvider,
        queue: ProviderQueue,
    ):
        self._session = session
        self._orchestrator = orchestrator
        self._lifecycle = lifecycle
        self._provider = provider
        self._queue = queue
        lifecycle.set_order_filler(self._fill)

    def submit_order(
        self,
        actor: ActorSession,
        organization_id: UUID,
        account_id: UUID,
        *,
        symbol: str,
        instrument_kind: str,
        side: OrderSide,
        quantity: Decimal,
    ) -> MovementOutcome:
        """
        Submit a market order for ``quantity`` units of ``symbol``.

        The returned outcome is ``awaiting_parent`` when the guardrail needs
        an approver, otherwise the order has already been filled.
        """
        ensure_organization_access(actor, organization_id)
        account = load_account(self._session, organization_id, account_id)

        with LogContext.bind(correlation_id=f"order:{account.id}:{symbol.upper()}"):
            outcome = self._orchestrator.request_order(
                actor,
                account_scopes(account),
                account_id=account.id,
                symbol=symbol,
                instrument_kind=instrument_kind,
                side=OrderSide(side),
                quantity=Decimal(quantity),
                price_lookup=self._quote_price,
                currency=account.currency,
            )
        logger.info(
            "order_submitted",
            extra={
                "movement_id": str(outcome.movement.id),
                "symbol": outcome.movement.symbol,
                "side": outcome.movement.side,
                "status": outcome.status,
            },
        )
        return outcome

    def approve_order(self, actor: ActorSession, order_id: UUID) -> MoneyMovementModel:
        """Approve an order awaiting a parent and fill it."""
        self._load_order(order_id)
        return self._lifecycle.approve(order_id, actor)

    def cancel_order(
        self,
        actor: ActorSession,
        order_id: UUID,
        reason: str | None = None,
    ) -> MoneyMovementModel:
        self._load_order(order_id)
        return self._lifecycle.cancel(order_id, actor, reason or "canceled")

    def decline_order(
        self,
        actor: ActorSession,
        order_id: UUID,
        reason: str | None = None,
    ) -> MoneyMovementModel:
        self._load_order(order_id)
        return self._lifecycle.decline(order_id, actor, reason or "declined")

    def list_positions(
        self,
        actor: ActorSession,
        organization_id: UUID,
        account_id: UUID | None = None,
    ) -> list[InvestmentPositionModel]:
        """Open positions, optionally for one account."""
        ensure_organization_access(actor, organization_id)
        stmt = select(InvestmentPositionModel).where(
            InvestmentPositionModel.organization_id == organization_id,
            InvestmentPositionModel.quantity > 0,
        )
        if account_id is not None:
            stmt = stmt.where(InvestmentPositionModel.account_id == account_id)
        stmt = stmt.order_by(InvestmentPositionModel.symbol)
        return list(self._session.execute(stmt).scalars().all())

    def _quote_price(self, symbol: str) -> int | None:
        quote = self._queue.call(self._provider.get_quote, symbol)
        return quote.price_cents if quote is not None else None

    def _fill(self, movement: MoneyMovementModel) -> int:
        fill = self._queue.call(
            self._provider.execute_order,
            movement.symbol,
            OrderSide(movement.side),
            movement.quantity,
        )
        return fill.price_cents

    def _load_order(self, order_id: UUID) -> MoneyMovementModel:
        movement = self._lifecycle.get(order_id)
        if movement.kind != MovementKind.ORDER.value:
            raise MovementNotFoundError(str(order_id))
        return movement
