"""
guardrail_kernel.services.lifecycle -- Money-movement lifecycle management.

Responsibility:
    Creates movement records with the decision-determined initial status,
    performs execution side effects (position fills for orders, domain hooks
    for transfers), and exposes the approve / decline / cancel transition API
    for pending movements.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/ and the pure
    fill math in guardrail_engines.positions.  Domain-specific side effects
    (goal progress, income schedules, spend transactions) are registered as
    hooks by guardrail_services; the kernel does not know about them.

Invariants enforced:
    - Every status change is validated against MOVEMENT_TRANSITIONS.
    - Auto-execution is the named self-approval transition: the requester is
      recorded as approver, then the movement executes.
    - Role checks run before any transition.  needs_admin movements require
      an admin-tier approver.
    - Execution failures move the movement to ``failed`` with the error
      message, emit a ``*_failed`` entry, and re-raise.  Nothing is retried.
    - Position updates are serialized per (account, symbol): FOR UPDATE read
      plus version_id_col compare-and-swap; a lost race surfaces as
      OptimisticLockError.

Failure modes:
    - MovementNotFoundError, OrganizationAccessError, InsufficientRoleError.
    - MovementAlreadyResolvedError on terminal movements.
    - InvalidMovementTransitionError on any other illegal edge.
    - ExecutionError subclasses (re-raised after recording ``failed``).
"""

from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from guardrail_engines.positions import (
    DEFAULT_EPSILON,
    PositionState,
    apply_fill,
    to_cents,
)
from guardrail_kernel.domain.actor import ActorSession
from guardrail_kernel.domain.clock import Clock, SystemClock
from guardrail_kernel.domain.guardrail import (
    GuardrailDecision,
    GuardrailIntent,
    GuardrailSummary,
    ReasonCode,
)
from guardrail_kernel.domain.movement import (
    TERMINAL_MOVEMENT_STATUSES,
    ApproverTier,
    MovementKind,
    MovementStatus,
    OrderSide,
    can_transition,
    pending_status_for,
)
from guardrail_kernel.domain.values import Money
from guardrail_kernel.exceptions import (
    InsufficientRoleError,
    InvalidAmountError,
    InvalidMovementTransitionError,
    MovementAlreadyResolvedError,
    MovementNotFoundError,
    OptimisticLockError,
    OrderBlockedError,
    OrganizationAccessError,
    QuoteUnavailableError,
)
from guardrail_kernel.logging_config import LogContext, get_logger
from guardrail_kernel.models.journal import JournalEventKind
from guardrail_kernel.models.movement import MoneyMovementModel
from guardrail_kernel.models.position import InvestmentPositionModel
from guardrail_kernel.services.event_journal import EventJournal, entity_ref

logger = get_logger("services.lifecycle")

MovementHook = Callable[[MoneyMovementModel, UUID | None], None]
OrderFiller = Callable[[MoneyMovementModel], int]

_EVENTS = {
    MovementKind.TRANSFER: {
        "requested": JournalEventKind.TRANSFER_REQUESTED,
        "approved": JournalEventKind.TRANSFER_APPROVED,
        "executed": JournalEventKind.TRANSFER_EXECUTED,
        "declined": JournalEventKind.TRANSFER_DECLINED,
        "canceled": JournalEventKind.TRANSFER_CANCELED,
        "failed": JournalEventKind.TRANSFER_FAILED,
    },
    MovementKind.ORDER: {
        "requested": JournalEventKind.ORDER_SUBMITTED,
        "approved": JournalEventKind.ORDER_APPROVED,
        "executed": JournalEventKind.ORDER_EXECUTED,
        "declined": JournalEventKind.ORDER_FAILED,
        "canceled": JournalEventKind.ORDER_FAILED,
        "failed": JournalEventKind.ORDER_FAILED,
    },
}


class MovementLifecycle:
    """
    Drives money movements through their lifecycle.

    Contract:
        All methods run inside the caller's session and never commit.
        Hooks registered per intent run inside execution (transfers only)
        or after a decline.

    Guarantees:
        - A created movement is either pending (no approver) or has been
          self-approved and executed/failed before ``create`` returns.
        - Exactly one ``*_requested`` entry per movement, plus one entry per
          later transition.
    """

    def __init__(
        self,
        session: Session,
        journal: EventJournal,
        clock: Clock | None = None,
        *,
        approver_roles: tuple[str, ...] = ("owner", "admin", "guardian"),
        admin_roles: tuple[str, ...] = ("owner", "admin"),
        position_epsilon: Decimal = DEFAULT_EPSILON,
        order_filler: OrderFiller | None = None,
    ):
        self._session = session
        self._journal = journal
        self._clock = clock or SystemClock()
        self._approver_roles = approver_roles
        self._admin_roles = admin_roles
        self._epsilon = position_epsilon
        self._order_filler = order_filler
        self._execution_hooks: dict[GuardrailIntent, list[MovementHook]] = {}
        self._decline_hooks: dict[GuardrailIntent, list[MovementHook]] = {}

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def register_execution_hook(self, intent: GuardrailIntent, hook: MovementHook) -> None:
        """Run ``hook(movement, actor_id)`` when a transfer of ``intent`` executes."""
        self._execution_hooks.setdefault(intent, []).append(hook)

    def register_decline_hook(self, intent: GuardrailIntent, hook: MovementHook) -> None:
        """Run ``hook(movement, actor_id)`` after a movement of ``intent`` is declined."""
        self._decline_hooks.setdefault(intent, []).append(hook)

    def set_order_filler(self, filler: OrderFiller) -> None:
        self._order_filler = filler

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(
        self,
        *,
        organization_id: UUID,
        kind: MovementKind,
        intent: GuardrailIntent,
        amount: Money,
        requested_by: UUID,
        decision: GuardrailDecision,
        summary: GuardrailSummary,
        source_account_id: UUID | None = None,
        destination_account_id: UUID | None = None,
        symbol: str | None = None,
        instrument_kind: str | None = None,
        side: OrderSide | None = None,
        quantity: Decimal | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> MoneyMovementModel:
        """
        Persist a movement with the status the decision dictates.

        Pending decisions produce ``pending_approval`` (transfers) or
        ``awaiting_parent`` (orders).  Executing decisions go through
        ``self_approve_and_execute`` before returning.

        Raises:
            InvalidAmountError: amount is not positive.
            OrderBlockedError: decision is ``blocked``; nothing is persisted.
            ExecutionError: auto-execution failed (movement recorded as failed).
        """
        if not amount.is_positive:
            raise InvalidAmountError(amount.cents)
        if decision.is_blocked:
            raise OrderBlockedError(
                symbol=symbol or "",
                reason_code=decision.reason_code.value if decision.reason_code else "blocked",
                guardrail_id=str(decision.guardrail_id) if decision.guardrail_id else None,
            )

        now = self._clock.now()
        details = dict(metadata or {})
        details["guardrail"] = {**summary.to_dict(), **decision.to_dict()}

        requires_admin = decision.requires_admin or decision.reason_code == ReasonCode.ADMIN_REQUIRED
        movement = MoneyMovementModel(
            organization_id=organization_id,
            kind=kind.value,
            intent=intent.value,
            status=pending_status_for(kind).value,
            amount_cents=amount.cents,
            currency=amount.currency,
            source_account_id=source_account_id,
            destination_account_id=destination_account_id,
            symbol=symbol.upper() if symbol else None,
            instrument_kind=instrument_kind,
            side=side.value if side else None,
            quantity=quantity,
            approver_tier=(ApproverTier.ADMIN if requires_admin else ApproverTier.GUARDIAN).value,
            requested_by_id=requested_by,
            requested_at=now,
            updated_at=now,
            details=details,
        )
        self._session.add(movement)
        self._session.flush()

        with LogContext.bind(movement_id=str(movement.id), intent=intent.value):
            self._journal.record(
                organization_id,
                _EVENTS[kind]["requested"],
                movement.__tablename__,
                movement.id,
                actor_id=requested_by,
                related=self._related(movement),
                payload={
                    "amount": amount.to_dict(),
                    "decision": decision.outcome.value,
                    "reason": decision.reason_code.value if decision.reason_code else None,
                    "status": movement.status,
                },
            )
            logger.info(
                "movement_created",
                extra={
                    "kind": kind.value,
                    "decision": decision.outcome.value,
                    "reason_code": decision.reason_code.value if decision.reason_code else None,
                    "amount_cents": amount.cents,
                },
            )

            if decision.executes:
                self.self_approve_and_execute(movement)

        return movement

    def self_approve_and_execute(self, movement: MoneyMovementModel) -> MoneyMovementModel:
        """
        Auto-execution: the requester approves their own movement, then it executes.

        This is the defined semantics of an ``execute`` / ``auto_execute``
        decision, recorded as approved_by = requested_by.
        """
        self._transition(movement, MovementStatus.APPROVED)
        movement.approved_by_id = movement.requested_by_id
        movement.approved_at = self._clock.now()
        self._session.flush()
        logger.info("movement_self_approved", extra={"movement_id": str(movement.id)})
        return self.execute(movement, actor_id=movement.requested_by_id)

    # ------------------------------------------------------------------
    # Approve / decline / cancel
    # ------------------------------------------------------------------

    def approve(self, movement_id: UUID, actor: ActorSession) -> MoneyMovementModel:
        """
        Approve a pending movement and execute it immediately.

        Raises:
            InsufficientRoleError: actor is not an approver, or the movement
                needs an admin-tier approver.
            MovementAlreadyResolvedError / InvalidMovementTransitionError.
        """
        movement = self._load_for_actor(movement_id, actor)
        required = (
            self._admin_roles
            if movement.approver_tier == ApproverTier.ADMIN.value
            else self._approver_roles
        )
        self._require_role(actor, required, "approve movement")
        self._transition(movement, MovementStatus.APPROVED)

        movement.approved_by_id = actor.actor_id
        movement.approved_at = self._clock.now()
        self._session.flush()

        kind = MovementKind(movement.kind)
        with LogContext.bind(movement_id=str(movement.id), actor_id=str(actor.actor_id)):
            self._journal.record(
                movement.organization_id,
                _EVENTS[kind]["approved"],
                movement.__tablename__,
                movement.id,
                actor_id=actor.actor_id,
                related=self._related(movement),
                payload={"status": movement.status},
            )
            logger.info("movement_approved", extra={"approver_role": actor.role_value})
            return self.execute(movement, actor_id=actor.actor_id)

    def decline(self, movement_id: UUID, actor: ActorSession, reason: str | None = None) -> MoneyMovementModel:
        """Decline a pending movement (approver roles only)."""
        movement = self._load_for_actor(movement_id, actor)
        self._require_role(actor, self._approver_roles, "decline movement")
        self._close(movement, MovementStatus.DECLINED, actor, reason)
        for hook in self._decline_hooks.get(GuardrailIntent(movement.intent), []):
            hook(movement, actor.actor_id)
        return movement

    def cancel(self, movement_id: UUID, actor: ActorSession, reason: str | None = None) -> MoneyMovementModel:
        """
        Cancel a pending movement.

        The requester may cancel their own movement; anyone else needs an
        approver role (cancel-on-behalf).
        """
        movement = self._load_for_actor(movement_id, actor)
        if movement.requested_by_id != actor.actor_id:
            self._require_role(actor, self._approver_roles, "cancel movement on behalf of requester")
        self._close(movement, MovementStatus.CANCELED, actor, reason)
        return movement

    # ------------------------------------------------------------------
    # Execute
    # ------------------------------------------------------------------

    def execute(self, movement: MoneyMovementModel, *, actor_id: UUID | None = None) -> MoneyMovementModel:
        """
        Run the execution side effect of an approved movement.

        Side effects run inside a SAVEPOINT so that a failure rolls back only
        the partial work; the movement is then recorded as ``failed`` and the
        error re-raised.
        """
        current = MovementStatus(movement.status)
        if current in TERMINAL_MOVEMENT_STATUSES:
            raise MovementAlreadyResolvedError(str(movement.id), current.value)
        if current != MovementStatus.APPROVED:
            raise InvalidMovementTransitionError(
                str(movement.id), current.value, MovementStatus.EXECUTED.value
            )

        kind = MovementKind(movement.kind)
        try:
            with self._session.begin_nested():
                if kind == MovementKind.ORDER:
                    position = self._fill_order(movement)
                else:
                    position = None
                    for hook in self._execution_hooks.get(GuardrailIntent(movement.intent), []):
                        hook(movement, actor_id)
                self._transition(movement, MovementStatus.EXECUTED)
                movement.executed_at = self._clock.now()
                movement.updated_at = movement.executed_at
                self._session.flush()
        except StaleDataError as exc:
            error = OptimisticLockError("InvestmentPosition", f"{movement.source_account_id}:{movement.symbol}")
            self._fail(movement, error, actor_id)
            raise error from exc
        except Exception as exc:
            self._fail(movement, exc, actor_id)
            raise

        related = self._related(movement)
        if position is not None:
            related.append(entity_ref(position.__tablename__, position.id))
        self._journal.record(
            movement.organization_id,
            _EVENTS[kind]["executed"],
            movement.__tablename__,
            movement.id,
            actor_id=actor_id,
            related=related,
            payload={
                "amount_cents": movement.amount_cents,
                "execution_price_cents": movement.execution_price_cents,
                "notional_cents": movement.notional_cents,
            },
        )
        logger.info(
            "movement_executed",
            extra={"movement_id": str(movement.id), "kind": movement.kind},
        )
        return movement

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, movement_id: UUID, *, for_update: bool = False) -> MoneyMovementModel:
        stmt = select(MoneyMovementModel).where(MoneyMovementModel.id == movement_id)
        if for_update:
            stmt = stmt.with_for_update()
        movement = self._session.execute(stmt).scalar_one_or_none()
        if movement is None:
            raise MovementNotFoundError(str(movement_id))
        return movement

    def list_movements(
        self,
        organization_id: UUID,
        *,
        intent: GuardrailIntent | None = None,
        statuses: tuple[MovementStatus, ...] | None = None,
    ) -> list[MoneyMovementModel]:
        stmt = select(MoneyMovementModel).where(
            MoneyMovementModel.organization_id == organization_id
        )
        if intent is not None:
            stmt = stmt.where(MoneyMovementModel.intent == intent.value)
        if statuses:
            stmt = stmt.where(MoneyMovementModel.status.in_([s.value for s in statuses]))
        stmt = stmt.order_by(MoneyMovementModel.requested_at)
        return list(self._session.execute(stmt).scalars().all())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fill_order(self, movement: MoneyMovementModel) -> InvestmentPositionModel:
        if self._order_filler is None:
            raise QuoteUnavailableError(movement.symbol or "")
        price_cents = self._order_filler(movement)

        position = self._session.execute(
            select(InvestmentPositionModel)
            .where(
                InvestmentPositionModel.account_id == movement.source_account_id,
                InvestmentPositionModel.symbol == movement.symbol,
            )
            .with_for_update()
        ).scalar_one_or_none()

        state = (
            PositionState(quantity=position.quantity, average_cost_cents=position.average_cost_cents)
            if position is not None
            else None
        )
        result = apply_fill(
            state,
            movement.symbol,
            OrderSide(movement.side),
            movement.quantity,
            price_cents,
            self._epsilon,
        )

        now = self._clock.now()
        if position is None:
            position = InvestmentPositionModel(
                organization_id=movement.organization_id,
                account_id=movement.source_account_id,
                symbol=movement.symbol,
                instrument_kind=movement.instrument_kind,
                currency=movement.currency,
            )
            self._session.add(position)
        position.quantity = result.quantity
        position.average_cost_cents = result.average_cost_cents
        position.market_value_cents = result.market_value_cents
        position.last_price_cents = price_cents
        position.updated_at = now

        movement.execution_price_cents = price_cents
        movement.notional_cents = to_cents(movement.quantity * Decimal(price_cents))
        self._session.flush()

        logger.info(
            "position_updated",
            extra={
                "symbol": movement.symbol,
                "side": movement.side,
                "quantity": result.quantity,
                "average_cost_cents": result.average_cost_cents,
                "closed": result.closed,
            },
        )
        return position

    def _fail(self, movement: MoneyMovementModel, error: Exception, actor_id: UUID | None) -> None:
        self._transition(movement, MovementStatus.FAILED)
        movement.failure_reason = str(error)
        movement.updated_at = self._clock.now()
        self._session.flush()

        self._journal.record(
            movement.organization_id,
            _EVENTS[MovementKind(movement.kind)]["failed"],
            movement.__tablename__,
            movement.id,
            actor_id=actor_id,
            related=self._related(movement),
            payload={
                "status": MovementStatus.FAILED.value,
                "reason": str(error),
                "error_code": getattr(error, "code", type(error).__name__),
            },
        )
        logger.warning(
            "movement_failed",
            extra={"movement_id": str(movement.id), "failure_reason": str(error)},
        )

    def _close(
        self,
        movement: MoneyMovementModel,
        status: MovementStatus,
        actor: ActorSession,
        reason: str | None,
    ) -> None:
        self._transition(movement, status)
        movement.updated_at = self._clock.now()
        details = dict(movement.details or {})
        details["resolution"] = {
            "status": status.value,
            "reason": reason,
            "actor_id": str(actor.actor_id),
        }
        movement.details = details
        self._session.flush()

        self._journal.record(
            movement.organization_id,
            _EVENTS[MovementKind(movement.kind)][status.value],
            movement.__tablename__,
            movement.id,
            actor_id=actor.actor_id,
            related=self._related(movement),
            payload={"status": status.value, "reason": reason},
        )
        logger.info(
            "movement_closed",
            extra={"movement_id": str(movement.id), "status": status.value, "reason": reason},
        )

    def _transition(self, movement: MoneyMovementModel, to_status: MovementStatus) -> None:
        current = MovementStatus(movement.status)
        if current in TERMINAL_MOVEMENT_STATUSES:
            raise MovementAlreadyResolvedError(str(movement.id), current.value)
        if not can_transition(current, to_status):
            raise InvalidMovementTransitionError(str(movement.id), current.value, to_status.value)
        movement.status = to_status.value

    def _load_for_actor(self, movement_id: UUID, actor: ActorSession) -> MoneyMovementModel:
        movement = self.get(movement_id, for_update=True)
        if movement.organization_id != actor.organization_id:
            raise OrganizationAccessError(str(actor.actor_id), str(movement.organization_id))
        return movement

    def _require_role(self, actor: ActorSession, roles: tuple[str, ...], action: str) -> None:
        if actor.role_value not in roles:
            raise InsufficientRoleError(str(actor.actor_id), actor.role_value, roles, action)

    @staticmethod
    def _related(movement: MoneyMovementModel) -> list[dict[str, str]]:
        related = []
        if movement.source_account_id is not None:
            related.append(entity_ref("financial_accounts", movement.source_account_id))
        if movement.destination_account_id is not None:
            related.append(entity_ref("financial_accounts", movement.destination_account_id))
        return related
