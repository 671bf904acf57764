"""
guardrail_services.spend -- spend transfers (credit payoff).

A spend transfer pays down a destination account.  Candidate scopes are the
destination account and the node that owns it.  When the transfer executes,
a credit AccountTransaction is posted on the destination account; account
balances themselves are left to account sync.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from guardrail_config.schema import GuardrailSettings
from guardrail_kernel.domain.actor import ActorSession
from guardrail_kernel.domain.clock import Clock
from guardrail_kernel.domain.guardrail import GuardrailIntent
from guardrail_kernel.domain.values import Money
from guardrail_kernel.logging_config import get_logger
from guardrail_kernel.models.money_map import AccountTransactionModel, FinancialAccountModel
from guardrail_kernel.models.movement import MoneyMovementModel
from guardrail_kernel.services.lifecycle import MovementLifecycle
from guardrail_services._records import account_scopes, load_account
from guardrail_services.authorization import ensure_member_with_role
from guardrail_services.movement_orchestrator import MovementOrchestrator, MovementOutcome

logger = get_logger("services.spend")

DEFAULT_DESCRIPTION = "Credit payoff"


class SpendService:
    def __init__(
        self,
        session: Session,
        orchestrator: MovementOrchestrator,
        lifecycle: MovementLifecycle,
        clock: Clock,
        settings: GuardrailSettings,
    ):
        self._session = session
        self._orchestrator = orchestrator
        self._clock = clock
        self._settings = settings
        lifecycle.register_execution_hook(GuardrailIntent.SPEND, self._post_transaction)

    def initiate_spend_transfer(
        self,
        actor: ActorSession,
        organization_id: UUID,
        amount: Money,
        *,
        source_account_id: UUID,
        destination_account_id: UUID,
        memo: str | None = None,
    ) -> MovementOutcome:
        """
        Request a spend transfer from ``source_account_id`` to ``destination_account_id``.

        Raises:
            OrganizationAccessError / InsufficientRoleError: before anything is read.
            AccountNotFoundError / ForeignScopeError: unknown or foreign account.
        """
        ensure_member_with_role(actor, organization_id, self._settings.roles.spenders, "initiate spend transfer")
        load_account(self._session, organization_id, source_account_id)
        destination = load_account(self._session, organization_id, destination_account_id)

        return self._orchestrator.request_transfer(
            actor,
            GuardrailIntent.SPEND,
            account_scopes(destination),
            amount,
            source_account_id=source_account_id,
            destination_account_id=destination_account_id,
            metadata={
                "memo": memo.strip() if memo else None,
                "destination_account_name": destination.name,
            },
        )

    def _post_transaction(self, movement: MoneyMovementModel, actor_id: UUID | None) -> None:
        destination = self._session.get(FinancialAccountModel, movement.destination_account_id)
        memo = (movement.details or {}).get("memo")
        transaction = AccountTransactionModel(
            organization_id=movement.organization_id,
            account_id=movement.destination_account_id,
            movement_id=movement.id,
            money_map_node_id=destination.money_map_node_id if destination else None,
            direction="credit",
            amount_cents=movement.amount_cents,
            currency=movement.currency,
            description=memo or DEFAULT_DESCRIPTION,
            occurred_at=self._clock.now(),
        )
        self._session.add(transaction)
        self._session.flush()
        logger.info(
            "spend_transaction_posted",
            extra={"movement_id": str(movement.id), "amount_cents": movement.amount_cents},
        )
