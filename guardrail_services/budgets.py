"""
guardrail_services.budgets -- monthly budgets and their spend guardrails.

Responsibility:
    A budget plans spend for one money-map node in one ``YYYY-MM`` period.
    Creating a budget provisions the node's spend guardrail (auto up to the
    planned amount); updating the guardrail switches between auto-with-limit
    and parent_required.  Actuals are computed from posted transactions on
    the node within the period.

Actuals:
    Debits count as spend.  Credits (refunds, payoffs) are counted as
    transactions but never reduce spend.  A budget whose spend exceeds a
    positive plan emits ``budget_over_limit`` once per budget and period;
    ``over_limit_alerted_at`` records that the alert was sent.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from guardrail_config.schema import GuardrailSettings
from guardrail_engines.resolver import CandidateScopes
from guardrail_kernel.domain.actor import ActorSession
from guardrail_kernel.domain.clock import Clock
from guardrail_kernel.domain.guardrail import ApprovalPolicy, GuardrailIntent, GuardrailSummary
from guardrail_kernel.domain.values import Money
from guardrail_kernel.exceptions import BudgetNotFoundError, InvalidAmountError, InvalidPeriodKeyError
from guardrail_kernel.logging_config import get_logger
from guardrail_kernel.models.journal import JournalEventKind
from guardrail_kernel.models.money_map import AccountTransactionModel
from guardrail_kernel.models.planning import BudgetModel
from guardrail_kernel.services.event_journal import EventJournal, entity_ref
from guardrail_kernel.services.guardrail_store import GuardrailStore
from guardrail_kernel.services.provisioning import GuardrailProvisioner
from guardrail_services._records import load_node
from guardrail_services.authorization import ensure_member_with_role, ensure_organization_access
from guardrail_services.movement_orchestrator import MovementOrchestrator

logger = get_logger("services.budgets")

_PERIOD_KEY = re.compile(r"^(\d{4})-(\d{2})$")


def period_range(period_key: str) -> tuple[datetime, datetime]:
    """
    UTC [start, end) of a ``YYYY-MM`` period.

    Raises:
        InvalidPeriodKeyError: malformed key or month outside 01-12.
    """
    match = _PERIOD_KEY.match(period_key or "")
    if match is None:
        raise InvalidPeriodKeyError(period_key)
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise InvalidPeriodKeyError(period_key)
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    end = datetime(year + month // 12, month % 12 + 1, 1, tzinfo=timezone.utc)
    return start, end


@dataclass(frozen=True)
class BudgetActuals:
    currency: str
    spent_cents: int
    remaining_cents: int
    percentage_used: Decimal
    transactions_count: int
    overspent: bool
    last_transaction_at: datetime | None


@dataclass(frozen=True)
class BudgetResult:
    budget: BudgetModel
    actuals: BudgetActuals
    guardrail: GuardrailSummary


class BudgetService:
    def __init__(
        self,
        session: Session,
        orchestrator: MovementOrchestrator,
        store: GuardrailStore,
        provisioner: GuardrailProvisioner,
        journal: EventJournal,
        clock: Clock,
        settings: GuardrailSettings,
    ):
        self._session = session
        self._orchestrator = orchestrator
        self._store = store
        self._provisioner = provisioner
        self._journal = journal
        self._clock = clock
        self._settings = settings

    def create_budget(
        self,
        actor: ActorSession,
        organization_id: UUID,
        *,
        node_id: UUID,
        period_key: str,
        planned: Money,
    ) -> BudgetResult:
        """
        Create the budget for (node, period) and ensure its spend guardrail.

        An existing budget for the same node and period is returned with its
        planned amount replaced.

        Raises:
            InvalidPeriodKeyError: period_key is not ``YYYY-MM``.
            InvalidAmountError: planned amount is negative.
            NodeNotFoundError / ForeignScopeError.
        """
        ensure_member_with_role(actor, organization_id, self._settings.roles.planners, "create budget")
        period_range(period_key)
        if planned.cents < 0:
            raise InvalidAmountError(planned.cents, "Planned amount cannot be negative")
        load_node(self._session, organization_id, node_id)

        budget = self._session.execute(
            select(BudgetModel).where(
                BudgetModel.organization_id == organization_id,
                BudgetModel.node_id == node_id,
                BudgetModel.period_key == period_key,
            )
        ).scalar_one_or_none()

        if budget is None:
            budget = BudgetModel(
                organization_id=organization_id,
                node_id=node_id,
                period_key=period_key,
                planned_cents=planned.cents,
                currency=planned.currency,
                created_by_id=actor.actor_id,
            )
            self._session.add(budget)
            action = "created"
        else:
            budget.planned_cents = planned.cents
            budget.currency = planned.currency
            budget.updated_by_id = actor.actor_id
            action = "replanned"
        self._session.flush()

        self._provisioner.ensure_budget_guardrail(
            organization_id,
            node_id,
            actor_id=actor.actor_id,
            limit_cents=planned.cents,
            allowed_roles=self._settings.provisioning.allowed_roles_to_initiate,
        )

        self._journal.record(
            organization_id,
            JournalEventKind.BUDGET_CREATED,
            budget.__tablename__,
            budget.id,
            actor_id=actor.actor_id,
            related=[entity_ref("money_map_nodes", node_id)],
            payload={"action": action, "period_key": period_key, "planned": planned.to_dict()},
        )
        logger.info(
            "budget_saved",
            extra={"budget_id": str(budget.id), "period_key": period_key, "action": action},
        )
        return self.get_budget(actor, budget.id)

    def get_budget(self, actor: ActorSession, budget_id: UUID) -> BudgetResult:
        budget = self._load_budget(budget_id)
        ensure_organization_access(actor, budget.organization_id)
        return BudgetResult(
            budget=budget,
            actuals=self.calculate_budget_actuals(budget),
            guardrail=self._summary(budget.organization_id, budget.node_id),
        )

    def list_budgets(self, actor: ActorSession, organization_id: UUID, period_key: str) -> list[BudgetResult]:
        ensure_organization_access(actor, organization_id)
        period_range(period_key)
        budgets = self._session.execute(
            select(BudgetModel)
            .where(
                BudgetModel.organization_id == organization_id,
                BudgetModel.period_key == period_key,
            )
            .order_by(BudgetModel.created_at)
        ).scalars().all()
        return [
            BudgetResult(
                budget=b,
                actuals=self.calculate_budget_actuals(b),
                guardrail=self._summary(organization_id, b.node_id),
            )
            for b in budgets
        ]

    def update_budget_guardrail(
        self,
        actor: ActorSession,
        budget_id: UUID,
        *,
        auto_approve_up_to_cents: int | None,
    ) -> GuardrailSummary:
        """
        Set the auto-approve limit of the budget node's spend guardrail.

        A positive limit makes the guardrail ``auto`` up to that limit; zero
        or None makes it ``parent_required`` with no limit.
        """
        budget = self._load_budget(budget_id)
        ensure_member_with_role(
            actor, budget.organization_id, self._settings.roles.guardrail_editors, "update budget guardrail"
        )

        limit = auto_approve_up_to_cents if auto_approve_up_to_cents and auto_approve_up_to_cents > 0 else None
        policy = ApprovalPolicy.AUTO if limit is not None else ApprovalPolicy.PARENT_REQUIRED

        provisioned = self._provisioner.ensure_budget_guardrail(
            budget.organization_id,
            budget.node_id,
            actor_id=actor.actor_id,
            limit_cents=limit,
            allowed_roles=self._settings.provisioning.allowed_roles_to_initiate,
        )
        if not provisioned.created:
            model = self._store.patch(
                provisioned.guardrail.id,
                actor_id=actor.actor_id,
                approval_policy=policy,
                auto_approve_up_to_cents=limit,
            )
            self._journal.record(
                budget.organization_id,
                JournalEventKind.GUARDRAIL_UPDATED,
                model.__tablename__,
                model.id,
                actor_id=actor.actor_id,
                related=[entity_ref(budget.__tablename__, budget.id)],
                payload={
                    "action": "updated",
                    "intent": GuardrailIntent.SPEND.value,
                    "approval_policy": policy.value,
                    "auto_approve_up_to_cents": limit,
                },
            )
        return self._summary(budget.organization_id, budget.node_id)

    def calculate_budget_actuals(self, budget: BudgetModel) -> BudgetActuals:
        start, end = period_range(budget.period_key)
        transactions = self._session.execute(
            select(AccountTransactionModel).where(
                AccountTransactionModel.organization_id == budget.organization_id,
                AccountTransactionModel.money_map_node_id == budget.node_id,
                AccountTransactionModel.occurred_at >= start,
                AccountTransactionModel.occurred_at < end,
            )
        ).scalars().all()

        spent = 0
        count = 0
        last_at: datetime | None = None
        for transaction in transactions:
            amount = abs(transaction.amount_cents)
            if not amount:
                continue
            if transaction.direction == "debit":
                spent += amount
            count += 1
            if last_at is None or transaction.occurred_at > last_at:
                last_at = transaction.occurred_at

        planned = max(0, budget.planned_cents)
        overspent = planned > 0 and spent > planned
        percentage = (
            (Decimal(spent) / Decimal(planned)).quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)
            if planned > 0
            else Decimal("0")
        )
        if overspent:
            self._alert_over_limit(budget, spent)

        return BudgetActuals(
            currency=budget.currency,
            spent_cents=spent,
            remaining_cents=max(0, planned - spent),
            percentage_used=percentage,
            transactions_count=count,
            overspent=overspent,
            last_transaction_at=last_at,
        )

    def _alert_over_limit(self, budget: BudgetModel, spent_cents: int) -> None:
        if budget.over_limit_alerted_at is not None:
            return
        budget.over_limit_alerted_at = self._clock.now()
        self._session.flush()
        self._journal.record(
            budget.organization_id,
            JournalEventKind.BUDGET_OVER_LIMIT,
            budget.__tablename__,
            budget.id,
            payload={
                "period_key": budget.period_key,
                "planned_cents": budget.planned_cents,
                "spent_cents": spent_cents,
            },
        )
        logger.warning(
            "budget_over_limit",
            extra={"budget_id": str(budget.id), "period_key": budget.period_key, "spent_cents": spent_cents},
        )

    def _summary(self, organization_id: UUID, node_id: UUID) -> GuardrailSummary:
        return self._orchestrator.resolve(
            organization_id, GuardrailIntent.SPEND, CandidateScopes(node_id=node_id)
        ).summary

    def _load_budget(self, budget_id: UUID) -> BudgetModel:
        budget = self._session.get(BudgetModel, budget_id)
        if budget is None:
            raise BudgetNotFoundError(str(budget_id))
        return budget
