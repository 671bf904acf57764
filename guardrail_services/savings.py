"""
guardrail_services.savings -- savings goals and goal transfers.

Responsibility:
    Goal creation (with deposit and withdrawal guardrails provisioned on the
    goal node), archival, goal transfers, and progress/achievement tracking.

Scope derivation:
    A transfer whose destination is the goal account is a deposit; one whose
    source is the goal account is a withdrawal.  Either way the candidate
    scopes are the goal account plus the goal node, restricted to the
    guardrail of the matching direction.

Progress:
    Account balances are owned by account sync, so progress is the goal's
    starting amount plus executed deposits minus executed withdrawals.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from guardrail_config.schema import GuardrailSettings
from guardrail_engines.resolver import CandidateScopes, deposit_into, withdrawal_from
from guardrail_kernel.domain.actor import ActorSession
from guardrail_kernel.domain.clock import Clock
from guardrail_kernel.domain.guardrail import GuardrailIntent, GuardrailSummary
from guardrail_kernel.domain.movement import MovementKind, MovementStatus
from guardrail_kernel.domain.values import Money
from guardrail_kernel.exceptions import (
    ForeignScopeError,
    GoalNotFoundError,
    InvalidAmountError,
)
from guardrail_kernel.logging_config import get_logger
from guardrail_kernel.models.journal import JournalEventKind
from guardrail_kernel.models.movement import MoneyMovementModel
from guardrail_kernel.models.planning import SavingsGoalModel
from guardrail_kernel.services.event_journal import EventJournal, entity_ref
from guardrail_kernel.services.lifecycle import MovementLifecycle
from guardrail_kernel.services.provisioning import GuardrailProvisioner
from guardrail_services._records import load_account, load_node
from guardrail_services.authorization import ensure_member_with_role, ensure_organization_access
from guardrail_services.movement_orchestrator import MovementOrchestrator, MovementOutcome

logger = get_logger("services.savings")

DEPOSIT = "deposit"
WITHDRAWAL = "withdrawal"


@dataclass(frozen=True)
class GoalProgress:
    currency: str
    current_cents: int
    contributed_cents: int
    remaining_cents: int
    percentage_complete: Decimal
    last_contribution_at: datetime | None
    projected_completion_at: datetime | None


@dataclass(frozen=True)
class GoalResult:
    goal: SavingsGoalModel
    progress: GoalProgress
    deposit_guardrail: GuardrailSummary
    withdrawal_guardrail: GuardrailSummary


@dataclass(frozen=True)
class GoalTransferResult:
    outcome: MovementOutcome
    goal: SavingsGoalModel
    direction: str

    @property
    def movement(self) -> MoneyMovementModel:
        return self.outcome.movement

    @property
    def summary(self) -> GuardrailSummary:
        return self.outcome.summary


class SavingsService:
    """Savings goals on top of the shared movement pipeline."""

    def __init__(
        self,
        session: Session,
        orchestrator: MovementOrchestrator,
        lifecycle: MovementLifecycle,
        provisioner: GuardrailProvisioner,
        journal: EventJournal,
        clock: Clock,
        settings: GuardrailSettings,
    ):
        self._session = session
        self._orchestrator = orchestrator
        self._provisioner = provisioner
        self._journal = journal
        self._clock = clock
        self._settings = settings
        lifecycle.register_execution_hook(GuardrailIntent.SAVE, self._on_transfer_executed)

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    def create_goal(
        self,
        actor: ActorSession,
        organization_id: UUID,
        *,
        node_id: UUID,
        account_id: UUID,
        name: str,
        target: Money,
        starting: Money | None = None,
    ) -> GoalResult:
        """
        Create a goal on an existing goal node and provision its guardrails.

        Raises:
            InsufficientRoleError: actor is not a planner.
            NodeNotFoundError: node missing or not a goal node.
            InvalidAmountError: target is not positive.
        """
        ensure_member_with_role(actor, organization_id, self._settings.roles.planners, "create goal")
        if not target.is_positive:
            raise InvalidAmountError(target.cents, "Goal target must be greater than zero")
        starting_cents = starting.cents if starting is not None else 0
        if starting_cents < 0:
            raise InvalidAmountError(starting_cents, "Starting amount cannot be negative")

        load_node(self._session, organization_id, node_id, kind="goal")
        load_account(self._session, organization_id, account_id)

        goal = SavingsGoalModel(
            organization_id=organization_id,
            node_id=node_id,
            account_id=account_id,
            name=name,
            target_cents=target.cents,
            starting_cents=starting_cents,
            currency=target.currency,
            status="active",
            created_by_id=actor.actor_id,
        )
        self._session.add(goal)
        self._session.flush()

        provisioning = self._settings.provisioning
        self._provisioner.ensure_goal_guardrails(
            organization_id,
            node_id,
            actor_id=actor.actor_id,
            deposit_policy=provisioning.deposit_policy,
            withdrawal_policy=provisioning.withdrawal_policy,
            allowed_roles=provisioning.allowed_roles_to_initiate,
        )

        self._journal.record(
            organization_id,
            JournalEventKind.GOAL_CREATED,
            goal.__tablename__,
            goal.id,
            actor_id=actor.actor_id,
            related=[
                entity_ref("money_map_nodes", node_id),
                entity_ref("financial_accounts", account_id),
            ],
            payload={"name": name, "target": target.to_dict()},
        )
        logger.info("goal_created", extra={"goal_id": str(goal.id), "target_cents": target.cents})
        return self.get_goal(actor, goal.id)

    def get_goal(self, actor: ActorSession, goal_id: UUID) -> GoalResult:
        goal = self._load_goal(goal_id)
        ensure_organization_access(actor, goal.organization_id)
        deposit = self._orchestrator.resolve(
            goal.organization_id, GuardrailIntent.SAVE, self._scopes(goal, DEPOSIT)
        )
        withdrawal = self._orchestrator.resolve(
            goal.organization_id, GuardrailIntent.SAVE, self._scopes(goal, WITHDRAWAL)
        )
        return GoalResult(
            goal=goal,
            progress=self.calculate_goal_progress(goal),
            deposit_guardrail=deposit.summary,
            withdrawal_guardrail=withdrawal.summary,
        )

    def archive_goal(self, actor: ActorSession, goal_id: UUID) -> SavingsGoalModel:
        goal = self._load_goal(goal_id)
        ensure_member_with_role(actor, goal.organization_id, self._settings.roles.planners, "archive goal")
        if goal.status == "archived":
            return goal

        goal.status = "archived"
        goal.archived_at = self._clock.now()
        goal.updated_by_id = actor.actor_id
        self._session.flush()

        self._journal.record(
            goal.organization_id,
            JournalEventKind.GOAL_ARCHIVED,
            goal.__tablename__,
            goal.id,
            actor_id=actor.actor_id,
            payload={"name": goal.name},
        )
        logger.info("goal_archived", extra={"goal_id": str(goal.id)})
        return goal

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def initiate_goal_transfer(
        self,
        actor: ActorSession,
        goal_id: UUID,
        amount: Money,
        *,
        source_account_id: UUID,
        destination_account_id: UUID,
        memo: str | None = None,
    ) -> GoalTransferResult:
        """
        Move money into or out of a goal account.

        Raises:
            ForeignScopeError: neither side of the transfer is the goal account.
        """
        goal = self._load_goal(goal_id)
        ensure_organization_access(actor, goal.organization_id)
        load_account(self._session, goal.organization_id, source_account_id)
        load_account(self._session, goal.organization_id, destination_account_id)

        if destination_account_id == goal.account_id:
            direction = DEPOSIT
        elif source_account_id == goal.account_id:
            direction = WITHDRAWAL
        else:
            raise ForeignScopeError("SavingsGoal", str(goal.id), str(actor.organization_id))

        outcome = self._orchestrator.request_transfer(
            actor,
            GuardrailIntent.SAVE,
            self._scopes(goal, direction),
            amount,
            source_account_id=source_account_id,
            destination_account_id=destination_account_id,
            metadata={"goal_id": str(goal.id), "direction": direction, "memo": memo},
        )
        return GoalTransferResult(outcome=outcome, goal=goal, direction=direction)

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def calculate_goal_progress(
        self,
        goal: SavingsGoalModel,
        *,
        pending_execution: MoneyMovementModel | None = None,
    ) -> GoalProgress:
        """
        Progress from executed save transfers touching the goal account.

        ``pending_execution`` is a movement that is executing right now and
        is counted as if already executed.
        """
        movements = list(
            self._session.execute(
                select(MoneyMovementModel).where(
                    MoneyMovementModel.organization_id == goal.organization_id,
                    MoneyMovementModel.kind == MovementKind.TRANSFER.value,
                    MoneyMovementModel.intent == GuardrailIntent.SAVE.value,
                    MoneyMovementModel.status == MovementStatus.EXECUTED.value,
                    or_(
                        MoneyMovementModel.destination_account_id == goal.account_id,
                        MoneyMovementModel.source_account_id == goal.account_id,
                    ),
                )
            ).scalars()
        )
        if pending_execution is not None and pending_execution not in movements:
            movements.append(pending_execution)

        now = self._clock.now()
        net = 0
        deposits = 0
        deposit_times: list[datetime] = []
        last_contribution: datetime | None = None
        for movement in movements:
            moment = movement.executed_at or movement.approved_at or now
            if movement.destination_account_id == goal.account_id:
                net += movement.amount_cents
                deposits += movement.amount_cents
                deposit_times.append(moment)
            else:
                net -= movement.amount_cents
            if last_contribution is None or moment > last_contribution:
                last_contribution = moment

        current = max(0, goal.starting_cents + net)
        remaining = max(0, goal.target_cents - current)
        percentage = min(Decimal("1"), Decimal(current) / Decimal(goal.target_cents)).quantize(
            Decimal("0.0001"), rounding=ROUND_HALF_UP
        )

        projected: datetime | None = None
        if remaining == 0:
            projected = last_contribution or now
        elif len(deposit_times) >= 2 and deposits > 0:
            deposit_times.sort()
            elapsed_days = max(1.0, (deposit_times[-1] - deposit_times[0]).total_seconds() / 86400)
            per_day = deposits / elapsed_days
            projected = now + timedelta(days=remaining / per_day)

        return GoalProgress(
            currency=goal.currency,
            current_cents=current,
            contributed_cents=max(0, current - goal.starting_cents),
            remaining_cents=remaining,
            percentage_complete=percentage,
            last_contribution_at=last_contribution,
            projected_completion_at=projected,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _on_transfer_executed(self, movement: MoneyMovementModel, actor_id: UUID | None) -> None:
        goal_id = (movement.details or {}).get("goal_id")
        if not goal_id:
            return
        goal = self._session.get(SavingsGoalModel, UUID(goal_id))
        if goal is None or goal.status != "active":
            return

        progress = self.calculate_goal_progress(goal, pending_execution=movement)
        if progress.remaining_cents > 0:
            return

        goal.status = "achieved"
        goal.achieved_at = self._clock.now()
        self._session.flush()
        self._journal.record(
            goal.organization_id,
            JournalEventKind.GOAL_ACHIEVED,
            goal.__tablename__,
            goal.id,
            actor_id=actor_id,
            related=[entity_ref(movement.__tablename__, movement.id)],
            payload={"current_cents": progress.current_cents, "target_cents": goal.target_cents},
        )
        logger.info("goal_achieved", extra={"goal_id": str(goal.id)})

    def _load_goal(self, goal_id: UUID) -> SavingsGoalModel:
        goal = self._session.get(SavingsGoalModel, goal_id)
        if goal is None:
            raise GoalNotFoundError(str(goal_id))
        return goal

    @staticmethod
    def _scopes(goal: SavingsGoalModel, direction: str) -> CandidateScopes:
        accepts = deposit_into(goal.node_id) if direction == DEPOSIT else withdrawal_from(goal.node_id)
        return CandidateScopes(account_id=goal.account_id, node_id=goal.node_id, accepts=accepts)
