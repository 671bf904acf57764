"""
Tests for SavingsService.

Covers:
- Goal creation provisions deposit/withdrawal guardrails and journals goal_created
- A deposit above the goal's auto limit waits for approval, then executes
- Withdrawals need a parent under the provisioned defaults
- Reaching the target marks the goal achieved exactly once
- Role checks: planners create goals, initiators are restricted
- Progress math and archival
"""

from decimal import Decimal

import pytest

from guardrail_kernel.domain.guardrail import ApprovalPolicy, ReasonCode
from guardrail_kernel.domain.movement import MovementStatus
from guardrail_kernel.domain.values import Money
from guardrail_kernel.exceptions import (
    ForeignScopeError,
    GoalNotFoundError,
    InsufficientRoleError,
    InvalidAmountError,
    NodeNotFoundError,
    OrganizationAccessError,
    RoleNotAllowedToInitiateError,
)
from guardrail_kernel.models.journal import JournalEventKind


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def create_bike_goal(services, household, target_cents=50_000, starting_cents=None):
    return services.savings.create_goal(
        household.owner,
        household.organization_id,
        node_id=household.goal_node.id,
        account_id=household.savings.id,
        name="New Bike",
        target=Money(target_cents),
        starting=Money(starting_cents) if starting_cents is not None else None,
    )


def deposit(services, household, goal_id, cents, actor=None):
    return services.savings.initiate_goal_transfer(
        actor or household.member,
        goal_id,
        Money(cents),
        source_account_id=household.checking.id,
        destination_account_id=household.savings.id,
    )


def withdraw(services, household, goal_id, cents, actor=None):
    return services.savings.initiate_goal_transfer(
        actor or household.member,
        goal_id,
        Money(cents),
        source_account_id=household.savings.id,
        destination_account_id=household.checking.id,
    )


# =========================================================================
# Goal creation
# =========================================================================


class TestCreateGoal:
    def test_provisions_guardrails(self, services, household, journal_kinds):
        result = create_bike_goal(services, household)

        assert result.goal.status == "active"
        assert result.deposit_guardrail.approval_policy == ApprovalPolicy.AUTO
        assert result.deposit_guardrail.guardrail_id is not None
        assert result.withdrawal_guardrail.approval_policy == ApprovalPolicy.PARENT_REQUIRED
        assert result.deposit_guardrail.guardrail_id != result.withdrawal_guardrail.guardrail_id
        assert result.progress.current_cents == 0
        assert "goal_created" in journal_kinds(household.organization_id, result.goal.id)

    def test_guardian_is_not_a_planner(self, services, household):
        with pytest.raises(InsufficientRoleError):
            services.savings.create_goal(
                household.guardian,
                household.organization_id,
                node_id=household.goal_node.id,
                account_id=household.savings.id,
                name="Bike",
                target=Money(10_000),
            )

    def test_node_must_be_a_goal(self, services, household):
        with pytest.raises(NodeNotFoundError):
            services.savings.create_goal(
                household.owner,
                household.organization_id,
                node_id=household.category_node.id,
                account_id=household.savings.id,
                name="Bike",
                target=Money(10_000),
            )

    def test_target_must_be_positive(self, services, household):
        with pytest.raises(InvalidAmountError):
            create_bike_goal(services, household, target_cents=0)

    def test_other_organization_cannot_read(self, services, household, other_household):
        goal_id = create_bike_goal(services, household).goal.id
        with pytest.raises(OrganizationAccessError):
            services.savings.get_goal(other_household.owner, goal_id)


# =========================================================================
# Deposits and withdrawals
# =========================================================================


class TestGoalTransfers:
    def test_deposit_above_limit_waits_for_parent(self, services, household, journal_kinds):
        goal = create_bike_goal(services, household)
        services.guardrails.update_guardrail(
            household.owner,
            goal.deposit_guardrail.guardrail_id,
            approval_policy="auto",
            auto_approve_up_to_cents=10_000,
        )

        result = deposit(services, household, goal.goal.id, 20_000)

        assert result.direction == "deposit"
        assert result.movement.status == MovementStatus.PENDING_APPROVAL.value
        assert result.outcome.reason == ReasonCode.ABOVE_AUTO_LIMIT
        assert result.outcome.decision.limit_cents == 10_000
        assert journal_kinds(household.organization_id, result.movement.id) == ["transfer_requested"]

        approved = services.transfers.approve_transfer(household.guardian, result.movement.id)

        assert approved.status == MovementStatus.EXECUTED.value
        assert approved.approved_by_id == household.guardian.actor_id
        assert "transfer_executed" in journal_kinds(household.organization_id, result.movement.id)
        assert services.savings.get_goal(household.owner, goal.goal.id).progress.current_cents == 20_000

    def test_deposit_within_limit_executes(self, services, household):
        goal = create_bike_goal(services, household)

        result = deposit(services, household, goal.goal.id, 5_000)

        assert result.movement.status == MovementStatus.EXECUTED.value
        assert result.movement.details["goal_id"] == str(goal.goal.id)

    def test_withdrawal_needs_parent(self, services, household):
        goal = create_bike_goal(services, household, starting_cents=10_000)

        result = withdraw(services, household, goal.goal.id, 2_000)

        assert result.direction == "withdrawal"
        assert result.movement.status == MovementStatus.PENDING_APPROVAL.value
        assert result.outcome.reason == ReasonCode.PARENT_REQUIRED
        assert result.summary.guardrail_id == goal.withdrawal_guardrail.guardrail_id

    def test_student_may_not_initiate(self, services, household):
        goal = create_bike_goal(services, household)

        with pytest.raises(RoleNotAllowedToInitiateError):
            deposit(services, household, goal.goal.id, 1_000, actor=household.student)

    def test_transfer_must_touch_goal_account(self, services, household):
        goal = create_bike_goal(services, household)

        with pytest.raises(ForeignScopeError):
            services.savings.initiate_goal_transfer(
                household.member,
                goal.goal.id,
                Money(1_000),
                source_account_id=household.checking.id,
                destination_account_id=household.donation.id,
            )

    def test_unknown_goal(self, services, household):
        from uuid import uuid4

        with pytest.raises(GoalNotFoundError):
            deposit(services, household, uuid4(), 1_000)


# =========================================================================
# Progress and achievement
# =========================================================================


class TestProgress:
    def test_reaching_target_marks_achieved(self, services, household):
        goal = create_bike_goal(services, household, target_cents=30_000, starting_cents=10_000)

        deposit(services, household, goal.goal.id, 20_000)

        refreshed = services.savings.get_goal(household.owner, goal.goal.id)
        assert refreshed.goal.status == "achieved"
        assert refreshed.goal.achieved_at is not None
        assert refreshed.progress.remaining_cents == 0
        assert refreshed.progress.percentage_complete == Decimal("1.0000")
        achieved = services.journal.entries_for(
            household.organization_id, event_kind=JournalEventKind.GOAL_ACHIEVED
        )
        assert len(achieved) == 1

    def test_later_deposit_does_not_achieve_again(self, services, household):
        goal = create_bike_goal(services, household, target_cents=10_000)
        deposit(services, household, goal.goal.id, 10_000)
        deposit(services, household, goal.goal.id, 1_000)

        achieved = services.journal.entries_for(
            household.organization_id, event_kind=JournalEventKind.GOAL_ACHIEVED
        )
        assert len(achieved) == 1

    def test_pending_deposits_do_not_count(self, services, household):
        goal = create_bike_goal(services, household)
        services.guardrails.update_guardrail(
            household.owner, goal.deposit_guardrail.guardrail_id, auto_approve_up_to_cents=1_000
        )
        deposit(services, household, goal.goal.id, 5_000)

        progress = services.savings.get_goal(household.owner, goal.goal.id).progress
        assert progress.current_cents == 0
        assert progress.last_contribution_at is None

    def test_percentage_and_remaining(self, services, household):
        goal = create_bike_goal(services, household, target_cents=40_000, starting_cents=5_000)
        deposit(services, household, goal.goal.id, 5_000)

        progress = services.savings.get_goal(household.owner, goal.goal.id).progress
        assert progress.current_cents == 10_000
        assert progress.contributed_cents == 5_000
        assert progress.remaining_cents == 30_000
        assert progress.percentage_complete == Decimal("0.2500")


def test_archive_goal(services, household, journal_kinds):
    goal_id = create_bike_goal(services, household).goal.id

    archived = services.savings.archive_goal(household.admin, goal_id)
    again = services.savings.archive_goal(household.admin, goal_id)

    assert archived.status == "archived"
    assert again.archived_at == archived.archived_at
    assert journal_kinds(household.organization_id, goal_id).count("goal_archived") == 1
