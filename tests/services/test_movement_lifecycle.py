"""
Tests for MovementLifecycle driven through the shared movement pipeline.

Covers:
- Auto-execution is recorded as self-approval (approved_by = requester)
- Pending movements: approve / decline / cancel and their journal entries
- Role checks: approver roles, admin tier, cancel-on-behalf
- Cross-organization access is rejected
- Terminal movements cannot be resolved again
- Execution failures record ``failed`` and re-raise
- Fallback policy when no guardrail matches
- Initiator role restrictions
- Movements are never deleted
"""

import pytest

from guardrail_engines.resolver import CandidateScopes
from guardrail_kernel.domain.guardrail import (
    ApprovalPolicy,
    GuardrailIntent,
    GuardrailScope,
    ReasonCode,
)
from guardrail_kernel.domain.movement import ApproverTier, MovementStatus
from guardrail_kernel.domain.values import Money
from guardrail_kernel.exceptions import (
    ImmutabilityViolationError,
    InsufficientRoleError,
    InvalidAmountError,
    MovementAlreadyResolvedError,
    MovementNotFoundError,
    OrganizationAccessError,
    RoleNotAllowedToInitiateError,
)
from guardrail_kernel.models.movement import MoneyMovementModel


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def manual_guardrail(services, household):
    """Insert a manual-intent guardrail on the checking account."""

    def _insert(policy: ApprovalPolicy, limit: int | None = None, **attributes):
        return services.store.insert(
            household.organization_id,
            GuardrailIntent.MANUAL,
            GuardrailScope.account(household.checking.id),
            approval_policy=policy,
            created_by_id=household.owner.actor_id,
            auto_approve_up_to_cents=limit,
            **attributes,
        )

    return _insert


@pytest.fixture
def request_manual(services, household):
    """Request a manual transfer out of checking into savings."""

    def _request(actor=None, cents: int = 2_500):
        return services.orchestrator.request_transfer(
            actor or household.member,
            GuardrailIntent.MANUAL,
            CandidateScopes(account_id=household.checking.id),
            Money(cents),
            source_account_id=household.checking.id,
            destination_account_id=household.savings.id,
        )

    return _request


# =========================================================================
# Auto-execution
# =========================================================================


class TestAutoExecution:
    def test_within_limit_executes_as_self_approval(self, manual_guardrail, request_manual, household, journal_kinds):
        manual_guardrail(ApprovalPolicy.AUTO, limit=5_000)

        outcome = request_manual(cents=5_000)
        movement = outcome.movement

        assert movement.status == MovementStatus.EXECUTED.value
        assert movement.approved_by_id == household.member.actor_id
        assert movement.approved_at is not None
        assert movement.executed_at is not None
        assert sorted(journal_kinds(household.organization_id, movement.id)) == [
            "transfer_executed",
            "transfer_requested",
        ]

    def test_guardrail_snapshot_is_stored_on_movement(self, manual_guardrail, request_manual):
        guardrail = manual_guardrail(ApprovalPolicy.AUTO, limit=5_000)

        movement = request_manual(cents=5_001).movement

        snapshot = movement.details["guardrail"]
        assert snapshot["guardrail_id"] == str(guardrail.id)
        assert snapshot["decision"] == "pending"
        assert snapshot["reason"] == "above_auto_limit"
        assert snapshot["limit_cents"] == 5_000
        assert snapshot["approval_policy"] == "auto"


# =========================================================================
# Pending -> approve / decline / cancel
# =========================================================================


class TestApprove:
    def test_guardian_approves_and_movement_executes(self, services, manual_guardrail, request_manual, household, journal_kinds):
        manual_guardrail(ApprovalPolicy.PARENT_REQUIRED)
        outcome = request_manual()
        assert outcome.status == MovementStatus.PENDING_APPROVAL.value
        assert outcome.reason == ReasonCode.PARENT_REQUIRED

        movement = services.lifecycle.approve(outcome.movement.id, household.guardian)

        assert movement.status == MovementStatus.EXECUTED.value
        assert movement.approved_by_id == household.guardian.actor_id
        kinds = journal_kinds(household.organization_id, movement.id)
        assert sorted(kinds) == ["transfer_approved", "transfer_executed", "transfer_requested"]

    @pytest.mark.parametrize("role", ["member", "student"])
    def test_non_approver_cannot_approve(self, services, manual_guardrail, request_manual, household, role):
        manual_guardrail(ApprovalPolicy.PARENT_REQUIRED)
        movement_id = request_manual().movement.id

        with pytest.raises(InsufficientRoleError):
            services.lifecycle.approve(movement_id, getattr(household, role))

        assert services.lifecycle.get(movement_id).status == MovementStatus.PENDING_APPROVAL.value

    def test_admin_only_requires_admin_tier(self, services, manual_guardrail, request_manual, household):
        manual_guardrail(ApprovalPolicy.ADMIN_ONLY)
        outcome = request_manual()
        assert outcome.reason == ReasonCode.ADMIN_REQUIRED
        assert outcome.movement.approver_tier == ApproverTier.ADMIN.value

        with pytest.raises(InsufficientRoleError):
            services.lifecycle.approve(outcome.movement.id, household.guardian)

        movement = services.lifecycle.approve(outcome.movement.id, household.admin)
        assert movement.status == MovementStatus.EXECUTED.value

    def test_other_organization_cannot_approve(self, services, manual_guardrail, request_manual, other_household):
        manual_guardrail(ApprovalPolicy.PARENT_REQUIRED)
        movement_id = request_manual().movement.id

        with pytest.raises(OrganizationAccessError):
            services.lifecycle.approve(movement_id, other_household.owner)

    def test_unknown_movement(self, services, household):
        from uuid import uuid4

        with pytest.raises(MovementNotFoundError):
            services.lifecycle.approve(uuid4(), household.owner)


class TestDeclineAndCancel:
    def test_decline_records_reason(self, services, manual_guardrail, request_manual, household, journal_kinds):
        manual_guardrail(ApprovalPolicy.PARENT_REQUIRED)
        movement_id = request_manual().movement.id

        movement = services.lifecycle.decline(movement_id, household.guardian, "not this week")

        assert movement.status == MovementStatus.DECLINED.value
        assert movement.details["resolution"]["reason"] == "not this week"
        assert "transfer_declined" in journal_kinds(household.organization_id, movement_id)

    def test_declined_movement_cannot_be_approved(self, services, manual_guardrail, request_manual, household):
        manual_guardrail(ApprovalPolicy.PARENT_REQUIRED)
        movement_id = request_manual().movement.id
        services.lifecycle.decline(movement_id, household.guardian)

        with pytest.raises(MovementAlreadyResolvedError):
            services.lifecycle.approve(movement_id, household.owner)

    def test_requester_cancels_own_movement(self, services, manual_guardrail, request_manual, household):
        manual_guardrail(ApprovalPolicy.PARENT_REQUIRED)
        movement_id = request_manual(household.member).movement.id

        movement = services.lifecycle.cancel(movement_id, household.member, "changed my mind")

        assert movement.status == MovementStatus.CANCELED.value

    def test_other_member_cannot_cancel(self, services, manual_guardrail, request_manual, household):
        manual_guardrail(ApprovalPolicy.PARENT_REQUIRED)
        movement_id = request_manual(household.member).movement.id

        with pytest.raises(InsufficientRoleError):
            services.lifecycle.cancel(movement_id, household.student)

    def test_guardian_cancels_on_behalf(self, services, manual_guardrail, request_manual, household):
        manual_guardrail(ApprovalPolicy.PARENT_REQUIRED)
        movement_id = request_manual(household.member).movement.id

        movement = services.lifecycle.cancel(movement_id, household.guardian)

        assert movement.details["resolution"]["actor_id"] == str(household.guardian.actor_id)

    def test_executed_movement_cannot_be_canceled(self, services, manual_guardrail, request_manual, household):
        manual_guardrail(ApprovalPolicy.AUTO)
        movement_id = request_manual(household.member).movement.id

        with pytest.raises(MovementAlreadyResolvedError):
            services.lifecycle.cancel(movement_id, household.member)


# =========================================================================
# Failures, fallbacks, initiators
# =========================================================================


class TestExecutionFailure:
    def test_hook_failure_marks_failed_and_reraises(self, services, manual_guardrail, request_manual, household, journal_kinds):
        def explode(movement, actor_id):
            raise RuntimeError("ledger offline")

        services.lifecycle.register_execution_hook(GuardrailIntent.MANUAL, explode)
        manual_guardrail(ApprovalPolicy.AUTO)

        with pytest.raises(RuntimeError, match="ledger offline"):
            request_manual()

        [movement] = services.lifecycle.list_movements(household.organization_id, intent=GuardrailIntent.MANUAL)
        assert movement.status == MovementStatus.FAILED.value
        assert movement.failure_reason == "ledger offline"
        assert "transfer_failed" in journal_kinds(household.organization_id, movement.id)

    def test_failed_movement_is_terminal(self, services, manual_guardrail, request_manual, household):
        def explode(movement, actor_id):
            raise RuntimeError("ledger offline")

        services.lifecycle.register_execution_hook(GuardrailIntent.MANUAL, explode)
        manual_guardrail(ApprovalPolicy.AUTO)
        with pytest.raises(RuntimeError):
            request_manual()
        [movement] = services.lifecycle.list_movements(household.organization_id, intent=GuardrailIntent.MANUAL)

        with pytest.raises(MovementAlreadyResolvedError):
            services.lifecycle.approve(movement.id, household.owner)


class TestRequestValidation:
    def test_fallback_policy_when_nothing_matches(self, request_manual):
        outcome = request_manual()

        assert outcome.status == MovementStatus.PENDING_APPROVAL.value
        assert outcome.summary.guardrail_id is None
        assert outcome.summary.approval_policy == ApprovalPolicy.PARENT_REQUIRED

    def test_zero_amount_rejected(self, services, manual_guardrail, request_manual, household):
        manual_guardrail(ApprovalPolicy.AUTO)

        with pytest.raises(InvalidAmountError):
            request_manual(cents=0)

        assert services.lifecycle.list_movements(household.organization_id) == []

    def test_initiator_role_restricted(self, manual_guardrail, request_manual, household):
        manual_guardrail(ApprovalPolicy.AUTO, allowed_roles_to_initiate=("owner", "admin"))

        with pytest.raises(RoleNotAllowedToInitiateError):
            request_manual(household.student)

        assert request_manual(household.admin).status == MovementStatus.EXECUTED.value


def test_movements_are_never_deleted(session, manual_guardrail, request_manual):
    manual_guardrail(ApprovalPolicy.AUTO)
    movement = request_manual().movement

    session.delete(session.get(MoneyMovementModel, movement.id))
    with pytest.raises(ImmutabilityViolationError):
        session.flush()
