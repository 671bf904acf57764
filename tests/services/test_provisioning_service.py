"""
Tests for GuardrailProvisioner.

Covers:
- Goal guardrails: one deposit (auto) and one withdrawal (parent_required)
- Every ensure_* helper is idempotent
- Each insert emits exactly one guardrail_updated entry
- Budget guardrails: auto up to a positive limit, otherwise parent_required
"""

from guardrail_kernel.domain.guardrail import (
    ApprovalPolicy,
    GuardrailDirection,
    GuardrailIntent,
)
from guardrail_kernel.models.journal import JournalEventKind


def _guardrail_updates(services, organization_id) -> int:
    return len(
        services.journal.entries_for(organization_id, event_kind=JournalEventKind.GUARDRAIL_UPDATED)
    )


class TestGoalGuardrails:
    def test_creates_deposit_and_withdrawal(self, services, household):
        deposit, withdrawal = services.provisioner.ensure_goal_guardrails(
            household.organization_id,
            household.goal_node.id,
            actor_id=household.owner.actor_id,
        )

        assert deposit.created and withdrawal.created
        assert deposit.guardrail.approval_policy == ApprovalPolicy.AUTO.value
        assert deposit.guardrail.auto_approve_up_to_cents is None
        assert deposit.guardrail.direction == GuardrailDirection(destination_node_id=household.goal_node.id)
        assert withdrawal.guardrail.approval_policy == ApprovalPolicy.PARENT_REQUIRED.value
        assert withdrawal.guardrail.direction == GuardrailDirection(source_node_id=household.goal_node.id)

    def test_second_call_returns_existing(self, services, household):
        first = services.provisioner.ensure_goal_guardrails(
            household.organization_id, household.goal_node.id, actor_id=household.owner.actor_id
        )
        second = services.provisioner.ensure_goal_guardrails(
            household.organization_id, household.goal_node.id, actor_id=household.admin.actor_id
        )

        assert [r.created for r in second] == [False, False]
        assert [r.guardrail.id for r in second] == [r.guardrail.id for r in first]
        assert len(services.store.list_for_intent(household.organization_id, GuardrailIntent.SAVE)) == 2
        assert _guardrail_updates(services, household.organization_id) == 2


class TestBudgetGuardrail:
    def test_positive_limit_is_auto(self, services, household):
        result = services.provisioner.ensure_budget_guardrail(
            household.organization_id,
            household.category_node.id,
            actor_id=household.owner.actor_id,
            limit_cents=12_000,
        )
        assert result.guardrail.intent == GuardrailIntent.SPEND.value
        assert result.guardrail.approval_policy == ApprovalPolicy.AUTO.value
        assert result.guardrail.auto_approve_up_to_cents == 12_000

    def test_zero_limit_needs_parent(self, services, household):
        result = services.provisioner.ensure_budget_guardrail(
            household.organization_id,
            household.category_node.id,
            actor_id=household.owner.actor_id,
            limit_cents=0,
        )
        assert result.guardrail.approval_policy == ApprovalPolicy.PARENT_REQUIRED.value
        assert result.guardrail.auto_approve_up_to_cents is None


def test_account_guardrail_is_idempotent(services, household):
    for _ in range(3):
        services.provisioner.ensure_account_guardrail(
            household.organization_id,
            household.brokerage.id,
            GuardrailIntent.INVEST,
            actor_id=household.owner.actor_id,
            approval_policy=ApprovalPolicy.PARENT_REQUIRED,
            allowed_roles=("owner", "admin", "member"),
        )

    [guardrail] = services.store.list_for_intent(household.organization_id, GuardrailIntent.INVEST)
    assert guardrail.scope.account_id == household.brokerage.id
    assert guardrail.allowed_roles_to_initiate == ("owner", "admin", "member")
    assert _guardrail_updates(services, household.organization_id) == 1
