"""
Tests for SpendService.

Covers:
- Spend transfers resolve against the destination account
- Executed spends post a credit transaction (memo or "Credit payoff")
- Pending spends post nothing until approved
- Only spenders may initiate
"""

import pytest
from sqlalchemy import select

from guardrail_kernel.domain.guardrail import ApprovalPolicy, GuardrailIntent, GuardrailScope, ReasonCode
from guardrail_kernel.domain.movement import MovementStatus
from guardrail_kernel.domain.values import Money
from guardrail_kernel.exceptions import ForeignScopeError, InsufficientRoleError
from guardrail_kernel.models.money_map import AccountTransactionModel


def _transactions(session, movement_id):
    return list(
        session.execute(
            select(AccountTransactionModel).where(AccountTransactionModel.movement_id == movement_id)
        ).scalars()
    )


def _pay_card(services, household, cents, actor=None, memo=None):
    return services.spend.initiate_spend_transfer(
        actor or household.owner,
        household.organization_id,
        Money(cents),
        source_account_id=household.checking.id,
        destination_account_id=household.credit.id,
        memo=memo,
    )


@pytest.fixture
def auto_card_guardrail(services, household):
    return services.store.insert(
        household.organization_id,
        GuardrailIntent.SPEND,
        GuardrailScope.account(household.credit.id),
        approval_policy=ApprovalPolicy.AUTO,
        created_by_id=household.owner.actor_id,
        auto_approve_up_to_cents=25_000,
    )


class TestExecutedSpend:
    def test_posts_credit_with_default_description(self, session, services, household, auto_card_guardrail):
        outcome = _pay_card(services, household, 10_000)

        assert outcome.status == MovementStatus.EXECUTED.value
        assert outcome.summary.guardrail_id == auto_card_guardrail.id
        [transaction] = _transactions(session, outcome.movement.id)
        assert transaction.direction == "credit"
        assert transaction.amount_cents == 10_000
        assert transaction.account_id == household.credit.id
        assert transaction.description == "Credit payoff"

    def test_memo_becomes_description(self, session, services, household, auto_card_guardrail):
        outcome = _pay_card(services, household, 10_000, memo="  March statement ")

        [transaction] = _transactions(session, outcome.movement.id)
        assert transaction.description == "March statement"


class TestPendingSpend:
    def test_above_limit_posts_nothing_until_approved(self, session, services, household, auto_card_guardrail):
        outcome = _pay_card(services, household, 30_000)
        assert outcome.status == MovementStatus.PENDING_APPROVAL.value
        assert outcome.reason == ReasonCode.ABOVE_AUTO_LIMIT
        assert _transactions(session, outcome.movement.id) == []

        services.transfers.approve_transfer(household.guardian, outcome.movement.id)

        assert len(_transactions(session, outcome.movement.id)) == 1

    def test_without_guardrail_falls_back_to_parent(self, services, household):
        outcome = _pay_card(services, household, 1_000)

        assert outcome.status == MovementStatus.PENDING_APPROVAL.value
        assert outcome.reason == ReasonCode.PARENT_REQUIRED

    def test_declined_spend_posts_nothing(self, session, services, household):
        outcome = _pay_card(services, household, 1_000)

        services.transfers.decline_transfer(household.guardian, outcome.movement.id, "too much")

        assert _transactions(session, outcome.movement.id) == []


class TestSpendAccess:
    @pytest.mark.parametrize("role", ["guardian", "member", "student"])
    def test_non_spenders_rejected(self, services, household, role):
        with pytest.raises(InsufficientRoleError):
            _pay_card(services, household, 1_000, actor=getattr(household, role))

    def test_foreign_destination_rejected(self, services, household, other_household):
        with pytest.raises(ForeignScopeError):
            services.spend.initiate_spend_transfer(
                household.owner,
                household.organization_id,
                Money(1_000),
                source_account_id=household.checking.id,
                destination_account_id=other_household.credit.id,
            )
