"""
Tests for BudgetService.

Covers:
- period_range parses YYYY-MM and rejects anything else
- Creating a budget provisions the node's spend guardrail (auto up to plan)
- Creating twice for the same node/period replans instead of duplicating
- Actuals count debits in the period; credits never reduce spend
- Over-limit alert is journaled once per budget
- update_budget_guardrail toggles auto-with-limit / parent_required
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from guardrail_kernel.domain.guardrail import ApprovalPolicy, GuardrailIntent
from guardrail_kernel.domain.values import Money
from guardrail_kernel.exceptions import (
    BudgetNotFoundError,
    InsufficientRoleError,
    InvalidAmountError,
    InvalidPeriodKeyError,
)
from guardrail_kernel.models.journal import JournalEventKind
from guardrail_kernel.models.money_map import AccountTransactionModel
from guardrail_services.budgets import period_range


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def create_grocery_budget(services, household, planned_cents=40_000, period_key="2024-01"):
    return services.budgets.create_budget(
        household.owner,
        household.organization_id,
        node_id=household.category_node.id,
        period_key=period_key,
        planned=Money(planned_cents),
    )


@pytest.fixture
def post(session, household):
    """Post a transaction on the groceries node."""

    def _post(cents, occurred_at, direction="debit"):
        transaction = AccountTransactionModel(
            organization_id=household.organization_id,
            account_id=household.credit.id,
            money_map_node_id=household.category_node.id,
            direction=direction,
            amount_cents=cents,
            currency="USD",
            description="Market",
            occurred_at=occurred_at,
        )
        session.add(transaction)
        session.flush()
        return transaction

    return _post


class TestPeriodRange:
    def test_month(self):
        assert period_range("2024-02") == (utc(2024, 2, 1), utc(2024, 3, 1))

    def test_december_rolls_year(self):
        assert period_range("2024-12") == (utc(2024, 12, 1), utc(2025, 1, 1))

    @pytest.mark.parametrize("key", ["2024-13", "2024-00", "2024-1", "24-01", "", "january"])
    def test_rejects_malformed(self, key):
        with pytest.raises(InvalidPeriodKeyError):
            period_range(key)


class TestCreateBudget:
    def test_provisions_auto_guardrail_up_to_plan(self, services, household, journal_kinds):
        result = create_grocery_budget(services, household)

        assert result.budget.planned_cents == 40_000
        assert result.guardrail.approval_policy == ApprovalPolicy.AUTO
        assert result.guardrail.auto_approve_up_to_cents == 40_000
        assert result.actuals.spent_cents == 0
        assert journal_kinds(household.organization_id, result.budget.id) == ["budget_created"]

    def test_zero_plan_needs_parent(self, services, household):
        result = create_grocery_budget(services, household, planned_cents=0)

        assert result.guardrail.approval_policy == ApprovalPolicy.PARENT_REQUIRED
        assert result.actuals.percentage_used == Decimal("0")

    def test_same_period_replans(self, services, household):
        first = create_grocery_budget(services, household, planned_cents=40_000)
        second = create_grocery_budget(services, household, planned_cents=55_000)

        assert second.budget.id == first.budget.id
        assert second.budget.planned_cents == 55_000
        assert len(services.budgets.list_budgets(household.owner, household.organization_id, "2024-01")) == 1
        assert len(services.store.list_for_intent(household.organization_id, GuardrailIntent.SPEND)) == 1

    def test_other_period_is_separate(self, services, household):
        create_grocery_budget(services, household, period_key="2024-01")
        create_grocery_budget(services, household, period_key="2024-02")

        assert len(services.budgets.list_budgets(household.owner, household.organization_id, "2024-02")) == 1

    def test_validation(self, services, household):
        with pytest.raises(InvalidPeriodKeyError):
            create_grocery_budget(services, household, period_key="2024/01")
        with pytest.raises(InvalidAmountError):
            create_grocery_budget(services, household, planned_cents=-1)
        with pytest.raises(InsufficientRoleError):
            services.budgets.create_budget(
                household.guardian,
                household.organization_id,
                node_id=household.category_node.id,
                period_key="2024-01",
                planned=Money(1_000),
            )


class TestActuals:
    def test_counts_debits_within_period(self, services, household, post):
        budget_id = create_grocery_budget(services, household).budget.id
        post(12_000, utc(2024, 1, 5))
        post(8_000, utc(2024, 1, 20))
        post(3_000, utc(2024, 1, 21), direction="credit")
        post(50_000, utc(2024, 2, 1))

        actuals = services.budgets.get_budget(household.member, budget_id).actuals

        assert actuals.spent_cents == 20_000
        assert actuals.remaining_cents == 20_000
        assert actuals.transactions_count == 3
        assert actuals.percentage_used == Decimal("0.5000")
        assert actuals.last_transaction_at == utc(2024, 1, 21)
        assert not actuals.overspent

    def test_over_limit_alert_once(self, services, household, post):
        budget_id = create_grocery_budget(services, household, planned_cents=10_000).budget.id
        post(12_500, utc(2024, 1, 9))

        first = services.budgets.get_budget(household.owner, budget_id)
        services.budgets.get_budget(household.owner, budget_id)

        assert first.actuals.overspent
        assert first.actuals.remaining_cents == 0
        assert first.budget.over_limit_alerted_at is not None
        alerts = services.journal.entries_for(
            household.organization_id, event_kind=JournalEventKind.BUDGET_OVER_LIMIT
        )
        assert len(alerts) == 1
        assert alerts[0].payload["spent_cents"] == 12_500


class TestBudgetGuardrail:
    def test_toggle_limit(self, services, household):
        budget_id = create_grocery_budget(services, household).budget.id

        summary = services.budgets.update_budget_guardrail(household.admin, budget_id, auto_approve_up_to_cents=0)
        assert summary.approval_policy == ApprovalPolicy.PARENT_REQUIRED
        assert summary.auto_approve_up_to_cents is None

        summary = services.budgets.update_budget_guardrail(household.admin, budget_id, auto_approve_up_to_cents=7_500)
        assert summary.approval_policy == ApprovalPolicy.AUTO
        assert summary.auto_approve_up_to_cents == 7_500

    def test_unknown_budget(self, services, household):
        from uuid import uuid4

        with pytest.raises(BudgetNotFoundError):
            services.budgets.update_budget_guardrail(household.owner, uuid4(), auto_approve_up_to_cents=1)
