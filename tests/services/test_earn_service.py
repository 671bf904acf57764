"""
Tests for EarnService.

Covers:
- Stream creation and updates are journaled; pausing clears the schedule
- Fallback policy follows requires_approval when no guardrail matches
- The payout sweep executes due streams and advances their schedule
- Streams with a payout awaiting approval are skipped by the sweep
- Declined payouts and explicit skips advance the schedule (income_skipped)
- One failing stream does not stop the sweep; an execution failure stays
  recorded as a failed payout
- Projections and the monthly income estimate
"""

from datetime import timedelta

import pytest

from guardrail_kernel.domain.guardrail import GuardrailIntent, ReasonCode
from guardrail_kernel.domain.movement import MovementStatus
from guardrail_kernel.domain.values import Money
from guardrail_kernel.exceptions import (
    ExecutionError,
    IncomeStreamNotFoundError,
    InsufficientRoleError,
    InvalidAmountError,
)
from guardrail_kernel.models.journal import JournalEventKind


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def create_stream(services, household, *, name="Allowance", cents=1_000, cadence="weekly", **kwargs):
    return services.earn.create_income_stream(
        household.owner,
        household.organization_id,
        owner_id=household.member.actor_id,
        name=name,
        cadence=cadence,
        amount=Money(cents),
        destination_account_id=household.savings.id,
        source_account_id=household.checking.id,
        **kwargs,
    )


def due_stream(services, household, clock, **kwargs):
    kwargs.setdefault("requires_approval", False)
    return create_stream(
        services,
        household,
        auto_schedule=True,
        first_payout_at=clock.now() - timedelta(days=1),
        **kwargs,
    )


def kinds_for(services, household, event_kind):
    return services.journal.entries_for(household.organization_id, event_kind=event_kind)


# =========================================================================
# Streams
# =========================================================================


class TestStreams:
    def test_create_defaults_first_payout_one_interval_out(self, services, household, deterministic_clock, journal_kinds):
        stream = create_stream(services, household)

        assert stream.status == "active"
        assert stream.next_scheduled_at == deterministic_clock.now() + timedelta(days=7)
        assert journal_kinds(household.organization_id, stream.id) == ["income_stream_updated"]

    def test_member_cannot_create(self, services, household):
        with pytest.raises(InsufficientRoleError):
            services.earn.create_income_stream(
                household.member,
                household.organization_id,
                owner_id=household.member.actor_id,
                name="Chores",
                cadence="weekly",
                amount=Money(500),
                destination_account_id=household.savings.id,
            )

    def test_amount_must_be_positive(self, services, household):
        with pytest.raises(InvalidAmountError):
            create_stream(services, household, cents=0)

    def test_pause_clears_and_resume_recomputes(self, services, household, deterministic_clock):
        stream = create_stream(services, household, cadence="monthly")

        services.earn.update_income_stream(household.owner, stream.id, status="paused")
        assert stream.next_scheduled_at is None

        services.earn.update_income_stream(household.admin, stream.id, status="active")
        assert stream.next_scheduled_at == deterministic_clock.now() + timedelta(days=31)

    def test_unknown_status_rejected(self, services, household):
        stream = create_stream(services, household)
        with pytest.raises(ValueError):
            services.earn.update_income_stream(household.owner, stream.id, status="retired")

    def test_unknown_stream(self, services, household):
        from uuid import uuid4

        with pytest.raises(IncomeStreamNotFoundError):
            services.earn.request_income_payout(household.owner, uuid4())


# =========================================================================
# Manual payouts
# =========================================================================


class TestRequestPayout:
    def test_stream_owner_may_request(self, services, household):
        stream = create_stream(services, household)

        outcome = services.earn.request_income_payout(household.member, stream.id)

        assert outcome.status == MovementStatus.PENDING_APPROVAL.value
        assert outcome.reason == ReasonCode.PARENT_REQUIRED
        assert outcome.movement.details["income_stream_id"] == str(stream.id)

    def test_other_member_needs_planner_role(self, services, household):
        stream = create_stream(services, household)

        with pytest.raises(InsufficientRoleError):
            services.earn.request_income_payout(household.student, stream.id)

    def test_no_approval_needed_executes(self, services, household):
        stream = create_stream(services, household, requires_approval=False)

        outcome = services.earn.request_income_payout(household.owner, stream.id)

        assert outcome.status == MovementStatus.EXECUTED.value
        assert stream.last_paid_at is not None
        assert len(kinds_for(services, household, JournalEventKind.INCOME_COMPLETED)) == 1


# =========================================================================
# Sweep
# =========================================================================


class TestPayoutSweep:
    def test_executes_due_stream_and_advances(self, services, household, deterministic_clock):
        stream = due_stream(services, household, deterministic_clock)

        result = services.earn.process_due_payouts(household.organization_id)

        assert (result.processed, result.executed, result.pending, result.failed) == (1, 1, 0, 0)
        assert stream.next_scheduled_at == deterministic_clock.now() + timedelta(days=6)
        [completed] = kinds_for(services, household, JournalEventKind.INCOME_COMPLETED)
        assert completed.primary_entity_id == str(stream.id)

    def test_stream_not_due_is_ignored(self, services, household):
        create_stream(services, household, auto_schedule=True)

        result = services.earn.process_due_payouts(household.organization_id)

        assert result.processed == 0
        assert result.movement_ids == []

    def test_pending_payout_is_not_requested_twice(self, services, household, deterministic_clock):
        due_stream(services, household, deterministic_clock, requires_approval=True)

        first = services.earn.process_due_payouts(household.organization_id)
        second = services.earn.process_due_payouts(household.organization_id)

        assert first.pending == 1
        assert second.processed == 0
        assert second.skipped == 1
        assert len(services.lifecycle.list_movements(household.organization_id, intent=GuardrailIntent.EARN)) == 1

    def test_decline_advances_schedule(self, services, household, deterministic_clock):
        stream = due_stream(services, household, deterministic_clock, requires_approval=True)
        [movement_id] = services.earn.process_due_payouts(household.organization_id).movement_ids

        services.transfers.decline_transfer(household.guardian, movement_id, "not earned")

        assert stream.next_scheduled_at > deterministic_clock.now()
        [skipped] = kinds_for(services, household, JournalEventKind.INCOME_SKIPPED)
        assert skipped.payload["reason"] == "declined"
        assert services.earn.process_due_payouts(household.organization_id).processed == 0

    def test_failed_stream_does_not_stop_sweep(
        self, services, household, deterministic_clock, captured_logs, journal_kinds
    ):
        def fail_for_broken(movement, actor_id):
            if movement.details.get("stream_name") == "Broken":
                raise ExecutionError("payroll offline")

        services.lifecycle.register_execution_hook(GuardrailIntent.EARN, fail_for_broken)
        broken = due_stream(services, household, deterministic_clock, name="Broken")
        healthy = due_stream(services, household, deterministic_clock, name="Healthy")

        result = services.earn.process_due_payouts(household.organization_id)

        assert result.processed == 2
        assert result.failed == 1
        assert result.executed == 1
        assert healthy.last_paid_at is not None
        assert broken.last_paid_at is None
        [failed] = services.lifecycle.list_movements(
            household.organization_id,
            intent=GuardrailIntent.EARN,
            statuses=(MovementStatus.FAILED,),
        )
        assert failed.details["income_stream_id"] == str(broken.id)
        assert failed.failure_reason == "payroll offline"
        assert "transfer_failed" in journal_kinds(household.organization_id, failed.id)
        failures = [r for r in captured_logs() if r["message"] == "payout_sweep_stream_failed"]
        assert len(failures) == 1
        assert failures[0]["error_type"] == "ExecutionError"
        assert failures[0]["failure_recorded"] is True

    def test_unexpected_error_rolls_back_stream(self, services, household, deterministic_clock, captured_logs):
        def crash(movement, actor_id):
            raise RuntimeError("bug in hook")

        services.lifecycle.register_execution_hook(GuardrailIntent.EARN, crash)
        due_stream(services, household, deterministic_clock)

        result = services.earn.process_due_payouts(household.organization_id)

        assert result.failed == 1
        assert services.lifecycle.list_movements(household.organization_id, intent=GuardrailIntent.EARN) == []
        [failure] = [r for r in captured_logs() if r["message"] == "payout_sweep_stream_failed"]
        assert failure["error_type"] == "RuntimeError"
        assert failure["failure_recorded"] is False

    def test_other_organization_untouched(self, services, household, other_household, deterministic_clock):
        due_stream(services, household, deterministic_clock)

        result = services.earn.process_due_payouts(other_household.organization_id)

        assert result.processed == 0


def test_skip_advances_schedule(services, household, deterministic_clock):
    stream = due_stream(services, household, deterministic_clock)

    services.earn.skip_income_payout(household.member, stream.id, reason="on vacation")

    assert stream.next_scheduled_at == deterministic_clock.now() + timedelta(days=6)
    [skipped] = kinds_for(services, household, JournalEventKind.INCOME_SKIPPED)
    assert skipped.payload["reason"] == "on vacation"
    assert services.earn.process_due_payouts(household.organization_id).processed == 0


class TestProjections:
    def test_sorted_and_limited(self, services, household, deterministic_clock):
        now = deterministic_clock.now()
        create_stream(services, household, name="Allowance", cadence="weekly", first_payout_at=now + timedelta(days=2))
        create_stream(services, household, name="Tutoring", cadence="monthly", first_payout_at=now + timedelta(days=5))

        projections = services.earn.list_income_projections(household.member, household.organization_id, limit=3)

        assert [p.scheduled_at for p in projections] == [
            now + timedelta(days=2),
            now + timedelta(days=5),
            now + timedelta(days=9),
        ]
        assert [p.stream_name for p in projections] == ["Allowance", "Tutoring", "Allowance"]

    def test_overdue_stream_projects_from_next_occurrence(self, services, household, deterministic_clock):
        now = deterministic_clock.now()
        create_stream(services, household, cadence="daily", first_payout_at=now - timedelta(hours=36))

        [first] = services.earn.list_income_projections(household.member, household.organization_id, limit=1)

        assert first.scheduled_at == now + timedelta(hours=12)

    def test_monthly_income(self, services, household):
        create_stream(services, household, name="Allowance", cents=1_000, cadence="weekly")
        create_stream(services, household, name="Tutoring", cents=2_500, cadence="monthly")
        paused = create_stream(services, household, name="Summer job", cents=9_000, cadence="monthly")
        services.earn.update_income_stream(household.owner, paused.id, status="paused")

        assert services.earn.monthly_income_cents(household.member, household.organization_id) == 6_500
