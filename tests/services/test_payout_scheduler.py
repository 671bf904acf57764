"""
Tests for PayoutScheduler.

Covers:
- tick() runs one sweep in its own session and commits it
- A failing sweep is rolled back, logged, and reported as None
- start()/stop() run and stop the background loop
"""

import threading
from datetime import timedelta
from unittest.mock import MagicMock

from guardrail_kernel.domain.values import Money
from guardrail_kernel.models.planning import IncomeStreamModel
from guardrail_services.container import GuardrailServices
from guardrail_services.earn import PayoutSweepResult
from guardrail_services.payout_scheduler import PayoutScheduler


def test_tick_processes_due_streams(session, session_factory, services, household, settings,
                                    provider_registry, deterministic_clock):
    stream = services.earn.create_income_stream(
        household.owner,
        household.organization_id,
        owner_id=household.member.actor_id,
        name="Allowance",
        cadence="weekly",
        amount=Money(1_000),
        destination_account_id=household.savings.id,
        requires_approval=False,
        auto_schedule=True,
        first_payout_at=deterministic_clock.now() - timedelta(hours=1),
    )
    session.flush()

    scheduler = PayoutScheduler(
        session_factory,
        lambda s: GuardrailServices(s, settings, provider_registry, clock=deterministic_clock).earn,
        organization_id=household.organization_id,
    )
    result = scheduler.tick()

    assert result.processed == 1
    assert result.executed == 1
    session.expire_all()
    refreshed = session.get(IncomeStreamModel, stream.id)
    assert refreshed.last_paid_at is not None
    assert refreshed.next_scheduled_at > deterministic_clock.now()


def test_failed_tick_rolls_back(captured_logs):
    session = MagicMock()

    def broken_factory(_session):
        raise RuntimeError("config unavailable")

    result = PayoutScheduler(lambda: session, broken_factory).tick()

    assert result is None
    session.rollback.assert_called_once()
    session.commit.assert_not_called()
    session.close.assert_called_once()
    assert any(r["message"] == "payout_tick_failed" for r in captured_logs())


def test_start_and_stop():
    ticked = threading.Event()
    earn = MagicMock()

    def sweep(_organization_id):
        ticked.set()
        return PayoutSweepResult()

    earn.process_due_payouts.side_effect = sweep
    scheduler = PayoutScheduler(MagicMock, lambda _s: earn, tick_interval_seconds=3600)

    scheduler.start()
    assert ticked.wait(timeout=5)
    assert scheduler.is_running

    scheduler.stop(timeout=5)
    assert not scheduler.is_running
    earn.process_due_payouts.assert_called_with(None)
