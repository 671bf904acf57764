"""
Tests for ProviderQueue, ProviderRegistry and the virtual market.

Covers:
- A stopped queue rejects work without running it
- A full backlog rejects work
- Telemetry counts queued / succeeded / failed / rejected
- Task errors propagate to the caller
- Calls that outlive the timeout raise ProviderTimeoutError
- Registry lifecycle and duplicate registration
- Virtual market quotes and fills
"""

import threading
from decimal import Decimal

import pytest

from guardrail_config.schema import ProviderQueueSettings, QuoteDef
from guardrail_kernel.domain.movement import OrderSide
from guardrail_kernel.exceptions import (
    ExecutionError,
    ProviderQueueRejectedError,
    ProviderTimeoutError,
    QuoteUnavailableError,
)
from guardrail_services.market import QuoteProvider, VirtualMarketProvider
from guardrail_services.provider_queue import ProviderQueue, ProviderRegistry


@pytest.fixture
def queue():
    q = ProviderQueue("test", ProviderQueueSettings(max_concurrency=1, max_queue_size=1, call_timeout_seconds=5))
    q.start()
    yield q
    q.stop()


class TestProviderQueue:
    def test_stopped_queue_rejects(self):
        ran = []
        q = ProviderQueue("idle", ProviderQueueSettings())

        with pytest.raises(ProviderQueueRejectedError) as exc_info:
            q.submit(ran.append, 1)

        assert ran == []
        assert exc_info.value.code == "PROVIDER_QUEUE_REJECTED"
        assert isinstance(exc_info.value, ExecutionError)
        assert q.telemetry().rejected == 1

    def test_full_backlog_rejects(self, queue):
        release = threading.Event()
        blocked = queue.submit(release.wait, 5)

        with pytest.raises(ProviderQueueRejectedError):
            queue.submit(lambda: "never")

        release.set()
        assert blocked.result(timeout=5) is True
        telemetry = queue.telemetry()
        assert telemetry.queued == 1
        assert telemetry.rejected == 1
        assert telemetry.succeeded == 1
        assert telemetry.in_flight == 0

    def test_call_returns_result(self, queue):
        assert queue.call(sum, [1, 2, 3]) == 6

    def test_task_errors_propagate(self, queue):
        def explode():
            raise QuoteUnavailableError("XYZ")

        with pytest.raises(QuoteUnavailableError):
            queue.call(explode)

        assert queue.telemetry().failed == 1

    def test_slow_task_times_out(self):
        release = threading.Event()
        q = ProviderQueue("slow", ProviderQueueSettings(call_timeout_seconds=0.05))
        q.start()
        try:
            with pytest.raises(ProviderTimeoutError) as exc_info:
                q.call(release.wait, 5)
        finally:
            release.set()
            q.stop()

        assert isinstance(exc_info.value, ExecutionError)
        assert exc_info.value.code == "PROVIDER_TIMEOUT"
        assert exc_info.value.provider_id == "slow"
        assert exc_info.value.timeout_seconds == 0.05

    def test_start_is_idempotent(self, queue):
        queue.start()
        assert queue.is_running


class TestProviderRegistry:
    def test_context_manager_starts_and_stops(self):
        registry = ProviderRegistry(ProviderQueueSettings())
        registry.register(VirtualMarketProvider())

        with registry:
            assert registry.queue_for("virtual").is_running
        assert not registry.queue_for("virtual").is_running

    def test_duplicate_registration(self):
        registry = ProviderRegistry(ProviderQueueSettings())
        registry.register(VirtualMarketProvider())
        with pytest.raises(ValueError):
            registry.register(VirtualMarketProvider())

    def test_unknown_provider(self):
        registry = ProviderRegistry(ProviderQueueSettings())
        with pytest.raises(KeyError):
            registry.get("broker")
        with pytest.raises(KeyError):
            registry.queue_for("broker")


class TestVirtualMarket:
    def test_configured_quotes(self, market, deterministic_clock):
        quote = market.get_quote("voo")

        assert quote.symbol == "VOO"
        assert quote.price_cents == 45_000
        assert quote.instrument_kind == "etf"
        assert quote.as_of == deterministic_clock.now()
        assert isinstance(market, QuoteProvider)

    def test_set_price_keeps_kind(self, market):
        market.set_price("SGOV", 10_100)

        quote = market.get_quote("SGOV")
        assert quote.price_cents == 10_100
        assert quote.instrument_kind == "cash"

    def test_fill_and_missing_symbol(self):
        provider = VirtualMarketProvider((QuoteDef("ABC", 1_234, "equity"),))

        fill = provider.execute_order("abc", OrderSide.SELL, Decimal("2"))
        assert fill.price_cents == 1_234
        assert fill.side == OrderSide.SELL

        provider.remove("ABC")
        assert provider.get_quote("ABC") is None
        with pytest.raises(QuoteUnavailableError):
            provider.execute_order("ABC", OrderSide.BUY, Decimal("1"))
