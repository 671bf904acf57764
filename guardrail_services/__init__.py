"""
guardrail_services -- Package init and public API.

Responsibility:
    Per-domain entry points (savings, spend, donate, earn, investing,
    budgets, accounts, guardrail admin, transfer approvals) composed over
    the pure guardrail_engines and the guardrail_kernel services.  This is
    the only layer that reads configuration, talks to market providers, or
    runs background sweeps.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

        guardrail_services/ -> guardrail_engines/  (allowed)
        guardrail_services/ -> guardrail_kernel/   (allowed)
        guardrail_services/ -> guardrail_config/   (allowed)
        guardrail_kernel/   -> guardrail_services/ (FORBIDDEN)
        guardrail_engines/  -> guardrail_services/ (FORBIDDEN)

Invariants enforced:
    - DI transparency: all service wiring is centralised in
      GuardrailServices; no service self-constructs its dependencies.
"""

from guardrail_services.container import GuardrailServices, build_provider_registry
from guardrail_services.earn import PayoutSweepResult
from guardrail_services.market import Fill, Quote, QuoteProvider, VirtualMarketProvider
from guardrail_services.movement_orchestrator import MovementOrchestrator, MovementOutcome
from guardrail_services.payout_scheduler import PayoutScheduler
from guardrail_services.provider_queue import ProviderQueue, ProviderRegistry, QueueTelemetry

__all__ = [
    "Fill",
    "GuardrailServices",
    "MovementOrchestrator",
    "MovementOutcome",
    "PayoutScheduler",
    "PayoutSweepResult",
    "ProviderQueue",
    "ProviderRegistry",
    "QueueTelemetry",
    "Quote",
    "QuoteProvider",
    "VirtualMarketProvider",
    "build_provider_registry",
]
