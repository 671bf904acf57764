"""
guardrail_services.container -- Central DI container for guardrail services.

Responsibility:
    Creates every kernel and domain service exactly once for one session
    and wires them together.  Domain services register their execution and
    decline hooks on the shared MovementLifecycle during construction, so
    every movement created through this container runs the right side
    effects no matter which entry point approves it.

Architecture position:
    Services -- the only place where services are constructed and composed.
    Translates GuardrailSettings into plain constructor arguments so the
    kernel never reads configuration.

Invariants enforced:
    - Single-instance lifecycle: one journal, store, lifecycle and
      orchestrator per container.
    - All services share the same Session and Clock instances.

Non-goals:
    - Does NOT manage transaction boundaries (caller's responsibility).
    - Does NOT start or stop the provider registry; its owner does.

Usage:
    with session_scope() as session:
        services = GuardrailServices(session, settings, registry, clock=clock)
        services.savings.initiate_goal_transfer(...)
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from guardrail_config.schema import GuardrailSettings
from guardrail_kernel.domain.clock import Clock, SystemClock
from guardrail_kernel.services.event_journal import EventJournal
from guardrail_kernel.services.guardrail_store import GuardrailStore
from guardrail_kernel.services.lifecycle import MovementLifecycle
from guardrail_kernel.services.provisioning import GuardrailProvisioner
from guardrail_services.accounts import AccountSyncService
from guardrail_services.budgets import BudgetService
from guardrail_services.donate import DonationService
from guardrail_services.earn import EarnService
from guardrail_services.guardrails_admin import GuardrailAdminService
from guardrail_services.investing import InvestingService
from guardrail_services.market import VirtualMarketProvider
from guardrail_services.movement_orchestrator import MovementOrchestrator
from guardrail_services.provider_queue import ProviderRegistry
from guardrail_services.savings import SavingsService
from guardrail_services.spend import SpendService
from guardrail_services.transfers import TransferService


class GuardrailServices:
    """Central factory for guardrail services.

    Contract:
        Receives a Session, the active GuardrailSettings and a
        ProviderRegistry.  ``market_provider_id`` selects which registered
        provider serves quotes and fills.
    """

    def __init__(
        self,
        session: Session,
        settings: GuardrailSettings,
        registry: ProviderRegistry,
        clock: Clock | None = None,
        market_provider_id: str = VirtualMarketProvider.provider_id,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self.settings = settings
        self.registry = registry

        # Foundational services
        self.journal = EventJournal(session, self._clock)
        self.store = GuardrailStore(session, self._clock)
        self.provisioner = GuardrailProvisioner(session, self.journal, self._clock, self.store)

        # Lifecycle (roles and epsilon come from configuration)
        self.lifecycle = MovementLifecycle(
            session,
            self.journal,
            self._clock,
            approver_roles=settings.roles.approvers,
            admin_roles=settings.roles.admin_approvers,
            position_epsilon=settings.investing.position_epsilon,
        )

        # Shared resolve -> evaluate -> create pipeline
        self.orchestrator = MovementOrchestrator(self.store, self.lifecycle, settings.fallbacks)

        # Domain services (each registers its hooks on the lifecycle)
        self.savings = SavingsService(
            session, self.orchestrator, self.lifecycle, self.provisioner,
            self.journal, self._clock, settings,
        )
        self.spend = SpendService(session, self.orchestrator, self.lifecycle, self._clock, settings)
        self.donate = DonationService(
            session, self.orchestrator, self.lifecycle, self.store, self.provisioner,
            self.journal, self._clock, settings,
        )
        self.earn = EarnService(
            session, self.orchestrator, self.lifecycle, self.journal, self._clock, settings,
        )
        self.investing = InvestingService(
            session,
            self.orchestrator,
            self.lifecycle,
            registry.get(market_provider_id),
            registry.queue_for(market_provider_id),
        )
        self.budgets = BudgetService(
            session, self.orchestrator, self.store, self.provisioner,
            self.journal, self._clock, settings,
        )
        self.accounts = AccountSyncService(session, self.provisioner, self.journal, self._clock, settings)
        self.guardrails = GuardrailAdminService(session, self.store, self.journal, settings)
        self.transfers = TransferService(self.lifecycle)

    @property
    def clock(self) -> Clock:
        return self._clock


def build_provider_registry(settings: GuardrailSettings, clock: Clock | None = None) -> ProviderRegistry:
    """Registry with the configured virtual market registered (not started)."""
    registry = ProviderRegistry(settings.provider_queue)
    registry.register(VirtualMarketProvider(settings.investing.quotes, clock))
    return registry
