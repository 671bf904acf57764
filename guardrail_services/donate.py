"""
guardrail_services.donate -- donations to configured causes.

Responsibility:
    Schedule donations through the shared movement pipeline, manage the
    account-scoped donate guardrail, and report donation history, upcoming
    scheduled donations and a year-to-date summary.

Scope derivation:
    Destination (donation) account plus the node that owns it.

Metadata:
    Every donation movement carries ``cause_id``, ``cause_name``, ``memo``
    and ``scheduled_for`` (ISO-8601, or None).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from guardrail_config.schema import GuardrailSettings
from guardrail_kernel.domain.actor import ActorSession
from guardrail_kernel.domain.clock import Clock
from guardrail_kernel.domain.guardrail import (
    ApprovalPolicy,
    GuardrailIntent,
    GuardrailScope,
    GuardrailSummary,
)
from guardrail_kernel.domain.movement import MovementStatus, TERMINAL_MOVEMENT_STATUSES
from guardrail_kernel.domain.values import Money
from guardrail_kernel.exceptions import InvalidAmountError, UnknownCauseError
from guardrail_kernel.logging_config import get_logger
from guardrail_kernel.models.journal import JournalEventKind
from guardrail_kernel.models.movement import MoneyMovementModel
from guardrail_kernel.services.event_journal import EventJournal
from guardrail_kernel.services.guardrail_store import GuardrailStore
from guardrail_kernel.services.lifecycle import MovementLifecycle
from guardrail_kernel.services.provisioning import GuardrailDefaults, GuardrailProvisioner
from guardrail_services._records import account_scopes, load_account
from guardrail_services.authorization import ensure_member_with_role, ensure_organization_access
from guardrail_services.movement_orchestrator import MovementOrchestrator, MovementOutcome

logger = get_logger("services.donate")


@dataclass(frozen=True)
class DonationEntry:
    movement_id: UUID
    cause_id: str
    cause_name: str
    amount: Money
    status: str
    requested_at: datetime
    executed_at: datetime | None
    scheduled_for: datetime | None
    memo: str | None


@dataclass(frozen=True)
class DonationSummary:
    currency: str
    year_to_date_cents: int
    monthly_average_cents: int
    total_donations: int
    last_donation_at: datetime | None


def _parse_moment(value: object) -> datetime | None:
    if not isinstance(value, str):
        return None
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


class DonationService:
    def __init__(
        self,
        session: Session,
        orchestrator: MovementOrchestrator,
        lifecycle: MovementLifecycle,
        store: GuardrailStore,
        provisioner: GuardrailProvisioner,
        journal: EventJournal,
        clock: Clock,
        settings: GuardrailSettings,
    ):
        self._session = session
        self._orchestrator = orchestrator
        self._lifecycle = lifecycle
        self._store = store
        self._provisioner = provisioner
        self._journal = journal
        self._clock = clock
        self._settings = settings
        lifecycle.register_execution_hook(GuardrailIntent.DONATE, self._on_donation_executed)

    def schedule_donation(
        self,
        actor: ActorSession,
        organization_id: UUID,
        cause_id: str,
        amount: Money,
        *,
        source_account_id: UUID,
        destination_account_id: UUID,
        scheduled_for: datetime | None = None,
        memo: str | None = None,
    ) -> MovementOutcome:
        """
        Request a donation to a configured cause.

        Raises:
            UnknownCauseError: cause_id is not in the catalog.
            AccountNotFoundError / ForeignScopeError.
        """
        ensure_organization_access(actor, organization_id)
        cause = self._settings.cause(cause_id)
        if cause is None:
            raise UnknownCauseError(cause_id)
        load_account(self._session, organization_id, source_account_id)
        destination = load_account(self._session, organization_id, destination_account_id)

        return self._orchestrator.request_transfer(
            actor,
            GuardrailIntent.DONATE,
            account_scopes(destination),
            amount,
            source_account_id=source_account_id,
            destination_account_id=destination_account_id,
            metadata={
                "cause_id": cause.id,
                "cause_name": cause.name,
                "memo": memo,
                "scheduled_for": scheduled_for.isoformat() if scheduled_for else None,
            },
        )

    def update_donation_guardrail(
        self,
        actor: ActorSession,
        organization_id: UUID,
        account_id: UUID,
        *,
        approval_policy: ApprovalPolicy,
        auto_approve_up_to_cents: int | None = None,
    ) -> GuardrailSummary:
        """Create or patch the account-scoped donate guardrail."""
        ensure_member_with_role(
            actor, organization_id, self._settings.roles.guardrail_editors, "update donation guardrail"
        )
        if auto_approve_up_to_cents is not None and auto_approve_up_to_cents < 0:
            raise InvalidAmountError(auto_approve_up_to_cents, "Auto-approve limit cannot be negative")
        account = load_account(self._session, organization_id, account_id)

        result = self._provisioner.ensure_guardrail(
            organization_id,
            GuardrailIntent.DONATE,
            GuardrailScope.account(account.id),
            GuardrailDefaults(
                approval_policy=approval_policy,
                auto_approve_up_to_cents=auto_approve_up_to_cents,
                allowed_roles_to_initiate=self._settings.provisioning.allowed_roles_to_initiate,
            ),
            actor_id=actor.actor_id,
        )
        if not result.created:
            model = self._store.patch(
                result.guardrail.id,
                actor_id=actor.actor_id,
                approval_policy=approval_policy,
                auto_approve_up_to_cents=auto_approve_up_to_cents,
            )
            self._journal.record(
                organization_id,
                JournalEventKind.GUARDRAIL_UPDATED,
                model.__tablename__,
                model.id,
                actor_id=actor.actor_id,
                payload={
                    "action": "updated",
                    "intent": GuardrailIntent.DONATE.value,
                    "approval_policy": approval_policy.value,
                    "auto_approve_up_to_cents": auto_approve_up_to_cents,
                },
            )

        return self._orchestrator.resolve(
            organization_id, GuardrailIntent.DONATE, account_scopes(account)
        ).summary

    def donation_history(self, actor: ActorSession, organization_id: UUID, limit: int = 20) -> list[DonationEntry]:
        """Most recent donations first."""
        ensure_organization_access(actor, organization_id)
        movements = self._lifecycle.list_movements(organization_id, intent=GuardrailIntent.DONATE)
        movements.sort(key=lambda m: m.requested_at, reverse=True)
        return [self._entry(m) for m in movements[: max(0, limit)]]

    def upcoming_donations(self, actor: ActorSession, organization_id: UUID) -> list[DonationEntry]:
        """Unresolved donations scheduled at or after now, soonest first."""
        ensure_organization_access(actor, organization_id)
        now = self._clock.now()
        entries = [
            self._entry(m)
            for m in self._lifecycle.list_movements(organization_id, intent=GuardrailIntent.DONATE)
            if MovementStatus(m.status) not in TERMINAL_MOVEMENT_STATUSES
        ]
        upcoming = [e for e in entries if e.scheduled_for is not None and e.scheduled_for >= now]
        upcoming.sort(key=lambda e: e.scheduled_for)
        return upcoming

    def donation_summary(self, actor: ActorSession, organization_id: UUID) -> DonationSummary:
        ensure_organization_access(actor, organization_id)
        now = self._clock.now()
        year_start = datetime(now.year, 1, 1, tzinfo=timezone.utc)
        executed = self._lifecycle.list_movements(
            organization_id,
            intent=GuardrailIntent.DONATE,
            statuses=(MovementStatus.EXECUTED,),
        )
        year_to_date = sum(
            m.amount_cents for m in executed if (m.executed_at or m.requested_at) >= year_start
        )
        last = max((m.executed_at for m in executed if m.executed_at), default=None)
        return DonationSummary(
            currency=executed[0].currency if executed else "USD",
            year_to_date_cents=year_to_date,
            monthly_average_cents=round(year_to_date / max(1, now.month)),
            total_donations=len(executed),
            last_donation_at=last,
        )

    def _entry(self, movement: MoneyMovementModel) -> DonationEntry:
        details = movement.details or {}
        cause_id = details.get("cause_id") or "custom"
        cause = self._settings.cause(cause_id)
        return DonationEntry(
            movement_id=movement.id,
            cause_id=cause_id,
            cause_name=cause.name if cause else details.get("cause_name", "Donation"),
            amount=Money(movement.amount_cents, movement.currency),
            status=movement.status,
            requested_at=movement.requested_at,
            executed_at=movement.executed_at,
            scheduled_for=_parse_moment(details.get("scheduled_for")),
            memo=details.get("memo"),
        )

    def _on_donation_executed(self, movement: MoneyMovementModel, actor_id: UUID | None) -> None:
        details = movement.details or {}
        self._journal.record(
            movement.organization_id,
            JournalEventKind.DONATION_COMPLETED,
            movement.__tablename__,
            movement.id,
            actor_id=actor_id,
            payload={
                "cause_id": details.get("cause_id"),
                "amount": {"cents": movement.amount_cents, "currency": movement.currency},
            },
        )
        logger.info(
            "donation_completed",
            extra={"movement_id": str(movement.id), "cause_id": details.get("cause_id")},
        )
