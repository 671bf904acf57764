"""
guardrail_services.earn -- income streams and payouts.

Responsibility:
    Income stream CRUD, manual payout requests, skips, projections, and the
    periodic sweep that requests payouts for due auto-scheduled streams.

Scope derivation:
    Destination account plus its node.  When nothing matches, the fallback
    policy is ``parent_required`` for streams that require approval and
    ``auto`` for streams that do not.

Schedule:
    A stream's schedule advances when its current occurrence is consumed:
    the payout executes (``income_completed``), is declined, or is skipped
    (``income_skipped``).  A stream with a payout still awaiting approval is
    not picked up again by the sweep.

Sweep failure handling:
    Each stream is processed inside its own SAVEPOINT.  An ExecutionError
    leaves the payout recorded as ``failed`` (with its ``transfer_failed``
    entry); any other error rolls back that stream's work.  Either way the
    failure is logged as ``payout_sweep_stream_failed`` and counted, and the
    sweep continues with the next stream.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from guardrail_config.schema import GuardrailSettings
from guardrail_engines.schedule import (
    Cadence,
    advance_past,
    monthly_amount_cents,
    next_scheduled_at,
    project_payouts,
)
from guardrail_kernel.domain.actor import ActorSession, MemberRole
from guardrail_kernel.domain.clock import Clock
from guardrail_kernel.domain.guardrail import ApprovalPolicy, GuardrailIntent
from guardrail_kernel.domain.movement import PENDING_MOVEMENT_STATUSES
from guardrail_kernel.domain.values import Money
from guardrail_kernel.exceptions import ExecutionError, IncomeStreamNotFoundError, InvalidAmountError
from guardrail_kernel.logging_config import LogContext, get_logger
from guardrail_kernel.models.journal import JournalEventKind
from guardrail_kernel.models.movement import MoneyMovementModel
from guardrail_kernel.models.planning import IncomeStreamModel
from guardrail_kernel.services.event_journal import EventJournal, entity_ref
from guardrail_kernel.services.lifecycle import MovementLifecycle
from guardrail_services._records import account_scopes, load_account
from guardrail_services.authorization import (
    ensure_member_with_role,
    ensure_organization_access,
    ensure_role,
)
from guardrail_services.movement_orchestrator import MovementOrchestrator, MovementOutcome

logger = get_logger("services.earn")

# Scheduled payouts are requested on behalf of the stream's creator, who
# needed a planner role to enable auto-scheduling.
SCHEDULER_ROLE = MemberRole.ADMIN

_UNSET = object()


@dataclass(frozen=True)
class IncomeProjection:
    stream_id: UUID
    stream_name: str
    scheduled_at: datetime
    amount: Money
    cadence: str
    auto_scheduled: bool


@dataclass
class PayoutSweepResult:
    processed: int = 0
    executed: int = 0
    pending: int = 0
    skipped: int = 0
    failed: int = 0
    movement_ids: list[UUID] = field(default_factory=list)


class EarnService:
    def __init__(
        self,
        session: Session,
        orchestrator: MovementOrchestrator,
        lifecycle: MovementLifecycle,
        journal: EventJournal,
        clock: Clock,
        settings: GuardrailSettings,
    ):
        self._session = session
        self._orchestrator = orchestrator
        self._lifecycle = lifecycle
        self._journal = journal
        self._clock = clock
        self._settings = settings
        lifecycle.register_execution_hook(GuardrailIntent.EARN, self._on_payout_executed)
        lifecycle.register_decline_hook(GuardrailIntent.EARN, self._on_payout_declined)

    # ------------------------------------------------------------------
    # Streams
    # ------------------------------------------------------------------

    def create_income_stream(
        self,
        actor: ActorSession,
        organization_id: UUID,
        *,
        owner_id: UUID,
        name: str,
        cadence: Cadence | str,
        amount: Money,
        destination_account_id: UUID,
        source_account_id: UUID | None = None,
        requires_approval: bool = True,
        auto_schedule: bool = False,
        first_payout_at: datetime | None = None,
    ) -> IncomeStreamModel:
        ensure_member_with_role(actor, organization_id, self._settings.roles.planners, "create income stream")
        if not amount.is_positive:
            raise InvalidAmountError(amount.cents)
        cadence = Cadence(cadence)
        load_account(self._session, organization_id, destination_account_id)
        if source_account_id is not None:
            load_account(self._session, organization_id, source_account_id)

        now = self._clock.now()
        stream = IncomeStreamModel(
            organization_id=organization_id,
            owner_id=owner_id,
            name=name,
            cadence=cadence.value,
            amount_cents=amount.cents,
            currency=amount.currency,
            source_account_id=source_account_id,
            destination_account_id=destination_account_id,
            requires_approval=requires_approval,
            auto_schedule=auto_schedule,
            status="active",
            next_scheduled_at=first_payout_at or next_scheduled_at(cadence, now, now),
            created_by_id=actor.actor_id,
        )
        self._session.add(stream)
        self._session.flush()
        self._record_stream_change(stream, actor.actor_id, "created")
        return stream

    def update_income_stream(
        self,
        actor: ActorSession,
        stream_id: UUID,
        *,
        name: str | None = None,
        amount: Money | None = None,
        cadence: Cadence | str | None = None,
        requires_approval: bool | None = None,
        auto_schedule: bool | None = None,
        status: str | None = None,
        next_payout_at: datetime | None | object = _UNSET,
    ) -> IncomeStreamModel:
        """
        Patch a stream.

        Pausing clears ``next_scheduled_at``; resuming recomputes it from now.
        """
        stream = self._load_stream(stream_id)
        ensure_member_with_role(actor, stream.organization_id, self._settings.roles.planners, "update income stream")
        now = self._clock.now()

        if name is not None:
            stream.name = name
        if amount is not None:
            if not amount.is_positive:
                raise InvalidAmountError(amount.cents)
            stream.amount_cents = amount.cents
            stream.currency = amount.currency
        if cadence is not None:
            stream.cadence = Cadence(cadence).value
        if requires_approval is not None:
            stream.requires_approval = requires_approval
        if auto_schedule is not None:
            stream.auto_schedule = auto_schedule
        if next_payout_at is not _UNSET:
            stream.next_scheduled_at = next_payout_at

        if status is not None and status != stream.status:
            if status == "paused":
                stream.next_scheduled_at = None
            elif status == "active":
                stream.next_scheduled_at = next_scheduled_at(stream.cadence, now, now)
            else:
                raise ValueError(f"Unknown income stream status: {status}")
            stream.status = status

        stream.updated_by_id = actor.actor_id
        self._session.flush()
        self._record_stream_change(stream, actor.actor_id, "updated")
        return stream

    def list_income_projections(
        self,
        actor: ActorSession,
        organization_id: UUID,
        *,
        per_stream: int = 2,
        limit: int = 8,
    ) -> list[IncomeProjection]:
        """Upcoming payouts across active streams, soonest first."""
        ensure_organization_access(actor, organization_id)
        now = self._clock.now()
        projections: list[IncomeProjection] = []
        for stream in self._streams(organization_id, active_only=True):
            start = stream.next_scheduled_at
            if start is None or start < now:
                start = advance_past(stream.cadence, start or now, now)
            for moment in project_payouts(stream.cadence, start, per_stream):
                projections.append(
                    IncomeProjection(
                        stream_id=stream.id,
                        stream_name=stream.name,
                        scheduled_at=moment,
                        amount=Money(stream.amount_cents, stream.currency),
                        cadence=stream.cadence,
                        auto_scheduled=stream.auto_schedule,
                    )
                )
        projections.sort(key=lambda p: p.scheduled_at)
        return projections[: max(0, limit)]

    def monthly_income_cents(self, actor: ActorSession, organization_id: UUID) -> int:
        ensure_organization_access(actor, organization_id)
        return sum(
            monthly_amount_cents(s.amount_cents, s.cadence)
            for s in self._streams(organization_id, active_only=True)
        )

    # ------------------------------------------------------------------
    # Payouts
    # ------------------------------------------------------------------

    def request_income_payout(
        self,
        actor: ActorSession,
        stream_id: UUID,
        *,
        scheduled_for: datetime | None = None,
    ) -> MovementOutcome:
        """
        Request one payout of the stream's amount into its destination account.

        Planners may request any stream's payout; other members only their own.
        """
        stream = self._load_stream(stream_id)
        self._ensure_owner_or_planner(actor, stream, "request income payout")
        return self._request(actor, stream, scheduled_for or stream.next_scheduled_at or self._clock.now())

    def skip_income_payout(
        self,
        actor: ActorSession,
        stream_id: UUID,
        *,
        scheduled_for: datetime | None = None,
        reason: str = "skipped",
    ) -> IncomeStreamModel:
        """Skip the current occurrence; emits income_skipped and advances the schedule."""
        stream = self._load_stream(stream_id)
        self._ensure_owner_or_planner(actor, stream, "skip income payout")

        occurrence = scheduled_for or stream.next_scheduled_at or self._clock.now()
        self._advance(stream, occurrence)
        self._journal.record(
            stream.organization_id,
            JournalEventKind.INCOME_SKIPPED,
            stream.__tablename__,
            stream.id,
            actor_id=actor.actor_id,
            payload={
                "scheduled_for": occurrence.isoformat(),
                "reason": reason,
                "stream_name": stream.name,
            },
        )
        logger.info("income_skipped", extra={"stream_id": str(stream.id), "reason": reason})
        return stream

    def process_due_payouts(self, organization_id: UUID | None = None) -> PayoutSweepResult:
        """
        Request payouts for every due, active, auto-scheduled stream.

        Never raises for a single stream's failure.
        """
        now = self._clock.now()
        stmt = select(IncomeStreamModel).where(
            IncomeStreamModel.status == "active",
            IncomeStreamModel.auto_schedule.is_(True),
            IncomeStreamModel.next_scheduled_at.is_not(None),
            IncomeStreamModel.next_scheduled_at <= now,
        )
        if organization_id is not None:
            stmt = stmt.where(IncomeStreamModel.organization_id == organization_id)
        streams = list(self._session.execute(stmt.order_by(IncomeStreamModel.next_scheduled_at)).scalars())

        result = PayoutSweepResult()
        logger.info("payout_sweep_started", extra={"due_streams": len(streams)})

        for stream in streams:
            if self._has_pending_payout(stream):
                result.skipped += 1
                continue

            result.processed += 1
            actor = ActorSession(
                actor_id=stream.created_by_id,
                organization_id=stream.organization_id,
                role=SCHEDULER_ROLE,
            )
            failure: Exception | None = None
            try:
                with self._session.begin_nested():
                    try:
                        outcome = self._request(actor, stream, stream.next_scheduled_at)
                    except ExecutionError as exc:
                        # The payout is already recorded as failed; keep it.
                        failure = exc
            except Exception as exc:
                failure = exc

            if failure is not None:
                result.failed += 1
                logger.error(
                    "payout_sweep_stream_failed",
                    extra={
                        "stream_id": str(stream.id),
                        "error_type": type(failure).__name__,
                        "error": str(failure),
                        "failure_recorded": isinstance(failure, ExecutionError),
                    },
                )
                continue

            result.movement_ids.append(outcome.movement.id)
            if outcome.decision.executes:
                result.executed += 1
            else:
                result.pending += 1

        logger.info(
            "payout_sweep_completed",
            extra={
                "processed": result.processed,
                "executed": result.executed,
                "pending": result.pending,
                "skipped": result.skipped,
                "failed": result.failed,
            },
        )
        return result

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _on_payout_executed(self, movement: MoneyMovementModel, actor_id: UUID | None) -> None:
        stream = self._stream_for(movement)
        if stream is None:
            return
        now = self._clock.now()
        occurrence = self._occurrence_of(movement) or now
        stream.last_paid_at = now
        self._advance(stream, occurrence)
        self._journal.record(
            stream.organization_id,
            JournalEventKind.INCOME_COMPLETED,
            stream.__tablename__,
            stream.id,
            actor_id=actor_id,
            related=[entity_ref(movement.__tablename__, movement.id)],
            payload={
                "amount": {"cents": movement.amount_cents, "currency": movement.currency},
                "scheduled_for": occurrence.isoformat(),
                "stream_name": stream.name,
            },
        )
        logger.info("income_completed", extra={"stream_id": str(stream.id)})

    def _on_payout_declined(self, movement: MoneyMovementModel, actor_id: UUID | None) -> None:
        stream = self._stream_for(movement)
        if stream is None:
            return
        occurrence = self._occurrence_of(movement) or self._clock.now()
        self._advance(stream, occurrence)
        self._journal.record(
            stream.organization_id,
            JournalEventKind.INCOME_SKIPPED,
            stream.__tablename__,
            stream.id,
            actor_id=actor_id,
            related=[entity_ref(movement.__tablename__, movement.id)],
            payload={
                "scheduled_for": occurrence.isoformat(),
                "reason": "declined",
                "stream_name": stream.name,
            },
        )
        logger.info("income_skipped", extra={"stream_id": str(stream.id), "reason": "declined"})

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _request(self, actor: ActorSession, stream: IncomeStreamModel, occurrence: datetime) -> MovementOutcome:
        destination = load_account(self._session, stream.organization_id, stream.destination_account_id)
        fallback = ApprovalPolicy.PARENT_REQUIRED if stream.requires_approval else ApprovalPolicy.AUTO
        with LogContext.bind(correlation_id=f"income:{stream.id}:{occurrence.isoformat()}"):
            return self._orchestrator.request_transfer(
                actor,
                GuardrailIntent.EARN,
                account_scopes(destination),
                Money(stream.amount_cents, stream.currency),
                source_account_id=stream.source_account_id,
                destination_account_id=stream.destination_account_id,
                fallback_policy=fallback,
                metadata={
                    "income_stream_id": str(stream.id),
                    "stream_name": stream.name,
                    "scheduled_for": occurrence.isoformat(),
                },
            )

    def _advance(self, stream: IncomeStreamModel, occurrence: datetime) -> None:
        if stream.auto_schedule and stream.status == "active":
            stream.next_scheduled_at = advance_past(stream.cadence, occurrence, self._clock.now())
        self._session.flush()

    def _has_pending_payout(self, stream: IncomeStreamModel) -> bool:
        pending = self._lifecycle.list_movements(
            stream.organization_id,
            intent=GuardrailIntent.EARN,
            statuses=tuple(PENDING_MOVEMENT_STATUSES),
        )
        return any((m.details or {}).get("income_stream_id") == str(stream.id) for m in pending)

    def _stream_for(self, movement: MoneyMovementModel) -> IncomeStreamModel | None:
        stream_id = (movement.details or {}).get("income_stream_id")
        if not stream_id:
            return None
        return self._session.get(IncomeStreamModel, UUID(stream_id))

    @staticmethod
    def _occurrence_of(movement: MoneyMovementModel) -> datetime | None:
        value = (movement.details or {}).get("scheduled_for")
        return datetime.fromisoformat(value) if value else None

    def _streams(self, organization_id: UUID, *, active_only: bool = False) -> list[IncomeStreamModel]:
        stmt = select(IncomeStreamModel).where(IncomeStreamModel.organization_id == organization_id)
        if active_only:
            stmt = stmt.where(IncomeStreamModel.status == "active")
        return list(self._session.execute(stmt.order_by(IncomeStreamModel.name)).scalars())

    def _ensure_owner_or_planner(self, actor: ActorSession, stream: IncomeStreamModel, action: str) -> None:
        ensure_organization_access(actor, stream.organization_id)
        if actor.actor_id != stream.owner_id:
            ensure_role(actor, self._settings.roles.planners, action)

    def _load_stream(self, stream_id: UUID) -> IncomeStreamModel:
        stream = self._session.get(IncomeStreamModel, stream_id)
        if stream is None:
            raise IncomeStreamNotFoundError(str(stream_id))
        return stream

    def _record_stream_change(self, stream: IncomeStreamModel, actor_id: UUID, action: str) -> None:
        self._journal.record(
            stream.organization_id,
            JournalEventKind.INCOME_STREAM_UPDATED,
            stream.__tablename__,
            stream.id,
            actor_id=actor_id,
            payload={
                "action": action,
                "status": stream.status,
                "cadence": stream.cadence,
                "amount_cents": stream.amount_cents,
                "next_scheduled_at": stream.next_scheduled_at.isoformat() if stream.next_scheduled_at else None,
            },
        )
        logger.info("income_stream_updated", extra={"stream_id": str(stream.id), "action": action})
