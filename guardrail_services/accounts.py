"""
guardrail_services.accounts -- account sync from an external provider.

Responsibility:
    Upsert financial accounts (and the money-map node each one sits on)
    from records supplied by an account provider, append their posted
    transactions, and make sure every account has an account-scoped
    guardrail before any movement against it is evaluated.

Guardrail intent by account kind:
    investing kinds (brokerage, utma)  -> invest, invest_policy
    donation kinds (donation)          -> donate, donate_policy
    everything else                    -> spend, spend_policy

Idempotency:
    Accounts are matched on (provider, provider_account_id); transactions
    on (account, external_id).  Re-running a sync with the same records
    updates in place and creates nothing new.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from guardrail_config.schema import GuardrailSettings
from guardrail_kernel.domain.actor import ActorSession
from guardrail_kernel.domain.clock import Clock
from guardrail_kernel.domain.guardrail import ApprovalPolicy, GuardrailIntent
from guardrail_kernel.domain.values import Money
from guardrail_kernel.logging_config import LogContext, get_logger
from guardrail_kernel.models.journal import JournalEventKind
from guardrail_kernel.models.money_map import (
    ACCOUNT_KINDS,
    AccountTransactionModel,
    FinancialAccountModel,
    MoneyMapNodeModel,
)
from guardrail_kernel.services.event_journal import EventJournal, entity_ref
from guardrail_kernel.services.provisioning import GuardrailProvisioner
from guardrail_services.authorization import ensure_member_with_role

logger = get_logger("services.accounts")


@dataclass(frozen=True)
class TransactionRecord:
    external_id: str
    direction: str
    amount: Money
    occurred_at: datetime
    description: str = ""
    money_map_node_id: UUID | None = None


@dataclass(frozen=True)
class AccountRecord:
    """One account as reported by the provider."""

    provider_account_id: str
    name: str
    kind: str
    balance: Money
    status: str = "active"
    transactions: tuple[TransactionRecord, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class AccountSyncResult:
    provider: str
    created: int
    updated: int
    transactions_created: int
    guardrails_created: int
    account_ids: tuple[UUID, ...]


def guardrail_for_kind(kind: str, settings: GuardrailSettings) -> tuple[GuardrailIntent, ApprovalPolicy]:
    provisioning = settings.provisioning
    if kind in provisioning.investing_account_kinds:
        return GuardrailIntent.INVEST, provisioning.invest_policy
    if kind in provisioning.donation_account_kinds:
        return GuardrailIntent.DONATE, provisioning.donate_policy
    return GuardrailIntent.SPEND, provisioning.spend_policy


class AccountSyncService:
    def __init__(
        self,
        session: Session,
        provisioner: GuardrailProvisioner,
        journal: EventJournal,
        clock: Clock,
        settings: GuardrailSettings,
    ):
        self._session = session
        self._provisioner = provisioner
        self._journal = journal
        self._clock = clock
        self._settings = settings

    def sync_accounts(
        self,
        actor: ActorSession,
        organization_id: UUID,
        provider: str,
        records: list[AccountRecord],
    ) -> AccountSyncResult:
        """
        Upsert ``records`` for ``provider``.

        Raises:
            ValueError: a record carries an unknown account kind or
                transaction direction.  Nothing from the batch is flushed
                past the failing record; the caller's transaction decides.
        """
        ensure_member_with_role(actor, organization_id, self._settings.roles.planners, "sync accounts")
        for record in records:
            if record.kind not in ACCOUNT_KINDS:
                raise ValueError(f"Unknown account kind: {record.kind!r}")

        existing = {
            a.provider_account_id: a
            for a in self._session.execute(
                select(FinancialAccountModel).where(
                    FinancialAccountModel.organization_id == organization_id,
                    FinancialAccountModel.provider == provider,
                )
            ).scalars()
        }

        created = updated = transactions_created = guardrails_created = 0
        account_ids: list[UUID] = []
        now = self._clock.now()

        with LogContext.bind(organization_id=str(organization_id), actor_id=str(actor.actor_id)):
            for record in records:
                account = existing.get(record.provider_account_id)
                if account is None:
                    node = self._ensure_node(organization_id, provider, record)
                    account = FinancialAccountModel(
                        organization_id=organization_id,
                        money_map_node_id=node.id,
                        provider=provider,
                        provider_account_id=record.provider_account_id,
                    )
                    self._session.add(account)
                    existing[record.provider_account_id] = account
                    created += 1
                else:
                    updated += 1
                account.name = record.name
                account.kind = record.kind
                account.status = record.status
                account.balance_cents = record.balance.cents
                account.currency = record.balance.currency
                account.last_synced_at = now
                self._session.flush()
                account_ids.append(account.id)

                transactions_created += self._sync_transactions(account, record.transactions)

                intent, policy = guardrail_for_kind(record.kind, self._settings)
                provisioned = self._provisioner.ensure_account_guardrail(
                    organization_id,
                    account.id,
                    intent,
                    actor_id=actor.actor_id,
                    approval_policy=policy,
                    allowed_roles=self._settings.provisioning.allowed_roles_to_initiate,
                )
                guardrails_created += int(provisioned.created)

            result = AccountSyncResult(
                provider=provider,
                created=created,
                updated=updated,
                transactions_created=transactions_created,
                guardrails_created=guardrails_created,
                account_ids=tuple(account_ids),
            )
            self._journal.record(
                organization_id,
                JournalEventKind.ACCOUNT_SYNCED,
                "financial_accounts",
                provider,
                actor_id=actor.actor_id,
                related=[entity_ref("financial_accounts", i) for i in account_ids],
                payload={
                    "provider": provider,
                    "created": created,
                    "updated": updated,
                    "transactions_created": transactions_created,
                    "guardrails_created": guardrails_created,
                },
            )
            logger.info(
                "accounts_synced",
                extra={
                    "provider": provider,
                    "accounts_created": created,
                    "accounts_updated": updated,
                    "transactions_created": transactions_created,
                },
            )
        return result

    def _ensure_node(self, organization_id: UUID, provider: str, record: AccountRecord) -> MoneyMapNodeModel:
        key = f"account:{provider}:{record.provider_account_id}"
        node = self._session.execute(
            select(MoneyMapNodeModel).where(
                MoneyMapNodeModel.organization_id == organization_id,
                MoneyMapNodeModel.key == key,
            )
        ).scalar_one_or_none()
        if node is None:
            node = MoneyMapNodeModel(
                organization_id=organization_id,
                key=key,
                kind="account",
                label=record.name,
                details={"account_kind": record.kind, "provider": provider},
            )
            self._session.add(node)
            self._session.flush()
        return node

    def _sync_transactions(
        self,
        account: FinancialAccountModel,
        transactions: tuple[TransactionRecord, ...],
    ) -> int:
        if not transactions:
            return 0
        known = set(
            self._session.execute(
                select(AccountTransactionModel.external_id).where(
                    AccountTransactionModel.account_id == account.id,
                    AccountTransactionModel.external_id.is_not(None),
                )
            ).scalars()
        )
        added = 0
        for transaction in transactions:
            if transaction.direction not in ("debit", "credit"):
                raise ValueError(f"Unknown transaction direction: {transaction.direction!r}")
            if transaction.external_id in known:
                continue
            self._session.add(
                AccountTransactionModel(
                    organization_id=account.organization_id,
                    account_id=account.id,
                    external_id=transaction.external_id,
                    money_map_node_id=transaction.money_map_node_id or account.money_map_node_id,
                    direction=transaction.direction,
                    amount_cents=transaction.amount.cents,
                    currency=transaction.amount.currency,
                    description=transaction.description,
                    occurred_at=transaction.occurred_at,
                )
            )
            known.add(transaction.external_id)
            added += 1
        self._session.flush()
        return added
