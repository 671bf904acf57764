"""
Shared record loaders for domain entry points.

Every loader enforces organization ownership: a record that exists but
belongs to another organization raises ForeignScopeError, never a silent
miss.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from guardrail_engines.resolver import CandidateScopes
from guardrail_kernel.exceptions import (
    AccountNotFoundError,
    ForeignScopeError,
    NodeNotFoundError,
)
from guardrail_kernel.models.money_map import FinancialAccountModel, MoneyMapNodeModel


def load_account(session: Session, organization_id: UUID, account_id: UUID) -> FinancialAccountModel:
    account = session.get(FinancialAccountModel, account_id)
    if account is None:
        raise AccountNotFoundError(str(account_id))
    if account.organization_id != organization_id:
        raise ForeignScopeError("FinancialAccount", str(account_id), str(organization_id))
    return account


def load_node(
    session: Session,
    organization_id: UUID,
    node_id: UUID,
    *,
    kind: str | None = None,
) -> MoneyMapNodeModel:
    node = session.get(MoneyMapNodeModel, node_id)
    if node is None:
        raise NodeNotFoundError(str(node_id))
    if node.organization_id != organization_id:
        raise ForeignScopeError("MoneyMapNode", str(node_id), str(organization_id))
    if kind is not None and node.kind != kind:
        raise NodeNotFoundError(str(node_id), reason=f"expected a {kind} node, got {node.kind}")
    return node


def account_scopes(account: FinancialAccountModel) -> CandidateScopes:
    """Account scope plus the node that owns the account."""
    return CandidateScopes(account_id=account.id, node_id=account.money_map_node_id)
