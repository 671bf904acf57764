"""
Guardrail Resolver -- picks the single applicable guardrail for an action.

Responsibility:
    Given all guardrails for an (organization, intent) pair and the scopes
    relevant to one action, return the most specific match.  Every domain
    (savings, spend, donate, earn, invest) resolves through this module and
    only supplies its own CandidateScopes.

Architecture position:
    Engines -- pure, zero I/O.  Callers pre-fetch the guardrail list in stored
    order (GuardrailStore.list_for_intent).

Invariants enforced:
    - Precedence: account scope > money-map-node scope > organization scope.
    - Ties within one specificity resolve to the first match in stored order.
      Duplicates are a provisioning defect; they are not resolved cleverly.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from uuid import UUID

from guardrail_kernel.domain.guardrail import (
    Guardrail,
    GuardrailIntent,
    ScopeType,
)


@dataclass(frozen=True)
class CandidateScopes:
    """
    The scopes one action may be governed by.

    Attributes:
        account_id: The account the action touches (account-scoped match).
        node_id: The money-map node owning that account, or the explicit
            destination node for goal/budget flows.
        accepts: Optional filter applied to every candidate, e.g. to keep only
            the deposit-direction guardrail of a goal node.
    """

    account_id: UUID | None = None
    node_id: UUID | None = None
    accepts: Callable[[Guardrail], bool] | None = None


def _first(guardrails: Iterable[Guardrail], predicate: Callable[[Guardrail], bool]) -> Guardrail | None:
    return next((g for g in guardrails if predicate(g)), None)


def resolve_guardrail(
    guardrails: Sequence[Guardrail],
    intent: GuardrailIntent,
    scopes: CandidateScopes,
) -> Guardrail | None:
    """
    Resolve the most specific guardrail for an action.

    Args:
        guardrails: Guardrails for the organization, in stored order.  Entries
            for other intents are ignored.
        intent: Intent of the action.
        scopes: Account and node the action touches.

    Returns:
        The matching guardrail, or None when the caller must apply its
        fallback policy.
    """
    candidates = [
        g for g in guardrails
        if g.intent == intent and (scopes.accepts is None or scopes.accepts(g))
    ]

    if scopes.account_id is not None:
        match = _first(
            candidates,
            lambda g: g.scope.scope_type == ScopeType.ACCOUNT
            and g.scope.account_id == scopes.account_id,
        )
        if match is not None:
            return match

    if scopes.node_id is not None:
        match = _first(
            candidates,
            lambda g: g.scope.scope_type == ScopeType.MONEY_MAP_NODE
            and g.scope.node_id == scopes.node_id,
        )
        if match is not None:
            return match

    return _first(candidates, lambda g: g.scope.scope_type == ScopeType.ORGANIZATION)


def deposit_into(node_id: UUID) -> Callable[[Guardrail], bool]:
    """Accept guardrails without a direction or whose destination is ``node_id``."""

    def accepts(guardrail: Guardrail) -> bool:
        direction = guardrail.direction
        return direction is None or direction.destination_node_id == node_id

    return accepts


def withdrawal_from(node_id: UUID) -> Callable[[Guardrail], bool]:
    """Accept guardrails without a direction or whose source is ``node_id``."""

    def accepts(guardrail: Guardrail) -> bool:
        direction = guardrail.direction
        return direction is None or direction.source_node_id == node_id

    return accepts
