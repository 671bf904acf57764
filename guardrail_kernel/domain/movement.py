"""
Money-movement lifecycle -- pure domain types.

Responsibility:
    Defines the status enum and the transition table that is the ONLY
    source of legal status changes.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - Status changes are legal iff listed in MOVEMENT_TRANSITIONS.
    - executed, declined, canceled and failed are terminal: no outbound edges.
    - Cancel and decline are reachable only from approval-pending statuses.

Lifecycle:

    pending_approval --+--> approved --+--> executed
    awaiting_parent  --+               +--> failed
         |
         +--> declined | canceled

    Auto-execution enters at ``approved`` through the self-approval
    transition and then follows approved -> executed | failed.
"""

from __future__ import annotations

from enum import Enum


class MovementKind(str, Enum):
    TRANSFER = "transfer"
    ORDER = "order"


class MovementStatus(str, Enum):
    """Lifecycle status of a money-movement request."""

    PENDING_APPROVAL = "pending_approval"
    AWAITING_PARENT = "awaiting_parent"
    APPROVED = "approved"
    EXECUTED = "executed"
    DECLINED = "declined"
    CANCELED = "canceled"
    FAILED = "failed"


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class ApproverTier(str, Enum):
    """Minimum privilege needed to approve a pending movement."""

    GUARDIAN = "guardian"
    ADMIN = "admin"


MOVEMENT_TRANSITIONS: dict[MovementStatus, frozenset[MovementStatus]] = {
    MovementStatus.PENDING_APPROVAL: frozenset({
        MovementStatus.APPROVED,
        MovementStatus.DECLINED,
        MovementStatus.CANCELED,
    }),
    MovementStatus.AWAITING_PARENT: frozenset({
        MovementStatus.APPROVED,
        MovementStatus.DECLINED,
        MovementStatus.CANCELED,
    }),
    MovementStatus.APPROVED: frozenset({
        MovementStatus.EXECUTED,
        MovementStatus.FAILED,
    }),
    MovementStatus.EXECUTED: frozenset(),
    MovementStatus.DECLINED: frozenset(),
    MovementStatus.CANCELED: frozenset(),
    MovementStatus.FAILED: frozenset(),
}

PENDING_MOVEMENT_STATUSES: frozenset[MovementStatus] = frozenset({
    MovementStatus.PENDING_APPROVAL,
    MovementStatus.AWAITING_PARENT,
})

TERMINAL_MOVEMENT_STATUSES: frozenset[MovementStatus] = frozenset(
    status for status, targets in MOVEMENT_TRANSITIONS.items() if not targets
)


def can_transition(from_status: MovementStatus, to_status: MovementStatus) -> bool:
    """True if ``from_status -> to_status`` is a legal lifecycle edge."""
    return to_status in MOVEMENT_TRANSITIONS.get(from_status, frozenset())


def pending_status_for(kind: MovementKind) -> MovementStatus:
    """Initial status of a movement that needs human approval."""
    if kind == MovementKind.ORDER:
        return MovementStatus.AWAITING_PARENT
    return MovementStatus.PENDING_APPROVAL

