"""
guardrail_services.authorization -- organization and role checks at entry points.

Responsibility:
    Every domain entry point calls these checks BEFORE any guardrail is
    loaded or evaluated.  Session issuance is external: the caller supplies
    a verified ActorSession.

Invariants:
    - Wrong organization -> OrganizationAccessError.
    - Role outside the required set -> InsufficientRoleError.
    - ``check_role`` is the pure form, returning (allowed, reason).
"""

from __future__ import annotations

from uuid import UUID

from guardrail_kernel.domain.actor import ActorSession
from guardrail_kernel.exceptions import InsufficientRoleError, OrganizationAccessError
from guardrail_kernel.logging_config import get_logger

logger = get_logger("services.authorization")


def check_role(actor: ActorSession, allowed_roles: tuple[str, ...]) -> tuple[bool, str]:
    """
    Check whether the actor's role is in ``allowed_roles``.

    Returns:
        (allowed, reason).  reason is empty when allowed.
    """
    if actor.role_value in allowed_roles:
        return (True, "")
    return (False, f"role '{actor.role_value}' not in {', '.join(allowed_roles)}")


def ensure_organization_access(actor: ActorSession, organization_id: UUID) -> None:
    if actor.organization_id != organization_id:
        logger.warning(
            "organization_access_denied",
            extra={
                "actor_id": str(actor.actor_id),
                "requested_organization_id": str(organization_id),
            },
        )
        raise OrganizationAccessError(str(actor.actor_id), str(organization_id))


def ensure_role(actor: ActorSession, allowed_roles: tuple[str, ...], action: str) -> None:
    allowed, reason = check_role(actor, allowed_roles)
    if not allowed:
        logger.warning(
            "insufficient_role",
            extra={"actor_id": str(actor.actor_id), "action": action, "reason": reason},
        )
        raise InsufficientRoleError(str(actor.actor_id), actor.role_value, allowed_roles, action)


def ensure_member_with_role(
    actor: ActorSession,
    organization_id: UUID,
    allowed_roles: tuple[str, ...],
    action: str,
) -> None:
    """Organization check followed by role check."""
    ensure_organization_access(actor, organization_id)
    ensure_role(actor, allowed_roles, action)
