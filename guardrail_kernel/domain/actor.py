"""
Actor session supplied by the external authentication collaborator.

The kernel never issues sessions; it receives an already-verified actor id,
organization id, and role for every call and checks only organization
membership and role.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class MemberRole(str, Enum):
    """Organization membership roles."""

    OWNER = "owner"
    ADMIN = "admin"
    GUARDIAN = "guardian"
    MEMBER = "member"
    STUDENT = "student"


@dataclass(frozen=True)
class ActorSession:
    """A verified actor acting within one organization."""

    actor_id: UUID
    organization_id: UUID
    role: MemberRole

    @property
    def role_value(self) -> str:
        return self.role.value
