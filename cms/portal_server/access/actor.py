"""
Caller context passed into every storage operation.

Authentication happens outside this package; callers hand over an
already-verified ActorContext describing who is acting.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(Enum):
    """Platform roles."""

    SUPERADMIN = "superadmin"
    ORG_ADMIN = "org_admin"
    ORG_MEMBER = "org_member"
    USER = "user"  # Signed in, no organization
    ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class ActorContext:
    """Already-authenticated caller.

    Attributes:
        user_id: Acting user id, empty for anonymous callers
        role: Platform role
        organization_id: Organization the user belongs to, if any
    """

    user_id: str
    role: Role
    organization_id: str | None = None

    @classmethod
    def superadmin(cls, user_id: str = "superadmin") -> ActorContext:
        return cls(user_id=user_id, role=Role.SUPERADMIN)

    @classmethod
    def org_admin(cls, user_id: str, organization_id: str) -> ActorContext:
        return cls(user_id=user_id, role=Role.ORG_ADMIN, organization_id=organization_id)

    @classmethod
    def org_member(cls, user_id: str, organization_id: str) -> ActorContext:
        return cls(user_id=user_id, role=Role.ORG_MEMBER, organization_id=organization_id)

    @classmethod
    def anonymous(cls) -> ActorContext:
        return cls(user_id="", role=Role.ANONYMOUS)

    @property
    def is_superadmin(self) -> bool:
        return self.role == Role.SUPERADMIN

    @property
    def is_authenticated(self) -> bool:
        return self.role != Role.ANONYMOUS

    def owns(self, organization_id: str | None) -> bool:
        """Whether the actor belongs to the given organization."""
        return (
            organization_id is not None
            and self.organization_id == organization_id
            and self.role in (Role.ORG_ADMIN, Role.ORG_MEMBER)
        )

    def can_manage(self, organization_id: str | None) -> bool:
        """Superadmins manage everything; org users manage their own org."""
        return self.is_superadmin or self.owns(organization_id)
