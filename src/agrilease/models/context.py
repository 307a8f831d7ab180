"""Per-request identity context."""

from dataclasses import dataclass, field
from typing import Optional

from agrilease.models.enums import UserRole


@dataclass(frozen=True)
class RequestContext:
    """
    Identity of the caller for a single operation.

    Built once at the request boundary and passed explicitly into every
    engine call; nothing in the engine reads identity from ambient state.
    """

    user_id: Optional[str] = None
    active_role: Optional[UserRole] = None
    roles: frozenset[UserRole] = field(default_factory=frozenset)
    phone: Optional[str] = None

    @classmethod
    def anonymous(cls) -> "RequestContext":
        return cls()

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def has_role(self, role: UserRole) -> bool:
        """Check whether the caller holds a role (active or granted)."""
        return self.active_role == role or role in self.roles

    @property
    def is_admin(self) -> bool:
        return self.is_authenticated and (
            self.has_role(UserRole.ADMIN) or self.has_role(UserRole.SUPER_ADMIN)
        )
