"""
Authenticated principal.

An Identity is built once per request from a verified access token and is
immutable afterwards; changing role or tenant requires a new token.
"""

from dataclasses import dataclass, field, replace
from typing import Iterable, Optional

from schoolhub.constants.permissions import (
    DEPARTMENT_HEAD_ROLE,
    Permission,
    Role,
    get_permissions_for_roles,
)
from schoolhub.models.user_role import AdditionalRoleGrant


@dataclass(frozen=True)
class Identity:
    """
    The acting user for a request.

    tenant_id is None for platform-level superusers whose token was not
    issued for a particular school.
    """

    id: str
    role: str
    tenant_id: Optional[str] = None
    email: Optional[str] = None
    token_id: Optional[str] = None
    additional_roles: tuple[AdditionalRoleGrant, ...] = field(default_factory=tuple)

    @property
    def is_superuser(self) -> bool:
        return self.role == Role.SUPERADMIN.value

    @property
    def is_department_head(self) -> bool:
        return any(grant.role == DEPARTMENT_HEAD_ROLE for grant in self.additional_roles)

    @property
    def role_names(self) -> list[str]:
        """Primary role followed by every additional role."""
        return [self.role] + [grant.role for grant in self.additional_roles]

    def with_grants(self, grants: Iterable[AdditionalRoleGrant]) -> "Identity":
        return replace(self, additional_roles=tuple(grants))


def get_effective_permissions(identity: Identity) -> set[Permission]:
    """Union of the primary role's permissions and every granted role's."""
    return get_permissions_for_roles(identity.role_names)


def identity_has_capability(identity: Identity, permission: Permission) -> bool:
    """Does the identity hold permission anywhere in its role set?"""
    return permission in get_effective_permissions(identity)
