"""
Role-Based Access Control (RBAC) enforcement for SchoolHub.

CRITICAL SECURITY REQUIREMENTS:
- RBAC MUST be enforced server-side for every protected endpoint
- Gates compose AFTER tenant resolution and the isolation guard
- Every denial other than missing authentication is audited
- Denial responses are generic; details go to logs and the audit trail only

Each gate is a pure evaluate_* function returning an AuthorizationDecision,
plus a FastAPI dependency factory that raises and audits on denial.

Usage:
    from schoolhub.platform.rbac import require_permission, require_role

    @router.get("/users", dependencies=[Depends(require_permission(Permission.USERS_MANAGE))])
    async def list_users(...):
        ...

    @router.patch("/users/{id}")
    async def update_user(identity: Identity = Depends(require_self_or_permission(Permission.USERS_MANAGE))):
        ...

    @router.post("/users/{id}/roles", dependencies=[Depends(enforce_role_hierarchy("role"))])
    async def assign_role(...):
        ...

Gates only consult the primary role. Collaborator code that needs the full
role set (primary + additional grants) uses get_effective_permissions() /
identity_has_capability().
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence, Union

from fastapi import Depends, Request

from schoolhub.auth.identity import Identity, get_effective_permissions, identity_has_capability
from schoolhub.auth.middleware import require_identity
from schoolhub.constants.permissions import Permission, Role, get_role_level, has_permission
from schoolhub.platform.audit import UnauthorizedAttempt
from schoolhub.platform.container import get_services
from schoolhub.platform.errors import (
    MissingTargetIdError,
    PermissionDeniedError,
    RoleHierarchyViolationError,
    TenantContextMissingError,
)
from schoolhub.platform.tenant_context import get_tenant_context

logger = logging.getLogger(__name__)

__all__ = [
    "AuthorizationDecision",
    "TargetSource",
    "TargetIdExtractor",
    "can_assign_role",
    "evaluate_role",
    "evaluate_permission",
    "evaluate_any_permission",
    "evaluate_all_permissions",
    "evaluate_self_or_permission",
    "evaluate_superuser",
    "evaluate_role_hierarchy",
    "require_role",
    "require_permission",
    "require_any_permission",
    "require_all_permissions",
    "require_self_or_permission",
    "require_superuser",
    "enforce_role_hierarchy",
    "get_effective_permissions",
    "identity_has_capability",
]

RoleLike = Union[Role, str]


@dataclass(frozen=True)
class AuthorizationDecision:
    """Outcome of one authorization check."""

    allowed: bool
    reason: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def allow(cls, reason: Optional[str] = None) -> "AuthorizationDecision":
        return cls(True, reason)

    @classmethod
    def deny(cls, reason: str, **details: Any) -> "AuthorizationDecision":
        return cls(False, reason, details)


def _role_value(role: RoleLike) -> str:
    return role.value if isinstance(role, Role) else str(role)


# =============================================================================
# Pure evaluation
# =============================================================================

def evaluate_role(identity: Identity, allowed_roles: Iterable[RoleLike]) -> AuthorizationDecision:
    """
    Primary role must be in allowed_roles.

    A superuser satisfies any route that admits admins.
    """
    allowed = {_role_value(role) for role in allowed_roles}
    if identity.role in allowed:
        return AuthorizationDecision.allow()
    if Role.ADMIN.value in allowed and identity.role in (Role.ADMIN.value, Role.SUPERADMIN.value):
        return AuthorizationDecision.allow()
    return AuthorizationDecision.deny(
        "role_not_permitted",
        attemptedRole=identity.role,
        allowedRoles=sorted(allowed),
    )


def evaluate_permission(identity: Identity, permission: Permission) -> AuthorizationDecision:
    if has_permission(identity.role, permission):
        return AuthorizationDecision.allow()
    return AuthorizationDecision.deny(
        f"missing_permission:{permission.value}",
        role=identity.role,
        requiredPermission=permission.value,
    )


def evaluate_any_permission(identity: Identity, permissions: Sequence[Permission]) -> AuthorizationDecision:
    if any(has_permission(identity.role, p) for p in permissions):
        return AuthorizationDecision.allow()
    required = [p.value for p in permissions]
    return AuthorizationDecision.deny(
        f"missing_any_permission:{','.join(required)}",
        role=identity.role,
        requiredPermissions=required,
    )


def evaluate_all_permissions(identity: Identity, permissions: Sequence[Permission]) -> AuthorizationDecision:
    missing = [p.value for p in permissions if not has_permission(identity.role, p)]
    if not missing:
        return AuthorizationDecision.allow()
    return AuthorizationDecision.deny(
        f"missing_permissions:{','.join(missing)}",
        role=identity.role,
        requiredPermissions=[p.value for p in permissions],
        missingPermissions=missing,
    )


def evaluate_self_or_permission(
    identity: Identity,
    target_id: str,
    permission: Optional[Permission] = None,
) -> AuthorizationDecision:
    """Superuser, then self-access, then the optional permission."""
    if identity.is_superuser:
        return AuthorizationDecision.allow("superuser")
    if identity.id == target_id:
        return AuthorizationDecision.allow("self")
    if permission is not None and has_permission(identity.role, permission):
        return AuthorizationDecision.allow("permission")
    return AuthorizationDecision.deny(
        "not_owner_or_missing_permission",
        targetId=target_id,
        requiredPermission=permission.value if permission else None,
        role=identity.role,
    )


def evaluate_superuser(identity: Identity) -> AuthorizationDecision:
    if identity.is_superuser:
        return AuthorizationDecision.allow()
    return AuthorizationDecision.deny("superuser_required", role=identity.role)


def can_assign_role(actor_role: str, target_role: str) -> bool:
    """Strict privilege order: a role may only assign roles below its own level."""
    actor_level = get_role_level(actor_role)
    target_level = get_role_level(target_role)
    if actor_level is None or target_level is None:
        return False
    return target_level < actor_level


def evaluate_role_hierarchy(identity: Identity, target_role: Optional[str]) -> AuthorizationDecision:
    """
    Role-assignment check.

    Superusers bypass it, and a request without a target role has nothing
    to check.
    """
    if identity.is_superuser:
        return AuthorizationDecision.allow("superuser")
    if not target_role:
        return AuthorizationDecision.allow("no_target_role")

    user_level = get_role_level(identity.role)
    target_level = get_role_level(target_role)
    if target_level is None:
        return AuthorizationDecision.deny(
            "unknown_role",
            userRole=identity.role,
            attemptedRole=target_role,
            userLevel=user_level,
        )
    if not can_assign_role(identity.role, target_role):
        return AuthorizationDecision.deny(
            "role_hierarchy_violation",
            userRole=identity.role,
            attemptedRole=target_role,
            userLevel=user_level,
            targetLevel=target_level,
        )
    return AuthorizationDecision.allow()


# =============================================================================
# Target extraction
# =============================================================================

class TargetSource(str, enum.Enum):
    PARAMS = "params"
    BODY = "body"
    QUERY = "query"


class TargetIdExtractor:
    """
    Reads one named value from the request, trying sources in order.

    Body values are only read from a JSON object body; anything else counts
    as absent.
    """

    def __init__(self, name: str, sources: Sequence[TargetSource]):
        if not sources:
            raise ValueError("TargetIdExtractor needs at least one source")
        self.name = name
        self.sources = tuple(sources)

    async def _read_body(self, request: Request) -> dict[str, Any]:
        if "application/json" not in request.headers.get("content-type", ""):
            return {}
        try:
            body = await request.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    async def extract(self, request: Request) -> Optional[str]:
        for source in self.sources:
            if source is TargetSource.PARAMS:
                value = request.path_params.get(self.name)
            elif source is TargetSource.BODY:
                value = (await self._read_body(request)).get(self.name)
            else:
                value = request.query_params.get(self.name)
            if value is not None and value != "":
                return str(value)
        return None


DEFAULT_TARGET_SOURCES = (TargetSource.PARAMS, TargetSource.BODY, TargetSource.QUERY)
ROLE_FIELD_SOURCES = (TargetSource.BODY, TargetSource.PARAMS, TargetSource.QUERY)


# =============================================================================
# Dependencies
# =============================================================================

async def _audit_denial(
    request: Request,
    identity: Identity,
    decision: AuthorizationDecision,
    entity_id: Optional[str] = None,
) -> None:
    """Record a denial against the request's tenant, if it has one."""
    context = get_tenant_context(request)
    connection = context.connection if context is not None and context.has_tenant else None
    schema = context.schema_name if connection is not None else None

    logger.warning(
        "Authorization denied",
        extra={
            "user_id": identity.id,
            "role": identity.role,
            "reason": decision.reason,
            "tenant_id": context.tenant_id if context else None,
            "path": request.url.path,
            "method": request.method,
        },
    )
    attempt = UnauthorizedAttempt.from_request(
        request,
        reason=decision.reason,
        user_id=identity.id,
        details=decision.details,
        entity_id=entity_id,
    )
    await get_services(request).audit.log_unauthorized_attempt(connection, schema, attempt)


def require_role(*allowed_roles: RoleLike):
    """
    Dependency requiring the primary role to be one of allowed_roles.

    Usage:
        @router.get("/admin/classes", dependencies=[Depends(require_role(Role.ADMIN))])
    """
    allowed = tuple(_role_value(role) for role in allowed_roles)

    async def dependency(request: Request, identity: Identity = Depends(require_identity)) -> Identity:
        decision = evaluate_role(identity, allowed)
        if not decision.allowed:
            await _audit_denial(request, identity, decision)
            raise PermissionDeniedError(details={"reason": decision.reason})
        return identity

    return dependency


def require_permission(permission: Permission):
    """Dependency requiring the primary role to hold permission."""

    async def dependency(request: Request, identity: Identity = Depends(require_identity)) -> Identity:
        decision = evaluate_permission(identity, permission)
        if not decision.allowed:
            await _audit_denial(request, identity, decision)
            raise PermissionDeniedError(details={"reason": decision.reason})
        logger.debug(
            "Permission check passed",
            extra={"user_id": identity.id, "permission": permission.value},
        )
        return identity

    return dependency


def require_any_permission(*permissions: Permission):
    async def dependency(request: Request, identity: Identity = Depends(require_identity)) -> Identity:
        decision = evaluate_any_permission(identity, permissions)
        if not decision.allowed:
            await _audit_denial(request, identity, decision)
            raise PermissionDeniedError(details={"reason": decision.reason})
        return identity

    return dependency


def require_all_permissions(*permissions: Permission):
    async def dependency(request: Request, identity: Identity = Depends(require_identity)) -> Identity:
        decision = evaluate_all_permissions(identity, permissions)
        if not decision.allowed:
            await _audit_denial(request, identity, decision)
            raise PermissionDeniedError(details={"reason": decision.reason})
        return identity

    return dependency


def require_self_or_permission(
    permission: Optional[Permission] = None,
    id_param: str = "id",
    sources: Sequence[TargetSource] = DEFAULT_TARGET_SOURCES,
):
    """
    Dependency allowing the resource owner, or anyone holding permission.

    The target id is read from path params, then JSON body, then query
    string (override with sources). A request with no target id fails with
    400 before any permission is evaluated.
    """
    extractor = TargetIdExtractor(id_param, sources)

    async def dependency(request: Request, identity: Identity = Depends(require_identity)) -> Identity:
        target_id = await extractor.extract(request)
        if target_id is None:
            raise MissingTargetIdError(details={"id_param": id_param})

        decision = evaluate_self_or_permission(identity, target_id, permission)
        if decision.allowed:
            return identity

        context = get_tenant_context(request)
        if context is None or not context.has_tenant:
            raise TenantContextMissingError()

        await _audit_denial(request, identity, decision, entity_id=target_id)
        raise PermissionDeniedError(details={"reason": decision.reason})

    return dependency


def require_superuser():
    async def dependency(request: Request, identity: Identity = Depends(require_identity)) -> Identity:
        decision = evaluate_superuser(identity)
        if not decision.allowed:
            await _audit_denial(request, identity, decision)
            raise PermissionDeniedError(
                message="Superuser access required",
                details={"reason": decision.reason},
            )
        return identity

    return dependency


def enforce_role_hierarchy(
    field_name: str = "role",
    sources: Sequence[TargetSource] = ROLE_FIELD_SOURCES,
):
    """
    Dependency for role-assignment endpoints.

    The acting user may only assign a role strictly below their own level
    (superadmin 5 > admin 4 > hod 3 > teacher 2 > student 1).
    """
    extractor = TargetIdExtractor(field_name, sources)

    async def dependency(request: Request, identity: Identity = Depends(require_identity)) -> Identity:
        if identity.is_superuser:
            return identity

        target_role = await extractor.extract(request)
        decision = evaluate_role_hierarchy(identity, target_role)
        if not decision.allowed:
            await _audit_denial(request, identity, decision)
            if decision.reason == "unknown_role":
                raise RoleHierarchyViolationError(
                    message="Cannot assign unknown role",
                    details={"reason": decision.reason},
                )
            raise RoleHierarchyViolationError(details={"reason": decision.reason})
        return identity

    return dependency
