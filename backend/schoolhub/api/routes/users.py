"""
User API routes (tenant scoped).

Shows the canonical dependency order for tenant-scoped endpoints:
authenticate -> resolve tenant -> isolation guard -> authorization gate ->
handler. Router-level dependencies run before route-level ones, so the
tenant context and its scoped connection exist before any gate runs.

SECURITY:
- All endpoints require authentication and a resolved tenant
- USERS_MANAGE permission required for listing users and assigning roles
- A user may always read their own record
- Role assignment is limited to roles below the caller's own level
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field, field_validator

from schoolhub.auth.identity import Identity, get_effective_permissions
from schoolhub.auth.middleware import require_identity
from schoolhub.constants.permissions import Permission, parse_role
from schoolhub.platform.errors import AppError
from schoolhub.platform.rbac import (
    enforce_role_hierarchy,
    require_permission,
    require_self_or_permission,
)
from schoolhub.platform.tenant_context import TenantContext, TenantResolver
from schoolhub.platform.tenant_isolation import enforce_tenant_isolation, require_tenant_context
from schoolhub.services.role_grants import get_department_id, with_additional_roles

logger = logging.getLogger(__name__)

resolve_tenant = TenantResolver()

router = APIRouter(
    prefix="/api/users",
    tags=["users"],
    dependencies=[Depends(resolve_tenant), Depends(enforce_tenant_isolation)],
)


class UserNotFoundError(AppError):
    status_code = 404
    code = "USER_NOT_FOUND"
    message = "User not found"


# --- Request/Response Models ---


class UserResponse(BaseModel):
    id: str
    email: Optional[str] = None
    role: str


class UserListResponse(BaseModel):
    users: List[UserResponse]
    total_count: int
    tenant_id: str


class RoleAssignmentRequest(BaseModel):
    role: str = Field(..., description="Role to grant to the user")

    @field_validator("role")
    @classmethod
    def normalize_role(cls, v: str) -> str:
        """Store the canonical lowercase role name; unknown roles are rejected."""
        role = parse_role(v)
        if role is None:
            raise ValueError(f"Unknown role: {v}")
        return role.value


class PermissionsResponse(BaseModel):
    user_id: str
    roles: List[str]
    permissions: List[str]
    department_id: Optional[str] = None


# --- Endpoints ---


@router.get(
    "",
    response_model=UserListResponse,
    dependencies=[Depends(require_permission(Permission.USERS_MANAGE))],
)
async def list_users(context: TenantContext = Depends(require_tenant_context)):
    result = await context.connection.execute("SELECT id, email, role FROM users ORDER BY email")
    users = [UserResponse(id=str(row["id"]), email=row["email"], role=row["role"]) for row in result.mappings().all()]
    return UserListResponse(users=users, total_count=len(users), tenant_id=context.tenant_id)


@router.get("/me/permissions", response_model=PermissionsResponse)
async def my_permissions(
    identity: Identity = Depends(require_identity),
    context: TenantContext = Depends(require_tenant_context),
):
    """Effective permissions: primary role plus every additional role grant."""
    identity = await with_additional_roles(context.connection, identity)
    return PermissionsResponse(
        user_id=identity.id,
        roles=identity.role_names,
        permissions=sorted(p.value for p in get_effective_permissions(identity)),
        department_id=get_department_id(identity),
    )


@router.get(
    "/{id}",
    response_model=UserResponse,
    dependencies=[Depends(require_self_or_permission(Permission.USERS_MANAGE, id_param="id"))],
)
async def get_user(id: str, context: TenantContext = Depends(require_tenant_context)):
    result = await context.connection.execute(
        "SELECT id, email, role FROM users WHERE id = :id",
        {"id": id},
    )
    row = result.mappings().first()
    if row is None:
        raise UserNotFoundError()
    return UserResponse(id=str(row["id"]), email=row["email"], role=row["role"])


@router.post(
    "/{id}/role",
    response_model=UserResponse,
    dependencies=[
        Depends(require_permission(Permission.USERS_MANAGE)),
        Depends(enforce_role_hierarchy("role")),
    ],
)
async def assign_role(
    id: str,
    payload: RoleAssignmentRequest,
    request: Request,
    identity: Identity = Depends(require_identity),
    context: TenantContext = Depends(require_tenant_context),
):
    result = await context.connection.execute(
        "UPDATE users SET role = :role WHERE id = :id RETURNING id, email, role",
        {"role": payload.role, "id": id},
    )
    row = result.mappings().first()
    if row is None:
        await context.connection.rollback()
        raise UserNotFoundError()
    await context.connection.commit()

    logger.info(
        "Role assigned",
        extra={
            "tenant_id": context.tenant_id,
            "user_id": identity.id,
            "target_user_id": id,
            "role": payload.role,
            "path": request.url.path,
        },
    )
    return UserResponse(id=str(row["id"]), email=row["email"], role=row["role"])
