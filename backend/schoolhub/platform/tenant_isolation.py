"""
Tenant isolation guard.

A second, independent check applied after TenantResolver: the resolved
tenant must match the tenant the caller's token was issued for. It never
resolves tenant context itself.

Security rules:
1. Superusers bypass the match check. If they did select a tenant, the
   scoped connection is probed for the expected schema (log only).
2. Non-superusers must have a tenant and a scoped connection (403).
3. A tenantId claim that differs from the resolved tenant is rejected (403)
   and logged for security review.
"""

import logging
from typing import Optional

from fastapi import Depends, Request

from schoolhub.auth.identity import Identity
from schoolhub.auth.middleware import get_current_identity
from schoolhub.platform.container import get_services
from schoolhub.platform.errors import (
    AuthenticationError,
    TenantContextMissingError,
    TenantContextRequiredError,
    TenantMismatchError,
)
from schoolhub.platform.tenant_context import TenantContext, get_tenant_context

logger = logging.getLogger(__name__)


async def enforce_tenant_isolation(
    request: Request,
    identity: Optional[Identity] = Depends(get_current_identity),
) -> Optional[TenantContext]:
    """
    Verify the resolved tenant belongs to the caller.

    Returns the tenant context unchanged so downstream code sees the same
    value whichever guards ran.
    """
    if identity is None:
        raise AuthenticationError()

    context = get_tenant_context(request)
    services = get_services(request)

    if identity.is_superuser:
        if context is not None and context.has_tenant:
            await services.consistency_probe.check(context.connection, context.schema_name)
        return context

    if context is None or not context.has_tenant:
        logger.warning(
            "Tenant context required for non-superuser",
            extra={"user_id": identity.id, "role": identity.role, "path": request.url.path},
        )
        raise TenantContextRequiredError()

    if identity.tenant_id and identity.tenant_id != context.tenant_id:
        logger.warning(
            "Tenant mismatch: identity attempting to access a different tenant",
            extra={
                "user_id": identity.id,
                "user_tenant_id": identity.tenant_id,
                "request_tenant_id": context.tenant_id,
                "role": identity.role,
                "path": request.url.path,
            },
        )
        raise TenantMismatchError()

    await services.consistency_probe.check(context.connection, context.schema_name)
    return context


async def require_tenant_context(request: Request) -> TenantContext:
    """
    Tenant context with a scoped connection, for handlers that need one.

    Raises:
        TenantContextMissingError: no tenant was resolved for this request
    """
    context = get_tenant_context(request)
    if context is None or not context.has_tenant:
        raise TenantContextMissingError()
    return context
