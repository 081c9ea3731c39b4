"""
Tenant resolution for SchoolHub.

Determines which school (tenant) a request acts on, checks out a pooled
connection scoped to that tenant's schema, and attaches both to the request
as an immutable TenantContext. The connection is released exactly once when
the request finishes, however it finishes.

Resolution order (first non-empty hint wins):
1. tenantId claim of the authenticated identity
2. x-tenant-id header (name configurable via TENANT_HEADER)
3. leftmost label of the Host header when the host has >= 3 labels

SECURITY:
- Only TenantResolver may attach tenant context. A context found on the
  request that the resolver did not issue is rejected (500), because the
  re-entrancy short-circuit would otherwise skip every check below.
- The schema name is validated before any connection is acquired.

Usage:

    resolve_tenant = TenantResolver()

    router = APIRouter(
        dependencies=[Depends(resolve_tenant), Depends(enforce_tenant_isolation)],
    )

    @router.get("/students")
    async def list_students(context: TenantContext = Depends(require_tenant_context)):
        result = await context.connection.execute("SELECT id, name FROM students")
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Mapping, Optional

from fastapi import Depends, Request
from starlette.requests import ClientDisconnect

from schoolhub.auth.identity import Identity
from schoolhub.auth.middleware import get_current_identity
from schoolhub.database.scoped_connection import ScopedConnection, assert_valid_schema_name
from schoolhub.models.tenant import TenantRecord
from schoolhub.platform.container import ServiceContainer, get_services
from schoolhub.platform.errors import (
    AuthenticationError,
    TenantContextConflictError,
    TenantContextRequiredError,
    TenantNotFoundError,
)
from schoolhub.platform.lifecycle import get_request_finalizer

logger = logging.getLogger(__name__)

TENANT_CONTEXT_STATE_KEY = "tenant_context"

# Issued-by marker. Never exported; a context built without it is foreign.
_RESOLVER_ISSUED = object()


class TenantHintSource(str, enum.Enum):
    CLAIM = "claim"
    HEADER = "header"
    HOST = "host"


@dataclass(frozen=True)
class TenantHint:
    identifier: str
    source: TenantHintSource


@dataclass(frozen=True)
class TenantContext:
    """
    Per-request tenant context.

    tenant and connection are both set, or both None (resolution skipped
    for a superuser or an optional route).
    """

    identity: Optional[Identity]
    tenant: Optional[TenantRecord] = None
    connection: Optional[ScopedConnection] = None
    _issuer: object = field(default=None, repr=False, compare=False)

    @property
    def has_tenant(self) -> bool:
        return self.tenant is not None and self.connection is not None

    @property
    def tenant_id(self) -> Optional[str]:
        return self.tenant.id if self.tenant else None

    @property
    def schema_name(self) -> Optional[str]:
        return self.tenant.schema_name if self.tenant else None

    @property
    def is_resolver_issued(self) -> bool:
        return self._issuer is _RESOLVER_ISSUED

    def __repr__(self) -> str:
        return (
            f"TenantContext(tenant_id={self.tenant_id}, "
            f"user_id={self.identity.id if self.identity else None})"
        )


def _host_subdomain(host: Optional[str]) -> Optional[str]:
    """Leftmost label of host (port stripped) when it has at least 3 labels."""
    if not host:
        return None
    hostname = host.strip().split(":", 1)[0]
    labels = hostname.split(".")
    if len(labels) < 3 or not labels[0]:
        return None
    return labels[0]


def extract_tenant_hint(
    identity: Optional[Identity],
    headers: Mapping[str, str],
    header_name: str = "x-tenant-id",
) -> Optional[TenantHint]:
    """Pick the highest-priority non-empty tenant hint for a request."""
    if identity is not None and identity.tenant_id:
        return TenantHint(identity.tenant_id, TenantHintSource.CLAIM)

    header_value = (headers.get(header_name) or "").strip()
    if header_value:
        return TenantHint(header_value, TenantHintSource.HEADER)

    subdomain = _host_subdomain(headers.get("host"))
    if subdomain:
        return TenantHint(subdomain, TenantHintSource.HOST)
    return None


def _attached_context(request: Request) -> Optional[TenantContext]:
    context = getattr(request.state, TENANT_CONTEXT_STATE_KEY, None)
    if context is None:
        return None
    if not isinstance(context, TenantContext) or not context.is_resolver_issued:
        logger.error(
            "Tenant context attached outside the resolver",
            extra={"path": request.url.path, "context_type": type(context).__name__},
        )
        raise TenantContextConflictError(details={"reason": "foreign_tenant_context"})
    return context


def get_tenant_context(request: Request) -> Optional[TenantContext]:
    """
    Tenant context attached by TenantResolver, or None if resolution has not run.

    Raises:
        TenantContextConflictError: something other than the resolver
            attached a context
    """
    return _attached_context(request)


class TenantResolver:
    """
    FastAPI dependency resolving the tenant and owning its scoped connection.

    optional=True tolerates a missing or unknown tenant (the request proceeds
    with an empty context) instead of failing with 403/404.
    """

    def __init__(self, optional: bool = False):
        self.optional = optional

    async def resolve(
        self,
        services: ServiceContainer,
        identity: Optional[Identity],
        headers: Mapping[str, str],
    ) -> TenantContext:
        """
        Resolve the tenant and open its scoped connection.

        The caller owns the returned context's connection.
        """
        if identity is None and not self.optional:
            raise AuthenticationError()

        is_superuser = identity is not None and identity.is_superuser
        may_skip = is_superuser or self.optional
        user_id = identity.id if identity else None

        hint = extract_tenant_hint(identity, headers, services.settings.tenant_header)
        if hint is None:
            if may_skip:
                logger.debug(
                    "No tenant hint; proceeding without tenant context",
                    extra={"user_id": user_id, "superuser": is_superuser},
                )
                return TenantContext(identity=identity, _issuer=_RESOLVER_ISSUED)
            logger.warning(
                "Tenant context required but no tenant hint supplied",
                extra={"user_id": user_id, "role": identity.role if identity else None},
            )
            raise TenantContextRequiredError()

        tenant = await services.require_tenant_directory().find(hint.identifier)
        if tenant is None:
            if may_skip:
                logger.info(
                    "Tenant hint matched no tenant; proceeding without tenant context",
                    extra={"user_id": user_id, "tenant_hint": hint.identifier, "source": hint.source.value},
                )
                return TenantContext(identity=identity, _issuer=_RESOLVER_ISSUED)
            raise TenantNotFoundError(
                details={"tenant_hint": hint.identifier, "source": hint.source.value}
            )

        assert_valid_schema_name(tenant.schema_name)
        connection = await ScopedConnection.open(services.require_pool(), tenant)

        logger.debug(
            "Tenant resolved",
            extra={"user_id": user_id, "tenant_id": tenant.id, "source": hint.source.value},
        )
        return TenantContext(
            identity=identity,
            tenant=tenant,
            connection=connection,
            _issuer=_RESOLVER_ISSUED,
        )

    async def __call__(
        self,
        request: Request,
        identity: Optional[Identity] = Depends(get_current_identity),
    ) -> AsyncIterator[TenantContext]:
        existing = _attached_context(request)
        if existing is not None:
            # Already resolved earlier in this request; reuse it as-is.
            yield existing
            return

        context = await self.resolve(get_services(request), identity, request.headers)
        connection = context.connection

        if connection is not None:
            finalizer = get_request_finalizer(request)
            if finalizer is not None and not finalizer.register(connection.release):
                # The client went away while we were resolving.
                await connection.release()
                raise ClientDisconnect()

        setattr(request.state, TENANT_CONTEXT_STATE_KEY, context)
        try:
            yield context
        finally:
            if connection is not None:
                # No-op when the finalizer already released it.
                await connection.release()
