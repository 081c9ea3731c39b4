"""
Application service container.

Holds the explicitly constructed, process-wide services (pool, tenant
directory, token service, audit sink, consistency probe). One container is
built per application in create_app(), started in the lifespan, and stored on
app.state.services. Tests build their own container with fakes.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from schoolhub.auth.jwt import AccessTokenService
from schoolhub.config.settings import Settings
from schoolhub.database.pool import DatabasePool
from schoolhub.platform.audit import AuditSink
from schoolhub.platform.errors import ServiceUnavailableError
from schoolhub.platform.consistency import SchemaConsistencyProbe
from schoolhub.services.tenant_directory import TenantDirectory

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    pool: Optional[DatabasePool]
    tenant_directory: Optional[TenantDirectory]
    tokens: Optional[AccessTokenService]
    audit: AuditSink
    consistency_probe: SchemaConsistencyProbe

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceContainer":
        """
        Build services from settings.

        Missing DATABASE_URL / JWT_ACCESS_SECRET leave the matching service
        unset; requests that need it get a 503 instead of the app refusing to
        import.
        """
        pool = DatabasePool.from_settings(settings) if settings.database_url else None
        tokens = None
        if settings.jwt_access_secret:
            tokens = AccessTokenService(
                settings.jwt_access_secret,
                algorithm=settings.jwt_algorithm,
                ttl_seconds=settings.jwt_access_ttl_seconds,
            )
        return cls(
            settings=settings,
            pool=pool,
            tenant_directory=TenantDirectory(pool) if pool else None,
            tokens=tokens,
            audit=AuditSink(),
            consistency_probe=SchemaConsistencyProbe(),
        )

    async def startup(self) -> None:
        if self.pool is None:
            logger.error("DATABASE_URL is not set. Tenant-scoped endpoints will return 503.")
        else:
            await self.pool.startup()
        if self.tokens is None:
            logger.warning("JWT_ACCESS_SECRET is not set. Authenticated endpoints will return 503.")

    async def shutdown(self) -> None:
        if self.pool is not None:
            await self.pool.shutdown()

    def require_pool(self) -> DatabasePool:
        if self.pool is None:
            raise ServiceUnavailableError("Database not configured")
        return self.pool

    def require_tenant_directory(self) -> TenantDirectory:
        if self.tenant_directory is None:
            raise ServiceUnavailableError("Database not configured")
        return self.tenant_directory

    def require_tokens(self) -> AccessTokenService:
        if self.tokens is None:
            raise ServiceUnavailableError("Authentication service not configured")
        return self.tokens


def get_services(request: Request) -> ServiceContainer:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise ServiceUnavailableError("Application services not initialised")
    return services
