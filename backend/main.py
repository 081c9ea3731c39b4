"""
FastAPI application entry point for SchoolHub.

Multi-tenant enforcement is applied per router: tenant-scoped routers
declare TenantResolver and enforce_tenant_isolation as router dependencies,
and RequestLifecycleMiddleware guarantees each request's scoped connection
is released exactly once.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from schoolhub.api.routes import health, users
from schoolhub.config.settings import Settings
from schoolhub.platform.container import ServiceContainer
from schoolhub.platform.errors import register_error_handlers
from schoolhub.platform.lifecycle import RequestLifecycleMiddleware

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    # Configure structured logging
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    services: ServiceContainer = app.state.services

    # Startup
    logger.info("Starting SchoolHub API")
    await services.startup()
    app.state.database_configured = services.pool is not None
    app.state.auth_configured = services.tokens is not None
    logger.info(
        "Services ready",
        extra={
            "database_configured": app.state.database_configured,
            "auth_configured": app.state.auth_configured,
        },
    )

    yield

    # Shutdown
    logger.info("Shutting down SchoolHub API")
    await services.shutdown()


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[ServiceContainer] = None,
) -> FastAPI:
    """
    Build the application.

    Tests pass their own ServiceContainer; production builds one from the
    environment.
    """
    if services is None:
        settings = settings or Settings.from_env()
        services = ServiceContainer.from_settings(settings)

    app = FastAPI(
        title="SchoolHub API",
        description="Multi-tenant school management with per-tenant schema isolation",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services

    register_error_handlers(app)

    # CRITICAL: finalizes per-request resources on completion and disconnect
    app.add_middleware(RequestLifecycleMiddleware)

    # Health route (no authentication, no tenant)
    app.include_router(health.router)

    # Tenant-scoped routes
    app.include_router(users.router)

    return app


settings = Settings.from_env()
configure_logging(settings.log_level)
app = create_app(settings)


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENV") == "development"
    )
