"""
Health check endpoint.

Does not require authentication or tenant context.
"""

import logging

from fastapi import APIRouter, Request

from schoolhub.platform.container import get_services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    """
    Report whether the database is reachable and auth is configured.

    Always 200 so load balancers can tell "degraded" from "down".
    """
    services = get_services(request)

    database = "not_configured"
    if services.pool is not None and services.pool.is_started:
        try:
            await services.pool.ping()
            database = "ok"
        except Exception as e:
            logger.warning("Database ping failed", extra={"error_type": type(e).__name__})
            database = "unreachable"

    return {
        "status": "healthy" if database == "ok" else "degraded",
        "database": database,
        "auth_configured": services.tokens is not None,
    }
