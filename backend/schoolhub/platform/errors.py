"""
Consistent error handling for SchoolHub.

Every error that crosses the HTTP boundary is an AppError carrying a status
code, a stable machine-readable code and a human-readable message. The JSON
body is always {"message": ..., "code": ...}.

SECURITY: `details` are for server-side logs only. They are never rendered
into responses (no SQL, schema names or stack traces leave the process).
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base exception for errors with a well-defined HTTP rendering."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: Optional[str] = "INTERNAL_ERROR"
    message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message or self.message
        self.code = code or self.code
        self.status_code = status_code or self.status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON response."""
        body: dict[str, Any] = {"message": self.message}
        if self.code:
            body["code"] = self.code
        return body


class AuthenticationError(AppError):
    """Missing, invalid or expired bearer credential (401)."""
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHORIZED"
    message = "Authentication required"


class PermissionDeniedError(AppError):
    """Role or permission check failed (403). Message is deliberately generic."""
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"
    message = "Forbidden"


class RoleHierarchyViolationError(PermissionDeniedError):
    """Attempt to assign a role equal to or above the actor's own."""
    code = "ROLE_HIERARCHY_VIOLATION"
    message = "Cannot assign role equal to or higher than your own"


class TenantIsolationError(AppError):
    """Base class for tenant isolation failures."""
    status_code = status.HTTP_403_FORBIDDEN
    code = "TENANT_ISOLATION"
    message = "Tenant isolation violation"


class TenantContextRequiredError(TenantIsolationError):
    """No tenant context for a non-superuser on a tenant-scoped route."""
    code = "TENANT_CONTEXT_REQUIRED"
    message = "Tenant context required"


class TenantContextMissingError(TenantIsolationError):
    """A downstream check needs tenant context that was never attached."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = "TENANT_CONTEXT_MISSING"
    message = "Tenant context is required for this operation"


class TenantMismatchError(TenantIsolationError):
    """Identity's tenant claim differs from the resolved tenant."""
    code = "TENANT_MISMATCH"
    message = "Access denied: tenant mismatch"


class TenantNotFoundError(AppError):
    """A tenant hint was supplied but no active tenant matches it."""
    status_code = status.HTTP_404_NOT_FOUND
    code = "TENANT_NOT_FOUND"
    message = "Tenant not found"


class InvalidSchemaNameError(AppError):
    """
    A tenant record carries an unsafe schema name.

    This is a configuration/safety failure, not a client error: the request
    is aborted before any statement touches the schema.
    """
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "TENANT_CONFIGURATION_ERROR"
    message = "Tenant configuration error"


class TenantContextConflictError(AppError):
    """Tenant context was attached by something other than the resolver."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "TENANT_CONTEXT_CONFLICT"
    message = "Internal server error"


class MissingTargetIdError(AppError):
    """Self-or-permission check could not find the target identifier."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = "MISSING_TARGET_ID"
    message = "Missing target id"


class ServiceUnavailableError(AppError):
    """A required backing service is not configured."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "SERVICE_UNAVAILABLE"
    message = "Service unavailable"


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render an AppError as {message, code}."""
    log_extra = {
        "path": request.url.path,
        "method": request.method,
        "code": exc.code,
        "status_code": exc.status_code,
        **exc.details,
    }
    if exc.status_code >= 500:
        logger.error(exc.message, extra=log_extra)
    else:
        logger.info("Request rejected", extra=log_extra)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Generic 500 for anything else (including pool exhaustion); internals stay in the logs."""
    logger.exception(
        "Unhandled error",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
        },
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": "Internal server error", "code": "INTERNAL_ERROR"},
    )


def register_error_handlers(app: FastAPI) -> None:
    """Install the AppError and catch-all handlers on an application."""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
