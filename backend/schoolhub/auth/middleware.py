"""
FastAPI authentication dependencies.

This module provides:
- Bearer token extraction (HTTPBearer, non-raising)
- Identity resolution with per-request caching on request.state
- A dependency that rejects unauthenticated callers with 401

Request Flow:
1. HTTPBearer extracts the token from the Authorization header
2. Token verified by the application's AccessTokenService
3. Identity built from the verified claims and cached on request.state
4. Tenant resolution and authorization dependencies read it from there

Usage:

    # Require authentication in routes
    @router.get("/me")
    async def me(identity: Identity = Depends(require_identity)):
        return {"user_id": identity.id}

    # Optional authentication
    @router.get("/public")
    async def public_route(identity: Optional[Identity] = Depends(get_current_identity)):
        ...
"""

import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from schoolhub.auth.identity import Identity
from schoolhub.platform.container import get_services
from schoolhub.platform.errors import AuthenticationError

logger = logging.getLogger(__name__)

IDENTITY_STATE_KEY = "identity"

# HTTP Bearer security scheme; missing credentials are handled here, not by FastAPI
security = HTTPBearer(auto_error=False)


def get_request_identity(request: Request) -> Optional[Identity]:
    """Identity already established for this request, if any."""
    identity = getattr(request.state, IDENTITY_STATE_KEY, None)
    return identity if isinstance(identity, Identity) else None


async def get_current_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[Identity]:
    """
    Resolve the caller's identity from the bearer token.

    Returns None when no bearer token was sent. A token that is present but
    invalid or expired is rejected with 401 rather than treated as anonymous.
    """
    cached = get_request_identity(request)
    if cached is not None:
        return cached

    if credentials is None:
        return None

    tokens = get_services(request).require_tokens()
    claims = tokens.verify(credentials.credentials)
    identity = claims.to_identity()
    setattr(request.state, IDENTITY_STATE_KEY, identity)

    logger.debug(
        "Request authenticated",
        extra={"user_id": identity.id, "role": identity.role, "tenant_id": identity.tenant_id},
    )
    return identity


async def require_identity(
    identity: Optional[Identity] = Depends(get_current_identity),
) -> Identity:
    if identity is None:
        raise AuthenticationError()
    return identity
