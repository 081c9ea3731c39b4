"""
Authentication for SchoolHub.

This module provides:
- The immutable Identity of the acting user
- HS256 access token issuing / verification
- FastAPI dependencies resolving the Identity for a request (auth.middleware)

SECURITY NOTES:
- Role and tenant are read from the verified token only
- Changing either requires a new token
"""

from schoolhub.auth.identity import Identity, get_effective_permissions, identity_has_capability
from schoolhub.auth.jwt import AccessTokenClaims, AccessTokenService

__all__ = [
    "Identity",
    "get_effective_permissions",
    "identity_has_capability",
    "AccessTokenClaims",
    "AccessTokenService",
]
