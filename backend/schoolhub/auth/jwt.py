"""
Access token handling.

This module provides:
- Pydantic model for access token claims
- Issuing and verifying HS256 access tokens with PyJWT
- Conversion of verified claims into an Identity

JWT Claims Used:
- sub: user id
- tenantId: tenant the token was issued for (absent for platform superusers)
- role: primary role
- email: user email
- jti: token id (session tracking / revocation)
- exp / iat: expiry and issue timestamps
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from jwt.exceptions import InvalidTokenError
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from schoolhub.auth.identity import Identity
from schoolhub.constants.permissions import parse_role
from schoolhub.platform.errors import AuthenticationError

logger = logging.getLogger(__name__)


class AccessTokenClaims(BaseModel):
    """Validated claims of a SchoolHub access token."""

    sub: str = Field(..., min_length=1, description="User ID")
    role: str = Field(..., description="Primary role")
    exp: int = Field(..., description="Expiration timestamp (Unix)")
    iat: int = Field(..., description="Issued at timestamp (Unix)")
    tenant_id: Optional[str] = Field(None, alias="tenantId", description="Issuing tenant")
    email: Optional[str] = Field(None, description="User email")
    jti: Optional[str] = Field(None, description="Token ID")

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @field_validator("role")
    @classmethod
    def _known_role(cls, value: str) -> str:
        role = parse_role(value)
        if role is None:
            raise ValueError(f"unknown role {value!r}")
        return role.value

    @field_validator("tenant_id")
    @classmethod
    def _blank_tenant_is_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None

    def to_identity(self) -> Identity:
        return Identity(
            id=self.sub,
            role=self.role,
            tenant_id=self.tenant_id,
            email=self.email,
            token_id=self.jti,
        )


class AccessTokenService:
    """Issues and verifies access tokens with a shared secret."""

    def __init__(self, secret: str, algorithm: str = "HS256", ttl_seconds: int = 900):
        if not secret:
            raise ValueError("Access token secret must not be empty")
        self._secret = secret
        self._algorithm = algorithm
        self._ttl = timedelta(seconds=ttl_seconds)

    def issue(
        self,
        user_id: str,
        role: str,
        tenant_id: Optional[str] = None,
        email: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        now = now or datetime.now(timezone.utc)
        payload: Dict[str, Any] = {
            "sub": user_id,
            "role": role,
            "tenantId": tenant_id,
            "email": email,
            "jti": str(uuid.uuid4()),
            "iat": int(now.timestamp()),
            "exp": int((now + self._ttl).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> AccessTokenClaims:
        """
        Verify signature and expiry, then validate the claims.

        Raises:
            AuthenticationError: token is malformed, expired, badly signed or
                carries invalid claims
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": ["exp", "iat", "sub"]},
            )
        except InvalidTokenError as e:
            logger.warning("JWT verification failed", extra={"error_type": type(e).__name__})
            raise AuthenticationError("Invalid or expired token")

        try:
            return AccessTokenClaims.model_validate(payload)
        except ValidationError as e:
            logger.warning("JWT claims rejected", extra={"error_count": e.error_count()})
            raise AuthenticationError("Invalid or expired token")
