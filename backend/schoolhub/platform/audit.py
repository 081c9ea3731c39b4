"""
Audit logging for authorization denials.

Every authorization denial (other than a plain missing-authentication 401)
is recorded so "who tried what, and why was it denied" can be reconstructed:

- always as a structured WARNING log line, and
- when a tenant-scoped connection is available, as an append-only row in
  <tenant schema>.audit_logs.

CRITICAL: audit writing never crashes the request. A failed insert is rolled
back and the event goes to the fallback logger instead.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Request
from sqlalchemy import text

from schoolhub.database.scoped_connection import assert_valid_schema_name

logger = logging.getLogger(__name__)
fallback_logger = logging.getLogger("schoolhub.audit.fallback")

UNAUTHORIZED_ACCESS_ATTEMPT = "UNAUTHORIZED_ACCESS_ATTEMPT"


def extract_client_info(request: Request) -> tuple[Optional[str], Optional[str]]:
    """
    Extract client IP and user agent from request.

    Handles X-Forwarded-For for proxied requests.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        ip_address = forwarded_for.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("User-Agent")


@dataclass
class UnauthorizedAttempt:
    """An authorization denial, ready to be written to the audit trail."""

    path: str
    method: str
    reason: str
    user_id: Optional[str] = None
    entity_id: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_request(
        cls,
        request: Request,
        reason: str,
        user_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        entity_id: Optional[str] = None,
    ) -> "UnauthorizedAttempt":
        ip_address, user_agent = extract_client_info(request)
        return cls(
            path=request.url.path,
            method=request.method,
            reason=reason,
            user_id=user_id,
            entity_id=entity_id,
            details=dict(details or {}),
            ip_address=ip_address,
            user_agent=user_agent,
        )

    def to_details(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "method": self.method,
            "reason": self.reason,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            **self.details,
        }


class AuditSink:
    """Writes unauthorized-attempt events."""

    async def log_unauthorized_attempt(
        self,
        connection,
        schema: Optional[str],
        attempt: UnauthorizedAttempt,
    ) -> bool:
        """
        Record a denial. Returns True if the event reached the database.

        Without a scoped connection and schema (no tenant context) the event
        is only logged.
        """
        logger.warning(
            "Unauthorized access attempt",
            extra={
                "user_id": attempt.user_id,
                "path": attempt.path,
                "method": attempt.method,
                "reason": attempt.reason,
                "audit_details": attempt.details,
            },
        )

        if connection is None or not schema:
            return False

        try:
            schema = assert_valid_schema_name(schema)
            statement = text(
                f"INSERT INTO {schema}.audit_logs "
                "(user_id, action, entity_type, entity_id, details, created_at) "
                "VALUES (:user_id, :action, :entity_type, :entity_id, CAST(:details AS jsonb), :created_at)"
            )
            await connection.execute(
                statement,
                {
                    "user_id": attempt.user_id,
                    "action": UNAUTHORIZED_ACCESS_ATTEMPT,
                    "entity_type": "ACCESS",
                    "entity_id": attempt.entity_id,
                    "details": json.dumps(attempt.to_details(), default=str),
                    "created_at": attempt.timestamp,
                },
            )
            await connection.commit()
            return True
        except Exception as e:
            try:
                await connection.rollback()
            except Exception:
                logger.debug("Audit rollback failed", exc_info=True)
            self._write_fallback(attempt, str(e))
            return False

    @staticmethod
    def _write_fallback(attempt: UnauthorizedAttempt, error_reason: str) -> None:
        """Write audit event to fallback logger when the primary write fails."""
        fallback_entry = {
            "user_id": attempt.user_id,
            "action": UNAUTHORIZED_ACCESS_ATTEMPT,
            "entity_id": attempt.entity_id,
            "timestamp": attempt.timestamp.isoformat(),
            "details": attempt.to_details(),
            "fallback_reason": error_reason,
        }
        fallback_logger.error(
            "Audit log fallback",
            extra={"audit_entry": json.dumps(fallback_entry, default=str)},
        )
