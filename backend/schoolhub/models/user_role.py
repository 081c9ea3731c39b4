"""
Additional role grants.

A user holds one primary role (shared.users.role) and zero or more additional
roles in shared.user_roles, e.g. a teacher who is also head of department.
The grant's metadata carries role-specific data such as the department id.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional

from sqlalchemy import Column, DateTime, String, Table, func
from sqlalchemy.dialects.postgresql import JSONB

from schoolhub.models.tenant import shared_metadata

user_roles_table = Table(
    "user_roles",
    shared_metadata,
    Column("user_id", String(36), primary_key=True),
    Column("role_name", String(50), primary_key=True),
    Column("assigned_at", DateTime(timezone=True), server_default=func.now()),
    Column("assigned_by", String(36), nullable=True),
    Column("metadata", JSONB, nullable=True),
)


@dataclass(frozen=True)
class AdditionalRoleGrant:
    """A secondary role held alongside the primary role."""

    role: str
    granted_at: datetime
    granted_by: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "AdditionalRoleGrant":
        return cls(
            role=row["role_name"],
            granted_at=row["assigned_at"],
            granted_by=str(row["assigned_by"]) if row.get("assigned_by") else None,
            metadata=dict(row.get("metadata") or {}),
        )
