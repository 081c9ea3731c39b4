"""
Tenant (school) directory model.

Tenants are registered in the shared schema; each tenant's own data lives in
its own Postgres schema named by `schema_name`.

SECURITY: `schema_name` is interpolated into SQL (search_path, schema-qualified
audit inserts) and must pass assert_valid_schema_name() before every such use.
"""

import enum
from dataclasses import dataclass
from typing import Any, Mapping

from sqlalchemy import Column, DateTime, MetaData, String, Table, func

SHARED_SCHEMA = "shared"

shared_metadata = MetaData(schema=SHARED_SCHEMA)


class TenantStatus(str, enum.Enum):
    """Tenant lifecycle status."""
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DELETED = "deleted"


tenants_table = Table(
    "tenants",
    shared_metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("domain", String(255), nullable=True),
    Column("schema_name", String(63), nullable=False, unique=True),
    Column("status", String(20), nullable=False, default=TenantStatus.ACTIVE.value),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
)


@dataclass(frozen=True)
class TenantRecord:
    """Resolved tenant as seen by the request pipeline."""

    id: str
    schema_name: str
    name: str

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TenantRecord":
        return cls(
            id=str(row["id"]),
            schema_name=row["schema_name"],
            name=row["name"],
        )
