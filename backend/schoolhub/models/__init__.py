"""
Shared-schema tables read by the request pipeline.

Tenant-owned tables live in each tenant's schema and are reached through a
scoped connection, not through these definitions.
"""

from schoolhub.models.tenant import SHARED_SCHEMA, TenantRecord, TenantStatus, shared_metadata, tenants_table
from schoolhub.models.user_role import AdditionalRoleGrant, user_roles_table

__all__ = [
    "SHARED_SCHEMA",
    "shared_metadata",
    "TenantRecord",
    "TenantStatus",
    "tenants_table",
    "AdditionalRoleGrant",
    "user_roles_table",
]
