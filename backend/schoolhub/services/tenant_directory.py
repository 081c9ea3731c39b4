"""
Tenant directory lookups against the shared schema.

Resolves an opaque tenant identifier (tenant id, schema name, or the
subdomain label of the tenant's registered domain) to a TenantRecord.

No retries: lookup failures propagate. A retry here would only hide a
misconfigured database.
"""

import logging
from typing import Optional

from sqlalchemy import case, func, or_, select

from schoolhub.models.tenant import TenantRecord, TenantStatus, tenants_table

logger = logging.getLogger(__name__)


class TenantDirectory:
    """Looks up tenants in shared.tenants using short-lived pooled connections."""

    def __init__(self, pool):
        self._pool = pool

    @staticmethod
    def build_lookup_query(identifier: str):
        t = tenants_table
        return (
            select(t.c.id, t.c.schema_name, t.c.name)
            .where(
                or_(
                    t.c.id == identifier,
                    t.c.schema_name == identifier,
                    func.split_part(t.c.domain, ".", 1) == identifier,
                ),
                t.c.status == TenantStatus.ACTIVE.value,
            )
            # Prefer an exact id match, then a schema name match; ties break on id.
            .order_by(
                case(
                    (t.c.id == identifier, 0),
                    (t.c.schema_name == identifier, 1),
                    else_=2,
                ),
                t.c.id,
            )
            .limit(1)
        )

    async def find(self, identifier: str) -> Optional[TenantRecord]:
        """Return the active tenant matching identifier, or None."""
        identifier = (identifier or "").strip()
        if not identifier:
            return None

        connection = await self._pool.connect()
        try:
            result = await connection.execute(self.build_lookup_query(identifier))
            row = result.mappings().first()
        finally:
            await connection.close()

        if row is None:
            logger.info("Tenant lookup found no match", extra={"tenant_hint": identifier})
            return None
        return TenantRecord.from_row(row)
