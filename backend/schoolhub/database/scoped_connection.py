"""
Tenant schema-scoped connections.

A ScopedConnection is a pooled connection whose session search_path has been
pointed at one tenant's schema (falling back to public for shared lookups).
It is owned by exactly one request and must be released exactly once; the
release resets the search_path to the neutral default before the connection
goes back to the pool, so the next borrower never inherits another tenant's
scope.

Handlers must commit their own work: any transaction still open at release
time is rolled back.
"""

import logging
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

from schoolhub.models.tenant import TenantRecord
from schoolhub.platform.errors import InvalidSchemaNameError

logger = logging.getLogger(__name__)

SCHEMA_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")
NEUTRAL_SEARCH_PATH = "public"


class ConnectionReleasedError(RuntimeError):
    """Raised when a scoped connection is used after it was released."""


def is_valid_schema_name(schema_name: Optional[str]) -> bool:
    return bool(schema_name) and SCHEMA_NAME_PATTERN.fullmatch(schema_name) is not None


def assert_valid_schema_name(schema_name: Optional[str]) -> str:
    """
    Reject any schema name outside [A-Za-z0-9_]+.

    Never sanitizes: an unsafe name means the tenant record itself is bad,
    and the request must fail closed.
    """
    if not is_valid_schema_name(schema_name):
        logger.error("Refusing unsafe tenant schema name", extra={"schema_name": repr(schema_name)})
        raise InvalidSchemaNameError(details={"reason": "invalid_schema_name"})
    return schema_name


def _search_path_sql(schema_name: str) -> str:
    return f"SET search_path TO {assert_valid_schema_name(schema_name)}, {NEUTRAL_SEARCH_PATH}"


RESET_SEARCH_PATH_SQL = f"SET search_path TO {NEUTRAL_SEARCH_PATH}"


async def _discard(connection: AsyncConnection) -> None:
    """Drop a connection whose session state is unknown instead of pooling it."""
    try:
        await connection.invalidate()
    finally:
        await connection.close()


class ScopedConnection:
    """A pooled connection scoped to a single tenant schema."""

    def __init__(self, connection: AsyncConnection, tenant: TenantRecord):
        self._connection = connection
        self._tenant = tenant
        self._released = False

    @classmethod
    async def open(cls, pool, tenant: TenantRecord) -> "ScopedConnection":
        """
        Acquire a connection from the pool and scope it to the tenant schema.

        The schema name is validated before the pool is touched. If the
        scoping statement fails the connection is discarded and the error
        propagates.
        """
        statement = _search_path_sql(tenant.schema_name)
        connection = await pool.connect()
        try:
            await connection.execute(text(statement))
            # SET is transactional in Postgres; commit so a later rollback
            # by the handler does not undo the scope.
            await connection.commit()
        except BaseException:
            logger.error(
                "Failed to scope connection to tenant schema",
                extra={"tenant_id": tenant.id},
                exc_info=True,
            )
            await _discard(connection)
            raise
        logger.debug("Scoped connection opened", extra={"tenant_id": tenant.id})
        return cls(connection, tenant)

    @property
    def tenant(self) -> TenantRecord:
        return self._tenant

    @property
    def schema_name(self) -> str:
        return self._tenant.schema_name

    @property
    def is_released(self) -> bool:
        return self._released

    @property
    def connection(self) -> AsyncConnection:
        if self._released:
            raise ConnectionReleasedError(
                f"Scoped connection for tenant {self._tenant.id} has already been released"
            )
        return self._connection

    async def execute(self, statement, parameters: Optional[dict[str, Any]] = None):
        if isinstance(statement, str):
            statement = text(statement)
        return await self.connection.execute(statement, parameters)

    async def commit(self) -> None:
        await self.connection.commit()

    async def rollback(self) -> None:
        await self.connection.rollback()

    async def current_schema(self) -> Optional[str]:
        result = await self.execute("SELECT current_schema()")
        return result.scalar()

    async def release(self) -> bool:
        """
        Reset the session scope and return the connection to the pool.

        Idempotent: only the first call does any work and returns True. The
        released flag flips before the first await so a concurrent second
        caller is a no-op. If the reset fails the connection is invalidated
        so the pool never hands out a tenant-scoped session.
        """
        if self._released:
            return False
        self._released = True
        connection = self._connection
        try:
            if connection.in_transaction():
                await connection.rollback()
            await connection.execute(text(RESET_SEARCH_PATH_SQL))
            await connection.commit()
        except Exception:
            logger.error(
                "Failed to reset search_path on release; invalidating connection",
                extra={"tenant_id": self._tenant.id},
                exc_info=True,
            )
            await _discard(connection)
            return True
        await connection.close()
        logger.debug("Scoped connection released", extra={"tenant_id": self._tenant.id})
        return True

    def __repr__(self) -> str:
        state = "released" if self._released else "active"
        return f"ScopedConnection(tenant_id={self._tenant.id}, {state})"


@asynccontextmanager
async def tenant_search_path(pool, tenant: TenantRecord) -> AsyncIterator[ScopedConnection]:
    """
    Run a block against a tenant schema outside of a request.

    Usage:
        async with tenant_search_path(pool, tenant) as scoped:
            await scoped.execute("SELECT count(*) FROM students")
    """
    scoped = await ScopedConnection.open(pool, tenant)
    try:
        yield scoped
    finally:
        await scoped.release()
