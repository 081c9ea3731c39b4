"""
Shared test configuration and fixtures.

No real database is used. FakePool hands out FakeConnection objects that
mimic the parts of SQLAlchemy's AsyncConnection the request pipeline uses
and record every statement, so tests can assert on the exact SQL that
scoped, reset and audited a connection.
"""

import re
from typing import Any, Optional

import pytest
from fastapi import APIRouter, Depends, Request
from fastapi.testclient import TestClient

from main import create_app
from schoolhub.auth.jwt import AccessTokenService
from schoolhub.config.settings import Settings
from schoolhub.models.tenant import TenantRecord
from schoolhub.platform.audit import AuditSink
from schoolhub.platform.consistency import SchemaConsistencyProbe
from schoolhub.platform.container import ServiceContainer
from schoolhub.platform.tenant_context import TenantContext, TenantResolver, get_tenant_context
from schoolhub.platform.tenant_isolation import enforce_tenant_isolation

TEST_JWT_SECRET = "test-access-secret"

TENANT_A = TenantRecord(id="t-123", schema_name="school_a", name="School A")
TENANT_B = TenantRecord(id="t-456", schema_name="school_b", name="School B")
UNSAFE_TENANT = TenantRecord(id="t-evil", schema_name="school_a; DROP TABLE users", name="Evil")

_SEARCH_PATH_RE = re.compile(r"SET search_path TO (\w+)")


# ============================================================================
# FAKES
# ============================================================================

class FakeResult:
    def __init__(self, rows: Optional[list[dict[str, Any]]] = None):
        self._rows = list(rows or [])

    def mappings(self):
        return self

    def all(self):
        return list(self._rows)

    def first(self):
        return self._rows[0] if self._rows else None

    def scalar(self):
        if not self._rows:
            return None
        return next(iter(self._rows[0].values()))


class FakeConnection:
    """Stand-in for sqlalchemy.ext.asyncio.AsyncConnection."""

    def __init__(self, results=None, fail_on: Optional[str] = None):
        self.results = results if results is not None else {}
        self.fail_on = fail_on
        self.executed: list[tuple[str, Optional[dict]]] = []
        self.search_path = "public"
        self.commits = 0
        self.rollbacks = 0
        self.close_count = 0
        self.invalidated = False
        self._in_transaction = False

    @property
    def statements(self) -> list[str]:
        return [sql for sql, _ in self.executed]

    def count(self, fragment: str) -> int:
        return sum(1 for sql in self.statements if fragment in sql)

    def in_transaction(self) -> bool:
        return self._in_transaction

    async def execute(self, statement, parameters=None):
        sql = str(statement)
        self.executed.append((sql, parameters))
        self._in_transaction = True
        if self.fail_on and self.fail_on in sql:
            raise RuntimeError(f"statement failed: {self.fail_on}")

        match = _SEARCH_PATH_RE.match(sql)
        if match:
            self.search_path = match.group(1)
            return FakeResult()
        if "current_schema()" in sql:
            return FakeResult([{"current_schema": self.search_path}])
        for fragment, rows in self.results.items():
            if fragment in sql:
                return FakeResult(rows)
        return FakeResult()

    async def commit(self):
        self.commits += 1
        self._in_transaction = False

    async def rollback(self):
        self.rollbacks += 1
        self._in_transaction = False

    async def invalidate(self):
        self.invalidated = True

    async def close(self):
        self.close_count += 1


class FakePool:
    """Stand-in for DatabasePool recording every connection handed out."""

    def __init__(self):
        self.connections: list[FakeConnection] = []
        self.results: dict[str, list[dict[str, Any]]] = {}
        self.fail_on: Optional[str] = None
        self.connect_error: Optional[Exception] = None
        self.is_started = False

    async def startup(self):
        self.is_started = True

    async def shutdown(self):
        self.is_started = False

    async def connect(self) -> FakeConnection:
        if self.connect_error is not None:
            raise self.connect_error
        connection = FakeConnection(self.results, self.fail_on)
        self.connections.append(connection)
        return connection

    async def ping(self) -> bool:
        return True

    @property
    def last(self) -> FakeConnection:
        return self.connections[-1]


class FakeTenantDirectory:
    def __init__(self, *tenants: TenantRecord):
        self.tenants = {tenant.id: tenant for tenant in tenants}
        self.lookups: list[str] = []
        self.error: Optional[Exception] = None

    def add(self, tenant: TenantRecord, *aliases: str) -> None:
        self.tenants[tenant.id] = tenant
        for alias in aliases:
            self.tenants[alias] = tenant

    async def find(self, identifier: str) -> Optional[TenantRecord]:
        self.lookups.append(identifier)
        if self.error is not None:
            raise self.error
        return self.tenants.get(identifier)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def settings():
    return Settings(jwt_access_secret=TEST_JWT_SECRET)


@pytest.fixture
def tokens():
    return AccessTokenService(TEST_JWT_SECRET)


@pytest.fixture
def fake_pool():
    return FakePool()


@pytest.fixture
def tenant_directory():
    return FakeTenantDirectory(TENANT_A, TENANT_B)


@pytest.fixture
def services(settings, fake_pool, tenant_directory, tokens):
    return ServiceContainer(
        settings=settings,
        pool=fake_pool,
        tenant_directory=tenant_directory,
        tokens=tokens,
        audit=AuditSink(),
        consistency_probe=SchemaConsistencyProbe(),
    )


@pytest.fixture
def auth_headers(tokens):
    """Factory: bearer headers for a role, optionally bound to a tenant."""

    def _make(role: str, tenant_id: Optional[str] = None, user_id: str = "user-1", **extra_headers):
        token = tokens.issue(user_id=user_id, role=role, tenant_id=tenant_id)
        headers = {"Authorization": f"Bearer {token}"}
        headers.update(extra_headers)
        return headers

    return _make


def _probe_router() -> APIRouter:
    """Tenant-scoped routes used to exercise the pipeline end to end."""
    router = APIRouter(
        prefix="/api/probe",
        dependencies=[Depends(TenantResolver()), Depends(enforce_tenant_isolation)],
    )

    @router.get("/context")
    async def context_info(request: Request):
        context: Optional[TenantContext] = get_tenant_context(request)
        return {
            "tenant_id": context.tenant_id if context else None,
            "has_connection": bool(context and context.connection),
        }

    @router.get("/boom")
    async def boom():
        raise RuntimeError("handler failed")

    @router.get("/wait-for-disconnect")
    async def wait_for_disconnect(request: Request):
        context = get_tenant_context(request)
        message = await request.receive()
        return {"message": message["type"], "released": context.connection.is_released}

    return router


@pytest.fixture
def app(services):
    application = create_app(services=services)
    application.include_router(_probe_router())
    return application


@pytest.fixture
def client(app):
    return TestClient(app, raise_server_exceptions=False)
