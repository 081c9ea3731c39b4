"""
Tests for tenant schema-scoped connections.

CRITICAL: a connection must never go back to the pool pointed at a tenant
schema, and an unsafe schema name must never reach SQL.
"""

import pytest

from schoolhub.database.scoped_connection import (
    ConnectionReleasedError,
    ScopedConnection,
    assert_valid_schema_name,
    is_valid_schema_name,
    tenant_search_path,
)
from schoolhub.models.tenant import TenantRecord
from schoolhub.platform.errors import InvalidSchemaNameError

from conftest import TENANT_A, UNSAFE_TENANT


# ============================================================================
# TEST SUITE: SCHEMA NAME SAFETY
# ============================================================================

class TestSchemaNameValidation:

    @pytest.mark.parametrize("name", ["school_a", "tenant_123", "ABC", "_x", "2024"])
    def test_accepts_identifier_names(self, name):
        assert is_valid_schema_name(name)
        assert assert_valid_schema_name(name) == name

    @pytest.mark.parametrize("name", [
        "",
        None,
        "school-a",
        "school a",
        "school_a; DROP TABLE users",
        "school_a,public",
        'school"a',
        "école",
        "school_a\n",
    ])
    def test_rejects_everything_else(self, name):
        assert not is_valid_schema_name(name)
        with pytest.raises(InvalidSchemaNameError) as exc_info:
            assert_valid_schema_name(name)
        assert exc_info.value.status_code == 500
        assert exc_info.value.code == "TENANT_CONFIGURATION_ERROR"

    @pytest.mark.asyncio
    async def test_unsafe_schema_never_touches_the_pool(self, fake_pool):
        with pytest.raises(InvalidSchemaNameError):
            await ScopedConnection.open(fake_pool, UNSAFE_TENANT)
        assert fake_pool.connections == []


# ============================================================================
# TEST SUITE: OPEN / RELEASE
# ============================================================================

class TestScopedConnectionLifecycle:

    @pytest.mark.asyncio
    async def test_open_scopes_and_commits(self, fake_pool):
        scoped = await ScopedConnection.open(fake_pool, TENANT_A)

        conn = fake_pool.last
        assert conn.statements == ["SET search_path TO school_a, public"]
        assert conn.commits == 1
        assert scoped.schema_name == "school_a"
        assert await scoped.current_schema() == "school_a"

    @pytest.mark.asyncio
    async def test_release_resets_then_closes(self, fake_pool):
        scoped = await ScopedConnection.open(fake_pool, TENANT_A)
        conn = fake_pool.last

        assert await scoped.release() is True

        assert conn.statements[-1] == "SET search_path TO public"
        assert conn.search_path == "public"
        assert conn.close_count == 1
        assert not conn.invalidated

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self, fake_pool):
        scoped = await ScopedConnection.open(fake_pool, TENANT_A)
        conn = fake_pool.last

        assert await scoped.release() is True
        assert await scoped.release() is False

        assert conn.count("SET search_path TO public") == 1
        assert conn.close_count == 1

    @pytest.mark.asyncio
    async def test_release_rolls_back_uncommitted_work(self, fake_pool):
        scoped = await ScopedConnection.open(fake_pool, TENANT_A)
        conn = fake_pool.last
        await scoped.execute("UPDATE students SET name = 'x'")

        await scoped.release()

        assert conn.rollbacks == 1
        assert conn.statements.index("SET search_path TO public") > conn.statements.index(
            "UPDATE students SET name = 'x'"
        )

    @pytest.mark.asyncio
    async def test_failed_reset_invalidates_connection(self, fake_pool):
        fake_pool.fail_on = "SET search_path TO public"
        scoped = await ScopedConnection.open(fake_pool, TENANT_A)
        conn = fake_pool.last

        assert await scoped.release() is True

        assert conn.invalidated
        assert conn.close_count == 1

    @pytest.mark.asyncio
    async def test_failed_scoping_discards_connection(self, fake_pool):
        fake_pool.fail_on = "SET search_path TO school_a"

        with pytest.raises(RuntimeError):
            await ScopedConnection.open(fake_pool, TENANT_A)

        conn = fake_pool.last
        assert conn.invalidated
        assert conn.close_count == 1

    @pytest.mark.asyncio
    async def test_use_after_release_raises(self, fake_pool):
        scoped = await ScopedConnection.open(fake_pool, TENANT_A)
        await scoped.release()

        with pytest.raises(ConnectionReleasedError):
            await scoped.execute("SELECT 1")
        assert scoped.is_released

    @pytest.mark.asyncio
    async def test_pool_errors_propagate(self, fake_pool):
        fake_pool.connect_error = TimeoutError("QueuePool limit reached")
        with pytest.raises(TimeoutError):
            await ScopedConnection.open(fake_pool, TENANT_A)


class TestTenantSearchPath:

    @pytest.mark.asyncio
    async def test_context_manager_releases(self, fake_pool):
        async with tenant_search_path(fake_pool, TENANT_A) as scoped:
            await scoped.execute("SELECT count(*) FROM students")
        assert scoped.is_released
        assert fake_pool.last.close_count == 1

    @pytest.mark.asyncio
    async def test_context_manager_releases_on_error(self, fake_pool):
        with pytest.raises(ValueError):
            async with tenant_search_path(fake_pool, TenantRecord("t-9", "school_9", "Nine")):
                raise ValueError("job failed")
        conn = fake_pool.last
        assert conn.search_path == "public"
        assert conn.close_count == 1
