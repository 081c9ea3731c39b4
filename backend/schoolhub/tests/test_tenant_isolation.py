"""
Tenant isolation guard tests.

CRITICAL: These tests verify that:
- A caller whose token names tenant T1 never reaches data scoped to T2
- Non-superusers cannot proceed without a resolved tenant
- Superusers bypass the match check; the schema probe only logs
"""

import logging
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from starlette.requests import Request

from schoolhub.auth.identity import Identity
from schoolhub.platform.consistency import SchemaConsistencyProbe
from schoolhub.platform.errors import (
    AuthenticationError,
    TenantContextMissingError,
    TenantContextRequiredError,
    TenantMismatchError,
)
from schoolhub.platform.tenant_context import TENANT_CONTEXT_STATE_KEY, TenantResolver
from schoolhub.platform.tenant_isolation import enforce_tenant_isolation, require_tenant_context

from conftest import TENANT_A, TENANT_B, UNSAFE_TENANT

TEACHER_OF_A = Identity(id="user-1", role="teacher", tenant_id="t-123")
SUPERUSER = Identity(id="root", role="superadmin")


def make_request(services, context=None) -> Request:
    state = {TENANT_CONTEXT_STATE_KEY: context} if context is not None else {}
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/api/students",
        "query_string": b"",
        "headers": [],
        "app": SimpleNamespace(state=SimpleNamespace(services=services)),
        "state": state,
    })


# ============================================================================
# TEST SUITE: GUARD (DIRECT)
# ============================================================================

class TestEnforceTenantIsolation:

    @pytest.mark.asyncio
    async def test_matching_tenant_passes_unchanged(self, services):
        context = await TenantResolver().resolve(services, TEACHER_OF_A, {})
        request = make_request(services, context)

        assert await enforce_tenant_isolation(request, TEACHER_OF_A) is context

    @pytest.mark.asyncio
    async def test_mismatched_tenant_rejected(self, services, caplog):
        # Resolved for tenant B by a superuser, then presented by a tenant A user.
        context = await TenantResolver().resolve(services, SUPERUSER, {"x-tenant-id": "t-456"})
        request = make_request(services, context)

        with caplog.at_level(logging.WARNING, logger="schoolhub.platform.tenant_isolation"):
            with pytest.raises(TenantMismatchError) as exc_info:
                await enforce_tenant_isolation(request, TEACHER_OF_A)

        assert exc_info.value.status_code == 403
        assert exc_info.value.code == "TENANT_MISMATCH"
        record = next(r for r in caplog.records if "Tenant mismatch" in r.getMessage())
        assert record.user_tenant_id == "t-123"
        assert record.request_tenant_id == "t-456"

    @pytest.mark.asyncio
    async def test_identity_without_tenant_claim_passes(self, services):
        teacher = Identity(id="user-2", role="teacher")
        context = await TenantResolver().resolve(services, teacher, {"x-tenant-id": "t-123"})

        result = await enforce_tenant_isolation(make_request(services, context), teacher)
        assert result.tenant == TENANT_A

    @pytest.mark.asyncio
    async def test_non_superuser_without_tenant_rejected(self, services):
        context = await TenantResolver(optional=True).resolve(services, Identity(id="u", role="admin"), {})

        with pytest.raises(TenantContextRequiredError):
            await enforce_tenant_isolation(make_request(services, context), Identity(id="u", role="admin"))

    @pytest.mark.asyncio
    async def test_guard_never_resolves_by_itself(self, services, tenant_directory, fake_pool):
        with pytest.raises(TenantContextRequiredError):
            await enforce_tenant_isolation(make_request(services), TEACHER_OF_A)
        assert tenant_directory.lookups == []
        assert fake_pool.connections == []

    @pytest.mark.asyncio
    async def test_superuser_bypasses_without_tenant(self, services):
        assert await enforce_tenant_isolation(make_request(services), SUPERUSER) is None

    @pytest.mark.asyncio
    async def test_superuser_with_tenant_is_probed(self, services, fake_pool):
        context = await TenantResolver().resolve(services, SUPERUSER, {"x-tenant-id": "t-456"})

        result = await enforce_tenant_isolation(make_request(services, context), SUPERUSER)

        assert result.tenant == TENANT_B
        assert fake_pool.last.count("SELECT current_schema()") == 1

    @pytest.mark.asyncio
    async def test_unauthenticated_rejected(self, services):
        with pytest.raises(AuthenticationError):
            await enforce_tenant_isolation(make_request(services), None)


class TestRequireTenantContext:

    @pytest.mark.asyncio
    async def test_missing_context_is_400(self, services):
        with pytest.raises(TenantContextMissingError) as exc_info:
            await require_tenant_context(make_request(services))
        assert exc_info.value.status_code == 400
        assert exc_info.value.code == "TENANT_CONTEXT_MISSING"

    @pytest.mark.asyncio
    async def test_returns_context(self, services):
        context = await TenantResolver().resolve(services, TEACHER_OF_A, {})
        assert await require_tenant_context(make_request(services, context)) is context


# ============================================================================
# TEST SUITE: CONSISTENCY PROBE
# ============================================================================

class TestSchemaConsistencyProbe:

    def _scoped(self, current_schema):
        scoped = SimpleNamespace(tenant=TENANT_A, current_schema=AsyncMock(), rollback=AsyncMock())
        if isinstance(current_schema, Exception):
            scoped.current_schema.side_effect = current_schema
        else:
            scoped.current_schema.return_value = current_schema
        return scoped

    @pytest.mark.asyncio
    async def test_match(self):
        assert await SchemaConsistencyProbe().check(self._scoped("school_a"), "school_a") is True

    @pytest.mark.asyncio
    async def test_mismatch_logs_but_does_not_raise(self, caplog):
        with caplog.at_level(logging.ERROR, logger="schoolhub.platform.consistency"):
            ok = await SchemaConsistencyProbe().check(self._scoped("public"), "school_a")

        assert ok is False
        assert any("Schema routing mismatch" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_probe_failure_logs_but_does_not_raise(self, caplog):
        with caplog.at_level(logging.ERROR, logger="schoolhub.platform.consistency"):
            ok = await SchemaConsistencyProbe().check(self._scoped(RuntimeError("gone")), "school_a")

        assert ok is False
        assert any("probe failed" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_failed_check_rolls_back_aborted_transaction(self):
        scoped = self._scoped(RuntimeError("gone"))

        await SchemaConsistencyProbe().check(scoped, "school_a")

        scoped.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_successful_check_does_not_roll_back(self):
        scoped = self._scoped("school_a")

        await SchemaConsistencyProbe().check(scoped, "school_a")

        scoped.rollback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rollback_failure_is_logged_not_raised(self, caplog):
        scoped = self._scoped(RuntimeError("gone"))
        scoped.rollback.side_effect = RuntimeError("connection lost")

        with caplog.at_level(logging.ERROR, logger="schoolhub.platform.consistency"):
            ok = await SchemaConsistencyProbe().check(scoped, "school_a")

        assert ok is False
        assert any("Rollback after failed" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_guard_leaves_connection_usable_after_failed_check(self, services, fake_pool):
        """A failed schema check must not leave the handler an aborted transaction."""
        context = await TenantResolver().resolve(services, TEACHER_OF_A, {})
        fake_pool.last.fail_on = "current_schema()"

        result = await enforce_tenant_isolation(make_request(services, context), TEACHER_OF_A)

        assert result is context
        assert fake_pool.last.rollbacks == 1
        assert not fake_pool.last.in_transaction()


# ============================================================================
# TEST SUITE: END TO END
# ============================================================================

class TestIsolationOverHttp:

    def test_header_tenant_for_teacher_without_claim(self, client, auth_headers):
        """x-tenant-id t-123, teacher, empty claim: resolves t-123 and proceeds."""
        response = client.get("/api/probe/context", headers=auth_headers("teacher", **{"x-tenant-id": "t-123"}))

        assert response.status_code == 200
        assert response.json() == {"tenant_id": "t-123", "has_connection": True}

    def test_superuser_without_hint_proceeds_without_connection(self, client, auth_headers, fake_pool):
        response = client.get("/api/probe/context", headers=auth_headers("superadmin"))

        assert response.status_code == 200
        assert response.json() == {"tenant_id": None, "has_connection": False}
        assert fake_pool.connections == []

    def test_teacher_without_hint_rejected(self, client, auth_headers):
        response = client.get("/api/probe/context", headers=auth_headers("teacher"))

        assert response.status_code == 403
        assert response.json() == {"message": "Tenant context required", "code": "TENANT_CONTEXT_REQUIRED"}

    def test_claim_resolving_to_other_tenant_rejected(self, client, auth_headers, tenant_directory, fake_pool):
        # A stale claim ("school_b") that the directory maps to tenant t-456.
        tenant_directory.add(TENANT_B, "school_b")

        response = client.get("/api/probe/context", headers=auth_headers("admin", tenant_id="school_b"))

        assert response.status_code == 403
        assert response.json()["code"] == "TENANT_MISMATCH"
        assert "school_b" not in response.text
        conn = fake_pool.last
        assert conn.count("SET search_path TO public") == 1
        assert conn.close_count == 1

    def test_unknown_tenant_is_404(self, client, auth_headers):
        response = client.get("/api/probe/context", headers=auth_headers("teacher", **{"x-tenant-id": "t-nope"}))

        assert response.status_code == 404
        assert response.json()["code"] == "TENANT_NOT_FOUND"

    def test_missing_bearer_is_401(self, client):
        response = client.get("/api/probe/context", headers={"x-tenant-id": "t-123"})
        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"

    def test_invalid_bearer_is_401(self, client):
        response = client.get("/api/probe/context", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_unsafe_schema_is_500_without_details(self, client, auth_headers, tenant_directory, fake_pool):
        tenant_directory.add(UNSAFE_TENANT)

        response = client.get("/api/probe/context", headers=auth_headers("teacher", tenant_id="t-evil"))

        assert response.status_code == 500
        assert response.json() == {"message": "Tenant configuration error", "code": "TENANT_CONFIGURATION_ERROR"}
        assert fake_pool.connections == []
