"""
Schema consistency probe.

A diagnostic that asks a scoped connection which schema it is actually
pointed at and compares it with the tenant it was scoped for. A mismatch
means the resolution layer has a bug, not that the request is malicious, so
the probe only logs. It never raises and never rejects a request.
"""

import logging

logger = logging.getLogger(__name__)


class SchemaConsistencyProbe:
    """Log-only check that a scoped connection points at the expected schema."""

    async def check(self, scoped_connection, expected_schema: str) -> bool:
        try:
            actual_schema = await scoped_connection.current_schema()
        except Exception as e:
            logger.error(
                "Schema consistency probe failed",
                extra={"tenant_id": scoped_connection.tenant.id, "error_type": type(e).__name__},
            )
            # The failed statement aborts the implicit transaction; clear it
            # so the handler's queries still run.
            try:
                await scoped_connection.rollback()
            except Exception:
                logger.error(
                    "Rollback after failed consistency probe failed",
                    extra={"tenant_id": scoped_connection.tenant.id},
                    exc_info=True,
                )
            return False

        if actual_schema != expected_schema:
            logger.error(
                "Schema routing mismatch",
                extra={
                    "tenant_id": scoped_connection.tenant.id,
                    "expected_schema": expected_schema,
                    "actual_schema": actual_schema,
                },
            )
            return False
        return True
