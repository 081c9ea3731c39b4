"""
Platform-level modules for multi-tenant enforcement and security.

- tenant_context: tenant resolution and the per-request scoped connection
- tenant_isolation: defense-in-depth tenant match guard
- rbac: role / permission / hierarchy gates
- audit: unauthorized-attempt audit trail
- lifecycle: exactly-once per-request cleanup
- errors: consistent error handling
"""
