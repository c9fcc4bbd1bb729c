"""
Port interface for tenant credential storage.

Implementations: DynamoCredentialStoreAdapter, InMemoryCredentialStore (adapters/)
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol, runtime_checkable

from domain.models import TenantCredentials


@runtime_checkable
class CredentialStorePort(Protocol):
    """Read/upsert access to per-tenant provider credentials."""

    def get(self, tenant_id: str) -> Optional[TenantCredentials]:
        """Return the tenant's credential set (active or not), or None."""
        ...

    def upsert(self, tenant_id: str, fields: Dict[str, Any]) -> TenantCredentials:
        """Create or partially update a tenant's credentials.

        Raises:
            ValidationError: If a new record lacks required fields.
        """
        ...
