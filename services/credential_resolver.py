"""
Credential resolution for tenants.

The reserved system tenant uses process-level provider credentials; every
other tenant is looked up in the credential store and must be active.
"""

from __future__ import annotations

from typing import Optional

from domain.models import TenantCredentials
from ports.credential_store import CredentialStorePort
from shared_utils.config_loader import Settings
from shared_utils.constants import Defaults, LogScope
from shared_utils.error_handler import NotConfiguredError
from shared_utils.logging_utils import get_scoped_logger


logger = get_scoped_logger(LogScope.CREDENTIALS)


def system_credentials_from_settings(settings: Settings) -> Optional[TenantCredentials]:
    """Build the system tenant's credentials from environment settings."""
    if not settings.has_system_credentials():
        return None
    return TenantCredentials(
        tenant_id=settings.system_tenant_id,
        provider_account_id=settings.zoom_account_id,
        provider_client_id=settings.zoom_client_id,
        provider_client_secret=settings.zoom_client_secret,
        webhook_signing_secret=settings.zoom_webhook_secret_token,
    )


class CredentialResolver:
    """``resolve(tenant_id) -> TenantCredentials`` or NotConfiguredError."""

    def __init__(
        self,
        credential_store: CredentialStorePort,
        system_credentials: Optional[TenantCredentials] = None,
        system_tenant_id: str = Defaults.SYSTEM_TENANT_ID,
    ) -> None:
        self._store = credential_store
        self._system_credentials = system_credentials
        self._system_tenant_id = system_tenant_id

    def resolve(self, tenant_id: str) -> TenantCredentials:
        """Return the credentials to use for ``tenant_id``.

        Raises:
            NotConfiguredError: No active credentials exist. Permanent.
            ExternalServiceError: The credential store is unreachable.
        """
        if tenant_id == self._system_tenant_id:
            if self._system_credentials is None:
                logger.error("system_credentials_missing", tenant_id=tenant_id)
                raise NotConfiguredError(tenant_id)
            return self._system_credentials

        credentials = self._store.get(tenant_id)
        if credentials is None or not credentials.active:
            logger.warning(
                "tenant_not_configured",
                tenant_id=tenant_id,
                found=credentials is not None,
            )
            raise NotConfiguredError(tenant_id)
        return credentials
