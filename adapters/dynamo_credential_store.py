"""
DynamoDB-backed tenant credential store.

Implements CredentialStorePort. Table key: ``tenant_id``. Secrets are stored
as-is; encryption at rest is the table's KMS configuration.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import ClientError

from adapters.in_memory_stores import merge_credentials
from domain.models import TenantCredentials
from shared_utils.constants import LogScope
from shared_utils.error_handler import ExternalServiceError
from shared_utils.logging_utils import get_scoped_logger


logger = get_scoped_logger(LogScope.ADAPTER)


class DynamoCredentialStoreAdapter:
    """Amazon DynamoDB implementation of CredentialStorePort."""

    def __init__(
        self,
        table_name: str,
        region: str = "eu-west-2",
        endpoint_url: str = "",
        dynamodb_resource: Optional[object] = None,
    ) -> None:
        resource_kwargs: dict = {"region_name": region}
        if endpoint_url:
            resource_kwargs["endpoint_url"] = endpoint_url
        self._dynamo = dynamodb_resource or boto3.resource("dynamodb", **resource_kwargs)
        self._table = self._dynamo.Table(table_name)

    def get(self, tenant_id: str) -> Optional[TenantCredentials]:
        try:
            response = self._table.get_item(Key={"tenant_id": tenant_id})
        except ClientError as exc:
            logger.error("dynamo_get_credentials_failed", tenant_id=tenant_id, error=str(exc))
            raise ExternalServiceError("DynamoDB", f"Failed to get credentials: {exc}") from exc
        item = response.get("Item")
        if item is None:
            return None
        return TenantCredentials(
            tenant_id=item["tenant_id"],
            provider_account_id=item.get("provider_account_id", ""),
            provider_client_id=item.get("provider_client_id", ""),
            provider_client_secret=item.get("provider_client_secret", ""),
            webhook_signing_secret=item.get("webhook_signing_secret", ""),
            active=bool(item.get("active", True)),
            updated_at=item.get("updated_at", ""),
        )

    def upsert(self, tenant_id: str, fields: Dict[str, Any]) -> TenantCredentials:
        creds = merge_credentials(tenant_id, self.get(tenant_id), fields)
        item = {
            "tenant_id": creds.tenant_id,
            "provider_account_id": creds.provider_account_id,
            "provider_client_id": creds.provider_client_id,
            "provider_client_secret": creds.provider_client_secret.get_secret_value(),
            "webhook_signing_secret": creds.webhook_signing_secret.get_secret_value(),
            "active": creds.active,
            "updated_at": creds.updated_at,
        }
        try:
            self._table.put_item(Item=item)
        except ClientError as exc:
            logger.error("dynamo_put_credentials_failed", tenant_id=tenant_id, error=str(exc))
            raise ExternalServiceError("DynamoDB", f"Failed to store credentials: {exc}") from exc
        logger.info("dynamo_credentials_upserted", tenant_id=tenant_id, active=creds.active)
        return creds
