"""
DynamoDB-backed minutes and delivery log store.

Implements TranscriptStorePort over two tables:
    minutes table       key ``transcript_id``; GSI ``job_id-index`` on ``job_id``;
                        GSI ``meeting_key-index`` on ``meeting_key``
                        (``<tenant_id>#<meeting_id>``)
    delivery log table  key ``transcript_id`` + sort key ``log_key``
                        (``<created_at>#<log_id>`` keeps entries in order)
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from domain.models import (
    ActionItem,
    DeliveryLogEntry,
    DeliveryStatus,
    MinutesRecord,
    utc_now_iso,
)
from shared_utils.constants import LogScope
from shared_utils.error_handler import ExternalServiceError
from shared_utils.logging_utils import get_scoped_logger


logger = get_scoped_logger(LogScope.ADAPTER)


def meeting_key(tenant_id: str, meeting_id: str) -> str:
    return f"{tenant_id}#{meeting_id}"


class DynamoTranscriptStoreAdapter:
    """Amazon DynamoDB implementation of TranscriptStorePort."""

    JOB_INDEX = "job_id-index"
    MEETING_INDEX = "meeting_key-index"

    def __init__(
        self,
        minutes_table: str,
        delivery_log_table: str,
        region: str = "eu-west-2",
        endpoint_url: str = "",
        dynamodb_resource: Optional[object] = None,
    ) -> None:
        resource_kwargs: dict = {"region_name": region}
        if endpoint_url:
            resource_kwargs["endpoint_url"] = endpoint_url
        self._dynamo = dynamodb_resource or boto3.resource("dynamodb", **resource_kwargs)
        self._minutes = self._dynamo.Table(minutes_table)
        self._deliveries = self._dynamo.Table(delivery_log_table)

    # ------------------------------------------------------------------
    # Minutes
    # ------------------------------------------------------------------

    def save_minutes(self, record: MinutesRecord) -> MinutesRecord:
        existing = self.get_minutes_for_job(record.job_id)
        if existing is not None:
            logger.info("dynamo_minutes_exists", job_id=record.job_id, transcript_id=existing.transcript_id)
            return existing

        record = record.model_copy(update={"created_at": record.created_at or utc_now_iso()})
        item = self._minutes_to_item(record)
        try:
            self._minutes.put_item(Item=item, ConditionExpression="attribute_not_exists(transcript_id)")
        except ClientError as exc:
            logger.error("dynamo_put_minutes_failed", job_id=record.job_id, error=str(exc))
            raise ExternalServiceError("DynamoDB", f"Failed to save minutes: {exc}") from exc
        logger.info("dynamo_minutes_saved", transcript_id=record.transcript_id, job_id=record.job_id)
        return record

    def get_minutes(self, transcript_id: str) -> Optional[MinutesRecord]:
        try:
            item = self._minutes.get_item(Key={"transcript_id": transcript_id}).get("Item")
        except ClientError as exc:
            raise ExternalServiceError("DynamoDB", f"Failed to get minutes: {exc}") from exc
        return self._minutes_from_item(item) if item else None

    def get_minutes_for_job(self, job_id: str) -> Optional[MinutesRecord]:
        try:
            response = self._minutes.query(
                IndexName=self.JOB_INDEX,
                KeyConditionExpression=Key("job_id").eq(job_id),
                Limit=1,
            )
        except ClientError as exc:
            raise ExternalServiceError("DynamoDB", f"Failed to query minutes: {exc}") from exc
        items = response.get("Items", [])
        if not items:
            return None
        # GSI projections may be partial; read the full item
        return self.get_minutes(items[0]["transcript_id"])

    def list_minutes_for_meeting(self, tenant_id: str, meeting_id: str) -> List[MinutesRecord]:
        query_kwargs: Dict[str, Any] = {
            "IndexName": self.MEETING_INDEX,
            "KeyConditionExpression": Key("meeting_key").eq(meeting_key(tenant_id, meeting_id)),
        }
        transcript_ids: List[str] = []
        try:
            while True:
                response = self._minutes.query(**query_kwargs)
                transcript_ids.extend(item["transcript_id"] for item in response.get("Items", []))
                last_key = response.get("LastEvaluatedKey")
                if last_key is None:
                    break
                query_kwargs["ExclusiveStartKey"] = last_key
        except ClientError as exc:
            raise ExternalServiceError("DynamoDB", f"Failed to query minutes by meeting: {exc}") from exc
        records = (self.get_minutes(transcript_id) for transcript_id in transcript_ids)
        return [record for record in records if record is not None]

    # ------------------------------------------------------------------
    # Delivery log
    # ------------------------------------------------------------------

    def append_delivery(self, entry: DeliveryLogEntry) -> None:
        created_at = entry.created_at or utc_now_iso()
        item: Dict[str, Any] = {
            "transcript_id": entry.transcript_id,
            "log_key": f"{created_at}#{entry.log_id}",
            "log_id": entry.log_id,
            "tenant_id": entry.tenant_id,
            "recipient": entry.recipient,
            "status": entry.status.value,
            "attempt": entry.attempt,
            "created_at": created_at,
        }
        if entry.sent_at:
            item["sent_at"] = entry.sent_at
        if entry.error_message:
            item["error_message"] = entry.error_message
        try:
            self._deliveries.put_item(Item=item, ConditionExpression="attribute_not_exists(log_key)")
        except ClientError as exc:
            logger.error("dynamo_put_delivery_failed", transcript_id=entry.transcript_id, error=str(exc))
            raise ExternalServiceError("DynamoDB", f"Failed to append delivery log: {exc}") from exc

    def list_deliveries(self, transcript_id: str) -> List[DeliveryLogEntry]:
        query_kwargs: Dict[str, Any] = {"KeyConditionExpression": Key("transcript_id").eq(transcript_id)}
        items: List[Dict[str, Any]] = []
        try:
            while True:
                response = self._deliveries.query(**query_kwargs)
                items.extend(response.get("Items", []))
                last_key = response.get("LastEvaluatedKey")
                if last_key is None:
                    break
                query_kwargs["ExclusiveStartKey"] = last_key
        except ClientError as exc:
            raise ExternalServiceError("DynamoDB", f"Failed to list deliveries: {exc}") from exc

        return [
            DeliveryLogEntry(
                log_id=item["log_id"],
                transcript_id=item["transcript_id"],
                tenant_id=item.get("tenant_id", ""),
                recipient=item["recipient"],
                status=DeliveryStatus(item["status"]),
                attempt=int(item.get("attempt", 1)),
                sent_at=item.get("sent_at"),
                error_message=item.get("error_message"),
                created_at=item.get("created_at", ""),
            )
            for item in items
        ]

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _minutes_to_item(record: MinutesRecord) -> Dict[str, Any]:
        data = record.model_dump(mode="json", exclude_none=True)
        # Lists of objects and free text go in as JSON to avoid Decimal/empty-set issues
        data["action_items"] = json.dumps(data.get("action_items", []))
        data["key_decisions"] = json.dumps(data.get("key_decisions", []))
        data["participants"] = json.dumps(data.get("participants", []))
        data["meeting_key"] = meeting_key(record.tenant_id, record.meeting_id)
        return data

    @staticmethod
    def _minutes_from_item(item: Dict[str, Any]) -> MinutesRecord:
        data = dict(item)
        data.pop("meeting_key", None)
        data["action_items"] = [ActionItem(**a) for a in json.loads(item.get("action_items") or "[]")]
        data["key_decisions"] = json.loads(item.get("key_decisions") or "[]")
        data["participants"] = json.loads(item.get("participants") or "[]")
        if "duration" in data and data["duration"] is not None:
            data["duration"] = int(data["duration"])
        return MinutesRecord(**data)
