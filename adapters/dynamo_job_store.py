"""
DynamoDB-backed job store adapter.

Implements JobStorePort on a single table keyed by ``job_id``. Besides job
items the table holds two kinds of guard items, written in the same
transaction as the job they protect:

    dedupe#<tenant>#<meeting>#<type>  -> active_job_id      (one active job per key)
    meeting#<tenant>#<meeting>        -> processing_job_id  (one processing job per meeting)

Claiming is a ``TransactWriteItems`` that flips the job from pending to
processing and takes the meeting guard; either both succeed or neither does.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

import boto3
from boto3.dynamodb.conditions import Attr
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError

from domain.models import Job, JobStatus, JobType, utc_now_iso
from shared_utils.constants import LogScope
from shared_utils.error_handler import ExternalServiceError, JobNotFoundError, JobStateError
from shared_utils.logging_utils import get_scoped_logger


logger = get_scoped_logger(LogScope.ADAPTER)

_RECORD_JOB = "job"
_RECORD_DEDUPE = "dedupe"
_RECORD_MEETING_LOCK = "meeting_lock"
_CANCELLED = "TransactionCanceledException"


class DynamoJobStoreAdapter:
    """Amazon DynamoDB implementation of JobStorePort.

    Table key: ``job_id`` (partition key, no sort key).
    """

    def __init__(
        self,
        table_name: str,
        region: str = "eu-west-2",
        endpoint_url: str = "",
        dynamodb_resource: Optional[object] = None,
    ) -> None:
        self._table_name = table_name
        resource_kwargs: dict = {"region_name": region}
        if endpoint_url:
            resource_kwargs["endpoint_url"] = endpoint_url
        self._dynamo = dynamodb_resource or boto3.resource(
            "dynamodb", **resource_kwargs
        )
        self._table = self._dynamo.Table(table_name)
        self._client = self._dynamo.meta.client
        self._serializer = TypeSerializer()

    # ------------------------------------------------------------------
    # JobStorePort implementation
    # ------------------------------------------------------------------

    def create_if_absent(self, job: Job) -> Tuple[Job, bool]:
        """Insert the job and take its dedupe guard in one transaction."""
        now = utc_now_iso()
        job = job.model_copy(
            update={"status": JobStatus.PENDING, "created_at": job.created_at or now, "updated_at": now}
        )
        guard = self._dedupe_key(job.tenant_id, job.meeting_id, job.type)
        try:
            self._transact([
                self._update(
                    guard,
                    "SET active_job_id = :jid, record_type = :rt",
                    {":jid": job.job_id, ":rt": _RECORD_DEDUPE},
                    condition="attribute_not_exists(active_job_id)",
                ),
                {
                    "Put": {
                        "TableName": self._table_name,
                        "Item": self._serialize(self._to_dynamo_item(job)),
                        "ConditionExpression": "attribute_not_exists(job_id)",
                    }
                },
            ])
        except _TransactionCancelled:
            existing = self.find_active(job.tenant_id, job.meeting_id, job.type)
            if existing is None:
                raise ExternalServiceError(
                    "DynamoDB", "Job creation conflicted but no active job was found",
                    context={"job_id": job.job_id},
                )
            logger.info(
                "dynamo_job_deduplicated",
                job_id=existing.job_id,
                meeting_id=job.meeting_id,
                type=job.type.value,
            )
            return existing, False

        logger.info("dynamo_job_created", job_id=job.job_id, type=job.type.value)
        return job, True

    def get(self, job_id: str) -> Optional[Job]:
        """Retrieve a single job by ID (strongly consistent)."""
        try:
            response = self._table.get_item(Key={"job_id": job_id}, ConsistentRead=True)
        except ClientError as exc:
            logger.error("dynamo_get_job_failed", job_id=job_id, error=str(exc))
            raise ExternalServiceError("DynamoDB", f"Failed to get job: {exc}") from exc
        item = response.get("Item")
        if item is None or item.get("record_type") != _RECORD_JOB:
            return None
        return self._from_dynamo_item(item)

    def find_active(self, tenant_id: str, meeting_id: str, job_type: JobType) -> Optional[Job]:
        guard = self._get_raw(self._dedupe_key(tenant_id, meeting_id, job_type))
        if not guard or not guard.get("active_job_id"):
            return None
        return self.get(guard["active_job_id"])

    def claim(self, job_id: str) -> Optional[Job]:
        """Conditional pending -> processing plus the meeting guard."""
        job = self.get(job_id)
        if job is None or job.status != JobStatus.PENDING:
            return None
        try:
            self._transact([
                self._update(
                    job_id,
                    "SET #s = :processing, updated_at = :now",
                    {":processing": JobStatus.PROCESSING.value, ":pending": JobStatus.PENDING.value, ":now": utc_now_iso()},
                    condition="#s = :pending",
                    names={"#s": "status"},
                ),
                self._update(
                    self._meeting_key(job.tenant_id, job.meeting_id),
                    "SET processing_job_id = :jid, record_type = :rt",
                    {":jid": job_id, ":rt": _RECORD_MEETING_LOCK},
                    condition="attribute_not_exists(processing_job_id)",
                ),
            ])
        except _TransactionCancelled:
            logger.info("dynamo_claim_rejected", job_id=job_id)
            return None

        logger.info("dynamo_job_claimed", job_id=job_id)
        return job.model_copy(update={"status": JobStatus.PROCESSING})

    def complete(self, job_id: str, result: Dict[str, Any]) -> Job:
        return self._finish(job_id, JobStatus.COMPLETED, result=result)

    def fail(self, job_id: str, error_message: str, result: Optional[Dict[str, Any]] = None) -> Job:
        return self._finish(job_id, JobStatus.FAILED, result=result, error_message=error_message)

    def reset_for_retry(self, job_id: str) -> Job:
        job = self.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status != JobStatus.FAILED:
            raise JobStateError(job_id, job.status.value, "Only failed jobs can be retried")
        try:
            self._transact([
                self._update(
                    job_id,
                    "SET #s = :pending, updated_at = :now, retry_count = retry_count + :one "
                    "REMOVE error_message, completed_at",
                    {
                        ":pending": JobStatus.PENDING.value,
                        ":failed": JobStatus.FAILED.value,
                        ":now": utc_now_iso(),
                        ":one": 1,
                    },
                    condition="#s = :failed",
                    names={"#s": "status"},
                ),
                self._update(
                    self._dedupe_key(job.tenant_id, job.meeting_id, job.type),
                    "SET active_job_id = :jid, record_type = :rt",
                    {":jid": job_id, ":rt": _RECORD_DEDUPE},
                    condition="attribute_not_exists(active_job_id)",
                ),
            ])
        except _TransactionCancelled:
            raise JobStateError(
                job_id, job.status.value, "Job changed concurrently or an equivalent job is active"
            )
        logger.info("dynamo_job_reset_for_retry", job_id=job_id)
        return self.get(job_id)

    def list_jobs(
        self,
        tenant_id: Optional[str] = None,
        status: Optional[JobStatus] = None,
    ) -> List[Job]:
        """Scan with optional filters (acceptable at admin-UI scale)."""
        filter_expr = Attr("record_type").eq(_RECORD_JOB)
        if tenant_id:
            filter_expr = filter_expr & Attr("tenant_id").eq(tenant_id)
        if status:
            filter_expr = filter_expr & Attr("status").eq(status.value)

        try:
            scan_kwargs: Dict[str, Any] = {"FilterExpression": filter_expr}
            items: List[Dict[str, Any]] = []
            while True:
                response = self._table.scan(**scan_kwargs)
                items.extend(response.get("Items", []))
                last_key = response.get("LastEvaluatedKey")
                if last_key is None:
                    break
                scan_kwargs["ExclusiveStartKey"] = last_key
        except ClientError as exc:
            logger.error("dynamo_list_jobs_failed", error=str(exc))
            raise ExternalServiceError("DynamoDB", f"Failed to list jobs: {exc}") from exc

        jobs = [self._from_dynamo_item(item) for item in items]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _finish(
        self,
        job_id: str,
        status: JobStatus,
        result: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> Job:
        job = self.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status != JobStatus.PROCESSING:
            raise JobStateError(job_id, job.status.value)

        now = utc_now_iso()
        update_expr = "SET #s = :status, updated_at = :now, completed_at = :now"
        values: Dict[str, Any] = {
            ":status": status.value,
            ":processing": JobStatus.PROCESSING.value,
            ":now": now,
        }
        if result is not None:
            update_expr += ", result_json = :result"
            values[":result"] = json.dumps(result)
        if error_message is not None:
            update_expr += ", error_message = :err"
            values[":err"] = error_message

        try:
            self._transact([
                self._update(job_id, update_expr, values, condition="#s = :processing", names={"#s": "status"}),
                self._update(
                    self._meeting_key(job.tenant_id, job.meeting_id),
                    "REMOVE processing_job_id",
                    {":jid": job_id},
                    condition="processing_job_id = :jid",
                ),
                self._update(
                    self._dedupe_key(job.tenant_id, job.meeting_id, job.type),
                    "REMOVE active_job_id",
                    {":jid": job_id},
                    condition="active_job_id = :jid",
                ),
            ])
        except _TransactionCancelled:
            current = self.get(job_id)
            raise JobStateError(job_id, current.status.value if current else "missing")

        logger.info("dynamo_job_finished", job_id=job_id, status=status.value)
        return job.model_copy(
            update={
                "status": status,
                "updated_at": now,
                "completed_at": now,
                "result": result if result is not None else job.result,
                "error_message": error_message if error_message is not None else job.error_message,
            }
        )

    def _transact(self, items: List[Dict[str, Any]]) -> None:
        try:
            self._client.transact_write_items(TransactItems=items)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == _CANCELLED:
                raise _TransactionCancelled() from exc
            logger.error("dynamo_transaction_failed", error=str(exc))
            raise ExternalServiceError("DynamoDB", f"Transaction failed: {exc}") from exc

    def _update(
        self,
        key: str,
        expression: str,
        values: Dict[str, Any],
        condition: str,
        names: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        update: Dict[str, Any] = {
            "TableName": self._table_name,
            "Key": self._serialize({"job_id": key}),
            "UpdateExpression": expression,
            "ConditionExpression": condition,
            "ExpressionAttributeValues": self._serialize(values),
        }
        if names:
            update["ExpressionAttributeNames"] = names
        return {"Update": update}

    def _get_raw(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            return self._table.get_item(Key={"job_id": key}, ConsistentRead=True).get("Item")
        except ClientError as exc:
            raise ExternalServiceError("DynamoDB", f"Failed to read guard: {exc}") from exc

    def _serialize(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return {k: self._serializer.serialize(v) for k, v in data.items()}

    @staticmethod
    def _dedupe_key(tenant_id: str, meeting_id: str, job_type: JobType) -> str:
        return f"dedupe#{tenant_id}#{meeting_id}#{job_type.value}"

    @staticmethod
    def _meeting_key(tenant_id: str, meeting_id: str) -> str:
        return f"meeting#{tenant_id}#{meeting_id}"

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _to_dynamo_item(job: Job) -> Dict[str, Any]:
        """Convert domain Job -> DynamoDB item dict (payload/result as JSON text)."""
        item: Dict[str, Any] = {
            "job_id": job.job_id,
            "record_type": _RECORD_JOB,
            "tenant_id": job.tenant_id,
            "type": job.type.value,
            "status": job.status.value,
            "meeting_id": job.meeting_id,
            "payload_json": json.dumps(job.payload),
            "retry_count": job.retry_count,
            "created_at": job.created_at,
            "updated_at": job.updated_at,
        }
        if job.result is not None:
            item["result_json"] = json.dumps(job.result)
        if job.error_message:
            item["error_message"] = job.error_message
        if job.completed_at:
            item["completed_at"] = job.completed_at
        return item

    @staticmethod
    def _from_dynamo_item(item: Dict[str, Any]) -> Job:
        """Convert DynamoDB item dict -> domain Job."""
        result_raw = item.get("result_json")
        return Job(
            job_id=item["job_id"],
            tenant_id=item["tenant_id"],
            type=JobType(item["type"]),
            status=JobStatus(item.get("status", JobStatus.PENDING.value)),
            meeting_id=item["meeting_id"],
            payload=json.loads(item.get("payload_json") or "{}"),
            result=json.loads(result_raw) if result_raw else None,
            error_message=item.get("error_message"),
            retry_count=int(item.get("retry_count", 0)),
            created_at=item.get("created_at", ""),
            updated_at=item.get("updated_at", ""),
            completed_at=item.get("completed_at"),
        )


class _TransactionCancelled(Exception):
    """A transaction condition failed; callers translate to domain outcomes."""
