"""
Job queue adapters.

SqsJobQueueAdapter   -- Amazon SQS (at-least-once, visibility-timeout redelivery)
InMemoryJobQueue     -- thread-safe deque for local dev and tests
"""

from __future__ import annotations

import json
import threading
import time
import uuid
from collections import deque
from typing import Deque, List, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ports.job_queue import QueueMessage
from shared_utils.constants import LogScope
from shared_utils.error_handler import ExternalServiceError
from shared_utils.logging_utils import get_scoped_logger


logger = get_scoped_logger(LogScope.ADAPTER)

_SQS_MAX_MESSAGES = 10
_SQS_MAX_DELAY = 900


class SqsJobQueueAdapter:
    """Amazon SQS implementation of JobQueuePort."""

    def __init__(
        self,
        queue_url: str,
        region: str = "eu-west-2",
        endpoint_url: str = "",
        sqs_client: Optional[object] = None,
    ) -> None:
        client_kwargs: dict = {"region_name": region}
        if endpoint_url:
            client_kwargs["endpoint_url"] = endpoint_url
        self._queue_url = queue_url
        self._sqs = sqs_client or boto3.client("sqs", **client_kwargs)

    def enqueue(self, job_id: str, delay_seconds: int = 0) -> None:
        try:
            self._sqs.send_message(
                QueueUrl=self._queue_url,
                MessageBody=json.dumps({"job_id": job_id}),
                DelaySeconds=max(0, min(delay_seconds, _SQS_MAX_DELAY)),
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error("sqs_enqueue_failed", job_id=job_id, error=str(exc))
            raise ExternalServiceError("SQS", f"Failed to enqueue job: {exc}") from exc
        logger.info("sqs_job_enqueued", job_id=job_id, delay_seconds=delay_seconds)

    def receive(self, max_messages: int = 1, wait_seconds: int = 0) -> List[QueueMessage]:
        try:
            response = self._sqs.receive_message(
                QueueUrl=self._queue_url,
                MaxNumberOfMessages=max(1, min(max_messages, _SQS_MAX_MESSAGES)),
                WaitTimeSeconds=max(0, min(wait_seconds, 20)),
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error("sqs_receive_failed", error=str(exc))
            raise ExternalServiceError("SQS", f"Failed to receive messages: {exc}") from exc

        messages = []
        for raw in response.get("Messages", []):
            try:
                job_id = json.loads(raw["Body"])["job_id"]
            except (ValueError, KeyError, TypeError):
                logger.warning("sqs_malformed_message", message_id=raw.get("MessageId"))
                self._delete(raw["ReceiptHandle"])
                continue
            messages.append(QueueMessage(job_id=job_id, receipt_handle=raw["ReceiptHandle"]))
        return messages

    def ack(self, message: QueueMessage) -> None:
        self._delete(message.receipt_handle)

    def _delete(self, receipt_handle: str) -> None:
        try:
            self._sqs.delete_message(QueueUrl=self._queue_url, ReceiptHandle=receipt_handle)
        except (ClientError, BotoCoreError) as exc:
            logger.error("sqs_delete_failed", error=str(exc))
            raise ExternalServiceError("SQS", f"Failed to delete message: {exc}") from exc


class InMemoryJobQueue:
    """Process-local JobQueuePort.

    Received messages are held in flight until acked; there is no redelivery.
    """

    def __init__(self) -> None:
        self._ready: Deque[Tuple[float, str]] = deque()
        self._in_flight: dict = {}
        self._cond = threading.Condition()

    def enqueue(self, job_id: str, delay_seconds: int = 0) -> None:
        with self._cond:
            self._ready.append((time.monotonic() + max(0, delay_seconds), job_id))
            self._cond.notify()
        logger.info("inmemory_job_enqueued", job_id=job_id, delay_seconds=delay_seconds)

    def receive(self, max_messages: int = 1, wait_seconds: int = 0) -> List[QueueMessage]:
        deadline = time.monotonic() + max(0, wait_seconds)
        with self._cond:
            while True:
                batch = self._take_ready_locked(max_messages)
                if batch or time.monotonic() >= deadline:
                    return batch
                self._cond.wait(timeout=min(0.5, max(0.0, deadline - time.monotonic())))

    def ack(self, message: QueueMessage) -> None:
        with self._cond:
            self._in_flight.pop(message.receipt_handle, None)

    def pending_count(self) -> int:
        with self._cond:
            return len(self._ready)

    def _take_ready_locked(self, max_messages: int) -> List[QueueMessage]:
        now = time.monotonic()
        batch: List[QueueMessage] = []
        waiting: Deque[Tuple[float, str]] = deque()
        while self._ready and len(batch) < max_messages:
            not_before, job_id = self._ready.popleft()
            if not_before > now:
                waiting.append((not_before, job_id))
                continue
            handle = uuid.uuid4().hex
            self._in_flight[handle] = job_id
            batch.append(QueueMessage(job_id=job_id, receipt_handle=handle))
        self._ready.extendleft(reversed(waiting))
        return batch
