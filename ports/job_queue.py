"""
Port interface for the durable job queue feeding the worker pool.

Implementations: SqsJobQueueAdapter, InMemoryJobQueue (adapters/)
"""

from __future__ import annotations

from typing import List, Protocol, runtime_checkable

from pydantic import BaseModel


class QueueMessage(BaseModel):
    """A received job reference plus the handle needed to acknowledge it."""

    job_id: str
    receipt_handle: str


@runtime_checkable
class JobQueuePort(Protocol):
    """At-least-once delivery of job ids."""

    def enqueue(self, job_id: str, delay_seconds: int = 0) -> None:
        """Publish a job id, optionally invisible for ``delay_seconds``."""
        ...

    def receive(self, max_messages: int = 1, wait_seconds: int = 0) -> List[QueueMessage]:
        """Fetch up to ``max_messages`` job references, waiting up to ``wait_seconds``."""
        ...

    def ack(self, message: QueueMessage) -> None:
        """Remove a processed message from the queue."""
        ...
