"""
Tests for worker.entrypoint: message handling, batching and main().

Covers:
  - ack after each processed message, including failed and superseded jobs
  - deferred jobs re-enqueued with a delay before the ack
  - unexpected errors leave the message unacked
  - ``--once`` runs a single batch and exits 0
  - startup and loop failures exit 1
"""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import pytest

from adapters.in_memory_stores import InMemoryJobStore
from adapters.job_queues import InMemoryJobQueue
from ports.job_queue import QueueMessage
from services.job_intake import JobIntake
from services.pipeline_orchestrator import ProcessOutcome
from worker.entrypoint import DEFER_DELAY_SECONDS, handle_message, main, run_batch


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _container(outcome=ProcessOutcome.COMPLETED, messages=None):
    """Return a MagicMock container with an orchestrator that yields ``outcome``."""
    container = MagicMock()
    container.settings.worker_concurrency = 2
    container.settings.queue_wait_seconds = 20
    orchestrator = container.get_orchestrator.return_value
    if isinstance(outcome, Exception):
        orchestrator.process.side_effect = outcome
    else:
        orchestrator.process.return_value = outcome
    container.get_job_queue.return_value.receive.return_value = messages or []
    return container


def _message(job_id: str = "job-1") -> QueueMessage:
    return QueueMessage(job_id=job_id, receipt_handle=f"r-{job_id}")


# ---------------------------------------------------------------------------
# handle_message
# ---------------------------------------------------------------------------


class TestHandleMessage:
    @pytest.mark.parametrize(
        "outcome",
        [ProcessOutcome.COMPLETED, ProcessOutcome.FAILED, ProcessOutcome.SKIPPED, ProcessOutcome.SUPERSEDED],
    )
    def test_acks_after_processing(self, outcome) -> None:
        container = _container(outcome)
        message = _message()

        assert handle_message(container, message) == outcome

        container.get_orchestrator.return_value.process.assert_called_once_with("job-1")
        container.get_job_queue.return_value.ack.assert_called_once_with(message)
        container.get_job_intake.return_value.requeue.assert_not_called()

    def test_deferred_is_requeued_then_acked(self) -> None:
        container = _container(ProcessOutcome.DEFERRED)
        message = _message()

        assert handle_message(container, message) == ProcessOutcome.DEFERRED

        container.get_job_intake.return_value.requeue.assert_called_once_with(
            "job-1", delay_seconds=DEFER_DELAY_SECONDS
        )
        container.get_job_queue.return_value.ack.assert_called_once_with(message)

    def test_unexpected_error_leaves_message_unacked(self) -> None:
        container = _container(RuntimeError("table gone"))

        assert handle_message(container, _message()) == ProcessOutcome.SKIPPED
        container.get_job_queue.return_value.ack.assert_not_called()

    def test_deferred_round_trip_through_memory_queue(self) -> None:
        queue = InMemoryJobQueue()
        container = _container(ProcessOutcome.DEFERRED)
        container.get_job_queue.return_value = queue
        container.get_job_intake.return_value = JobIntake(InMemoryJobStore(), queue)
        queue.enqueue("job-1")
        message = queue.receive()[0]

        handle_message(container, message)

        assert queue.pending_count() == 1


# ---------------------------------------------------------------------------
# run_batch
# ---------------------------------------------------------------------------


class TestRunBatch:
    def test_processes_every_received_message(self) -> None:
        container = _container(messages=[_message("job-1"), _message("job-2")])

        with ThreadPoolExecutor(max_workers=2) as executor:
            handled = run_batch(container, executor, max_messages=2, wait_seconds=0)

        assert handled == 2
        processed = {c.args[0] for c in container.get_orchestrator.return_value.process.call_args_list}
        assert processed == {"job-1", "job-2"}
        container.get_job_queue.return_value.receive.assert_called_once_with(
            max_messages=2, wait_seconds=0
        )

    def test_empty_queue(self) -> None:
        container = _container()
        with ThreadPoolExecutor(max_workers=1) as executor:
            assert run_batch(container, executor, max_messages=1, wait_seconds=0) == 0
        container.get_orchestrator.return_value.process.assert_not_called()


# ---------------------------------------------------------------------------
# main
# ---------------------------------------------------------------------------


@patch("worker.entrypoint.signal.signal")
class TestWorkerMain:
    @patch("worker.entrypoint.time.monotonic", return_value=1000.0)
    @patch("worker.entrypoint.get_di_container")
    def test_once_returns_zero(self, mock_get_di, _mock_clock, _mock_signal) -> None:
        container = _container(messages=[_message()])
        mock_get_di.return_value = container

        assert main(["--once"]) == 0

        container.get_job_intake.return_value.sweep_stale_jobs.assert_called_once()
        container.get_job_queue.return_value.receive.assert_called_once_with(
            max_messages=2, wait_seconds=0
        )
        container.get_job_queue.return_value.ack.assert_called_once()

    @patch("worker.entrypoint.get_di_container")
    def test_startup_failure_returns_one(self, mock_get_di, _mock_signal) -> None:
        container = _container()
        container.get_orchestrator.side_effect = ValueError("OPENAI_API_KEY is required")
        mock_get_di.return_value = container

        assert main(["--once"]) == 1

    @patch("worker.entrypoint.get_di_container")
    def test_loop_failure_with_once_returns_one(self, mock_get_di, _mock_signal) -> None:
        container = _container()
        container.get_job_queue.return_value.receive.side_effect = RuntimeError("queue down")
        mock_get_di.return_value = container

        assert main(["--once"]) == 1
