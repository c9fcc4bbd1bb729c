"""
Worker entrypoint: long-running queue consumer.

The worker:
    1. Receives job ids from the queue (SQS long-poll or in-memory).
    2. Runs PipelineOrchestrator.process() on a bounded thread pool.
    3. Acks every message once processed; deferred jobs are re-enqueued with
       a delay first, so nothing is lost.
    4. Periodically re-enqueues stale pending jobs.
    5. Exits 0 on SIGINT/SIGTERM, or after one batch with ``--once``.

All logging is JSON (structlog).
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

from ports.job_queue import QueueMessage
from services.pipeline_orchestrator import ProcessOutcome
from shared_utils.constants import LogScope
from shared_utils.logging_utils import get_scoped_logger
from shared_utils.di_container import get_di_container

logger = get_scoped_logger(LogScope.WORKER)

DEFER_DELAY_SECONDS = 30
SWEEP_INTERVAL_SECONDS = 60


def handle_message(container, message: QueueMessage) -> ProcessOutcome:
    """Process one message and ack it. Never raises."""
    orchestrator = container.get_orchestrator()
    queue = container.get_job_queue()
    try:
        outcome = orchestrator.process(message.job_id)
        if outcome == ProcessOutcome.DEFERRED:
            container.get_job_intake().requeue(message.job_id, delay_seconds=DEFER_DELAY_SECONDS)
    except Exception as exc:
        # Job stays pending/processing; the stale sweep or SQS redelivery picks it up
        logger.error("worker_message_failed", job_id=message.job_id, error=str(exc))
        return ProcessOutcome.SKIPPED
    queue.ack(message)
    logger.info("worker_message_done", job_id=message.job_id, outcome=outcome.value)
    return outcome


def run_batch(container, executor: ThreadPoolExecutor, max_messages: int, wait_seconds: int) -> int:
    """Receive up to ``max_messages`` and process them concurrently."""
    messages: List[QueueMessage] = container.get_job_queue().receive(
        max_messages=max_messages, wait_seconds=wait_seconds
    )
    futures = [executor.submit(handle_message, container, m) for m in messages]
    for future in futures:
        future.result()
    return len(messages)


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Meeting minutes worker")
    parser.add_argument("--once", action="store_true", help="process one batch and exit")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Worker main: build deps, consume the queue until told to stop."""
    args = _parse_args(argv)
    stop = threading.Event()

    def _request_stop(signum, _frame) -> None:
        logger.info("worker_stop_requested", signal=signum)
        stop.set()

    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGINT, _request_stop)
        signal.signal(signal.SIGTERM, _request_stop)

    try:
        container = get_di_container()
        settings = container.settings
        concurrency = max(1, settings.worker_concurrency)
        container.get_orchestrator()
    except Exception as exc:
        logger.error("worker_startup_failed", error=str(exc))
        return 1

    logger.info("worker_started", concurrency=concurrency, once=args.once)
    last_sweep = 0.0
    with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="minutes") as executor:
        while not stop.is_set():
            try:
                if time.monotonic() - last_sweep >= SWEEP_INTERVAL_SECONDS:
                    container.get_job_intake().sweep_stale_jobs()
                    last_sweep = time.monotonic()
                handled = run_batch(
                    container,
                    executor,
                    max_messages=concurrency,
                    wait_seconds=0 if args.once else settings.queue_wait_seconds,
                )
            except Exception as exc:
                logger.error("worker_loop_error", error=str(exc))
                if args.once:
                    return 1
                stop.wait(1.0)
                continue
            if args.once:
                logger.info("worker_batch_done", handled=handled)
                break

    logger.info("worker_stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
