"""
Distribution engine: emails a minutes record to each recipient and records
one delivery-log entry per attempt.

Recipients are handled independently; one failed send never stops the rest.
"""

from __future__ import annotations

import html
from typing import List
from uuid import uuid4

from domain.models import DeliveryLogEntry, DeliveryStatus, MinutesRecord, utc_now_iso
from ports.mailer import MailerPort
from ports.transcript_store import TranscriptStorePort
from shared_utils.constants import LogScope
from shared_utils.error_handler import AppException
from shared_utils.logging_utils import get_scoped_logger


logger = get_scoped_logger(LogScope.DISTRIBUTION)


def render_subject(record: MinutesRecord) -> str:
    return f"Meeting minutes: {record.meeting_topic or record.meeting_id}"


def render_text(record: MinutesRecord) -> str:
    lines = [render_subject(record), ""]
    if record.start_time:
        lines.append(f"Date: {record.start_time}")
    if record.duration:
        lines.append(f"Duration: {record.duration} minutes")
    if record.participants:
        lines.append(f"Participants: {', '.join(record.participants)}")
    lines += ["", "Summary", record.summary or "(none)"]

    if record.action_items:
        lines += ["", "Action items"]
        for action in record.action_items:
            owner = f" ({action.assignee})" if action.assignee else ""
            due = f" due {action.due_date}" if action.due_date else ""
            lines.append(f"- {action.item}{owner}{due}")
    if record.key_decisions:
        lines += ["", "Key decisions"]
        lines += [f"- {decision}" for decision in record.key_decisions]

    lines += ["", "Transcript", record.formatted_transcript or record.raw_transcript]
    return "\n".join(lines)


def render_html(record: MinutesRecord) -> str:
    def items(values: List[str]) -> str:
        return "".join(f"<li>{html.escape(v)}</li>" for v in values)

    actions = [
        a.item + (f" ({a.assignee})" if a.assignee else "") + (f" due {a.due_date}" if a.due_date else "")
        for a in record.action_items
    ]
    parts = [
        f"<h2>{html.escape(render_subject(record))}</h2>",
        f"<p>{html.escape(record.start_time or '')}</p>",
        "<h3>Summary</h3>",
        f"<p>{html.escape(record.summary or '(none)')}</p>",
    ]
    if actions:
        parts += ["<h3>Action items</h3>", f"<ul>{items(actions)}</ul>"]
    if record.key_decisions:
        parts += ["<h3>Key decisions</h3>", f"<ul>{items(record.key_decisions)}</ul>"]
    transcript = html.escape(record.formatted_transcript or record.raw_transcript)
    parts += ["<h3>Transcript</h3>", f"<pre>{transcript}</pre>"]
    return "\n".join(parts)


class DistributionEngine:
    """Sends minutes through a MailerPort and logs every attempt."""

    def __init__(self, mailer: MailerPort, transcript_store: TranscriptStorePort) -> None:
        self._mailer = mailer
        self._store = transcript_store

    def deliver(
        self, record: MinutesRecord, recipients: List[str], attempt: int = 1
    ) -> List[DeliveryLogEntry]:
        """Send ``record`` to every recipient; returns the appended log entries."""
        subject = render_subject(record)
        text_body = render_text(record)
        html_body = render_html(record)

        entries: List[DeliveryLogEntry] = []
        for recipient in recipients:
            entry = DeliveryLogEntry(
                log_id=str(uuid4()),
                transcript_id=record.transcript_id,
                tenant_id=record.tenant_id,
                recipient=recipient,
                attempt=attempt,
                created_at=utc_now_iso(),
            )
            try:
                self._mailer.send(recipient, subject, html_body, text_body)
                entry.status = DeliveryStatus.SENT
                entry.sent_at = utc_now_iso()
            except AppException as exc:
                entry.status = DeliveryStatus.FAILED
                entry.error_message = exc.message
            except Exception as exc:
                entry.status = DeliveryStatus.FAILED
                entry.error_message = f"{type(exc).__name__}: {exc}"

            self._store.append_delivery(entry)
            entries.append(entry)
            logger.info(
                "delivery_attempted",
                transcript_id=record.transcript_id,
                status=entry.status.value,
                attempt=attempt,
                error=entry.error_message,
            )

        failed = sum(1 for e in entries if e.status == DeliveryStatus.FAILED)
        logger.info(
            "distribution_finished",
            transcript_id=record.transcript_id,
            recipients=len(entries),
            failed=failed,
        )
        return entries
