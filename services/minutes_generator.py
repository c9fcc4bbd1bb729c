"""
Minutes generation: raw transcript + meeting metadata -> structured Minutes.

The LLM is asked for a single JSON object. Transient provider failures are
retried a bounded number of times; a reply that is not valid JSON degrades to
minutes whose summary and formatted transcript are the raw reply text.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional

from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from domain.models import ActionItem, MeetingMetadata, Minutes
from ports.llm_provider import LLMProviderPort
from shared_utils.constants import Defaults, LogScope
from shared_utils.error_handler import GenerationError, is_retryable
from shared_utils.logging_utils import get_scoped_logger, log_execution


logger = get_scoped_logger(LogScope.MINUTES)

SYSTEM_PROMPT = (
    "You are an assistant that writes accurate, concise meeting minutes. "
    "Use only information present in the transcript. "
    "Respond with a single valid JSON object and nothing else."
)

_MINUTES_SCHEMA = """{
  "summary": "3-5 sentence overview of the meeting",
  "formatted_transcript": "the transcript cleaned up into readable paragraphs, speaker-labelled where known",
  "action_items": [
    {"item": "task", "assignee": "name or null", "due_date": "date or null", "priority": "high|medium|low"}
  ],
  "key_decisions": ["decision"],
  "discussion_points": ["topic"],
  "next_meeting": "date/time if mentioned, else null",
  "follow_up_required": true
}"""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_FALLBACK_SUMMARY_CHARS = 1000
_TRUE_WORDS = {"true", "yes", "y", "1"}


def build_prompt(raw_transcript: str, meeting: MeetingMetadata) -> str:
    participants = ", ".join(meeting.participants) if meeting.participants else "unknown"
    duration = f"{meeting.duration} minutes" if meeting.duration else "unknown"
    return (
        "Create meeting minutes from the transcript below.\n\n"
        f"Meeting topic: {meeting.topic or 'untitled'}\n"
        f"Start time: {meeting.start_time or 'unknown'}\n"
        f"Duration: {duration}\n"
        f"Participants: {participants}\n\n"
        "Transcript:\n"
        f"{raw_transcript}\n\n"
        "Return only a JSON object with exactly this shape:\n"
        f"{_MINUTES_SCHEMA}\n"
    )


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _as_text_list(value: Any) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        value = [value]
    return [text for text in (_as_text(v) for v in value) if text]


def _as_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_WORDS
    return bool(value)


def _as_action_items(value: Any) -> List[ActionItem]:
    if value is None:
        return []
    if not isinstance(value, list):
        value = [value]
    items = []
    for raw in value:
        if isinstance(raw, dict):
            text = _as_text(raw.get("item") or raw.get("task") or raw.get("description"))
            if not text:
                continue
            items.append(ActionItem(
                item=text,
                assignee=_as_text(raw.get("assignee")) or None,
                due_date=_as_text(raw.get("due_date")) or None,
                priority=_as_text(raw.get("priority")) or None,
            ))
        else:
            text = _as_text(raw)
            if text:
                items.append(ActionItem(item=text))
    return items


def coerce_minutes(data: Dict[str, Any]) -> Minutes:
    """Build Minutes from a decoded reply, converting each field on its own.

    A field that cannot be read falls back to its default; the rest survive.
    """
    return Minutes(
        summary=_as_text(data.get("summary")),
        formatted_transcript=_as_text(data.get("formatted_transcript")),
        action_items=_as_action_items(data.get("action_items")),
        key_decisions=_as_text_list(data.get("key_decisions")),
        discussion_points=_as_text_list(data.get("discussion_points")),
        next_meeting=_as_text(data.get("next_meeting")) or None,
        follow_up_required=_as_flag(data.get("follow_up_required")),
    )


def parse_minutes_reply(reply: str) -> Optional[Minutes]:
    """Parse an LLM reply into Minutes, or None when it is not a JSON object."""
    text = _FENCE_RE.sub("", reply.strip())
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError:
        return None
    return coerce_minutes(data)


class MinutesGenerator:
    """Summarizes transcripts through an LLMProviderPort."""

    def __init__(
        self,
        llm: LLMProviderPort,
        max_retries: int = Defaults.MAX_LLM_RETRIES,
        retry_wait: float = 1.0,
    ) -> None:
        self._llm = llm
        self._max_retries = max_retries
        self._retry_wait = retry_wait

    @log_execution(scope=LogScope.MINUTES)
    def generate(self, raw_transcript: str, meeting: MeetingMetadata) -> Minutes:
        """Produce Minutes for one meeting.

        Raises:
            GenerationError: Empty transcript, a permanent provider error, or
                a transient error that outlasted the retry budget.
        """
        if not raw_transcript or not raw_transcript.strip():
            raise GenerationError("Transcript is empty", context={"meeting_id": meeting.meeting_id})

        prompt = build_prompt(raw_transcript, meeting)
        retrying = Retrying(
            stop=stop_after_attempt(self._max_retries + 1),
            wait=wait_exponential(multiplier=self._retry_wait, max=20),
            retry=retry_if_exception(is_retryable),
            before_sleep=self._log_retry,
            reraise=True,
        )
        reply = retrying(self._llm.generate, prompt, system_prompt=SYSTEM_PROMPT)

        minutes = parse_minutes_reply(reply)
        if minutes is None:
            logger.warning(
                "minutes_json_unparseable",
                meeting_id=meeting.meeting_id,
                reply_chars=len(reply),
            )
            return Minutes(
                summary=reply.strip()[:_FALLBACK_SUMMARY_CHARS],
                formatted_transcript=reply.strip(),
            )

        logger.info(
            "minutes_generated",
            meeting_id=meeting.meeting_id,
            action_items=len(minutes.action_items),
            key_decisions=len(minutes.key_decisions),
        )
        return minutes

    @staticmethod
    def _log_retry(retry_state: Any) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "minutes_generation_retry",
            attempt=retry_state.attempt_number,
            error=getattr(exc, "message", str(exc)),
        )
