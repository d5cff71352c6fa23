"""Single-pass session metadata analysis.

`analyze_session_file` streams a session file once and derives the title
preview, message count, git branch, whether the session still looks active,
and how much context the main thread consumed across compactions. It keeps a
few counters instead of the parsed messages, so memory stays flat no matter
how long the session is.
"""

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from cc_sessions.chunker import is_user_chunk_message
from cc_sessions.models import Message, MessagePreview, PhaseTokenBreakdown, SessionMetadata
from cc_sessions.parser import parse_structured_entry
from cc_sessions.providers import FileSystemProvider, open_lines
from cc_sessions.sanitizer import (
    is_command_output_content,
    is_interruption,
    sanitize_display_content,
)

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 500
DEFAULT_PREVIEW_MAX_LINES = 200

SYNTHETIC_MODEL = "<synthetic>"
REJECTED_TOOL_USE = "User rejected tool use"
COMMAND_NAME_TAG = "<command-name>"

_COMMAND_NAME = re.compile(r"<command-name>/([^<]+)</command-name>")
_SESSION_ENDING_EVENT = re.compile(
    r"^session\.(end|ended|stop|stopped|complete|completed|close|closed|shutdown|error)$"
)
_TOOL_START_EVENT = re.compile(r"^tool\..*(start|started|begin|began|invoke|invoked|call|called)$")
_TOOL_ENDING_EVENT = re.compile(r"^tool\..*(complete|completed|finish|finished|result|error|end|ended)$")

Sanitizer = Callable[[str], str]


# =============================================================================
# Record helpers
# =============================================================================


def _record_timestamp(record: dict[str, Any]) -> str:
    ts = record.get("timestamp")
    if isinstance(ts, str):
        return ts
    return datetime.now(tz=timezone.utc).isoformat()


def extract_command_name(content: str) -> str:
    """`<command-name>/review</command-name>...` -> `/review`."""
    match = _COMMAND_NAME.search(content)
    return f"/{match.group(1)}" if match else "/command"


def _joined_text(content: Any) -> str:
    if not isinstance(content, list):
        return ""
    return " ".join(
        block["text"]
        for block in content
        if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str)
    )


def _message_content(record: dict[str, Any]) -> Any:
    payload = record.get("message")
    return payload.get("content") if isinstance(payload, dict) else None


def preview_from_user_record(
    record: dict[str, Any], sanitize: Sanitizer = sanitize_display_content
) -> MessagePreview | None:
    """Title candidate from a raw user entry, or None if it holds no user text.

    Slash commands yield their command name flagged with `is_command`.
    """
    timestamp = _record_timestamp(record)
    content = _message_content(record)

    if isinstance(content, str):
        text = content
        if is_command_output_content(text):
            return None
    elif isinstance(content, list):
        text = _joined_text(content).strip()
        if not text:
            return None
    else:
        return None

    if is_interruption(text):
        return None
    if text.startswith(COMMAND_NAME_TAG):
        return MessagePreview(text=extract_command_name(text), timestamp=timestamp, is_command=True)

    sanitized = sanitize(text).strip()
    if not sanitized:
        return None
    return MessagePreview(text=sanitized[:TITLE_MAX_CHARS], timestamp=timestamp)


def _preview_from_assistant_record(
    record: dict[str, Any], sanitize: Sanitizer
) -> MessagePreview | None:
    text = _joined_text(_message_content(record)).strip()
    if not text:
        return None
    sanitized = sanitize(text)
    if not sanitized:
        return None
    return MessagePreview(text=sanitized[:TITLE_MAX_CHARS], timestamp=_record_timestamp(record))


def session_start_label(data: dict[str, Any]) -> str | None:
    """Fallback title from a session.start event: title, name, producer or session id."""
    for key in ("title", "name"):
        if isinstance(data.get(key), str):
            return data[key]
    producer = data.get("producer")
    if isinstance(producer, str) and producer:
        return f"{producer} session"
    session_id = data.get("sessionId")
    if isinstance(session_id, str) and session_id:
        return f"Session {session_id[:8]}"
    return None


def _event_text(data: dict[str, Any] | None) -> str | None:
    # The first string field wins even when it is blank
    if data is None:
        return None
    for key in ("content", "text", "message", "prompt"):
        value = data.get(key)
        if isinstance(value, str):
            return value.strip()
    return None


def _event_timestamp(record: dict[str, Any], data: dict[str, Any] | None) -> str:
    if isinstance(record.get("timestamp"), str):
        return record["timestamp"]
    if data is not None and isinstance(data.get("timestamp"), str):
        return data["timestamp"]
    return datetime.now(tz=timezone.utc).isoformat()


# =============================================================================
# Trackers
# =============================================================================


class ActivityTracker:
    """Decides whether a session is still running from the order of its events.

    Every classified event takes the next activity index. A session is ongoing
    when it has activity and either nothing has ended it yet or activity was
    seen after the latest ending event.
    """

    def __init__(self) -> None:
        self.activity_index = 0
        self.last_ending_index = -1
        self.has_any_activity = False
        self.has_activity_after_ending = False

    def activity(self) -> None:
        self.has_any_activity = True
        if self.last_ending_index >= 0:
            self.has_activity_after_ending = True
        self.activity_index += 1

    def ending(self) -> None:
        self.last_ending_index = self.activity_index
        self.activity_index += 1
        self.has_activity_after_ending = False

    @property
    def is_ongoing(self) -> bool:
        if self.last_ending_index == -1:
            return self.has_any_activity
        return self.has_activity_after_ending


@dataclass
class CompactionPhase:
    pre_tokens: int
    post_tokens: int = 0


class ContextTracker:
    """Tracks main-thread context size across compaction boundaries."""

    def __init__(self) -> None:
        self.last_input_tokens = 0
        self.phases: list[CompactionPhase] = []
        self._awaiting_post = False

    def observe_assistant(self, message: Message) -> None:
        if message.is_sidechain or message.model == SYNTHETIC_MODEL or message.usage is None:
            return
        tokens = message.usage.context_tokens
        if tokens <= 0:
            return
        if self._awaiting_post and self.phases:
            self.phases[-1].post_tokens = tokens
            self._awaiting_post = False
        self.last_input_tokens = tokens

    def observe_compaction(self) -> None:
        self.phases.append(CompactionPhase(pre_tokens=self.last_input_tokens))
        self._awaiting_post = True

    @property
    def compaction_count(self) -> int | None:
        return len(self.phases) or None

    def breakdown(self) -> tuple[int | None, list[PhaseTokenBreakdown] | None]:
        """Total context consumption and its per-phase contributions."""
        final = self.last_input_tokens
        if final <= 0:
            return None, None

        if not self.phases:
            return final, [PhaseTokenBreakdown(phase_number=1, contribution=final, peak_tokens=final)]

        first = self.phases[0]
        phases = [
            PhaseTokenBreakdown(
                phase_number=1,
                contribution=first.pre_tokens,
                peak_tokens=first.pre_tokens,
                post_compaction=first.post_tokens,
            )
        ]
        for number, (previous, phase) in enumerate(zip(self.phases, self.phases[1:]), start=2):
            phases.append(
                PhaseTokenBreakdown(
                    phase_number=number,
                    contribution=phase.pre_tokens - previous.post_tokens,
                    peak_tokens=phase.pre_tokens,
                    post_compaction=phase.post_tokens,
                )
            )

        # Without a post-compaction observation the trailing phase would count twice
        last = self.phases[-1]
        if last.post_tokens > 0:
            phases.append(
                PhaseTokenBreakdown(
                    phase_number=len(self.phases) + 1,
                    contribution=final - last.post_tokens,
                    peak_tokens=final,
                )
            )

        return sum(phase.contribution for phase in phases), phases


class TitleTracker:
    """Keeps the best title candidate seen so far, by source priority."""

    def __init__(self) -> None:
        self.first_user: MessagePreview | None = None
        self.first_command: MessagePreview | None = None
        self.first_assistant: MessagePreview | None = None
        self.session_fallback: MessagePreview | None = None

    def offer_user(self, preview: MessagePreview | None) -> None:
        if preview is None or self.first_user is not None:
            return
        if not preview.is_command:
            self.first_user = preview
        elif self.first_command is None:
            self.first_command = preview

    def offer_assistant(self, preview: MessagePreview | None) -> None:
        if self.first_assistant is None:
            self.first_assistant = preview

    def offer_session_label(self, label: str | None, timestamp: str) -> None:
        if label and self.session_fallback is None:
            self.session_fallback = MessagePreview(text=label, timestamp=timestamp)

    @property
    def preview(self) -> MessagePreview | None:
        return self.first_user or self.first_command or self.first_assistant or self.session_fallback


# =============================================================================
# Analyzer
# =============================================================================


class SessionAnalyzer:
    """Feed it a session's records in order, then read `result()`."""

    def __init__(self, sanitize: Sanitizer = sanitize_display_content) -> None:
        self.sanitize = sanitize
        self.titles = TitleTracker()
        self.activity = ActivityTracker()
        self.context = ContextTracker()
        self.message_count = 0
        self.conversational_entries = 0
        self.git_branch: str | None = None
        self.cwd: str | None = None
        # After a user turn, wait for the first main-thread reply before counting it
        self._awaiting_reply = False
        # Ids of SendMessage shutdown responses, whose results also end the session
        self._shutdown_tool_ids: set[str] = set()

    def feed_line(self, line: str) -> None:
        line = line.strip()
        if not line:
            return
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            return
        if isinstance(record, dict):
            self.feed_record(record)

    def feed_record(self, record: dict[str, Any]) -> None:
        record_type = record.get("type")
        if isinstance(record_type, str) and "." in record_type:
            self._feed_event(record_type, record)
            return

        message = parse_structured_entry(record)
        if message is None:
            # Entries without a uuid still count and can still name the session
            if record_type in ("user", "assistant"):
                self.conversational_entries += 1
            self._offer_title(record_type, record)
            return

        self.conversational_entries += 1
        self._count(message)
        if self.git_branch is None and message.git_branch:
            self.git_branch = message.git_branch
        if self.cwd is None and message.cwd:
            self.cwd = message.cwd
        self._offer_title(record_type, record)
        self._classify(message)

        if message.type == "assistant":
            self.context.observe_assistant(message)
        if message.is_compact_summary:
            self.context.observe_compaction()

    def result(self) -> SessionMetadata:
        consumption, phases = self.context.breakdown()
        return SessionMetadata(
            first_user_message=self.titles.preview,
            message_count=self.message_count or self.conversational_entries,
            is_ongoing=self.activity.is_ongoing,
            git_branch=self.git_branch,
            cwd=self.cwd,
            context_consumption=consumption,
            compaction_count=self.context.compaction_count,
            phase_breakdown=phases,
        )

    def _offer_title(self, record_type: Any, record: dict[str, Any]) -> None:
        if record_type == "user" and self.titles.first_user is None:
            self.titles.offer_user(preview_from_user_record(record, self.sanitize))
        elif record_type == "assistant" and self.titles.first_assistant is None:
            self.titles.offer_assistant(_preview_from_assistant_record(record, self.sanitize))

    def _count(self, message: Message) -> None:
        if is_user_chunk_message(message):
            self.message_count += 1
            self._awaiting_reply = True
        elif (
            self._awaiting_reply
            and message.type == "assistant"
            and message.model != SYNTHETIC_MODEL
            and not message.is_sidechain
        ):
            self.message_count += 1
            self._awaiting_reply = False

    def _classify(self, message: Message) -> None:
        if message.type == "assistant" and isinstance(message.content, list):
            for block in message.content:
                self._classify_assistant_block(block)
        elif message.type == "user":
            if isinstance(message.content, str):
                if is_interruption(message.content):
                    self.activity.ending()
                return
            rejected = message.tool_use_result == REJECTED_TOOL_USE
            for block in message.content:
                block_type = block.get("type")
                if block_type == "tool_result" and block.get("tool_use_id"):
                    if rejected or block["tool_use_id"] in self._shutdown_tool_ids:
                        self.activity.ending()
                    else:
                        self.activity.activity()
                elif (
                    block_type == "text"
                    and isinstance(block.get("text"), str)
                    and is_interruption(block["text"])
                ):
                    self.activity.ending()

    def _classify_assistant_block(self, block: dict[str, Any]) -> None:
        block_type = block.get("type")
        if block_type == "thinking" and block.get("thinking"):
            self.activity.activity()
        elif block_type == "tool_use" and block.get("id"):
            tool_input = block.get("input") if isinstance(block.get("input"), dict) else {}
            if block.get("name") == "ExitPlanMode":
                self.activity.ending()
            elif (
                block.get("name") == "SendMessage"
                and tool_input.get("type") == "shutdown_response"
                and tool_input.get("approve") is True
            ):
                self._shutdown_tool_ids.add(block["id"])
                self.activity.ending()
            else:
                self.activity.activity()
        elif block_type == "text" and str(block.get("text") or "").strip():
            self.activity.ending()

    def _feed_event(self, name: str, record: dict[str, Any]) -> None:
        data = record.get("data") if isinstance(record.get("data"), dict) else None
        timestamp = _event_timestamp(record, data)
        text = _event_text(data)

        if name.startswith("user.") and text:
            self.message_count += 1
            self.conversational_entries += 1
            if self.titles.first_user is None:
                sanitized = self.sanitize(text)
                if sanitized:
                    self.titles.first_user = MessagePreview(
                        text=sanitized[:TITLE_MAX_CHARS], timestamp=timestamp
                    )

        if name.startswith("assistant.") and name != "assistant.message_delta":
            self.conversational_entries += 1
            if self.titles.first_assistant is None and text:
                sanitized = self.sanitize(text)
                if sanitized:
                    self.titles.first_assistant = MessagePreview(
                        text=sanitized[:TITLE_MAX_CHARS], timestamp=timestamp
                    )

        if name == "session.start" and data is not None:
            self.titles.offer_session_label(session_start_label(data), timestamp)

        lowered = name.lower()
        is_delta = lowered == "assistant.message_delta"
        assistant_output = lowered.startswith("assistant.") and not is_delta and bool(text)
        session_ended = bool(_SESSION_ENDING_EVENT.match(lowered))
        tool_started = bool(_TOOL_START_EVENT.match(lowered))
        tool_finished = bool(_TOOL_ENDING_EVENT.match(lowered))

        if assistant_output or session_ended or tool_finished:
            self.activity.ending()
        elif tool_started or is_delta:
            self.activity.activity()


# =============================================================================
# File entry points
# =============================================================================


async def analyze_session_file(
    path: str,
    provider: FileSystemProvider,
    sanitize: Sanitizer = sanitize_display_content,
) -> SessionMetadata:
    """Analyze a session file in a single streaming pass.

    A missing or unreadable file yields default metadata.
    """
    if not await provider.exists(path):
        return SessionMetadata()

    analyzer = SessionAnalyzer(sanitize=sanitize)
    try:
        async with open_lines(provider, path) as lines:
            async for line in lines:
                analyzer.feed_line(line)
    except OSError as exc:
        logger.warning("Could not analyze session file %s: %s", path, exc)
        return SessionMetadata()
    return analyzer.result()


async def extract_cwd(path: str, provider: FileSystemProvider) -> str | None:
    """Working directory recorded by the first entry that has one."""
    if not await provider.exists(path):
        return None

    try:
        async with open_lines(provider, path) as lines:
            async for line in lines:
                if not line.strip():
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(record, dict) and isinstance(record.get("cwd"), str) and record["cwd"]:
                    return record["cwd"]
    except OSError as exc:
        logger.error("Error extracting cwd from %s: %s", path, exc)
    return None


async def extract_first_user_preview(
    path: str,
    provider: FileSystemProvider,
    max_lines: int = DEFAULT_PREVIEW_MAX_LINES,
    sanitize: Sanitizer = sanitize_display_content,
) -> MessagePreview | None:
    """Title preview from the first `max_lines` lines of a session file.

    Stops at the first real user message. Otherwise falls back to a slash
    command, then assistant text, then the session.start label.
    """
    if not await provider.exists(path):
        return None

    titles = TitleTracker()
    lines_read = 0
    try:
        async with open_lines(provider, path) as lines:
            async for line in lines:
                if lines_read >= max(1, max_lines):
                    break
                lines_read += 1

                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if not isinstance(record, dict):
                    continue

                record_type = record.get("type")
                if isinstance(record_type, str) and "." in record_type:
                    data = record.get("data") if isinstance(record.get("data"), dict) else None
                    timestamp = _event_timestamp(record, data)
                    text = _event_text(data)
                    if record_type.startswith("user.") and text:
                        return MessagePreview(text=text[:TITLE_MAX_CHARS], timestamp=timestamp)
                    if (
                        record_type.startswith("assistant.")
                        and record_type != "assistant.message_delta"
                        and text
                        and titles.first_assistant is None
                    ):
                        titles.first_assistant = MessagePreview(
                            text=text[:TITLE_MAX_CHARS], timestamp=timestamp
                        )
                    if record_type == "session.start" and data is not None:
                        titles.offer_session_label(session_start_label(data), timestamp)
                    continue

                if record_type == "user":
                    titles.offer_user(preview_from_user_record(record, sanitize))
                    if titles.first_user is not None:
                        return titles.first_user
                elif record_type == "assistant" and titles.first_assistant is None:
                    titles.offer_assistant(_preview_from_assistant_record(record, sanitize))
    except OSError as exc:
        logger.debug("Error extracting first user preview from %s: %s", path, exc)

    return titles.preview
