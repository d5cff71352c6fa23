"""Normalizing parser for agent session logs.

Three record shapes are understood and turned into `Message` objects:

- Claude Code entries: `{"uuid", "type", "message", "timestamp", "parentUuid", ...}`
- Flat role/content records: `{"role", "content", "timestamp"}` and aliases
- Dotted event records: `{"type": "user.message", "data": {...}, "timestamp"}`

Whole-file parsing reads the file as JSON Lines and, when that yields nothing,
falls back to loading a single JSON transcript document.
"""

import hashlib
import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

from cc_sessions.models import (
    MESSAGE_TYPES,
    NON_CONVERSATIONAL_TYPES,
    Message,
    MessageContent,
    MessageType,
    TokenUsage,
    ToolCall,
)
from cc_sessions.providers import FileSystemProvider, open_lines
from cc_sessions.sanitizer import sanitize_display_content
from cc_sessions.tools import extract_tool_calls, extract_tool_results

logger = logging.getLogger(__name__)

SESSION_STARTED_PREFIX = "Session started"
STABLE_ID_LENGTH = 24

# datetime.fromisoformat before 3.11 only takes 3 or 6 fractional digits
_FRACTIONAL_SECONDS = re.compile(r"(\d{2}:\d{2}:\d{2})\.(\d+)")

_ROLE_ALIASES: dict[str, str] = {
    "user": "user",
    "human": "user",
    "assistant": "assistant",
    "ai": "assistant",
    "copilot": "assistant",
    "system": "system",
}


# =============================================================================
# Helpers
# =============================================================================


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or epoch milliseconds into an aware datetime."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        text = _FRACTIONAL_SECONDS.sub(
            lambda m: f"{m.group(1)}.{m.group(2)[:6].ljust(6, '0')}", value.strip()
        )
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def stable_id(seed: str) -> str:
    """Deterministic identifier for a message synthesized from `seed`."""
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()[:STABLE_ID_LENGTH]


def _as_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _first_str(*values: Any) -> str | None:
    """First value that is a string, even an empty one."""
    for value in values:
        if isinstance(value, str):
            return value
    return None


def _first_text(*values: Any) -> str | None:
    """First value that is a string with visible characters."""
    for value in values:
        if isinstance(value, str) and value.strip():
            return value
    return None


def _coerce_content(raw: Any) -> MessageContent:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, list):
        return [block for block in raw if isinstance(block, dict)]
    return ""


def _pick_content(value: Any) -> MessageContent | None:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return _coerce_content(value)
    if isinstance(value, dict):
        text = _first_str(value.get("text"), value.get("value"))
        if text:
            return text
    return None


def _text_block(text: str) -> list[dict[str, Any]]:
    return [{"type": "text", "text": text}]


def _synthesize(
    message_type: MessageType,
    content: MessageContent,
    timestamp: datetime,
    seed: str,
    cwd: str | None = None,
    model: str | None = None,
) -> Message:
    """Build a message for formats that carry no ids of their own."""
    return Message(
        id=stable_id(seed),
        parent_id=None,
        type=message_type,
        timestamp=timestamp,
        role=message_type,
        content=content,
        model=model if message_type == "assistant" else None,
        cwd=cwd,
        user_type="external" if message_type == "user" else None,
        tool_calls=extract_tool_calls(content),
        tool_results=extract_tool_results(content),
    )


# =============================================================================
# Claude Code entries
# =============================================================================


def _structured_id(record: dict[str, Any]) -> str | None:
    uuid = record.get("uuid")
    if isinstance(uuid, str) and uuid:
        return uuid
    # Some exporters write "id" instead of "uuid" next to the nested message
    record_id = record.get("id")
    if isinstance(record_id, str) and record_id and isinstance(record.get("message"), dict):
        return record_id
    return None


def _is_structured_entry(record: dict[str, Any]) -> bool:
    return _structured_id(record) is not None


def parse_structured_entry(record: dict[str, Any]) -> Message | None:
    """Parse a Claude Code entry; None if the record is not one or has an unknown type."""
    if not _is_structured_entry(record):
        return None
    return _parse_structured_entry(record)


def _parse_structured_entry(record: dict[str, Any]) -> Message | None:
    message_type = record.get("type")
    if message_type not in MESSAGE_TYPES:
        # Unknown entry types (progress, result, ...) are skipped
        return None

    if "timestamp" in record:
        timestamp = parse_timestamp(record.get("timestamp"))
    else:
        timestamp = datetime.now(tz=timezone.utc)

    message = Message(
        id=_structured_id(record) or "",
        parent_id=None,
        type=message_type,
        timestamp=timestamp,
    )
    if message_type in NON_CONVERSATIONAL_TYPES:
        return message

    message.cwd = _as_str(record.get("cwd"))
    message.git_branch = _as_str(record.get("gitBranch"))
    message.is_sidechain = record.get("isSidechain") is True
    message.user_type = _as_str(record.get("userType"))
    message.parent_id = _as_str(record.get("parentUuid")) or None

    payload = _as_dict(record.get("message"))
    if message_type == "user":
        message.content = _coerce_content(payload.get("content"))
        message.role = _as_str(payload.get("role"))
        message.agent_id = _as_str(record.get("agentId"))
        message.is_meta = record.get("isMeta") is True
        message.source_tool_use_id = _as_str(record.get("sourceToolUseID"))
        message.source_tool_assistant_id = _as_str(record.get("sourceToolAssistantUUID"))
        message.tool_use_result = record.get("toolUseResult")
        message.is_compact_summary = record.get("isCompactSummary") is True
    elif message_type == "assistant":
        message.content = _coerce_content(payload.get("content"))
        message.role = _as_str(payload.get("role"))
        message.usage = TokenUsage.from_dict(payload.get("usage"))
        message.model = _as_str(payload.get("model"))
        message.agent_id = _as_str(record.get("agentId"))
    else:
        message.is_meta = record.get("isMeta") is True

    message.tool_calls = extract_tool_calls(message.content)
    message.tool_results = extract_tool_results(message.content)
    return message


# =============================================================================
# Flat role/content records
# =============================================================================


def normalize_role(raw: str | None) -> str | None:
    """Map a source role name onto user/assistant/system."""
    if not raw:
        return None
    return _ROLE_ALIASES.get(raw.lower())


def _flat_role(record: dict[str, Any]) -> str | None:
    raw = _first_str(
        record.get("role"),
        record.get("author"),
        record.get("type"),
        _as_dict(record.get("message")).get("role"),
    )
    return normalize_role(raw)


def _has_flat_role(record: dict[str, Any]) -> bool:
    return _flat_role(record) is not None


def _parse_flat_entry(record: dict[str, Any]) -> Message | None:
    role = _flat_role(record)
    if role is None:
        return None

    nested = _as_dict(record.get("message"))
    content = None
    for candidate in (record.get("content"), nested.get("content"), record.get("text"), record.get("value")):
        content = _pick_content(candidate)
        if content is not None:
            break
    if content is None:
        return None

    timestamp_raw = _first_str(
        record.get("timestamp"),
        record.get("createdAt"),
        record.get("time"),
        nested.get("timestamp"),
    )
    seed = _first_text(record.get("uuid"), record.get("id"))
    if seed is None:
        content_key = json.dumps(content, sort_keys=True, ensure_ascii=False)
        seed = f"flat-{role}-{timestamp_raw or ''}-{content_key}"

    return _synthesize(
        message_type=role,
        content=content,
        timestamp=parse_timestamp(timestamp_raw) or datetime.now(tz=timezone.utc),
        seed=seed,
        cwd=_first_str(record.get("cwd"), record.get("workspacePath")),
        model=_first_str(record.get("model"), nested.get("model")),
    )


# =============================================================================
# Dotted event records
# =============================================================================


@dataclass
class _Event:
    name: str
    data: dict[str, Any]
    timestamp: datetime
    event_id: str

    def seed(self, suffix: str) -> str:
        return f"event-{self.event_id}-{suffix}"


def _is_dotted_event(record: dict[str, Any]) -> bool:
    event_type = record.get("type")
    return isinstance(event_type, str) and "." in event_type and isinstance(record.get("data"), dict)


def _on_session_start(event: _Event) -> Message | None:
    session_id = _as_str(event.data.get("sessionId")) or ""
    return _synthesize(
        "system",
        f"{SESSION_STARTED_PREFIX} ({session_id})",
        event.timestamp,
        event.seed("session-start"),
        cwd=_first_str(event.data.get("cwd"), event.data.get("workingDirectory")),
    )


def _on_user_message(event: _Event) -> Message | None:
    content = _as_str(event.data.get("content")) or ""
    if not content.strip():
        return None
    return _synthesize(
        "user", content, event.timestamp, event.seed("user"), cwd=_as_str(event.data.get("cwd"))
    )


def _on_assistant_message(event: _Event) -> Message | None:
    content = _as_str(event.data.get("content")) or ""
    if not content.strip():
        return None
    message_id = _as_str(event.data.get("messageId")) or ""
    return _synthesize(
        "assistant",
        _text_block(content),
        event.timestamp,
        event.seed(f"assistant-{message_id}"),
        model=_as_str(event.data.get("model")),
    )


def _on_assistant_delta(event: _Event) -> Message | None:
    # Every non-empty delta becomes its own message, even when the aggregated
    # assistant.message for the same messageId is also in the log.
    content = _as_str(event.data.get("deltaContent")) or ""
    if not content.strip():
        return None
    message_id = _as_str(event.data.get("messageId")) or ""
    return _synthesize(
        "assistant",
        _text_block(content),
        event.timestamp,
        event.seed(f"delta-{message_id}"),
        model=_as_str(event.data.get("model")),
    )


def _on_tool_start(event: _Event) -> Message | None:
    tool_name = _first_str(event.data.get("toolName"), event.data.get("name")) or "unknown_tool"
    tool_input = event.data.get("input")
    if tool_input is None:
        tool_input = event.data.get("parameters")
    tool_call_id = _as_str(event.data.get("toolCallId")) or event.event_id
    block = {
        "type": "tool_use",
        "id": tool_call_id,
        "name": tool_name,
        "input": tool_input if isinstance(tool_input, dict) else {},
    }
    return _synthesize(
        "assistant", [block], event.timestamp, event.seed(f"tool-start-{tool_call_id}")
    )


def _on_tool_complete(event: _Event) -> Message | None:
    tool_call_id = _as_str(event.data.get("toolCallId")) or event.event_id
    block = {
        "type": "tool_result",
        "tool_use_id": tool_call_id,
        "content": _first_str(event.data.get("output"), event.data.get("content")) or "",
        "is_error": event.data.get("isError") is True or event.data.get("status") == "error",
    }
    return _synthesize(
        "user", [block], event.timestamp, event.seed(f"tool-complete-{tool_call_id}")
    )


def _on_session_error(event: _Event) -> Message | None:
    error_message = _first_str(event.data.get("message"), event.data.get("error")) or "Unknown error"
    error_type = _as_str(event.data.get("errorType")) or "error"
    return _synthesize(
        "system", f"Error ({error_type}): {error_message}", event.timestamp, event.seed("error")
    )


def _on_session_shutdown(event: _Event) -> Message | None:
    return _synthesize("system", "Session ended", event.timestamp, event.seed("shutdown"))


def _on_generic_event(event: _Event) -> Message | None:
    text = _first_str(
        event.data.get("content"),
        event.data.get("text"),
        event.data.get("message"),
        event.data.get("prompt"),
    )
    if not text or not text.strip():
        return None

    prefix = event.name.split(".", 1)[0].lower()
    if prefix in ("assistant", "agent"):
        return _synthesize(
            "assistant",
            _text_block(text.strip()),
            event.timestamp,
            event.seed(event.name),
            model=_as_str(event.data.get("model")),
        )
    return _synthesize(
        "user" if prefix == "user" else "system",
        text.strip(),
        event.timestamp,
        event.seed(event.name),
        cwd=_first_str(event.data.get("cwd"), event.data.get("workingDirectory")),
    )


EVENT_HANDLERS: dict[str, Callable[[_Event], Message | None]] = {
    "session.start": _on_session_start,
    "user.message": _on_user_message,
    "assistant.message": _on_assistant_message,
    "assistant.message_delta": _on_assistant_delta,
    "tool.execution_start": _on_tool_start,
    "tool.execution_complete": _on_tool_complete,
    "session.error": _on_session_error,
    "session.shutdown": _on_session_shutdown,
}


def _parse_dotted_event(record: dict[str, Any]) -> Message | None:
    name = record["type"]
    data = record["data"]
    timestamp_raw = _first_str(record.get("timestamp"), data.get("timestamp"))
    event = _Event(
        name=name,
        data=data,
        timestamp=parse_timestamp(timestamp_raw) or datetime.now(tz=timezone.utc),
        event_id=_first_str(record.get("id"), data.get("id")) or "",
    )
    handler = EVENT_HANDLERS.get(name, _on_generic_event)
    return handler(event)


# =============================================================================
# Record dispatch
# =============================================================================

# Tried in order; the first converter that returns a message wins
RECORD_PARSERS: list[
    tuple[Callable[[dict[str, Any]], bool], Callable[[dict[str, Any]], Message | None]]
] = [
    (_is_structured_entry, _parse_structured_entry),
    (_has_flat_role, _parse_flat_entry),
    (_is_dotted_event, _parse_dotted_event),
]


def parse_record(record: Any) -> Message | None:
    """Convert one decoded JSON record, or return None if no format accepts it."""
    if not isinstance(record, dict):
        return None
    for matches, convert in RECORD_PARSERS:
        if not matches(record):
            continue
        message = convert(record)
        if message is not None:
            return message
    return None


def parse_line(line: str) -> Message | None:
    """Parse one JSONL line.

    Blank lines and unsupported records give None. Invalid JSON raises
    `json.JSONDecodeError`, which file-level parsing catches and logs.
    """
    if not line.strip():
        return None
    return parse_record(json.loads(line))


# =============================================================================
# Batches and transcripts
# =============================================================================


def _timestamp_key(message: Message) -> tuple[bool, float]:
    if message.timestamp is None:
        return (True, 0.0)
    return (False, message.timestamp.timestamp())


def assign_parent_ids(messages: list[Message]) -> list[Message]:
    """Chain messages in timestamp order: each points at the one before it."""
    ordered = sorted(messages, key=_timestamp_key)
    chained: list[Message] = []
    previous_id: str | None = None
    for message in ordered:
        chained.append(replace(message, parent_id=previous_id))
        previous_id = message.id
    return chained


def consolidate_deltas(messages: list[Message]) -> list[Message]:
    """Re-chain a parsed file when it came from the dotted event format.

    A file is recognized as event-sourced by its synthesized "Session started"
    system message; any other file is returned unchanged.
    """
    for message in messages:
        if (
            message.type == "system"
            and isinstance(message.content, str)
            and message.content.startswith(SESSION_STARTED_PREFIX)
        ):
            return assign_parent_ids(messages)
    return messages


def _parse_message_array(items: list[Any]) -> list[Message]:
    messages: list[Message] = []
    for item in items:
        if isinstance(item, dict):
            message = _parse_flat_entry(item)
            if message is not None:
                messages.append(message)
    return assign_parent_ids(messages)


def _parse_request_array(items: list[Any]) -> list[Message]:
    now = datetime.now(tz=timezone.utc)
    messages: list[Message] = []

    for index, item in enumerate(items):
        if not isinstance(item, dict):
            continue

        request = _as_dict(item.get("request"))
        response_message = _as_dict(item.get("responseMessage"))
        cwd = _first_str(item.get("cwd"), item.get("workspacePath"))

        user_text = _first_text(
            item.get("prompt"),
            item.get("input"),
            item.get("query"),
            item.get("message"),
            request.get("message"),
        )
        assistant_text = _first_text(
            item.get("response"),
            item.get("answer"),
            item.get("output"),
            response_message.get("content"),
        )
        timestamp_raw = _first_str(
            item.get("timestamp"),
            item.get("createdAt"),
            item.get("time"),
            request.get("timestamp"),
        )

        if user_text:
            messages.append(
                _synthesize(
                    "user",
                    user_text,
                    parse_timestamp(timestamp_raw) or now,
                    f"request-user-{index}-{timestamp_raw or ''}",
                    cwd=cwd,
                )
            )

        if assistant_text:
            assistant_raw = _as_str(response_message.get("timestamp")) or timestamp_raw
            messages.append(
                _synthesize(
                    "assistant",
                    _text_block(assistant_text),
                    parse_timestamp(assistant_raw) or now,
                    f"request-assistant-{index}-{assistant_raw or ''}",
                    cwd=cwd,
                    model=_first_str(item.get("model"), response_message.get("model")),
                )
            )

    return assign_parent_ids(messages)


def parse_transcript(data: Any) -> list[Message]:
    """Parse a whole JSON transcript document by its shape."""
    if isinstance(data, list):
        return _parse_message_array(data)
    if not isinstance(data, dict):
        return []

    if isinstance(data.get("messages"), list):
        return _parse_message_array(data["messages"])
    if isinstance(data.get("requests"), list):
        return _parse_request_array(data["requests"])
    if isinstance(data.get("turns"), list):
        return _parse_request_array(data["turns"])

    single = _parse_flat_entry(data)
    return [single] if single else []


async def parse_transcript_file(path: str, provider: FileSystemProvider) -> list[Message]:
    """Load `path` as a single JSON document and parse it."""
    try:
        raw = await provider.read_text(path)
        data = json.loads(raw)
    except (OSError, ValueError) as exc:
        logger.debug("Failed to parse JSON transcript at %s: %s", path, exc)
        return []
    return parse_transcript(data)


async def parse_session_file(path: str, provider: FileSystemProvider) -> list[Message]:
    """Parse a session file into messages.

    Missing files give an empty list. Malformed lines are skipped. When no
    line yields a message and the file is a `.json` document, or no line
    decoded at all, the whole file is parsed as one transcript instead.
    """
    if not await provider.exists(path):
        return []

    messages: list[Message] = []
    decoded_lines = 0
    malformed_lines = 0

    try:
        async with open_lines(provider, path) as lines:
            async for line in lines:
                if not line.strip():
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError as exc:
                    malformed_lines += 1
                    logger.debug("Skipping malformed line in %s: %s", path, exc)
                    continue
                decoded_lines += 1
                message = parse_record(record)
                if message is not None:
                    messages.append(message)
    except OSError as exc:
        logger.warning("Could not read session file %s: %s", path, exc)
        return []

    if not messages and (
        path.lower().endswith(".json") or (malformed_lines and not decoded_lines)
    ):
        return await parse_transcript_file(path, provider)

    if malformed_lines:
        logger.warning("Skipped %d malformed line(s) in %s", malformed_lines, path)

    return consolidate_deltas(messages)


# =============================================================================
# Message helpers
# =============================================================================


def extract_text_content(
    message: Message, sanitize: Callable[[str], str] = sanitize_display_content
) -> str:
    """Text of a message for display: text blocks joined by newlines, sanitized."""
    if isinstance(message.content, str):
        raw = message.content
    else:
        raw = "\n".join(
            block["text"]
            for block in message.content
            if block.get("type") == "text" and isinstance(block.get("text"), str)
        )
    return sanitize(raw)


def get_task_calls(messages: list[Message]) -> list[ToolCall]:
    """All subagent Task invocations across messages."""
    return [call for message in messages for call in message.tool_calls if call.is_task]
