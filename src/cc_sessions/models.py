"""Data models for cc-sessions."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

MessageType = Literal[
    "user",
    "assistant",
    "system",
    "summary",
    "file-history-snapshot",
    "queue-operation",
]

MESSAGE_TYPES: frozenset[str] = frozenset(
    ("user", "assistant", "system", "summary", "file-history-snapshot", "queue-operation")
)

# Messages of these kinds never carry usage, role or a parent link
NON_CONVERSATIONAL_TYPES: frozenset[str] = frozenset(
    ("summary", "file-history-snapshot", "queue-operation")
)

# A content block is the raw JSON object: {"type": "text" | "thinking" | "tool_use" | "tool_result", ...}
ContentBlock = dict[str, Any]
MessageContent = str | list[ContentBlock]


@dataclass
class TokenUsage:
    """Token counters reported by the model for one assistant message."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_input_tokens: int = 0
    cache_creation_input_tokens: int = 0

    @classmethod
    def from_dict(cls, raw: Any) -> "TokenUsage | None":
        """Build usage from the raw `usage` object; missing counters are zero."""
        if not isinstance(raw, dict):
            return None

        def counter(key: str) -> int:
            value = raw.get(key)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return 0
            return max(0, int(value))

        return cls(
            input_tokens=counter("input_tokens"),
            output_tokens=counter("output_tokens"),
            cache_read_input_tokens=counter("cache_read_input_tokens"),
            cache_creation_input_tokens=counter("cache_creation_input_tokens"),
        )

    @property
    def context_tokens(self) -> int:
        """Tokens occupying the context window: input plus both cache counters."""
        return self.input_tokens + self.cache_read_input_tokens + self.cache_creation_input_tokens


@dataclass
class ToolCall:
    """A tool invocation found in message content."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    is_task: bool = False


@dataclass
class ToolResult:
    """A tool result found in message content."""

    tool_use_id: str
    content: Any = ""
    is_error: bool = False


@dataclass
class Message:
    """A normalized message, whatever log format it came from."""

    id: str
    parent_id: str | None
    type: MessageType
    timestamp: datetime | None
    content: MessageContent = ""
    role: str | None = None
    usage: TokenUsage | None = None
    model: str | None = None
    # Provenance
    cwd: str | None = None
    git_branch: str | None = None
    agent_id: str | None = None
    is_sidechain: bool = False
    is_meta: bool = False
    is_compact_summary: bool = False
    user_type: str | None = None
    # Tool linkage
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    source_tool_use_id: str | None = None
    source_tool_assistant_id: str | None = None
    tool_use_result: Any = None


@dataclass(frozen=True)
class SessionMetrics:
    """Aggregate token and duration metrics for a session."""

    duration_ms: int = 0
    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    message_count: int = 0
    cost_usd: float | None = None


@dataclass
class MessagePreview:
    """A short title candidate for a session."""

    text: str
    timestamp: str
    is_command: bool = False


@dataclass
class PhaseTokenBreakdown:
    """Context tokens attributed to one phase between compactions."""

    phase_number: int
    contribution: int
    peak_tokens: int
    post_compaction: int | None = None


@dataclass
class SessionMetadata:
    """Everything the single streaming pass learns about a session file."""

    first_user_message: MessagePreview | None = None
    message_count: int = 0
    is_ongoing: bool = False
    git_branch: str | None = None
    cwd: str | None = None
    context_consumption: int | None = None
    compaction_count: int | None = None
    phase_breakdown: list[PhaseTokenBreakdown] | None = None


@dataclass
class SemanticStep:
    """One step of an AI turn: thinking, a tool call, a tool result or output text."""

    type: Literal["thinking", "tool_call", "tool_result", "output"]
    start_time: datetime | None
    output_text: str | None = None
    source_message_id: str | None = None


@dataclass
class UserChunk:
    """A chunk holding one real user turn."""

    id: str
    user_message: Message


@dataclass
class AIChunk:
    """A chunk holding the agent's responses to a user turn."""

    id: str
    responses: list[Message] = field(default_factory=list)
    semantic_steps: list[SemanticStep] = field(default_factory=list)


Chunk = UserChunk | AIChunk


@dataclass
class SearchResult:
    """A single query occurrence inside a session."""

    session_id: str
    project_id: str
    session_title: str
    matched_text: str
    context: str
    message_type: Literal["user", "assistant"]
    timestamp: datetime | None
    group_id: str
    item_type: Literal["user", "ai"]
    match_index_in_item: int
    match_start_offset: int
    message_id: str


@dataclass
class SearchSessionsResult:
    """Results of searching every session of a project."""

    query: str
    results: list[SearchResult] = field(default_factory=list)
    total_matches: int = 0
    sessions_searched: int = 0
    # Only set for high-latency providers, where staged search may stop early
    is_partial: bool | None = None


@dataclass
class SessionSummary:
    """A session file listed from a project directory."""

    id: str
    path: str
    project_id: str
    mtime_ms: float
    metadata: SessionMetadata = field(default_factory=SessionMetadata)
