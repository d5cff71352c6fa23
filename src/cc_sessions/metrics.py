"""Token, duration and message-count metrics for a parsed session."""

from collections.abc import Iterable

from cc_sessions.models import Message, SessionMetrics

EMPTY_METRICS = SessionMetrics()


def compute_metrics(messages: Iterable[Message]) -> SessionMetrics:
    """Reduce messages to SessionMetrics in one pass.

    Messages without usage contribute nothing to the token counters and
    messages without a timestamp are left out of the duration.
    """
    input_tokens = 0
    output_tokens = 0
    cache_read_tokens = 0
    cache_creation_tokens = 0
    message_count = 0
    # Epoch milliseconds of the earliest and latest timestamp seen
    min_time: float | None = None
    max_time: float | None = None

    for message in messages:
        message_count += 1

        if message.timestamp is not None:
            ts = message.timestamp.timestamp() * 1000
            if min_time is None or ts < min_time:
                min_time = ts
            if max_time is None or ts > max_time:
                max_time = ts

        if message.usage is not None:
            input_tokens += message.usage.input_tokens
            output_tokens += message.usage.output_tokens
            cache_read_tokens += message.usage.cache_read_input_tokens
            cache_creation_tokens += message.usage.cache_creation_input_tokens

    if message_count == 0:
        return EMPTY_METRICS

    duration_ms = 0
    if min_time is not None and max_time is not None:
        duration_ms = round(max_time - min_time)

    return SessionMetrics(
        duration_ms=duration_ms,
        total_tokens=input_tokens + output_tokens + cache_read_tokens + cache_creation_tokens,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cache_read_tokens=cache_read_tokens,
        cache_creation_tokens=cache_creation_tokens,
        message_count=message_count,
        # No pricing table is applied, so cost stays unknown
        cost_usd=None,
    )
