"""Group normalized messages into user and AI chunks."""

from cc_sessions.models import AIChunk, Chunk, Message, SemanticStep, UserChunk
from cc_sessions.sanitizer import is_command_output_content, is_interruption


def _has_user_text(text: str) -> bool:
    text = text.strip()
    return bool(text) and not is_command_output_content(text) and not is_interruption(text)


def is_user_chunk_message(message: Message) -> bool:
    """Whether a message is a real user turn rather than tool plumbing or meta noise."""
    if message.type != "user" or message.is_meta or message.is_sidechain:
        return False

    if isinstance(message.content, str):
        return _has_user_text(message.content)

    for block in message.content:
        block_type = block.get("type")
        if block_type == "image":
            return True
        if block_type == "text" and _has_user_text(str(block.get("text", ""))):
            return True
    return False


def build_semantic_steps(responses: list[Message]) -> list[SemanticStep]:
    """Break an AI turn into thinking, tool and output steps, in order."""
    steps: list[SemanticStep] = []

    for message in responses:
        if isinstance(message.content, str):
            if message.type == "assistant" and message.content.strip():
                steps.append(
                    SemanticStep(
                        type="output",
                        start_time=message.timestamp,
                        output_text=message.content,
                        source_message_id=message.id,
                    )
                )
            continue

        for block in message.content:
            block_type = block.get("type")
            if block_type == "thinking":
                step_type = "thinking"
            elif block_type == "tool_use":
                step_type = "tool_call"
            elif block_type == "tool_result":
                step_type = "tool_result"
            elif block_type == "text" and message.type == "assistant":
                text = block.get("text")
                if not isinstance(text, str) or not text.strip():
                    continue
                steps.append(
                    SemanticStep(
                        type="output",
                        start_time=message.timestamp,
                        output_text=text,
                        source_message_id=message.id,
                    )
                )
                continue
            else:
                continue
            steps.append(
                SemanticStep(type=step_type, start_time=message.timestamp, source_message_id=message.id)
            )

    return steps


def build_chunks(messages: list[Message]) -> list[Chunk]:
    """Create chunks from a list of messages.

    Every real user turn becomes a UserChunk. The assistant messages and tool
    results that follow it, up to the next user turn, form one AIChunk.
    Sidechain, system and bookkeeping messages are left out.
    """
    chunks: list[Chunk] = []
    responses: list[Message] = []

    def flush() -> None:
        if responses:
            chunks.append(
                AIChunk(
                    id=f"ai-{responses[0].id}",
                    responses=list(responses),
                    semantic_steps=build_semantic_steps(responses),
                )
            )
            responses.clear()

    for message in messages:
        if message.is_sidechain:
            continue

        if is_user_chunk_message(message):
            flush()
            chunks.append(UserChunk(id=f"user-{message.id}", user_message=message))
        elif message.type == "assistant" or (message.type == "user" and not message.is_meta):
            # Orphan assistant output before any user turn still gets its own chunk
            responses.append(message)

    flush()
    return chunks
