"""Tool invocation and result extraction from message content."""

from cc_sessions.models import MessageContent, ToolCall, ToolResult

TASK_TOOL_NAME = "Task"


def extract_tool_calls(content: MessageContent) -> list[ToolCall]:
    """Return the tool_use blocks in content, in order."""
    if not isinstance(content, list):
        return []

    calls: list[ToolCall] = []
    for block in content:
        if not isinstance(block, dict) or block.get("type") != "tool_use":
            continue
        block_id = block.get("id")
        name = block.get("name")
        if not isinstance(block_id, str) or not isinstance(name, str):
            continue
        tool_input = block.get("input")
        calls.append(
            ToolCall(
                id=block_id,
                name=name,
                input=tool_input if isinstance(tool_input, dict) else {},
                is_task=name == TASK_TOOL_NAME,
            )
        )
    return calls


def extract_tool_results(content: MessageContent) -> list[ToolResult]:
    """Return the tool_result blocks in content, in order."""
    if not isinstance(content, list):
        return []

    results: list[ToolResult] = []
    for block in content:
        if not isinstance(block, dict) or block.get("type") != "tool_result":
            continue
        tool_use_id = block.get("tool_use_id")
        if not isinstance(tool_use_id, str):
            continue
        results.append(
            ToolResult(
                tool_use_id=tool_use_id,
                content=block.get("content", ""),
                is_error=block.get("is_error") is True,
            )
        )
    return results
