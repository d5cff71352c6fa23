"""Tests for the tools module."""

from cc_sessions.tools import extract_tool_calls, extract_tool_results


def test_extract_tool_calls():
    content = [
        {"type": "text", "text": "hi"},
        {"type": "tool_use", "id": "t1", "name": "Task", "input": {"prompt": "explore"}},
        {"type": "tool_use", "id": "t2", "name": "Read", "input": "not a dict"},
        {"type": "tool_use", "name": "NoId"},
    ]

    calls = extract_tool_calls(content)

    assert [(c.id, c.name, c.is_task) for c in calls] == [("t1", "Task", True), ("t2", "Read", False)]
    assert calls[1].input == {}


def test_extract_tool_results():
    content = [
        {"type": "tool_result", "tool_use_id": "t1", "content": "ok"},
        {"type": "tool_result", "tool_use_id": "t2", "is_error": True},
        {"type": "tool_result", "content": "orphan"},
    ]

    results = extract_tool_results(content)

    assert [(r.tool_use_id, r.content, r.is_error) for r in results] == [("t1", "ok", False), ("t2", "", True)]


def test_string_content_has_no_tools():
    assert extract_tool_calls("plain") == []
    assert extract_tool_results("plain") == []
