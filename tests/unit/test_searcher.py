"""Tests for the searcher module."""

from datetime import datetime, timezone

import pytest

from conftest import InMemoryProvider, assistant_entry, to_jsonl, user_entry

from cc_sessions.models import AIChunk, Message, SemanticStep, UserChunk
from cc_sessions.searcher import (
    SessionSearcher,
    build_stage_boundaries,
    collect_fulfilled_in_batches,
    find_matches,
    search_chunks,
)

PROJECTS = "/projects"
PROJECT = "-home-me-repo"
PROJECT_DIR = f"{PROJECTS}/{PROJECT}"


def session_content(index: int) -> str:
    return to_jsonl(
        [
            user_entry(f"u{index}", f"Where is the needle in session {index}?"),
            assistant_entry(f"a{index}", [{"type": "text", "text": "Somewhere else."}]),
        ]
    )


def make_provider(count: int, provider_type="local", **kwargs) -> InMemoryProvider:
    files = {f"{PROJECT_DIR}/s{i:03d}.jsonl": session_content(i) for i in range(count)}
    mtimes = {f"{PROJECT_DIR}/s{i:03d}.jsonl": 1000.0 + i for i in range(count)}
    return InMemoryProvider(files, provider_type=provider_type, mtimes=mtimes, **kwargs)


# =============================================================================
# Matching
# =============================================================================


def test_find_matches_offset():
    """Test the match text and offset for a simple phrase."""
    matches = find_matches("The quick brown fox", "quick")

    assert len(matches) == 1
    assert matches[0].matched_text == "quick"
    assert matches[0].match_start_offset == 4
    assert matches[0].context == "The quick brown fox"


def test_find_matches_is_case_insensitive():
    matches = find_matches("Quick thinking", "QUICK")

    assert matches[0].matched_text == "Quick"


def test_find_matches_counts_each_occurrence():
    matches = find_matches("foo bar foo", "foo")

    assert [m.match_index_in_item for m in matches] == [0, 1]
    assert [m.match_start_offset for m in matches] == [0, 8]


def test_find_matches_clamps_context_with_ellipsis():
    text = "a" * 100 + "needle" + "b" * 100

    match = find_matches(text, "needle")[0]

    assert match.context == "..." + "a" * 50 + "needle" + "b" * 50 + "..."


def test_find_matches_uses_plain_text():
    matches = find_matches("**bold** word and [a link](http://example.com)", "bold word")

    assert matches[0].match_start_offset == 0
    assert find_matches("[a link](http://example.com)", "example") == []


def test_find_matches_blank_query():
    assert find_matches("anything", "   ") == []


def test_find_matches_inside_code_span():
    matches = find_matches("Edit `__init__.py` to export the class.", "__init__")

    assert len(matches) == 1
    assert matches[0].matched_text == "__init__"


def test_find_matches_inside_fenced_code():
    matches = find_matches("Run this:\n\n```python\n# setup step\nimport os\n```\n", "# setup")

    assert len(matches) == 1
    assert matches[0].context.startswith("Run this:")


def make_message(id, type, content):
    return Message(
        id=id, parent_id=None, type=type, timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc), content=content
    )


def test_search_chunks_only_last_output_is_searched():
    user = make_message("u1", "user", "How do I deploy?")
    reply = make_message("a1", "assistant", "")
    chunks = [
        UserChunk(id="user-u1", user_message=user),
        AIChunk(
            id="ai-a1",
            responses=[reply],
            semantic_steps=[
                SemanticStep(type="output", start_time=None, output_text="draft with needle", source_message_id="a1"),
                SemanticStep(type="tool_call", start_time=None, source_message_id="a1"),
                SemanticStep(type="output", start_time=None, output_text="final answer", source_message_id="a2"),
            ],
        ),
    ]

    assert search_chunks(chunks, "needle", "proj", "sess") == []

    results = search_chunks(chunks, "final", "proj", "sess")
    assert len(results) == 1
    assert results[0].item_type == "ai"
    assert results[0].message_type == "assistant"
    assert results[0].message_id == "a2"
    assert results[0].group_id == "ai-a1"
    assert results[0].session_title == "How do I deploy?"


def test_search_chunks_title_and_cap():
    chunks = [
        UserChunk(id="user-u1", user_message=make_message("u1", "user", "x" * 150 + " deploy deploy deploy")),
    ]

    results = search_chunks(chunks, "deploy", "proj", "sess", max_results=2)

    assert len(results) == 2
    assert results[0].session_title == "x" * 100
    assert results[0].item_type == "user"


def test_search_chunks_untitled_when_no_user_text():
    chunks = [
        AIChunk(
            id="ai-a1",
            responses=[make_message("a1", "assistant", "")],
            semantic_steps=[SemanticStep(type="output", start_time=None, output_text="needle")],
        )
    ]

    results = search_chunks(chunks, "needle", "proj", "sess")

    assert results[0].session_title == "Untitled Session"
    assert results[0].message_id == "a1"


# =============================================================================
# Batching
# =============================================================================


def test_build_stage_boundaries():
    assert build_stage_boundaries(0) == []
    assert build_stage_boundaries(10) == [10]
    assert build_stage_boundaries(100) == [40, 100]
    assert build_stage_boundaries(1000) == [40, 140, 320]


@pytest.mark.asyncio
async def test_collect_fulfilled_in_batches_drops_failures():
    async def mapper(n):
        if n == 3:
            raise ValueError("bad item")
        return n * 10

    assert await collect_fulfilled_in_batches([1, 2, 3, 4, 5], 2, mapper) == [10, 20, 40, 50]
    assert await collect_fulfilled_in_batches([1], 0, mapper) == [10]


# =============================================================================
# Session search
# =============================================================================


@pytest.mark.asyncio
async def test_search_sessions_newest_first():
    searcher = SessionSearcher(PROJECTS, make_provider(3))

    outcome = await searcher.search_sessions(PROJECT, "needle")

    assert [r.session_id for r in outcome.results] == ["s002", "s001", "s000"]
    assert outcome.total_matches == 3
    assert outcome.sessions_searched == 3
    assert outcome.is_partial is None
    assert outcome.results[0].matched_text == "needle"


@pytest.mark.asyncio
async def test_search_sessions_stats_when_listing_has_no_mtime():
    provider = make_provider(2, omit_mtime=True)

    outcome = await SessionSearcher(PROJECTS, provider).search_sessions(PROJECT, "needle")

    assert len(provider.stat_calls) == 2
    assert [r.session_id for r in outcome.results] == ["s001", "s000"]


@pytest.mark.asyncio
async def test_search_sessions_respects_cap_and_filter():
    searcher = SessionSearcher(PROJECTS, make_provider(20))

    capped = await searcher.search_sessions(PROJECT, "needle", max_results=5)
    filtered = await searcher.search_sessions(PROJECT, "needle", session_ids=["s004", "s010"])

    assert capped.total_matches == 5
    assert capped.sessions_searched == 8
    assert sorted(r.session_id for r in filtered.results) == ["s004", "s010"]


@pytest.mark.asyncio
async def test_search_sessions_empty_query_and_missing_project():
    searcher = SessionSearcher(PROJECTS, make_provider(1))

    empty = await searcher.search_sessions(PROJECT, "  ")
    missing = await searcher.search_sessions("-nope", "needle")

    assert empty.results == [] and empty.sessions_searched == 0
    assert missing.results == [] and missing.total_matches == 0


@pytest.mark.asyncio
async def test_search_sessions_isolates_file_failures():
    class FlakySearcher(SessionSearcher):
        async def search_session_file(self, project_id, session_id, path, query, max_results=50):
            if session_id == "s001":
                raise RuntimeError("corrupt file")
            return await super().search_session_file(project_id, session_id, path, query, max_results)

    outcome = await FlakySearcher(PROJECTS, make_provider(3)).search_sessions(PROJECT, "needle")

    assert [r.session_id for r in outcome.results] == ["s002", "s000"]
    assert outcome.sessions_searched == 3


@pytest.mark.asyncio
async def test_search_sessions_listing_failure_returns_empty():
    provider = make_provider(2, failing={PROJECT_DIR})

    outcome = await SessionSearcher(PROJECTS, provider).search_sessions(PROJECT, "needle")

    assert outcome.results == []
    assert outcome.sessions_searched == 0


@pytest.mark.asyncio
async def test_remote_search_stops_after_first_stage_with_enough_results():
    searcher = SessionSearcher(PROJECTS, make_provider(50, provider_type="ssh"))

    outcome = await searcher.search_sessions(PROJECT, "needle", max_results=100)

    assert outcome.sessions_searched == 40
    assert outcome.total_matches == 40
    assert outcome.is_partial is True


@pytest.mark.asyncio
async def test_remote_search_complete_when_pool_is_exhausted():
    searcher = SessionSearcher(PROJECTS, make_provider(5, provider_type="ssh"))

    outcome = await searcher.search_sessions(PROJECT, "needle")

    assert outcome.sessions_searched == 5
    assert outcome.is_partial is False


@pytest.mark.asyncio
async def test_remote_search_time_budget():
    searcher = SessionSearcher(PROJECTS, make_provider(5, provider_type="ssh"), remote_time_budget_ms=0)

    outcome = await searcher.search_sessions(PROJECT, "needle")

    assert outcome.sessions_searched == 0
    assert outcome.results == []
    assert outcome.is_partial is True