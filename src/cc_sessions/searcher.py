"""Full-text search over a project's sessions.

Only user turns and the final text output of each AI turn are searched.
Matching is a case-insensitive substring match on the plain-text rendering
of the content.
"""

import asyncio
import logging
import os
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Literal, TypeVar

from cc_sessions.chunker import build_chunks
from cc_sessions.models import AIChunk, Message, SearchResult, SearchSessionsResult, SemanticStep, UserChunk
from cc_sessions.parser import parse_session_file
from cc_sessions.projects import extract_session_id, is_session_file_name
from cc_sessions.providers import FileSystemProvider
from cc_sessions.sanitizer import markdown_to_plain_text, sanitize_display_content

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_MAX_RESULTS = 50
CONTEXT_CHARS = 50
SESSION_TITLE_CHARS = 100
UNTITLED_SESSION = "Untitled Session"
ELLIPSIS = "..."

LOCAL_SEARCH_BATCH = 8
REMOTE_SEARCH_BATCH = 3
LOCAL_STAT_BATCH = 128
REMOTE_STAT_BATCH = 24

# Remote providers widen the candidate set in stages until enough results turn up
REMOTE_STAGE_LIMITS = (40, 140, 320)
REMOTE_MIN_RESULTS = 8
REMOTE_TIME_BUDGET_MS = 4500


@dataclass
class SearchableEntry:
    """One piece of searchable text with the identity of where it came from."""

    text: str
    group_id: str
    message_type: Literal["user", "assistant"]
    item_type: Literal["user", "ai"]
    timestamp: datetime | None
    message_id: str


@dataclass
class Match:
    """A query occurrence inside the plain-text rendering of an entry."""

    matched_text: str
    context: str
    match_index_in_item: int
    match_start_offset: int


@dataclass
class SessionFile:
    name: str
    path: str
    mtime_ms: float


# =============================================================================
# Matching
# =============================================================================


def find_matches(text: str, query: str, context_chars: int = CONTEXT_CHARS) -> list[Match]:
    """Find every non-overlapping, case-insensitive occurrence of `query` in `text`.

    Markdown is rendered to plain text first, so offsets and context refer to
    the plain text. The context window is clamped to the content and carries
    "..." on each side that was cut.
    """
    needle = query.strip().lower()
    if not needle:
        return []

    plain = markdown_to_plain_text(text)
    haystack = plain.lower()
    matches: list[Match] = []

    pos = haystack.find(needle)
    while pos != -1:
        start = max(0, pos - context_chars)
        end = min(len(plain), pos + len(needle) + context_chars)
        context = plain[start:end]
        if start > 0:
            context = ELLIPSIS + context
        if end < len(plain):
            context = context + ELLIPSIS

        matches.append(
            Match(
                matched_text=plain[pos : pos + len(needle)],
                context=context,
                match_index_in_item=len(matches),
                match_start_offset=pos,
            )
        )
        pos = haystack.find(needle, pos + len(needle))

    return matches


def collect_matches_for_entry(
    entry: SearchableEntry,
    query: str,
    results: list[SearchResult],
    max_results: int,
    project_id: str,
    session_id: str,
    session_title: str | None,
    context_chars: int = CONTEXT_CHARS,
) -> None:
    """Append results for every match in `entry` until `results` holds `max_results`."""
    for match in find_matches(entry.text, query, context_chars):
        if len(results) >= max_results:
            return
        results.append(
            SearchResult(
                session_id=session_id,
                project_id=project_id,
                session_title=session_title or UNTITLED_SESSION,
                matched_text=match.matched_text,
                context=match.context,
                message_type=entry.message_type,
                timestamp=entry.timestamp,
                group_id=entry.group_id,
                item_type=entry.item_type,
                match_index_in_item=match.match_index_in_item,
                match_start_offset=match.match_start_offset,
                message_id=entry.message_id,
            )
        )


def extract_user_searchable_text(message: Message) -> str:
    if isinstance(message.content, str):
        raw = message.content
    else:
        raw = "".join(
            block["text"]
            for block in message.content
            if block.get("type") == "text" and isinstance(block.get("text"), str)
        )
    return sanitize_display_content(raw)


def find_last_output_step(steps: list[SemanticStep]) -> SemanticStep | None:
    for step in reversed(steps):
        if step.type == "output" and step.output_text:
            return step
    return None


def search_chunks(
    chunks: Iterable[UserChunk | AIChunk],
    query: str,
    project_id: str,
    session_id: str,
    max_results: int = DEFAULT_MAX_RESULTS,
    context_chars: int = CONTEXT_CHARS,
) -> list[SearchResult]:
    """Search user turns and the last output of each AI turn.

    The session title is the first user text seen, so matches found before
    any user turn are reported as untitled.
    """
    results: list[SearchResult] = []
    session_title: str | None = None

    for chunk in chunks:
        if len(results) >= max_results:
            break

        if isinstance(chunk, UserChunk):
            user_text = extract_user_searchable_text(chunk.user_message)
            if not user_text:
                continue
            if session_title is None:
                session_title = user_text[:SESSION_TITLE_CHARS]
            entry = SearchableEntry(
                text=user_text,
                group_id=chunk.id,
                message_type="user",
                item_type="user",
                timestamp=chunk.user_message.timestamp,
                message_id=chunk.user_message.id,
            )
        else:
            step = find_last_output_step(chunk.semantic_steps)
            if step is None:
                continue
            entry = SearchableEntry(
                text=step.output_text or "",
                group_id=chunk.id,
                message_type="assistant",
                item_type="ai",
                timestamp=step.start_time,
                message_id=step.source_message_id or (chunk.responses[0].id if chunk.responses else ""),
            )

        collect_matches_for_entry(
            entry, query, results, max_results, project_id, session_id, session_title, context_chars
        )

    return results


# =============================================================================
# Batching
# =============================================================================


async def collect_fulfilled_in_batches(
    items: list[T],
    batch_size: int,
    mapper: Callable[[T], Awaitable[R]],
) -> list[R]:
    """Map `items` concurrently, `batch_size` at a time, dropping failures."""
    size = max(1, batch_size)
    results: list[R] = []

    for i in range(0, len(items), size):
        batch = items[i : i + size]
        settled = await asyncio.gather(*(mapper(item) for item in batch), return_exceptions=True)
        for item, outcome in zip(batch, settled):
            if isinstance(outcome, BaseException):
                logger.debug("Skipping %r: %s", item, outcome)
                continue
            results.append(outcome)

    return results


def build_stage_boundaries(total_files: int, limits: Iterable[int] = REMOTE_STAGE_LIMITS) -> list[int]:
    """Strictly increasing scan boundaries, each capped at `total_files`.

    >>> build_stage_boundaries(100)
    [40, 100]
    """
    if total_files <= 0:
        return []

    boundaries: list[int] = []
    for limit in limits:
        boundary = min(total_files, limit)
        if not boundaries or boundary > boundaries[-1]:
            boundaries.append(boundary)
    return boundaries or [total_files]


# =============================================================================
# Session search
# =============================================================================


class SessionSearcher:
    """Searches the session files of a project, newest first."""

    def __init__(
        self,
        projects_dir: str,
        provider: FileSystemProvider,
        context_chars: int = CONTEXT_CHARS,
        remote_time_budget_ms: int = REMOTE_TIME_BUDGET_MS,
    ):
        self.projects_dir = projects_dir
        self.provider = provider
        self.context_chars = context_chars
        self.remote_time_budget_ms = remote_time_budget_ms

    async def search_session_file(
        self,
        project_id: str,
        session_id: str,
        path: str,
        query: str,
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> list[SearchResult]:
        messages = await parse_session_file(path, self.provider)
        return search_chunks(
            build_chunks(messages), query, project_id, session_id, max_results, self.context_chars
        )

    async def search_sessions(
        self,
        project_id: str,
        query: str,
        max_results: int = DEFAULT_MAX_RESULTS,
        session_ids: Iterable[str] | None = None,
    ) -> SearchSessionsResult:
        """Search a project's sessions until `max_results` matches are found.

        Remote providers scan in widening stages under a time budget and may
        return a partial result. Any failure outside a single file's scan is
        logged and yields an empty result.
        """
        if not query or not query.strip():
            return SearchSessionsResult(query=query)

        try:
            return await self._search(project_id, query, max_results, session_ids)
        except Exception:
            logger.exception("Error searching sessions for project %s", project_id)
            return SearchSessionsResult(query=query)

    async def _search(
        self,
        project_id: str,
        query: str,
        max_results: int,
        session_ids: Iterable[str] | None,
    ) -> SearchSessionsResult:
        started = time.monotonic()
        remote = self.provider.type == "ssh"
        normalized = query.strip().lower()
        project_path = os.path.join(self.projects_dir, project_id)

        if not await self.provider.exists(project_path):
            return SearchSessionsResult(query=query)

        files = await self._list_session_files(project_path, session_ids, remote)

        results: list[SearchResult] = []
        sessions_searched = 0
        is_partial = False
        batch_size = REMOTE_SEARCH_BATCH if remote else LOCAL_SEARCH_BATCH
        boundaries = build_stage_boundaries(len(files)) if remote else [len(files)]
        searched_until = 0
        out_of_time = False

        async def scan(file: SessionFile) -> list[SearchResult]:
            return await self.search_session_file(
                project_id, extract_session_id(file.name), file.path, normalized, max_results
            )

        for boundary in boundaries:
            for i in range(searched_until, boundary, batch_size):
                if len(results) >= max_results:
                    break
                if remote and (time.monotonic() - started) * 1000 >= self.remote_time_budget_ms:
                    is_partial = True
                    out_of_time = True
                    break

                batch = files[i : min(i + batch_size, boundary)]
                sessions_searched += len(batch)
                # Results keep batch order, so recency order holds across files
                for found in await collect_fulfilled_in_batches(batch, len(batch), scan):
                    remaining = max_results - len(results)
                    if remaining <= 0:
                        break
                    results.extend(found[:remaining])

            searched_until = boundary
            if out_of_time or not remote or len(results) >= max_results:
                break
            if boundary < len(files) and len(results) >= REMOTE_MIN_RESULTS:
                is_partial = True
                break

        if remote and len(results) < max_results and sessions_searched < len(files):
            is_partial = True

        if remote:
            logger.debug(
                "Remote search scanned %d/%d sessions in %dms (results=%d, partial=%s)",
                sessions_searched,
                len(files),
                (time.monotonic() - started) * 1000,
                len(results),
                is_partial,
            )

        return SearchSessionsResult(
            query=query,
            results=results,
            total_matches=len(results),
            sessions_searched=sessions_searched,
            is_partial=is_partial if remote else None,
        )

    async def _list_session_files(
        self, project_path: str, session_ids: Iterable[str] | None, remote: bool
    ) -> list[SessionFile]:
        wanted = set(session_ids) if session_ids is not None else None
        entries = [
            entry
            for entry in await self.provider.listdir(project_path)
            if entry.is_file
            and is_session_file_name(entry.name)
            and (wanted is None or extract_session_id(entry.name) in wanted)
        ]

        async def with_mtime(entry) -> SessionFile:
            path = os.path.join(project_path, entry.name)
            mtime_ms = entry.mtime_ms
            if mtime_ms is None:
                mtime_ms = (await self.provider.stat(path)).mtime_ms
            return SessionFile(name=entry.name, path=path, mtime_ms=mtime_ms)

        files = await collect_fulfilled_in_batches(
            entries, REMOTE_STAT_BATCH if remote else LOCAL_STAT_BATCH, with_mtime
        )
        files.sort(key=lambda f: f.mtime_ms, reverse=True)
        return files
