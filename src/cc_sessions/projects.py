"""Project directory discovery and session listing.

Each project is a directory under the projects root whose name encodes the
project's path (`/home/me/repo` is stored as `-home-me-repo`). Session files
inside it are named `<session id>.jsonl` or `<session id>.json`.
"""

import logging
import os
from dataclasses import dataclass

from cc_sessions.analyzer import analyze_session_file, extract_cwd
from cc_sessions.models import SessionSummary
from cc_sessions.providers import FileSystemProvider

logger = logging.getLogger(__name__)

SESSION_FILE_SUFFIXES = (".jsonl", ".json")


@dataclass
class ProjectInfo:
    id: str
    path: str
    session_count: int
    # Modification time of the newest session file
    last_modified_ms: float | None = None


def is_valid_encoded_path(name: str) -> bool:
    return name.startswith("-")


def decode_project_path(name: str) -> str:
    """Best-effort decode of a project directory name.

    Lossy: a dash that was part of a directory name decodes as a separator.

    >>> decode_project_path("-home-me-repo")
    '/home/me/repo'
    """
    return name.replace("-", "/")


def is_session_file_name(name: str) -> bool:
    return name.endswith(SESSION_FILE_SUFFIXES) and not name.startswith(".")


def extract_session_id(name: str) -> str:
    for suffix in SESSION_FILE_SUFFIXES:
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


async def list_session_paths(project_dir: str, provider: FileSystemProvider) -> list[str]:
    """Session files in a project directory, or [] if it does not exist."""
    if not await provider.exists(project_dir):
        return []
    entries = await provider.listdir(project_dir)
    return [
        os.path.join(project_dir, entry.name)
        for entry in entries
        if entry.is_file and is_session_file_name(entry.name)
    ]


async def list_projects(projects_dir: str, provider: FileSystemProvider) -> list[ProjectInfo]:
    """All project directories, most recently active first."""
    if not await provider.exists(projects_dir):
        return []

    resolver = ProjectPathResolver(projects_dir, provider)
    projects: list[ProjectInfo] = []
    for entry in await provider.listdir(projects_dir):
        if entry.is_file or entry.name.startswith("."):
            continue
        project_dir = os.path.join(projects_dir, entry.name)
        sessions = [
            child
            for child in await provider.listdir(project_dir)
            if child.is_file and is_session_file_name(child.name)
        ]
        mtimes = [child.mtime_ms for child in sessions if child.mtime_ms is not None]
        projects.append(
            ProjectInfo(
                id=entry.name,
                path=await resolver.resolve(
                    entry.name,
                    session_paths=[os.path.join(project_dir, child.name) for child in sessions],
                ),
                session_count=len(sessions),
                last_modified_ms=max(mtimes) if mtimes else None,
            )
        )

    projects.sort(key=lambda p: p.last_modified_ms or 0, reverse=True)
    return projects


async def list_project_sessions(
    projects_dir: str,
    project_id: str,
    provider: FileSystemProvider,
    limit: int | None = None,
) -> list[SessionSummary]:
    """Sessions of one project, newest first, with streaming metadata.

    A failing directory listing propagates as ProviderError.
    """
    project_dir = os.path.join(projects_dir, project_id)
    entries = [
        entry
        for entry in await provider.listdir(project_dir)
        if entry.is_file and is_session_file_name(entry.name)
    ]

    stamped: list[tuple[str, float]] = []
    for entry in entries:
        path = os.path.join(project_dir, entry.name)
        mtime_ms = entry.mtime_ms
        if mtime_ms is None:
            mtime_ms = (await provider.stat(path)).mtime_ms
        stamped.append((entry.name, mtime_ms))
    stamped.sort(key=lambda item: item[1], reverse=True)
    if limit is not None:
        stamped = stamped[:limit]

    summaries = []
    for name, mtime_ms in stamped:
        path = os.path.join(project_dir, name)
        summaries.append(
            SessionSummary(
                id=extract_session_id(name),
                path=path,
                project_id=project_id,
                mtime_ms=mtime_ms,
                metadata=await analyze_session_file(path, provider),
            )
        )
    return summaries


class ProjectPathResolver:
    """Resolves project ids to the filesystem path the sessions ran in.

    Resolution order: an absolute cwd hint, then the cwd recorded in the
    project's session files, then the decoded directory name. Results are
    memoized per project id.
    """

    def __init__(self, projects_dir: str, provider: FileSystemProvider):
        self.projects_dir = projects_dir
        self.provider = provider
        self._cache: dict[str, str] = {}

    async def resolve(
        self,
        project_id: str,
        cwd_hint: str | None = None,
        session_paths: list[str] | None = None,
        force_refresh: bool = False,
    ) -> str:
        if not force_refresh and project_id in self._cache:
            return self._cache[project_id]

        hint = (cwd_hint or "").strip()
        if hint and os.path.isabs(hint):
            self._cache[project_id] = hint
            return hint

        if not session_paths:
            session_paths = await self._list_session_paths(project_id)

        # A remote read is expensive, and one recorded cwd is enough
        candidates = session_paths[:1] if self.provider.type == "ssh" else session_paths
        for path in candidates:
            cwd = await extract_cwd(path, self.provider)
            if cwd and os.path.isabs(cwd):
                self._cache[project_id] = cwd
                return cwd

        if is_valid_encoded_path(project_id):
            fallback = decode_project_path(project_id)
        else:
            fallback = os.path.join(self.projects_dir, project_id)
        self._cache[project_id] = fallback
        return fallback

    def invalidate(self, project_id: str) -> None:
        self._cache.pop(project_id, None)

    def clear(self) -> None:
        self._cache.clear()

    async def _list_session_paths(self, project_id: str) -> list[str]:
        try:
            return await list_session_paths(os.path.join(self.projects_dir, project_id), self.provider)
        except OSError as exc:
            logger.error("Failed to read session files for %s: %s", project_id, exc)
            return []
