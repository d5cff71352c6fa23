"""Pytest fixtures for cc-sessions tests."""

import json
import posixpath
import re
import tempfile
from pathlib import Path

import pytest

from cc_sessions.providers import DirEntry, FileStat, ProviderError


class InMemoryProvider:
    """FileSystemProvider over a dict of path -> text, for tests."""

    def __init__(self, files=None, provider_type="local", mtimes=None, failing=None, omit_mtime=False):
        self.type = provider_type
        self.files: dict[str, str] = dict(files or {})
        self.mtimes: dict[str, float] = dict(mtimes or {})
        # Paths whose reads raise ProviderError
        self.failing: set[str] = set(failing or ())
        # Leave mtime out of listings so callers have to stat
        self.omit_mtime = omit_mtime
        self.stat_calls: list[str] = []
        self.read_calls: list[str] = []

    def _dirs(self) -> set[str]:
        dirs = set()
        for path in self.files:
            parent = posixpath.dirname(path)
            while parent and parent not in dirs:
                dirs.add(parent)
                parent = posixpath.dirname(parent) if parent != "/" else ""
        return dirs

    def _check(self, path: str) -> None:
        if path in self.failing:
            raise ProviderError(f"Cannot read {path}: simulated failure")

    async def exists(self, path: str) -> bool:
        return path in self.files or path in self._dirs()

    async def read_text(self, path: str) -> str:
        self._check(path)
        self.read_calls.append(path)
        if path not in self.files:
            raise ProviderError(f"Cannot read {path}: missing")
        return self.files[path]

    async def iter_lines(self, path: str):
        self._check(path)
        self.read_calls.append(path)
        if path not in self.files:
            raise ProviderError(f"Cannot open {path}: missing")
        for line in re.split(r"\r\n|\r|\n", self.files[path]):
            yield line

    async def listdir(self, path: str) -> list[DirEntry]:
        self._check(path)
        if path not in self._dirs():
            raise ProviderError(f"Cannot list {path}: missing")
        entries: dict[str, DirEntry] = {}
        prefix = path.rstrip("/") + "/"
        for file_path in self.files:
            if not file_path.startswith(prefix):
                continue
            rest = file_path[len(prefix) :]
            name, _, below = rest.partition("/")
            if below:
                entries.setdefault(name, DirEntry(name=name, is_file=False))
            else:
                mtime = None if self.omit_mtime else self.mtimes.get(file_path, 0.0)
                entries[name] = DirEntry(name=name, is_file=True, mtime_ms=mtime)
        return list(entries.values())

    async def stat(self, path: str) -> FileStat:
        self._check(path)
        self.stat_calls.append(path)
        return FileStat(mtime_ms=self.mtimes.get(path, 0.0), size=len(self.files.get(path, "")))


def to_jsonl(records) -> str:
    return "".join(json.dumps(record) + "\n" for record in records)


def user_entry(uuid, content, timestamp="2024-01-15T10:00:00Z", **extra):
    entry = {
        "type": "user",
        "uuid": uuid,
        "timestamp": timestamp,
        "message": {"role": "user", "content": content},
    }
    entry.update(extra)
    return entry


def assistant_entry(uuid, content, timestamp="2024-01-15T10:00:05Z", usage=None, model="claude-sonnet", **extra):
    message = {"role": "assistant", "content": content, "model": model}
    if usage is not None:
        message["usage"] = usage
    entry = {"type": "assistant", "uuid": uuid, "timestamp": timestamp, "message": message}
    entry.update(extra)
    return entry


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_records():
    """A short two-turn session in the structured entry format."""
    return [
        user_entry(
            "msg-001",
            "How do I implement authentication?",
            cwd="/home/me/repo",
            gitBranch="main",
        ),
        assistant_entry(
            "msg-002",
            [{"type": "text", "text": "For authentication, you can use JWT tokens..."}],
            usage={"input_tokens": 100, "output_tokens": 20, "cache_read_input_tokens": 5},
            parentUuid="msg-001",
        ),
        user_entry("msg-003", "Can you show me an example?", timestamp="2024-01-15T10:01:00Z"),
        assistant_entry(
            "msg-004",
            [
                {"type": "thinking", "thinking": "Let me think about a good example..."},
                {"type": "text", "text": "Here's an example of JWT authentication in Python..."},
            ],
            timestamp="2024-01-15T10:01:10Z",
            usage={"input_tokens": 150, "output_tokens": 40, "cache_creation_input_tokens": 10},
        ),
    ]


@pytest.fixture
def sample_session_jsonl(temp_dir, sample_records):
    """Create a sample JSONL session file on disk."""
    session_file = temp_dir / "test-session.jsonl"
    session_file.write_text(to_jsonl(sample_records))
    return session_file


@pytest.fixture
def projects_dir(temp_dir, sample_records):
    """A projects root with one project holding one session."""
    project = temp_dir / "projects" / "-home-me-repo"
    project.mkdir(parents=True)
    (project / "abc12345-session.jsonl").write_text(to_jsonl(sample_records))
    return temp_dir / "projects"
