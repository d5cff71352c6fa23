"""File-system access for session files.

Everything that reads session data goes through a `FileSystemProvider`, so the
same parsing and search code runs against local disk or a remote host. Only
the local implementation lives here; remote transports plug in by
implementing the protocol and reporting `type = "ssh"`.
"""

import asyncio
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Protocol

ProviderType = Literal["local", "ssh"]

# Characters read per block when streaming a file
READ_BLOCK_CHARS = 64 * 1024


class ProviderError(OSError):
    """An I/O failure inside a file-system provider."""


@dataclass
class DirEntry:
    """One entry of a directory listing."""

    name: str
    is_file: bool
    mtime_ms: float | None = None


@dataclass
class FileStat:
    mtime_ms: float
    size: int = 0


class FileSystemProvider(Protocol):
    """What the parser, analyzer and searcher need from a file system."""

    type: ProviderType

    async def exists(self, path: str) -> bool: ...

    async def read_text(self, path: str) -> str: ...

    def iter_lines(self, path: str) -> AsyncIterator[str]:
        """Stream a file line by line, accepting \\n, \\r\\n and \\r endings."""
        ...

    async def listdir(self, path: str) -> list[DirEntry]: ...

    async def stat(self, path: str) -> FileStat: ...


class LocalFileSystemProvider:
    """Provider backed by the local disk."""

    type: ProviderType = "local"

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(os.path.exists, path)

    async def read_text(self, path: str) -> str:
        try:
            return await asyncio.to_thread(Path(path).read_text, encoding="utf-8")
        except OSError as exc:
            raise ProviderError(f"Cannot read {path}: {exc}") from exc

    async def iter_lines(self, path: str) -> AsyncIterator[str]:
        try:
            handle = await asyncio.to_thread(open, path, encoding="utf-8", errors="replace")
        except OSError as exc:
            raise ProviderError(f"Cannot open {path}: {exc}") from exc

        try:
            pending = ""
            while True:
                try:
                    block = await asyncio.to_thread(handle.read, READ_BLOCK_CHARS)
                except OSError as exc:
                    raise ProviderError(f"Cannot read {path}: {exc}") from exc
                if not block:
                    break
                # Universal newline mode has already folded \r\n and \r into \n
                *lines, pending = (pending + block).split("\n")
                for line in lines:
                    yield line
            if pending:
                yield pending
        finally:
            handle.close()

    async def listdir(self, path: str) -> list[DirEntry]:
        try:
            return await asyncio.to_thread(_scan_dir, path)
        except OSError as exc:
            raise ProviderError(f"Cannot list {path}: {exc}") from exc

    async def stat(self, path: str) -> FileStat:
        try:
            result = await asyncio.to_thread(os.stat, path)
        except OSError as exc:
            raise ProviderError(f"Cannot stat {path}: {exc}") from exc
        return FileStat(mtime_ms=result.st_mtime * 1000, size=result.st_size)


def _scan_dir(path: str) -> list[DirEntry]:
    entries: list[DirEntry] = []
    with os.scandir(path) as it:
        for entry in it:
            try:
                is_file = entry.is_file()
                mtime_ms = entry.stat().st_mtime * 1000 if is_file else None
            except OSError:
                # Entry vanished between listing and stat
                continue
            entries.append(DirEntry(name=entry.name, is_file=is_file, mtime_ms=mtime_ms))
    return entries


@asynccontextmanager
async def open_lines(provider: FileSystemProvider, path: str) -> AsyncIterator[AsyncIterator[str]]:
    """Stream lines from `path` and close the stream even when the reader stops early."""
    lines = provider.iter_lines(path)
    try:
        yield lines
    finally:
        aclose = getattr(lines, "aclose", None)
        if aclose is not None:
            await aclose()
