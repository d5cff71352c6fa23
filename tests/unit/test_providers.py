"""Tests for the providers module."""

import pytest

from cc_sessions.providers import LocalFileSystemProvider, ProviderError, open_lines


@pytest.mark.asyncio
async def test_iter_lines_handles_all_newline_styles(temp_dir):
    path = temp_dir / "mixed.jsonl"
    path.write_bytes(b"one\r\ntwo\rthree\nfour")
    provider = LocalFileSystemProvider()

    lines = [line async for line in provider.iter_lines(str(path))]

    assert lines == ["one", "two", "three", "four"]


@pytest.mark.asyncio
async def test_iter_lines_spans_read_blocks(temp_dir, monkeypatch):
    monkeypatch.setattr("cc_sessions.providers.READ_BLOCK_CHARS", 4)
    path = temp_dir / "long.jsonl"
    path.write_text("abcdefghij\nklm\n")

    lines = [line async for line in LocalFileSystemProvider().iter_lines(str(path))]

    assert lines == ["abcdefghij", "klm"]


@pytest.mark.asyncio
async def test_open_lines_closes_early(temp_dir):
    path = temp_dir / "s.jsonl"
    path.write_text("a\nb\nc\n")

    async with open_lines(LocalFileSystemProvider(), str(path)) as lines:
        async for line in lines:
            first = line
            break

    assert first == "a"


@pytest.mark.asyncio
async def test_local_provider_listing_and_stat(temp_dir):
    (temp_dir / "sub").mkdir()
    (temp_dir / "s.jsonl").write_text("{}\n")
    provider = LocalFileSystemProvider()

    entries = {entry.name: entry for entry in await provider.listdir(str(temp_dir))}
    stat = await provider.stat(str(temp_dir / "s.jsonl"))

    assert entries["s.jsonl"].is_file and entries["s.jsonl"].mtime_ms is not None
    assert not entries["sub"].is_file
    assert stat.size == 3
    assert await provider.exists(str(temp_dir / "s.jsonl"))
    assert await provider.read_text(str(temp_dir / "s.jsonl")) == "{}\n"


@pytest.mark.asyncio
async def test_local_provider_wraps_os_errors(temp_dir):
    provider = LocalFileSystemProvider()

    with pytest.raises(ProviderError):
        await provider.listdir(str(temp_dir / "missing"))
    with pytest.raises(ProviderError):
        await provider.stat(str(temp_dir / "missing"))
    with pytest.raises(ProviderError):
        async for _ in provider.iter_lines(str(temp_dir / "missing")):
            pass
