"""Tests for drive/streams.py: readers, stream copy and temp staging."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

from drivegate.drive.exceptions import TaskCancelledError
from drivegate.drive.streams import (
    COPY_CHUNK_SIZE,
    BytesReader,
    FileReader,
    copy_stream,
    read_all,
    stage_to_temp_file,
)
from drivegate.drive.task import TaskContext

if TYPE_CHECKING:
    from pathlib import Path


class _CancellingReader:
    """Cancels *ctx* after handing out *after* chunks."""

    def __init__(self, ctx: TaskContext, after: int) -> None:
        self.ctx = ctx
        self.after = after
        self.reads = 0

    async def read(self, size: int = -1) -> bytes:
        self.reads += 1
        if self.reads > self.after:
            self.ctx.cancel()
        return b"x" * (size if size > 0 else 10)

    async def close(self) -> None:
        pass


class TestBytesReader:
    async def test_read_in_chunks(self):
        reader = BytesReader(b"abcdef")
        assert await reader.read(4) == b"abcd"
        assert await reader.read(4) == b"ef"
        assert await reader.read(4) == b""

    async def test_read_all_closes(self):
        reader = BytesReader(b"abc")
        assert await read_all(reader) == b"abc"
        assert reader.closed


class TestFileReader:
    async def test_reads_file(self, tmp_path: Path):
        path = tmp_path / "f.bin"
        path.write_bytes(b"content")
        reader = FileReader(path)
        assert await reader.read() == b"content"
        await reader.close()
        assert path.exists()

    async def test_remove_on_close(self, tmp_path: Path):
        path = tmp_path / "f.bin"
        path.write_bytes(b"content")
        reader = FileReader(path, remove_on_close=True)
        await reader.read(3)
        await reader.close()
        await reader.close()
        assert not path.exists()


class TestCopyStream:
    async def test_copies_and_reports_bytes(self):
        data = b"a" * (COPY_CHUNK_SIZE * 2 + 5)
        out = bytearray()
        ctx = TaskContext()

        async def _write(chunk: bytes) -> None:
            out.extend(chunk)

        copied = await copy_stream(BytesReader(data), _write, ctx)
        assert copied == len(data)
        assert bytes(out) == data
        assert ctx.loaded == len(data)

    async def test_cancellation_between_chunks(self):
        ctx = TaskContext()
        chunks: list[bytes] = []

        async def _write(chunk: bytes) -> None:
            chunks.append(chunk)

        with pytest.raises(TaskCancelledError):
            await copy_stream(_CancellingReader(ctx, after=2), _write, ctx)
        assert len(chunks) == 3


class TestStageToTempFile:
    async def test_staged_file_removed_on_close(self, tmp_path: Path):
        reader = await stage_to_temp_file(BytesReader(b"payload"), temp_dir=tmp_path)
        assert reader.path.exists()
        assert reader.path.parent == tmp_path
        assert await reader.read() == b"payload"
        await reader.close()
        assert not reader.path.exists()

    async def test_temp_file_removed_on_cancel(self, tmp_path: Path):
        ctx = TaskContext()
        with pytest.raises(TaskCancelledError):
            await stage_to_temp_file(_CancellingReader(ctx, after=1), ctx, temp_dir=tmp_path)
        assert os.listdir(tmp_path) == []
