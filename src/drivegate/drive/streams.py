"""Content readers and the chunked stream copy used by fallbacks."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import tempfile
from pathlib import Path
from typing import IO, TYPE_CHECKING

from .task import dummy_context

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .protocol import ContentReader
    from .task import TaskContext

logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 32 * 1024


class BytesReader:
    """Reader over an in-memory buffer."""

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0
        self.closed = False

    async def read(self, size: int = -1) -> bytes:
        if size < 0:
            size = len(self._data) - self._pos
        chunk = self._data[self._pos:self._pos + size]
        self._pos += len(chunk)
        return chunk

    async def close(self) -> None:
        self.closed = True


class FileReader:
    """Reader over a file on local disk; blocking reads run in a worker thread."""

    def __init__(self, path: str | Path, *, remove_on_close: bool = False) -> None:
        self.path = Path(path)
        self._file: IO[bytes] | None = None
        self._remove_on_close = remove_on_close
        self.closed = False

    async def read(self, size: int = -1) -> bytes:
        if self.closed:
            raise ValueError("read from closed reader")
        if self._file is None:
            self._file = await asyncio.to_thread(open, self.path, "rb")
        return await asyncio.to_thread(self._file.read, size)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._file is not None:
            await asyncio.to_thread(self._file.close)
        if self._remove_on_close:
            with contextlib.suppress(FileNotFoundError):
                await asyncio.to_thread(os.unlink, self.path)


async def copy_stream(
    reader: ContentReader,
    write: Callable[[bytes], Awaitable[object]],
    ctx: TaskContext | None = None,
    *,
    chunk_size: int = COPY_CHUNK_SIZE,
) -> int:
    """Pump *reader* into *write* chunk by chunk, polling ``ctx`` between chunks.

    Progress is reported in bytes.  Returns the number of bytes copied.
    """
    ctx = ctx or dummy_context()
    copied = 0
    while True:
        ctx.check()
        chunk = await reader.read(chunk_size)
        if not chunk:
            break
        await write(chunk)
        copied += len(chunk)
        ctx.progress(len(chunk))
    return copied


async def read_all(reader: ContentReader) -> bytes:
    """Drain *reader* and close it."""
    try:
        return await reader.read()
    finally:
        await reader.close()


async def stage_to_temp_file(
    reader: ContentReader,
    ctx: TaskContext | None = None,
    *,
    temp_dir: str | Path | None = None,
) -> FileReader:
    """Copy *reader* into a temporary file and return a reader over it.

    The returned reader deletes the temp file when closed.  On failure
    (including cancellation) the temp file is removed before re-raising.
    """
    fd, tmp_path = await asyncio.to_thread(
        tempfile.mkstemp, prefix="drivegate-", suffix=".tmp", dir=temp_dir
    )
    f = os.fdopen(fd, "wb")
    try:

        async def _write(chunk: bytes) -> None:
            await asyncio.to_thread(f.write, chunk)

        await copy_stream(reader, _write, ctx)
        await asyncio.to_thread(f.close)
    except BaseException:
        f.close()
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise
    logger.debug("Staged stream to %s", tmp_path)
    return FileReader(tmp_path, remove_on_close=True)
