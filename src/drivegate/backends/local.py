"""LocalDrive: a directory on the host filesystem exposed as a drive."""

from __future__ import annotations

import asyncio
import contextlib
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from drivegate.drive.exceptions import NotAllowedError, NotFoundError, UnsupportedError
from drivegate.drive.streams import FileReader, copy_stream
from drivegate.drive.types import (
    BaseEntry,
    ContentURL,
    DriveMeta,
    EntryType,
    UploadConfig,
    find_entry,
    use_local_provider,
)
from drivegate.drive.utils import clean_path, is_root_path, path_join, validate_path

if TYPE_CHECKING:
    from drivegate.drive.cache import EntryCacheItem
    from drivegate.drive.protocol import ContentReader, Entry
    from drivegate.drive.task import TaskContext


@dataclass
class LocalEntry(BaseEntry):
    """Entry of a :class:`LocalDrive`."""

    async def get_reader(self) -> ContentReader:
        if self.is_dir:
            raise NotAllowedError("cannot read a directory")
        assert isinstance(self.drive, LocalDrive)
        return FileReader(self.drive._resolve_path(self.path))

    async def get_url(self) -> ContentURL:
        raise UnsupportedError("local files have no download url")


class LocalDrive:
    """Direct disk access rooted at *root_dir*.

    Security: ``_resolve_path()`` keeps every path inside ``root_dir``.
    Copy is unsupported (the dispatcher streams instead); move is a rename.
    """

    def __init__(self, root_dir: Path | str, *, chunk_threshold: int | None = None) -> None:
        self.root_dir = Path(root_dir).resolve()
        self.chunk_threshold = chunk_threshold

        if not self.root_dir.exists():
            raise NotFoundError(f"Root directory does not exist: {self.root_dir}")
        if not self.root_dir.is_dir():
            raise NotAllowedError(f"Root path is not a directory: {self.root_dir}")

    # =========================================================================
    # Path Resolution & Security
    # =========================================================================

    def _resolve_path(self, path: str) -> Path:
        """Resolve a drive path to a physical path below ``root_dir``."""
        path = clean_path(path)
        if not path:
            return self.root_dir

        resolved = (self.root_dir / path).resolve()
        try:
            resolved.relative_to(self.root_dir)
        except ValueError:
            raise NotAllowedError(
                f"Path traversal detected: {path} resolves outside the drive root"
            ) from None
        return resolved

    def _new_entry(self, path: str, st: os.stat_result, is_dir: bool) -> LocalEntry:
        return LocalEntry(
            path=path,
            type=EntryType.DIR if is_dir else EntryType.FILE,
            size=-1 if is_dir else st.st_size,
            mod_time=int(st.st_mtime * 1000),
            drive=self,
        )

    def _stat(self, path: str) -> LocalEntry:
        resolved = self._resolve_path(path)
        try:
            st = resolved.stat()
        except (FileNotFoundError, NotADirectoryError):
            raise NotFoundError(f"Not found: {path}") from None
        return self._new_entry(path, st, resolved.is_dir())

    # =========================================================================
    # Read
    # =========================================================================

    async def meta(self) -> DriveMeta:
        return DriveMeta(can_write=True)

    async def get(self, path: str) -> Entry:
        path = clean_path(path)
        if is_root_path(path):
            return LocalEntry(path="", type=EntryType.DIR, drive=self)
        return await asyncio.to_thread(self._stat, path)

    async def list_dir(self, path: str) -> list[Entry]:
        path = clean_path(path)
        resolved = self._resolve_path(path)

        def _scan() -> list[Entry]:
            if not resolved.exists():
                raise NotFoundError(f"Not found: {path}")
            if not resolved.is_dir():
                raise NotAllowedError(f"Not a directory: {path}")
            entries: list[Entry] = []
            for item in os.scandir(resolved):
                try:
                    entries.append(
                        self._new_entry(path_join(path, item.name), item.stat(), item.is_dir())
                    )
                except OSError:
                    continue
            return entries

        return await asyncio.to_thread(_scan)

    def restore_entry(self, item: EntryCacheItem) -> Entry:
        return LocalEntry(
            path=item.path, type=item.type, size=item.size, mod_time=item.mod_time, drive=self
        )

    # =========================================================================
    # Write
    # =========================================================================

    async def save(
        self,
        path: str,
        size: int,
        override: bool,
        reader: ContentReader,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        """Write *reader* to *path*. Atomic via tempfile + replace."""
        path = clean_path(path)
        valid, error = validate_path(path)
        if not valid or not path:
            raise NotAllowedError(error or "cannot save to the drive root")
        resolved = self._resolve_path(path)
        if not override and await asyncio.to_thread(resolved.exists):
            raise NotAllowedError(f"Already exists: {path}")
        if not await asyncio.to_thread(resolved.parent.is_dir):
            raise NotFoundError(f"Parent directory not found: {path}")

        fd, tmp_path = await asyncio.to_thread(
            tempfile.mkstemp, dir=str(resolved.parent), suffix=".tmp"
        )
        f = os.fdopen(fd, "wb")
        try:

            async def _write(chunk: bytes) -> None:
                await asyncio.to_thread(f.write, chunk)

            await copy_stream(reader, _write, ctx)
            await asyncio.to_thread(f.close)
            await asyncio.to_thread(Path(tmp_path).replace, resolved)
        except BaseException:
            f.close()
            with contextlib.suppress(OSError):
                Path(tmp_path).unlink()
            raise
        return await self.get(path)

    async def make_dir(self, path: str) -> Entry:
        path = clean_path(path)
        resolved = self._resolve_path(path)

        def _mkdir() -> None:
            if resolved.exists():
                if resolved.is_dir():
                    return
                raise NotAllowedError(f"A file exists at: {path}")
            try:
                resolved.mkdir()
            except FileNotFoundError:
                raise NotFoundError(f"Parent directory not found: {path}") from None
            except NotADirectoryError:
                raise NotAllowedError(f"A file is in the way of: {path}") from None

        await asyncio.to_thread(_mkdir)
        return await self.get(path)

    async def copy(
        self,
        src: Entry,
        dst: str,
        override: bool,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        raise UnsupportedError("local drive does not copy natively")

    async def move(
        self,
        src: Entry,
        dst: str,
        override: bool,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        own = find_entry(src, lambda e: isinstance(e, LocalEntry) and e.drive is self)
        if own is None:
            raise NotAllowedError("cannot move entries across drives")
        dst = clean_path(dst)
        if not dst or not own.path:
            raise NotAllowedError("cannot move the drive root")
        src_resolved = self._resolve_path(own.path)
        dst_resolved = self._resolve_path(dst)

        def _move() -> None:
            if not src_resolved.exists():
                raise NotFoundError(f"Source not found: {own.path}")
            if dst_resolved.exists():
                if not override:
                    raise NotAllowedError(f"Already exists: {dst}")
                if dst_resolved.is_dir():
                    shutil.rmtree(dst_resolved)
                else:
                    dst_resolved.unlink()
            try:
                os.rename(src_resolved, dst_resolved)
            except NotADirectoryError:
                raise NotAllowedError(f"A file is in the way of: {dst}") from None
            except FileNotFoundError:
                raise NotFoundError(f"Parent directory not found: {dst}") from None

        await asyncio.to_thread(_move)
        return await self.get(dst)

    async def delete(self, path: str, *, ctx: TaskContext | None = None) -> None:
        path = clean_path(path)
        if is_root_path(path):
            raise NotAllowedError("cannot delete the drive root")
        resolved = self._resolve_path(path)

        def _delete() -> None:
            if not resolved.exists():
                raise NotFoundError(f"Not found: {path}")
            if resolved.is_dir():
                shutil.rmtree(resolved)
            else:
                resolved.unlink()

        await asyncio.to_thread(_delete)

    async def upload(
        self,
        path: str,
        size: int,
        override: bool,
        config: dict[str, Any] | None = None,
    ) -> UploadConfig | None:
        resolved = self._resolve_path(path)
        if not override and await asyncio.to_thread(resolved.exists):
            raise NotAllowedError(f"Already exists: {clean_path(path)}")
        if self.chunk_threshold is not None:
            return use_local_provider(size, self.chunk_threshold)
        return use_local_provider(size)
