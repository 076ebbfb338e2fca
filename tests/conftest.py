"""Shared fixtures for drivegate tests."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

import drivegate.models  # noqa: F401
from drivegate.drive.exceptions import NotAllowedError, NotFoundError, UnsupportedError
from drivegate.drive.streams import BytesReader, copy_stream
from drivegate.drive.types import (
    BaseEntry,
    ContentURL,
    DriveMeta,
    EntryType,
    find_entry,
    use_local_provider,
)
from drivegate.drive.utils import clean_path, is_path_parent, is_root_path, path_parent

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from contextlib import AbstractAsyncContextManager

    from sqlalchemy.ext.asyncio import AsyncEngine

    from drivegate.drive.cache import EntryCacheItem
    from drivegate.drive.protocol import ContentReader, Entry
    from drivegate.drive.task import TaskContext


# =========================================================================
# Database
# =========================================================================


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Async in-memory SQLite engine with all tables created."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def async_session(async_engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Async SQLModel session, rolled back after each test."""
    factory = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def session_factory(
    async_engine: AsyncEngine,
) -> Callable[[], AbstractAsyncContextManager[AsyncSession]]:
    """Per-operation session factory that commits on exit."""
    factory = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)

    @asynccontextmanager
    async def _session() -> AsyncIterator[AsyncSession]:
        session = factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    return _session


# =========================================================================
# In-memory drive
# =========================================================================


@dataclass
class MemoryEntry(BaseEntry):
    async def get_reader(self) -> ContentReader:
        assert isinstance(self.drive, MemoryDrive)
        if self.path not in self.drive.files:
            raise NotFoundError(self.path)
        return BytesReader(self.drive.files[self.path])

    async def get_url(self) -> ContentURL:
        raise UnsupportedError("no urls")


class MemoryDrive:
    """Dict-backed drive.  ``native_copy`` toggles server-side copy support."""

    def __init__(self, native_copy: bool = False, can_write: bool = True) -> None:
        self.files: dict[str, bytes] = {}
        self.dirs: set[str] = {""}
        self.native_copy = native_copy
        self.can_write = can_write
        self.calls: list[tuple[str, str]] = []
        self.disposed = False

    # -- helpers ----------------------------------------------------------

    def add_file(self, path: str, data: bytes = b"") -> None:
        path = clean_path(path)
        parent = path_parent(path)
        while parent and parent not in self.dirs:
            self.dirs.add(parent)
            parent = path_parent(parent)
        self.files[path] = data

    def add_dir(self, path: str) -> None:
        path = clean_path(path)
        while path and path not in self.dirs:
            self.dirs.add(path)
            path = path_parent(path)

    def _entry(self, path: str) -> MemoryEntry:
        if path in self.dirs:
            return MemoryEntry(path=path, type=EntryType.DIR, drive=self)
        if path in self.files:
            return MemoryEntry(path=path, type=EntryType.FILE, size=len(self.files[path]), mod_time=1, drive=self)
        raise NotFoundError(f"Not found: {path}")

    # -- Drive contract ---------------------------------------------------

    async def meta(self) -> DriveMeta:
        return DriveMeta(can_write=self.can_write)

    async def get(self, path: str) -> Entry:
        path = clean_path(path)
        self.calls.append(("get", path))
        return self._entry(path)

    async def list_dir(self, path: str) -> list[Entry]:
        path = clean_path(path)
        self.calls.append(("list_dir", path))
        if path in self.files:
            raise NotAllowedError(f"Not a directory: {path}")
        if path not in self.dirs:
            raise NotFoundError(f"Not found: {path}")
        names = [p for p in (*self.dirs, *self.files) if p and path_parent(p) == path]
        return [self._entry(p) for p in sorted(names)]

    async def save(
        self,
        path: str,
        size: int,
        override: bool,
        reader: ContentReader,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        path = clean_path(path)
        self.calls.append(("save", path))
        if path_parent(path) not in self.dirs:
            raise NotFoundError(f"Parent not found: {path}")
        if path in self.dirs:
            raise NotAllowedError(f"A directory exists at: {path}")
        if path in self.files and not override:
            raise NotAllowedError(f"Already exists: {path}")
        buf = bytearray()

        async def _write(chunk: bytes) -> None:
            buf.extend(chunk)

        await copy_stream(reader, _write, ctx)
        self.files[path] = bytes(buf)
        return self._entry(path)

    async def make_dir(self, path: str) -> Entry:
        path = clean_path(path)
        self.calls.append(("make_dir", path))
        if path in self.files:
            raise NotAllowedError(f"A file exists at: {path}")
        if path_parent(path) not in self.dirs:
            raise NotFoundError(f"Parent not found: {path}")
        self.dirs.add(path)
        return self._entry(path)

    def _own(self, entry: Entry) -> Entry | None:
        return find_entry(entry, lambda e: isinstance(e, MemoryEntry) and e.drive is self)

    def _relocate(self, src: str, dst: str, keep: bool) -> None:
        for d in sorted(p for p in self.dirs if p == src or is_path_parent(p, src)):
            self.dirs.add(dst + d[len(src):])
            if not keep:
                self.dirs.discard(d)
        for f in [p for p in self.files if p == src or is_path_parent(p, src)]:
            self.files[dst + f[len(src):]] = self.files[f]
            if not keep:
                del self.files[f]

    async def copy(
        self,
        src: Entry,
        dst: str,
        override: bool,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        dst = clean_path(dst)
        self.calls.append(("copy", dst))
        own = self._own(src)
        if not self.native_copy or own is None:
            raise UnsupportedError("copy unsupported")
        if not override and (dst in self.files or dst in self.dirs):
            raise NotAllowedError(f"Already exists: {dst}")
        self._relocate(own.path, dst, keep=True)
        return self._entry(dst)

    async def move(
        self,
        src: Entry,
        dst: str,
        override: bool,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        dst = clean_path(dst)
        self.calls.append(("move", dst))
        own = self._own(src)
        if own is None:
            raise NotAllowedError("cannot move across drives")
        if not override and (dst in self.files or dst in self.dirs):
            raise NotAllowedError(f"Already exists: {dst}")
        self._relocate(own.path, dst, keep=False)
        return self._entry(dst)

    async def delete(self, path: str, *, ctx: TaskContext | None = None) -> None:
        path = clean_path(path)
        self.calls.append(("delete", path))
        if is_root_path(path):
            raise NotAllowedError("cannot delete root")
        self._entry(path)
        self.dirs = {d for d in self.dirs if not (d == path or is_path_parent(d, path))}
        self.files = {f: v for f, v in self.files.items() if not (f == path or is_path_parent(f, path))}

    async def upload(
        self,
        path: str,
        size: int,
        override: bool,
        config: dict[str, Any] | None = None,
    ) -> Any:
        self.calls.append(("upload", clean_path(path)))
        return use_local_provider(size)

    def restore_entry(self, item: EntryCacheItem) -> Entry:
        return MemoryEntry(path=item.path, type=item.type, size=item.size, mod_time=item.mod_time, drive=self)

    async def dispose(self) -> None:
        self.disposed = True


@pytest.fixture
def memory_drive() -> MemoryDrive:
    drive = MemoryDrive()
    drive.add_file("docs/readme.txt", b"hello")
    drive.add_file("docs/notes/a.txt", b"aaa")
    drive.add_dir("empty")
    return drive


@pytest.fixture
def make_drive() -> type[MemoryDrive]:
    """The :class:`MemoryDrive` class, for tests needing several drives."""
    return MemoryDrive
