"""DispatcherDrive: routes ``<drive>/<sub-path>`` to the named drive.

Also resolves mount points (aliases of one virtual path at another)
and emulates copies the destination drive cannot do natively.
"""

from __future__ import annotations

import asyncio
import logging
import re
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Protocol

from .exceptions import BadRequestError, NotAllowedError, NotFoundError, UnsupportedError
from .protocol import SupportsDispose
from .tree import copy_all, copy_entry
from .types import (
    BaseEntry,
    DriveMeta,
    EntryMeta,
    EntryType,
    EntryWrapper,
    find_entry,
    use_local_provider,
)
from .utils import (
    clean_path,
    is_path_parent,
    is_root_path,
    path_base,
    path_join,
    path_parent,
    path_parent_tree,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from .protocol import ContentReader, Drive, Entry
    from .task import TaskContext
    from .types import UploadConfig

logger = logging.getLogger(__name__)

PATH_PATTERN = re.compile(r"^/?([^/]+)(/(.*))?$")
MAX_MOUNT_DEPTH = 10


class KeyedLock:
    """One ``asyncio.Lock`` per key, dropped once no task holds or awaits it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


@dataclass(frozen=True)
class Mount:
    """``<path>/<name>`` is an alias of the virtual path ``mount_at``."""

    path: str
    name: str
    mount_at: str

    @property
    def full_path(self) -> str:
        return path_join(self.path, self.name)


class MountStore(Protocol):
    """Persistence for mount points."""

    async def list_mounts(self) -> list[Mount]: ...

    async def save_mounts(self, mounts: list[Mount]) -> None: ...

    async def delete_mounts(self, mounts: list[Mount]) -> None: ...


class DispatchedEntry(EntryWrapper):
    """Entry of a named drive, seen with its ``<drive>/`` prefix."""

    def __init__(self, inner: Entry, *, path: str, drive: Drive, drive_name: str, mount_at: str = "") -> None:
        meta = None
        if mount_at:
            inner_meta = inner.meta
            meta = replace(inner_meta, props={**inner_meta.props, "mountAt": mount_at})
        super().__init__(inner, path=path, drive=drive, meta=meta)
        self.drive_name = drive_name
        self.mount_at = mount_at


class DispatcherDrive:
    """Virtual root whose top-level directories are the configured drives.

    ``set_drives`` swaps the name→drive mapping atomically and disposes
    drives dropped from it.
    """

    def __init__(
        self,
        mount_store: MountStore | None = None,
        *,
        temp_dir: str | Path | None = None,
    ) -> None:
        self._drives: dict[str, Drive] = {}
        self._mounts: dict[str, dict[str, Mount]] = {}
        self._lock = threading.Lock()
        self._mount_store = mount_store
        self._dir_locks = KeyedLock()
        self.temp_dir = temp_dir

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def drives(self) -> dict[str, Drive]:
        with self._lock:
            return self._drives

    async def set_drives(self, drives: dict[str, Drive]) -> None:
        """Replace the drive mapping; superseded drives are disposed."""
        with self._lock:
            old, self._drives = self._drives, dict(drives)
        keep = {id(d) for d in drives.values()}
        for name, drive in old.items():
            if id(drive) in keep:
                continue
            await _dispose_quietly(name, drive)
        logger.info("Dispatcher now serves %d drives", len(drives))

    def set_mounts(self, mounts: list[Mount]) -> None:
        table: dict[str, dict[str, Mount]] = {}
        for m in mounts:
            table.setdefault(clean_path(m.path), {})[m.name] = m
        with self._lock:
            self._mounts = table

    @property
    def mounts(self) -> dict[str, dict[str, Mount]]:
        with self._lock:
            return self._mounts

    async def reload_mounts(self) -> None:
        if self._mount_store is None:
            return
        self.set_mounts(await self._mount_store.list_mounts())

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def _resolve_mount(self, path: str) -> str | None:
        mounts = self.mounts
        for prefix in path_parent_tree(path)[1:]:
            mount = mounts.get(path_parent(prefix), {}).get(path_base(prefix))
            if mount is not None:
                return path_join(mount.mount_at, path[len(prefix):])
        return None

    def resolve(self, path: str) -> tuple[str, Drive, str]:
        """Split *path* into ``(drive_name, drive, sub_path)``."""
        path = clean_path(path)
        for _ in range(MAX_MOUNT_DEPTH + 1):
            target = self._resolve_mount(path)
            if target is None:
                break
            path = target
        else:
            raise BadRequestError("maximum mounting depth exceeded")

        match = PATH_PATTERN.match(path)
        if match is None:
            raise NotFoundError(f"Not found: {path}")
        drive_name, sub_path = match.group(1), match.group(3) or ""
        drive = self.drives.get(drive_name)
        if drive is None:
            raise NotFoundError(f"Drive not found: {drive_name}")
        return drive_name, drive, clean_path(sub_path)

    def _mounted_under(self, path: str) -> tuple[list[Mount], bool]:
        """Mounts at or below *path*, and whether *path* itself is one."""
        found: list[Mount] = []
        is_self = False
        for parent_mounts in self.mounts.values():
            for mount in parent_mounts.values():
                if mount.full_path == path or is_path_parent(mount.full_path, path):
                    found.append(mount)
                    is_self = is_self or mount.full_path == path
        return found, is_self

    def _wrap(self, path: str, drive_name: str, entry: Entry, mount_at: str = "") -> Entry:
        return DispatchedEntry(
            entry, path=clean_path(path), drive=self, drive_name=drive_name, mount_at=mount_at
        )

    def _own(self, entry: Entry) -> DispatchedEntry | None:
        found = find_entry(entry, lambda e: isinstance(e, DispatchedEntry) and e.drive is self)
        return found if isinstance(found, DispatchedEntry) else None

    def _inner(self, entry: Entry) -> Entry:
        own = self._own(entry)
        return own.unwrap() if own is not None else entry

    async def _ensure_dir(self, drive: Drive, drive_name: str, path: str) -> None:
        """Create every missing ancestor directory of *path* on *drive*."""
        for ancestor in path_parent_tree(path_parent(path))[1:]:
            async with self._dir_locks.hold(f"{drive_name}/{ancestor}"):
                try:
                    existing = await drive.get(ancestor)
                except NotFoundError:
                    await drive.make_dir(ancestor)
                    continue
                if not existing.is_dir:
                    raise NotAllowedError(f"A file exists at: {drive_name}/{ancestor}")

    # ------------------------------------------------------------------
    # Drive contract
    # ------------------------------------------------------------------

    async def meta(self) -> DriveMeta:
        return DriveMeta(can_write=False)

    async def get(self, path: str) -> Entry:
        path = clean_path(path)
        if is_root_path(path):
            return BaseEntry(path="", type=EntryType.DIR, meta=EntryMeta(can_write=False), drive=self)
        drive_name, drive, sub_path = self.resolve(path)
        return self._wrap(path, drive_name, await drive.get(sub_path))

    async def list_dir(self, path: str) -> list[Entry]:
        path = clean_path(path)
        entries: list[Entry]
        if is_root_path(path):
            entries = []
            for name, drive in self.drives.items():
                meta = await drive.meta()
                entries.append(
                    BaseEntry(
                        path=name,
                        type=EntryType.DIR,
                        meta=EntryMeta(can_read=True, can_write=meta.can_write, props=dict(meta.props)),
                        drive=self,
                    )
                )
        else:
            drive_name, drive, sub_path = self.resolve(path)
            entries = [
                self._wrap(path_join(path, e.name), drive_name, e)
                for e in await drive.list_dir(sub_path)
            ]

        mounted = self.mounts.get(path)
        if not mounted:
            return entries
        mounted_entries: dict[str, Entry] = {}
        for name, mount in mounted.items():
            try:
                drive_name, drive, sub_path = self.resolve(mount.mount_at)
                target = await drive.get(sub_path)
            except NotFoundError:
                continue
            mounted_entries[name] = self._wrap(
                path_join(path, name), drive_name, target, mount_at=mount.mount_at
            )
        return [e for e in entries if e.name not in mounted_entries] + list(mounted_entries.values())

    async def save(
        self,
        path: str,
        size: int,
        override: bool,
        reader: ContentReader,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        drive_name, drive, sub_path = self.resolve(path)
        if is_root_path(sub_path):
            raise NotAllowedError("cannot save over a drive root")
        await self._ensure_dir(drive, drive_name, sub_path)
        entry = await drive.save(sub_path, size, override, reader, ctx=ctx)
        return self._wrap(path, drive_name, entry)

    async def make_dir(self, path: str) -> Entry:
        drive_name, drive, sub_path = self.resolve(path)
        if is_root_path(sub_path):
            return self._wrap(path, drive_name, await drive.get(sub_path))
        await self._ensure_dir(drive, drive_name, sub_path)
        return self._wrap(path, drive_name, await drive.make_dir(sub_path))

    async def copy(
        self,
        src: Entry,
        dst: str,
        override: bool,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        """Copy natively when the destination drive can, else stream via temp files."""
        dst = clean_path(dst)
        drive_name, drive, sub_path = self.resolve(dst)
        if is_root_path(sub_path):
            raise NotAllowedError("cannot copy over a drive root")
        if not override:
            try:
                await drive.get(sub_path)
            except NotFoundError:
                pass
            else:
                raise NotAllowedError(f"Already exists: {dst}")
        await self._ensure_dir(drive, drive_name, sub_path)

        try:
            entry = await drive.copy(self._inner(src), sub_path, override, ctx=ctx)
            return self._wrap(dst, drive_name, entry)
        except UnsupportedError:
            logger.debug("Native copy unsupported for %s -> %s, streaming", src.path, dst)

        async def _copy_one(entry: Entry, to_drive: Drive, to: str, child_ctx: TaskContext) -> None:
            await copy_entry(entry, to_drive, to, override, child_ctx, temp_dir=self.temp_dir)

        await copy_all(src, drive, sub_path, override, ctx, copy_one=_copy_one, temp_dir=self.temp_dir)
        return self._wrap(dst, drive_name, await drive.get(sub_path))

    async def move(
        self,
        src: Entry,
        dst: str,
        override: bool,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        dst = clean_path(dst)
        src_path = clean_path(src.path)
        mounts, is_self = self._mounted_under(src_path)
        if mounts and self._mount_store is not None:
            moved = []
            for m in mounts:
                target = path_join(dst, m.full_path[len(src_path):])
                moved.append(Mount(path=path_parent(target), name=path_base(target), mount_at=m.mount_at))
            await self._mount_store.delete_mounts(mounts)
            await self._mount_store.save_mounts(moved)
            await self.reload_mounts()
            if is_self:
                return await self.get(dst)

        drive_name, drive, sub_path = self.resolve(dst)
        if is_root_path(sub_path):
            raise NotAllowedError("cannot move over a drive root")
        own = self._own(src)
        if own is not None and own.drive_name != drive_name:
            raise NotAllowedError("cannot move entries across drives")
        await self._ensure_dir(drive, drive_name, sub_path)
        try:
            entry = await drive.move(self._inner(src), sub_path, override, ctx=ctx)
        except UnsupportedError:
            raise NotAllowedError("move is not supported by this drive") from None
        return self._wrap(dst, drive_name, entry)

    async def delete(self, path: str, *, ctx: TaskContext | None = None) -> None:
        path = clean_path(path)
        mounts, is_self = self._mounted_under(path)
        if mounts and self._mount_store is not None:
            await self._mount_store.delete_mounts(mounts)
            await self.reload_mounts()
            if is_self:
                return
        _, drive, sub_path = self.resolve(path)
        if is_root_path(sub_path):
            raise NotAllowedError("cannot delete a drive root")
        await drive.delete(sub_path, ctx=ctx)

    async def upload(
        self,
        path: str,
        size: int,
        override: bool,
        config: dict[str, Any] | None = None,
    ) -> UploadConfig | None:
        drive_name, drive, sub_path = self.resolve(path)
        if is_root_path(sub_path):
            raise NotAllowedError("cannot upload over a drive root")
        if size == 0 and not config:
            return use_local_provider(0)
        await self._ensure_dir(drive, drive_name, sub_path)
        return await drive.upload(sub_path, size, override, config)

    async def dispose(self) -> None:
        await self.set_drives({})


async def _dispose_quietly(name: str, drive: Drive) -> None:
    if not isinstance(drive, SupportsDispose):
        return
    try:
        await drive.dispose()
    except Exception:
        logger.warning("Dispose failed for drive %s", name, exc_info=True)
