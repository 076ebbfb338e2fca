"""PermissionWrapper: enforces path permissions in front of a drive.

A caller that lacks the permission an operation needs gets
:class:`NotFoundError`, indistinguishable from a missing path.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from .exceptions import NotAllowedError, NotFoundError
from .permission import Permission
from .types import EntryWrapper
from .utils import clean_path, is_root_path, path_parent

if TYPE_CHECKING:
    from .permission import SessionPermissions
    from .protocol import ContentReader, Drive, Entry
    from .task import TaskContext
    from .types import DriveMeta, EntryMeta, UploadConfig

logger = logging.getLogger(__name__)


class PermissionEntry(EntryWrapper):
    """Entry whose ``can_read``/``can_write`` are narrowed by a permission."""

    def __init__(self, inner: Entry, *, drive: Drive, permission: Permission) -> None:
        super().__init__(inner, drive=drive)
        self.permission = permission

    @property
    def meta(self) -> EntryMeta:
        meta = self._inner.meta
        return replace(
            meta,
            can_read=meta.can_read and self.permission.readable,
            can_write=meta.can_write and self.permission.writable,
        )


class PermissionWrapper:
    """Wraps *drive* for one session's resolved permissions."""

    def __init__(self, drive: Drive, permissions: SessionPermissions) -> None:
        self._drive = drive
        self.permissions = permissions

    @property
    def inner(self) -> Drive:
        return self._drive

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def require(self, path: str, required: Permission) -> Permission:
        resolved = self.permissions.resolve(path)
        if resolved & required != required:
            logger.debug("Permission %s denied on %r (have %s)", required, path, resolved)
            raise NotFoundError("permission denied")
        return resolved

    def require_with_parent(self, path: str) -> Permission:
        """Read+write on *path* and on its parent."""
        if not is_root_path(path):
            self.require(path_parent(path), Permission.READ_WRITE)
        return self.require(path, Permission.READ_WRITE)

    def require_descendants(self, path: str, required: Permission = Permission.READ_WRITE) -> None:
        ok = self.permissions.resolve(path) & required == required
        if ok:
            ok = all(p & required == required for p in self.permissions.resolve_descendants(path).values())
        if not ok:
            raise NotAllowedError("no subfolder permission")

    def _wrap(self, entry: Entry, permission: Permission) -> Entry:
        return PermissionEntry(entry, drive=self, permission=permission)

    def _unwrap_entry(self, entry: Entry) -> Entry:
        if isinstance(entry, PermissionEntry) and entry.drive is self:
            return entry.unwrap()
        return entry

    # ------------------------------------------------------------------
    # Drive contract
    # ------------------------------------------------------------------

    async def meta(self) -> DriveMeta:
        return await self._drive.meta()

    async def get(self, path: str) -> Entry:
        path = clean_path(path)
        if is_root_path(path):
            permission = self.permissions.resolve(path)
        else:
            permission = self.require(path, Permission.READ)
        return self._wrap(await self._drive.get(path), permission)

    async def list_dir(self, path: str) -> list[Entry]:
        path = clean_path(path)
        if not is_root_path(path):
            self.require(path, Permission.READ)
        result: list[Entry] = []
        for entry in await self._drive.list_dir(path):
            if not entry.meta.can_read:
                continue
            permission = self.permissions.resolve(entry.path)
            if permission.readable:
                result.append(self._wrap(entry, permission))
        return result

    async def save(
        self,
        path: str,
        size: int,
        override: bool,
        reader: ContentReader,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        permission = self.require(path, Permission.READ_WRITE)
        return self._wrap(await self._drive.save(path, size, override, reader, ctx=ctx), permission)

    async def make_dir(self, path: str) -> Entry:
        permission = self.require(path, Permission.READ_WRITE)
        return self._wrap(await self._drive.make_dir(path), permission)

    async def copy(
        self,
        src: Entry,
        dst: str,
        override: bool,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        self.require(src.path, Permission.READ)
        permission = self.require_with_parent(dst)
        self.require_descendants(dst)
        entry = await self._drive.copy(self._unwrap_entry(src), dst, override, ctx=ctx)
        return self._wrap(entry, permission)

    async def move(
        self,
        src: Entry,
        dst: str,
        override: bool,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        permission = self.require_with_parent(dst)
        self.require_with_parent(src.path)
        self.require_descendants(src.path)
        self.require_descendants(dst)
        entry = await self._drive.move(self._unwrap_entry(src), dst, override, ctx=ctx)
        return self._wrap(entry, permission)

    async def delete(self, path: str, *, ctx: TaskContext | None = None) -> None:
        self.require_with_parent(path)
        self.require_descendants(path)
        await self._drive.delete(path, ctx=ctx)

    async def upload(
        self,
        path: str,
        size: int,
        override: bool,
        config: dict[str, Any] | None = None,
    ) -> UploadConfig | None:
        self.require(path, Permission.READ_WRITE)
        return await self._drive.upload(path, size, override, config)
