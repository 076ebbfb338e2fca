"""ChrootDrive: exposes a subtree of a drive as if it were the root."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .exceptions import ConsistencyError, NotAllowedError, NotFoundError
from .protocol import SupportsDispose
from .types import EntryWrapper
from .utils import clean_path, is_root_path, path_join

if TYPE_CHECKING:
    from .protocol import ContentReader, Drive, Entry
    from .task import TaskContext
    from .types import DriveMeta, UploadConfig


class ChrootEntry(EntryWrapper):
    """Inner entry seen through a :class:`ChrootDrive`."""


class ChrootDrive:
    """Rebases *drive* beneath *root*.

    Every path is joined with ``root`` before forwarding and every
    returned entry has ``root`` stripped again.  When *names* is given,
    only those children are visible at the chroot's root.
    """

    def __init__(self, drive: Drive, root: str, names: set[str] | None = None) -> None:
        self._drive = drive
        self.root = clean_path(root)
        self.names = names

    @property
    def inner(self) -> Drive:
        return self._drive

    def wrap_path(self, path: str) -> str:
        path = clean_path(path)
        if self.names is not None and path:
            if path.split("/", 1)[0] not in self.names:
                raise NotFoundError(f"Not found: {path}")
        return path_join(self.root, path)

    def unwrap_path(self, path: str) -> str:
        path = clean_path(path)
        if not self.root:
            return path
        if path == self.root:
            return ""
        if not path.startswith(self.root + "/"):
            raise ConsistencyError(f"Path {path!r} escapes chroot {self.root!r}")
        return path[len(self.root) + 1:]

    def _wrap(self, entry: Entry) -> Entry:
        return ChrootEntry(entry, path=self.unwrap_path(entry.path), drive=self)

    def _unwrap_entry(self, entry: Entry) -> Entry:
        if isinstance(entry, ChrootEntry) and entry.drive is self:
            return entry.unwrap()
        return entry

    # ------------------------------------------------------------------
    # Drive contract
    # ------------------------------------------------------------------

    async def meta(self) -> DriveMeta:
        return await self._drive.meta()

    async def get(self, path: str) -> Entry:
        return self._wrap(await self._drive.get(self.wrap_path(path)))

    async def list_dir(self, path: str) -> list[Entry]:
        entries = await self._drive.list_dir(self.wrap_path(path))
        wrapped = [self._wrap(e) for e in entries]
        if self.names is not None and is_root_path(path):
            wrapped = [e for e in wrapped if e.name in self.names]
        return wrapped

    async def save(
        self,
        path: str,
        size: int,
        override: bool,
        reader: ContentReader,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        entry = await self._drive.save(self.wrap_path(path), size, override, reader, ctx=ctx)
        return self._wrap(entry)

    async def make_dir(self, path: str) -> Entry:
        return self._wrap(await self._drive.make_dir(self.wrap_path(path)))

    async def copy(
        self,
        src: Entry,
        dst: str,
        override: bool,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        entry = await self._drive.copy(
            self._unwrap_entry(src), self.wrap_path(dst), override, ctx=ctx
        )
        return self._wrap(entry)

    async def move(
        self,
        src: Entry,
        dst: str,
        override: bool,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        entry = await self._drive.move(
            self._unwrap_entry(src), self.wrap_path(dst), override, ctx=ctx
        )
        return self._wrap(entry)

    async def delete(self, path: str, *, ctx: TaskContext | None = None) -> None:
        if is_root_path(path):
            raise NotAllowedError("cannot delete the chroot root")
        await self._drive.delete(self.wrap_path(path), ctx=ctx)

    async def upload(
        self,
        path: str,
        size: int,
        override: bool,
        config: dict[str, Any] | None = None,
    ) -> UploadConfig | None:
        return await self._drive.upload(self.wrap_path(path), size, override, config)

    async def dispose(self) -> None:
        if isinstance(self._drive, SupportsDispose):
            await self._drive.dispose()
