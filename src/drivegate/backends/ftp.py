"""FTPDrive: an FTP server exposed as a drive (ftplib in worker threads)."""

from __future__ import annotations

import asyncio
import contextlib
import ftplib
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from drivegate.drive.exceptions import (
    NotAllowedError,
    NotFoundError,
    RemoteApiError,
    UnsupportedError,
)
from drivegate.drive.streams import FileReader, stage_to_temp_file
from drivegate.drive.task import dummy_context
from drivegate.drive.tree import build_tree, flatten_tree
from drivegate.drive.types import (
    BaseEntry,
    ContentURL,
    DriveMeta,
    EntryType,
    UploadConfig,
    find_entry,
    use_local_provider,
)
from drivegate.drive.utils import clean_path, is_root_path, path_base, path_join, path_parent

if TYPE_CHECKING:
    from collections.abc import Callable

    from drivegate.drive.cache import EntryCacheItem
    from drivegate.drive.protocol import ContentReader, Entry
    from drivegate.drive.task import TaskContext

logger = logging.getLogger(__name__)


def _map_ftp_error(e: ftplib.Error) -> RemoteApiError:
    """Wrap an FTP reply such as ``550 No such file`` as ``[550] No such file``."""
    text = str(e).strip()
    head, _, message = text.partition(" ")
    code = int(head) if head.isdigit() else 500
    return RemoteApiError(code, f"[{code}] {message or text}")


def _parse_modify(value: str | None) -> int:
    if not value:
        return -1
    try:
        dt = datetime.strptime(value[:14], "%Y%m%d%H%M%S").replace(tzinfo=UTC)
    except ValueError:
        return -1
    return int(dt.timestamp() * 1000)


@dataclass
class FTPEntry(BaseEntry):
    """File or directory of an :class:`FTPDrive`."""

    async def get_reader(self) -> ContentReader:
        if self.is_dir:
            raise NotAllowedError("cannot read a directory")
        assert isinstance(self.drive, FTPDrive)
        return await self.drive._download(self.path)

    async def get_url(self) -> ContentURL:
        raise UnsupportedError("ftp files have no download url")


class FTPDrive:
    """FTP server drive sharing one control connection.

    ``ftplib`` is blocking and not thread-safe, so every command runs in
    a worker thread while holding ``_lock``.  ``connect`` builds the
    client; tests inject a fake.
    """

    def __init__(
        self,
        connect: Callable[[], ftplib.FTP],
        *,
        temp_dir: str | None = None,
    ) -> None:
        self._connect = connect
        self._ftp: ftplib.FTP | None = None
        self._lock = asyncio.Lock()
        self.temp_dir = temp_dir

    @classmethod
    def from_config(
        cls,
        host: str,
        port: int = 21,
        user: str = "",
        password: str = "",
        *,
        timeout: float = 5.0,
        temp_dir: str | None = None,
    ) -> FTPDrive:
        def _connect() -> ftplib.FTP:
            ftp = ftplib.FTP()
            ftp.connect(host, port, timeout=timeout)
            ftp.login(user or "anonymous", password)
            return ftp

        return cls(_connect, temp_dir=temp_dir)

    async def _run(self, fn: Callable[[ftplib.FTP], Any]) -> Any:
        """Run *fn* with the (lazily connected) client in a worker thread."""
        async with self._lock:

            def _call() -> Any:
                if self._ftp is None:
                    self._ftp = self._connect()
                return fn(self._ftp)

            try:
                return await asyncio.to_thread(_call)
            except ftplib.Error as e:
                raise _map_ftp_error(e) from e
            except (OSError, EOFError) as e:
                # connection dropped; reconnect on next call
                self._ftp = None
                raise RemoteApiError(421, f"[421] connection lost: {e}") from e

    @staticmethod
    def _remote(path: str) -> str:
        return "/" + clean_path(path)

    def _entry_from_facts(self, path: str, facts: dict[str, str]) -> FTPEntry:
        is_dir = facts.get("type", "").lower() == "dir"
        return FTPEntry(
            path=path,
            type=EntryType.DIR if is_dir else EntryType.FILE,
            size=-1 if is_dir else int(facts.get("size", 0)),
            mod_time=_parse_modify(facts.get("modify")),
            drive=self,
        )

    async def _mlsd(self, path: str) -> list[tuple[str, dict[str, str]]]:
        remote = self._remote(path)
        items = await self._run(lambda ftp: list(ftp.mlsd(remote, facts=["type", "size", "modify"])))
        return [
            (name, facts)
            for name, facts in items
            if facts.get("type", "").lower() not in ("cdir", "pdir") and name not in (".", "..")
        ]

    # =========================================================================
    # Read
    # =========================================================================

    async def meta(self) -> DriveMeta:
        return DriveMeta(can_write=True)

    async def get(self, path: str) -> Entry:
        path = clean_path(path)
        if is_root_path(path):
            return FTPEntry(path="", type=EntryType.DIR, drive=self)
        name = path_base(path)
        try:
            siblings = await self._mlsd(path_parent(path))
        except RemoteApiError as e:
            if e.code == 550:
                raise NotFoundError(f"Not found: {path}") from e
            raise
        for sibling, facts in siblings:
            if sibling == name:
                return self._entry_from_facts(path, facts)
        raise NotFoundError(f"Not found: {path}")

    async def list_dir(self, path: str) -> list[Entry]:
        path = clean_path(path)
        if path:
            entry = await self.get(path)
            if not entry.is_dir:
                raise NotAllowedError(f"Not a directory: {path}")
        return [
            self._entry_from_facts(path_join(path, name), facts)
            for name, facts in await self._mlsd(path)
        ]

    def restore_entry(self, item: EntryCacheItem) -> Entry:
        return FTPEntry(
            path=item.path, type=item.type, size=item.size, mod_time=item.mod_time, drive=self
        )

    async def _exists(self, path: str) -> Entry | None:
        try:
            return await self.get(path)
        except NotFoundError:
            return None

    async def _download(self, path: str) -> FileReader:
        fd, tmp_path = await asyncio.to_thread(
            tempfile.mkstemp, prefix="drivegate-ftp-", dir=self.temp_dir
        )
        remote = self._remote(path)
        try:
            with os.fdopen(fd, "wb") as f:
                await self._run(lambda ftp: ftp.retrbinary(f"RETR {remote}", f.write))
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp_path)
            raise
        return FileReader(tmp_path, remove_on_close=True)

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
        path = clean_path(path)
        if not path:
            raise NotAllowedError("cannot save to the drive root")
        if not override and await self._exists(path) is not None:
            raise NotAllowedError(f"Already exists: {path}")

        staged = reader
        if not isinstance(reader, FileReader):
            staged = await stage_to_temp_file(reader, ctx, temp_dir=self.temp_dir)
        assert isinstance(staged, FileReader)
        remote = self._remote(path)
        try:

            def _store(ftp: ftplib.FTP) -> None:
                with open(staged.path, "rb") as f:
                    ftp.storbinary(f"STOR {remote}", f)

            await self._run(_store)
        finally:
            if staged is not reader:
                await staged.close()
        return await self.get(path)

    async def make_dir(self, path: str) -> Entry:
        path = clean_path(path)
        existing = await self._exists(path)
        if existing is not None:
            if existing.is_dir:
                return existing
            raise NotAllowedError(f"A file exists at: {path}")
        remote = self._remote(path)
        await self._run(lambda ftp: ftp.mkd(remote))
        return FTPEntry(path=path, type=EntryType.DIR, drive=self)

    async def copy(
        self,
        src: Entry,
        dst: str,
        override: bool,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        raise UnsupportedError("ftp does not copy natively")

    async def move(
        self,
        src: Entry,
        dst: str,
        override: bool,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        own = find_entry(src, lambda e: isinstance(e, FTPEntry) and e.drive is self)
        if own is None:
            raise NotAllowedError("cannot move entries across drives")
        dst = clean_path(dst)
        if not own.path or not dst:
            raise NotAllowedError("cannot move the drive root")
        existing = await self._exists(dst)
        if existing is not None:
            if not override:
                raise NotAllowedError(f"Already exists: {dst}")
            await self.delete(dst, ctx=ctx)
        src_remote, dst_remote = self._remote(own.path), self._remote(dst)
        await self._run(lambda ftp: ftp.rename(src_remote, dst_remote))
        return await self.get(dst)

    async def delete(self, path: str, *, ctx: TaskContext | None = None) -> None:
        path = clean_path(path)
        if is_root_path(path):
            raise NotAllowedError("cannot delete the drive root")
        ctx = ctx or dummy_context()
        entry = await self.get(path)
        root = await build_tree(entry, ctx)
        for node in flatten_tree(root, deep_first=True):
            ctx.check()
            remote = self._remote(node.entry.path)
            if node.entry.is_dir:
                await self._run(lambda ftp, r=remote: ftp.rmd(r))
            else:
                await self._run(lambda ftp, r=remote: ftp.delete(r))
            ctx.progress(1)
        logger.debug("Deleted %s from FTP", path)

    async def upload(
        self,
        path: str,
        size: int,
        override: bool,
        config: dict[str, Any] | None = None,
    ) -> UploadConfig | None:
        if not override and await self._exists(path) is not None:
            raise NotAllowedError(f"Already exists: {clean_path(path)}")
        return use_local_provider(size)

    async def dispose(self) -> None:
        async with self._lock:
            if self._ftp is None:
                return
            ftp, self._ftp = self._ftp, None
        try:
            await asyncio.to_thread(ftp.quit)
        except (ftplib.Error, OSError):
            logger.warning("FTP quit failed; closing socket", exc_info=True)
            ftp.close()
