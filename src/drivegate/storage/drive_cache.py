"""Persistent drive cache backed by the ``drive_cache`` table."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from typing import TYPE_CHECKING

from sqlalchemy import delete, or_
from sqlmodel import select

from drivegate.drive.cache import KIND_CHILDREN, KIND_ENTRY, EntryCacheItem, serialize_entry
from drivegate.drive.utils import clean_path, path_depth
from drivegate.models.cache import DriveCacheRecord

if TYPE_CHECKING:
    from collections.abc import Callable
    from contextlib import AbstractAsyncContextManager

    from sqlalchemy.ext.asyncio import AsyncSession

    from drivegate.drive.protocol import Entry

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _expires_at(ttl: float) -> int:
    return _now_ms() + int(ttl * 1000) if ttl > 0 else 0


def _like_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class DBDriveCache:
    """Entry and children cache of one drive, stored as ``drive_cache`` rows."""

    def __init__(
        self,
        session_factory: Callable[[], AbstractAsyncContextManager[AsyncSession]],
        namespace: str,
        deserialize: Callable[[EntryCacheItem], Entry],
    ) -> None:
        self._session_factory = session_factory
        self._namespace = namespace
        self._deserialize = deserialize

    def _record(self, kind: str, path: str, value: str, ttl: float) -> DriveCacheRecord:
        return DriveCacheRecord(
            drive=self._namespace,
            path=path,
            kind=kind,
            depth=path_depth(path),
            value=value,
            expires_at=_expires_at(ttl),
        )

    async def put_entry(self, entry: Entry, ttl: float) -> None:
        path = clean_path(entry.path)
        async with self._session_factory() as session:
            await session.merge(self._record(KIND_ENTRY, path, serialize_entry(entry).to_json(), ttl))

    async def put_children(self, parent: str, entries: list[Entry], ttl: float) -> None:
        parent = clean_path(parent)
        async with self._session_factory() as session:
            for entry in entries:
                path = clean_path(entry.path)
                await session.merge(self._record(KIND_ENTRY, path, serialize_entry(entry).to_json(), ttl))
            paths = [clean_path(e.path) for e in entries]
            await session.merge(self._record(KIND_CHILDREN, parent, json.dumps(paths), ttl))

    async def _get_values(self, session: AsyncSession, kind: str, paths: list[str]) -> dict[str, str]:
        if not paths:
            return {}
        now = _now_ms()
        result = await session.execute(
            select(DriveCacheRecord).where(
                DriveCacheRecord.drive == self._namespace,
                DriveCacheRecord.kind == kind,
                DriveCacheRecord.path.in_(paths),  # type: ignore[union-attr]
            )
        )
        return {
            r.path: r.value
            for r in result.scalars().all()
            if r.expires_at == 0 or r.expires_at >= now
        }

    async def get_entry(self, path: str) -> Entry | None:
        path = clean_path(path)
        async with self._session_factory() as session:
            values = await self._get_values(session, KIND_ENTRY, [path])
        raw = values.get(path)
        if raw is None:
            return None
        return self._deserialize(EntryCacheItem.from_json(raw))

    async def get_children(self, path: str) -> list[Entry] | None:
        path = clean_path(path)
        async with self._session_factory() as session:
            listing = (await self._get_values(session, KIND_CHILDREN, [path])).get(path)
            if listing is None:
                return None
            child_paths: list[str] = json.loads(listing)
            values = await self._get_values(session, KIND_ENTRY, child_paths)
        if len(values) != len(set(child_paths)):
            return None
        return [self._deserialize(EntryCacheItem.from_json(values[p])) for p in child_paths]

    async def evict(self, path: str, descendants: bool) -> None:
        path = clean_path(path)
        model = DriveCacheRecord
        condition = model.path == path
        if descendants:
            depth = path_depth(path)
            if path:
                below = (model.depth > depth) & model.path.like(  # type: ignore[union-attr]
                    _like_escape(path) + "/%", escape="\\"
                )
            else:
                below = model.depth > depth
            condition = or_(condition, below)
        async with self._session_factory() as session:
            await session.execute(delete(model).where(model.drive == self._namespace, condition))

    async def evict_all(self) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(DriveCacheRecord).where(DriveCacheRecord.drive == self._namespace))


class DBCacheManager:
    """Hands out :class:`DBDriveCache` instances and purges expired rows.

    Call :meth:`start` from a running event loop to schedule the cleaner.
    """

    def __init__(
        self,
        session_factory: Callable[[], AbstractAsyncContextManager[AsyncSession]],
        *,
        clean_interval: float = 60.0,
    ) -> None:
        self._session_factory = session_factory
        self.clean_interval = clean_interval
        self._cleaner: asyncio.Task[None] | None = None

    def get_cache(self, namespace: str, deserialize: Callable[[EntryCacheItem], Entry]) -> DBDriveCache:
        return DBDriveCache(self._session_factory, namespace, deserialize)

    async def evict_namespace(self, namespace: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(DriveCacheRecord).where(DriveCacheRecord.drive == namespace))

    async def clean_expired(self) -> int:
        """Delete expired rows; returns how many were removed."""
        model = DriveCacheRecord
        async with self._session_factory() as session:
            result = await session.execute(
                delete(model).where(model.expires_at > 0, model.expires_at < _now_ms())
            )
        count = result.rowcount or 0  # type: ignore[attr-defined]
        if count:
            logger.debug("Purged %d expired cache rows", count)
        return count

    def start(self) -> None:
        if self._cleaner is None:
            self._cleaner = asyncio.create_task(self._clean_loop())

    async def _clean_loop(self) -> None:
        while True:
            await asyncio.sleep(self.clean_interval)
            try:
                await self.clean_expired()
            except Exception:
                logger.warning("Cache cleaner failed", exc_info=True)

    async def close(self) -> None:
        if self._cleaner is None:
            return
        task, self._cleaner = self._cleaner, None
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
