"""PathMetaService: ``path_meta`` rows with a TTL cache of lookups."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

from sqlalchemy import delete
from sqlmodel import select

from drivegate.drive.path_meta import PathMeta, merge_path_meta
from drivegate.drive.utils import clean_path, path_parent_tree
from drivegate.models.paths import PathMetaRecord

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from drivegate.drive.path_meta import MergedPathMeta

DEFAULT_TTL = 2 * 60 * 60


def _to_meta(record: PathMetaRecord) -> PathMeta:
    return PathMeta(
        path=record.path,
        password=record.password,
        default_sort=record.default_sort,
        default_mode=record.default_mode,
        hidden_pattern=record.hidden_pattern,
        recursive=record.recursive,
    )


class PathMetaService:
    """Looks up path metadata; found and missing records are both cached.

    Writes through this service invalidate the cached path.
    """

    def __init__(self, ttl: float = DEFAULT_TTL) -> None:
        self.ttl = ttl
        self._cache: dict[str, tuple[float, PathMeta | None]] = {}
        self._lock = threading.Lock()

    def _cached(self, path: str) -> tuple[bool, PathMeta | None]:
        with self._lock:
            item = self._cache.get(path)
            if item is None:
                return False, None
            expires_at, meta = item
            if expires_at < time.monotonic():
                del self._cache[path]
                return False, None
            return True, meta

    def _remember(self, path: str, meta: PathMeta | None) -> None:
        with self._lock:
            self._cache[path] = (time.monotonic() + self.ttl, meta)

    def invalidate(self, path: str | None = None) -> None:
        with self._lock:
            if path is None:
                self._cache.clear()
            else:
                self._cache.pop(clean_path(path), None)

    async def get(self, session: AsyncSession, path: str) -> PathMeta | None:
        found = await self.get_ancestry(session, [path])
        return found[0] if found else None

    async def get_ancestry(self, session: AsyncSession, paths: Iterable[str]) -> list[PathMeta]:
        """Records stored at exactly *paths*, loading cache misses with one query."""
        result: list[PathMeta] = []
        missed: list[str] = []
        for path in dict.fromkeys(clean_path(p) for p in paths):
            hit, meta = self._cached(path)
            if not hit:
                missed.append(path)
            elif meta is not None:
                result.append(meta)
        if missed:
            rows = await session.execute(
                select(PathMetaRecord).where(PathMetaRecord.path.in_(missed))  # type: ignore[attr-defined]
            )
            by_path = {r.path: _to_meta(r) for r in rows.scalars().all()}
            for path in missed:
                meta = by_path.get(path)
                self._remember(path, meta)
                if meta is not None:
                    result.append(meta)
        result.sort(key=lambda m: len(m.path))
        return result

    async def merged(self, session: AsyncSession, path: str) -> MergedPathMeta | None:
        path = clean_path(path)
        return merge_path_meta(path, await self.get_ancestry(session, path_parent_tree(path)))

    async def list_all(self, session: AsyncSession) -> list[PathMeta]:
        rows = await session.execute(select(PathMetaRecord).order_by(PathMetaRecord.path))
        return [_to_meta(r) for r in rows.scalars().all()]

    async def set(self, session: AsyncSession, meta: PathMeta) -> None:
        """Create or replace the record at ``meta.path``."""
        await session.merge(
            PathMetaRecord(
                path=meta.path,
                password=meta.password,
                default_sort=meta.default_sort,
                default_mode=meta.default_mode,
                hidden_pattern=meta.hidden_pattern,
                recursive=meta.recursive,
            )
        )
        await session.flush()
        self.invalidate(meta.path)

    async def delete(self, session: AsyncSession, path: str) -> None:
        path = clean_path(path)
        await session.execute(delete(PathMetaRecord).where(PathMetaRecord.path == path))
        await session.flush()
        self.invalidate(path)
