"""Drive cache: TTL'd snapshots of entries and directory listings.

A cache instance is bound to one namespace (the drive's configured name).
Two stores are provided: :class:`MemoryDriveCache` here, and the
persistent SQL store in :mod:`drivegate.storage.drive_cache`.
:class:`CachedDrive` wraps a backend and keeps the cache coherent with
its mutations.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from .protocol import SupportsCacheData, SupportsDispose
from .types import EntryType, innermost
from .utils import clean_path, is_path_parent, is_root_path, path_parent

if TYPE_CHECKING:
    from collections.abc import Callable

    from .protocol import ContentReader, Drive, Entry
    from .task import TaskContext
    from .types import DriveMeta, UploadConfig

logger = logging.getLogger(__name__)

KIND_ENTRY = "e"
KIND_CHILDREN = "c"


@dataclass
class EntryCacheItem:
    """Serialised snapshot of an entry."""

    path: str
    type: EntryType
    size: int = -1
    mod_time: int = -1
    data: dict[str, Any] | None = None

    def to_json(self) -> str:
        return json.dumps(
            {"m": self.mod_time, "s": self.size, "p": self.path, "t": self.type.value, "d": self.data}
        )

    @classmethod
    def from_json(cls, raw: str) -> EntryCacheItem:
        obj = json.loads(raw)
        return cls(
            path=obj["p"],
            type=EntryType(obj["t"]),
            size=obj.get("s", -1),
            mod_time=obj.get("m", -1),
            data=obj.get("d"),
        )


def serialize_entry(entry: Entry) -> EntryCacheItem:
    data = entry.cache_data() if isinstance(entry, SupportsCacheData) else None
    return EntryCacheItem(
        path=entry.path, type=entry.type, size=entry.size, mod_time=entry.mod_time, data=data
    )


@runtime_checkable
class DriveCache(Protocol):
    """Entry and children cache of one drive.

    ``ttl`` is in seconds; ``ttl <= 0`` stores without expiry.
    Reads return ``None`` on a miss.
    """

    async def put_entry(self, entry: Entry, ttl: float) -> None: ...

    async def put_children(self, parent: str, entries: list[Entry], ttl: float) -> None: ...

    async def get_entry(self, path: str) -> Entry | None: ...

    async def get_children(self, path: str) -> list[Entry] | None: ...

    async def evict(self, path: str, descendants: bool) -> None: ...

    async def evict_all(self) -> None: ...


class DriveCacheManager(Protocol):
    """Hands out per-namespace caches."""

    def get_cache(self, namespace: str, deserialize: Callable[[EntryCacheItem], Entry]) -> DriveCache: ...

    async def evict_namespace(self, namespace: str) -> None: ...

    async def close(self) -> None: ...


# =============================================================================
# In-memory LRU
# =============================================================================


class _LRU:
    """Thread-safe LRU with per-item expiry, shared by all namespaces."""

    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        self._items: OrderedDict[tuple[str, str, str], tuple[float, str]] = OrderedDict()
        self._lock = threading.Lock()

    def set(self, key: tuple[str, str, str], value: str, ttl: float) -> None:
        expires_at = time.time() + ttl if ttl > 0 else 0.0
        with self._lock:
            self._items[key] = (expires_at, value)
            self._items.move_to_end(key)
            while len(self._items) > self.capacity:
                self._items.popitem(last=False)

    def get(self, key: tuple[str, str, str]) -> str | None:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            expires_at, value = item
            if expires_at > 0 and expires_at < time.time():
                del self._items[key]
                return None
            self._items.move_to_end(key)
            return value

    def remove(self, predicate: Callable[[tuple[str, str, str]], bool]) -> int:
        with self._lock:
            keys = [k for k in self._items if predicate(k)]
            for k in keys:
                del self._items[k]
            return len(keys)


class MemoryDriveCache:
    """In-memory LRU cache of one namespace."""

    def __init__(
        self,
        lru: _LRU,
        namespace: str,
        deserialize: Callable[[EntryCacheItem], Entry],
    ) -> None:
        self._lru = lru
        self._namespace = namespace
        self._deserialize = deserialize

    def _key(self, kind: str, path: str) -> tuple[str, str, str]:
        return (self._namespace, kind, clean_path(path))

    async def put_entry(self, entry: Entry, ttl: float) -> None:
        self._lru.set(self._key(KIND_ENTRY, entry.path), serialize_entry(entry).to_json(), ttl)

    async def put_children(self, parent: str, entries: list[Entry], ttl: float) -> None:
        for entry in entries:
            await self.put_entry(entry, ttl)
        paths = [clean_path(e.path) for e in entries]
        self._lru.set(self._key(KIND_CHILDREN, parent), json.dumps(paths), ttl)

    async def get_entry(self, path: str) -> Entry | None:
        raw = self._lru.get(self._key(KIND_ENTRY, path))
        if raw is None:
            return None
        return self._deserialize(EntryCacheItem.from_json(raw))

    async def get_children(self, path: str) -> list[Entry] | None:
        raw = self._lru.get(self._key(KIND_CHILDREN, path))
        if raw is None:
            return None
        children: list[Entry] = []
        for child_path in json.loads(raw):
            entry = await self.get_entry(child_path)
            if entry is None:
                return None
            children.append(entry)
        return children

    async def evict(self, path: str, descendants: bool) -> None:
        path = clean_path(path)
        ns = self._namespace

        def _match(key: tuple[str, str, str]) -> bool:
            if key[0] != ns:
                return False
            return key[2] == path or (descendants and is_path_parent(key[2], path))

        self._lru.remove(_match)

    async def evict_all(self) -> None:
        ns = self._namespace
        self._lru.remove(lambda key: key[0] == ns)


class MemoryCacheManager:
    """One LRU shared by every namespace."""

    def __init__(self, capacity: int = 10_000) -> None:
        self._lru = _LRU(capacity)

    def get_cache(self, namespace: str, deserialize: Callable[[EntryCacheItem], Entry]) -> MemoryDriveCache:
        return MemoryDriveCache(self._lru, namespace, deserialize)

    async def evict_namespace(self, namespace: str) -> None:
        self._lru.remove(lambda key: key[0] == namespace)

    async def close(self) -> None:
        self._lru.remove(lambda key: True)


# =============================================================================
# Cached drive wrapper
# =============================================================================


class CachedDrive:
    """Read-through cache in front of a backend drive.

    Entries come back as the backend's own entry objects (rebuilt from
    snapshots by the cache's deserializer).  Cache failures are logged
    and behave like misses.
    """

    def __init__(self, drive: Drive, cache: DriveCache, ttl: float) -> None:
        self._drive = drive
        self._cache = cache
        self._ttl = ttl

    @property
    def inner(self) -> Drive:
        return self._drive

    async def _cache_call(self, op: str, fn: Callable[[], Any]) -> Any:
        try:
            return await fn()
        except Exception:
            logger.warning("Drive cache %s failed", op, exc_info=True)
            return None

    async def _evict(self, path: str, descendants: bool) -> None:
        await self._cache_call("evict", lambda: self._cache.evict(path, descendants))

    async def _evict_with_parent(self, path: str, descendants: bool) -> None:
        await self._evict(path, descendants)
        await self._evict(path_parent(path), False)

    async def meta(self) -> DriveMeta:
        return await self._drive.meta()

    async def get(self, path: str) -> Entry:
        path = clean_path(path)
        if is_root_path(path):
            return await self._drive.get(path)
        cached = await self._cache_call("get_entry", lambda: self._cache.get_entry(path))
        if cached is not None:
            logger.debug("Cache hit for entry %s", path)
            return cached
        entry = await self._drive.get(path)
        await self._cache_call("put_entry", lambda: self._cache.put_entry(entry, self._ttl))
        return entry

    async def list_dir(self, path: str) -> list[Entry]:
        path = clean_path(path)
        cached = await self._cache_call("get_children", lambda: self._cache.get_children(path))
        if cached is not None:
            logger.debug("Cache hit for children of %s", path)
            return cached
        entries = await self._drive.list_dir(path)
        await self._cache_call(
            "put_children", lambda: self._cache.put_children(path, entries, self._ttl)
        )
        return entries

    async def save(
        self,
        path: str,
        size: int,
        override: bool,
        reader: ContentReader,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        entry = await self._drive.save(path, size, override, reader, ctx=ctx)
        await self._evict_with_parent(path, False)
        return entry

    async def make_dir(self, path: str) -> Entry:
        entry = await self._drive.make_dir(path)
        await self._evict(path_parent(path), False)
        return entry

    async def copy(
        self,
        src: Entry,
        dst: str,
        override: bool,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        entry = await self._drive.copy(src, dst, override, ctx=ctx)
        await self._evict_with_parent(dst, True)
        return entry

    async def move(
        self,
        src: Entry,
        dst: str,
        override: bool,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        src_path = innermost(src).path
        entry = await self._drive.move(src, dst, override, ctx=ctx)
        await self._evict_with_parent(src_path, True)
        await self._evict_with_parent(dst, True)
        return entry

    async def delete(self, path: str, *, ctx: TaskContext | None = None) -> None:
        await self._drive.delete(path, ctx=ctx)
        await self._evict_with_parent(path, True)

    async def upload(
        self,
        path: str,
        size: int,
        override: bool,
        config: dict[str, Any] | None = None,
    ) -> UploadConfig | None:
        result = await self._drive.upload(path, size, override, config)
        await self._evict_with_parent(path, False)
        return result

    async def dispose(self) -> None:
        await self._cache_call("evict_all", self._cache.evict_all)
        if isinstance(self._drive, SupportsDispose):
            await self._drive.dispose()
