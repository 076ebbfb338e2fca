"""Drive and Entry protocols: runtime-checkable interfaces.

Split into a core drive contract and opt-in capability protocols so
that wrappers and backends implement only what they support.  Probe
capabilities with ``isinstance(obj, SupportsX)``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .cache import EntryCacheItem
    from .task import TaskContext
    from .types import ContentURL, DriveMeta, EntryMeta, EntryType, UploadConfig


@runtime_checkable
class ContentReader(Protocol):
    """Async byte stream.  ``close()`` must be called on every exit path."""

    async def read(self, size: int = -1) -> bytes: ...

    async def close(self) -> None: ...


@runtime_checkable
class Entry(Protocol):
    """One file or directory at a moment in time."""

    @property
    def path(self) -> str: ...

    @property
    def name(self) -> str: ...

    @property
    def type(self) -> EntryType: ...

    @property
    def is_dir(self) -> bool: ...

    @property
    def size(self) -> int: ...

    @property
    def mod_time(self) -> int: ...

    @property
    def meta(self) -> EntryMeta: ...

    @property
    def drive(self) -> Drive | None: ...


@runtime_checkable
class SupportsContent(Protocol):
    """Entry capability: streaming read and/or a download URL."""

    async def get_reader(self) -> ContentReader: ...

    async def get_url(self) -> ContentURL: ...


@runtime_checkable
class Drive(Protocol):
    """Core interface every drive (backend or wrapper) implements.

    Paths are canonical (see :func:`drivegate.drive.utils.clean_path`).
    ``ctx`` is optional on long operations; implementations fall back
    to a context nobody cancels.
    """

    async def meta(self) -> DriveMeta: ...

    async def get(self, path: str) -> Entry: ...

    async def list_dir(self, path: str) -> list[Entry]: ...

    async def save(
        self,
        path: str,
        size: int,
        override: bool,
        reader: ContentReader,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry: ...

    async def make_dir(self, path: str) -> Entry: ...

    async def copy(
        self,
        src: Entry,
        dst: str,
        override: bool,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry: ...

    async def move(
        self,
        src: Entry,
        dst: str,
        override: bool,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry: ...

    async def delete(self, path: str, *, ctx: TaskContext | None = None) -> None: ...

    async def upload(
        self,
        path: str,
        size: int,
        override: bool,
        config: dict[str, Any] | None = None,
    ) -> UploadConfig | None: ...


@runtime_checkable
class SupportsDispose(Protocol):
    """Drive capability: release connections and background tasks."""

    async def dispose(self) -> None: ...


@runtime_checkable
class SupportsEntryCache(Protocol):
    """Drive capability: rebuild its own entries from cached snapshots."""

    def restore_entry(self, item: EntryCacheItem) -> Entry: ...


@runtime_checkable
class SupportsCacheData(Protocol):
    """Entry capability: extra backend data kept in cache snapshots."""

    def cache_data(self) -> dict[str, Any] | None: ...
