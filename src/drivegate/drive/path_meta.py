"""Path metadata: per-path password, default sort/mode and hidden pattern.

A record applies to its own path and, for each field whose ``recursive``
bit is set, to every descendant.  The nearest applicable record wins.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Protocol

from .exceptions import NotAllowedError
from .types import EntryWrapper
from .utils import clean_path

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .protocol import ContentReader, Drive, Entry
    from .session import Session
    from .task import TaskContext
    from .types import DriveMeta, EntryMeta, UploadConfig

RECURSIVE_PASSWORD = 1 << 0
RECURSIVE_DEFAULT_SORT = 1 << 1
RECURSIVE_DEFAULT_MODE = 1 << 2
RECURSIVE_HIDDEN_PATTERN = 1 << 3

_FIELDS = (
    ("password", RECURSIVE_PASSWORD),
    ("default_sort", RECURSIVE_DEFAULT_SORT),
    ("default_mode", RECURSIVE_DEFAULT_MODE),
    ("hidden_pattern", RECURSIVE_HIDDEN_PATTERN),
)


@dataclass
class PathMeta:
    """One stored record."""

    path: str
    password: str = ""
    default_sort: str = ""
    default_mode: str = ""
    hidden_pattern: str = ""
    recursive: int = 0

    def __post_init__(self) -> None:
        self.path = clean_path(self.path)


@dataclass
class MergedValue:
    value: str = ""
    source: str = ""
    """Path of the record the value came from."""


@dataclass
class MergedPathMeta:
    password: MergedValue = field(default_factory=MergedValue)
    default_sort: MergedValue = field(default_factory=MergedValue)
    default_mode: MergedValue = field(default_factory=MergedValue)
    hidden_pattern: MergedValue = field(default_factory=MergedValue)

    def to_props(self) -> dict[str, str]:
        """Client-visible fields; the password is never exposed."""
        return {
            "defaultSort": self.default_sort.value,
            "defaultMode": self.default_mode.value,
            "hiddenPattern": self.hidden_pattern.value,
        }


def merge_path_meta(target: str, records: Iterable[PathMeta]) -> MergedPathMeta | None:
    """Merge the ancestry *records* of *target* into effective values.

    Returns None when there are no records at all.
    """
    target = clean_path(target)
    ordered = sorted(records, key=lambda r: len(r.path), reverse=True)
    if not ordered:
        return None
    merged = MergedPathMeta()
    for record in ordered:
        same = record.path == target
        for name, bit in _FIELDS:
            slot: MergedValue = getattr(merged, name)
            value = getattr(record, name)
            if not slot.value and value and (same or record.recursive & bit):
                slot.value = value
                slot.source = record.path
    return merged


class PathMetaSource(Protocol):
    async def merged(self, path: str) -> MergedPathMeta | None: ...


# =============================================================================
# Wrapper
# =============================================================================


class PathMetaEntry(EntryWrapper):
    """Entry carrying the merged path metadata under ``props["pathMeta"]``."""

    def __init__(self, inner: Entry, *, drive: Drive, path_meta: MergedPathMeta) -> None:
        super().__init__(inner, drive=drive)
        self.path_meta = path_meta

    @property
    def meta(self) -> EntryMeta:
        meta = self._inner.meta
        return replace(meta, props={**meta.props, "pathMeta": self.path_meta.to_props()})


class PathMetaWrapper:
    """Injects path metadata on ``get`` and gates anonymous listings by password."""

    def __init__(self, drive: Drive, source: PathMetaSource, session: Session) -> None:
        self._drive = drive
        self._source = source
        self.session = session

    @property
    def inner(self) -> Drive:
        return self._drive

    def _unwrap_entry(self, entry: Entry) -> Entry:
        if isinstance(entry, PathMetaEntry) and entry.drive is self:
            return entry.unwrap()
        return entry

    async def meta(self) -> DriveMeta:
        return await self._drive.meta()

    async def get(self, path: str) -> Entry:
        entry = await self._drive.get(path)
        merged = await self._source.merged(clean_path(path))
        if merged is None:
            return entry
        return PathMetaEntry(entry, drive=self, path_meta=merged)

    async def list_dir(self, path: str) -> list[Entry]:
        if self.session.is_anonymous:
            merged = await self._source.merged(clean_path(path))
            if merged is not None and merged.password.value:
                presented = self.session.props.get("password:" + merged.password.source)
                if presented != merged.password.value:
                    raise NotAllowedError("incorrect password", data={"passwordRequired": True})
        return await self._drive.list_dir(path)

    async def save(
        self,
        path: str,
        size: int,
        override: bool,
        reader: ContentReader,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        return await self._drive.save(path, size, override, reader, ctx=ctx)

    async def make_dir(self, path: str) -> Entry:
        return await self._drive.make_dir(path)

    async def copy(
        self,
        src: Entry,
        dst: str,
        override: bool,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        return await self._drive.copy(self._unwrap_entry(src), dst, override, ctx=ctx)

    async def move(
        self,
        src: Entry,
        dst: str,
        override: bool,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        return await self._drive.move(self._unwrap_entry(src), dst, override, ctx=ctx)

    async def delete(self, path: str, *, ctx: TaskContext | None = None) -> None:
        await self._drive.delete(path, ctx=ctx)

    async def upload(
        self,
        path: str,
        size: int,
        override: bool,
        config: dict[str, Any] | None = None,
    ) -> UploadConfig | None:
        return await self._drive.upload(path, size, override, config)
