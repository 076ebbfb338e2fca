"""Drive listeners: observers notified after successful drive calls."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from drivegate.drive.session import Session

if TYPE_CHECKING:
    from collections.abc import Iterable

    from drivegate.drive.protocol import ContentReader, Drive, Entry
    from drivegate.drive.task import TaskContext
    from drivegate.drive.types import DriveMeta, UploadConfig

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Kinds of drive events."""

    ENTRY_ACCESSED = "entry_accessed"
    ENTRY_UPDATED = "entry_updated"
    ENTRY_DELETED = "entry_deleted"


@dataclass(frozen=True, slots=True)
class ListenerContext:
    """Who triggered an event."""

    session: Session = field(default_factory=Session)


@runtime_checkable
class DriveListener(Protocol):
    """Observer of drive events.

    Methods run synchronously on the calling task and must not block.
    """

    def on_access(self, ctx: ListenerContext, path: str) -> None: ...

    def on_updated(self, ctx: ListenerContext, entry: Entry, copy: bool) -> None: ...

    def on_deleted(self, ctx: ListenerContext, path: str) -> None: ...


class ListenerWrapper:
    """Forwards every call to *drive*, then notifies *listeners*.

    A failing listener is logged and skipped; it never fails the call.
    """

    def __init__(self, drive: Drive, listeners: Iterable[DriveListener], ctx: ListenerContext) -> None:
        self._drive = drive
        self._listeners = list(listeners)
        self.ctx = ctx

    @property
    def inner(self) -> Drive:
        return self._drive

    def _notify(self, event_type: EventType, *args: Any) -> None:
        method = {
            EventType.ENTRY_ACCESSED: "on_access",
            EventType.ENTRY_UPDATED: "on_updated",
            EventType.ENTRY_DELETED: "on_deleted",
        }[event_type]
        for listener in self._listeners:
            try:
                getattr(listener, method)(self.ctx, *args)
            except Exception:
                logger.warning(
                    "Listener %r failed for %s",
                    listener,
                    event_type.value,
                    exc_info=True,
                )

    async def meta(self) -> DriveMeta:
        return await self._drive.meta()

    async def get(self, path: str) -> Entry:
        entry = await self._drive.get(path)
        self._notify(EventType.ENTRY_ACCESSED, entry.path)
        return entry

    async def list_dir(self, path: str) -> list[Entry]:
        entries = await self._drive.list_dir(path)
        self._notify(EventType.ENTRY_ACCESSED, path)
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
        self._notify(EventType.ENTRY_UPDATED, entry, False)
        return entry

    async def make_dir(self, path: str) -> Entry:
        entry = await self._drive.make_dir(path)
        self._notify(EventType.ENTRY_UPDATED, entry, False)
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
        self._notify(EventType.ENTRY_ACCESSED, src.path)
        self._notify(EventType.ENTRY_UPDATED, entry, True)
        return entry

    async def move(
        self,
        src: Entry,
        dst: str,
        override: bool,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        src_path = src.path
        entry = await self._drive.move(src, dst, override, ctx=ctx)
        self._notify(EventType.ENTRY_DELETED, src_path)
        self._notify(EventType.ENTRY_UPDATED, entry, True)
        return entry

    async def delete(self, path: str, *, ctx: TaskContext | None = None) -> None:
        await self._drive.delete(path, ctx=ctx)
        self._notify(EventType.ENTRY_DELETED, path)

    async def upload(
        self,
        path: str,
        size: int,
        override: bool,
        config: dict[str, Any] | None = None,
    ) -> UploadConfig | None:
        return await self._drive.upload(path, size, override, config)
