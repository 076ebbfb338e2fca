"""Value types: entries, drive metadata, upload configs and form items."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from .protocol import SupportsContent
from .utils import path_base

if TYPE_CHECKING:
    from collections.abc import Callable

    from .protocol import Drive, Entry

LOCAL_PROVIDER = "local"
LOCAL_CHUNK_PROVIDER = "local-chunk"
DEFAULT_CHUNK_THRESHOLD = 5 * 1024 * 1024


class EntryType(str, Enum):
    """Kind of node in the virtual tree."""

    FILE = "file"
    DIR = "dir"


@dataclass
class EntryMeta:
    """Access flags and open-ended properties of an entry."""

    can_read: bool = True
    can_write: bool = True
    props: dict[str, Any] = field(default_factory=dict)


@dataclass
class DriveMeta:
    """Drive-level capabilities reported by ``Drive.meta()``."""

    can_write: bool = True
    props: dict[str, Any] = field(default_factory=dict)


@dataclass
class ContentURL:
    """A download URL for an entry's content."""

    url: str
    proxy: bool = False
    """If True the client cannot fetch ``url`` directly and must go through the gateway."""
    headers: dict[str, str] | None = None


@dataclass
class UploadConfig:
    """Provider tag plus provider-specific opaque config returned to the client."""

    provider: str
    config: Any = None


def use_local_provider(size: int, threshold: int = DEFAULT_CHUNK_THRESHOLD) -> UploadConfig:
    """Pick ``local`` for small uploads and ``local-chunk`` above *threshold*."""
    if size <= threshold:
        return UploadConfig(provider=LOCAL_PROVIDER)
    return UploadConfig(provider=LOCAL_CHUNK_PROVIDER)


# =============================================================================
# Entries
# =============================================================================


@dataclass
class BaseEntry:
    """Plain entry value object shared by backends.

    Backends subclass it and add ``get_reader``/``get_url`` when they
    provide content access.
    """

    path: str
    type: EntryType
    size: int = -1
    mod_time: int = -1
    meta: EntryMeta = field(default_factory=EntryMeta)
    drive: Drive | None = field(default=None, repr=False, compare=False)

    @property
    def name(self) -> str:
        return path_base(self.path)

    @property
    def is_dir(self) -> bool:
        return self.type is EntryType.DIR


class EntryWrapper:
    """Composes an inner entry, overriding selected attributes.

    Wrappers never implement content access themselves; use
    :func:`content_of` to reach the layer that does.
    """

    def __init__(
        self,
        inner: Entry,
        *,
        path: str | None = None,
        drive: Drive | None = None,
        meta: EntryMeta | None = None,
    ) -> None:
        self._inner = inner
        self._path = path
        self._drive = drive
        self._meta = meta

    def unwrap(self) -> Entry:
        return self._inner

    @property
    def path(self) -> str:
        return self._path if self._path is not None else self._inner.path

    @property
    def name(self) -> str:
        return path_base(self.path)

    @property
    def type(self) -> EntryType:
        return self._inner.type

    @property
    def is_dir(self) -> bool:
        return self._inner.type is EntryType.DIR

    @property
    def size(self) -> int:
        return self._inner.size

    @property
    def mod_time(self) -> int:
        return self._inner.mod_time

    @property
    def meta(self) -> EntryMeta:
        return self._meta if self._meta is not None else self._inner.meta

    @property
    def drive(self) -> Drive | None:
        return self._drive if self._drive is not None else self._inner.drive

    def __repr__(self) -> str:
        return f"{type(self).__name__}(path={self.path!r}, inner={self._inner!r})"


def find_entry(entry: Entry, predicate: Callable[[Entry], bool]) -> Entry | None:
    """Unwrap *entry* layer by layer until *predicate* holds."""
    current: Entry | None = entry
    while current is not None:
        if predicate(current):
            return current
        current = current.unwrap() if isinstance(current, EntryWrapper) else None
    return None


def innermost(entry: Entry) -> Entry:
    while isinstance(entry, EntryWrapper):
        entry = entry.unwrap()
    return entry


def content_of(entry: Entry) -> SupportsContent | None:
    """Return the first layer of *entry* that provides content access."""
    found = find_entry(entry, lambda e: isinstance(e, SupportsContent))
    return found  # type: ignore[return-value]


# =============================================================================
# Backend factory forms
# =============================================================================


@dataclass
class FormOption:
    name: str
    value: str
    title: str = ""


@dataclass
class FormItem:
    """One field of a backend's configuration form."""

    label: str
    type: str
    """One of ``text``, ``password``, ``textarea``, ``select``, ``checkbox``."""
    field: str
    required: bool = False
    description: str = ""
    options: list[FormOption] = field(default_factory=list)
    default_value: str = ""
