"""Tree walker: build an entry tree, flatten it, copy it recursively.

Used by the dispatcher's cross-drive copy fallback and by backends
whose recursive delete/move is emulated (object stores, FTP).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .exceptions import NotAllowedError, NotFoundError
from .streams import stage_to_temp_file
from .task import dummy_context
from .types import content_of
from .utils import clean_path, path_join

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from pathlib import Path

    from .protocol import Drive, Entry
    from .task import TaskContext

    CopyOne = Callable[[Entry, Drive, str, TaskContext], Awaitable[object]]
    AfterCopy = Callable[[Entry, bool, TaskContext], Awaitable[object]]

logger = logging.getLogger(__name__)


@dataclass
class EntryNode:
    """One entry and, for directories, its children."""

    entry: Entry
    children: list[EntryNode] = field(default_factory=list)


async def build_tree(
    root: Entry,
    ctx: TaskContext | None = None,
    *,
    drive: Drive | None = None,
) -> EntryNode:
    """Walk *root* depth-first, listing every directory.

    Directories are listed through *drive* when given, otherwise through
    ``entry.drive``.  Every discovered node grows ``ctx.total`` by one;
    cancellation is checked before each listing.
    """
    ctx = ctx or dummy_context()
    ctx.total(1)
    return await _build(root, ctx, drive)


async def _build(entry: Entry, ctx: TaskContext, drive: Drive | None) -> EntryNode:
    ctx.check()
    node = EntryNode(entry)
    if not entry.is_dir:
        return node
    source = drive or entry.drive
    if source is None:
        raise NotAllowedError(f"Entry has no drive: {entry.path}")
    children = await source.list_dir(entry.path)
    ctx.total(len(children))
    for child in children:
        node.children.append(await _build(child, ctx, drive))
    return node


def flatten_tree(root: EntryNode, deep_first: bool = False) -> list[EntryNode]:
    """Flatten in pre-order, or post-order when *deep_first*."""
    result: list[EntryNode] = []

    def _visit(node: EntryNode) -> None:
        if not deep_first:
            result.append(node)
        for child in node.children:
            _visit(child)
        if deep_first:
            result.append(node)

    _visit(root)
    return result


async def copy_entry(
    src: Entry,
    dst_drive: Drive,
    dst: str,
    override: bool,
    ctx: TaskContext | None = None,
    *,
    temp_dir: str | Path | None = None,
) -> Entry:
    """Copy one file by staging its content in a temp file, then ``save``.

    The temp file is removed on every exit path.
    """
    content = content_of(src)
    if src.is_dir or content is None:
        raise NotAllowedError(f"Entry has no readable content: {src.path}")
    ctx = ctx or dummy_context()
    reader = await content.get_reader()
    try:
        staged = await stage_to_temp_file(reader, ctx.child(), temp_dir=temp_dir)
    finally:
        await reader.close()
    try:
        return await dst_drive.save(dst, src.size, override, staged, ctx=ctx)
    finally:
        await staged.close()


async def copy_all(
    src: Entry,
    dst_drive: Drive,
    dst: str,
    override: bool,
    ctx: TaskContext | None = None,
    *,
    copy_one: CopyOne | None = None,
    after: AfterCopy | None = None,
    temp_dir: str | Path | None = None,
) -> bool:
    """Recursively copy *src* to *dst* on *dst_drive*.

    Returns True when every node was copied, False when some existing
    files were skipped because *override* is False.  The first error
    aborts the walk; completed copies are left in place.
    """
    ctx = ctx or dummy_context()
    tree = await build_tree(src, ctx)

    if copy_one is None:

        async def copy_one(entry: Entry, drive: Drive, to: str, child_ctx: TaskContext) -> None:
            await copy_entry(entry, drive, to, override, child_ctx, temp_dir=temp_dir)

    processed = 0

    async def _copy(node: EntryNode, to: str, parent_created: bool) -> bool:
        nonlocal processed
        ctx.check()
        entry = node.entry

        dst_entry: Entry | None = None
        if not parent_created:
            try:
                dst_entry = await dst_drive.get(to)
            except NotFoundError:
                dst_entry = None

        fully_processed = True
        if entry.is_dir:
            created = False
            if dst_entry is not None:
                if not dst_entry.is_dir:
                    raise NotAllowedError(f"Cannot copy directory {entry.path} over file {to}")
            else:
                await dst_drive.make_dir(to)
                created = True
            for child in node.children:
                if not await _copy(child, path_join(to, child.entry.name), created):
                    fully_processed = False
        elif dst_entry is not None and dst_entry.is_dir:
            raise NotAllowedError(f"Cannot copy file {entry.path} over directory {to}")
        elif dst_entry is not None and not override:
            logger.debug("Skipping existing file %s", to)
            fully_processed = False
        else:
            await copy_one(entry, dst_drive, to, ctx.child())

        processed += 1
        ctx.progress(processed, absolute=True)
        if after is not None:
            await after(entry, fully_processed, ctx)
        return fully_processed

    return await _copy(tree, clean_path(dst), False)
