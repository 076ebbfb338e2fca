"""Task context: cancellation, progress and total-work reporting.

Long-running drive operations (tree copy, recursive delete, streaming
copy) receive a :class:`TaskContext` and poll it at every child operation
and every buffer boundary.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from .exceptions import TaskCancelledError

if TYPE_CHECKING:
    from collections.abc import Callable


class TaskContext:
    """Carries cancellation and progress through a long operation.

    ``progress`` and ``total`` are safe to call from worker threads
    (``asyncio.to_thread``); a lock guards the counters.
    """

    def __init__(
        self,
        on_update: Callable[[int, int], None] | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._cancelled = threading.Event()
        self._loaded = 0
        self._total = 0
        self._on_update = on_update

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def progress(self, loaded: int, absolute: bool = False) -> None:
        """Add *loaded* to the processed count, or set it when *absolute*."""
        with self._lock:
            self._loaded = loaded if absolute else self._loaded + loaded
            loaded_now, total_now = self._loaded, self._total
        if self._on_update is not None:
            self._on_update(loaded_now, total_now)

    def total(self, total: int, absolute: bool = False) -> None:
        """Grow the total-work hint by *total*, or set it when *absolute*."""
        with self._lock:
            self._total = total if absolute else self._total + total
            loaded_now, total_now = self._loaded, self._total
        if self._on_update is not None:
            self._on_update(loaded_now, total_now)

    @property
    def loaded(self) -> int:
        with self._lock:
            return self._loaded

    @property
    def total_work(self) -> int:
        with self._lock:
            return self._total

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def check(self) -> None:
        """Raise :class:`TaskCancelledError` if the task has been cancelled."""
        if self._cancelled.is_set():
            raise TaskCancelledError("task cancelled")

    def child(self, track_progress: bool = False, track_total: bool = False) -> TaskContext:
        """Return a context sharing this one's cancellation.

        Reports made on the child reach this context only for the
        counters selected by *track_progress* / *track_total*.
        """
        return _ChildContext(self, track_progress, track_total)


class _ChildContext(TaskContext):
    def __init__(self, parent: TaskContext, track_progress: bool, track_total: bool) -> None:
        super().__init__()
        self._parent = parent
        self._cancelled = parent._cancelled
        self._track_progress = track_progress
        self._track_total = track_total

    def progress(self, loaded: int, absolute: bool = False) -> None:
        super().progress(loaded, absolute)
        if self._track_progress:
            self._parent.progress(loaded, absolute)

    def total(self, total: int, absolute: bool = False) -> None:
        super().total(total, absolute)
        if self._track_total:
            self._parent.total(total, absolute)


def dummy_context() -> TaskContext:
    """A context nobody observes and nobody cancels."""
    return TaskContext()
