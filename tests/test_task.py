"""Tests for drive/task.py: cancellation and progress reporting."""

from __future__ import annotations

import pytest

from drivegate.drive.exceptions import TaskCancelledError
from drivegate.drive.task import TaskContext, dummy_context


class TestTaskContext:
    def test_progress_accumulates(self):
        ctx = TaskContext()
        ctx.progress(3)
        ctx.progress(4)
        assert ctx.loaded == 7
        ctx.progress(2, absolute=True)
        assert ctx.loaded == 2

    def test_total_grows(self):
        ctx = TaskContext()
        ctx.total(1)
        ctx.total(10)
        assert ctx.total_work == 11

    def test_on_update_receives_counts(self):
        updates: list[tuple[int, int]] = []
        ctx = TaskContext(on_update=lambda loaded, total: updates.append((loaded, total)))
        ctx.total(5)
        ctx.progress(2)
        assert updates == [(0, 5), (2, 5)]

    def test_check_raises_after_cancel(self):
        ctx = TaskContext()
        ctx.check()
        ctx.cancel()
        assert ctx.cancelled
        with pytest.raises(TaskCancelledError):
            ctx.check()

    def test_dummy_context_is_fresh(self):
        assert not dummy_context().cancelled


class TestChildContext:
    def test_shares_cancellation(self):
        parent = TaskContext()
        child = parent.child()
        parent.cancel()
        assert child.cancelled
        with pytest.raises(TaskCancelledError):
            child.check()

    def test_child_cancel_propagates_up(self):
        parent = TaskContext()
        parent.child().cancel()
        assert parent.cancelled

    def test_untracked_progress_is_discarded(self):
        parent = TaskContext()
        child = parent.child()
        child.progress(100)
        child.total(100)
        assert child.loaded == 100
        assert parent.loaded == 0
        assert parent.total_work == 0

    def test_tracked_progress_is_forwarded(self):
        parent = TaskContext()
        child = parent.child(track_progress=True, track_total=True)
        child.total(8)
        child.progress(3)
        assert parent.total_work == 8
        assert parent.loaded == 3
