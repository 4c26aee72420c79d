"""Unit tests for the periodic task scheduler.

Tests cover:
- Skip-if-busy guard per task
- Callback errors logged and counted, later ticks still fire
- Timer lifecycle (idempotent start, stop)
- Tick context set around callbacks
"""

from __future__ import annotations

import logging
import threading
import time
from unittest.mock import MagicMock

import pytest

from reach_lifecycle.core.errors import ValidationError
from reach_lifecycle.core.tracing import get_current_context
from reach_lifecycle.services.scheduler import PeriodicTask, Scheduler


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestPeriodicTaskRunOnce:
    """Tests for a single tick."""

    def test_runs_callback(self) -> None:
        callback = MagicMock()
        task = PeriodicTask("fast-tick", 60, callback)

        assert task.run_once() is True
        callback.assert_called_once_with()
        assert task.get_stats()["ticks_run"] == 1

    def test_skips_while_previous_tick_running(self, caplog: pytest.LogCaptureFixture) -> None:
        started = threading.Event()
        release = threading.Event()

        def slow() -> None:
            started.set()
            release.wait(timeout=5)

        task = PeriodicTask("fast-tick", 60, slow)
        worker = threading.Thread(target=task.run_once)
        worker.start()
        assert started.wait(timeout=5)

        with caplog.at_level(logging.WARNING):
            assert task.is_busy is True
            assert task.run_once() is False

        release.set()
        worker.join(timeout=5)
        assert task.is_busy is False
        assert "Skipping fast-tick: previous tick still running" in caplog.text
        stats = task.get_stats()
        assert stats["ticks_run"] == 1
        assert stats["ticks_skipped"] == 1

    def test_callback_error_contained(self, caplog: pytest.LogCaptureFixture) -> None:
        task = PeriodicTask("slow-tick", 60, MagicMock(side_effect=RuntimeError("boom")))

        with caplog.at_level(logging.ERROR):
            assert task.run_once() is True

        assert "Unhandled error in slow-tick" in caplog.text
        assert caplog.records[-1].exc_info is not None
        assert task.get_stats()["ticks_failed"] == 1
        assert task.is_busy is False

    def test_tick_context_visible_in_callback(self) -> None:
        seen = []
        task = PeriodicTask("fast-tick", 60, lambda: seen.append(get_current_context()))

        task.run_once()

        assert seen[0] is not None
        assert seen[0].task_name == "fast-tick"
        assert get_current_context() is None

    def test_interval_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            PeriodicTask("bad", 0, MagicMock())


class TestPeriodicTaskTimer:
    """Tests for the timer thread."""

    def test_fires_repeatedly(self) -> None:
        callback = MagicMock()
        task = PeriodicTask("fast-tick", 0.02, callback)
        task.start()
        try:
            assert _wait_for(lambda: callback.call_count >= 3)
        finally:
            task.stop(timeout=2)
        assert task.is_running is False

    def test_first_tick_after_one_interval(self) -> None:
        callback = MagicMock()
        task = PeriodicTask("slow-tick", 10, callback)
        task.start()
        try:
            time.sleep(0.1)
            callback.assert_not_called()
        finally:
            task.stop(timeout=2)

    def test_error_does_not_stop_next_tick(self) -> None:
        """A failing tick is followed by the next scheduled tick."""
        calls = []

        def flaky() -> None:
            calls.append(time.monotonic())
            if len(calls) == 1:
                raise RuntimeError("pruning failed")

        task = PeriodicTask("slow-tick", 0.02, flaky)
        task.start()
        try:
            assert _wait_for(lambda: len(calls) >= 2)
        finally:
            task.stop(timeout=2)
        assert task.get_stats()["ticks_failed"] == 1

    def test_start_is_idempotent(self) -> None:
        task = PeriodicTask("fast-tick", 10, MagicMock())
        task.start()
        first = task._timer_thread
        task.start()
        try:
            assert task._timer_thread is first
        finally:
            task.stop(timeout=2)

    def test_overlapping_ticks_skipped(self) -> None:
        release = threading.Event()
        task = PeriodicTask("fast-tick", 0.02, lambda: release.wait(timeout=5))
        task.start()
        try:
            assert _wait_for(lambda: task.get_stats()["ticks_skipped"] >= 2)
        finally:
            release.set()
            task.stop(timeout=2)
        assert task.get_stats()["ticks_run"] >= 1


class TestScheduler:
    """Tests for the task registry."""

    def test_add_task_and_start(self) -> None:
        scheduler = Scheduler()
        fast = MagicMock()
        slow = MagicMock()
        scheduler.add_task("fast-tick", 0.02, fast)
        scheduler.add_task("slow-tick", 10, slow)

        scheduler.start()
        try:
            assert _wait_for(lambda: fast.call_count >= 2)
            slow.assert_not_called()
        finally:
            scheduler.stop(timeout=2)

        assert set(scheduler.get_stats()) == {"fast-tick", "slow-tick"}

    def test_cadences_independent(self) -> None:
        """A blocked slow tick does not hold up the fast cadence."""
        release = threading.Event()
        fast = MagicMock()
        scheduler = Scheduler()
        scheduler.add_task("slow-tick", 0.02, lambda: release.wait(timeout=5))
        scheduler.add_task("fast-tick", 0.02, fast)

        scheduler.start()
        try:
            assert _wait_for(lambda: fast.call_count >= 3)
        finally:
            release.set()
            scheduler.stop(timeout=2)

    def test_duplicate_name_rejected(self) -> None:
        scheduler = Scheduler()
        scheduler.add_task("fast-tick", 1, MagicMock())
        with pytest.raises(ValidationError):
            scheduler.add_task("fast-tick", 1, MagicMock())

    def test_task_added_after_start_runs(self) -> None:
        scheduler = Scheduler()
        scheduler.start()
        callback = MagicMock()
        try:
            scheduler.add_task("late", 0.02, callback)
            assert _wait_for(lambda: callback.call_count >= 1)
        finally:
            scheduler.stop(timeout=2)
