"""Periodic task scheduler.

Daemon-thread service layout:
- __init__: threading primitives, config
- start(): idempotent, creates daemon thread
- stop(timeout): sets shutdown event, joins thread, logs stats
- _timer_loop(): fixed-rate loop with event.wait(timeout)

Each ``PeriodicTask`` owns a timer thread that fires at a fixed rate, one
interval after start and every interval thereafter. Every tick runs on its own
short-lived daemon thread so a slow tick does not shift the timetable. A tick
that fires while the previous tick of the same task is still running is
skipped and logged. Errors raised by a callback are logged with their
traceback and never stop later ticks.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from reach_lifecycle.core.errors import ValidationError
from reach_lifecycle.core.tracing import TimingContext, tick_context

logger = logging.getLogger(__name__)


class PeriodicTask:
    """A callback fired at a fixed interval on a daemon thread."""

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        callback: Callable[[], Any],
    ) -> None:
        """Initialize the task.

        Args:
            name: Task name, used for thread names and log context.
            interval_seconds: Seconds between ticks (must be positive).
            callback: Zero-argument callable run on every tick.
        """
        if interval_seconds <= 0:
            raise ValidationError(f"Interval for '{name}' must be positive, got {interval_seconds}")
        self.name = name
        self.interval_seconds = float(interval_seconds)
        self._callback = callback

        # Threading primitives
        self._lock = threading.Lock()
        self._running = threading.Lock()  # held while a tick executes
        self._shutdown_event = threading.Event()
        self._timer_thread: threading.Thread | None = None
        self._tick_thread: threading.Thread | None = None

        # Statistics
        self._stats_lock = threading.Lock()
        self._ticks_run = 0
        self._ticks_skipped = 0
        self._ticks_failed = 0
        self._last_duration_ms: float | None = None

    @property
    def is_running(self) -> bool:
        """Whether the timer thread is alive."""
        return self._timer_thread is not None and self._timer_thread.is_alive()

    @property
    def is_busy(self) -> bool:
        """Whether a tick is executing right now."""
        return self._running.locked()

    def start(self) -> None:
        """Start the timer thread.

        Safe to call multiple times - will only start if not already running.
        """
        with self._lock:
            if self.is_running:
                logger.debug(f"Task {self.name} already running")
                return

            self._shutdown_event.clear()
            self._timer_thread = threading.Thread(
                target=self._timer_loop,
                name=f"{self.name}-timer",
                daemon=True,
            )
            self._timer_thread.start()
            logger.info(f"Scheduled {self.name} every {self.interval_seconds:g}s")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the timer and wait for an in-flight tick.

        Args:
            timeout: Maximum seconds to wait for each thread.
        """
        self._shutdown_event.set()
        for thread in (self._timer_thread, self._tick_thread):
            if thread is not None and thread.is_alive() and thread is not threading.current_thread():
                thread.join(timeout=timeout)
                if thread.is_alive():
                    logger.warning(f"Thread {thread.name} did not stop within timeout")

    def run_once(self) -> bool:
        """Run the callback once unless a tick of this task is in progress.

        Never raises.

        Returns:
            True if the callback ran (even if it failed), False if skipped.
        """
        if not self._running.acquire(blocking=False):
            logger.warning(f"Skipping {self.name}: previous tick still running")
            with self._stats_lock:
                self._ticks_skipped += 1
            return False

        try:
            with tick_context(self.name):
                timing = TimingContext()
                failed = False
                try:
                    self._callback()
                except Exception:
                    logger.error(f"Unhandled error in {self.name}", exc_info=True)
                    failed = True
                duration = timing.total_ms()
                logger.debug(f"{self.name} finished in {duration:.1f}ms")
                with self._stats_lock:
                    self._ticks_run += 1
                    self._ticks_failed += int(failed)
                    self._last_duration_ms = duration
            return True
        finally:
            self._running.release()

    def _timer_loop(self) -> None:
        """Fire ticks at a fixed rate until shutdown."""
        logger.debug(f"{self.name} timer started")
        next_due = time.monotonic() + self.interval_seconds

        while not self._shutdown_event.wait(timeout=max(0.0, next_due - time.monotonic())):
            try:
                self._dispatch()
            except Exception:
                logger.error(f"Could not dispatch {self.name}", exc_info=True)

            next_due += self.interval_seconds
            now = time.monotonic()
            while next_due <= now:
                # Fell behind (suspend, clock stall): coalesce missed ticks
                next_due += self.interval_seconds

        logger.debug(f"{self.name} timer stopped")

    def _dispatch(self) -> None:
        if self.is_busy:
            self.run_once()  # records the skip
            return
        self._tick_thread = threading.Thread(
            target=self.run_once,
            name=f"{self.name}-tick",
            daemon=True,
        )
        self._tick_thread.start()

    def get_stats(self) -> dict[str, Any]:
        """Get tick statistics for this task."""
        with self._stats_lock:
            return {
                "interval_seconds": self.interval_seconds,
                "ticks_run": self._ticks_run,
                "ticks_skipped": self._ticks_skipped,
                "ticks_failed": self._ticks_failed,
                "last_duration_ms": self._last_duration_ms,
                "timer_alive": self.is_running,
                "busy": self.is_busy,
            }


class Scheduler:
    """Registry of independent periodic tasks."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tasks: dict[str, PeriodicTask] = {}
        self._started = False

    @property
    def tasks(self) -> dict[str, PeriodicTask]:
        return dict(self._tasks)

    @property
    def started(self) -> bool:
        return self._started

    def add_task(
        self,
        name: str,
        interval_seconds: float,
        callback: Callable[[], Any],
    ) -> PeriodicTask:
        """Register a periodic task (started right away if the scheduler runs).

        Raises:
            ValidationError: If the name is taken or the interval is invalid.
        """
        with self._lock:
            if name in self._tasks:
                raise ValidationError(f"Task already registered: {name}")
            task = PeriodicTask(name, interval_seconds, callback)
            self._tasks[name] = task
            if self._started:
                task.start()
            return task

    def start(self) -> None:
        """Start every registered task. Safe to call multiple times."""
        with self._lock:
            self._started = True
            for task in self._tasks.values():
                task.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop every task and log its final statistics."""
        with self._lock:
            self._started = False
            tasks = list(self._tasks.values())
        for task in tasks:
            task.stop(timeout=timeout)
            stats = task.get_stats()
            logger.info(
                f"{task.name} stopped. Run: {stats['ticks_run']}, "
                f"Skipped: {stats['ticks_skipped']}, Failed: {stats['ticks_failed']}"
            )

    def get_stats(self) -> dict[str, dict[str, Any]]:
        return {name: task.get_stats() for name, task in self._tasks.items()}
