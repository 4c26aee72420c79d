"""Per-tick correlation and step timing.

A scheduler tick runs inside ``tick_context(name)``. Anything logged while the
tick is in progress (promotions, temp deletions, pruning) can then be tagged
with ``[tick=<task>:<id>]``. The current tick lives in a ``ContextVar``, so the
fast and slow tick threads never see each other's context.

Usage:
    with tick_context("fast-tick") as tick:
        timing = TimingContext()
        with timing.measure("promote"):
            promoter.promote_waiting()
        logger.debug(f"{tick.tick_id}: {timing.summary()}")
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime

from reach_lifecycle.core.utils import utc_now


@dataclass(frozen=True)
class TickContext:
    """Identity of one running tick."""

    task_name: str
    tick_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    started_at: datetime = field(default_factory=utc_now)
    _started: float = field(default_factory=time.monotonic, repr=False, compare=False)

    @classmethod
    def create(cls, task_name: str) -> TickContext:
        return cls(task_name=task_name)

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self._started) * 1000

    def log_fields(self) -> dict[str, str]:
        """Fields added to structured (JSON) log lines."""
        return {"tick_id": self.tick_id, "task": self.task_name}


_current_tick: ContextVar[TickContext | None] = ContextVar("reach_tick", default=None)


def get_current_context() -> TickContext | None:
    """The tick running on this thread, or None."""
    return _current_tick.get()


@contextmanager
def tick_context(task_name: str) -> Iterator[TickContext]:
    """Run the enclosed block as one tick of ``task_name``.

    The previous context (normally None) is restored on exit, including when
    the block raises.
    """
    tick = TickContext.create(task_name)
    token = _current_tick.set(tick)
    try:
        yield tick
    finally:
        _current_tick.reset(token)


def format_context_prefix() -> str:
    """``[tick=<task>:<id>]`` for the current tick, empty outside one."""
    tick = _current_tick.get()
    return f"[tick={tick.task_name}:{tick.tick_id}]" if tick else ""


class TimingContext:
    """Wall-clock durations of the named steps of a tick, in milliseconds."""

    def __init__(self) -> None:
        self.timings: dict[str, float] = {}
        self._origin = time.perf_counter()

    @contextmanager
    def measure(self, name: str) -> Iterator[None]:
        began = time.perf_counter()
        try:
            yield
        finally:
            self.timings[name] = (time.perf_counter() - began) * 1000

    def total_ms(self) -> float:
        return (time.perf_counter() - self._origin) * 1000

    def summary(self) -> dict[str, float]:
        """Step timings plus ``total_ms`` and the unaccounted ``other_ms``."""
        total = self.total_ms()
        steps = dict(self.timings)
        steps["total_ms"] = total
        steps["other_ms"] = max(0.0, total - sum(self.timings.values()))
        return steps
