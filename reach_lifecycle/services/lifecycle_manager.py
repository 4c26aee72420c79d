"""Background lifecycle manager.

Architecture:
    fast tick (every minute)              slow tick (every 6 hours)
            │                                       │
            ▼                                       ▼
    InstancePromoter.promote_waiting()    VersionCleanupCoordinator.run()
            │                                       │
            ▼                                       ▼
    TempFileJanitor.clean()               VersionPruner.prune_all()

The two cadences run on independent scheduler threads. Each step of a tick
sits in its own failure boundary so one failing step never prevents the next
step or the next tick.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from reach_lifecycle.core.lifecycle_constants import (
    DEFAULT_FAST_TICK_SECONDS,
    DEFAULT_SLOW_TICK_SECONDS,
    FAST_TICK_NAME,
    SLOW_TICK_NAME,
)
from reach_lifecycle.core.tracing import TimingContext
from reach_lifecycle.services.scheduler import Scheduler

if TYPE_CHECKING:
    from collections.abc import Callable

    from reach_lifecycle.services.promoter import InstancePromoter, PromotionResult
    from reach_lifecycle.services.temp_janitor import JanitorResult, TempFileJanitor
    from reach_lifecycle.services.version_cleanup import VersionCleanupCoordinator

logger = logging.getLogger(__name__)


@dataclass
class FastTickResult:
    """Outcome of one fast tick. A step that crashed leaves its field None."""

    promotion: PromotionResult | None = None
    janitor: JanitorResult | None = None
    timings: dict[str, float] | None = None


class LifecycleManager:
    """Owns the lifecycle services and the scheduler that drives them."""

    def __init__(
        self,
        promoter: InstancePromoter,
        janitor: TempFileJanitor,
        version_cleanup: VersionCleanupCoordinator,
        scheduler: Scheduler | None = None,
        fast_tick_seconds: float = DEFAULT_FAST_TICK_SECONDS,
        slow_tick_seconds: float = DEFAULT_SLOW_TICK_SECONDS,
        on_stop: Callable[[], None] | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            promoter: Promotes overdue waiting instances.
            janitor: Evicts expired temp entries.
            version_cleanup: Runs the global version cleanup.
            scheduler: Scheduler to register the ticks with.
            fast_tick_seconds: Interval of the fast tick.
            slow_tick_seconds: Interval of the slow tick.
            on_stop: Called after the scheduler stopped (releases resources).
        """
        self.promoter = promoter
        self.janitor = janitor
        self.version_cleanup = version_cleanup
        self.scheduler = scheduler or Scheduler()
        self.fast_tick_seconds = fast_tick_seconds
        self.slow_tick_seconds = slow_tick_seconds
        self._on_stop = on_stop
        self._lock = threading.Lock()
        self._registered = False

    def run_fast_tick(self) -> FastTickResult:
        """Promote waiting instances, then sweep the temp directory."""
        result = FastTickResult()
        timing = TimingContext()

        with timing.measure("promote"):
            try:
                result.promotion = self.promoter.promote_waiting()
            except Exception:
                logger.error("Error while promoting waiting instances", exc_info=True)

        with timing.measure("janitor"):
            try:
                result.janitor = self.janitor.clean()
            except Exception:
                logger.error("Error while cleaning temp files", exc_info=True)

        result.timings = timing.summary()
        return result

    def run_slow_tick(self) -> bool:
        """Run the global version cleanup.

        Returns:
            True if the cleanup succeeded.
        """
        try:
            return self.version_cleanup.run()
        except Exception:
            logger.error("Error in version cleanup task", exc_info=True)
            return False

    def start(self) -> None:
        """Register both ticks and start the scheduler.

        Safe to call multiple times.
        """
        with self._lock:
            if not self._registered:
                self.scheduler.add_task(FAST_TICK_NAME, self.fast_tick_seconds, self.run_fast_tick)
                self.scheduler.add_task(SLOW_TICK_NAME, self.slow_tick_seconds, self.run_slow_tick)
                self._registered = True
            self.scheduler.start()
        logger.info(
            f"Lifecycle manager started (fast={self.fast_tick_seconds:g}s, "
            f"slow={self.slow_tick_seconds:g}s)"
        )

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the scheduler and release resources."""
        self.scheduler.stop(timeout=timeout)
        if self._on_stop is not None:
            self._on_stop()
        logger.info("Lifecycle manager stopped")

    def get_stats(self) -> dict[str, Any]:
        return {
            "promoter": self.promoter.get_stats(),
            "janitor": self.janitor.get_stats(),
            "version_cleanup": self.version_cleanup.get_stats(),
            "scheduler": self.scheduler.get_stats(),
        }


# Process-wide manager started by start_lifecycle_manager()
_manager: LifecycleManager | None = None
_manager_lock = threading.Lock()


def start_lifecycle_manager() -> None:
    """Build the lifecycle manager from settings and start it.

    Intended to be called once by the hosting process. Later calls log a
    warning and do nothing. Never raises: the store is only reached from the
    ticks, and anything else failing here is logged and leaves no manager.
    """
    global _manager
    from reach_lifecycle.config import get_settings
    from reach_lifecycle.factory import ServiceFactory

    with _manager_lock:
        if _manager is not None:
            logger.warning("Lifecycle manager already started, ignoring")
            return
        try:
            container = ServiceFactory(get_settings()).create_all()
            container.manager.start()
        except Exception:
            logger.error("Could not start lifecycle manager", exc_info=True)
            return
        _manager = container.manager


def get_lifecycle_manager() -> LifecycleManager | None:
    """The manager started by start_lifecycle_manager(), if any."""
    return _manager


def shutdown_lifecycle_manager(timeout: float = 5.0) -> None:
    """Stop the process-wide manager (used by the CLI and tests)."""
    global _manager
    with _manager_lock:
        manager, _manager = _manager, None
    if manager is not None:
        manager.stop(timeout=timeout)
