"""Slow-tick coordinator for the global version cleanup."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from reach_lifecycle.ports.repositories import VersionPruneCallable

logger = logging.getLogger(__name__)


class VersionCleanupCoordinator:
    """Invokes the pruning capability and contains its failures.

    The coordinator does no store or filesystem access of its own. Whatever
    the pruning callable raises is logged and swallowed so the slow cadence
    keeps firing.
    """

    def __init__(self, prune: VersionPruneCallable) -> None:
        self._prune = prune

        self._stats_lock = threading.Lock()
        self._succeeded = 0
        self._failed = 0
        self._last_error: str | None = None

    def run(self) -> bool:
        """Run the global version cleanup once.

        Returns:
            True if pruning completed, False if it raised.
        """
        logger.debug("Starting global version cleanup...")
        try:
            self._prune()
        except Exception as e:
            logger.error(f"Error in version cleanup: {e}", exc_info=True)
            with self._stats_lock:
                self._failed += 1
                self._last_error = str(e)
            return False

        logger.info("Version cleanup completed successfully")
        with self._stats_lock:
            self._succeeded += 1
        return True

    def get_stats(self) -> dict[str, Any]:
        with self._stats_lock:
            return {
                "succeeded": self._succeeded,
                "failed": self._failed,
                "last_error": self._last_error,
            }
