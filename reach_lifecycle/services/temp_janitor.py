"""Eviction of expired entries from the shared upload temp directory.

Uploads are staged in ``<upload_dir>/temp`` and normally moved away by the
request that created them. Anything left behind for longer than the retention
window is removed on the fast tick.

The directory is shared with the upload handlers, so an entry can disappear
between listing, stat and removal. A vanished entry is a normal outcome and is
counted, never logged as a problem.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from reach_lifecycle.core.lifecycle_constants import TEMP_FILE_MAX_AGE_SECONDS
from reach_lifecycle.core.utils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class JanitorResult:
    """Outcome of one temp directory sweep."""

    scanned: int = 0
    deleted: int = 0
    vanished: int = 0
    failed: int = 0
    listing_failed: bool = False


def entry_created_at(st: os.stat_result) -> float:
    """Creation time of a filesystem entry as a POSIX timestamp.

    Uses the birth time where the platform records it (macOS, BSD, Windows).
    Extracted archive members keep their original mtime, so mtime is only a
    fallback for filesystems without a birth time.
    """
    birthtime = getattr(st, "st_birthtime", None)
    return st.st_mtime if birthtime is None else birthtime


class TempFileJanitor:
    """Deletes temp entries older than the retention window."""

    def __init__(
        self,
        temp_dir: Path,
        max_age_seconds: float = TEMP_FILE_MAX_AGE_SECONDS,
    ) -> None:
        """Initialize the janitor.

        Args:
            temp_dir: Directory to sweep.
            max_age_seconds: Retention window; older entries are removed.
        """
        self._temp_dir = Path(temp_dir)
        self._max_age_seconds = max_age_seconds

        self._stats_lock = threading.Lock()
        self._runs = 0
        self._deleted_total = 0
        self._vanished_total = 0
        self._failed_total = 0

    @property
    def temp_dir(self) -> Path:
        return self._temp_dir

    def clean(self, now: datetime | None = None) -> JanitorResult:
        """Sweep the temp directory once.

        Never raises: listing failures end the sweep, per-entry failures
        skip only that entry.

        Args:
            now: Reference time (defaults to the current UTC time).

        Returns:
            Counts of scanned, deleted, vanished and failed entries.
        """
        now_ts = (now or utc_now()).timestamp()
        result = JanitorResult()

        try:
            entries = list(self._temp_dir.iterdir())
        except OSError as e:
            logger.warning(f"Could not read temp dir {self._temp_dir}: {e}")
            result.listing_failed = True
            self._record(result)
            return result

        for entry in entries:
            result.scanned += 1
            try:
                self._sweep_entry(entry, now_ts, result)
            except Exception as e:
                logger.warning(f"Cannot review/delete {entry.name}: {e}")
                result.failed += 1

        if result.deleted or result.failed:
            logger.info(
                f"Temp sweep: scanned={result.scanned} deleted={result.deleted} "
                f"vanished={result.vanished} failed={result.failed}"
            )
        self._record(result)
        return result

    def _sweep_entry(self, entry: Path, now_ts: float, result: JanitorResult) -> None:
        try:
            st = entry.lstat()
        except FileNotFoundError:
            result.vanished += 1
            return
        except OSError as e:
            logger.warning(f"Could not stat {entry.name}: {e}")
            result.failed += 1
            return

        age = now_ts - entry_created_at(st)
        if age <= self._max_age_seconds:
            logger.debug(f"Keeping {entry.name} (age {age / 3600:.1f}h)")
            return

        try:
            if stat.S_ISDIR(st.st_mode):
                shutil.rmtree(entry)
            else:
                entry.unlink()
        except FileNotFoundError:
            if entry.exists():
                # Something inside vanished mid-removal; the rest goes next tick
                logger.debug(f"Partially removed {entry.name}, retrying next tick")
            else:
                result.vanished += 1
            return
        except OSError as e:
            logger.warning(f"Failed to delete {entry.name}: {e}")
            result.failed += 1
            return

        result.deleted += 1
        logger.debug(f"Expired temp entry deleted: {entry.name}")

    def _record(self, result: JanitorResult) -> None:
        with self._stats_lock:
            self._runs += 1
            self._deleted_total += result.deleted
            self._vanished_total += result.vanished
            self._failed_total += result.failed

    def get_stats(self) -> dict[str, Any]:
        """Get cumulative sweep statistics."""
        with self._stats_lock:
            return {
                "runs": self._runs,
                "deleted_total": self._deleted_total,
                "vanished_total": self._vanished_total,
                "failed_total": self._failed_total,
                "max_age_seconds": self._max_age_seconds,
            }
