"""Promotion of waiting instances whose deadline has elapsed.

An instance scheduled for later publication sits in ``waiting`` status with a
``waiting_until`` deadline. On every fast tick the promoter selects overdue
waiting instances and moves each one to ``active``, clearing the deadline.

The transition is two writes against the store (set status, unset deadline)
issued back to back for the same id. Re-running the promoter is always safe:
the selection filter only matches records still in ``waiting``.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from reach_lifecycle.core.models import Filter, FilterOperator, InstanceStatus
from reach_lifecycle.core.utils import utc_now

if TYPE_CHECKING:
    from reach_lifecycle.ports.repositories import InstanceStoreProtocol

logger = logging.getLogger(__name__)


@dataclass
class PromotionResult:
    """Outcome of one promotion pass."""

    promoted_ids: list[str] = field(default_factory=list)
    failed_ids: list[str] = field(default_factory=list)
    query_failed: bool = False

    @property
    def promoted_count(self) -> int:
        return len(self.promoted_ids)


class InstancePromoter:
    """Moves overdue ``waiting`` instances to ``active``."""

    def __init__(self, store: InstanceStoreProtocol) -> None:
        """Initialize the promoter.

        Args:
            store: Instance store used for the query and both writes.
        """
        self._store = store

        self._stats_lock = threading.Lock()
        self._runs = 0
        self._promoted_total = 0
        self._failed_total = 0

    def promote_waiting(self, now: datetime | None = None) -> PromotionResult:
        """Promote every waiting instance whose deadline is at or before now.

        Never raises. A failing query ends the pass; a failing write only
        skips that instance, which the next tick selects again.

        Args:
            now: Reference time (defaults to the current UTC time).

        Returns:
            The ids promoted and the ids that failed.
        """
        now = now or utc_now()
        result = PromotionResult()

        try:
            candidates = self._store.find([
                Filter.where("status", FilterOperator.EQ, InstanceStatus.WAITING.value),
                Filter.where("waiting_until", FilterOperator.LTE, now),
            ])
        except Exception as e:
            logger.warning(f"Could not query waiting instances: {e}")
            result.query_failed = True
            self._record(result)
            return result

        for record in candidates:
            instance_id = record.get("id")
            if not instance_id:
                continue
            try:
                self._promote(record)
                result.promoted_ids.append(instance_id)
            except Exception as e:
                logger.warning(f"Failed to promote instance {instance_id}: {e}")
                result.failed_ids.append(instance_id)

        self._record(result)
        return result

    def _promote(self, record: dict[str, Any]) -> None:
        instance_id = record["id"]
        by_id = [Filter.where("id", FilterOperator.EQ, instance_id)]
        self._store.update(by_id, {"status": InstanceStatus.ACTIVE.value})
        self._store.unset_field(by_id, "waiting_until")
        logger.info(f"Updated pending instance: {record.get('name', '')} ({instance_id})")

    def _record(self, result: PromotionResult) -> None:
        with self._stats_lock:
            self._runs += 1
            self._promoted_total += result.promoted_count
            self._failed_total += len(result.failed_ids)

    def get_stats(self) -> dict[str, Any]:
        """Get cumulative promotion statistics."""
        with self._stats_lock:
            return {
                "runs": self._runs,
                "promoted_total": self._promoted_total,
                "failed_total": self._failed_total,
            }
