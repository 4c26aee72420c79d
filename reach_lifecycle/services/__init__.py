"""Service layer for the Reach lifecycle manager."""

from reach_lifecycle.services.lifecycle_manager import (
    FastTickResult,
    LifecycleManager,
    get_lifecycle_manager,
    shutdown_lifecycle_manager,
    start_lifecycle_manager,
)
from reach_lifecycle.services.promoter import InstancePromoter, PromotionResult
from reach_lifecycle.services.scheduler import PeriodicTask, Scheduler
from reach_lifecycle.services.temp_janitor import JanitorResult, TempFileJanitor
from reach_lifecycle.services.version_cleanup import VersionCleanupCoordinator
from reach_lifecycle.services.version_pruner import PruneResult, VersionPruner

__all__ = [
    # Lifecycle manager
    "FastTickResult",
    "LifecycleManager",
    "get_lifecycle_manager",
    "shutdown_lifecycle_manager",
    "start_lifecycle_manager",
    # Fast tick
    "InstancePromoter",
    "JanitorResult",
    "PromotionResult",
    "TempFileJanitor",
    # Slow tick
    "PruneResult",
    "VersionCleanupCoordinator",
    "VersionPruner",
    # Scheduling
    "PeriodicTask",
    "Scheduler",
]
