"""Service factory for dependency injection and initialization.

This module wires the store, the lifecycle services and the scheduler from
settings, so the hosting process only calls ``start_lifecycle_manager()``.

Usage:
    from reach_lifecycle.factory import ServiceFactory

    factory = ServiceFactory(settings)
    services = factory.create_all()
    services.manager.start()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from reach_lifecycle.adapters.lancedb_store import LanceDBInstanceStore
from reach_lifecycle.config import Settings
from reach_lifecycle.core.database import Database
from reach_lifecycle.services.lifecycle_manager import LifecycleManager
from reach_lifecycle.services.promoter import InstancePromoter
from reach_lifecycle.services.scheduler import Scheduler
from reach_lifecycle.services.temp_janitor import TempFileJanitor
from reach_lifecycle.services.version_cleanup import VersionCleanupCoordinator
from reach_lifecycle.services.version_pruner import VersionPruner

if TYPE_CHECKING:
    from reach_lifecycle.ports.repositories import (
        InstanceStoreProtocol,
        VersionPruneCallable,
        VersionStoreProtocol,
    )

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Container for all initialized services.

    Attributes:
        database: Database connection (None when a store was injected).
        store: Instance store used by the promoter and the pruner.
        promoter: Promotes overdue waiting instances.
        janitor: Evicts expired temp entries.
        pruner: Prunes old versions (None when a prune callable was injected).
        version_cleanup: Slow-tick coordinator around the prune callable.
        scheduler: Scheduler driving both cadences.
        manager: Lifecycle manager owning all of the above.
    """

    database: Database | None
    store: InstanceStoreProtocol
    promoter: InstancePromoter
    janitor: TempFileJanitor
    pruner: VersionPruner | None
    version_cleanup: VersionCleanupCoordinator
    scheduler: Scheduler
    manager: LifecycleManager


class ServiceFactory:
    """Factory for creating and wiring all services.

    Example:
        factory = ServiceFactory(settings)
        services = factory.create_all()
        services.manager.run_fast_tick()
    """

    def __init__(
        self,
        settings: Settings,
        store: InstanceStoreProtocol | None = None,
        version_store: VersionStoreProtocol | None = None,
        prune: VersionPruneCallable | None = None,
    ) -> None:
        """Initialize the factory.

        Args:
            settings: Application settings.
            store: Optional instance store override for testing.
            version_store: Optional version store override (defaults to store).
            prune: Optional pruning callable override.
        """
        self._settings = settings
        self._injected_store = store
        self._injected_version_store = version_store
        self._injected_prune = prune

    def create_database(self) -> Database:
        """Create the database wrapper.

        It connects on first use, so an unreachable store surfaces as a
        failed tick rather than a failed startup.
        """
        return Database(
            storage_path=self._settings.storage_path,
            filelock_enabled=self._settings.filelock_enabled,
            filelock_timeout=self._settings.filelock_timeout,
            max_retry_attempts=self._settings.max_retry_attempts,
            retry_backoff_seconds=self._settings.retry_backoff_seconds,
        )

    def create_store(self, database: Database) -> LanceDBInstanceStore:
        return LanceDBInstanceStore(database)

    def create_promoter(self, store: InstanceStoreProtocol) -> InstancePromoter:
        return InstancePromoter(store)

    def create_janitor(self) -> TempFileJanitor:
        return TempFileJanitor(self._settings.temp_dir)

    def create_pruner(
        self,
        store: InstanceStoreProtocol,
        version_store: VersionStoreProtocol,
    ) -> VersionPruner:
        return VersionPruner(
            instance_store=store,
            version_store=version_store,
            upload_dir=self._settings.upload_dir,
            default_plan=self._settings.default_plan,
        )

    def create_all(self) -> ServiceContainer:
        """Create all services with proper dependency wiring.

        Returns:
            ServiceContainer with all services initialized.
        """
        database: Database | None = None
        store: InstanceStoreProtocol
        if self._injected_store is None:
            database = self.create_database()
            store = self.create_store(database)
        else:
            store = self._injected_store

        version_store: VersionStoreProtocol
        if self._injected_version_store is not None:
            version_store = self._injected_version_store
        else:
            version_store = store  # type: ignore[assignment]

        pruner: VersionPruner | None = None
        if self._injected_prune is None:
            pruner = self.create_pruner(store, version_store)
            prune: VersionPruneCallable = pruner.prune_all
        else:
            prune = self._injected_prune

        promoter = self.create_promoter(store)
        janitor = self.create_janitor()
        version_cleanup = VersionCleanupCoordinator(prune)
        scheduler = Scheduler()

        manager = LifecycleManager(
            promoter=promoter,
            janitor=janitor,
            version_cleanup=version_cleanup,
            scheduler=scheduler,
            fast_tick_seconds=self._settings.fast_tick_seconds,
            slow_tick_seconds=self._settings.slow_tick_seconds,
            on_stop=database.close if database is not None else None,
        )
        logger.info(
            f"Lifecycle services created (temp_dir={self._settings.temp_dir}, "
            f"storage={self._settings.storage_path})"
        )

        return ServiceContainer(
            database=database,
            store=store,
            promoter=promoter,
            janitor=janitor,
            pruner=pruner,
            version_cleanup=version_cleanup,
            scheduler=scheduler,
            manager=manager,
        )
