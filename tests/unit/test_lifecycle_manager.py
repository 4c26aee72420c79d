"""Unit tests for LifecycleManager and the start entry point."""

from __future__ import annotations

import logging
import time
from collections.abc import Generator
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from reach_lifecycle.config import Settings, override_settings
from reach_lifecycle.core.errors import StorageError
from reach_lifecycle.services import lifecycle_manager as lm
from reach_lifecycle.services.lifecycle_manager import (
    LifecycleManager,
    get_lifecycle_manager,
    shutdown_lifecycle_manager,
    start_lifecycle_manager,
)
from reach_lifecycle.services.scheduler import Scheduler


@pytest.fixture
def promoter() -> MagicMock:
    return MagicMock()


@pytest.fixture
def janitor() -> MagicMock:
    return MagicMock()


@pytest.fixture
def version_cleanup() -> MagicMock:
    cleanup = MagicMock()
    cleanup.run.return_value = True
    return cleanup


@pytest.fixture
def manager(promoter: MagicMock, janitor: MagicMock, version_cleanup: MagicMock) -> LifecycleManager:
    return LifecycleManager(promoter, janitor, version_cleanup)


@pytest.fixture
def clean_global_manager() -> Generator[None, None, None]:
    shutdown_lifecycle_manager(timeout=1)
    yield
    shutdown_lifecycle_manager(timeout=1)


class TestFastTick:
    """Tests for the fast tick."""

    def test_promoter_then_janitor(
        self, manager: LifecycleManager, promoter: MagicMock, janitor: MagicMock
    ) -> None:
        order = []
        promoter.promote_waiting.side_effect = lambda: order.append("promote")
        janitor.clean.side_effect = lambda: order.append("clean")

        manager.run_fast_tick()

        assert order == ["promote", "clean"]

    def test_promoter_crash_still_runs_janitor(
        self,
        manager: LifecycleManager,
        promoter: MagicMock,
        janitor: MagicMock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        promoter.promote_waiting.side_effect = RuntimeError("boom")

        with caplog.at_level(logging.ERROR):
            result = manager.run_fast_tick()

        janitor.clean.assert_called_once()
        assert result.promotion is None
        assert result.janitor is janitor.clean.return_value
        assert "Error while promoting waiting instances" in caplog.text

    def test_janitor_crash_contained(self, manager: LifecycleManager, janitor: MagicMock) -> None:
        janitor.clean.side_effect = OSError("disk gone")

        result = manager.run_fast_tick()

        assert result.janitor is None
        assert result.timings is not None
        assert "total_ms" in result.timings


class TestSlowTick:
    """Tests for the slow tick."""

    def test_runs_coordinator(self, manager: LifecycleManager, version_cleanup: MagicMock) -> None:
        assert manager.run_slow_tick() is True
        version_cleanup.run.assert_called_once_with()

    def test_coordinator_crash_contained(
        self, manager: LifecycleManager, version_cleanup: MagicMock
    ) -> None:
        version_cleanup.run.side_effect = RuntimeError("boom")
        assert manager.run_slow_tick() is False

    def test_fast_tick_does_not_prune(
        self, manager: LifecycleManager, version_cleanup: MagicMock
    ) -> None:
        manager.run_fast_tick()
        version_cleanup.run.assert_not_called()


class TestStart:
    """Tests for scheduling."""

    def test_registers_both_ticks(
        self, promoter: MagicMock, janitor: MagicMock, version_cleanup: MagicMock
    ) -> None:
        scheduler = MagicMock(spec=Scheduler)
        manager = LifecycleManager(
            promoter, janitor, version_cleanup, scheduler,
            fast_tick_seconds=60, slow_tick_seconds=21600,
        )

        manager.start()
        manager.start()

        assert scheduler.add_task.call_count == 2
        scheduler.add_task.assert_any_call("fast-tick", 60, manager.run_fast_tick)
        scheduler.add_task.assert_any_call("slow-tick", 21600, manager.run_slow_tick)
        assert scheduler.start.call_count == 2

    def test_ticks_fire_on_schedule(
        self, promoter: MagicMock, janitor: MagicMock, version_cleanup: MagicMock
    ) -> None:
        manager = LifecycleManager(
            promoter, janitor, version_cleanup,
            fast_tick_seconds=0.02, slow_tick_seconds=0.05,
        )
        manager.start()
        try:
            deadline = time.monotonic() + 5
            while time.monotonic() < deadline and version_cleanup.run.call_count < 2:
                time.sleep(0.01)
        finally:
            manager.stop(timeout=2)

        assert promoter.promote_waiting.call_count >= 2
        assert version_cleanup.run.call_count >= 2

    def test_slow_failure_next_tick_still_fires(
        self, promoter: MagicMock, janitor: MagicMock, version_cleanup: MagicMock
    ) -> None:
        """Pruning raising on one slow tick does not prevent the next."""
        version_cleanup.run.side_effect = [RuntimeError("pruning failed"), True, True]
        manager = LifecycleManager(
            promoter, janitor, version_cleanup,
            fast_tick_seconds=10, slow_tick_seconds=0.03,
        )
        manager.start()
        try:
            deadline = time.monotonic() + 5
            while time.monotonic() < deadline and version_cleanup.run.call_count < 2:
                time.sleep(0.01)
        finally:
            manager.stop(timeout=2)

        assert version_cleanup.run.call_count >= 2

    def test_stop_calls_on_stop(
        self, promoter: MagicMock, janitor: MagicMock, version_cleanup: MagicMock
    ) -> None:
        on_stop = MagicMock()
        manager = LifecycleManager(promoter, janitor, version_cleanup, on_stop=on_stop)
        manager.stop(timeout=1)
        on_stop.assert_called_once_with()


class TestStartLifecycleManager:
    """Tests for the process-wide entry point."""

    def test_second_call_warns_and_does_nothing(
        self,
        clean_global_manager: None,
        test_settings: Settings,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        container = MagicMock()
        with patch("reach_lifecycle.factory.ServiceFactory") as factory_cls:
            factory_cls.return_value.create_all.return_value = container

            assert start_lifecycle_manager() is None
            with caplog.at_level(logging.WARNING):
                start_lifecycle_manager()

        factory_cls.assert_called_once_with(test_settings)
        container.manager.start.assert_called_once_with()
        assert get_lifecycle_manager() is container.manager
        assert "already started" in caplog.text

    def test_shutdown_stops_manager(
        self, clean_global_manager: None, test_settings: Settings
    ) -> None:
        container = MagicMock()
        with patch("reach_lifecycle.factory.ServiceFactory") as factory_cls:
            factory_cls.return_value.create_all.return_value = container
            start_lifecycle_manager()

        shutdown_lifecycle_manager(timeout=1)

        container.manager.stop.assert_called_once_with(timeout=1)
        assert lm.get_lifecycle_manager() is None

    def test_factory_failure_logged_not_raised(
        self,
        clean_global_manager: None,
        test_settings: Settings,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        with patch("reach_lifecycle.factory.ServiceFactory") as factory_cls:
            factory_cls.return_value.create_all.side_effect = StorageError("disk gone")
            with caplog.at_level(logging.ERROR):
                start_lifecycle_manager()

        assert get_lifecycle_manager() is None
        assert "Could not start lifecycle manager" in caplog.text

    def test_unreachable_store_fails_ticks_not_startup(
        self,
        clean_global_manager: None,
        test_settings: Settings,
        temp_storage: Path,
    ) -> None:
        blocker = temp_storage / "not-a-dir"
        blocker.write_text("x")
        override_settings(
            test_settings.model_copy(
                update={"storage_path": blocker / "store", "max_retry_attempts": 1}
            )
        )

        start_lifecycle_manager()
        manager = get_lifecycle_manager()
        assert manager is not None

        fast = manager.run_fast_tick()
        assert fast.promotion is not None
        assert fast.promotion.query_failed is True
        assert fast.janitor is not None
        assert manager.run_slow_tick() is False
