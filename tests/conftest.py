"""Pytest fixtures for Reach lifecycle tests."""

from __future__ import annotations

import os
import tempfile
import uuid
from collections.abc import Generator
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from reach_lifecycle.config import Settings, override_settings, reset_settings
from reach_lifecycle.core.database import Database
from reach_lifecycle.core.models import Instance, InstanceStatus, InstanceVersion
from reach_lifecycle.core.utils import utc_now
from reach_lifecycle.services.temp_janitor import entry_created_at

# ---------------------------------------------------------------------------
# Basic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def temp_storage() -> Generator[Path, None, None]:
    """Provide temporary storage directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_settings(temp_storage: Path) -> Generator[Settings, None, None]:
    """Provide test settings with temp storage and upload directories."""
    settings = Settings(
        storage_path=temp_storage / "store",
        upload_dir=temp_storage / "cdn",
        log_level="DEBUG",
        retry_backoff_seconds=0.0,
    )
    settings.temp_dir.mkdir(parents=True, exist_ok=True)
    override_settings(settings)
    yield settings
    reset_settings()


@pytest.fixture
def database(test_settings: Settings) -> Generator[Database, None, None]:
    """Provide initialized database."""
    db = Database(test_settings.storage_path, filelock_timeout=5.0)
    db.connect()
    yield db
    db.close()


# ---------------------------------------------------------------------------
# Mock fixtures for unit testing
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_store() -> MagicMock:
    """Mock store for unit tests.

    Returns a MagicMock that satisfies InstanceStoreProtocol and
    VersionStoreProtocol. Configure return values in individual tests.
    """
    store = MagicMock()
    store.find.return_value = []
    store.update.return_value = 1
    store.unset_field.return_value = 1
    store.find_versions.return_value = []
    store.delete_versions.return_value = 0
    return store


# ---------------------------------------------------------------------------
# Factory fixtures for creating test data
# ---------------------------------------------------------------------------


@pytest.fixture
def make_instance() -> Any:
    """Factory fixture for creating Instance objects.

    Usage:
        def test_something(make_instance):
            instance = make_instance(status="waiting", waiting_until=deadline)
    """

    def _make_instance(
        id: str | None = None,
        name: str = "Test instance",
        status: InstanceStatus | str = InstanceStatus.ACTIVE,
        waiting_until: datetime | None = None,
        current_version: str | None = None,
        plan: str | None = None,
    ) -> Instance:
        return Instance(
            id=id or str(uuid.uuid4()),
            name=name,
            status=InstanceStatus(status),
            waiting_until=waiting_until,
            current_version=current_version,
            plan=plan,  # type: ignore[arg-type]
        )

    return _make_instance


@pytest.fixture
def make_version() -> Any:
    """Factory fixture for creating InstanceVersion objects.

    Usage:
        def test_something(make_version):
            version = make_version("inst-1", 3, active=True)
    """

    def _make_version(
        instance_id: str,
        version_number: int,
        active: bool = False,
        with_package: bool = False,
        created_at: datetime | None = None,
    ) -> InstanceVersion:
        version_hash = f"{instance_id}-v{version_number}"
        return InstanceVersion(
            version_hash=version_hash,
            instance_id=instance_id,
            version_number=version_number,
            created_at=created_at or utc_now() - timedelta(days=100 - version_number),
            active=active,
            package_folder=f"instances/{instance_id}/{version_hash}" if with_package else None,
            package_zip=f"instances/{instance_id}/{version_hash}.zip" if with_package else None,
            size=1024,
        )

    return _make_version


@pytest.fixture
def make_temp_entry() -> Generator[Any, None, None]:
    """Factory fixture creating a temp file (or directory) with a given age.

    Filesystems with a birth time ignore a backdated mtime, so the age is
    registered per inode and served by a patched ``entry_created_at`` for the
    duration of the test.

    Usage:
        def test_something(tmp_path, make_temp_entry):
            path = make_temp_entry(tmp_path, "upload.zip", age_hours=49)
            TempFileJanitor(tmp_path).clean()
    """
    created: dict[tuple[int, int], float] = {}

    def _created_at(st: os.stat_result) -> float:
        key = (st.st_dev, st.st_ino)
        return created[key] if key in created else entry_created_at(st)

    def _make_temp_entry(
        directory: Path,
        name: str,
        age_hours: float,
        is_dir: bool = False,
        now: datetime | None = None,
    ) -> Path:
        path = directory / name
        if is_dir:
            path.mkdir()
            (path / "manifest.json").write_text("{}")
        else:
            path.write_bytes(b"PK\x03\x04")
        st = path.lstat()
        created[(st.st_dev, st.st_ino)] = ((now or utc_now()) - timedelta(hours=age_hours)).timestamp()
        return path

    with patch("reach_lifecycle.services.temp_janitor.entry_created_at", _created_at):
        yield _make_temp_entry
