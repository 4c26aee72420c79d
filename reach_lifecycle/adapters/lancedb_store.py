"""LanceDB store adapter implementing the instance and version store ports.

This adapter wraps the Database class to give the services a small document
interface, keeping table names and error wrapping out of the service layer.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from reach_lifecycle.core.errors import StorageError, ValidationError
from reach_lifecycle.core.lifecycle_constants import INSTANCES_TABLE, VERSIONS_TABLE
from reach_lifecycle.core.models import Filter, Instance, InstanceVersion

if TYPE_CHECKING:
    from reach_lifecycle.core.database import Database

logger = logging.getLogger(__name__)


class LanceDBInstanceStore:
    """Store implementation using LanceDB.

    Implements InstanceStoreProtocol and VersionStoreProtocol.
    """

    def __init__(self, database: Database) -> None:
        """Initialize the store.

        Args:
            database: LanceDB database wrapper instance.
        """
        self._db = database

    # ------------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------------

    def find(self, filters: list[Filter]) -> list[dict[str, Any]]:
        try:
            return self._db.find(INSTANCES_TABLE, filters)
        except (ValidationError, StorageError):
            raise
        except Exception as e:
            logger.error(f"Unexpected error in find: {e}")
            raise StorageError(f"Failed to find instances: {e}") from e

    def update(self, filters: list[Filter], fields: dict[str, Any]) -> int:
        try:
            return self._db.update(INSTANCES_TABLE, filters, fields)
        except (ValidationError, StorageError):
            raise
        except Exception as e:
            logger.error(f"Unexpected error in update: {e}")
            raise StorageError(f"Failed to update instances: {e}") from e

    def unset_field(self, filters: list[Filter], field: str) -> int:
        try:
            return self._db.unset_field(INSTANCES_TABLE, filters, field)
        except (ValidationError, StorageError):
            raise
        except Exception as e:
            logger.error(f"Unexpected error in unset_field: {e}")
            raise StorageError(f"Failed to unset {field}: {e}") from e

    def add_instance(self, instance: Instance) -> str:
        """Insert a new instance record.

        Returns:
            The instance id.
        """
        try:
            self._db.insert(INSTANCES_TABLE, [instance.model_dump()])
            return instance.id
        except (ValidationError, StorageError):
            raise
        except Exception as e:
            logger.error(f"Unexpected error in add_instance: {e}")
            raise StorageError(f"Failed to add instance: {e}") from e

    # ------------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------------

    def find_versions(self, filters: list[Filter]) -> list[dict[str, Any]]:
        try:
            return self._db.find(VERSIONS_TABLE, filters)
        except (ValidationError, StorageError):
            raise
        except Exception as e:
            logger.error(f"Unexpected error in find_versions: {e}")
            raise StorageError(f"Failed to find versions: {e}") from e

    def delete_versions(self, filters: list[Filter]) -> int:
        try:
            return self._db.delete(VERSIONS_TABLE, filters)
        except (ValidationError, StorageError):
            raise
        except Exception as e:
            logger.error(f"Unexpected error in delete_versions: {e}")
            raise StorageError(f"Failed to delete versions: {e}") from e

    def add_versions(self, versions: list[InstanceVersion]) -> int:
        """Insert version records.

        Returns:
            Number of inserted records.
        """
        try:
            return self._db.insert(VERSIONS_TABLE, [v.model_dump() for v in versions])
        except (ValidationError, StorageError):
            raise
        except Exception as e:
            logger.error(f"Unexpected error in add_versions: {e}")
            raise StorageError(f"Failed to add versions: {e}") from e
