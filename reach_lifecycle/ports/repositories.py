"""Protocol interfaces for the instance and version stores.

These protocols define the contracts between the lifecycle services and the
storage infrastructure. Using typing.Protocol enables structural subtyping, so
tests can hand in a MagicMock or any object with the right methods.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

from reach_lifecycle.core.models import Filter

# Opaque pruning capability invoked once per slow tick
VersionPruneCallable = Callable[[], object]


class InstanceStoreProtocol(Protocol):
    """Protocol for document operations on the instances collection.

    The LanceDBInstanceStore is the primary implementation.
    """

    def find(self, filters: list[Filter]) -> list[dict[str, Any]]:
        """Find instance records matching every filter.

        Args:
            filters: Conditions combined with AND.

        Returns:
            Matching records, in store order.

        Raises:
            ValidationError: If a filter is invalid.
            StorageError: If the store operation fails.
        """
        ...

    def update(self, filters: list[Filter], fields: dict[str, Any]) -> int:
        """Merge fields into every matching record.

        Args:
            filters: Conditions combined with AND.
            fields: Field values to set.

        Returns:
            Number of records changed.

        Raises:
            ValidationError: If a filter or field is invalid.
            StorageError: If the store operation fails.
        """
        ...

    def unset_field(self, filters: list[Filter], field: str) -> int:
        """Remove a field from every matching record.

        Args:
            filters: Conditions combined with AND.
            field: Name of the field to remove.

        Returns:
            Number of records changed.

        Raises:
            ValidationError: If a filter or field is invalid.
            StorageError: If the store operation fails.
        """
        ...


class VersionStoreProtocol(Protocol):
    """Protocol for the instance versions collection."""

    def find_versions(self, filters: list[Filter]) -> list[dict[str, Any]]:
        """Find version records matching every filter."""
        ...

    def delete_versions(self, filters: list[Filter]) -> int:
        """Delete version records matching every filter.

        Returns:
            Number of records deleted.
        """
        ...
