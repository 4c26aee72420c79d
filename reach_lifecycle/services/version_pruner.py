"""Global pruning of old instance versions.

Each instance keeps the newest N versions for its plan (see
``VERSION_LIMITS``). The active version and the instance's
``current_version`` are always kept on top of that. For every version pruned
the package folder and archive are removed from the upload directory before
the version record is deleted, so a record never outlives a failed removal.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from reach_lifecycle.core.errors import ConfigurationError, ValidationError, VersionPruneError
from reach_lifecycle.core.models import VERSION_LIMITS, Filter, FilterOperator, InstanceVersion

if TYPE_CHECKING:
    from reach_lifecycle.ports.repositories import InstanceStoreProtocol, VersionStoreProtocol

logger = logging.getLogger(__name__)


@dataclass
class PruneResult:
    """Outcome of a global pruning pass."""

    instances_checked: int = 0
    versions_deleted: int = 0
    pruned: dict[str, list[str]] = field(default_factory=dict)
    failed_instance_ids: list[str] = field(default_factory=list)


def select_stale_versions(
    versions: list[InstanceVersion],
    limit: int,
    current_version: str | None = None,
) -> list[InstanceVersion]:
    """Pick the versions to prune for one instance.

    Args:
        versions: All versions of the instance.
        limit: Number of newest versions to retain.
        current_version: Version hash the instance currently points at.

    Returns:
        Versions beyond the limit that are neither active nor current,
        oldest first.
    """
    newest_first = sorted(
        versions, key=lambda v: (v.version_number, v.created_at), reverse=True
    )
    stale = [
        v for v in newest_first[limit:]
        if not v.active and v.version_hash != current_version
    ]
    return list(reversed(stale))


class VersionPruner:
    """Prunes old versions of every instance."""

    def __init__(
        self,
        instance_store: InstanceStoreProtocol,
        version_store: VersionStoreProtocol,
        upload_dir: Path,
        default_plan: str = "hobby",
    ) -> None:
        """Initialize the pruner.

        Args:
            instance_store: Store used to list instances.
            version_store: Store holding version records.
            upload_dir: Base directory package paths are relative to.
            default_plan: Plan assumed when an instance records none.
        """
        if default_plan not in VERSION_LIMITS:
            raise ConfigurationError(f"Unknown default plan: {default_plan}")
        self._instances = instance_store
        self._versions = version_store
        self._upload_dir = Path(upload_dir)
        self._default_plan = default_plan

    def limit_for(self, plan: str | None) -> int:
        """Number of versions retained for a plan."""
        if plan in VERSION_LIMITS:
            return VERSION_LIMITS[plan]
        if plan:
            logger.warning(f"Unknown plan '{plan}', using '{self._default_plan}' limit")
        return VERSION_LIMITS[self._default_plan]

    def prune_all(self) -> PruneResult:
        """Prune old versions of every instance.

        Failures are isolated per instance; the remaining instances are still
        pruned before the error is raised.

        Raises:
            StorageError: If the instance list cannot be read.
            VersionPruneError: If pruning failed for any instance.
        """
        result = PruneResult()
        instances = self._instances.find([])

        for record in instances:
            instance_id = record.get("id")
            if not instance_id:
                continue
            result.instances_checked += 1
            try:
                removed = self.prune_instance(record)
            except Exception as e:
                logger.warning(f"Version pruning failed for instance {instance_id}: {e}")
                result.failed_instance_ids.append(instance_id)
                continue
            if removed:
                result.pruned[instance_id] = removed
                result.versions_deleted += len(removed)

        logger.debug(
            f"Checked {result.instances_checked} instances, "
            f"deleted {result.versions_deleted} versions"
        )
        if result.failed_instance_ids:
            raise VersionPruneError(result.failed_instance_ids, result.versions_deleted)
        return result

    def prune_instance(self, record: dict[str, Any]) -> list[str]:
        """Prune one instance's versions beyond its plan limit.

        Args:
            record: Raw instance record (needs ``id``; ``plan`` and
                ``current_version`` are optional).

        Returns:
            Hashes of the deleted versions.
        """
        instance_id = record["id"]
        versions = [
            InstanceVersion.from_record(r)
            for r in self._versions.find_versions(
                [Filter.where("instance_id", FilterOperator.EQ, instance_id)]
            )
        ]
        limit = self.limit_for(record.get("plan"))
        stale = select_stale_versions(versions, limit, record.get("current_version"))
        if not stale:
            return []

        for version in stale:
            self._remove_package(version)

        hashes = [v.version_hash for v in stale]
        self._versions.delete_versions([
            Filter.where("instance_id", FilterOperator.EQ, instance_id),
            Filter.where("version_hash", FilterOperator.IN, hashes),
        ])
        logger.info(
            f"Pruned {len(hashes)} old version(s) of instance {instance_id} "
            f"(keeping {limit})"
        )
        return hashes

    def _resolve(self, relative: str) -> Path:
        base = self._upload_dir.resolve()
        target = (base / relative).resolve()
        if target == base or base not in target.parents:
            raise ValidationError(f"Package path escapes upload directory: {relative}")
        return target

    def _remove_package(self, version: InstanceVersion) -> None:
        """Remove a version's package folder and archive; missing files are fine."""
        if version.package_folder:
            folder = self._resolve(version.package_folder)
            try:
                shutil.rmtree(folder)
            except FileNotFoundError:
                pass
        if version.package_zip:
            archive = self._resolve(version.package_zip)
            archive.unlink(missing_ok=True)
