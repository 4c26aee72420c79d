"""Custom exceptions for the Reach lifecycle manager."""

from pathlib import Path


def sanitize_path_for_error(path: str | Path) -> str:
    """Extract only the filename from a path for safe error messages.

    Upload directories live under the serving root; log lines and error
    messages carry the entry name only, never the full system path.

    Args:
        path: Full path or filename.

    Returns:
        Just the filename portion.
    """
    if isinstance(path, Path):
        return path.name
    return Path(path).name


class ReachLifecycleError(Exception):
    """Base exception for all lifecycle manager errors."""

    pass


class StorageError(ReachLifecycleError):
    """Raised when database operations fail."""

    pass


class ValidationError(ReachLifecycleError):
    """Raised when input validation fails."""

    pass


class ConfigurationError(ReachLifecycleError):
    """Raised when configuration is invalid."""

    pass


class FileLockError(StorageError):
    """Raised when the cross-process store lock cannot be acquired."""

    def __init__(self, lock_path: str, timeout: float, message: str | None = None) -> None:
        self.lock_path = lock_path
        self.timeout = timeout
        super().__init__(
            message or f"Timed out after {timeout}s acquiring {sanitize_path_for_error(lock_path)}"
        )


class VersionPruneError(ReachLifecycleError):
    """Raised when global version pruning fails for one or more instances.

    Carries the IDs that failed so the caller can report them; instances
    not listed were pruned successfully before the error was raised.
    """

    def __init__(self, failed_instance_ids: list[str], versions_deleted: int = 0) -> None:
        self.failed_instance_ids = failed_instance_ids
        self.versions_deleted = versions_deleted
        super().__init__(
            f"Version pruning failed for {len(failed_instance_ids)} instance(s): "
            f"{', '.join(failed_instance_ids)}"
        )
