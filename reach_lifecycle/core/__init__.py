"""Core components for the Reach lifecycle manager."""

from reach_lifecycle.core.database import Database
from reach_lifecycle.core.errors import (
    ConfigurationError,
    FileLockError,
    ReachLifecycleError,
    StorageError,
    ValidationError,
    VersionPruneError,
)
from reach_lifecycle.core.models import (
    VERSION_LIMITS,
    Filter,
    FilterOperator,
    Instance,
    InstanceStatus,
    InstanceVersion,
)

__all__ = [
    # Errors
    "ConfigurationError",
    "FileLockError",
    "ReachLifecycleError",
    "StorageError",
    "ValidationError",
    "VersionPruneError",
    # Models
    "Filter",
    "FilterOperator",
    "Instance",
    "InstanceStatus",
    "InstanceVersion",
    "VERSION_LIMITS",
    # Services
    "Database",
]
