"""Reach Lifecycle - background promotion and cleanup for hosted instances."""

__version__ = "0.1.0"

# Re-export core components for convenience
from reach_lifecycle.config import Settings, get_settings
from reach_lifecycle.core import (
    VERSION_LIMITS,
    ConfigurationError,
    Database,
    Filter,
    FilterOperator,
    Instance,
    InstanceStatus,
    InstanceVersion,
    ReachLifecycleError,
    StorageError,
    ValidationError,
    VersionPruneError,
)
from reach_lifecycle.services.lifecycle_manager import start_lifecycle_manager

__all__ = [
    # Version info
    "__version__",
    # Configuration
    "Settings",
    "get_settings",
    # Entry point
    "start_lifecycle_manager",
    # Errors
    "ConfigurationError",
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
    # Storage
    "Database",
]
