"""Port interfaces for the Reach lifecycle manager."""

from reach_lifecycle.ports.repositories import (
    InstanceStoreProtocol,
    VersionPruneCallable,
    VersionStoreProtocol,
)

__all__ = [
    "InstanceStoreProtocol",
    "VersionPruneCallable",
    "VersionStoreProtocol",
]
