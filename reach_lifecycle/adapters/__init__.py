"""Infrastructure adapters for the Reach lifecycle manager."""

from reach_lifecycle.adapters.lancedb_store import LanceDBInstanceStore

__all__ = ["LanceDBInstanceStore"]
