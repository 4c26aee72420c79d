"""LanceDB database wrapper for the Reach lifecycle manager.

Holds the two document tables the lifecycle core touches:

- ``instances``: hosted instances and their waiting deadlines
- ``instance_versions``: uploaded package versions per instance

Exposes a narrow document interface (find / insert / update / unset / delete
by filter) over both. Mutations are serialized per process with an RLock and
across processes with a ``filelock`` lock file in the storage directory, since
API workers and the lifecycle scheduler may share the same store.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from collections.abc import Callable, Iterable
from datetime import datetime
from enum import Enum
from functools import wraps
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar, cast

import lancedb
import pyarrow as pa
from filelock import FileLock
from filelock import Timeout as FileLockTimeout

from reach_lifecycle.core.errors import FileLockError, StorageError, ValidationError
from reach_lifecycle.core.lifecycle_constants import INSTANCES_TABLE, VERSIONS_TABLE
from reach_lifecycle.core.models import Filter, FilterOperator
from reach_lifecycle.core.utils import to_naive_utc, utc_now

if TYPE_CHECKING:
    from lancedb.table import Table as LanceTable

logger = logging.getLogger(__name__)

# Type variable for decorators
F = TypeVar("F", bound=Callable[..., Any])

TABLE_SCHEMAS: dict[str, pa.Schema] = {
    INSTANCES_TABLE: pa.schema([
        pa.field("id", pa.string()),
        pa.field("name", pa.string()),
        pa.field("status", pa.string()),
        pa.field("waiting_until", pa.timestamp("us")),  # nullable
        pa.field("current_version", pa.string()),
        pa.field("plan", pa.string()),
        pa.field("created_at", pa.timestamp("us")),
        pa.field("updated_at", pa.timestamp("us")),
    ]),
    VERSIONS_TABLE: pa.schema([
        pa.field("version_hash", pa.string()),
        pa.field("instance_id", pa.string()),
        pa.field("version_number", pa.int64()),
        pa.field("created_at", pa.timestamp("us")),
        pa.field("active", pa.bool_()),
        pa.field("package_folder", pa.string()),
        pa.field("package_zip", pa.string()),
        pa.field("size", pa.int64()),
    ]),
}

# Primary key column per table (used for merge_insert)
TABLE_KEYS: dict[str, str] = {
    INSTANCES_TABLE: "id",
    VERSIONS_TABLE: "version_hash",
}

_INJECTION_PATTERNS = (
    re.compile(r";\s*(drop|delete|update|insert|alter)\b", re.I),
    re.compile(r"--"),
    re.compile(r"/\*"),
    re.compile(r"'\s*or\s*'", re.I),
)

_SQL_OPERATORS = {
    FilterOperator.EQ: "=",
    FilterOperator.NE: "!=",
    FilterOperator.GT: ">",
    FilterOperator.GTE: ">=",
    FilterOperator.LT: "<",
    FilterOperator.LTE: "<=",
}


# ============================================================================
# Filter Translation
# ============================================================================


def _sanitize_string(value: str) -> str:
    """Escape a string literal for a LanceDB where clause.

    Raises:
        ValidationError: If the value contains SQL injection patterns.
    """
    for pattern in _INJECTION_PATTERNS:
        if pattern.search(value):
            raise ValidationError(f"Invalid characters in filter value: {value!r}")
    return value.replace("'", "''")


def _sql_literal(value: Any) -> str:
    """Render a Python value as a SQL literal."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return f"timestamp '{to_naive_utc(value).isoformat()}'"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, str):
        return f"'{_sanitize_string(value)}'"
    raise ValidationError(f"Unsupported filter value type: {type(value).__name__}")


def build_where_clause(filters: Iterable[Filter], columns: Iterable[str] | None = None) -> str | None:
    """Translate filters into a LanceDB where clause (AND-combined).

    Comparisons against NULL columns are never true, so a record without the
    filtered field is never selected by eq/ne/gt/gte/lt/lte.

    Args:
        filters: Filter conditions.
        columns: Known column names; unknown fields raise ValidationError.

    Returns:
        The where clause, or None when there are no filters.
    """
    known = set(columns) if columns is not None else None
    clauses: list[str] = []
    for flt in filters:
        if known is not None and flt.field not in known:
            raise ValidationError(f"Unknown field in filter: {flt.field}")
        op = flt.operator
        if op == FilterOperator.EXISTS:
            clauses.append(f"{flt.field} IS {'NOT NULL' if flt.value else 'NULL'}")
        elif op in (FilterOperator.IN, FilterOperator.NIN):
            values = ", ".join(_sql_literal(v) for v in cast(list[Any], flt.value))
            keyword = "IN" if op == FilterOperator.IN else "NOT IN"
            clauses.append(f"{flt.field} {keyword} ({values})")
        else:
            clauses.append(f"{flt.field} {_SQL_OPERATORS[op]} {_sql_literal(flt.value)}")
    if not clauses:
        return None
    return " AND ".join(clauses)


# ============================================================================
# Decorators
# ============================================================================

DEFAULT_RETRY_MAX_ATTEMPTS = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5


def retry_on_storage_error(
    max_attempts: int = DEFAULT_RETRY_MAX_ATTEMPTS,
    backoff: float = DEFAULT_RETRY_BACKOFF_SECONDS,
) -> Callable[[F], F]:
    """Retry decorator for transient storage errors.

    Args:
        max_attempts: Maximum number of retry attempts.
        backoff: Initial backoff time in seconds (doubles each attempt).

    Note:
        A decorated method's owner can override both values through its
        ``max_retry_attempts`` and ``retry_backoff_seconds`` attributes.
        Validation errors and lock timeouts are never retried.
    """
    non_retryable_patterns = ("concurrent", "conflict", "version mismatch")

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            owner = args[0] if args else None
            attempts = getattr(owner, "max_retry_attempts", max_attempts)
            delay = getattr(owner, "retry_backoff_seconds", backoff)
            last_error: Exception | None = None
            for attempt in range(attempts):
                try:
                    return func(*args, **kwargs)
                except (FileLockError, ValidationError):
                    raise
                except (StorageError, OSError, ConnectionError, TimeoutError) as e:
                    last_error = e
                    error_str = str(e).lower()

                    if any(pattern in error_str for pattern in non_retryable_patterns):
                        logger.warning(f"Non-retryable error in {func.__name__}: {e}")
                        raise

                    if attempt == attempts - 1:
                        raise

                    wait_time = delay * (2 ** attempt)
                    logger.warning(
                        f"{func.__name__} failed (attempt {attempt + 1}/{attempts})"
                        f": {e}. Retrying in {wait_time:.1f}s..."
                    )
                    time.sleep(wait_time)
            if last_error:
                raise last_error
            return None
        return cast(F, wrapper)
    return decorator


def with_write_lock(func: F) -> F:
    """Serialize mutations per Database instance (RLock, reentrant)."""
    @wraps(func)
    def wrapper(self: Database, *args: Any, **kwargs: Any) -> Any:
        with self._write_lock:
            return func(self, *args, **kwargs)
    return cast(F, wrapper)


def with_process_lock(func: F) -> F:
    """Decorator to acquire the cross-process file lock for write operations.

    Must be applied BEFORE (outer) @with_write_lock so the cross-process lock
    is taken first and released last.
    """
    @wraps(func)
    def wrapper(self: Database, *args: Any, **kwargs: Any) -> Any:
        self.ensure_connected()  # the lock is created on connect
        if self._process_lock is None:
            return func(self, *args, **kwargs)
        with self._process_lock:
            return func(self, *args, **kwargs)
    return cast(F, wrapper)


# ============================================================================
# Cross-Process Lock Manager
# ============================================================================


class ProcessLockManager:
    """File lock shared by every process writing the instance and version tables.

    The API workers and the lifecycle scheduler write the same two tables, so
    each write holds ``<storage>/.reach-lifecycle.lock``. A thread that already
    holds it (``unset_field`` calling ``update``) only bumps a per-thread depth.
    """

    def __init__(
        self,
        lock_path: Path,
        timeout: float = 30.0,
        poll_interval: float = 0.1,
        enabled: bool = True,
    ) -> None:
        self.lock_path = lock_path
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.enabled = enabled
        self._file_lock = FileLock(str(lock_path)) if enabled else None
        self._held = threading.local()

    def _get_depth(self) -> int:
        return getattr(self._held, "depth", 0)

    def acquire(self) -> bool:
        """Take the lock for this thread.

        Returns:
            True when the file lock was taken, False when this thread already held it.

        Raises:
            FileLockError: If another process keeps the lock past ``timeout``.
        """
        if self._file_lock is None:
            return True
        depth = self._get_depth()
        if depth == 0:
            try:
                self._file_lock.acquire(timeout=self.timeout, poll_interval=self.poll_interval)
            except FileLockTimeout as e:
                raise FileLockError(str(self.lock_path), self.timeout) from e
        self._held.depth = depth + 1
        return depth == 0

    def release(self) -> bool:
        """Give back one level; returns True once the file lock is released."""
        if self._file_lock is None:
            return True
        depth = self._get_depth()
        if depth > 1:
            self._held.depth = depth - 1
            return False
        if depth == 1:
            self._file_lock.release()
        self._held.depth = 0
        return True

    def __enter__(self) -> ProcessLockManager:
        self.acquire()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.release()


# ============================================================================
# Database
# ============================================================================


class Database:
    """LanceDB-backed document store for instances and their versions."""

    def __init__(
        self,
        storage_path: Path,
        filelock_enabled: bool = True,
        filelock_timeout: float = 30.0,
        filelock_poll_interval: float = 0.1,
        max_retry_attempts: int = DEFAULT_RETRY_MAX_ATTEMPTS,
        retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS,
    ) -> None:
        """Initialize the database wrapper (connects lazily on first use).

        Args:
            storage_path: Path to LanceDB storage directory.
            filelock_enabled: Enable cross-process file locking.
            filelock_timeout: Timeout in seconds for acquiring filelock.
            filelock_poll_interval: Interval between lock acquisition attempts.
            max_retry_attempts: Maximum retry attempts for transient errors.
            retry_backoff_seconds: Initial backoff time for retries.
        """
        self.storage_path = Path(storage_path)
        self.filelock_enabled = filelock_enabled
        self.filelock_timeout = filelock_timeout
        self.filelock_poll_interval = filelock_poll_interval
        self.max_retry_attempts = max_retry_attempts
        self.retry_backoff_seconds = retry_backoff_seconds
        self._db: lancedb.DBConnection | None = None
        self._tables: dict[str, LanceTable] = {}
        self._write_lock = threading.RLock()
        self._process_lock: ProcessLockManager | None = None

    def __enter__(self) -> Database:
        self.connect()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def connect(self) -> None:
        """Connect to LanceDB and make sure both tables exist."""
        try:
            self.storage_path.mkdir(parents=True, exist_ok=True)

            if self.filelock_enabled:
                self._process_lock = ProcessLockManager(
                    lock_path=self.storage_path / ".reach-lifecycle.lock",
                    timeout=self.filelock_timeout,
                    poll_interval=self.filelock_poll_interval,
                    enabled=True,
                )
            else:
                self._process_lock = None

            self._db = lancedb.connect(str(self.storage_path))
            for name in TABLE_SCHEMAS:
                self._tables[name] = self._ensure_table(name)
            logger.info(f"Connected to LanceDB at {self.storage_path}")
        except Exception as e:
            self._db = None
            self._tables = {}
            raise StorageError(f"Failed to connect to database: {e}") from e

    def _list_tables(self) -> list[str]:
        assert self._db is not None
        result = self._db.list_tables()
        # Handle both old (list) and new (object with .tables) LanceDB API
        if hasattr(result, "tables"):
            return list(result.tables)
        return list(result)

    def _ensure_table(self, name: str) -> LanceTable:
        """Open a table, creating it with its schema on first use.

        Another process may create the table between the existence check and
        create_table, so "already exists" falls back to opening it.
        """
        assert self._db is not None
        if name in self._list_tables():
            logger.debug(f"Opened existing {name} table")
            return self._db.open_table(name)
        try:
            table = self._db.create_table(name, schema=TABLE_SCHEMAS[name])
            logger.info(f"Created {name} table")
            return table
        except Exception as create_err:
            if "already exists" in str(create_err).lower():
                logger.debug(f"Table {name} created by another process, opening it")
                return self._db.open_table(name)
            raise

    def ensure_connected(self) -> None:
        """Connect on first use; a failed attempt is retried by the next call."""
        if self._db is None:
            self.connect()

    def close(self) -> None:
        """Drop table handles and the connection."""
        self._tables = {}
        self._db = None
        logger.debug("Database connection closed")

    def table(self, name: str) -> LanceTable:
        """Get a table handle, connecting if needed."""
        if name not in TABLE_SCHEMAS:
            raise ValidationError(f"Unknown table: {name}")
        if name not in self._tables:
            self.connect()
        return self._tables[name]

    @staticmethod
    def columns(name: str) -> list[str]:
        """Column names of a table."""
        if name not in TABLE_SCHEMAS:
            raise ValidationError(f"Unknown table: {name}")
        return list(TABLE_SCHEMAS[name].names)

    def _where(self, name: str, filters: Iterable[Filter]) -> str | None:
        return build_where_clause(filters, self.columns(name))

    @staticmethod
    def _prepare_record(name: str, record: dict[str, Any]) -> dict[str, Any]:
        """Fill missing columns with None and normalize datetimes to naive UTC."""
        prepared: dict[str, Any] = {}
        for column in TABLE_SCHEMAS[name].names:
            value = record.get(column)
            if isinstance(value, datetime):
                value = to_naive_utc(value)
            elif isinstance(value, Enum):
                value = value.value
            prepared[column] = value
        return prepared

    @staticmethod
    def _to_arrow(name: str, records: list[dict[str, Any]]) -> pa.Table:
        # Explicit schema so all-NULL columns keep their declared type
        return pa.Table.from_pylist(records, schema=TABLE_SCHEMAS[name])

    # ------------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------------

    @retry_on_storage_error()
    def find(self, name: str, filters: Iterable[Filter] = ()) -> list[dict[str, Any]]:
        """Return every record of a table matching all filters.

        Raises:
            ValidationError: If a filter is invalid.
            StorageError: If the query fails.
        """
        filters = list(filters)
        where = self._where(name, filters)
        # search() applies a default row limit, so size it to the match count
        matched = self.count(name, filters)
        if matched == 0:
            return []
        try:
            search = self.table(name).search()
            if where:
                search = search.where(where)
            results: list[dict[str, Any]] = search.limit(matched).to_list()
            return [{k: v for k, v in r.items() if not k.startswith("_")} for r in results]
        except (ValidationError, StorageError):
            raise
        except Exception as e:
            raise StorageError(f"Failed to query {name}: {e}") from e

    def count(self, name: str, filters: Iterable[Filter] = ()) -> int:
        """Count records of a table matching all filters."""
        where = self._where(name, filters)
        try:
            if where:
                return int(self.table(name).count_rows(where))
            return int(self.table(name).count_rows())
        except (ValidationError, StorageError):
            raise
        except Exception as e:
            raise StorageError(f"Failed to count {name}: {e}") from e

    # ------------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------------

    @with_process_lock
    @with_write_lock
    def insert(self, name: str, records: list[dict[str, Any]]) -> int:
        """Insert new records.

        Returns:
            Number of inserted records.
        """
        if not records:
            return 0
        key = TABLE_KEYS[name]
        prepared = [self._prepare_record(name, r) for r in records]
        for record in prepared:
            if not record.get(key):
                raise ValidationError(f"Record for {name} is missing its key '{key}'")
        try:
            self.table(name).add(self._to_arrow(name, prepared))
            logger.debug(f"Inserted {len(prepared)} record(s) into {name}")
            return len(prepared)
        except Exception as e:
            raise StorageError(f"Failed to insert into {name}: {e}") from e

    @with_process_lock
    @with_write_lock
    def update(self, name: str, filters: Iterable[Filter], fields: dict[str, Any]) -> int:
        """Merge fields into every record matching the filters.

        Uses merge_insert on the table key so each record is replaced
        atomically. ``updated_at`` is refreshed where the table has it.

        Returns:
            Number of records changed.
        """
        columns = self.columns(name)
        key = TABLE_KEYS[name]
        for field_name in fields:
            if field_name not in columns:
                raise ValidationError(f"Unknown field for {name}: {field_name}")
            if field_name == key:
                raise ValidationError(f"Cannot update key field '{key}'")

        filters = list(filters)
        records = self.find(name, filters)
        if not records:
            return 0

        now = utc_now()
        for record in records:
            record.update(fields)
            if "updated_at" in columns and "updated_at" not in fields:
                record["updated_at"] = now

        prepared = [self._prepare_record(name, r) for r in records]
        try:
            (
                self.table(name).merge_insert(key)
                .when_matched_update_all()
                .execute(self._to_arrow(name, prepared))
            )
            logger.debug(f"Updated {len(prepared)} {name} record(s) (atomic merge_insert)")
            return len(prepared)
        except Exception as e:
            raise StorageError(f"Failed to update {name}: {e}") from e

    def unset_field(self, name: str, filters: Iterable[Filter], field_name: str) -> int:
        """Remove a field (set it to NULL) on every record matching the filters.

        Returns:
            Number of records changed.
        """
        return self.update(name, filters, {field_name: None})

    @with_process_lock
    @with_write_lock
    def delete(self, name: str, filters: Iterable[Filter]) -> int:
        """Delete every record matching the filters.

        An empty filter list is rejected rather than clearing the table.

        Returns:
            Number of deleted records.
        """
        where = self._where(name, filters)
        if where is None:
            raise ValidationError("Refusing to delete without a filter")
        try:
            table = self.table(name)
            matched = int(table.count_rows(where))
            if matched:
                table.delete(where)
                logger.debug(f"Deleted {matched} {name} record(s)")
            return matched
        except Exception as e:
            raise StorageError(f"Failed to delete from {name}: {e}") from e
