"""Timestamp helpers.

LanceDB hands back naive timestamps, which this package always treats as UTC.
Services compare aware datetimes; the store only ever sees naive UTC values.
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_naive_utc(dt: datetime) -> datetime:
    """Normalize to UTC and drop tzinfo (the form written to the store).

    Naive input is taken to be UTC already and returned unchanged.
    """
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_aware_utc(dt: datetime) -> datetime:
    """Attach (or convert to) UTC. Inverse of ``to_naive_utc`` for store reads."""
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)
