"""Lifecycle constants (hardcoded, not configurable)."""

from __future__ import annotations

TEMP_FILE_MAX_AGE_SECONDS = 48 * 3600  # 48 hours
TEMP_DIR_NAME = "temp"

DEFAULT_FAST_TICK_SECONDS = 60  # 1 minute
DEFAULT_SLOW_TICK_SECONDS = 6 * 3600  # 6 hours

INSTANCES_TABLE = "instances"
VERSIONS_TABLE = "instance_versions"

FAST_TICK_NAME = "fast-tick"
SLOW_TICK_NAME = "slow-tick"
