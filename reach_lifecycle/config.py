"""Configuration system for the Reach lifecycle manager."""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

from reach_lifecycle.core.lifecycle_constants import (
    DEFAULT_FAST_TICK_SECONDS,
    DEFAULT_SLOW_TICK_SECONDS,
    TEMP_DIR_NAME,
)


class Settings(BaseSettings):
    """Reach Lifecycle Manager Configuration."""

    # Storage
    storage_path: Path = Field(
        default=Path("./.reach-data"),
        description="Path to LanceDB storage directory holding instances and versions",
    )
    upload_dir: Path = Field(
        default=Path("./cdn"),
        description="Base upload directory; temp uploads live in its 'temp' subdirectory",
    )

    # Scheduling
    fast_tick_seconds: float = Field(
        default=DEFAULT_FAST_TICK_SECONDS,
        ge=1.0,
        description="Interval of the promotion + temp eviction tick",
    )
    slow_tick_seconds: float = Field(
        default=DEFAULT_SLOW_TICK_SECONDS,
        ge=60.0,
        description="Interval of the global version cleanup tick",
    )

    # Versions
    default_plan: Literal["hobby", "standard", "pro"] = Field(
        default="hobby",
        description="Plan assumed for instances that do not record one",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    log_format: Literal["text", "json"] = Field(
        default="text",
        description="Log output format",
    )

    # Cross-process locking
    filelock_enabled: bool = Field(
        default=True,
        description="Serialize store writes across processes with a lock file",
    )
    filelock_timeout: float = Field(
        default=30.0,
        ge=0.0,
        description="Seconds to wait for the store lock file",
    )

    # Performance
    max_retry_attempts: int = Field(
        default=3,
        ge=1,
        description="Maximum retry attempts for transient store errors",
    )
    retry_backoff_seconds: float = Field(
        default=0.5,
        ge=0.0,
        description="Initial backoff time for retries (doubles each attempt)",
    )

    model_config = {
        "env_prefix": "REACH_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    @property
    def temp_dir(self) -> Path:
        """Directory scanned by the temp file janitor."""
        return self.upload_dir / TEMP_DIR_NAME


# Settings singleton with dependency injection support
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the settings instance (lazy-loaded singleton).

    Example:
        from reach_lifecycle.config import get_settings
        settings = get_settings()
        print(settings.temp_dir)
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def override_settings(new_settings: Settings) -> None:
    """Override the settings instance (for testing).

    Args:
        new_settings: The new Settings instance to use.
    """
    global _settings
    _settings = new_settings


def reset_settings() -> None:
    """Reset settings to None (forces reload on next get_settings call)."""
    global _settings
    _settings = None
