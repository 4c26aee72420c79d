"""Data models for the Reach lifecycle manager."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from reach_lifecycle.core.utils import to_aware_utc, utc_now

# Type alias for filter values - covers all expected filter value types
FilterValue = str | int | float | bool | datetime | list[str] | list[int] | list[float]

PlanType = Literal["hobby", "standard", "pro"]

# Newest versions retained per instance, by subscription plan
VERSION_LIMITS: dict[str, int] = {
    "hobby": 3,
    "standard": 10,
    "pro": 20,
}


class InstanceStatus(str, Enum):
    """Lifecycle status of a hosted instance."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"
    TESTING = "testing"
    WAITING = "waiting"  # Scheduled, becomes active at waiting_until


class Instance(BaseModel):
    """A hosted instance as stored in the ``instances`` table."""

    id: str = Field(..., min_length=1)
    name: str = Field(default="")
    status: InstanceStatus = Field(default=InstanceStatus.ACTIVE)
    waiting_until: datetime | None = Field(default=None)
    current_version: str | None = Field(default=None)
    plan: PlanType | None = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("waiting_until", "created_at", "updated_at", mode="after")
    @classmethod
    def _normalize_timestamps(cls, value: datetime | None) -> datetime | None:
        # LanceDB returns naive timestamps
        return to_aware_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _check_waiting_deadline(self) -> Instance:
        """waiting_until is only meaningful while the instance is waiting."""
        if self.waiting_until is not None and self.status != InstanceStatus.WAITING:
            raise ValueError("waiting_until may only be set while status is 'waiting'")
        return self

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Instance:
        """Build an Instance from a raw store record, ignoring unknown columns."""
        known = {k: v for k, v in record.items() if k in cls.model_fields}
        return cls(**known)


class InstanceVersion(BaseModel):
    """An uploaded package version belonging to an instance."""

    version_hash: str = Field(..., min_length=1)
    instance_id: str = Field(..., min_length=1)
    version_number: int = Field(..., ge=1)
    created_at: datetime = Field(default_factory=utc_now)
    active: bool = Field(default=False)
    package_folder: str | None = Field(
        default=None, description="Package folder, relative to the upload directory"
    )
    package_zip: str | None = Field(
        default=None, description="Package archive, relative to the upload directory"
    )
    size: int = Field(default=0, ge=0)

    @field_validator("created_at", mode="after")
    @classmethod
    def _normalize_created_at(cls, value: datetime) -> datetime:
        return to_aware_utc(value)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> InstanceVersion:
        """Build an InstanceVersion from a raw store record."""
        known = {k: v for k, v in record.items() if k in cls.model_fields}
        return cls(**known)


class FilterOperator(str, Enum):
    """Filter operators for querying stored documents."""

    EQ = "eq"  # Equal
    NE = "ne"  # Not equal
    GT = "gt"  # Greater than
    GTE = "gte"  # Greater than or equal
    LT = "lt"  # Less than
    LTE = "lte"  # Less than or equal
    IN = "in"  # In list
    NIN = "nin"  # Not in list
    EXISTS = "exists"  # Field is (True) or is not (False) set


class Filter(BaseModel):
    """A single filter condition. Lists of filters are combined with AND."""

    field: str = Field(..., pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    operator: FilterOperator
    value: FilterValue

    @classmethod
    def where(cls, field: str, operator: FilterOperator | str, value: FilterValue) -> Filter:
        """Shorthand constructor: ``Filter.where("status", "eq", "waiting")``."""
        return cls(field=field, operator=FilterOperator(operator), value=value)

    @model_validator(mode="after")
    def _check_value_shape(self) -> Filter:
        if self.operator in (FilterOperator.IN, FilterOperator.NIN):
            if not isinstance(self.value, list) or not self.value:
                raise ValueError(f"'{self.operator.value}' requires a non-empty list")
        elif self.operator == FilterOperator.EXISTS:
            if not isinstance(self.value, bool):
                raise ValueError("'exists' requires a boolean value")
        elif isinstance(self.value, list):
            raise ValueError(f"'{self.operator.value}' does not accept a list")
        return self
