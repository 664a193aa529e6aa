"""Job model for tracked URLs."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from versionwatch.utils.validators import is_valid_url


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


class JobStatus(StrEnum):
    """Whether a job is still being tracked."""

    ACTIVE = "active"
    PAUSED = "paused"


class Job(BaseModel):
    """A tracked URL. Immutable except for status and schedule."""

    model_config = ConfigDict(strict=True, extra="forbid")

    id: int | None = None
    name: str
    url: str
    schedule: str = "manual"
    status: JobStatus = JobStatus.ACTIVE
    created_at: datetime = Field(default_factory=_utc_now)

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        """Strip whitespace and collapse inner spaces."""
        stripped = " ".join(value.split())
        if not stripped:
            msg = "Name must not be empty"
            raise ValueError(msg)
        if len(stripped) > 500:
            msg = "Name must not exceed 500 characters"
            raise ValueError(msg)
        return stripped

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        """URL must be an absolute http(s) URL."""
        value = value.strip()
        if not is_valid_url(value):
            msg = f"url must be an absolute http or https URL: {value!r}"
            raise ValueError(msg)
        return value

    @field_validator("schedule")
    @classmethod
    def validate_schedule(cls, value: str) -> str:
        """Schedule is opaque but must be present."""
        if not value.strip():
            msg = "schedule must not be empty"
            raise ValueError(msg)
        return value.strip()
