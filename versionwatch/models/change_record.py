"""Change record model for scored differences between consecutive versions."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


class ChangeRecord(BaseModel):
    """Scored change between a snapshot and its immediate predecessor."""

    model_config = ConfigDict(strict=True)

    id: int | None = None
    job_id: int
    url: str
    run_id: int | None = None
    previous_version: int
    current_version: int
    change_score: float
    change_label: str
    scoring_policy: str
    created_at: datetime = Field(default_factory=_utc_now)

    @field_validator("change_score")
    @classmethod
    def validate_change_score(cls, value: float) -> float:
        """Change score must be between 0.0 and 1.0."""
        if value < 0.0 or value > 1.0:
            msg = "change_score must be between 0.0 and 1.0"
            raise ValueError(msg)
        return value

    @model_validator(mode="after")
    def validate_versions(self) -> ChangeRecord:
        """Previous version must be positive and precede the current one."""
        if self.previous_version <= 0 or self.current_version <= self.previous_version:
            msg = "previous_version must be positive and lower than current_version"
            raise ValueError(msg)
        return self
