"""Run model: one traversal of the pipeline for a job."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_RUN_TIMEOUT = timedelta(minutes=5)
MAX_FAILURE_DETAIL_LENGTH = 2000


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


class RunStatus(StrEnum):
    """Lifecycle status of a run. COMPLETED and FAILED are terminal."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class AnalysisStatus(StrEnum):
    """Outcome of the change-detection step of a run."""

    PENDING = "pending"
    SKIPPED = "skipped"  # first version, nothing to compare against
    DONE = "done"


class FailureReason(StrEnum):
    """Why a run ended in FAILED."""

    FETCH_ERROR = "fetch_error"
    PARSE_ERROR = "parse_error"
    SNAPSHOT_MISSING = "snapshot_missing"
    TIMEOUT = "timeout"
    MALFORMED_MESSAGE = "malformed_message"
    ANALYSIS_ERROR = "analysis_error"


class Run(BaseModel):
    """Represents exactly one traversal triggered by one start-fetch message."""

    model_config = ConfigDict(strict=True)

    id: int | None = None
    job_id: int
    status: RunStatus = RunStatus.PENDING
    started_at: datetime = Field(default_factory=_utc_now)
    finished_at: datetime | None = None
    timeout_at: datetime
    analysis_status: AnalysisStatus = AnalysisStatus.PENDING
    analysis_score: float | None = None
    analysis_label: str | None = None
    failure_reason: FailureReason | None = None
    failure_detail: str | None = None
    snapshot_version: int | None = None

    @classmethod
    def start(cls, job_id: int, timeout: timedelta = DEFAULT_RUN_TIMEOUT) -> Run:
        """Build a fresh pending run whose deadline is `timeout` from now."""
        started_at = _utc_now()
        return cls(job_id=job_id, started_at=started_at, timeout_at=started_at + timeout)

    @property
    def is_terminal(self) -> bool:
        """True once the run reached COMPLETED or FAILED."""
        return self.status != RunStatus.PENDING

    def is_expired(self, now: datetime | None = None) -> bool:
        """True if the deadline has passed."""
        return (now or _utc_now()) > self.timeout_at

    @field_validator("analysis_score")
    @classmethod
    def validate_analysis_score(cls, value: float | None) -> float | None:
        """Analysis score must be between 0.0 and 1.0."""
        if value is not None and (value < 0.0 or value > 1.0):
            msg = "analysis_score must be between 0.0 and 1.0"
            raise ValueError(msg)
        return value

    @field_validator("failure_detail")
    @classmethod
    def validate_failure_detail(cls, value: str | None) -> str | None:
        """Failure detail is truncated to MAX_FAILURE_DETAIL_LENGTH characters."""
        if value is not None and len(value) > MAX_FAILURE_DETAIL_LENGTH:
            return value[:MAX_FAILURE_DETAIL_LENGTH]
        return value

    @model_validator(mode="after")
    def validate_deadline(self) -> Run:
        """The deadline cannot precede the start."""
        if self.timeout_at < self.started_at:
            msg = "timeout_at must not be earlier than started_at"
            raise ValueError(msg)
        return self

    @model_validator(mode="after")
    def validate_failure_consistency(self) -> Run:
        """A failure reason is present exactly when the run failed."""
        if self.status == RunStatus.FAILED and self.failure_reason is None:
            msg = "failure_reason is required when status is failed"
            raise ValueError(msg)
        if self.status != RunStatus.FAILED and self.failure_reason is not None:
            msg = "failure_reason is only allowed when status is failed"
            raise ValueError(msg)
        return self
