"""Failure taxonomy for pipeline stages.

Each class tells the stage worker how to resolve the message that raised it.
"""

from __future__ import annotations

from versionwatch.models.run import FailureReason


class PipelineError(Exception):
    """Base class for classified pipeline failures."""


class RunFailure(PipelineError):
    """A non-retryable domain failure that ends the run as FAILED."""

    reason: FailureReason = FailureReason.FETCH_ERROR


class TransientFetchError(PipelineError):
    """Network error, timeout, 429 or 5xx during retrieval. Retried a bounded number of times."""


class FetchFailedError(RunFailure):
    """Content retrieval failed in a way retrying will not fix (e.g. 404)."""

    reason = FailureReason.FETCH_ERROR


class ContentParseError(RunFailure):
    """Facets could not be extracted from the raw content."""

    reason = FailureReason.PARSE_ERROR


class ContentUnavailableError(RunFailure):
    """An expected snapshot or version is missing at analysis time."""

    reason = FailureReason.SNAPSHOT_MISSING


class RunTimeoutError(RunFailure):
    """The run deadline passed before a terminal outcome was produced."""

    reason = FailureReason.TIMEOUT


class AlreadyFinalizedError(PipelineError):
    """The run is already terminal. Acknowledged as a no-op."""

    def __init__(self, run_id: int, status: str) -> None:
        super().__init__(f"Run {run_id} is already {status}")
        self.run_id = run_id
        self.status = status


class RunNotFoundError(PipelineError):
    """A message references a run that does not exist."""


class StoreWriteError(PipelineError):
    """Persistence failed; nothing durable changed, so the message is redelivered."""


class SnapshotConflictError(StoreWriteError):
    """A snapshot with the same (job, url, version) already exists."""


class MalformedMessageError(PipelineError):
    """A payload failed validation at the consumer boundary."""


class InvalidTransitionError(PipelineError):
    """A run state transition that the lifecycle does not allow."""


class JobNotFoundError(PipelineError):
    """A job id does not exist."""


class JobNotRunnableError(PipelineError):
    """A run cannot start: the job is paused or already has a pending run."""
