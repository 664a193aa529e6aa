"""Run state machine: PENDING -> COMPLETED | FAILED, no way back out.

Transitions are pure: each returns an updated copy of the run and never
touches storage. Persisting the result (and losing a race to another
finalizer) is the repository's job.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from versionwatch.domains.monitoring.core.errors import (
    AlreadyFinalizedError,
    InvalidTransitionError,
    RunTimeoutError,
)
from versionwatch.models.run import (
    MAX_FAILURE_DETAIL_LENGTH,
    AnalysisStatus,
    FailureReason,
    RunStatus,
)

if TYPE_CHECKING:
    from versionwatch.models.run import Run

FAILURE_MESSAGES: dict[FailureReason, str] = {
    FailureReason.FETCH_ERROR: "Fetching the page failed",
    FailureReason.PARSE_ERROR: "Parsing the page failed",
    FailureReason.SNAPSHOT_MISSING: "Snapshot for this run could not be found",
    FailureReason.TIMEOUT: "Run exceeded its deadline",
    FailureReason.MALFORMED_MESSAGE: "Pipeline message was malformed",
    FailureReason.ANALYSIS_ERROR: "Scoring the change failed",
}


def _now() -> datetime:
    return datetime.now(UTC)


def describe_failure(reason: FailureReason, detail: str | None = None) -> str:
    """Human-readable failure text shown to pollers, cut to the stored length limit."""
    base = FAILURE_MESSAGES[reason]
    text = f"{base}: {detail}" if detail else base
    return text[:MAX_FAILURE_DETAIL_LENGTH]


def ensure_pending(run: Run) -> None:
    """Raise AlreadyFinalizedError if the run already reached a terminal state."""
    if run.is_terminal:
        raise AlreadyFinalizedError(run.id or 0, run.status.value)


def ensure_within_deadline(run: Run, now: datetime | None = None) -> None:
    """Raise RunTimeoutError if the run deadline has passed."""
    now = now or _now()
    if run.is_expired(now):
        msg = f"deadline {run.timeout_at.isoformat()} passed at {now.isoformat()}"
        raise RunTimeoutError(msg)


def guard_active(run: Run, now: datetime | None = None) -> None:
    """Checks every handler performs before mutating a run, in this order."""
    ensure_pending(run)
    ensure_within_deadline(run, now)


def fail(
    run: Run,
    reason: FailureReason,
    detail: str | None = None,
    now: datetime | None = None,
) -> Run:
    """PENDING -> FAILED."""
    if run.is_terminal:
        msg = f"cannot fail run {run.id}: already {run.status}"
        raise InvalidTransitionError(msg)
    return run.model_copy(
        update={
            "status": RunStatus.FAILED,
            "finished_at": now or _now(),
            "failure_reason": reason,
            "failure_detail": describe_failure(reason, detail),
        }
    )


def complete_skipped(run: Run, version: int, now: datetime | None = None) -> Run:
    """PENDING -> COMPLETED for a first version: nothing to compare against."""
    if run.is_terminal:
        msg = f"cannot complete run {run.id}: already {run.status}"
        raise InvalidTransitionError(msg)
    return run.model_copy(
        update={
            "status": RunStatus.COMPLETED,
            "finished_at": now or _now(),
            "analysis_status": AnalysisStatus.SKIPPED,
            "snapshot_version": version,
        }
    )


def complete_scored(
    run: Run,
    version: int,
    score: float,
    label: str,
    now: datetime | None = None,
) -> Run:
    """PENDING -> COMPLETED with a recorded change score."""
    if run.is_terminal:
        msg = f"cannot complete run {run.id}: already {run.status}"
        raise InvalidTransitionError(msg)
    return run.model_copy(
        update={
            "status": RunStatus.COMPLETED,
            "finished_at": now or _now(),
            "analysis_status": AnalysisStatus.DONE,
            "analysis_score": score,
            "analysis_label": label,
            "snapshot_version": version,
        }
    )
