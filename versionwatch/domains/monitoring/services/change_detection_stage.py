"""Change-detection stage: snapshot-ready -> terminal run (+ change record)."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

import structlog

from versionwatch.domains.monitoring.core.change_scoring import DEFAULT_POLICY, score_change
from versionwatch.domains.monitoring.core.errors import (
    AlreadyFinalizedError,
    ContentUnavailableError,
    StoreWriteError,
)
from versionwatch.domains.monitoring.core.run_lifecycle import complete_scored, complete_skipped
from versionwatch.domains.monitoring.repositories.change_record_repository import (
    ChangeRecordRepository,
)
from versionwatch.domains.monitoring.repositories.snapshot_repository import SnapshotRepository
from versionwatch.domains.monitoring.services.pipeline_stage import DETECT_QUEUE, PipelineStage
from versionwatch.models.change_record import ChangeRecord
from versionwatch.models.messages import SNAPSHOT_READY
from versionwatch.models.run import FailureReason

if TYPE_CHECKING:
    from versionwatch.models.messages import SnapshotReadyMessage
    from versionwatch.models.run import Run
    from versionwatch.models.scoring_policy import ScoringPolicy
    from versionwatch.models.snapshot import Snapshot
    from versionwatch.services.database import Database
    from versionwatch.services.protocols import MessageBrokerProtocol

logger = structlog.get_logger(__name__)


class ChangeDetectionStage(PipelineStage):
    """Score a new version against its predecessor and finalize the run.

    The deadline is checked before any snapshot lookup, so an expired run
    fails with `timeout` even when its snapshot is present.
    """

    name = "detect"
    queue = DETECT_QUEUE
    message_type = SNAPSHOT_READY
    failure_reason = FailureReason.ANALYSIS_ERROR

    def __init__(
        self,
        db: Database,
        broker: MessageBrokerProtocol,
        policy: ScoringPolicy = DEFAULT_POLICY,
    ) -> None:
        super().__init__(db, broker)
        self.policy = policy
        self.snapshots = SnapshotRepository(db)
        self.changes = ChangeRecordRepository(db)

    def handle(self, message: SnapshotReadyMessage) -> None:  # type: ignore[override]
        run = self.load_active_run(message)
        current = self._load_current(message)

        if current.version == 1:
            finalized = self.runs.finalize(complete_skipped(run, current.version, self.now()))
            if not finalized:
                raise AlreadyFinalizedError(message.run_id, "finalized concurrently")
            logger.info(
                "analysis_skipped_first_version",
                job_id=message.job_id,
                run_id=message.run_id,
            )
            return

        previous = self.snapshots.get_snapshot(message.job_id, message.url, current.version - 1)
        if previous is None:
            msg = f"Version {current.version - 1} of {message.url} is missing"
            raise ContentUnavailableError(msg)

        result = score_change(previous.facets, current.facets, self.policy)
        record = ChangeRecord(
            job_id=message.job_id,
            url=message.url,
            run_id=message.run_id,
            previous_version=previous.version,
            current_version=current.version,
            change_score=result.score,
            change_label=result.label,
            scoring_policy=result.policy_version,
        )
        completed = complete_scored(run, current.version, result.score, result.label, self.now())
        self._commit(run, completed, record)

        logger.info(
            "change_scored",
            job_id=message.job_id,
            run_id=message.run_id,
            version=current.version,
            score=result.score,
            label=result.label,
        )

    def _load_current(self, message: SnapshotReadyMessage) -> Snapshot:
        snapshot = self.snapshots.get_snapshot_by_id(message.snapshot_id)
        if snapshot is None or snapshot.version != message.version:
            msg = f"Snapshot {message.snapshot_id} (version {message.version}) not found"
            raise ContentUnavailableError(msg)
        if snapshot.job_id != message.job_id or snapshot.url != message.url:
            msg = f"Snapshot {message.snapshot_id} does not belong to job {message.job_id}"
            raise ContentUnavailableError(msg)
        return snapshot

    def _commit(self, run: Run, completed: Run, record: ChangeRecord) -> None:
        """Write the change record and the terminal run together, or neither."""
        try:
            with self.db.transaction(immediate=True) as cursor:
                if not self.runs.finalize(completed, cursor=cursor):
                    raise AlreadyFinalizedError(run.id or 0, "finalized concurrently")
                self.changes.store_change_record(record, cursor=cursor)
        except sqlite3.Error as exc:
            raise StoreWriteError(f"Failed to finalize run {run.id}: {exc}") from exc
