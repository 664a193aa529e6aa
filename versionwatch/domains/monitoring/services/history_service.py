"""Read-side queries over runs, snapshots and change records."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from versionwatch.domains.monitoring.core.change_scoring import DEFAULT_POLICY
from versionwatch.domains.monitoring.core.errors import (
    ContentUnavailableError,
    JobNotFoundError,
    RunNotFoundError,
)
from versionwatch.domains.monitoring.core.snapshot_comparison import (
    SnapshotComparison,
    compare_facets,
)
from versionwatch.domains.monitoring.repositories.change_record_repository import (
    ChangeRecordRepository,
)
from versionwatch.domains.monitoring.repositories.job_repository import JobRepository
from versionwatch.domains.monitoring.repositories.run_repository import RunRepository
from versionwatch.domains.monitoring.repositories.snapshot_repository import SnapshotRepository
from versionwatch.models.run import RunStatus

if TYPE_CHECKING:
    from versionwatch.models.change_record import ChangeRecord
    from versionwatch.models.run import Run
    from versionwatch.models.scoring_policy import ScoringPolicy
    from versionwatch.models.snapshot import Snapshot
    from versionwatch.services.database import Database

logger = structlog.get_logger(__name__)


class HistoryService:
    """Query a job's runs, versions and scored changes."""

    def __init__(self, db: Database, policy: ScoringPolicy = DEFAULT_POLICY) -> None:
        self.policy = policy
        self.jobs = JobRepository(db)
        self.runs = RunRepository(db)
        self.snapshots = SnapshotRepository(db)
        self.changes = ChangeRecordRepository(db)

    def _require_job(self, job_id: int) -> None:
        if self.jobs.get_job(job_id) is None:
            raise JobNotFoundError(f"Job {job_id} not found")

    def list_runs(self, job_id: int) -> list[Run]:
        self._require_job(job_id)
        return self.runs.list_runs_for_job(job_id)

    def get_run(self, run_id: int) -> Run:
        run = self.runs.get_run(run_id)
        if run is None:
            raise RunNotFoundError(f"Run {run_id} not found")
        return run

    def list_snapshots(self, job_id: int) -> list[dict[str, Any]]:
        """Version, creation time, title and description per stored version."""
        self._require_job(job_id)
        return self.snapshots.list_snapshot_summaries(job_id)

    def get_snapshot_detail(self, job_id: int, version: int) -> Snapshot:
        snapshot = self.snapshots.get_job_snapshot(job_id, version)
        if snapshot is None:
            raise ContentUnavailableError(f"Job {job_id} has no version {version}")
        return snapshot

    def change_history(self, job_id: int) -> list[ChangeRecord]:
        self._require_job(job_id)
        return self.changes.get_changes_for_job(job_id)

    def job_stats(self, job_id: int) -> dict[str, Any]:
        """Totals for a job's dashboard card."""
        self._require_job(job_id)
        runs = self.runs.list_runs_for_job(job_id)
        label_counts = {label: 0 for label in self.policy.labels}
        label_counts.update(self.changes.get_label_counts(job_id))
        started = [run.started_at for run in runs]
        return {
            "total_versions": max(self.snapshots.list_versions(job_id), default=0),
            "total_runs": len(runs),
            "completed_runs": sum(1 for run in runs if run.status == RunStatus.COMPLETED),
            "failed_runs": sum(1 for run in runs if run.status == RunStatus.FAILED),
            "pending_runs": sum(1 for run in runs if run.status == RunStatus.PENDING),
            "label_counts": label_counts,
            "average_score": self.changes.get_average_score(job_id),
            "first_run_at": min(started).isoformat() if started else None,
            "last_run_at": max(started).isoformat() if started else None,
        }

    def history_timeline(self, job_id: int) -> list[dict[str, Any]]:
        """One entry per run, joined with the version and change it produced."""
        self._require_job(job_id)
        summaries = {
            row["version"]: row for row in self.snapshots.list_snapshot_summaries(job_id)
        }
        changes = {
            record.current_version: record
            for record in self.changes.get_changes_for_job(job_id)
        }

        timeline: list[dict[str, Any]] = []
        for run in self.runs.list_runs_for_job(job_id):
            entry: dict[str, Any] = {
                "run_id": run.id,
                "status": run.status.value,
                "started_at": run.started_at.isoformat(),
                "finished_at": run.finished_at.isoformat() if run.finished_at else None,
                "analysis_status": run.analysis_status.value,
                "failure_reason": run.failure_reason.value if run.failure_reason else None,
                "failure_detail": run.failure_detail,
                "version": run.snapshot_version,
                "title": None,
                "change_score": None,
                "change_label": None,
            }
            if run.snapshot_version is not None:
                summary = summaries.get(run.snapshot_version)
                if summary is not None:
                    entry["title"] = summary["title"]
                change = changes.get(run.snapshot_version)
                if change is not None:
                    entry["change_score"] = change.change_score
                    entry["change_label"] = change.change_label
            timeline.append(entry)
        return timeline

    def compare(self, job_id: int, version_a: int, version_b: int) -> SnapshotComparison:
        """Diff any two stored versions of a job, in either order."""
        base = self.get_snapshot_detail(job_id, version_a)
        target = self.get_snapshot_detail(job_id, version_b)
        comparison = compare_facets(
            base.facets, target.facets, base.version, target.version, self.policy
        )
        logger.debug(
            "versions_compared",
            job_id=job_id,
            base_version=version_a,
            target_version=version_b,
            score=comparison.score,
        )
        return comparison
