"""Run repository: persistence for the run state machine."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from versionwatch.domains.monitoring.core.errors import StoreWriteError
from versionwatch.models.run import Run, RunStatus

if TYPE_CHECKING:
    from versionwatch.services.database import Database

logger = structlog.get_logger(__name__)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class RunRepository:
    """Repository for run data access."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def create_run(self, run: Run) -> Run:
        """Insert a new pending run. Returns it with its ID."""
        try:
            cursor = self.db.execute(
                """INSERT INTO runs
                   (job_id, status, started_at, finished_at, timeout_at, analysis_status)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    run.job_id,
                    run.status.value,
                    run.started_at.isoformat(),
                    _iso(run.finished_at),
                    run.timeout_at.isoformat(),
                    run.analysis_status.value,
                ),
            )
            self.db.connection.commit()
        except sqlite3.Error as exc:
            raise StoreWriteError(f"Failed to create run: {exc}") from exc
        return run.model_copy(update={"id": cursor.lastrowid or 0})

    def get_run(self, run_id: int) -> Run | None:
        """Get a run by ID."""
        row = self.db.fetchone("SELECT * FROM runs WHERE id = ?", (run_id,))
        return self._to_model(row) if row else None

    def list_runs_for_job(self, job_id: int) -> list[Run]:
        """All runs of a job in start order."""
        rows = self.db.fetchall(
            "SELECT * FROM runs WHERE job_id = ? ORDER BY started_at, id",
            (job_id,),
        )
        return [self._to_model(row) for row in rows]

    def has_active_run(self, job_id: int) -> bool:
        """True if the job has a run that is still pending."""
        row = self.db.fetchone(
            "SELECT COUNT(*) AS cnt FROM runs WHERE job_id = ? AND status = ?",
            (job_id, RunStatus.PENDING.value),
        )
        return (row["cnt"] if row else 0) > 0

    def get_pending_runs(self) -> list[Run]:
        """All runs not yet terminal."""
        rows = self.db.fetchall(
            "SELECT * FROM runs WHERE status = ? ORDER BY timeout_at",
            (RunStatus.PENDING.value,),
        )
        return [self._to_model(row) for row in rows]

    def finalize(self, run: Run, cursor: sqlite3.Cursor | None = None) -> bool:
        """Persist a terminal run. Returns False if another writer finalized it first.

        The update only matches a row that is still pending, so of two
        concurrent finalizers exactly one wins. Pass `cursor` to take part in
        a caller's transaction; otherwise the write commits on its own.
        """
        if not run.is_terminal:
            msg = f"run {run.id} is not terminal"
            raise ValueError(msg)

        sql = """UPDATE runs SET
                 status = ?, finished_at = ?, analysis_status = ?,
                 analysis_score = ?, analysis_label = ?,
                 failure_reason = ?, failure_detail = ?, snapshot_version = ?
                 WHERE id = ? AND status = ?"""
        params = (
            run.status.value,
            _iso(run.finished_at),
            run.analysis_status.value,
            run.analysis_score,
            run.analysis_label,
            run.failure_reason.value if run.failure_reason else None,
            run.failure_detail,
            run.snapshot_version,
            run.id,
            RunStatus.PENDING.value,
        )
        try:
            if cursor is not None:
                updated = cursor.execute(sql, params).rowcount
            else:
                with self.db.transaction() as own_cursor:
                    updated = own_cursor.execute(sql, params).rowcount
        except sqlite3.Error as exc:
            raise StoreWriteError(f"Failed to finalize run {run.id}: {exc}") from exc

        if updated:
            logger.info(
                "run_finalized",
                run_id=run.id,
                status=run.status.value,
                analysis_status=run.analysis_status.value,
                failure_reason=run.failure_reason.value if run.failure_reason else None,
            )
        return bool(updated)

    def _to_model(self, row: Any) -> Run:
        return Run.model_validate(dict(row), strict=False)
