"""Change record repository for database CRUD operations."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING, Any

import structlog

from versionwatch.domains.monitoring.core.errors import StoreWriteError
from versionwatch.models.change_record import ChangeRecord

if TYPE_CHECKING:
    from versionwatch.services.database import Database

logger = structlog.get_logger(__name__)


class ChangeRecordRepository:
    """Repository for change record data access."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def store_change_record(
        self, record: ChangeRecord, cursor: sqlite3.Cursor | None = None
    ) -> bool:
        """Store a change record. Returns False if one already exists for the version.

        At most one record exists per (job, url, current_version); a second
        insert for the same version is ignored. Pass `cursor` to write inside
        a caller's transaction.
        """
        sql = """INSERT INTO change_records
                 (job_id, url, run_id, previous_version, current_version,
                  change_score, change_label, scoring_policy, created_at)
                 VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                 ON CONFLICT (job_id, url, current_version) DO NOTHING"""
        params = (
            record.job_id,
            record.url,
            record.run_id,
            record.previous_version,
            record.current_version,
            record.change_score,
            record.change_label,
            record.scoring_policy,
            record.created_at.isoformat(),
        )
        try:
            if cursor is not None:
                inserted = cursor.execute(sql, params).rowcount
            else:
                with self.db.transaction() as own_cursor:
                    inserted = own_cursor.execute(sql, params).rowcount
        except sqlite3.Error as exc:
            msg = f"Failed to store change record for job {record.job_id}: {exc}"
            raise StoreWriteError(msg) from exc

        if inserted:
            logger.info(
                "change_record_stored",
                job_id=record.job_id,
                previous_version=record.previous_version,
                current_version=record.current_version,
                change_label=record.change_label,
            )
        return bool(inserted)

    def get_change(self, job_id: int, url: str, current_version: int) -> ChangeRecord | None:
        """The change record for one version, if scored."""
        row = self.db.fetchone(
            """SELECT * FROM change_records
               WHERE job_id = ? AND url = ? AND current_version = ?""",
            (job_id, url, current_version),
        )
        return self._to_model(row) if row else None

    def get_changes_for_job(self, job_id: int) -> list[ChangeRecord]:
        """All change records for a job in version order."""
        rows = self.db.fetchall(
            "SELECT * FROM change_records WHERE job_id = ? ORDER BY current_version, id",
            (job_id,),
        )
        return [self._to_model(row) for row in rows]

    def count_changes_for_job(self, job_id: int) -> int:
        """Number of change records for a job."""
        row = self.db.fetchone(
            "SELECT COUNT(*) AS cnt FROM change_records WHERE job_id = ?",
            (job_id,),
        )
        return row["cnt"] if row else 0

    def get_label_counts(self, job_id: int) -> dict[str, int]:
        """Count change records per label."""
        rows = self.db.fetchall(
            """SELECT change_label, COUNT(*) AS cnt FROM change_records
               WHERE job_id = ? GROUP BY change_label""",
            (job_id,),
        )
        return {row["change_label"]: row["cnt"] for row in rows}

    def get_average_score(self, job_id: int) -> float | None:
        """Mean change score across a job's records; None when there are none."""
        row = self.db.fetchone(
            "SELECT AVG(change_score) AS avg_score FROM change_records WHERE job_id = ?",
            (job_id,),
        )
        if row is None or row["avg_score"] is None:
            return None
        return round(float(row["avg_score"]), 4)

    def _to_model(self, row: Any) -> ChangeRecord:
        return ChangeRecord.model_validate(dict(row), strict=False)
