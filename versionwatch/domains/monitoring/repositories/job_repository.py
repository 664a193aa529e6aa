"""Job repository for database CRUD operations."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from versionwatch.domains.monitoring.core.errors import StoreWriteError
from versionwatch.models.job import Job, JobStatus

if TYPE_CHECKING:
    from versionwatch.services.database import Database

logger = structlog.get_logger(__name__)


class JobRepository:
    """Repository for job data access."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def create_job(self, job: Job) -> Job:
        """Insert a new job. Returns it with its ID."""
        try:
            cursor = self.db.execute(
                """INSERT INTO jobs (name, url, schedule, status, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (job.name, job.url, job.schedule, job.status.value, job.created_at.isoformat()),
            )
            self.db.connection.commit()
        except sqlite3.Error as exc:
            raise StoreWriteError(f"Failed to create job: {exc}") from exc
        job_id = cursor.lastrowid or 0
        logger.info("job_created", job_id=job_id, url=job.url)
        return job.model_copy(update={"id": job_id})

    def get_job(self, job_id: int) -> Job | None:
        """Get a job by ID."""
        row = self.db.fetchone("SELECT * FROM jobs WHERE id = ?", (job_id,))
        return self._to_model(row) if row else None

    def list_jobs(self) -> list[Job]:
        """Get all jobs, newest first."""
        rows = self.db.fetchall("SELECT * FROM jobs ORDER BY created_at DESC, id DESC")
        return [self._to_model(row) for row in rows]

    def update_status(self, job_id: int, status: JobStatus) -> None:
        """Pause or resume a job."""
        self.db.execute("UPDATE jobs SET status = ? WHERE id = ?", (status.value, job_id))
        self.db.connection.commit()

    def update_schedule(self, job_id: int, schedule: str) -> None:
        """Replace the opaque schedule descriptor."""
        if not schedule.strip():
            msg = "schedule must not be empty"
            raise ValueError(msg)
        self.db.execute("UPDATE jobs SET schedule = ? WHERE id = ?", (schedule.strip(), job_id))
        self.db.connection.commit()

    def store_processing_error(
        self,
        entity_type: str,
        entity_id: int | None,
        error_type: str,
        error_message: str,
        retry_count: int = 0,
    ) -> None:
        """Store a processing error for debugging."""
        now = datetime.now(UTC).isoformat()
        self.db.execute(
            """INSERT INTO processing_errors
               (entity_type, entity_id, error_type, error_message,
                retry_count, occurred_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (entity_type, entity_id, error_type, error_message[:5000], retry_count, now),
        )
        self.db.connection.commit()

    def get_processing_errors(self, limit: int = 50) -> list[dict[str, Any]]:
        """Most recent processing errors first."""
        rows = self.db.fetchall(
            "SELECT * FROM processing_errors ORDER BY id DESC LIMIT ?",
            (limit,),
        )
        return [dict(row) for row in rows]

    def _to_model(self, row: Any) -> Job:
        return Job.model_validate(dict(row), strict=False)
