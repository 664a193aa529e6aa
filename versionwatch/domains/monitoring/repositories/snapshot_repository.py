"""Snapshot repository: versioned, append-only content store."""

from __future__ import annotations

import json
import sqlite3
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from versionwatch.domains.monitoring.core.errors import SnapshotConflictError, StoreWriteError
from versionwatch.models.snapshot import Facets, Link, Snapshot

if TYPE_CHECKING:
    from versionwatch.services.database import Database

logger = structlog.get_logger(__name__)


class SnapshotRepository:
    """Repository for snapshot data access and version allocation.

    Versions per (job, url) come from a single counter row that is
    incremented and read back in one statement. Reading MAX(version) and
    inserting MAX+1 in separate statements is never done here.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def allocate_version(self, cursor: sqlite3.Cursor, job_id: int, url: str) -> int:
        """Atomically increment and return the next version for (job, url).

        Must run inside the caller's transaction so that a rollback also
        returns the number.
        """
        now = datetime.now(UTC).isoformat()
        row = cursor.execute(
            """INSERT INTO version_counters (job_id, url, last_version, updated_at)
               VALUES (?, ?, 1, ?)
               ON CONFLICT (job_id, url)
               DO UPDATE SET last_version = last_version + 1, updated_at = excluded.updated_at
               RETURNING last_version""",
            (job_id, url, now),
        ).fetchone()
        return int(row[0])

    def insert_snapshot(
        self,
        cursor: sqlite3.Cursor,
        job_id: int,
        url: str,
        version: int,
        raw_content: str,
        facets: Facets,
        run_id: int | None = None,
    ) -> Snapshot:
        """Insert a snapshot row. Fails rather than overwrite an existing version."""
        snapshot = Snapshot(
            job_id=job_id,
            url=url,
            run_id=run_id,
            version=version,
            raw_content=raw_content,
            facets=facets,
        )
        try:
            cursor.execute(
                """INSERT INTO snapshots
                   (job_id, url, run_id, version, raw_content, title, description,
                    text_content, links, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    job_id,
                    url,
                    run_id,
                    version,
                    raw_content,
                    facets.title,
                    facets.description,
                    facets.text,
                    json.dumps([link.model_dump() for link in facets.links]),
                    snapshot.created_at.isoformat(),
                ),
            )
        except sqlite3.IntegrityError as exc:
            msg = f"Snapshot already exists for job {job_id} url {url} version {version}"
            raise SnapshotConflictError(msg) from exc
        return snapshot.model_copy(update={"id": cursor.lastrowid})

    def create_snapshot(
        self,
        job_id: int,
        url: str,
        raw_content: str,
        facets: Facets,
        run_id: int | None = None,
    ) -> Snapshot:
        """Allocate the next version and store the snapshot in one transaction.

        Either both the counter increment and the row are committed or
        neither is, so a crash or conflict never leaves a gap.
        """
        try:
            with self.db.transaction(immediate=True) as cursor:
                version = self.allocate_version(cursor, job_id, url)
                snapshot = self.insert_snapshot(
                    cursor, job_id, url, version, raw_content, facets, run_id=run_id
                )
        except StoreWriteError:
            raise
        except sqlite3.Error as exc:
            raise StoreWriteError(f"Failed to store snapshot for job {job_id}: {exc}") from exc

        logger.info("snapshot_stored", job_id=job_id, url=url, version=version, run_id=run_id)
        return snapshot

    def get_snapshot(self, job_id: int, url: str, version: int) -> Snapshot | None:
        """Get one version of (job, url)."""
        row = self.db.fetchone(
            "SELECT * FROM snapshots WHERE job_id = ? AND url = ? AND version = ?",
            (job_id, url, version),
        )
        return self._to_model(row) if row else None

    def get_snapshot_by_id(self, snapshot_id: int) -> Snapshot | None:
        """Get a snapshot by ID."""
        row = self.db.fetchone("SELECT * FROM snapshots WHERE id = ?", (snapshot_id,))
        return self._to_model(row) if row else None

    def get_snapshot_for_run(self, run_id: int) -> Snapshot | None:
        """The snapshot a run produced, if any."""
        row = self.db.fetchone("SELECT * FROM snapshots WHERE run_id = ?", (run_id,))
        return self._to_model(row) if row else None

    def get_job_snapshot(self, job_id: int, version: int) -> Snapshot | None:
        """Get a version of a job's snapshots regardless of url."""
        row = self.db.fetchone(
            "SELECT * FROM snapshots WHERE job_id = ? AND version = ? ORDER BY id LIMIT 1",
            (job_id, version),
        )
        return self._to_model(row) if row else None

    def latest_version(self, job_id: int, url: str) -> int:
        """Highest committed version for (job, url); 0 when there is none."""
        row = self.db.fetchone(
            "SELECT last_version FROM version_counters WHERE job_id = ? AND url = ?",
            (job_id, url),
        )
        return int(row["last_version"]) if row else 0

    def list_versions(self, job_id: int, url: str | None = None) -> list[int]:
        """Stored versions in ascending order."""
        if url is None:
            rows = self.db.fetchall(
                "SELECT version FROM snapshots WHERE job_id = ? ORDER BY version",
                (job_id,),
            )
        else:
            rows = self.db.fetchall(
                "SELECT version FROM snapshots WHERE job_id = ? AND url = ? ORDER BY version",
                (job_id, url),
            )
        return [row["version"] for row in rows]

    def list_snapshot_summaries(self, job_id: int) -> list[dict[str, Any]]:
        """Version, creation time, title and description of every snapshot of a job."""
        rows = self.db.fetchall(
            """SELECT version, url, created_at, title, description, run_id
               FROM snapshots WHERE job_id = ? ORDER BY version""",
            (job_id,),
        )
        return [dict(row) for row in rows]

    def count_snapshots_for_job(self, job_id: int) -> int:
        """Count total snapshots for a job."""
        row = self.db.fetchone(
            "SELECT COUNT(*) AS cnt FROM snapshots WHERE job_id = ?",
            (job_id,),
        )
        return row["cnt"] if row else 0

    def _to_model(self, row: Any) -> Snapshot:
        data = dict(row)
        try:
            links = json.loads(data.get("links") or "[]")
        except (json.JSONDecodeError, TypeError):
            links = []
        facets = Facets(
            title=data.get("title") or "",
            description=data.get("description"),
            text=data.get("text_content") or "",
            links=[Link(**link) for link in links if isinstance(link, dict)],
        )
        return Snapshot.model_validate(
            {
                "id": data["id"],
                "job_id": data["job_id"],
                "url": data["url"],
                "run_id": data["run_id"],
                "version": data["version"],
                "raw_content": data["raw_content"],
                "facets": facets,
                "created_at": data["created_at"],
            },
            strict=False,
        )
