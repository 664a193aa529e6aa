"""SQLite database service."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Generator

logger = structlog.get_logger(__name__)

# Seconds a connection waits on a locked database before raising
BUSY_TIMEOUT_SECONDS = 30.0


class Database:
    """SQLite database service with schema management.

    One instance owns one connection; give each worker thread its own instance.
    """

    def __init__(self, db_path: str = "data/versionwatch.db") -> None:
        self.db_path = db_path
        self._ensure_directory()
        self._connection: sqlite3.Connection | None = None

    def _ensure_directory(self) -> None:
        """Ensure the parent directory of the database file exists."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    @property
    def connection(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._connection is None:
            self._connection = sqlite3.connect(self.db_path, timeout=BUSY_TIMEOUT_SECONDS)
            self._connection.row_factory = sqlite3.Row
            self._connection.execute("PRAGMA journal_mode=WAL")
            self._connection.execute("PRAGMA foreign_keys=ON")
        return self._connection

    @contextmanager
    def transaction(self, immediate: bool = False) -> Generator[sqlite3.Cursor, None, None]:
        """Context manager for database transactions.

        With immediate=True the write lock is taken up front (BEGIN IMMEDIATE),
        so read-then-write sequences cannot interleave with other writers.
        """
        conn = self.connection
        cursor = conn.cursor()
        if immediate:
            cursor.execute("BEGIN IMMEDIATE")
        try:
            yield cursor
            conn.commit()
        except BaseException:
            conn.rollback()
            raise

    def execute(self, sql: str, params: tuple[Any, ...] | dict[str, Any] = ()) -> sqlite3.Cursor:
        """Execute a single SQL statement."""
        return self.connection.execute(sql, params)

    def fetchone(
        self, sql: str, params: tuple[Any, ...] | dict[str, Any] = ()
    ) -> sqlite3.Row | None:
        """Execute and fetch one row."""
        cursor = self.execute(sql, params)
        return cursor.fetchone()

    def fetchall(
        self, sql: str, params: tuple[Any, ...] | dict[str, Any] = ()
    ) -> list[sqlite3.Row]:
        """Execute and fetch all rows."""
        cursor = self.execute(sql, params)
        return cursor.fetchall()

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def init_db(self) -> None:
        """Initialize database schema. Creates all tables and indexes."""
        logger.info("initializing_database", path=self.db_path)

        with self.transaction() as cursor:
            # jobs table
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    url TEXT NOT NULL,
                    schedule TEXT NOT NULL DEFAULT 'manual',
                    status TEXT NOT NULL DEFAULT 'active',
                    created_at TEXT NOT NULL
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_jobs_created_at ON jobs(created_at)")

            # runs table
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    finished_at TEXT,
                    timeout_at TEXT NOT NULL,
                    analysis_status TEXT NOT NULL DEFAULT 'pending',
                    analysis_score REAL,
                    analysis_label TEXT,
                    failure_reason TEXT,
                    failure_detail TEXT,
                    snapshot_version INTEGER,
                    FOREIGN KEY (job_id) REFERENCES jobs(id) ON DELETE CASCADE
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_runs_job_id ON runs(job_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_runs_status ON runs(status)")

            # version_counters table: the only contended row per (job, url)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS version_counters (
                    job_id INTEGER NOT NULL,
                    url TEXT NOT NULL,
                    last_version INTEGER NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (job_id, url),
                    FOREIGN KEY (job_id) REFERENCES jobs(id) ON DELETE CASCADE
                )
            """)

            # snapshots table
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS snapshots (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id INTEGER NOT NULL,
                    url TEXT NOT NULL,
                    run_id INTEGER,
                    version INTEGER NOT NULL CHECK (version > 0),
                    raw_content TEXT NOT NULL,
                    title TEXT NOT NULL DEFAULT '',
                    description TEXT,
                    text_content TEXT NOT NULL DEFAULT '',
                    links TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (job_id) REFERENCES jobs(id) ON DELETE CASCADE,
                    FOREIGN KEY (run_id) REFERENCES runs(id) ON DELETE SET NULL,
                    UNIQUE(job_id, url, version),
                    UNIQUE(run_id)
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_snapshots_job_id ON snapshots(job_id)")

            # change_records table
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS change_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id INTEGER NOT NULL,
                    url TEXT NOT NULL,
                    run_id INTEGER,
                    previous_version INTEGER NOT NULL,
                    current_version INTEGER NOT NULL,
                    change_score REAL NOT NULL,
                    change_label TEXT NOT NULL,
                    scoring_policy TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (job_id) REFERENCES jobs(id) ON DELETE CASCADE,
                    FOREIGN KEY (run_id) REFERENCES runs(id) ON DELETE SET NULL,
                    UNIQUE(job_id, url, current_version)
                )
            """)
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_change_records_job_id ON change_records(job_id)"
            )

            # processing_errors table
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS processing_errors (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    entity_type TEXT NOT NULL,
                    entity_id INTEGER,
                    error_type TEXT NOT NULL,
                    error_message TEXT NOT NULL,
                    retry_count INTEGER DEFAULT 0,
                    occurred_at TEXT NOT NULL
                )
            """)

        self.init_broker_schema()
        logger.info("database_initialized", path=self.db_path)

    def init_broker_schema(self) -> None:
        """Create the durable queue tables used by the message broker."""
        with self.transaction() as cursor:
            # queues table
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS queues (
                    name TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL
                )
            """)

            # queue_bindings table: fanout topic -> subscriber queues
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS queue_bindings (
                    topic TEXT NOT NULL,
                    queue TEXT NOT NULL,
                    PRIMARY KEY (topic, queue),
                    FOREIGN KEY (queue) REFERENCES queues(name) ON DELETE CASCADE
                )
            """)

            # queue_messages table; times are epoch seconds
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS queue_messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    queue TEXT NOT NULL,
                    body TEXT NOT NULL,
                    state TEXT NOT NULL DEFAULT 'ready',
                    attempt INTEGER NOT NULL DEFAULT 0,
                    available_at REAL NOT NULL,
                    lease_expires_at REAL,
                    dead_letter_reason TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (queue) REFERENCES queues(name) ON DELETE CASCADE
                )
            """)
            cursor.execute(
                """CREATE INDEX IF NOT EXISTS idx_queue_messages_lookup
                   ON queue_messages(queue, state, available_at)"""
            )
