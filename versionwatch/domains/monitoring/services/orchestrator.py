"""Orchestrator: create jobs, start runs, expire overdue runs."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import structlog

from versionwatch.domains.monitoring.core.errors import (
    JobNotFoundError,
    JobNotRunnableError,
    StoreWriteError,
)
from versionwatch.domains.monitoring.core.run_lifecycle import fail
from versionwatch.domains.monitoring.repositories.job_repository import JobRepository
from versionwatch.domains.monitoring.repositories.run_repository import RunRepository
from versionwatch.domains.monitoring.services.pipeline_stage import FETCH_QUEUE, declare_topology
from versionwatch.models.job import Job, JobStatus
from versionwatch.models.messages import StartFetchMessage
from versionwatch.models.run import DEFAULT_RUN_TIMEOUT, FailureReason, Run
from versionwatch.utils.progress import ProgressTracker

if TYPE_CHECKING:
    from versionwatch.services.database import Database
    from versionwatch.services.protocols import MessageBrokerProtocol

logger = structlog.get_logger(__name__)


class Orchestrator:
    """Entry point that starts pipeline runs. Never calls a stage directly."""

    def __init__(
        self,
        db: Database,
        broker: MessageBrokerProtocol,
        run_timeout: timedelta = DEFAULT_RUN_TIMEOUT,
    ) -> None:
        self.db = db
        self.broker = broker
        self.run_timeout = run_timeout
        self.jobs = JobRepository(db)
        self.runs = RunRepository(db)
        declare_topology(broker)

    def create_job(self, name: str, url: str, schedule: str = "manual") -> Job:
        """Register a URL to track."""
        return self.jobs.create_job(Job(name=name, url=url, schedule=schedule))

    def get_job(self, job_id: int) -> Job:
        job = self.jobs.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    def list_jobs(self) -> list[Job]:
        return self.jobs.list_jobs()

    def pause_job(self, job_id: int) -> Job:
        self.get_job(job_id)
        self.jobs.update_status(job_id, JobStatus.PAUSED)
        return self.get_job(job_id)

    def resume_job(self, job_id: int) -> Job:
        self.get_job(job_id)
        self.jobs.update_status(job_id, JobStatus.ACTIVE)
        return self.get_job(job_id)

    def has_active_run(self, job_id: int) -> bool:
        """True while the job has a pending run."""
        return self.runs.has_active_run(job_id)

    def trigger_run(self, job_id: int, allow_concurrent: bool = False) -> Run:
        """Create a pending run and publish its start-fetch message.

        Refuses paused jobs, and jobs that already have a pending run unless
        `allow_concurrent` is set.
        """
        job = self.get_job(job_id)
        if job.status == JobStatus.PAUSED:
            raise JobNotRunnableError(f"Job {job_id} is paused")
        if not allow_concurrent and self.runs.has_active_run(job_id):
            raise JobNotRunnableError(f"Job {job_id} already has a pending run")

        run = self.runs.create_run(Run.start(job_id, self.run_timeout))
        self.broker.publish(
            FETCH_QUEUE,
            StartFetchMessage(job_id=job_id, run_id=run.id or 0, url=job.url).to_body(),
        )
        logger.info(
            "run_triggered",
            job_id=job_id,
            run_id=run.id,
            timeout_at=run.timeout_at.isoformat(),
        )
        return run

    def expire_overdue_runs(self, now: datetime | None = None) -> dict[str, Any]:
        """Fail every pending run whose deadline has passed.

        Catches runs no stage will ever look at again, e.g. because their
        message was dead-lettered.
        """
        now = now or datetime.now(UTC)
        pending = self.runs.get_pending_runs()
        tracker = ProgressTracker(label="expire_runs", total=len(pending))

        for run in pending:
            if not run.is_expired(now):
                tracker.record_skip()
                continue
            try:
                expired = fail(run, FailureReason.TIMEOUT, "expired by sweep", now)
                if self.runs.finalize(expired):
                    tracker.record_success()
                else:
                    tracker.record_skip()
            except StoreWriteError as exc:
                logger.error("run_expiry_failed", run_id=run.id, error=str(exc))
                tracker.record_failure(f"run {run.id}: {exc}")

        logger.info("overdue_runs_expired", expired=tracker.successful, checked=len(pending))
        return tracker.summary()
