"""Shared plumbing for pipeline stages: queue topology and run bookkeeping."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from versionwatch.domains.monitoring.core.errors import MalformedMessageError, RunNotFoundError
from versionwatch.domains.monitoring.core.run_lifecycle import fail, guard_active
from versionwatch.domains.monitoring.repositories.job_repository import JobRepository
from versionwatch.domains.monitoring.repositories.run_repository import RunRepository
from versionwatch.models.run import FailureReason

if TYPE_CHECKING:
    from versionwatch.models.messages import PipelineMessage
    from versionwatch.models.run import Run
    from versionwatch.services.database import Database
    from versionwatch.services.protocols import MessageBrokerProtocol

logger = structlog.get_logger(__name__)

FETCH_QUEUE = "fetch.start"
CONTENT_QUEUE = "content.raw"
SNAPSHOT_TOPIC = "snapshot.ready"
DETECT_QUEUE = "snapshot.detect"


def declare_topology(
    broker: MessageBrokerProtocol, extra_subscribers: list[str] | None = None
) -> None:
    """Declare the pipeline queues and bind the snapshot-ready fanout."""
    broker.declare_queue(FETCH_QUEUE)
    broker.declare_queue(CONTENT_QUEUE)
    broker.declare_queue(DETECT_QUEUE)
    broker.bind(SNAPSHOT_TOPIC, DETECT_QUEUE)
    for queue in extra_subscribers or []:
        broker.bind(SNAPSHOT_TOPIC, queue)


class PipelineStage:
    """Base class for a stateless stage consuming one queue.

    Subclasses implement `handle`. They raise the exceptions from
    `core.errors` and leave acking and finalizing failures to the worker.
    """

    name: str = "stage"
    queue: str = ""
    message_type: str = ""
    failure_reason: FailureReason = FailureReason.FETCH_ERROR

    def __init__(self, db: Database, broker: MessageBrokerProtocol) -> None:
        self.db = db
        self.broker = broker
        self.runs = RunRepository(db)
        self.jobs = JobRepository(db)

    def handle(self, message: PipelineMessage) -> None:
        raise NotImplementedError

    def now(self) -> datetime:
        return datetime.now(UTC)

    def load_active_run(self, message: PipelineMessage) -> Run:
        """Fetch the run a message refers to and check it may still change.

        Raises RunNotFoundError, MalformedMessageError (job mismatch),
        AlreadyFinalizedError or RunTimeoutError.
        """
        run = self.runs.get_run(message.run_id)
        if run is None:
            raise RunNotFoundError(f"Run {message.run_id} does not exist")
        if run.job_id != message.job_id:
            msg = f"Run {run.id} belongs to job {run.job_id}, message names job {message.job_id}"
            raise MalformedMessageError(msg)
        guard_active(run, self.now())
        return run

    def fail_run(
        self,
        run_id: int,
        reason: FailureReason,
        detail: str | None = None,
        job_id: int | None = None,
    ) -> bool:
        """Finalize a run as FAILED. Returns False if it was already terminal.

        With `job_id`, a run belonging to a different job is left untouched.
        """
        run = self.runs.get_run(run_id)
        if run is None:
            raise RunNotFoundError(f"Run {run_id} does not exist")
        if job_id is not None and run.job_id != job_id:
            logger.warning(
                "run_not_failed_job_mismatch",
                run_id=run_id,
                run_job_id=run.job_id,
                message_job_id=job_id,
            )
            return False
        if run.is_terminal:
            logger.info("run_already_terminal", run_id=run_id, status=run.status.value)
            return False
        return self.runs.finalize(fail(run, reason, detail, self.now()))

    def record_error(
        self, run_id: int | None, error_type: str, message: str, attempt: int = 0
    ) -> None:
        """Keep a processing_errors row for later inspection."""
        self.jobs.store_processing_error(
            entity_type=f"{self.name}_message",
            entity_id=run_id,
            error_type=error_type,
            error_message=message,
            retry_count=attempt,
        )
