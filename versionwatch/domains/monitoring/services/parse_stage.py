"""Parse stage: raw-content -> versioned snapshot -> snapshot-ready."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from versionwatch.domains.monitoring.core.facet_extraction import extract_facets
from versionwatch.domains.monitoring.repositories.snapshot_repository import SnapshotRepository
from versionwatch.domains.monitoring.services.pipeline_stage import (
    CONTENT_QUEUE,
    SNAPSHOT_TOPIC,
    PipelineStage,
)
from versionwatch.models.messages import RAW_CONTENT, SnapshotReadyMessage
from versionwatch.models.run import FailureReason

if TYPE_CHECKING:
    from versionwatch.models.messages import RawContentMessage
    from versionwatch.services.database import Database
    from versionwatch.services.protocols import MessageBrokerProtocol

logger = structlog.get_logger(__name__)


class ParseStage(PipelineStage):
    """Extract facets, store the next version, announce it.

    A run produces at most one snapshot. When a redelivered message finds
    the run's snapshot already stored, the announcement is repeated and no
    new version is allocated.
    """

    name = "parse"
    queue = CONTENT_QUEUE
    message_type = RAW_CONTENT
    failure_reason = FailureReason.PARSE_ERROR

    def __init__(self, db: Database, broker: MessageBrokerProtocol) -> None:
        super().__init__(db, broker)
        self.snapshots = SnapshotRepository(db)

    def handle(self, message: RawContentMessage) -> None:  # type: ignore[override]
        run = self.load_active_run(message)
        run_id = run.id or message.run_id

        snapshot = self.snapshots.get_snapshot_for_run(run_id)
        if snapshot is None:
            facets = extract_facets(message.content)
            snapshot = self.snapshots.create_snapshot(
                job_id=message.job_id,
                url=message.url,
                raw_content=message.content,
                facets=facets,
                run_id=run_id,
            )
        else:
            logger.info(
                "snapshot_already_stored",
                job_id=message.job_id,
                run_id=run_id,
                version=snapshot.version,
            )

        # Only announced once the snapshot is committed
        self.broker.publish(
            SNAPSHOT_TOPIC,
            SnapshotReadyMessage(
                job_id=message.job_id,
                run_id=run_id,
                url=message.url,
                version=snapshot.version,
                snapshot_id=snapshot.id or 0,
            ).to_body(),
        )
        logger.info(
            "parse_stage_completed",
            job_id=message.job_id,
            run_id=run_id,
            version=snapshot.version,
        )
