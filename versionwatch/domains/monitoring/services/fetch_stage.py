"""Fetch stage: start-fetch -> raw-content."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from versionwatch.domains.monitoring.core.run_lifecycle import ensure_within_deadline
from versionwatch.domains.monitoring.services.pipeline_stage import (
    CONTENT_QUEUE,
    FETCH_QUEUE,
    PipelineStage,
)
from versionwatch.models.messages import START_FETCH, RawContentMessage
from versionwatch.models.run import FailureReason

if TYPE_CHECKING:
    from versionwatch.models.messages import StartFetchMessage
    from versionwatch.services.database import Database
    from versionwatch.services.protocols import ContentFetcherProtocol, MessageBrokerProtocol

logger = structlog.get_logger(__name__)


class FetchStage(PipelineStage):
    """Retrieve raw content for a run and hand it to the parse stage.

    Publishes nothing on failure; the worker finalizes the run instead.
    """

    name = "fetch"
    queue = FETCH_QUEUE
    message_type = START_FETCH
    failure_reason = FailureReason.FETCH_ERROR

    def __init__(
        self,
        db: Database,
        broker: MessageBrokerProtocol,
        fetcher: ContentFetcherProtocol,
    ) -> None:
        super().__init__(db, broker)
        self.fetcher = fetcher

    def handle(self, message: StartFetchMessage) -> None:  # type: ignore[override]
        run = self.load_active_run(message)

        result = self.fetcher.fetch(message.url)

        # Fetching can take long enough to run past the deadline
        ensure_within_deadline(run, self.now())

        self.broker.publish(
            CONTENT_QUEUE,
            RawContentMessage(
                job_id=message.job_id,
                run_id=message.run_id,
                url=message.url,
                content=result.content,
            ).to_body(),
        )
        logger.info(
            "fetch_stage_completed",
            job_id=message.job_id,
            run_id=message.run_id,
            status_code=result.status_code,
            length=len(result.content),
        )
