"""Generic consumer loop: receive, validate, dispatch, then ack, nack or dead-letter."""

from __future__ import annotations

import sqlite3
import threading
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError

from versionwatch.domains.monitoring.core.errors import (
    AlreadyFinalizedError,
    MalformedMessageError,
    PipelineError,
    RunFailure,
    RunNotFoundError,
    StoreWriteError,
    TransientFetchError,
)
from versionwatch.models.messages import parse_message, recover_job_id, recover_run_id
from versionwatch.models.run import FailureReason
from versionwatch.utils.progress import ProgressTracker

if TYPE_CHECKING:
    from versionwatch.domains.monitoring.services.pipeline_stage import PipelineStage
    from versionwatch.models.messages import PipelineMessage
    from versionwatch.services.protocols import Delivery, MessageBrokerProtocol

logger = structlog.get_logger(__name__)


class Outcome(StrEnum):
    """How a single delivery was resolved."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"  # run finalized as FAILED, message acked
    SKIPPED = "skipped"  # run already terminal, message acked
    REQUEUED = "requeued"
    DEAD_LETTERED = "dead_lettered"


def backoff_delay(attempt: int, base_delay: float, max_delay: float = 300.0) -> float:
    """Exponential redelivery delay: base, 2*base, 4*base, ... capped."""
    return min(base_delay * (2 ** max(attempt - 1, 0)), max_delay)


class StageWorker:
    """Drive one stage from its queue.

    The handler's writes and its downstream publish happen before the ack,
    so a crash mid-handler leaves the message to be redelivered once its
    lease expires. A worker never dies on a bad message.
    """

    def __init__(
        self,
        stage: PipelineStage,
        broker: MessageBrokerProtocol,
        max_delivery_attempts: int = 3,
        retry_base_delay: float = 2.0,
        poll_interval: float = 1.0,
    ) -> None:
        self.stage = stage
        self.broker = broker
        self.max_delivery_attempts = max_delivery_attempts
        self.retry_base_delay = retry_base_delay
        self.poll_interval = poll_interval

    def run(
        self,
        drain: bool = False,
        stop_event: threading.Event | None = None,
    ) -> ProgressTracker:
        """Consume until the queue is empty (drain) or `stop_event` is set.

        An error escaping `process_one` (the broker or database failing
        outside a handler) is logged and backed off from; the delivery in
        flight is redelivered once its lease expires. In drain mode the loop
        gives up after `max_delivery_attempts` such errors in a row.
        """
        stop_event = stop_event or threading.Event()
        progress = ProgressTracker(label=self.stage.name)
        errors_in_row = 0
        while not stop_event.is_set():
            try:
                outcome = self.process_one()
            except Exception as exc:
                errors_in_row += 1
                logger.exception(
                    "stage_worker_iteration_failed",
                    stage=self.stage.name,
                    consecutive_errors=errors_in_row,
                    error=str(exc),
                )
                progress.record_failure(f"{self.stage.name}:{type(exc).__name__}")
                if drain and errors_in_row >= self.max_delivery_attempts:
                    break
                stop_event.wait(backoff_delay(errors_in_row, self.poll_interval))
                continue
            errors_in_row = 0
            if outcome is None:
                if drain:
                    break
                stop_event.wait(self.poll_interval)
                continue
            if outcome == Outcome.SUCCEEDED:
                progress.record_success()
            elif outcome == Outcome.REQUEUED:
                progress.record_requeue()
            elif outcome == Outcome.SKIPPED:
                progress.record_skip()
            else:
                progress.record_failure(f"{self.stage.name}:{outcome.value}")
            progress.log_progress()
        return progress

    def process_one(self) -> Outcome | None:
        """Handle at most one delivery. Returns None when nothing was available."""
        delivery = self.broker.receive(self.stage.queue)
        if delivery is None:
            return None

        log = logger.bind(
            stage=self.stage.name,
            queue=delivery.queue,
            delivery_id=delivery.delivery_id,
            attempt=delivery.attempt,
        )

        try:
            message = self._validate(delivery)
        except MalformedMessageError as exc:
            return self._reject_malformed(delivery, str(exc))

        log = log.bind(job_id=message.job_id, run_id=message.run_id)
        try:
            self.stage.handle(message)
        except AlreadyFinalizedError as exc:
            log.info("message_for_terminal_run", detail=str(exc))
            self.broker.ack(delivery)
            return Outcome.SKIPPED
        except TransientFetchError as exc:
            if delivery.attempt < self.max_delivery_attempts:
                delay = backoff_delay(delivery.attempt, self.retry_base_delay)
                log.warning("transient_failure_requeued", error=str(exc), delay=delay)
                self.broker.nack(delivery, requeue=True, delay=delay)
                return Outcome.REQUEUED
            log.error("transient_failure_exhausted", error=str(exc))
            return self._fail(delivery, message, FailureReason.FETCH_ERROR, str(exc))
        except RunFailure as exc:
            log.warning("run_failure", reason=exc.reason.value, error=str(exc))
            return self._fail(delivery, message, exc.reason, str(exc))
        except StoreWriteError as exc:
            return self._retry_store_write(delivery, message.run_id, str(exc))
        except sqlite3.Error as exc:
            # Repository reads raise sqlite3 errors unwrapped
            detail = f"{type(exc).__name__}: {exc}"
            return self._retry_store_write(delivery, message.run_id, detail)
        except RunNotFoundError as exc:
            self._record(message.run_id, "RunNotFoundError", str(exc), delivery.attempt)
            self.broker.dead_letter(delivery, str(exc))
            return Outcome.DEAD_LETTERED
        except MalformedMessageError as exc:
            # The named run belongs to another job; leave it alone
            return self._reject_malformed(delivery, str(exc), fail_named_run=False)
        except Exception as exc:
            log.exception("stage_handler_crashed", error=str(exc))
            detail = f"{type(exc).__name__}: {exc}"
            return self._fail(delivery, message, self.stage.failure_reason, detail)

        self.broker.ack(delivery)
        return Outcome.SUCCEEDED

    def _validate(self, delivery: Delivery) -> PipelineMessage:
        try:
            message = parse_message(delivery.body)
        except ValidationError as exc:
            errors = "; ".join(
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                for error in exc.errors()
            )
            raise MalformedMessageError(errors or str(exc)) from exc
        if message.type != self.stage.message_type:
            msg = f"Queue {self.stage.queue} does not accept {message.type} messages"
            raise MalformedMessageError(msg)
        return message

    def _fail(
        self,
        delivery: Delivery,
        message: PipelineMessage,
        reason: FailureReason,
        detail: str,
    ) -> Outcome:
        """Finalize the run as FAILED and ack."""
        run_id = message.run_id
        try:
            self.stage.fail_run(run_id, reason, detail, job_id=message.job_id)
        except StoreWriteError as exc:
            return self._retry_store_write(delivery, run_id, str(exc))
        except sqlite3.Error as exc:
            return self._retry_store_write(delivery, run_id, f"{type(exc).__name__}: {exc}")
        except RunNotFoundError as exc:
            self.broker.dead_letter(delivery, str(exc))
            return Outcome.DEAD_LETTERED
        self._record(run_id, reason.value, detail, delivery.attempt)
        self.broker.ack(delivery)
        return Outcome.FAILED

    def _retry_store_write(self, delivery: Delivery, run_id: int | None, detail: str) -> Outcome:
        """Nothing durable changed: redeliver while attempts remain."""
        if delivery.attempt < self.max_delivery_attempts:
            logger.warning(
                "store_write_failed_requeued",
                stage=self.stage.name,
                run_id=run_id,
                attempt=delivery.attempt,
                error=detail,
            )
            self.broker.nack(
                delivery,
                requeue=True,
                delay=backoff_delay(delivery.attempt, self.retry_base_delay),
            )
            return Outcome.REQUEUED
        self._record(run_id, "StoreWriteError", detail, delivery.attempt)
        self.broker.dead_letter(delivery, f"store write failed: {detail}")
        return Outcome.DEAD_LETTERED

    def _reject_malformed(
        self, delivery: Delivery, detail: str, fail_named_run: bool = True
    ) -> Outcome:
        """Dead-letter a payload that failed validation, failing its run if one is named.

        A run whose job differs from the payload's `jobId` is not failed.
        """
        run_id = recover_run_id(delivery.body)
        if run_id is not None and fail_named_run:
            try:
                self.stage.fail_run(
                    run_id,
                    FailureReason.MALFORMED_MESSAGE,
                    detail,
                    job_id=recover_job_id(delivery.body),
                )
            except (PipelineError, sqlite3.Error) as exc:
                logger.warning(
                    "malformed_message_run_not_failed",
                    stage=self.stage.name,
                    run_id=run_id,
                    error=str(exc),
                )
        self._record(run_id, "MalformedMessageError", detail, delivery.attempt)
        self.broker.dead_letter(delivery, f"malformed message: {detail}")
        return Outcome.DEAD_LETTERED

    def _record(self, run_id: int | None, error_type: str, detail: str, attempt: int) -> None:
        try:
            self.stage.record_error(run_id, error_type, detail, attempt)
        except Exception as exc:
            logger.warning("processing_error_not_recorded", run_id=run_id, error=str(exc))
