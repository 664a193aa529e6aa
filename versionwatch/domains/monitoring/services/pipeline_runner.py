"""Start pools of stage workers.

Every worker thread opens its own database connection and broker, since
SQLite connections are not shared across threads.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import TYPE_CHECKING

import structlog

from versionwatch.domains.monitoring.services.change_detection_stage import ChangeDetectionStage
from versionwatch.domains.monitoring.services.fetch_stage import FetchStage
from versionwatch.domains.monitoring.services.parse_stage import ParseStage
from versionwatch.domains.monitoring.services.pipeline_stage import (
    CONTENT_QUEUE,
    DETECT_QUEUE,
    FETCH_QUEUE,
    declare_topology,
)
from versionwatch.services.database import Database
from versionwatch.services.http_fetcher import HttpContentFetcher
from versionwatch.services.message_broker import SqliteMessageBroker
from versionwatch.services.stage_worker import StageWorker
from versionwatch.utils.progress import ProgressTracker

if TYPE_CHECKING:
    from collections.abc import Callable

    from versionwatch.domains.monitoring.services.pipeline_stage import PipelineStage
    from versionwatch.models.config import Config
    from versionwatch.services.protocols import ContentFetcherProtocol, MessageBrokerProtocol

logger = structlog.get_logger(__name__)

STAGE_ORDER = ("fetch", "parse", "detect")
STAGE_QUEUES = {"fetch": FETCH_QUEUE, "parse": CONTENT_QUEUE, "detect": DETECT_QUEUE}


def default_fetcher_factory(config: Config) -> Callable[[], ContentFetcherProtocol]:
    """HTTP fetchers configured from settings."""

    def factory() -> ContentFetcherProtocol:
        return HttpContentFetcher(
            timeout=config.fetch_timeout_seconds,
            user_agent=config.user_agent,
            max_attempts=config.fetch_retry_attempts,
        )

    return factory


def build_stage(
    name: str,
    db: Database,
    broker: MessageBrokerProtocol,
    config: Config,
    fetcher_factory: Callable[[], ContentFetcherProtocol],
) -> PipelineStage:
    """Construct a stage by name."""
    if name == "fetch":
        return FetchStage(db, broker, fetcher_factory())
    if name == "parse":
        return ParseStage(db, broker)
    if name == "detect":
        return ChangeDetectionStage(db, broker, policy=config.scoring_policy())
    msg = f"Unknown stage: {name}. Expected one of {', '.join(STAGE_ORDER)}"
    raise ValueError(msg)


def _run_worker(
    name: str,
    config: Config,
    fetcher_factory: Callable[[], ContentFetcherProtocol],
    drain: bool,
    stop_event: threading.Event,
) -> ProgressTracker:
    with (
        Database(db_path=config.database_path) as db,
        SqliteMessageBroker(
            config.resolved_broker_path,
            visibility_timeout=config.visibility_timeout_seconds,
        ) as broker,
    ):
        stage = build_stage(name, db, broker, config, fetcher_factory)
        worker = StageWorker(
            stage,
            broker,
            max_delivery_attempts=config.max_delivery_attempts,
            retry_base_delay=config.retry_base_delay_seconds,
            poll_interval=config.poll_interval_seconds,
        )
        return worker.run(drain=drain, stop_event=stop_event)


def _run_pool(
    stages: list[str],
    config: Config,
    workers: int,
    fetcher_factory: Callable[[], ContentFetcherProtocol],
    drain: bool,
    stop_event: threading.Event,
) -> ProgressTracker:
    """Run `workers` threads per stage and merge their progress."""
    tracker = ProgressTracker()
    with ThreadPoolExecutor(max_workers=workers * len(stages)) as executor:
        futures = {
            executor.submit(_run_worker, name, config, fetcher_factory, drain, stop_event): name
            for name in stages
            for _ in range(workers)
        }
        try:
            for future in as_completed(futures):
                name = futures[future]
                try:
                    tracker.merge(future.result())
                except Exception as exc:
                    logger.error("stage_worker_stopped", stage=name, error=str(exc))
                    tracker.record_failure(f"{name}: {exc}")
        except KeyboardInterrupt:
            # Let the workers finish their current message before shutdown joins them
            stop_event.set()
            raise
    return tracker


def run_workers(
    config: Config,
    stages: list[str] | None = None,
    workers: int | None = None,
    drain: bool = False,
    fetcher_factory: Callable[[], ContentFetcherProtocol] | None = None,
    stop_event: threading.Event | None = None,
) -> dict[str, int | float | list[str]]:
    """Consume pipeline queues.

    With `drain`, stages are worked in pipeline order, each until its queue
    has nothing available, repeating until a full pass handles no message
    and no delayed or leased message is left on the selected queues.
    Otherwise all stages consume concurrently until `stop_event` is set.
    """
    selected = [name for name in STAGE_ORDER if name in (stages or STAGE_ORDER)]
    unknown = set(stages or []) - set(STAGE_ORDER)
    if unknown:
        msg = f"Unknown stage(s): {', '.join(sorted(unknown))}"
        raise ValueError(msg)
    workers = workers or config.workers_per_stage
    fetcher_factory = fetcher_factory or default_fetcher_factory(config)
    stop_event = stop_event or threading.Event()

    with SqliteMessageBroker(config.resolved_broker_path) as broker:
        declare_topology(broker)

    logger.info("stage_workers_starting", stages=selected, workers=workers, drain=drain)
    total = ProgressTracker()
    if not drain:
        total.merge(_run_pool(selected, config, workers, fetcher_factory, False, stop_event))
        return total.summary()

    queues = [STAGE_QUEUES[name] for name in selected]
    while not stop_event.is_set():
        round_tracker = ProgressTracker()
        for name in selected:
            round_tracker.merge(
                _run_pool([name], config, workers, fetcher_factory, True, stop_event)
            )
        total.merge(round_tracker)
        if round_tracker.processed:
            continue
        # Nothing receivable now; wait out delayed requeues and expiring leases
        with SqliteMessageBroker(config.resolved_broker_path) as broker:
            next_at = broker.next_available_at(queues)
        if next_at is None:
            break
        delay = max(next_at - time.time(), 0.0)
        logger.info("drain_waiting_for_pending", queues=queues, seconds=round(delay, 2))
        stop_event.wait(delay)

    summary = total.summary()
    logger.info(
        "stage_workers_drained",
        processed=summary["processed"],
        successful=summary["successful"],
        failed=summary["failed"],
    )
    return summary
