"""Outcome counters for worker drains and maintenance sweeps."""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from versionwatch.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ProgressTracker:
    """Count how deliveries or runs were resolved.

    `label` names what is being processed (a stage, a sweep) and is attached
    to every progress log line. `total` is only known for sweeps; workers
    consuming an open-ended queue leave it unset.
    """

    label: str = "pipeline"
    total: int | None = None
    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    requeued: int = 0
    errors: list[str] = field(default_factory=list)
    started: float = field(default_factory=time.monotonic)

    def record_success(self) -> None:
        self.processed += 1
        self.successful += 1

    def record_failure(self, error: str) -> None:
        self.processed += 1
        self.failed += 1
        self.errors.append(error)

    def record_skip(self) -> None:
        self.processed += 1
        self.skipped += 1

    def record_requeue(self) -> None:
        """A delivery went back to its queue; it will be counted again when redelivered."""
        self.processed += 1
        self.requeued += 1

    def merge(self, other: ProgressTracker) -> None:
        """Add another tracker's counts to this one (e.g. one per worker thread)."""
        self.processed += other.processed
        self.successful += other.successful
        self.failed += other.failed
        self.skipped += other.skipped
        self.requeued += other.requeued
        self.errors.extend(other.errors)

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.started

    @property
    def per_second(self) -> float:
        elapsed = self.elapsed_seconds
        return self.processed / elapsed if elapsed > 0 else 0.0

    def log_progress(self, every_n: int = 10) -> None:
        """Emit a progress line every `every_n` items and when `total` is reached."""
        if self.processed == 0:
            return
        if self.processed % every_n and self.processed != self.total:
            return
        logger.info(
            "progress",
            label=self.label,
            processed=self.processed,
            total=self.total,
            successful=self.successful,
            failed=self.failed,
            skipped=self.skipped,
            requeued=self.requeued,
            per_second=round(self.per_second, 2),
        )

    def summary(self) -> dict[str, int | float | list[str]]:
        return {
            "processed": self.processed,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "requeued": self.requeued,
            "duration_seconds": round(self.elapsed_seconds, 2),
            "errors": self.errors,
        }
