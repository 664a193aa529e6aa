"""Shared test fixtures for versionwatch."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from versionwatch.domains.monitoring.core.errors import TransientFetchError
from versionwatch.domains.monitoring.repositories.job_repository import JobRepository
from versionwatch.domains.monitoring.repositories.run_repository import RunRepository
from versionwatch.models.config import Config
from versionwatch.models.job import Job
from versionwatch.models.run import Run
from versionwatch.services.database import Database
from versionwatch.services.message_broker import SqliteMessageBroker
from versionwatch.services.protocols import FetchResult

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from pathlib import Path


class FakeFetcher:
    """Content fetcher returning canned pages.

    Each URL maps to a list of responses served in order; the last one
    repeats. A response is either page content or an exception to raise.
    """

    def __init__(self, pages: dict[str, list[str | Exception]] | None = None) -> None:
        self.pages: dict[str, list[str | Exception]] = pages or {}
        self.calls: list[str] = []

    def set_page(self, url: str, *responses: str | Exception) -> None:
        self.pages[url] = list(responses)

    def fetch(self, url: str) -> FetchResult:
        self.calls.append(url)
        responses = self.pages.get(url)
        if not responses:
            raise TransientFetchError(f"no canned response for {url}")
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, Exception):
            raise response
        return FetchResult(url=url, content=response, status_code=200, content_type="text/html")


def _page(title: str, body: str, description: str | None = None, links: str = "") -> str:
    """Build a small HTML document."""
    meta = f'<meta name="description" content="{description}">' if description else ""
    return (
        f"<html><head><title>{title}</title>{meta}</head>"
        f"<body><p>{body}</p>{links}</body></html>"
    )


@pytest.fixture
def tmp_db_path(tmp_path: Path) -> str:
    """Provide a temporary database file path."""
    return str(tmp_path / "test.db")


@pytest.fixture
def db(tmp_db_path: str) -> Iterator[Database]:
    """Provide an initialized temporary database."""
    database = Database(db_path=tmp_db_path)
    database.init_db()
    yield database
    database.close()


@pytest.fixture
def broker(db: Database, tmp_db_path: str) -> Iterator[SqliteMessageBroker]:
    """Broker sharing the temporary database file."""
    with SqliteMessageBroker(tmp_db_path, visibility_timeout=60) as message_broker:
        yield message_broker


@pytest.fixture
def config(tmp_db_path: str) -> Config:
    """Settings pointing at the temporary database, with no retry delays."""
    return Config(
        database_path=tmp_db_path,
        max_delivery_attempts=3,
        retry_base_delay_seconds=0.0,
        poll_interval_seconds=0.01,
        workers_per_stage=1,
    )


@pytest.fixture
def job(db: Database) -> Job:
    """A persisted job tracking https://example.com/page."""
    return JobRepository(db).create_job(Job(name="Example", url="https://example.com/page"))


@pytest.fixture
def run(db: Database, job: Job) -> Run:
    """A persisted pending run for `job` with a five minute deadline."""
    return RunRepository(db).create_run(Run.start(job.id or 0, timedelta(minutes=5)))


@pytest.fixture
def expired_run(db: Database, job: Job) -> Run:
    """A persisted pending run whose deadline has already passed."""
    started = datetime.now(UTC) - timedelta(minutes=10)
    return RunRepository(db).create_run(
        Run(job_id=job.id or 0, started_at=started, timeout_at=started + timedelta(minutes=1))
    )


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def make_page() -> Callable[..., str]:
    """Factory for small HTML pages: make_page(title, body, description=None, links="")."""
    return _page
