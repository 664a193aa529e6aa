"""HTTP content fetcher built on requests."""

from __future__ import annotations

import requests
import structlog

from versionwatch.domains.monitoring.core.errors import FetchFailedError, TransientFetchError
from versionwatch.services.protocols import FetchResult
from versionwatch.utils.retry import retry_with_logging

logger = structlog.get_logger(__name__)

DEFAULT_USER_AGENT = "versionwatch/0.1"


def is_transient_status(status_code: int) -> bool:
    """429 and 5xx are worth retrying; other error statuses are not."""
    return status_code == 429 or status_code >= 500


class HttpContentFetcher:
    """Fetch raw page content over HTTP(S).

    Transient failures are retried in-process `max_attempts` times before
    TransientFetchError escapes to the caller, which can then requeue the
    message for another delivery.
    """

    def __init__(
        self,
        timeout: float = 30,
        user_agent: str = DEFAULT_USER_AGENT,
        max_attempts: int = 2,
        min_wait: float = 1,
        max_wait: float = 8,
        session: requests.Session | None = None,
    ) -> None:
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": user_agent})
        self._fetch_with_retry = retry_with_logging(
            max_attempts=max_attempts,
            min_wait=min_wait,
            max_wait=max_wait,
        )(self._fetch_once)

    def fetch(self, url: str) -> FetchResult:
        """Retrieve `url`.

        Raises:
            TransientFetchError: network error, timeout, 429 or 5xx after retries.
            FetchFailedError: any other non-2xx response or an unusable URL.
        """
        return self._fetch_with_retry(url)

    def _fetch_once(self, url: str) -> FetchResult:
        try:
            response = self.session.get(url, timeout=self.timeout, allow_redirects=True)
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise TransientFetchError(f"Request to {url} failed: {exc}") from exc
        except requests.RequestException as exc:
            raise FetchFailedError(f"Request to {url} could not be sent: {exc}") from exc

        status_code = response.status_code
        if is_transient_status(status_code):
            raise TransientFetchError(f"{url} returned HTTP {status_code}")
        if not 200 <= status_code < 300:
            raise FetchFailedError(f"{url} returned HTTP {status_code}")

        logger.info(
            "content_fetched",
            url=url,
            status_code=status_code,
            length=len(response.text),
        )
        return FetchResult(
            url=url,
            content=response.text,
            status_code=status_code,
            content_type=response.headers.get("Content-Type"),
        )

    def close(self) -> None:
        """Release pooled connections."""
        self.session.close()
