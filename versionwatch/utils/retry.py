"""In-process retries for flaky I/O, built on tenacity."""

from __future__ import annotations

import functools
from typing import TYPE_CHECKING, ParamSpec, TypeVar

from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from versionwatch.domains.monitoring.core.errors import TransientFetchError
from versionwatch.utils.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

P = ParamSpec("P")
T = TypeVar("T")

logger = get_logger(__name__)

# requests' ConnectionError and Timeout subclass OSError
TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    TransientFetchError,
    ConnectionError,
    TimeoutError,
    OSError,
)


def _before_sleep(state: RetryCallState) -> None:
    error = state.outcome.exception() if state.outcome else None
    logger.warning(
        "retrying_after_transient_error",
        function=getattr(state.fn, "__qualname__", "unknown"),
        attempt=state.attempt_number,
        sleep_seconds=state.next_action.sleep if state.next_action else 0,
        error_type=type(error).__name__ if error else None,
        error=str(error) if error else None,
    )


def retry_with_logging(
    max_attempts: int = 3,
    min_wait: float = 2,
    max_wait: float = 10,
    retry_on: tuple[type[Exception], ...] = TRANSIENT_ERRORS,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Retry the decorated call on `retry_on` errors with exponential backoff.

    Waits grow from `min_wait` to at most `max_wait` seconds. Anything not in
    `retry_on` (for example `FetchFailedError`) propagates immediately, and
    the final error is re-raised unchanged once `max_attempts` is used up.
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        retrying = retry(
            retry=retry_if_exception_type(retry_on),
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(min=min_wait, max=max_wait),
            before_sleep=_before_sleep,
            reraise=True,
        )

        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return retrying(func)(*args, **kwargs)

        return wrapper

    return decorator
