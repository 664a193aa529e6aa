"""Service protocols defining interfaces for dependency injection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class FetchResult:
    """Raw content retrieved for a URL."""

    url: str
    content: str
    status_code: int
    content_type: str | None = None


@dataclass(frozen=True)
class Delivery:
    """One leased delivery of a queued message.

    `attempt` starts at 1 and grows by one on every redelivery.
    """

    delivery_id: int
    queue: str
    body: dict[str, Any]
    attempt: int


class ContentFetcherProtocol(Protocol):
    """Protocol for content retrieval."""

    def fetch(self, url: str) -> FetchResult: ...


class MessageBrokerProtocol(Protocol):
    """Protocol for the durable message broker the stages talk through."""

    def declare_queue(self, name: str) -> None: ...

    def bind(self, topic: str, queue: str) -> None: ...

    def publish(self, destination: str, body: dict[str, Any]) -> int: ...

    def receive(self, queue: str) -> Delivery | None: ...

    def ack(self, delivery: Delivery) -> None: ...

    def nack(self, delivery: Delivery, requeue: bool = True, delay: float = 0.0) -> None: ...

    def dead_letter(self, delivery: Delivery, reason: str) -> None: ...

    def close(self) -> None: ...
