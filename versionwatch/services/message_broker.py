"""Durable message broker backed by SQLite tables.

Delivery is at-least-once. A received message is leased for
`visibility_timeout` seconds; if it is neither acked nor nacked before the
lease runs out it becomes receivable again with its attempt counter bumped.
Publishing to a topic copies the body into every queue bound to it.

A `sqlite3.Error` from any delivery operation surfaces as `StoreWriteError`,
the same as a failed repository write.
"""

from __future__ import annotations

import json
import sqlite3
import time
from datetime import UTC, datetime
from typing import Any

import structlog

from versionwatch.domains.monitoring.core.errors import StoreWriteError
from versionwatch.services.database import Database
from versionwatch.services.protocols import Delivery

logger = structlog.get_logger(__name__)

READY = "ready"
LEASED = "leased"
DEAD = "dead"


class UnknownDestinationError(Exception):
    """Publish target is neither a declared queue nor a bound topic."""


class SqliteMessageBroker:
    """Queue/topic broker over a SQLite file.

    One instance owns one connection; give each worker thread its own broker.
    Use it as a context manager so the connection is always closed.
    """

    def __init__(self, db_path: str, visibility_timeout: float = 60.0) -> None:
        self.db = Database(db_path=db_path)
        self.visibility_timeout = visibility_timeout
        self.db.init_broker_schema()

    def __enter__(self) -> SqliteMessageBroker:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying connection."""
        self.db.close()

    def declare_queue(self, name: str) -> None:
        """Create a queue if it does not exist yet."""
        now = datetime.now(UTC).isoformat()
        with self.db.transaction() as cursor:
            cursor.execute(
                """INSERT INTO queues (name, created_at) VALUES (?, ?)
                   ON CONFLICT (name) DO NOTHING""",
                (name, now),
            )

    def bind(self, topic: str, queue: str) -> None:
        """Subscribe a declared queue to a fanout topic."""
        self.declare_queue(queue)
        with self.db.transaction() as cursor:
            cursor.execute(
                """INSERT INTO queue_bindings (topic, queue) VALUES (?, ?)
                   ON CONFLICT (topic, queue) DO NOTHING""",
                (topic, queue),
            )

    def publish(self, destination: str, body: dict[str, Any]) -> int:
        """Enqueue a body on a queue, or on every queue bound to a topic.

        Returns the number of queue messages written.
        """
        payload = json.dumps(body)
        now = time.time()
        created_at = datetime.now(UTC).isoformat()
        try:
            with self.db.transaction() as cursor:
                targets = [
                    row["queue"]
                    for row in cursor.execute(
                        "SELECT queue FROM queue_bindings WHERE topic = ? ORDER BY queue",
                        (destination,),
                    ).fetchall()
                ]
                if not targets:
                    declared = cursor.execute(
                        "SELECT 1 FROM queues WHERE name = ?", (destination,)
                    ).fetchone()
                    if declared is None:
                        msg = f"Unknown destination: {destination}"
                        raise UnknownDestinationError(msg)
                    targets = [destination]
                cursor.executemany(
                    """INSERT INTO queue_messages
                       (queue, body, state, attempt, available_at, created_at)
                       VALUES (?, ?, ?, 0, ?, ?)""",
                    [(queue, payload, READY, now, created_at) for queue in targets],
                )
        except sqlite3.Error as exc:
            raise StoreWriteError(f"Failed to publish to {destination}: {exc}") from exc

        logger.debug("message_published", destination=destination, queues=targets)
        return len(targets)

    def receive(self, queue: str) -> Delivery | None:
        """Lease the oldest available message on a queue, or return None."""
        now = time.time()
        try:
            with self.db.transaction(immediate=True) as cursor:
                row = cursor.execute(
                    """SELECT id, body, attempt FROM queue_messages
                       WHERE queue = ?
                         AND ((state = ? AND available_at <= ?)
                              OR (state = ? AND lease_expires_at <= ?))
                       ORDER BY available_at, id
                       LIMIT 1""",
                    (queue, READY, now, LEASED, now),
                ).fetchone()
                if row is None:
                    return None
                attempt = row["attempt"] + 1
                cursor.execute(
                    """UPDATE queue_messages
                       SET state = ?, attempt = ?, lease_expires_at = ?
                       WHERE id = ?""",
                    (LEASED, attempt, now + self.visibility_timeout, row["id"]),
                )
        except sqlite3.Error as exc:
            raise StoreWriteError(f"Failed to lease a message from {queue}: {exc}") from exc

        try:
            body = json.loads(row["body"])
        except json.JSONDecodeError:
            body = {"_raw": row["body"]}
        return Delivery(delivery_id=row["id"], queue=queue, body=body, attempt=attempt)

    def ack(self, delivery: Delivery) -> None:
        """Remove a delivered message. A lease that was already taken over is left alone."""
        try:
            with self.db.transaction() as cursor:
                removed = cursor.execute(
                    "DELETE FROM queue_messages WHERE id = ? AND state = ? AND attempt = ?",
                    (delivery.delivery_id, LEASED, delivery.attempt),
                ).rowcount
        except sqlite3.Error as exc:
            raise StoreWriteError(f"Failed to ack message {delivery.delivery_id}: {exc}") from exc
        if not removed:
            logger.warning(
                "stale_ack_ignored",
                queue=delivery.queue,
                delivery_id=delivery.delivery_id,
                attempt=delivery.attempt,
            )

    def nack(self, delivery: Delivery, requeue: bool = True, delay: float = 0.0) -> None:
        """Return a message to its queue after `delay` seconds, or reject it."""
        if not requeue:
            self.dead_letter(delivery, "rejected")
            return
        try:
            with self.db.transaction() as cursor:
                cursor.execute(
                    """UPDATE queue_messages
                       SET state = ?, available_at = ?, lease_expires_at = NULL
                       WHERE id = ? AND state = ? AND attempt = ?""",
                    (
                        READY,
                        time.time() + max(delay, 0.0),
                        delivery.delivery_id,
                        LEASED,
                        delivery.attempt,
                    ),
                )
        except sqlite3.Error as exc:
            msg = f"Failed to requeue message {delivery.delivery_id}: {exc}"
            raise StoreWriteError(msg) from exc
        logger.debug(
            "message_requeued",
            queue=delivery.queue,
            delivery_id=delivery.delivery_id,
            attempt=delivery.attempt,
            delay=delay,
        )

    def dead_letter(self, delivery: Delivery, reason: str) -> None:
        """Park a message permanently; it is never delivered again."""
        try:
            with self.db.transaction() as cursor:
                cursor.execute(
                    """UPDATE queue_messages
                       SET state = ?, dead_letter_reason = ?, lease_expires_at = NULL
                       WHERE id = ?""",
                    (DEAD, reason[:2000], delivery.delivery_id),
                )
        except sqlite3.Error as exc:
            msg = f"Failed to dead-letter message {delivery.delivery_id}: {exc}"
            raise StoreWriteError(msg) from exc
        logger.warning(
            "message_dead_lettered",
            queue=delivery.queue,
            delivery_id=delivery.delivery_id,
            attempt=delivery.attempt,
            reason=reason,
        )

    def queue_depth(self, queue: str) -> dict[str, int]:
        """Count messages on a queue by state."""
        rows = self.db.fetchall(
            "SELECT state, COUNT(*) AS cnt FROM queue_messages WHERE queue = ? GROUP BY state",
            (queue,),
        )
        depth = {READY: 0, LEASED: 0, DEAD: 0}
        depth.update({row["state"]: row["cnt"] for row in rows})
        return depth

    def dead_letters(self, queue: str | None = None) -> list[dict[str, Any]]:
        """Dead-lettered messages, oldest first."""
        sql = """SELECT id, queue, body, attempt, dead_letter_reason
                 FROM queue_messages WHERE state = ?"""
        params: tuple[Any, ...] = (DEAD,)
        if queue is not None:
            sql += " AND queue = ?"
            params = (DEAD, queue)
        rows = self.db.fetchall(sql + " ORDER BY id", params)
        return [dict(row) for row in rows]

    def has_pending(self, queue: str) -> bool:
        """True while a queue holds messages that are ready or leased."""
        row = self.db.fetchone(
            "SELECT COUNT(*) AS cnt FROM queue_messages WHERE queue = ? AND state IN (?, ?)",
            (queue, READY, LEASED),
        )
        return bool(row and row["cnt"])

    def next_available_at(self, queues: list[str]) -> float | None:
        """Epoch seconds at which the next pending message on `queues` becomes receivable.

        Ready messages count from `available_at`, leased ones from the end of
        their lease. None when nothing is pending.
        """
        if not queues:
            return None
        placeholders = ", ".join("?" for _ in queues)
        row = self.db.fetchone(
            f"""SELECT MIN(CASE WHEN state = ? THEN available_at ELSE lease_expires_at END)
                   AS next_at
                FROM queue_messages
                WHERE queue IN ({placeholders}) AND state IN (?, ?)""",  # noqa: S608
            (READY, *queues, READY, LEASED),
        )
        if row is None or row["next_at"] is None:
            return None
        return float(row["next_at"])
