"""
At-least-once job queues.

A popped delivery stays owned by the consumer until `ack`; `release`
hands it back for redelivery. The SQL queue also redelivers claims that
were never acked once their visibility timeout lapses, which covers a
worker crashing mid-job.
"""

import json
import threading
import time
from collections import deque
from dataclasses import dataclass
from itertools import count
from typing import Any, Dict, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .database import QueueMessage
from .errors import PersistenceError

BLOB_FETCH_QUEUE = "blob_fetch_jobs_queue"
BLOB_ARCHIVE_QUEUE = "blob_archive_jobs_queue"
BLOB_FETCH_DEAD_LETTER_QUEUE = "blob_fetch_dead_letter_queue"


@dataclass
class Delivery:
    queue: str
    payload: Dict[str, Any]
    receipt: int
    deliveries: int = 1


class InMemoryJobQueue:
    """Thread-safe in-process queue with blocking pop."""

    def __init__(self):
        self._cond = threading.Condition()
        self._queues: Dict[str, deque] = {}
        self._in_flight: Dict[int, Delivery] = {}
        self._ids = count(1)

    def push(self, queue: str, payload: Dict[str, Any]) -> None:
        # Round-trip through JSON so in-memory runs see what the SQL queue stores
        data = json.loads(json.dumps(payload))
        with self._cond:
            self._queues.setdefault(queue, deque()).append((next(self._ids), data, 0))
            self._cond.notify_all()

    def pop(self, queue: str, timeout: float = 1.0) -> Optional[Delivery]:
        deadline = time.monotonic() + timeout
        with self._cond:
            while not self._queues.get(queue):
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._cond.wait(remaining)
            receipt, data, deliveries = self._queues[queue].popleft()
            delivery = Delivery(queue=queue, payload=data, receipt=receipt, deliveries=deliveries + 1)
            self._in_flight[receipt] = delivery
            return delivery

    def ack(self, delivery: Delivery) -> None:
        with self._cond:
            self._in_flight.pop(delivery.receipt, None)

    def release(self, delivery: Delivery) -> None:
        with self._cond:
            if self._in_flight.pop(delivery.receipt, None) is None:
                return
            self._queues.setdefault(delivery.queue, deque()).appendleft(
                (delivery.receipt, delivery.payload, delivery.deliveries)
            )
            self._cond.notify_all()

    def size(self, queue: str) -> int:
        with self._cond:
            waiting = len(self._queues.get(queue, ()))
            in_flight = sum(1 for d in self._in_flight.values() if d.queue == queue)
            return waiting + in_flight


class SqlJobQueue:
    """Durable queue over the queue_messages table."""

    def __init__(
        self,
        session_factory: sessionmaker,
        visibility_timeout: float = 300.0,
        poll_interval: float = 0.5,
    ):
        self._session_factory = session_factory
        self.visibility_timeout = visibility_timeout
        self.poll_interval = poll_interval

    def push(self, queue: str, payload: Dict[str, Any]) -> None:
        try:
            with self._session_factory() as session:
                session.add(QueueMessage(queue=queue, payload=json.dumps(payload), visible_at=0.0))
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to enqueue onto {queue}: {e}") from e

    def pop(self, queue: str, timeout: float = 1.0) -> Optional[Delivery]:
        deadline = time.monotonic() + timeout
        while True:
            delivery = self._claim(queue)
            if delivery is not None:
                return delivery
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            time.sleep(min(self.poll_interval, remaining))

    def _claim(self, queue: str) -> Optional[Delivery]:
        now = time.time()
        try:
            with self._session_factory() as session:
                row = session.scalars(
                    select(QueueMessage)
                    .where(QueueMessage.queue == queue)
                    .where(QueueMessage.visible_at <= now)
                    .order_by(QueueMessage.id)
                    .limit(1)
                ).first()
                if row is None:
                    return None
                receipt, payload, deliveries, seen_at = row.id, row.payload, row.deliveries, row.visible_at
                # Conditional update so two consumers can't claim the same row
                claimed = session.execute(
                    update(QueueMessage)
                    .where(QueueMessage.id == receipt)
                    .where(QueueMessage.visible_at == seen_at)
                    .values(
                        visible_at=now + self.visibility_timeout,
                        deliveries=QueueMessage.deliveries + 1,
                    ),
                    execution_options={"synchronize_session": False},
                )
                session.commit()
                if claimed.rowcount != 1:
                    return None
                return Delivery(
                    queue=queue,
                    payload=json.loads(payload),
                    receipt=receipt,
                    deliveries=deliveries + 1,
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to dequeue from {queue}: {e}") from e

    def ack(self, delivery: Delivery) -> None:
        try:
            with self._session_factory() as session:
                row = session.get(QueueMessage, delivery.receipt)
                if row is not None:
                    session.delete(row)
                    session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to ack message {delivery.receipt}: {e}") from e

    def release(self, delivery: Delivery) -> None:
        try:
            with self._session_factory() as session:
                session.execute(
                    update(QueueMessage)
                    .where(QueueMessage.id == delivery.receipt)
                    .values(visible_at=0.0)
                )
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to release message {delivery.receipt}: {e}") from e

    def size(self, queue: str) -> int:
        with self._session_factory() as session:
            return session.scalar(
                select(func.count(QueueMessage.id)).where(QueueMessage.queue == queue)
            ) or 0
