"""
Durable message queue on top of the database.

Messages are opaque byte payloads. A consumer claims a batch of ready messages
under a fresh delivery tag (state becomes ``unacked``) and acknowledges the
batch by deleting exactly those messages. Claimed messages that are never
acknowledged are put back to ``ready`` by ``return_stale_deliveries``.
"""

import logging
import threading
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import select, update

from transitnexus.errors import AckError
from .db_broker import ConnectionBroker
from .models import QueueMessage

logger = logging.getLogger(__name__)

READY = 'ready'
UNACKED = 'unacked'


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Batch:
    """A set of claimed deliveries that must be acknowledged together."""

    def __init__(self, broker: "QueueBroker", queue_name: str, delivery_tag: str, messages: List[QueueMessage]):
        self.broker = broker
        self.queue_name = queue_name
        self.delivery_tag = delivery_tag
        self.message_ids = [m.id for m in messages]
        self._payloads = [m.payload for m in messages]

    def __len__(self):
        return len(self.message_ids)

    def payloads(self) -> List[bytes]:
        return list(self._payloads)

    def ack(self):
        self.broker.ack(self)


class QueueBroker:
    def __init__(self, broker: ConnectionBroker, poll_interval: float = 0.2):
        self.broker = broker
        self.poll_interval = poll_interval

    def publish(self, queue_name: str, payload: bytes) -> int:
        with self.broker.get_session() as session:
            message = QueueMessage(
                queue_name=queue_name,
                payload=payload,
                state=READY,
                published_at=_utc_now()
            )
            session.add(message)
            session.flush()
            return message.id

    def publish_many(self, queue_name: str, payloads) -> int:
        published = 0
        now = _utc_now()
        with self.broker.get_session() as session:
            for payload in payloads:
                session.add(QueueMessage(queue_name=queue_name, payload=payload, state=READY, published_at=now))
                published += 1
        return published

    def _claim(self, queue_name: str, delivery_tag: str, limit: int) -> int:
        candidates = select(QueueMessage.id).where(
            QueueMessage.queue_name == queue_name,
            QueueMessage.state == READY
        ).order_by(QueueMessage.id).limit(limit)

        with self.broker.get_session() as session:
            # Re-checking state keeps two consumers from claiming the same row
            result = session.execute(
                update(QueueMessage)
                .where(QueueMessage.id.in_(candidates.scalar_subquery()), QueueMessage.state == READY)
                .values(state=UNACKED, delivery_tag=delivery_tag, delivered_at=_utc_now())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    def pull_batch(self, queue_name: str, size: int, timeout: float,
                   stop_event: Optional[threading.Event] = None) -> Optional[Batch]:
        """
        Claim up to ``size`` messages, waiting at most ``timeout`` seconds to fill the batch.

        Returns:
            A Batch, or None when nothing arrived before the timeout
        """
        delivery_tag = uuid.uuid4().hex
        deadline = time.monotonic() + timeout
        claimed = 0

        while True:
            claimed += self._claim(queue_name, delivery_tag, size - claimed)
            remaining = deadline - time.monotonic()
            if claimed >= size or remaining <= 0:
                break
            if stop_event is not None and stop_event.is_set():
                break
            if stop_event is not None:
                stop_event.wait(min(self.poll_interval, remaining))
            else:
                time.sleep(min(self.poll_interval, remaining))

        if not claimed:
            return None

        with self.broker.get_session() as session:
            messages = session.query(QueueMessage).filter_by(
                delivery_tag=delivery_tag, state=UNACKED
            ).order_by(QueueMessage.id).all()
            return Batch(self, queue_name, delivery_tag, messages)

    def ack(self, batch: Batch):
        """
        Acknowledge every message of a batch in one transaction.

        Raises:
            AckError: any message of the batch is no longer held by it
        """
        try:
            with self.broker.get_session() as session:
                removed = session.query(QueueMessage).filter(
                    QueueMessage.id.in_(batch.message_ids),
                    QueueMessage.delivery_tag == batch.delivery_tag,
                    QueueMessage.state == UNACKED
                ).delete(synchronize_session=False)
                if removed != len(batch.message_ids):
                    raise AckError(
                        f"Acknowledged {removed} of {len(batch.message_ids)} messages "
                        f"for delivery {batch.delivery_tag} on {batch.queue_name}"
                    )
        except AckError:
            raise
        except Exception as e:
            raise AckError(f"Failed to acknowledge delivery {batch.delivery_tag}: {e}") from e

    def return_stale_deliveries(self, queue_name: str, older_than: timedelta) -> int:
        """Put messages claimed longer ago than ``older_than`` back to ready."""
        cutoff = _utc_now() - older_than
        with self.broker.get_session() as session:
            returned = session.query(QueueMessage).filter(
                QueueMessage.queue_name == queue_name,
                QueueMessage.state == UNACKED,
                QueueMessage.delivered_at < cutoff
            ).update(
                {QueueMessage.state: READY, QueueMessage.delivery_tag: None, QueueMessage.delivered_at: None},
                synchronize_session=False
            )
        if returned:
            logger.warning(f"Returned {returned} stale deliveries to {queue_name}")
        return returned

    def ready_count(self, queue_name: str) -> int:
        with self.broker.get_session() as session:
            return session.query(QueueMessage).filter_by(queue_name=queue_name, state=READY).count()
