"""
Batching queue consumers.

A QueueConsumer runs a fixed number of worker threads against one queue. Each
worker claims a batch, hands every payload to the batch consumer and then
acknowledges the whole batch. Batches never overlap between workers.

A batch that fails to consume stays claimed. A redelivery thread returns claims
older than the redelivery window to the queue so another worker retries them.
"""

import logging
import os
import threading
from collections import defaultdict
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from transitnexus.canonical.entities import EntityKind, ServiceAlert, utc_now
from transitnexus.config.config_main import queue_config
from transitnexus.data.queue import QueueBroker
from transitnexus.data.store import EntityStore
from transitnexus.errors import AckError, ParseError
from .envelope import Event, decode_entity

logger = logging.getLogger(__name__)


def terminate_process(error: Exception):
    """Default fatal handler: a failed acknowledgment ends the process."""
    logger.critical(f"Failed to consume from queue: {error}")
    logging.shutdown()
    os._exit(1)


class QueueConsumer:
    """Pool of worker threads draining one queue in batches."""

    def __init__(self, queue: QueueBroker, queue_name: str, batch_consumer,
                 number_consumers: int = queue_config.number_consumers,
                 batch_size: int = queue_config.batch_size,
                 poll_timeout: float = queue_config.poll_timeout,
                 redelivery_after: timedelta = timedelta(seconds=queue_config.redelivery_after_seconds),
                 on_fatal: Optional[Callable[[Exception], None]] = None):
        self.queue = queue
        self.queue_name = queue_name
        self.batch_consumer = batch_consumer
        self.number_consumers = number_consumers
        self.batch_size = batch_size
        self.poll_timeout = poll_timeout
        self.redelivery_after = redelivery_after
        self.on_fatal = on_fatal or terminate_process

        self._stop_event = threading.Event()
        self._workers: List[threading.Thread] = []
        self._redelivery: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return any(worker.is_alive() for worker in self._workers)

    def start(self):
        self._stop_event.clear()
        for worker_id in range(self.number_consumers):
            worker = threading.Thread(
                target=self._work,
                args=(worker_id,),
                name=f"{self.queue_name}-consumer-{worker_id}",
                daemon=True
            )
            self._workers.append(worker)
            worker.start()

        self._redelivery = threading.Thread(
            target=self._redeliver_stale,
            name=f"{self.queue_name}-redelivery",
            daemon=True
        )
        self._redelivery.start()
        logger.info(
            f"Started {self.number_consumers} consumers on {self.queue_name} "
            f"(batch size {self.batch_size}, timeout {self.poll_timeout}s)"
        )

    def stop_consuming(self):
        """Stop claiming new batches; in-flight batches still finish."""
        logger.info(f"Stopping consumers on {self.queue_name}")
        self._stop_event.set()

    def wait(self, timeout: Optional[float] = None):
        for worker in self._workers:
            worker.join(timeout)
        if self._redelivery is not None and not self.running:
            self._redelivery.join(timeout)

    def _redeliver_stale(self):
        """Return abandoned claims to the queue until consuming stops."""
        interval = max(self.redelivery_after.total_seconds() / 2, self.queue.poll_interval)
        while True:
            try:
                self.queue.return_stale_deliveries(self.queue_name, self.redelivery_after)
            except Exception as e:
                logger.error(f"Failed to return stale deliveries on {self.queue_name}: {e}", exc_info=True)
            if self._stop_event.wait(interval):
                return

    def _work(self, worker_id: int):
        while not self._stop_event.is_set():
            try:
                batch = self.queue.pull_batch(
                    self.queue_name, self.batch_size, self.poll_timeout, self._stop_event
                )
            except Exception as e:
                logger.error(f"Consumer {worker_id} failed to pull from {self.queue_name}: {e}", exc_info=True)
                self._stop_event.wait(self.poll_timeout)
                continue

            if batch is None:
                continue

            if not self.process_batch(batch):
                return

    def process_batch(self, batch) -> bool:
        """
        Consume and acknowledge one batch.

        Returns:
            False when the worker must stop because acknowledgment failed
        """
        try:
            self.batch_consumer.consume(batch.payloads())
        except Exception as e:
            logger.error(
                f"Batch {batch.delivery_tag} on {self.queue_name} failed, left for redelivery: {e}",
                exc_info=True
            )
            return True

        try:
            batch.ack()
        except AckError as e:
            self.on_fatal(e)
            return False

        return True


class EventsBatchConsumer:
    """Logs every event; alert events also write their ServiceAlert to the store."""

    def __init__(self, store: Optional[EntityStore] = None):
        self.store = store

    def consume(self, payloads: List[bytes]):
        alerts = []
        for payload in payloads:
            try:
                event = Event.decode(payload)
            except ParseError as e:
                logger.warning(f"Skipping undecodable event: {e}")
                continue

            logger.info(f"Event {event.type.value} at {event.timestamp}")
            if isinstance(event.body, ServiceAlert):
                alerts.append(event.body)

        if alerts and self.store is not None:
            self.store.upsert(EntityKind.SERVICE_ALERT, alerts)


class RealtimeBatchConsumer:
    """Folds queued realtime journeys and service alerts into the store."""

    FOLDED_KINDS = (EntityKind.REALTIME_JOURNEY, EntityKind.SERVICE_ALERT)

    def __init__(self, store: EntityStore):
        self.store = store

    def consume(self, payloads: List[bytes]):
        latest: Dict[EntityKind, Dict[str, object]] = defaultdict(dict)
        skipped = 0

        for payload in payloads:
            try:
                kind, entity = decode_entity(payload)
            except ParseError as e:
                logger.warning(f"Skipping undecodable realtime payload: {e}")
                skipped += 1
                continue

            if kind not in self.FOLDED_KINDS:
                logger.warning(f"Ignoring {kind.value} record on realtime queue")
                skipped += 1
                continue

            # Within a batch only the newest version of each record is kept
            current = latest[kind].get(entity.primary_identifier)
            if current is None or _is_newer(entity, current):
                latest[kind][entity.primary_identifier] = entity

        received = utc_now()
        for kind in self.FOLDED_KINDS:
            # Records sent without a modification time are dated on receipt
            for entity in latest[kind].values():
                if entity.modification_datetime is None:
                    entity.modification_datetime = received
            if latest[kind]:
                self.store.upsert(kind, latest[kind].values())

        if skipped:
            logger.info(f"Skipped {skipped} realtime payloads")


def _is_newer(candidate, current) -> bool:
    if candidate.modification_datetime is None:
        return False
    if current.modification_datetime is None:
        return True
    return candidate.modification_datetime >= current.modification_datetime
