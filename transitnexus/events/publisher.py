import logging

from transitnexus.canonical.entities import EntityKind
from transitnexus.config.config_main import queue_config
from transitnexus.data.queue import QueueBroker
from .envelope import Event, encode_entity

logger = logging.getLogger(__name__)


class EventPublisher:
    """Serializes events and realtime entities onto their queues."""

    def __init__(self, queue: QueueBroker, config=queue_config):
        self.queue = queue
        self.events_queue = config.events_queue
        self.realtime_queue = config.realtime_queue

    def publish(self, event: Event) -> int:
        message_id = self.queue.publish(self.events_queue, event.encode())
        logger.debug(f"Published {event.type.value} event as message {message_id}")
        return message_id

    def publish_entities(self, kind: EntityKind, entities) -> int:
        """Publish each entity as its own message."""
        published = self.queue.publish_many(
            self.realtime_queue, (encode_entity(kind, entity) for entity in entities)
        )
        logger.info(f"Queued {published} {EntityKind(kind).value} records for realtime processing")
        return published
