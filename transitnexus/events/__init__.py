"""
Event publishing and batch consumption.

Components:
    - envelope: event and realtime entity message formats
    - publisher: serializes events/entities onto queues
    - consumer: worker pool draining a queue in acknowledged batches
"""

from .envelope import Event, EventType, decode_entity, encode_entity
from .publisher import EventPublisher
from .consumer import QueueConsumer, EventsBatchConsumer, RealtimeBatchConsumer

__all__ = [
    'Event', 'EventType', 'decode_entity', 'encode_entity',
    'EventPublisher', 'QueueConsumer', 'EventsBatchConsumer', 'RealtimeBatchConsumer',
]
