"""
Tests for event envelopes, publishing and the batch consumers.
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from transitnexus.canonical.entities import (
    EntityKind, RealtimeJourney, ServiceAlert, ServiceAlertType, Stop,
)
from transitnexus.data.queue import QueueBroker
from transitnexus.errors import ParseError
from transitnexus.events.consumer import EventsBatchConsumer, RealtimeBatchConsumer
from transitnexus.events.envelope import Event, EventType, decode_entity, encode_entity
from transitnexus.events.publisher import EventPublisher

NOW = datetime(2024, 3, 4, 8, 30, tzinfo=timezone.utc)


def alert(identifier="GB:SERVICEALERT:1", title="Line Suspended", modified=NOW):
    return ServiceAlert(
        primary_identifier=identifier,
        alert_type=ServiceAlertType.SERVICE_SUSPENDED,
        title=title,
        text="Suspended due to a fault on the line",
        matched_identifiers=["gb-svc-1"],
        modification_datetime=modified,
    )


def realtime(identifier="rt-1", modified=NOW, **kwargs):
    return RealtimeJourney(primary_identifier=identifier, journey_ref="j1", modification_datetime=modified, **kwargs)


class TestEnvelope:
    def test_wire_format(self):
        payload = Event(type=EventType.SERVICE_ALERT_CREATED, body=alert(), timestamp=NOW).encode()
        data = json.loads(payload)

        assert set(data) == {"Type", "Timestamp", "Body"}
        assert data["Type"] == "ServiceAlertCreated"
        assert data["Body"]["title"] == "Line Suspended"

    def test_body_decoded_by_type(self):
        encoded = Event(type=EventType.SERVICE_ALERT_UPDATED, body=alert(), timestamp=NOW).encode()
        event = Event.decode(encoded)

        assert event.type == EventType.SERVICE_ALERT_UPDATED
        assert isinstance(event.body, ServiceAlert)
        assert event.body.alert_type == ServiceAlertType.SERVICE_SUSPENDED
        assert event.timestamp == NOW

    def test_realtime_journey_event(self):
        encoded = Event(type=EventType.REALTIME_JOURNEY_CANCELLED, body=realtime(cancelled=True)).encode()
        event = Event.decode(encoded)

        assert isinstance(event.body, RealtimeJourney)
        assert event.body.cancelled

    def test_untyped_body_kept_raw(self):
        encoded = Event(type=EventType.DATASET_IMPORTED, body={"Dataset": "gb-dft-naptan"}).encode()
        assert Event.decode(encoded).body == {"Dataset": "gb-dft-naptan"}

    @pytest.mark.parametrize("payload", [b"not json", b'{"Type": "Unknown", "Body": {}}', b'{"Body": {}}'])
    def test_malformed(self, payload):
        with pytest.raises(ParseError):
            Event.decode(payload)

    def test_entity_message(self):
        kind, entity = decode_entity(encode_entity(EntityKind.REALTIME_JOURNEY, realtime()))

        assert kind == EntityKind.REALTIME_JOURNEY
        assert entity.journey_ref == "j1"

    def test_malformed_entity_message(self):
        with pytest.raises(ParseError):
            decode_entity(b'{"Kind": "realtime_journey", "Body": {}}')


class TestEventPublisher:
    def test_publish_to_events_queue(self, broker):
        queue = QueueBroker(broker)
        publisher = EventPublisher(queue)

        publisher.publish(Event(type=EventType.SERVICE_ALERT_CREATED, body=alert()))

        batch = queue.pull_batch(publisher.events_queue, size=10, timeout=0)
        assert Event.decode(batch.payloads()[0]).body.title == "Line Suspended"

    def test_entities_published_individually(self, broker):
        queue = QueueBroker(broker)
        publisher = EventPublisher(queue)

        published = publisher.publish_entities(EntityKind.REALTIME_JOURNEY, [realtime("rt-1"), realtime("rt-2")])

        assert published == 2
        assert queue.ready_count(publisher.realtime_queue) == 2


class TestEventsBatchConsumer:
    def test_alerts_stored(self, store):
        payloads = [
            Event(type=EventType.SERVICE_ALERT_CREATED, body=alert()).encode(),
            Event(type=EventType.DATASET_IMPORTED, body={"Dataset": "x"}).encode(),
            b"garbage",
        ]

        EventsBatchConsumer(store).consume(payloads)

        assert store.get(EntityKind.SERVICE_ALERT, "GB:SERVICEALERT:1").title == "Line Suspended"

    def test_without_store(self):
        EventsBatchConsumer().consume([Event(type=EventType.SERVICE_ALERT_CREATED, body=alert()).encode()])


class TestRealtimeBatchConsumer:
    def test_folds_realtime_and_alerts(self, store):
        payloads = [
            encode_entity(EntityKind.REALTIME_JOURNEY, realtime("rt-1")),
            encode_entity(EntityKind.SERVICE_ALERT, alert()),
            encode_entity(EntityKind.STOP, Stop(primary_identifier="ignored")),
            b"garbage",
        ]

        RealtimeBatchConsumer(store).consume(payloads)

        assert store.latest_realtime_journey("j1").primary_identifier == "rt-1"
        assert store.get(EntityKind.SERVICE_ALERT, "GB:SERVICEALERT:1") is not None
        assert store.count(EntityKind.STOP) == 0

    def test_newest_version_in_batch_wins(self):
        store = Mock()
        payloads = [
            encode_entity(EntityKind.REALTIME_JOURNEY, realtime("rt-1", modified=NOW, vehicle_ref="newest")),
            encode_entity(EntityKind.REALTIME_JOURNEY, realtime("rt-1", modified=NOW - timedelta(minutes=1), vehicle_ref="older")),
        ]

        RealtimeBatchConsumer(store).consume(payloads)

        kind, entities = store.upsert.call_args.args
        assert kind == EntityKind.REALTIME_JOURNEY
        assert [e.vehicle_ref for e in entities] == ["newest"]

    def test_undated_records_dated_on_receipt(self, store):
        before = datetime.now(timezone.utc)

        RealtimeBatchConsumer(store).consume([
            encode_entity(EntityKind.REALTIME_JOURNEY, realtime("rt-1", modified=None)),
        ])

        stored = store.latest_realtime_journey("j1")
        assert stored.primary_identifier == "rt-1"
        assert stored.modification_datetime >= before
