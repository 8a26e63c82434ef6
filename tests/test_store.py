"""
Tests for the entity store and schema.
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy import inspect

from conftest import make_journey, make_operator, make_service, make_stop
from transitnexus.canonical.entities import Association, EntityKind, RealtimeJourney, StopGroup
from transitnexus.data.store import to_column_time


class TestSchema:
    def test_tables_created(self, broker):
        tables = set(inspect(broker.get_engine()).get_table_names())

        for table in ('operators', 'stops', 'stop_platforms', 'services', 'journeys',
                      'journey_path_stops', 'realtime_journeys', 'service_alerts',
                      'cache_entries', 'queue_messages'):
            assert table in tables

    def test_reset_drops_data(self, broker, store):
        store.upsert(EntityKind.OPERATOR, [make_operator()])
        broker.create_tables(drop_existing=True)
        assert store.count(EntityKind.OPERATOR) == 0


class TestUpsert:
    def test_insert_and_get(self, store):
        written = store.upsert(EntityKind.SERVICE, [make_service()])

        assert written == 1
        service = store.get(EntityKind.SERVICE, "gb-svc-1")
        assert service.service_name == "1"
        assert service.routes == ["route-1"]

    def test_get_missing(self, store):
        assert store.get(EntityKind.SERVICE, "nope") is None

    def test_update_keeps_creation_time(self, store):
        created = datetime(2024, 1, 1, tzinfo=timezone.utc)
        first = make_operator(name="Old Name")
        first.creation_datetime = created
        store.upsert(EntityKind.OPERATOR, [first])

        second = make_operator(name="New Name")
        second.creation_datetime = created + timedelta(days=10)
        store.upsert(EntityKind.OPERATOR, [second])

        operator = store.get(EntityKind.OPERATOR, "gb-noc-TEST")
        assert operator.name == "New Name"
        assert operator.creation_datetime == created
        assert store.count(EntityKind.OPERATOR) == 1

    def test_same_identifier_twice_in_one_call(self, store):
        store.upsert(EntityKind.STOP, [make_stop("stop-a", name="First"), make_stop("stop-a", name="Second")])

        assert store.count(EntityKind.STOP) == 1
        assert store.get(EntityKind.STOP, "stop-a").primary_name == "Second"

    def test_exclude_projection(self, store):
        store.upsert(EntityKind.SERVICE, [make_service()])

        service = store.get(EntityKind.SERVICE, "gb-svc-1", exclude=("routes", "other_identifiers"))

        assert service.routes == []
        assert service.other_identifiers == []
        assert service.service_name == "1"


class TestLookups:
    def test_find_operator_by_alternate_identifier(self, store):
        store.upsert(EntityKind.OPERATOR, [make_operator(other_identifiers=["TEST", "gb-nocid-42"])])

        assert store.find_operator("gb-noc-TEST").name == "Test Buses"
        assert store.find_operator("gb-nocid-42").name == "Test Buses"
        assert store.find_operator("unknown") is None

    def test_find_stop_by_platform(self, store):
        store.upsert(EntityKind.STOP, [make_stop("station", platforms=["station-p1", "station-p2"])])

        assert store.find_stop("station").primary_identifier == "station"
        assert store.find_stop("station-p2").primary_identifier == "station"
        assert store.find_stop("elsewhere") is None

    def test_platforms_replaced_on_update(self, store):
        store.upsert(EntityKind.STOP, [make_stop("station", platforms=["old-platform"])])
        store.upsert(EntityKind.STOP, [make_stop("station", platforms=["new-platform"])])

        assert store.find_stop("old-platform") is None
        assert store.find_stop("new-platform").primary_identifier == "station"

    def test_find_journey_service_refs(self, store):
        store.upsert(EntityKind.JOURNEY, [
            make_journey("j1", service_ref="svc-1", stop_refs=("a", "b")),
            make_journey("j2", service_ref="svc-1", stop_refs=("b", "c")),
            make_journey("j3", service_ref="svc-2", stop_refs=("c", "d")),
            make_journey("j4", service_ref="svc-3", stop_refs=("x", "y")),
        ])

        refs = store.find_journey_service_refs(["b", "d"])

        assert sorted(refs) == ["svc-1", "svc-1", "svc-2"]
        assert store.find_journey_service_refs([]) == []

    def test_find_stops_in_group(self, store):
        member = make_stop("member")
        member.associations = [Association(type="stop_group", associated_identifier="group-1")]
        store.upsert(EntityKind.STOP, [member, make_stop("outsider")])
        store.upsert(EntityKind.STOP_GROUP, [StopGroup(primary_identifier="group-1", name="Group")])

        stops = store.find_stops_in_group("group-1")

        assert [s.primary_identifier for s in stops] == ["member"]

    def test_latest_realtime_journey(self, store):
        now = datetime.now(timezone.utc)
        store.upsert(EntityKind.REALTIME_JOURNEY, [
            RealtimeJourney(primary_identifier="rt-old", journey_ref="j1", modification_datetime=now - timedelta(minutes=5)),
            RealtimeJourney(primary_identifier="rt-new", journey_ref="j1", modification_datetime=now),
            RealtimeJourney(primary_identifier="rt-other", journey_ref="j2", modification_datetime=now),
        ])

        assert store.latest_realtime_journey("j1").primary_identifier == "rt-new"
        assert store.latest_realtime_journey("j3") is None

    def test_latest_realtime_journey_ignores_missing_modification_time(self, store):
        now = datetime.now(timezone.utc)
        store.upsert(EntityKind.REALTIME_JOURNEY, [
            RealtimeJourney(primary_identifier="rt-fresh", journey_ref="j1", modification_datetime=now),
            RealtimeJourney(primary_identifier="rt-undated", journey_ref="j1"),
        ])

        assert store.latest_realtime_journey("j1").primary_identifier == "rt-fresh"


class TestColumnTime:
    def test_aware_converted_to_naive_utc(self):
        value = datetime(2024, 3, 4, 9, 0, tzinfo=timezone(timedelta(hours=1)))
        assert to_column_time(value) == datetime(2024, 3, 4, 8, 0)

    def test_none(self):
        assert to_column_time(None) is None
