"""
Tests for reference resolution.
"""

import threading
import time
from unittest.mock import Mock

import pytest

from conftest import make_journey, make_operator, make_service, make_stop
from transitnexus.aggregator.resolver import ReferenceResolver
from transitnexus.canonical.entities import Association, EntityKind, StopGroup


@pytest.fixture
def resolver(store):
    return ReferenceResolver(store)


@pytest.fixture
def network(store):
    store.upsert(EntityKind.OPERATOR, [make_operator(other_identifiers=["TEST"])])
    store.upsert(EntityKind.SERVICE, [make_service()])
    store.upsert(EntityKind.STOP, [
        make_stop("stop-a"), make_stop("stop-b", platforms=["stop-b-1"]), make_stop("stop-c"),
    ])
    return store


class TestDirectReferences:
    def test_resolve_references(self, network, resolver):
        journey = make_journey("j1")

        resolver.resolve_references(journey)

        assert journey.operator.name == "Test Buses"
        assert journey.service.service_name == "1"

    def test_operator_by_alternate_identifier(self, network, resolver):
        service = make_service(operator_ref="TEST")
        resolver.resolve_operator(service)
        assert service.operator.primary_identifier == "gb-noc-TEST"

    def test_miss_leaves_field_unset(self, network, resolver):
        journey = make_journey("j1", service_ref="missing", operator_ref="missing")

        resolver.resolve_references(journey)

        assert journey.service is None
        assert journey.operator is None

    def test_populated_reference_not_reloaded(self):
        store = Mock()
        journey = make_journey("j1")
        journey.operator = make_operator()

        ReferenceResolver(store).resolve_operator(journey)

        store.find_operator.assert_not_called()


class TestResolveDeep:
    def test_all_stops_resolved(self, network, resolver):
        journey = make_journey("j1", stop_refs=("stop-a", "stop-b-1", "stop-c", "missing"))

        errors = resolver.resolve_deep(journey)

        assert errors == []
        assert len(journey.path) == 3
        assert [item.origin_stop.primary_identifier for item in journey.path] == ["stop-a", "stop-b", "stop-c"]
        assert [
            item.destination_stop.primary_identifier if item.destination_stop else None
            for item in journey.path
        ] == ["stop-b", "stop-c", None]

    def test_waits_for_every_task_regardless_of_completion_order(self):
        stop_refs = [f"stop-{i}" for i in range(8)]
        store = Mock()

        def find_stop(reference):
            # Earlier stops finish last
            time.sleep(0.01 * (len(stop_refs) - stop_refs.index(reference)))
            return make_stop(reference)

        store.find_stop = Mock(side_effect=find_stop)
        journey = make_journey("j1", stop_refs=stop_refs)

        errors = ReferenceResolver(store).resolve_deep(journey)

        assert errors == []
        for item in journey.path:
            assert item.origin_stop.primary_identifier == item.origin_stop_ref
            assert item.destination_stop.primary_identifier == item.destination_stop_ref

    def test_errors_collected_not_raised(self):
        store = Mock()

        def find_stop(reference):
            if reference == "bad":
                raise RuntimeError("lookup failed")
            return make_stop(reference)

        store.find_stop = Mock(side_effect=find_stop)
        journey = make_journey("j1", stop_refs=("a", "b", "bad", "c"))

        errors = ReferenceResolver(store).resolve_deep(journey)

        assert len(errors) == 2
        assert all(isinstance(e, RuntimeError) for e in errors)
        assert journey.path[0].origin_stop.primary_identifier == "a"

    def test_worker_cap(self):
        active = []
        peak = []
        lock = threading.Lock()
        store = Mock()

        def find_stop(reference):
            with lock:
                active.append(reference)
                peak.append(len(active))
            time.sleep(0.01)
            with lock:
                active.remove(reference)
            return None

        store.find_stop = Mock(side_effect=find_stop)
        journey = make_journey("j1", stop_refs=[f"s{i}" for i in range(10)])

        ReferenceResolver(store, max_workers=2).resolve_deep(journey)

        assert max(peak) <= 2
        assert store.find_stop.call_count == 18

    def test_empty_path(self, resolver):
        assert resolver.resolve_deep(make_journey("j1", stop_refs=())) == []


class TestTransform:
    def test_depth_one(self, network, resolver):
        journey = make_journey("j1")

        resolver.transform(journey, 1)

        assert journey.service is not None
        assert journey.path[0].origin_stop is None

    def test_depth_two(self, network, resolver):
        journey = make_journey("j1")

        resolver.transform(journey, 2)

        assert journey.service.operator.name == "Test Buses"
        assert journey.path[0].origin_stop.primary_identifier == "stop-a"

    def test_stop_group(self, store, resolver):
        member = make_stop("member")
        member.associations = [Association(type="stop_group", associated_identifier="group-1")]
        store.upsert(EntityKind.STOP, [member])
        group = StopGroup(primary_identifier="group-1")

        resolver.transform(group, 1)

        assert [s.primary_identifier for s in group.stops] == ["member"]
