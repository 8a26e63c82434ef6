"""
Shared fixtures.

Tests run against a throwaway SQLite file per test instead of PostgreSQL.
"""

from datetime import datetime, timedelta, timezone

import pytest

from transitnexus.canonical.entities import (
    Journey, JourneyPathItem, Location, Operator, Service, Stop, StopPlatform,
)
from transitnexus.data.db_broker import ConnectionBroker
from transitnexus.data.store import EntityStore


@pytest.fixture
def broker(tmp_path):
    """Connection broker with all tables created."""
    broker = ConnectionBroker(f"sqlite:///{tmp_path / 'nexus.db'}")
    broker.create_tables(drop_existing=True)
    yield broker
    broker.dispose()


@pytest.fixture
def store(broker):
    return EntityStore(broker)


DEPARTURE = datetime(2024, 3, 4, 8, 15, tzinfo=timezone.utc)


def make_path(stop_refs, start=DEPARTURE, minutes_between=3):
    """Path items linking consecutive stop references."""
    items = []
    for index, (origin, destination) in enumerate(zip(stop_refs, stop_refs[1:])):
        departs = start + timedelta(minutes=index * minutes_between)
        items.append(JourneyPathItem(
            origin_stop_ref=origin,
            destination_stop_ref=destination,
            origin_arrival_time=departs,
            origin_departure_time=departs,
            destination_arrival_time=departs + timedelta(minutes=minutes_between),
        ))
    return items


def make_journey(identifier, service_ref="gb-svc-1", stop_refs=("stop-a", "stop-b", "stop-c"), **kwargs):
    kwargs.setdefault("operator_ref", "gb-noc-TEST")
    kwargs.setdefault("departure_time", DEPARTURE)
    kwargs.setdefault("destination_display", "Town Centre")
    kwargs.setdefault("direction", "outbound")
    return Journey(
        primary_identifier=identifier,
        service_ref=service_ref,
        path=make_path(list(stop_refs)),
        **kwargs
    )


def make_stop(identifier, name=None, platforms=()):
    return Stop(
        primary_identifier=identifier,
        primary_name=name or identifier.title(),
        transport_types=["bus"],
        location=Location(latitude=51.5, longitude=-0.12),
        platforms=[StopPlatform(primary_identifier=p) for p in platforms],
    )


def make_operator(identifier="gb-noc-TEST", name="Test Buses", other_identifiers=()):
    return Operator(primary_identifier=identifier, name=name, other_identifiers=list(other_identifiers))


def make_service(identifier="gb-svc-1", operator_ref="gb-noc-TEST", name="1"):
    return Service(
        primary_identifier=identifier,
        service_name=name,
        operator_ref=operator_ref,
        transport_type="bus",
        routes=["route-1"],
        other_identifiers=[f"{identifier}-alt"],
    )
