"""
Cacheable queries.

Each query names its cache kind and argument identifier, computes its result
from the store, and converts the result to and from the JSON kept in the cache.
"""

import logging
from datetime import timedelta
from typing import List, Optional

from transitnexus.canonical.entities import EntityKind, Journey, Service, Stop
from transitnexus.config.config_main import cache_config

logger = logging.getLogger(__name__)

# Fields left out of services listed for a stop
SERVICE_SUMMARY_EXCLUDE = ("creation_datetime", "modification_datetime", "other_identifiers", "routes")


class Query:
    kind: str = ""

    def argument_id(self) -> str:
        raise NotImplementedError

    def ttl(self, config=cache_config) -> timedelta:
        return timedelta(hours=config.default_ttl_hours)

    def compute(self, store, resolver):
        raise NotImplementedError

    def encode(self, value):
        raise NotImplementedError

    def decode(self, data):
        raise NotImplementedError

    def refresh(self, value, overlay):
        """Applied to every result, cached or not."""
        return value


class ServicesByStop(Query):
    """Distinct services with at least one journey calling at the stop or its platforms."""

    kind = "servicesbystopquery"

    def __init__(self, stop: Stop):
        self.stop = stop

    def argument_id(self) -> str:
        return self.stop.primary_identifier

    def compute(self, store, resolver) -> List[Service]:
        services = []
        seen = set()
        for service_ref in store.find_journey_service_refs(self.stop.all_stop_ids()):
            if service_ref in seen:
                continue
            seen.add(service_ref)

            service = store.get(EntityKind.SERVICE, service_ref, exclude=SERVICE_SUMMARY_EXCLUDE)
            if service is None:
                continue
            try:
                resolver.transform(service, 1)
            except Exception as e:
                logger.warning(f"Could not resolve references of service {service_ref}: {e}")
            services.append(service)
        return services

    def encode(self, value):
        return [service.to_dict(include_relations=True) for service in value]

    def decode(self, data):
        return [Service.from_dict(item) for item in data]


class StopsInGroup(Query):
    kind = "stopsingroupquery"

    def __init__(self, group_identifier: str):
        self.group_identifier = group_identifier

    def argument_id(self) -> str:
        return self.group_identifier

    def compute(self, store, resolver) -> List[Stop]:
        return store.find_stops_in_group(self.group_identifier)

    def encode(self, value):
        return [stop.to_dict() for stop in value]

    def decode(self, data):
        return [Stop.from_dict(item) for item in data]


class JourneyDetail(Query):
    """
    A journey with its operator, service and path stops resolved.

    Only the timetable part is cached; the live overlay is looked up on every
    call so a cached journey never carries stale realtime data.
    """

    kind = "journeyquery"

    def __init__(self, journey_identifier: str):
        self.journey_identifier = journey_identifier

    def argument_id(self) -> str:
        return self.journey_identifier

    def ttl(self, config=cache_config) -> timedelta:
        return timedelta(seconds=config.journey_ttl_seconds)

    def compute(self, store, resolver) -> Optional[Journey]:
        journey = store.get(EntityKind.JOURNEY, self.journey_identifier)
        if journey is None:
            return None

        try:
            resolver.transform(journey, 2)
        except Exception as e:
            logger.warning(f"Could not resolve references of journey {self.journey_identifier}: {e}")
        journey.realtime_journey = None
        return journey

    def encode(self, value):
        return value.to_dict(include_relations=True)

    def decode(self, data):
        return Journey.from_dict(data)

    def refresh(self, value, overlay):
        if value is None or overlay is None:
            return value
        try:
            overlay.apply(value)
        except Exception as e:
            logger.warning(f"Could not load realtime state of journey {self.journey_identifier}: {e}")
        return value


QUERY_TYPES = {
    ServicesByStop.kind: ServicesByStop,
    StopsInGroup.kind: StopsInGroup,
    JourneyDetail.kind: JourneyDetail,
}
