"""
Canonical Transport Entities

Format-independent records produced by the feed parsers and owned by the Store.

Relations between entities are kept as identifier references (``*_ref`` fields).
The matching object fields (``Journey.service``, ``JourneyPathItem.origin_stop``,
``Journey.realtime_journey`` ...) are filled on demand by the reference resolver
and the realtime overlay; they are never written to the Store.

Every entity is a pydantic model. ``to_dict`` dumps the JSON document kept in the
Store, leaving resolved relations out unless ``include_relations=True``, which is
what the query cache stores. ``from_dict`` validates a document back into a model.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, TypeAdapter


class EntityKind(str, Enum):
    OPERATOR = "operator"
    OPERATOR_GROUP = "operator_group"
    STOP = "stop"
    STOP_GROUP = "stop_group"
    SERVICE = "service"
    JOURNEY = "journey"
    REALTIME_JOURNEY = "realtime_journey"
    SERVICE_ALERT = "service_alert"


class PathItemActivity(str, Enum):
    PICKUP = "Pickup"
    SETDOWN = "Setdown"
    PASS = "Pass"


class ServiceAlertType(str, Enum):
    INFORMATION = "Information"
    WARNING = "Warning"
    PLANNED_DISRUPTION = "PlannedDisruption"
    SERVICE_PART_SUSPENDED = "ServicePartSuspended"
    SERVICE_SUSPENDED = "ServiceSuspended"
    STOP_CLOSED = "StopClosed"
    JOURNEY_DELAYED = "JourneyDelayed"
    JOURNEY_CANCELLED = "JourneyCancelled"


_OPTIONAL_DATETIME = TypeAdapter(Optional[datetime])


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def parse_datetime(value) -> Optional[datetime]:
    """Validate an ISO timestamp; blank values are None."""
    if value == "":
        return None
    return _OPTIONAL_DATETIME.validate_python(value)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def unique_identifiers(values) -> List[str]:
    seen = set()
    result = []
    for value in values or []:
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return result


# ============================================================================
# SHARED VALUE TYPES
# ============================================================================

class DataSource(BaseModel):
    provider_name: str = ""
    dataset_id: str = ""
    timestamp: Optional[datetime] = None


class Location(BaseModel):
    latitude: float
    longitude: float


class Association(BaseModel):
    type: str = ""
    associated_identifier: str = ""


class CanonicalEntity(BaseModel):
    """Identity and provenance fields shared by every stored entity."""

    primary_identifier: str = Field(..., min_length=1)
    other_identifiers: List[str] = Field(default_factory=list)
    creation_datetime: Optional[datetime] = None
    modification_datetime: Optional[datetime] = None
    data_source: Optional[DataSource] = None

    kind: ClassVar[EntityKind]
    # Resolved relations, in pydantic ``exclude`` form
    relations: ClassVar[Dict[str, Any]] = {}

    def to_dict(self, include_relations: bool = False) -> dict:
        if include_relations or not self.relations:
            return self.model_dump(mode="json")
        return self.model_dump(mode="json", exclude=self.relations)

    @classmethod
    def from_dict(cls, data: dict):
        return cls.model_validate(data)


# ============================================================================
# OPERATORS
# ============================================================================

class Operator(CanonicalEntity):
    kind: ClassVar[EntityKind] = EntityKind.OPERATOR

    name: str = ""
    other_names: List[str] = Field(default_factory=list)
    transport_type: str = ""
    website: str = ""
    email: str = ""
    phone: str = ""
    operator_group_ref: str = ""


class OperatorGroup(CanonicalEntity):
    kind: ClassVar[EntityKind] = EntityKind.OPERATOR_GROUP

    name: str = ""


# ============================================================================
# STOPS
# ============================================================================

class StopPlatform(BaseModel):
    primary_identifier: str
    primary_name: str = ""
    location: Optional[Location] = None


class Stop(CanonicalEntity):
    kind: ClassVar[EntityKind] = EntityKind.STOP

    primary_name: str = ""
    transport_types: List[str] = Field(default_factory=list)
    location: Optional[Location] = None
    platforms: List[StopPlatform] = Field(default_factory=list)
    associations: List[Association] = Field(default_factory=list)
    active: bool = True

    def all_stop_ids(self) -> List[str]:
        """The stop's own identifier followed by every platform identifier."""
        return [self.primary_identifier] + [p.primary_identifier for p in self.platforms]


class StopGroup(CanonicalEntity):
    kind: ClassVar[EntityKind] = EntityKind.STOP_GROUP
    relations: ClassVar[Dict[str, Any]] = {"stops": True}

    name: str = ""
    type: str = ""
    status: str = ""

    stops: Optional[List[Stop]] = None


# ============================================================================
# SERVICES
# ============================================================================

class Service(CanonicalEntity):
    kind: ClassVar[EntityKind] = EntityKind.SERVICE
    relations: ClassVar[Dict[str, Any]] = {"operator": True}

    service_name: str = ""
    operator_ref: str = ""
    transport_type: str = ""
    brand_colour: str = ""
    routes: List[str] = Field(default_factory=list)

    operator: Optional[Operator] = None


# ============================================================================
# JOURNEYS
# ============================================================================

class AvailabilityRule(BaseModel):
    type: str
    value: str
    description: str = ""


class Availability(BaseModel):
    match: List[AvailabilityRule] = Field(default_factory=list)
    match_secondary: List[AvailabilityRule] = Field(default_factory=list)
    exclude: List[AvailabilityRule] = Field(default_factory=list)
    condition: List[AvailabilityRule] = Field(default_factory=list)

    def rules(self) -> List[AvailabilityRule]:
        """All rules in Match, MatchSecondary, Exclude, Condition order."""
        return [*self.match, *self.match_secondary, *self.exclude, *self.condition]


class JourneyPathItem(BaseModel):
    origin_stop_ref: str
    destination_stop_ref: str

    origin_platform: str = ""
    destination_platform: str = ""
    distance: int = 0

    origin_arrival_time: Optional[datetime] = None
    origin_departure_time: Optional[datetime] = None
    destination_arrival_time: Optional[datetime] = None

    destination_display: str = ""

    origin_activity: List[PathItemActivity] = Field(default_factory=list)
    destination_activity: List[PathItemActivity] = Field(default_factory=list)

    associations: List[Association] = Field(default_factory=list)

    origin_stop: Optional[Stop] = None
    destination_stop: Optional[Stop] = None


class RealtimeJourneyStop(BaseModel):
    stop_ref: str
    arrival_time: Optional[datetime] = None
    departure_time: Optional[datetime] = None
    time_type: str = "Estimated"


class RealtimeJourney(CanonicalEntity):
    kind: ClassVar[EntityKind] = EntityKind.REALTIME_JOURNEY

    journey_ref: str = Field(..., min_length=1)

    vehicle_ref: str = ""
    vehicle_location: Optional[Location] = None
    vehicle_bearing: float = 0.0
    departed_stop_ref: str = ""
    next_stop_ref: str = ""
    offset_seconds: int = 0
    actively_tracked: bool = True
    cancelled: bool = False
    stops: List[RealtimeJourneyStop] = Field(default_factory=list)

    def is_active(self) -> bool:
        """A live record still describes the journey while tracked, or once cancelled."""
        return self.actively_tracked or self.cancelled


class Journey(CanonicalEntity):
    kind: ClassVar[EntityKind] = EntityKind.JOURNEY
    relations: ClassVar[Dict[str, Any]] = {
        "service": True,
        "operator": True,
        "realtime_journey": True,
        "path": {"__all__": {"origin_stop": True, "destination_stop": True}},
    }

    service_ref: str = ""
    operator_ref: str = ""

    direction: str = ""
    departure_time: Optional[datetime] = None
    departure_timezone: str = ""
    destination_display: str = ""

    availability: Optional[Availability] = None
    path: List[JourneyPathItem] = Field(default_factory=list)

    service: Optional[Service] = None
    operator: Optional[Operator] = None
    realtime_journey: Optional[RealtimeJourney] = None

    def flatten_stops(self) -> Tuple[List[str], Dict[str, datetime], Dict[str, datetime]]:
        """
        Ordered distinct stop references with their arrival and departure times.

        Each path item contributes its origin; the last item's origin is appended
        if it has not been seen already.
        """
        stops: List[str] = []
        arrival_times: Dict[str, datetime] = {}
        departure_times: Dict[str, datetime] = {}
        seen = set()

        for item in self.path:
            if item.origin_stop_ref not in seen:
                stops.append(item.origin_stop_ref)
                arrival_times[item.origin_stop_ref] = item.origin_arrival_time
                departure_times[item.origin_stop_ref] = item.origin_departure_time
                seen.add(item.origin_stop_ref)

        if self.path:
            last = self.path[-1]
            if last.origin_stop_ref not in seen:
                stops.append(last.origin_stop_ref)
                arrival_times[last.origin_stop_ref] = last.origin_arrival_time
                departure_times[last.origin_stop_ref] = last.origin_departure_time

        return stops, arrival_times, departure_times

    def path_stop_refs(self) -> List[str]:
        refs = []
        for item in self.path:
            refs.append(item.origin_stop_ref)
            refs.append(item.destination_stop_ref)
        return unique_identifiers(refs)


# ============================================================================
# SERVICE ALERTS
# ============================================================================

class ServiceAlert(CanonicalEntity):
    kind: ClassVar[EntityKind] = EntityKind.SERVICE_ALERT

    alert_type: ServiceAlertType = ServiceAlertType.INFORMATION
    title: str = ""
    text: str = ""
    matched_identifiers: List[str] = Field(default_factory=list)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None


ENTITY_CLASSES = {
    EntityKind.OPERATOR: Operator,
    EntityKind.OPERATOR_GROUP: OperatorGroup,
    EntityKind.STOP: Stop,
    EntityKind.STOP_GROUP: StopGroup,
    EntityKind.SERVICE: Service,
    EntityKind.JOURNEY: Journey,
    EntityKind.REALTIME_JOURNEY: RealtimeJourney,
    EntityKind.SERVICE_ALERT: ServiceAlert,
}


def entity_from_dict(kind: EntityKind, data: dict):
    return ENTITY_CLASSES[EntityKind(kind)].from_dict(data)
