"""
Named projections of canonical entities.

Each view function picks the fields one audience is allowed to see and returns
a plain DTO; nothing here inspects field metadata at runtime.
"""

from dataclasses import asdict, dataclass, field
from typing import List, Optional

from .entities import Journey, RealtimeJourney, Service, Stop, format_datetime


@dataclass
class OperatorSummary:
    primary_identifier: str
    name: str


@dataclass
class ServiceBasicView:
    primary_identifier: str
    service_name: str
    transport_type: str
    brand_colour: str
    operator: Optional[OperatorSummary] = None

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class StopBasicView:
    primary_identifier: str
    primary_name: str
    transport_types: List[str]
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    platforms: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class RealtimeJourneyBasicView:
    primary_identifier: str
    vehicle_ref: str
    offset_seconds: int
    cancelled: bool
    next_stop_ref: str
    modification_datetime: Optional[str] = None

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class JourneyBasicView:
    primary_identifier: str
    departure_time: Optional[str]
    departure_timezone: str
    destination_display: str
    service: Optional[ServiceBasicView] = None
    operator: Optional[OperatorSummary] = None
    realtime_journey: Optional[RealtimeJourneyBasicView] = None

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class PathItemView:
    origin_stop_ref: str
    destination_stop_ref: str
    origin_stop_name: Optional[str]
    destination_stop_name: Optional[str]
    origin_departure_time: Optional[str]
    destination_arrival_time: Optional[str]
    origin_platform: str
    destination_platform: str
    distance: int


@dataclass
class JourneyDetailedView(JourneyBasicView):
    direction: str = ""
    data_source: Optional[str] = None
    creation_datetime: Optional[str] = None
    modification_datetime: Optional[str] = None
    path: List[PathItemView] = field(default_factory=list)


@dataclass
class JourneyDepartureSummary:
    """Compact departure line for text-oriented consumers."""
    primary_identifier: str
    departure_time: Optional[str]
    destination_display: str
    service_name: Optional[str]
    operator_name: Optional[str]
    departure_stops: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


def _operator_summary(operator) -> Optional[OperatorSummary]:
    if operator is None:
        return None
    return OperatorSummary(primary_identifier=operator.primary_identifier, name=operator.name)


def service_basic(service: Service) -> ServiceBasicView:
    return ServiceBasicView(
        primary_identifier=service.primary_identifier,
        service_name=service.service_name,
        transport_type=service.transport_type,
        brand_colour=service.brand_colour,
        operator=_operator_summary(service.operator),
    )


def stop_basic(stop: Stop) -> StopBasicView:
    return StopBasicView(
        primary_identifier=stop.primary_identifier,
        primary_name=stop.primary_name,
        transport_types=list(stop.transport_types),
        latitude=stop.location.latitude if stop.location else None,
        longitude=stop.location.longitude if stop.location else None,
        platforms=[p.primary_identifier for p in stop.platforms],
    )


def realtime_journey_basic(realtime_journey: RealtimeJourney) -> RealtimeJourneyBasicView:
    return RealtimeJourneyBasicView(
        primary_identifier=realtime_journey.primary_identifier,
        vehicle_ref=realtime_journey.vehicle_ref,
        offset_seconds=realtime_journey.offset_seconds,
        cancelled=realtime_journey.cancelled,
        next_stop_ref=realtime_journey.next_stop_ref,
        modification_datetime=format_datetime(realtime_journey.modification_datetime),
    )


def _journey_basic_fields(journey: Journey) -> dict:
    return dict(
        primary_identifier=journey.primary_identifier,
        departure_time=format_datetime(journey.departure_time),
        departure_timezone=journey.departure_timezone,
        destination_display=journey.destination_display,
        service=service_basic(journey.service) if journey.service else None,
        operator=_operator_summary(journey.operator),
        realtime_journey=realtime_journey_basic(journey.realtime_journey) if journey.realtime_journey else None,
    )


def journey_basic(journey: Journey) -> JourneyBasicView:
    return JourneyBasicView(**_journey_basic_fields(journey))


def journey_detailed(journey: Journey) -> JourneyDetailedView:
    path = [
        PathItemView(
            origin_stop_ref=item.origin_stop_ref,
            destination_stop_ref=item.destination_stop_ref,
            origin_stop_name=item.origin_stop.primary_name if item.origin_stop else None,
            destination_stop_name=item.destination_stop.primary_name if item.destination_stop else None,
            origin_departure_time=format_datetime(item.origin_departure_time),
            destination_arrival_time=format_datetime(item.destination_arrival_time),
            origin_platform=item.origin_platform,
            destination_platform=item.destination_platform,
            distance=item.distance,
        )
        for item in journey.path
    ]
    return JourneyDetailedView(
        **_journey_basic_fields(journey),
        direction=journey.direction,
        data_source=journey.data_source.dataset_id if journey.data_source else None,
        creation_datetime=format_datetime(journey.creation_datetime),
        modification_datetime=format_datetime(journey.modification_datetime),
        path=path,
    )


def journey_departure_summary(journey: Journey) -> JourneyDepartureSummary:
    return JourneyDepartureSummary(
        primary_identifier=journey.primary_identifier,
        departure_time=format_datetime(journey.departure_time),
        destination_display=journey.destination_display,
        service_name=journey.service.service_name if journey.service else None,
        operator_name=journey.operator.name if journey.operator else None,
        departure_stops=journey.flatten_stops()[0],
    )
