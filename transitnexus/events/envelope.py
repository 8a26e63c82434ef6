"""
Queue message formats.

Events travel as ``{"Type", "Timestamp", "Body"}`` JSON; the Body is decoded
according to the Type. Realtime-destined entities travel one per message as
``{"Kind", "Body"}``.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Tuple

from transitnexus.canonical.entities import (
    EntityKind, RealtimeJourney, ServiceAlert, entity_from_dict, format_datetime, parse_datetime, utc_now
)
from transitnexus.errors import ParseError


class EventType(str, Enum):
    SERVICE_ALERT_CREATED = "ServiceAlertCreated"
    SERVICE_ALERT_UPDATED = "ServiceAlertUpdated"
    REALTIME_JOURNEY_CREATED = "RealtimeJourneyCreated"
    REALTIME_JOURNEY_CANCELLED = "RealtimeJourneyCancelled"
    DATASET_IMPORTED = "DatasetImported"


# Event type -> Body decoder. Types not listed keep the raw JSON body.
BODY_TYPES = {
    EventType.SERVICE_ALERT_CREATED: ServiceAlert,
    EventType.SERVICE_ALERT_UPDATED: ServiceAlert,
    EventType.REALTIME_JOURNEY_CREATED: RealtimeJourney,
    EventType.REALTIME_JOURNEY_CANCELLED: RealtimeJourney,
}


@dataclass
class Event:
    type: EventType
    body: Any
    timestamp: Optional[datetime] = None

    def encode(self) -> bytes:
        body = self.body.to_dict() if hasattr(self.body, "to_dict") else self.body
        return json.dumps({
            "Type": self.type.value,
            "Timestamp": format_datetime(self.timestamp or utc_now()),
            "Body": body,
        }).encode("utf-8")

    @classmethod
    def decode(cls, payload: bytes) -> "Event":
        try:
            data = json.loads(payload)
            event_type = EventType(data["Type"])
            body = data.get("Body")
            body_cls = BODY_TYPES.get(event_type)
            if body_cls is not None:
                body = body_cls.from_dict(body)
            return cls(type=event_type, body=body, timestamp=parse_datetime(data.get("Timestamp")))
        except (ValueError, KeyError, TypeError) as e:
            raise ParseError(f"Malformed event payload: {e}") from e


def encode_entity(kind: EntityKind, entity) -> bytes:
    return json.dumps({"Kind": EntityKind(kind).value, "Body": entity.to_dict()}).encode("utf-8")


def decode_entity(payload: bytes) -> Tuple[EntityKind, Any]:
    try:
        data = json.loads(payload)
        kind = EntityKind(data["Kind"])
        return kind, entity_from_dict(kind, data["Body"])
    except (ValueError, KeyError, TypeError) as e:
        raise ParseError(f"Malformed entity payload: {e}") from e
