"""
Journey fingerprinting and canonicalization of parsed entities.

Two journeys with the same fingerprint describe the same logical trip, even
when they came from different feeds or carry different identifiers.
"""

import hashlib
import logging
from typing import Dict, Iterable, List, Optional

from .entities import DataSource, EntityKind, Journey, unique_identifiers, utc_now

logger = logging.getLogger(__name__)

_FIELD_SEPARATOR = b"\x1f"


def _write(digest, value) -> None:
    if value is None:
        text = ""
    elif hasattr(value, "isoformat"):
        text = value.isoformat()
    else:
        text = str(value)
    digest.update(text.encode("utf-8"))
    digest.update(_FIELD_SEPARATOR)


def journey_fingerprint(journey: Journey, include_availability_condition: bool) -> str:
    """
    Digest over the functionally significant fields of a journey.

    Identifiers, creation/modification times and data source never take part.
    With ``include_availability_condition`` the availability rules are folded in
    as well, so journeys running on different days stay distinct.
    """
    digest = hashlib.sha256()

    _write(digest, journey.service_ref)
    _write(digest, journey.destination_display)
    _write(digest, journey.direction)
    _write(digest, journey.departure_time)

    if include_availability_condition and journey.availability is not None:
        for rule in journey.availability.rules():
            _write(digest, rule.type)
            _write(digest, rule.value)
            _write(digest, rule.description)

    for item in journey.path:
        _write(digest, item.origin_stop_ref)
        _write(digest, item.origin_arrival_time)
        _write(digest, item.origin_departure_time)
        _write(digest, item.destination_stop_ref)
        _write(digest, item.destination_arrival_time)

    return digest.hexdigest()


def deduplicate_journeys(journeys: Iterable[Journey], include_availability_condition: bool) -> List[Journey]:
    """Keep the first journey seen for each fingerprint, preserving input order."""
    filtered = []
    seen = set()

    for journey in journeys:
        fingerprint = journey_fingerprint(journey, include_availability_condition)
        if fingerprint not in seen:
            seen.add(fingerprint)
            filtered.append(journey)

    return filtered


def _collapse_by_identifier(entities: List) -> List:
    filtered = []
    seen = set()
    for entity in entities:
        if entity.primary_identifier in seen:
            continue
        seen.add(entity.primary_identifier)
        filtered.append(entity)
    return filtered


def canonicalize(
    entities_by_kind: Dict[EntityKind, List],
    include_availability_condition: bool,
    data_source: Optional[DataSource] = None,
) -> Dict[EntityKind, List]:
    """
    Prepare parsed entities for the Store.

    Journeys are collapsed by fingerprint, every other kind by primary
    identifier. Alternate identifiers are normalised and creation/modification
    times and data source are stamped where the parser left them empty.
    """
    now = utc_now()
    result = {}

    for kind, entities in entities_by_kind.items():
        if kind == EntityKind.JOURNEY:
            kept = deduplicate_journeys(entities, include_availability_condition)
        else:
            kept = _collapse_by_identifier(entities)

        dropped = len(entities) - len(kept)
        if dropped:
            logger.info(f"Collapsed {dropped} duplicate {kind.value} records")

        for entity in kept:
            entity.other_identifiers = [
                identifier for identifier in unique_identifiers(entity.other_identifiers)
                if identifier != entity.primary_identifier
            ]
            if entity.creation_datetime is None:
                entity.creation_datetime = now
            if entity.modification_datetime is None:
                entity.modification_datetime = now
            if entity.data_source is None and data_source is not None:
                entity.data_source = data_source

        result[kind] = kept

    return result
