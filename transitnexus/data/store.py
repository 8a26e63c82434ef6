"""
Entity Store

Keyed lookups, filtered scans and upserts of canonical entities on top of the
SQLAlchemy models. Every call opens its own session, so a store instance can be
shared by concurrent resolver threads.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import or_, select

from transitnexus.canonical.entities import EntityKind, entity_from_dict, parse_datetime
from .db_broker import ConnectionBroker
from .models import (
    EntityIdentifier, JourneyPathStop, JourneyRecord, OperatorGroupRecord, OperatorRecord,
    RealtimeJourneyRecord, ServiceAlertRecord, ServiceRecord, StopAssociation, StopGroupRecord,
    StopPlatform, StopRecord,
)

logger = logging.getLogger(__name__)


def to_column_time(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps are stored as naive UTC."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


RECORD_CLASSES = {
    EntityKind.OPERATOR: OperatorRecord,
    EntityKind.OPERATOR_GROUP: OperatorGroupRecord,
    EntityKind.STOP: StopRecord,
    EntityKind.STOP_GROUP: StopGroupRecord,
    EntityKind.SERVICE: ServiceRecord,
    EntityKind.JOURNEY: JourneyRecord,
    EntityKind.REALTIME_JOURNEY: RealtimeJourneyRecord,
    EntityKind.SERVICE_ALERT: ServiceAlertRecord,
}


def _lookup_columns(kind: EntityKind, entity) -> dict:
    if kind in (EntityKind.OPERATOR, EntityKind.OPERATOR_GROUP, EntityKind.STOP_GROUP):
        return {'name': entity.name}
    if kind == EntityKind.STOP:
        return {
            'primary_name': entity.primary_name,
            'latitude': entity.location.latitude if entity.location else None,
            'longitude': entity.location.longitude if entity.location else None,
        }
    if kind == EntityKind.SERVICE:
        return {'service_name': entity.service_name, 'operator_ref': entity.operator_ref}
    if kind == EntityKind.JOURNEY:
        return {
            'service_ref': entity.service_ref,
            'operator_ref': entity.operator_ref,
            'departure_time': to_column_time(entity.departure_time),
        }
    if kind == EntityKind.REALTIME_JOURNEY:
        return {'journey_ref': entity.journey_ref}
    if kind == EntityKind.SERVICE_ALERT:
        return {
            'alert_type': entity.alert_type.value,
            'valid_from': to_column_time(entity.valid_from),
            'valid_until': to_column_time(entity.valid_until),
        }
    return {}


class EntityStore:
    """Document store for canonical entities."""

    def __init__(self, broker: ConnectionBroker):
        self.broker = broker

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, kind: EntityKind, entities: Iterable) -> int:
        """
        Insert or replace entities of one kind.

        An existing record keeps its original creation time.

        Returns:
            Number of entities written
        """
        kind = EntityKind(kind)
        written = 0
        with self.broker.get_session() as session:
            for entity in entities:
                self._upsert_one(session, kind, entity)
                written += 1
        logger.debug(f"Upserted {written} {kind.value} records")
        return written

    def _upsert_one(self, session, kind: EntityKind, entity):
        record_cls = RECORD_CLASSES[kind]
        record = session.query(record_cls).filter_by(
            primary_identifier=entity.primary_identifier
        ).first()

        if record is None:
            record = record_cls(primary_identifier=entity.primary_identifier)
            session.add(record)
        else:
            previous_creation = parse_datetime(record.document.get('creation_datetime'))
            if previous_creation is not None:
                entity.creation_datetime = previous_creation

        for column, value in _lookup_columns(kind, entity).items():
            setattr(record, column, value)
        record.document = entity.to_dict()
        record.creation_datetime = to_column_time(entity.creation_datetime)
        record.modification_datetime = to_column_time(entity.modification_datetime)

        self._replace_identifiers(session, kind, entity)
        if kind == EntityKind.STOP:
            self._replace_stop_side_tables(session, entity)
        elif kind == EntityKind.JOURNEY:
            self._replace_journey_path(session, entity)
        session.flush()

    def _replace_identifiers(self, session, kind: EntityKind, entity):
        session.query(EntityIdentifier).filter_by(
            entity_kind=kind.value, primary_identifier=entity.primary_identifier
        ).delete(synchronize_session=False)
        for identifier in entity.other_identifiers:
            session.add(EntityIdentifier(
                entity_kind=kind.value,
                identifier=identifier,
                primary_identifier=entity.primary_identifier
            ))

    def _replace_stop_side_tables(self, session, stop):
        session.query(StopPlatform).filter_by(
            stop_identifier=stop.primary_identifier
        ).delete(synchronize_session=False)
        session.query(StopAssociation).filter_by(
            stop_identifier=stop.primary_identifier
        ).delete(synchronize_session=False)

        for platform in stop.platforms:
            session.add(StopPlatform(
                platform_identifier=platform.primary_identifier,
                stop_identifier=stop.primary_identifier
            ))
        for association in stop.associations:
            session.add(StopAssociation(
                stop_identifier=stop.primary_identifier,
                association_type=association.type,
                associated_identifier=association.associated_identifier
            ))

    def _replace_journey_path(self, session, journey):
        session.query(JourneyPathStop).filter_by(
            journey_identifier=journey.primary_identifier
        ).delete(synchronize_session=False)
        for stop_ref in journey.path_stop_refs():
            session.add(JourneyPathStop(
                journey_identifier=journey.primary_identifier,
                stop_ref=stop_ref
            ))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, kind: EntityKind, primary_identifier: str, exclude: Sequence[str] = ()):
        """
        Keyed lookup by primary identifier.

        Args:
            kind: Entity kind to look up
            primary_identifier: Identifier to match
            exclude: Document fields left out of the returned entity
        """
        kind = EntityKind(kind)
        record_cls = RECORD_CLASSES[kind]
        with self.broker.get_session() as session:
            record = session.query(record_cls).filter_by(
                primary_identifier=primary_identifier
            ).first()
            if record is None:
                return None
            return self._to_entity(kind, record.document, exclude)

    def find_by_any_identifier(self, kind: EntityKind, identifier: str):
        """Lookup by primary identifier OR membership of the alternate identifier set."""
        kind = EntityKind(kind)
        record_cls = RECORD_CLASSES[kind]
        alternates = select(EntityIdentifier.primary_identifier).where(
            EntityIdentifier.entity_kind == kind.value,
            EntityIdentifier.identifier == identifier
        )
        with self.broker.get_session() as session:
            record = session.query(record_cls).filter(or_(
                record_cls.primary_identifier == identifier,
                record_cls.primary_identifier.in_(alternates)
            )).order_by(record_cls.id).first()
            if record is None:
                return None
            return self._to_entity(kind, record.document)

    def find_operator(self, reference: str):
        return self.find_by_any_identifier(EntityKind.OPERATOR, reference)

    def find_stop(self, reference: str):
        """Stop matching the reference as its own identifier OR one of its platforms."""
        platforms = select(StopPlatform.stop_identifier).where(
            StopPlatform.platform_identifier == reference
        )
        with self.broker.get_session() as session:
            record = session.query(StopRecord).filter(or_(
                StopRecord.primary_identifier == reference,
                StopRecord.primary_identifier.in_(platforms)
            )).order_by(StopRecord.id).first()
            if record is None:
                return None
            return self._to_entity(EntityKind.STOP, record.document)

    def find_journey_service_refs(self, stop_ids: Sequence[str]) -> List[str]:
        """
        Service references of journeys whose path touches any of the stops.

        Only the service_ref column is read; duplicates are preserved.
        """
        if not stop_ids:
            return []
        with self.broker.get_session() as session:
            rows = session.query(JourneyRecord.service_ref).join(
                JourneyPathStop,
                JourneyPathStop.journey_identifier == JourneyRecord.primary_identifier
            ).filter(
                JourneyPathStop.stop_ref.in_(list(stop_ids))
            ).order_by(JourneyRecord.id).all()
            return [service_ref for (service_ref,) in rows if service_ref]

    def find_stops_in_group(self, group_identifier: str) -> List:
        with self.broker.get_session() as session:
            records = session.query(StopRecord).join(
                StopAssociation,
                StopAssociation.stop_identifier == StopRecord.primary_identifier
            ).filter(
                StopAssociation.associated_identifier == group_identifier
            ).order_by(StopRecord.id).all()
            return [self._to_entity(EntityKind.STOP, r.document) for r in records]

    def latest_realtime_journey(self, journey_ref: str):
        """
        Most recently modified realtime journey for a scheduled journey.

        Records without a modification time never count as the latest.
        """
        with self.broker.get_session() as session:
            record = session.query(RealtimeJourneyRecord).filter(
                RealtimeJourneyRecord.journey_ref == journey_ref,
                RealtimeJourneyRecord.modification_datetime.isnot(None)
            ).order_by(
                RealtimeJourneyRecord.modification_datetime.desc(),
                RealtimeJourneyRecord.id.desc()
            ).first()
            if record is None:
                return None
            return self._to_entity(EntityKind.REALTIME_JOURNEY, record.document)

    def count(self, kind: EntityKind) -> int:
        record_cls = RECORD_CLASSES[EntityKind(kind)]
        with self.broker.get_session() as session:
            return session.query(record_cls).count()

    @staticmethod
    def _to_entity(kind: EntityKind, document: dict, exclude: Sequence[str] = ()):
        document = dict(document)
        for key in exclude:
            document.pop(key, None)
        return entity_from_dict(kind, document)
