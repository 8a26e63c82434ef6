"""
SQLAlchemy models for the Transit Nexus database.

Canonical entities are stored as JSON documents next to the columns that are
used for lookups and filtered scans. Relations between entities are plain
identifier columns; there are no foreign keys between entity tables because
feeds arrive in any order and references may legitimately never resolve.

Also holds the cached query results and the durable message queue tables.
"""

import logging

from sqlalchemy import (
    Column, Integer, String, Float, DateTime, Text, LargeBinary, JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import declarative_base

logger = logging.getLogger(__name__)

# Base class for all models
Base = declarative_base()


# ============================================================================
# CANONICAL ENTITIES
# ============================================================================

class OperatorRecord(Base):
    """Transport operators (bus companies, train operating companies ...)."""

    __tablename__ = 'operators'

    id = Column(Integer, primary_key=True, autoincrement=True)
    primary_identifier = Column(String(200), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=True)
    document = Column(JSON, nullable=False)
    creation_datetime = Column(DateTime, nullable=True)
    modification_datetime = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<OperatorRecord(id='{self.primary_identifier}', name='{self.name}')>"


class OperatorGroupRecord(Base):
    __tablename__ = 'operator_groups'

    id = Column(Integer, primary_key=True, autoincrement=True)
    primary_identifier = Column(String(200), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=True)
    document = Column(JSON, nullable=False)
    creation_datetime = Column(DateTime, nullable=True)
    modification_datetime = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<OperatorGroupRecord(id='{self.primary_identifier}', name='{self.name}')>"


class EntityIdentifier(Base):
    """Alternate identifiers from source feeds, pointing at an entity's primary identifier."""

    __tablename__ = 'entity_identifiers'

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_kind = Column(String(50), nullable=False)
    identifier = Column(String(200), nullable=False)
    primary_identifier = Column(String(200), nullable=False, index=True)

    __table_args__ = (
        Index('idx_identifier_kind', 'entity_kind', 'identifier'),
    )

    def __repr__(self):
        return f"<EntityIdentifier(kind='{self.entity_kind}', id='{self.identifier}', primary='{self.primary_identifier}')>"


class StopRecord(Base):
    """Stops across all modes, with their platforms kept in ``stop_platforms``."""

    __tablename__ = 'stops'

    id = Column(Integer, primary_key=True, autoincrement=True)
    primary_identifier = Column(String(200), unique=True, nullable=False, index=True)
    primary_name = Column(String(200), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    document = Column(JSON, nullable=False)
    creation_datetime = Column(DateTime, nullable=True)
    modification_datetime = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<StopRecord(id='{self.primary_identifier}', name='{self.primary_name}')>"


class StopPlatform(Base):
    __tablename__ = 'stop_platforms'

    id = Column(Integer, primary_key=True, autoincrement=True)
    platform_identifier = Column(String(200), nullable=False, index=True)
    stop_identifier = Column(String(200), nullable=False, index=True)

    def __repr__(self):
        return f"<StopPlatform(platform='{self.platform_identifier}', stop='{self.stop_identifier}')>"


class StopGroupRecord(Base):
    __tablename__ = 'stop_groups'

    id = Column(Integer, primary_key=True, autoincrement=True)
    primary_identifier = Column(String(200), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=True)
    document = Column(JSON, nullable=False)
    creation_datetime = Column(DateTime, nullable=True)
    modification_datetime = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<StopGroupRecord(id='{self.primary_identifier}', name='{self.name}')>"


class StopAssociation(Base):
    """Stop -> associated identifier (stop groups, localities ...)."""

    __tablename__ = 'stop_associations'

    id = Column(Integer, primary_key=True, autoincrement=True)
    stop_identifier = Column(String(200), nullable=False, index=True)
    association_type = Column(String(50), nullable=True)
    associated_identifier = Column(String(200), nullable=False, index=True)

    def __repr__(self):
        return f"<StopAssociation(stop='{self.stop_identifier}', associated='{self.associated_identifier}')>"


class ServiceRecord(Base):
    """Lines / routes as published by operators."""

    __tablename__ = 'services'

    id = Column(Integer, primary_key=True, autoincrement=True)
    primary_identifier = Column(String(200), unique=True, nullable=False, index=True)
    service_name = Column(String(200), nullable=True)
    operator_ref = Column(String(200), nullable=True, index=True)
    document = Column(JSON, nullable=False)
    creation_datetime = Column(DateTime, nullable=True)
    modification_datetime = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<ServiceRecord(id='{self.primary_identifier}', name='{self.service_name}')>"


class JourneyRecord(Base):
    """Scheduled journeys; the stops they touch are indexed in ``journey_path_stops``."""

    __tablename__ = 'journeys'

    id = Column(Integer, primary_key=True, autoincrement=True)
    primary_identifier = Column(String(300), unique=True, nullable=False, index=True)
    service_ref = Column(String(200), nullable=True, index=True)
    operator_ref = Column(String(200), nullable=True, index=True)
    departure_time = Column(DateTime, nullable=True)
    document = Column(JSON, nullable=False)
    creation_datetime = Column(DateTime, nullable=True)
    modification_datetime = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<JourneyRecord(id='{self.primary_identifier}', service='{self.service_ref}')>"


class JourneyPathStop(Base):
    __tablename__ = 'journey_path_stops'

    id = Column(Integer, primary_key=True, autoincrement=True)
    journey_identifier = Column(String(300), nullable=False, index=True)
    stop_ref = Column(String(200), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint('journey_identifier', 'stop_ref', name='uq_journey_stop'),
    )

    def __repr__(self):
        return f"<JourneyPathStop(journey='{self.journey_identifier}', stop='{self.stop_ref}')>"


class RealtimeJourneyRecord(Base):
    """Live tracking records, many per scheduled journey over time."""

    __tablename__ = 'realtime_journeys'

    id = Column(Integer, primary_key=True, autoincrement=True)
    primary_identifier = Column(String(300), unique=True, nullable=False, index=True)
    journey_ref = Column(String(300), nullable=False, index=True)
    document = Column(JSON, nullable=False)
    creation_datetime = Column(DateTime, nullable=True)
    modification_datetime = Column(DateTime, nullable=True, index=True)

    __table_args__ = (
        Index('idx_realtime_journey_modified', 'journey_ref', 'modification_datetime'),
    )

    def __repr__(self):
        return f"<RealtimeJourneyRecord(id='{self.primary_identifier}', journey='{self.journey_ref}')>"


class ServiceAlertRecord(Base):
    __tablename__ = 'service_alerts'

    id = Column(Integer, primary_key=True, autoincrement=True)
    primary_identifier = Column(String(300), unique=True, nullable=False, index=True)
    alert_type = Column(String(50), nullable=True, index=True)
    valid_from = Column(DateTime, nullable=True)
    valid_until = Column(DateTime, nullable=True)
    document = Column(JSON, nullable=False)
    creation_datetime = Column(DateTime, nullable=True)
    modification_datetime = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<ServiceAlertRecord(id='{self.primary_identifier}', type='{self.alert_type}')>"


# ============================================================================
# CACHE & QUEUE
# ============================================================================

class CacheEntry(Base):
    """Cached query result; never authoritative."""

    __tablename__ = 'cache_entries'

    key = Column(String(500), primary_key=True)
    value = Column(Text, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)

    def __repr__(self):
        return f"<CacheEntry(key='{self.key}', expires_at={self.expires_at})>"


class QueueMessage(Base):
    """Opaque payloads waiting for (state=ready) or held by (state=unacked) a consumer."""

    __tablename__ = 'queue_messages'

    id = Column(Integer, primary_key=True, autoincrement=True)
    queue_name = Column(String(100), nullable=False)
    payload = Column(LargeBinary, nullable=False)
    state = Column(String(10), nullable=False, default='ready')
    delivery_tag = Column(String(64), nullable=True, index=True)
    published_at = Column(DateTime, nullable=False)
    delivered_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('idx_queue_state', 'queue_name', 'state', 'id'),
    )

    def __repr__(self):
        return f"<QueueMessage(id={self.id}, queue='{self.queue_name}', state='{self.state}')>"


# ============================================================================
# DATABASE INITIALIZATION
# ============================================================================

def initialize_database(engine, drop_existing=False):
    """
    Initialize database schema atomically.

    Args:
        engine: SQLAlchemy engine instance
        drop_existing: If True, drops all existing tables before creation

    Note:
        Schema changes are applied by drop+recreate rather than migrations;
        every table can be rebuilt from the source feeds.
    """
    if drop_existing:
        logger.warning("Dropping all existing tables")
        Base.metadata.drop_all(bind=engine)

    Base.metadata.create_all(bind=engine)
    logger.info("Database schema initialized")
