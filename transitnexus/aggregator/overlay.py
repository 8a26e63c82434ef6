import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from transitnexus.canonical.entities import Journey, RealtimeJourney, utc_now
from transitnexus.config.config_main import realtime_config
from transitnexus.data.store import EntityStore

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class RealtimeOverlay:
    """Attaches the live state of a journey when a fresh, active one exists."""

    def __init__(self, store: EntityStore,
                 cutoff: timedelta = timedelta(minutes=realtime_config.active_cutoff_minutes)):
        self.store = store
        self.cutoff = cutoff

    def active_overlay(self, journey: Journey, now: Optional[datetime] = None) -> Optional[RealtimeJourney]:
        realtime_journey = self.store.latest_realtime_journey(journey.primary_identifier)
        if realtime_journey is None or realtime_journey.modification_datetime is None:
            return None

        if _as_utc(now or utc_now()) - _as_utc(realtime_journey.modification_datetime) > self.cutoff:
            return None
        if not realtime_journey.is_active():
            return None

        return realtime_journey

    def apply(self, journey: Journey, now: Optional[datetime] = None) -> Journey:
        journey.realtime_journey = self.active_overlay(journey, now)
        return journey
