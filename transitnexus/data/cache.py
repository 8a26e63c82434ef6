"""
Cached query results.

Entries are JSON text with an expiry time. The cache is only an optimisation:
a missing, expired or undecodable entry simply means the caller recomputes.
"""

import json
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError

from transitnexus.errors import CacheDecodeError
from .db_broker import ConnectionBroker
from .models import CacheEntry

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CachedResults:
    def __init__(self, broker: ConnectionBroker, clock=_utc_now):
        self.broker = broker
        self.clock = clock

    def get(self, key: str):
        """
        Return the decoded value stored under key.

        Returns:
            The decoded value, or None when there is no unexpired entry

        Raises:
            CacheDecodeError: the stored value is not valid JSON
        """
        with self.broker.get_session() as session:
            entry = session.get(CacheEntry, key)
            if entry is None or entry.expires_at <= self.clock():
                return None
            raw = entry.value

        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            raise CacheDecodeError(f"Cached value for {key} could not be decoded: {e}") from e

    def set(self, key: str, value, ttl: timedelta):
        """Store value under key, replacing any existing entry (last write wins)."""
        expires_at = self.clock() + ttl
        encoded = json.dumps(value)
        for attempt in range(2):
            try:
                with self.broker.get_session() as session:
                    session.merge(CacheEntry(key=key, value=encoded, expires_at=expires_at))
                return
            except IntegrityError:
                # A concurrent writer inserted the key first; retry as an update
                if attempt:
                    raise

    def purge_expired(self) -> int:
        with self.broker.get_session() as session:
            removed = session.query(CacheEntry).filter(
                CacheEntry.expires_at <= self.clock()
            ).delete(synchronize_session=False)
        if removed:
            logger.info(f"Purged {removed} expired cache entries")
        return removed
