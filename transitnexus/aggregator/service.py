"""
Cached Query Service

Answers queries from the result cache when possible, otherwise computes them
against the store and caches the result. There is no invalidation and no
coalescing of concurrent misses; entries expire by TTL and the last write wins.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from transitnexus.config.config_main import cache_config
from transitnexus.data.cache import CachedResults
from transitnexus.data.store import EntityStore
from transitnexus.errors import CacheDecodeError
from .overlay import RealtimeOverlay
from .queries import QUERY_TYPES, Query
from .resolver import ReferenceResolver

logger = logging.getLogger(__name__)


class CachedQueryService:
    def __init__(self, store: EntityStore, cache: CachedResults, resolver: ReferenceResolver,
                 overlay: RealtimeOverlay = None, config=cache_config):
        self.store = store
        self.cache = cache
        self.resolver = resolver
        self.overlay = overlay
        self.config = config

    def cache_key(self, query: Query) -> str:
        return f"{self.config.namespace}/{query.kind}/{query.argument_id()}"

    def query(self, kind: str, *args):
        """Build the query registered under kind and execute it."""
        try:
            query_cls = QUERY_TYPES[kind]
        except KeyError:
            raise ValueError(f"Unknown query kind: {kind}") from None
        return self.execute(query_cls(*args))

    def execute(self, query: Query):
        key = self.cache_key(query)

        value = self._read_cache(key, query)
        if value is None:
            value = query.compute(self.store, self.resolver)
            # Missing results are never cached
            if value is not None:
                self._write_cache(key, query, value)

        return query.refresh(value, self.overlay)

    def _read_cache(self, key: str, query: Query):
        try:
            data = self.cache.get(key)
            if data is None:
                return None
            return query.decode(data)
        except CacheDecodeError as e:
            logger.warning(f"Ignoring unreadable cache entry {key}: {e}")
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed cache entry {key}: {e}")
        except SQLAlchemyError as e:
            logger.warning(f"Cache read for {key} failed: {e}")
        return None

    def _write_cache(self, key: str, query: Query, value):
        try:
            self.cache.set(key, query.encode(value), query.ttl(self.config))
        except (SQLAlchemyError, TypeError, ValueError) as e:
            logger.warning(f"Cache write for {key} failed: {e}")
