"""
Read side: reference resolution, realtime overlay and cached queries.

Components:
    - resolver: loads referenced operators, services and stops
    - overlay: attaches fresh live journey state
    - queries: cacheable query definitions
    - service: cache-first query execution
"""

from .resolver import ReferenceResolver
from .overlay import RealtimeOverlay
from .queries import JourneyDetail, ServicesByStop, StopsInGroup
from .service import CachedQueryService

__all__ = [
    'ReferenceResolver', 'RealtimeOverlay',
    'JourneyDetail', 'ServicesByStop', 'StopsInGroup',
    'CachedQueryService',
]
