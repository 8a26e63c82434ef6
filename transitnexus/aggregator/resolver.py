"""
Reference Resolver

Fills in the resolved relation fields of canonical entities (operator,
service, path stops, stop group members) from store lookups. A reference
that cannot be found simply leaves the field unset.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional

from transitnexus.canonical.entities import EntityKind, Journey, JourneyPathItem, Service, StopGroup
from transitnexus.data.store import EntityStore

logger = logging.getLogger(__name__)


class ReferenceResolver:
    def __init__(self, store: EntityStore, max_workers: Optional[int] = None):
        """
        Args:
            store: Entity store used for every lookup
            max_workers: Upper bound on threads used to resolve one journey's path
        """
        self.store = store
        self.max_workers = max_workers

    def resolve_operator(self, entity):
        """Journey or Service: load the operator by primary or alternate identifier."""
        if entity.operator is not None or not entity.operator_ref:
            return
        entity.operator = self.store.find_operator(entity.operator_ref)

    def resolve_service(self, journey: Journey):
        if journey.service is not None or not journey.service_ref:
            return
        journey.service = self.store.get(EntityKind.SERVICE, journey.service_ref)

    def resolve_references(self, journey: Journey):
        self.resolve_operator(journey)
        self.resolve_service(journey)

    def resolve_path_item(self, item: JourneyPathItem):
        if item.origin_stop is None:
            item.origin_stop = self.store.find_stop(item.origin_stop_ref)
        if item.destination_stop is None:
            item.destination_stop = self.store.find_stop(item.destination_stop_ref)

    def resolve_deep(self, journey: Journey) -> List[Exception]:
        """
        Resolve every path item's stops concurrently.

        Returns only once every path item has been attempted. Lookup errors are
        logged and returned rather than raised.
        """
        if not journey.path:
            return []

        max_workers = len(journey.path)
        if self.max_workers:
            max_workers = min(max_workers, self.max_workers)

        errors = []
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {
                executor.submit(self.resolve_path_item, item): index
                for index, item in enumerate(journey.path)
            }
            for future in as_completed(futures):
                error = future.exception()
                if error is not None:
                    logger.warning(
                        f"Failed to resolve path item {futures[future]} of {journey.primary_identifier}: {error}"
                    )
                    errors.append(error)

        return errors

    def resolve_stop_group(self, group: StopGroup):
        if group.stops is None:
            group.stops = self.store.find_stops_in_group(group.primary_identifier)

    def transform(self, entity, depth: int = 1):
        """
        Resolve an entity's references to the given depth.

        Depth 1 loads direct references (a service's operator, a journey's
        operator and service). Depth 2 also loads a journey's path stops and
        its service's operator.
        """
        if depth < 1:
            return entity

        if isinstance(entity, Service):
            self.resolve_operator(entity)
        elif isinstance(entity, Journey):
            self.resolve_references(entity)
            if depth >= 2:
                self.resolve_deep(entity)
                if entity.service is not None:
                    self.resolve_operator(entity.service)
        elif isinstance(entity, StopGroup):
            self.resolve_stop_group(entity)

        return entity
