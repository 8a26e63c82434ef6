"""
Query the aggregated data from the command line.

Usage:
    python -m transitnexus.aggregator services-by-stop STOP_ID
    python -m transitnexus.aggregator journey JOURNEY_ID [--view basic|detailed|summary]
    python -m transitnexus.aggregator purge-cache
"""

import argparse
import json
import logging
import sys

from transitnexus.canonical.views import (
    journey_basic, journey_departure_summary, journey_detailed, service_basic, stop_basic,
)
from transitnexus.data.cache import CachedResults
from transitnexus.data.db_broker import ConnectionBroker
from transitnexus.data.store import EntityStore
from .overlay import RealtimeOverlay
from .queries import JourneyDetail, ServicesByStop, StopsInGroup
from .resolver import ReferenceResolver
from .service import CachedQueryService

logger = logging.getLogger(__name__)


def build_service(broker: ConnectionBroker) -> CachedQueryService:
    store = EntityStore(broker)
    return CachedQueryService(
        store=store,
        cache=CachedResults(broker),
        resolver=ReferenceResolver(store),
        overlay=RealtimeOverlay(store),
    )


def services_by_stop(service: CachedQueryService, stop_id: str):
    stop = service.store.find_stop(stop_id)
    if stop is None:
        return None
    return {
        "stop": stop_basic(stop).as_dict(),
        "services": [service_basic(s).as_dict() for s in service.execute(ServicesByStop(stop))],
    }


def stops_in_group(service: CachedQueryService, group_id: str):
    return [stop_basic(s).as_dict() for s in service.execute(StopsInGroup(group_id))]


JOURNEY_VIEWS = {
    'basic': journey_basic,
    'detailed': journey_detailed,
    'summary': journey_departure_summary,
}


def journey(service: CachedQueryService, journey_id: str, view: str = 'detailed'):
    result = service.execute(JourneyDetail(journey_id))
    if result is None:
        return None
    return JOURNEY_VIEWS[view](result).as_dict()


def purge_cache(service: CachedQueryService):
    return {"purged": service.cache.purge_expired()}


COMMANDS = {
    'services-by-stop': services_by_stop,
    'stops-in-group': stops_in_group,
    'journey': journey,
    'purge-cache': purge_cache,
}


def main(argv=None):
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description='Transit Nexus aggregated queries',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Services calling at a stop (or any of its platforms)
  python -m transitnexus.aggregator services-by-stop gb-atco-490000077E

  # Member stops of a stop group
  python -m transitnexus.aggregator stops-in-group gb-stopgroup-N0077052

  # A journey with its stops and live state
  python -m transitnexus.aggregator journey gb-bods-VJ1234

  # One line per departure with the stops it leaves from
  python -m transitnexus.aggregator journey gb-bods-VJ1234 --view summary

  # Remove expired cached results
  python -m transitnexus.aggregator purge-cache
        """
    )
    parser.add_argument('command', choices=sorted(COMMANDS))
    parser.add_argument('identifier', nargs='?', help='Stop, stop group or journey identifier')
    parser.add_argument(
        '--view',
        choices=sorted(JOURNEY_VIEWS),
        default='detailed',
        help='Journey representation (default: detailed)'
    )
    args = parser.parse_args(argv)
    if args.command != 'purge-cache' and not args.identifier:
        parser.error(f"{args.command} requires an identifier")

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    service = build_service(ConnectionBroker())
    if args.command == 'purge-cache':
        result = purge_cache(service)
    elif args.command == 'journey':
        result = journey(service, args.identifier, args.view)
    else:
        result = COMMANDS[args.command](service, args.identifier)
    if result is None:
        print(f"Not found: {args.identifier}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
