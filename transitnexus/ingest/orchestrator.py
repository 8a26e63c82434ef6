"""
Dataset Import Orchestrator

Single entry point for importing the registered transport datasets.
Datasets are imported one at a time in dependency order: fetch, unpack,
parse, then either canonicalize into the store or queue for realtime
processing.

Usage:
    python -m transitnexus.ingest --reset-db
    python -m transitnexus.ingest --datasets gb-dft-bods-gtfs-realtime
"""

import argparse
import logging
import sys
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional

from tqdm import tqdm

from transitnexus.canonical.entities import DataSource, EntityKind, utc_now
from transitnexus.canonical.fingerprint import canonicalize
from transitnexus.config.config_main import import_config
from transitnexus.data.db_broker import ConnectionBroker
from transitnexus.data.queue import QueueBroker
from transitnexus.data.store import EntityStore
from transitnexus.errors import ConfigurationError, NexusError, ParseError
from transitnexus.events.envelope import Event, EventType
from transitnexus.events.publisher import EventPublisher
from .fetch import DatasetFetcher
from .parsers import DatasetMetadata, ParserRegistry
from .registry import DatasetDescriptor, DatasetRegistry, ImportDestination, import_order, load_registry

logger = logging.getLogger(__name__)

# Referenced kinds are written before the kinds that point at them
UPSERT_ORDER = [
    EntityKind.OPERATOR_GROUP,
    EntityKind.OPERATOR,
    EntityKind.STOP,
    EntityKind.STOP_GROUP,
    EntityKind.SERVICE,
    EntityKind.JOURNEY,
    EntityKind.REALTIME_JOURNEY,
    EntityKind.SERVICE_ALERT,
]


class DatasetStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class DatasetResult:
    identifier: str
    status: DatasetStatus
    counts: Dict[str, int] = field(default_factory=dict)
    skipped_payloads: int = 0
    error: Optional[str] = None


@dataclass
class ImportReport:
    results: List[DatasetResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None

    def status_of(self, identifier: str) -> Optional[DatasetStatus]:
        for result in self.results:
            if result.identifier == identifier:
                return result.status
        return None

    def with_status(self, status: DatasetStatus) -> List[str]:
        return [r.identifier for r in self.results if r.status == status]

    @property
    def ok(self) -> bool:
        return all(r.status == DatasetStatus.SUCCEEDED for r in self.results)

    def print_summary(self):
        duration = ((self.finished_at or utc_now()) - self.started_at).total_seconds()

        print(f"\n{'='*70}")
        print("IMPORT SUMMARY")
        print(f"{'='*70}")
        for result in self.results:
            if result.status == DatasetStatus.SUCCEEDED:
                counts = ", ".join(f"{n} {kind}" for kind, n in result.counts.items()) or "no records"
                print(f"  ✓ {result.identifier}: {counts}")
                if result.skipped_payloads:
                    print(f"      ⚠️  {result.skipped_payloads} payloads could not be parsed")
            elif result.status == DatasetStatus.SKIPPED:
                print(f"  - {result.identifier}: skipped ({result.error})")
            else:
                print(f"  ✗ {result.identifier}: {result.error}")
        print(
            f"  Succeeded: {len(self.with_status(DatasetStatus.SUCCEEDED))}, "
            f"failed: {len(self.with_status(DatasetStatus.FAILED))}, "
            f"skipped: {len(self.with_status(DatasetStatus.SKIPPED))}"
        )
        print(f"  Duration: {duration:.2f} seconds")
        print(f"{'='*70}\n")


class ImportOrchestrator:
    """Runs dataset imports in dependency order with per-dataset failure isolation."""

    def __init__(
        self,
        registry: DatasetRegistry,
        fetcher: DatasetFetcher,
        parsers: ParserRegistry,
        store: Optional[EntityStore] = None,
        publisher: Optional[EventPublisher] = None,
        include_availability: bool = import_config.dedupe_include_availability,
        show_progress: bool = True,
    ):
        self.registry = registry
        self.fetcher = fetcher
        self.parsers = parsers
        self.store = store
        self.publisher = publisher
        self.include_availability = include_availability
        self.show_progress = show_progress

    def plan(self, dataset_ids: Optional[Iterable[str]] = None) -> List[DatasetDescriptor]:
        """
        Resolve the datasets to import, in import order.

        Raises:
            RegistryError: an identifier is not registered
            DependencyCycleError: linked datasets form a cycle
            MissingCredentialsError: a download hook lacks credentials
        """
        ordered = import_order(self.registry.select(dataset_ids))
        self.fetcher.check_credentials(ordered)
        return ordered

    def run(self, dataset_ids: Optional[Iterable[str]] = None) -> ImportReport:
        return self.execute(self.plan(dataset_ids))

    def execute(self, ordered: List[DatasetDescriptor]) -> ImportReport:
        """Import already planned datasets; failures are isolated per dataset."""
        report = ImportReport()
        not_imported = set()

        logger.info(f"Importing {len(ordered)} datasets: {', '.join(d.identifier for d in ordered)}")

        for descriptor in tqdm(ordered, desc="Importing datasets", unit="dataset", disable=not self.show_progress):
            if descriptor.linked_dataset in not_imported:
                logger.warning(
                    f"Skipping {descriptor.identifier}: prerequisite {descriptor.linked_dataset} was not imported"
                )
                not_imported.add(descriptor.identifier)
                report.results.append(DatasetResult(
                    descriptor.identifier, DatasetStatus.SKIPPED,
                    error=f"prerequisite {descriptor.linked_dataset} was not imported",
                ))
                continue

            try:
                result = self.import_dataset(descriptor)
            except Exception as e:
                logger.error(f"Import of {descriptor.identifier} failed: {e}", exc_info=not isinstance(e, NexusError))
                not_imported.add(descriptor.identifier)
                report.results.append(DatasetResult(descriptor.identifier, DatasetStatus.FAILED, error=str(e)))
                continue

            report.results.append(result)

        report.finished_at = utc_now()
        return report

    def import_dataset(self, descriptor: DatasetDescriptor) -> DatasetResult:
        parser = self.parsers.get(descriptor.format)
        if parser is None:
            registered = ", ".join(sorted(f.value for f in self.parsers.formats())) or "none"
            raise ConfigurationError(
                f"No parser registered for format {descriptor.format.value} (registered: {registered})"
            )

        payloads = self.fetcher.fetch_payloads(descriptor)
        data_source = DataSource(
            provider_name=descriptor.provider.name,
            dataset_id=descriptor.identifier,
            timestamp=utc_now(),
        )

        entities_by_kind = defaultdict(list)
        unsupported = Counter()
        skipped_payloads = 0

        for payload in payloads:
            metadata = DatasetMetadata(dataset=descriptor, payload_name=payload.name, data_source=data_source)
            try:
                parsed = list(parser.parse(payload.content, metadata))
            except ParseError as e:
                logger.warning(f"{descriptor.identifier}: skipping payload {payload.name}: {e}")
                skipped_payloads += 1
                continue

            for kind, entity in parsed:
                kind = EntityKind(kind)
                if not descriptor.supports(kind):
                    unsupported[kind] += 1
                    continue
                entities_by_kind[kind].append(entity)

        for kind, dropped in unsupported.items():
            logger.info(f"{descriptor.identifier}: dropped {dropped} unsupported {kind.value} records")

        if descriptor.import_destination == ImportDestination.REALTIME_QUEUE:
            counts = self._queue_realtime(descriptor, entities_by_kind)
        else:
            counts = self._store_canonical(descriptor, entities_by_kind, data_source)

        if self.publisher is not None:
            self.publisher.publish(Event(
                type=EventType.DATASET_IMPORTED,
                body={"Dataset": descriptor.identifier, "Counts": counts},
            ))

        return DatasetResult(
            descriptor.identifier, DatasetStatus.SUCCEEDED,
            counts=counts, skipped_payloads=skipped_payloads,
        )

    def _store_canonical(self, descriptor, entities_by_kind, data_source) -> Dict[str, int]:
        if self.store is None:
            raise ConfigurationError(f"{descriptor.identifier} imports to the store but no store is configured")

        canonical = canonicalize(dict(entities_by_kind), self.include_availability, data_source)
        counts = {}
        for kind in UPSERT_ORDER:
            entities = canonical.get(kind)
            if entities:
                counts[kind.value] = self.store.upsert(kind, entities)
        return counts

    def _queue_realtime(self, descriptor, entities_by_kind) -> Dict[str, int]:
        if self.publisher is None:
            raise ConfigurationError(f"{descriptor.identifier} imports to the realtime queue but no publisher is configured")

        counts = {}
        for kind in UPSERT_ORDER:
            entities = entities_by_kind.get(kind)
            if entities:
                counts[kind.value] = self.publisher.publish_entities(kind, entities)
        return counts


def run_import(
    dataset_ids: Optional[List[str]] = None,
    registry_path: Optional[str] = None,
    reset_db: bool = False,
    parsers: Optional[ParserRegistry] = None,
    broker: Optional[ConnectionBroker] = None,
) -> ImportReport:
    """
    Execute a dataset import against the configured database.

    Args:
        dataset_ids: Datasets to import, prerequisites included (default: all)
        registry_path: Dataset registry YAML (default from env)
        reset_db: Drop and recreate all tables before importing
        parsers: Format parsers to dispatch payloads to
        broker: Database connection broker (default from env)
    """
    print(f"\n{'#'*70}")
    print("# TRANSIT NEXUS - DATASET IMPORT")
    print(f"# Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"{'#'*70}\n")

    broker = broker or ConnectionBroker()
    store = EntityStore(broker)

    # Configuration problems abort before the database is touched
    try:
        orchestrator = ImportOrchestrator(
            registry=load_registry(registry_path),
            fetcher=DatasetFetcher(),
            parsers=parsers or ParserRegistry(),
            store=store,
            publisher=EventPublisher(QueueBroker(broker)),
        )
        ordered = orchestrator.plan(dataset_ids)
    except ConfigurationError as e:
        print(f"\n{'!'*70}")
        print("! IMPORT ABORTED")
        print(f"! Error: {e}")
        print(f"{'!'*70}\n")
        raise

    broker.create_tables(drop_existing=reset_db)
    report = orchestrator.execute(ordered)
    report.print_summary()

    print("Stored records:")
    for kind in UPSERT_ORDER:
        print(f"  {kind.value:<20} {store.count(kind)}")
    print()
    return report


def list_datasets(registry_path: Optional[str] = None):
    registry = load_registry(registry_path)
    for descriptor in import_order(registry):
        linked = f" (after {descriptor.linked_dataset})" if descriptor.linked_dataset else ""
        print(
            f"  {descriptor.identifier:<32} {descriptor.format.value:<18} "
            f"-> {descriptor.import_destination.value}{linked}"
        )


def main(argv=None):
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description='Transit Nexus Dataset Import',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Import every registered dataset
  python -m transitnexus.ingest

  # Import one dataset (its prerequisites are imported first)
  python -m transitnexus.ingest --datasets gb-dft-bods-gtfs-realtime

  # Use a different registry and start from an empty database
  python -m transitnexus.ingest --registry ./datasets.yaml --reset-db

  # Show the registered datasets in import order
  python -m transitnexus.ingest --list
        """
    )

    parser.add_argument(
        '--datasets',
        type=str,
        default=None,
        help='Comma-separated dataset identifiers (default: all registered datasets)'
    )

    parser.add_argument(
        '--registry',
        type=str,
        default=None,
        help='Dataset registry YAML (default: NEXUS_DATASET_REGISTRY or the bundled registry)'
    )

    parser.add_argument(
        '--reset-db',
        action='store_true',
        help='Drop and recreate all tables before importing (DESTRUCTIVE)'
    )

    parser.add_argument(
        '--list',
        action='store_true',
        help='List registered datasets in import order and exit'
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if args.list:
        list_datasets(args.registry)
        return 0

    dataset_ids = None
    if args.datasets:
        dataset_ids = [d.strip() for d in args.datasets.split(',') if d.strip()]

    # Confirm destructive operation
    if args.reset_db:
        print("\n⚠️  WARNING: --reset-db will DELETE ALL EXISTING DATA!")
        response = input("Are you sure you want to continue? (yes/no): ")
        if response.lower() != 'yes':
            print("Aborted.")
            return 0

    try:
        report = run_import(dataset_ids=dataset_ids, registry_path=args.registry, reset_db=args.reset_db)
    except ConfigurationError:
        return 2

    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
