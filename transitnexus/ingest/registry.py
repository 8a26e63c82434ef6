"""
Dataset Registry

Declarative catalogue of the source feeds, loaded from YAML at startup, and
the dependency ordering used to import them.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import yaml

from transitnexus.canonical.entities import EntityKind
from transitnexus.config.config_main import import_config
from transitnexus.errors import DependencyCycleError, RegistryError

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_PATH = Path(__file__).parent / "datasets.yaml"


class DatasetFormat(str, Enum):
    TRAVELINE_NOC = "traveline-noc"
    NAPTAN = "naptan"
    NATIONALRAIL_TOC = "nationalrail-toc"
    NETWORKRAIL_CORPUS = "networkrail-corpus"
    SIRI_VM = "siri-vm"
    GTFS_SCHEDULE = "gtfs-schedule"
    GTFS_REALTIME = "gtfs-realtime"
    CIF = "cif"


class BundleFormat(str, Enum):
    NONE = "none"
    GZ = "gz"
    ZIP = "zip"


class ImportDestination(str, Enum):
    STORE = "store"
    REALTIME_QUEUE = "realtime-queue"


@dataclass(frozen=True)
class Provider:
    name: str
    website: str = ""


@dataclass(frozen=True)
class DatasetDescriptor:
    identifier: str
    format: DatasetFormat
    provider: Provider
    source: str
    bundle_format: BundleFormat = BundleFormat.NONE
    supported_objects: frozenset = field(default_factory=frozenset)
    import_destination: ImportDestination = ImportDestination.STORE
    linked_dataset: Optional[str] = None
    download_hook: Optional[str] = None

    def supports(self, kind: EntityKind) -> bool:
        return EntityKind(kind) in self.supported_objects

    @classmethod
    def from_dict(cls, data: dict) -> "DatasetDescriptor":
        identifier = data.get("identifier")
        if not identifier:
            raise RegistryError(f"Dataset entry without identifier: {data}")

        try:
            provider = data.get("provider") or {}
            return cls(
                identifier=identifier,
                format=DatasetFormat(data["format"]),
                provider=Provider(name=provider.get("name", ""), website=provider.get("website", "")),
                source=data["source"],
                bundle_format=BundleFormat(data.get("bundle_format", "none")),
                supported_objects=frozenset(EntityKind(k) for k in data.get("supported_objects") or []),
                import_destination=ImportDestination(data.get("import_destination", "store")),
                linked_dataset=data.get("linked_dataset") or None,
                download_hook=data.get("download_hook") or None,
            )
        except KeyError as e:
            raise RegistryError(f"Dataset {identifier} is missing required field {e}") from e
        except ValueError as e:
            raise RegistryError(f"Dataset {identifier} has an invalid value: {e}") from e


class DatasetRegistry:
    """Immutable, validated set of dataset descriptors in registration order."""

    def __init__(self, descriptors: Iterable[DatasetDescriptor], known_hooks: Optional[Iterable[str]] = None):
        self._descriptors: Dict[str, DatasetDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.identifier in self._descriptors:
                raise RegistryError(f"Duplicate dataset identifier: {descriptor.identifier}")
            self._descriptors[descriptor.identifier] = descriptor

        hooks = set(known_hooks) if known_hooks is not None else None
        for descriptor in self._descriptors.values():
            if descriptor.linked_dataset and descriptor.linked_dataset not in self._descriptors:
                raise RegistryError(
                    f"Dataset {descriptor.identifier} links to unknown dataset {descriptor.linked_dataset}"
                )
            if hooks is not None and descriptor.download_hook and descriptor.download_hook not in hooks:
                raise RegistryError(
                    f"Dataset {descriptor.identifier} uses unknown download hook {descriptor.download_hook}"
                )

    def __iter__(self):
        return iter(self._descriptors.values())

    def __len__(self):
        return len(self._descriptors)

    def __contains__(self, identifier):
        return identifier in self._descriptors

    def get(self, identifier: str) -> DatasetDescriptor:
        try:
            return self._descriptors[identifier]
        except KeyError:
            raise RegistryError(f"Unknown dataset: {identifier}") from None

    def select(self, identifiers: Optional[Iterable[str]] = None) -> List[DatasetDescriptor]:
        """
        Descriptors for the requested identifiers plus their prerequisite chains.

        With no identifiers every registered dataset is selected.
        """
        if identifiers is None:
            return list(self)

        wanted = set()
        for identifier in identifiers:
            current = self.get(identifier)
            while current is not None and current.identifier not in wanted:
                wanted.add(current.identifier)
                current = self.get(current.linked_dataset) if current.linked_dataset else None

        return [d for d in self if d.identifier in wanted]


def load_registry(path=None, known_hooks: Optional[Iterable[str]] = None) -> DatasetRegistry:
    """
    Load dataset descriptors from YAML.

    Args:
        path: Registry file (default: NEXUS_DATASET_REGISTRY or the bundled datasets.yaml)
        known_hooks: Hook names accepted in ``download_hook`` (default: all registered hooks)
    """
    if known_hooks is None:
        from .download_hooks import DOWNLOAD_HOOKS
        known_hooks = DOWNLOAD_HOOKS.keys()

    path = Path(path or import_config.registry_path or DEFAULT_REGISTRY_PATH)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except OSError as e:
        raise RegistryError(f"Cannot read dataset registry {path}: {e}") from e
    except yaml.YAMLError as e:
        raise RegistryError(f"Invalid dataset registry {path}: {e}") from e

    entries = data.get("datasets") if isinstance(data, dict) else None
    if not isinstance(entries, list):
        raise RegistryError(f"Dataset registry {path} must contain a 'datasets' list")

    registry = DatasetRegistry((DatasetDescriptor.from_dict(entry) for entry in entries), known_hooks)
    logger.info(f"Loaded {len(registry)} datasets from {path}")
    return registry


def import_order(descriptors: Iterable[DatasetDescriptor]) -> List[DatasetDescriptor]:
    """
    Order datasets so each one follows its linked (prerequisite) dataset.

    Ties keep registration order. A prerequisite outside the given set is
    treated as already satisfied.

    Raises:
        DependencyCycleError: the linked datasets form a cycle
    """
    descriptors = list(descriptors)
    by_id = {d.identifier: d for d in descriptors}
    dependents: Dict[str, List[str]] = {d.identifier: [] for d in descriptors}
    pending = {}

    for descriptor in descriptors:
        prerequisite = descriptor.linked_dataset
        if prerequisite and prerequisite in by_id:
            dependents[prerequisite].append(descriptor.identifier)
            pending[descriptor.identifier] = 1
        else:
            pending[descriptor.identifier] = 0

    position = {d.identifier: index for index, d in enumerate(descriptors)}
    ready = [d.identifier for d in descriptors if pending[d.identifier] == 0]
    ordered = []

    while ready:
        ready.sort(key=position.get)
        identifier = ready.pop(0)
        ordered.append(by_id[identifier])
        for dependent in dependents[identifier]:
            pending[dependent] -= 1
            if pending[dependent] == 0:
                ready.append(dependent)

    if len(ordered) != len(descriptors):
        done = {d.identifier for d in ordered}
        raise DependencyCycleError(d.identifier for d in descriptors if d.identifier not in done)

    return ordered
