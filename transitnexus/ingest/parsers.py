"""
Parser boundary

Parsers turn one payload of a feed format into canonical entities. Concrete
format parsers live outside this package and are registered per format.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from transitnexus.canonical.entities import DataSource, EntityKind
from .registry import DatasetDescriptor, DatasetFormat


@dataclass(frozen=True)
class DatasetMetadata:
    dataset: DatasetDescriptor
    payload_name: str
    data_source: DataSource


class BaseParser(ABC):
    @abstractmethod
    def parse(self, raw: bytes, metadata: DatasetMetadata) -> Iterable[Tuple[EntityKind, object]]:
        """
        Parse one payload into (kind, entity) pairs.

        Unknown or partial records are skipped. Raises ParseError when the
        payload as a whole is malformed.
        """
        raise NotImplementedError


class ParserRegistry:
    def __init__(self, parsers: Optional[Dict[DatasetFormat, BaseParser]] = None):
        self._parsers: Dict[DatasetFormat, BaseParser] = {}
        for dataset_format, parser in (parsers or {}).items():
            self.register(dataset_format, parser)

    def register(self, dataset_format: DatasetFormat, parser: BaseParser):
        self._parsers[DatasetFormat(dataset_format)] = parser

    def get(self, dataset_format: DatasetFormat) -> Optional[BaseParser]:
        return self._parsers.get(DatasetFormat(dataset_format))

    def formats(self):
        return set(self._parsers)
