"""
Transit Nexus Dataset Import Module

Entry Point:
    python -m transitnexus.ingest --datasets gb-dft-naptan

Components:
    - registry: declarative dataset catalogue and dependency ordering
    - download_hooks: per-provider request authentication
    - fetch: download and bundle unpacking
    - parsers: format parser contract and registry
    - orchestrator: runs imports in order and routes the results
"""

from .registry import DatasetDescriptor, DatasetRegistry, import_order, load_registry
from .fetch import DatasetFetcher, Payload
from .parsers import BaseParser, DatasetMetadata, ParserRegistry
from .orchestrator import ImportOrchestrator, ImportReport, run_import

__all__ = [
    'DatasetDescriptor', 'DatasetRegistry', 'import_order', 'load_registry',
    'DatasetFetcher', 'Payload',
    'BaseParser', 'DatasetMetadata', 'ParserRegistry',
    'ImportOrchestrator', 'ImportReport', 'run_import',
]
