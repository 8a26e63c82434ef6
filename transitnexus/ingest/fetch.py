"""
Fetch & Unpack

Downloads a dataset's source (HTTP or local file), lets the dataset's download
hook authenticate the request, and splits the bundle into payloads.
"""

import gzip
import io
import logging
import time
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import urlparse
from urllib.request import url2pathname

import requests

from transitnexus.config.config_main import credentials_config, import_config
from transitnexus.errors import FetchError, MissingCredentialsError
from .download_hooks import DOWNLOAD_HOOKS, DownloadHook
from .registry import BundleFormat, DatasetDescriptor

logger = logging.getLogger(__name__)


@dataclass
class Payload:
    name: str
    content: bytes


def unpack_bundle(bundle_format: BundleFormat, raw: bytes, name: str = "payload") -> List[Payload]:
    """
    Split a downloaded bundle into payloads.

    none passes the bytes through, gz decompresses a single stream and zip
    yields one payload per file entry.
    """
    bundle_format = BundleFormat(bundle_format)
    try:
        if bundle_format == BundleFormat.NONE:
            return [Payload(name=name, content=raw)]

        if bundle_format == BundleFormat.GZ:
            return [Payload(name=name, content=gzip.decompress(raw))]

        payloads = []
        with zipfile.ZipFile(io.BytesIO(raw)) as archive:
            for entry in archive.infolist():
                if entry.is_dir():
                    continue
                payloads.append(Payload(name=entry.filename, content=archive.read(entry)))
        return payloads
    except (OSError, EOFError, zipfile.BadZipFile) as e:
        raise FetchError(f"Could not unpack {bundle_format.value} bundle {name}: {e}") from e


class DatasetFetcher:
    def __init__(self, session: Optional[requests.Session] = None,
                 credentials=credentials_config,
                 timeout: int = import_config.request_timeout,
                 max_retries: int = import_config.max_retries,
                 backoff_seconds: float = 1.0,
                 hooks: Optional[Dict[str, type]] = None):
        self.session = session or requests.Session()
        self.credentials = credentials
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds
        self.hooks = hooks if hooks is not None else DOWNLOAD_HOOKS
        self._hook_instances: Dict[str, DownloadHook] = {}

    def hook_for(self, descriptor: DatasetDescriptor) -> Optional[DownloadHook]:
        name = descriptor.download_hook
        if not name:
            return None
        if name not in self._hook_instances:
            self._hook_instances[name] = self.hooks[name](self.credentials)
        return self._hook_instances[name]

    def check_credentials(self, descriptors):
        """
        Raises:
            MissingCredentialsError: for the first dataset whose hook lacks credentials
        """
        for descriptor in descriptors:
            hook = self.hook_for(descriptor)
            if hook is None:
                continue
            missing = hook.missing_credentials()
            if missing:
                raise MissingCredentialsError(descriptor.identifier, missing)

    def fetch(self, descriptor: DatasetDescriptor) -> bytes:
        local_path = self._local_path(descriptor.source)
        if local_path is not None:
            try:
                return local_path.read_bytes()
            except OSError as e:
                raise FetchError(f"Cannot read {descriptor.identifier} from {local_path}: {e}") from e

        request = requests.Request("GET", descriptor.source)
        hook = self.hook_for(descriptor)
        if hook is not None:
            try:
                hook(request)
            except FetchError:
                raise
            except Exception as e:
                raise FetchError(f"Download hook {descriptor.download_hook} failed for {descriptor.identifier}: {e}") from e

        prepared = self.session.prepare_request(request)
        return self._execute_request(descriptor, prepared)

    def fetch_payloads(self, descriptor: DatasetDescriptor) -> List[Payload]:
        raw = self.fetch(descriptor)
        name = Path(urlparse(descriptor.source).path).name or descriptor.identifier
        payloads = unpack_bundle(descriptor.bundle_format, raw, name)
        logger.info(f"Fetched {descriptor.identifier}: {len(raw)} bytes, {len(payloads)} payloads")
        return payloads

    @staticmethod
    def _local_path(source: str) -> Optional[Path]:
        parsed = urlparse(source)
        if parsed.scheme == "file":
            return Path(url2pathname(parsed.path))
        if parsed.scheme in ("http", "https"):
            return None
        return Path(source)

    def _execute_request(self, descriptor: DatasetDescriptor, prepared) -> bytes:
        for attempt in range(self.max_retries):
            try:
                response = self.session.send(prepared, timeout=self.timeout)
                response.raise_for_status()
                return response.content
            except requests.exceptions.HTTPError as e:
                status = e.response.status_code if e.response is not None else None
                if status is not None and status >= 500 and attempt < self.max_retries - 1:
                    self._backoff(descriptor, attempt, f"HTTP {status}")
                else:
                    raise FetchError(f"Download of {descriptor.identifier} failed: {e}") from e
            except requests.RequestException as e:
                if attempt < self.max_retries - 1:
                    self._backoff(descriptor, attempt, str(e))
                else:
                    raise FetchError(f"Download of {descriptor.identifier} failed: {e}") from e

        raise FetchError(f"Download of {descriptor.identifier} failed")

    def _backoff(self, descriptor: DatasetDescriptor, attempt: int, reason: str):
        wait_time = self.backoff_seconds * (2 ** attempt)  # Exponential backoff: 1s, 2s, 4s
        logger.warning(
            f"{descriptor.identifier}: {reason}, retrying in {wait_time}s... "
            f"(attempt {attempt + 1}/{self.max_retries})"
        )
        time.sleep(wait_time)
