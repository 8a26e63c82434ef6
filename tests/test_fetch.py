"""
Tests for dataset download, request hooks and bundle unpacking.
"""

import gzip
import io
import zipfile
from types import SimpleNamespace
from unittest.mock import Mock

import pytest
import requests

from transitnexus.errors import FetchError, MissingCredentialsError
from transitnexus.ingest.download_hooks import (
    BodsApiKeyHook, NationalRailTokenHook, NetworkRailBasicAuthHook,
)
from transitnexus.ingest.fetch import DatasetFetcher, unpack_bundle
from transitnexus.ingest.registry import BundleFormat, DatasetDescriptor


def credentials(**values):
    creds = SimpleNamespace(nationalrail_auth_url="https://auth.example/authenticate", **values)
    creds.get = lambda name: getattr(creds, name, "") or ""
    return creds


def descriptor(source, bundle_format="none", hook=None):
    return DatasetDescriptor.from_dict({
        "identifier": "test-dataset",
        "format": "gtfs-schedule",
        "provider": {"name": "Test"},
        "source": source,
        "bundle_format": bundle_format,
        "download_hook": hook,
    })


def ok_response(content=b"payload"):
    response = Mock()
    response.content = content
    response.raise_for_status = Mock()
    return response


def error_response(status):
    response = Mock()
    response.status_code = status
    response.raise_for_status = Mock(side_effect=requests.exceptions.HTTPError(f"{status} error", response=response))
    return response


def zip_bytes(files):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("nested/", "")
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()


class TestUnpackBundle:
    def test_none_passthrough(self):
        payloads = unpack_bundle(BundleFormat.NONE, b"raw bytes", "feed.xml")
        assert len(payloads) == 1
        assert payloads[0].name == "feed.xml"
        assert payloads[0].content == b"raw bytes"

    def test_gzip(self):
        payloads = unpack_bundle(BundleFormat.GZ, gzip.compress(b'{"TIPLOCDATA": []}'), "corpus.gz")
        assert [p.content for p in payloads] == [b'{"TIPLOCDATA": []}']

    def test_zip_one_payload_per_file(self):
        raw = zip_bytes({"a.xml": b"<a/>", "nested/b.xml": b"<b/>"})
        payloads = unpack_bundle(BundleFormat.ZIP, raw, "bundle.zip")

        assert [p.name for p in payloads] == ["a.xml", "nested/b.xml"]
        assert [p.content for p in payloads] == [b"<a/>", b"<b/>"]

    def test_corrupt_zip(self):
        with pytest.raises(FetchError):
            unpack_bundle(BundleFormat.ZIP, b"definitely not a zip", "bundle.zip")

    def test_corrupt_gzip(self):
        with pytest.raises(FetchError):
            unpack_bundle(BundleFormat.GZ, b"definitely not gzip", "corpus.gz")


class TestDownloadHooks:
    def test_bods_api_key_added_as_query_parameter(self):
        request = requests.Request("GET", "https://data.bus-data.dft.gov.uk/avl/download/gtfsrt")
        BodsApiKeyHook(credentials(bods_api_key="secret"))(request)

        prepared = requests.Session().prepare_request(request)
        assert "api_key=secret" in prepared.url

    def test_networkrail_basic_auth(self):
        request = requests.Request("GET", "https://publicdatafeeds.networkrail.co.uk/ntrod/x")
        NetworkRailBasicAuthHook(credentials(networkrail_username="user", networkrail_password="pass"))(request)

        prepared = requests.Session().prepare_request(request)
        assert prepared.headers["Authorization"].startswith("Basic ")

    def test_nationalrail_token_header(self):
        session = Mock()
        login = ok_response()
        login.json = Mock(return_value={"token": "abc123"})
        session.post = Mock(return_value=login)
        hook = NationalRailTokenHook(
            credentials(nationalrail_username="user", nationalrail_password="pass"), session=session
        )

        request = requests.Request("GET", "https://opendata.nationalrail.co.uk/api/staticfeeds/4.0/tocs")
        hook(request)

        assert request.headers["X-Auth-Token"] == "abc123"
        assert session.post.call_args.kwargs["data"] == {"username": "user", "password": "pass"}

    def test_nationalrail_login_without_token(self):
        session = Mock()
        login = ok_response()
        login.json = Mock(return_value={})
        session.post = Mock(return_value=login)
        hook = NationalRailTokenHook(
            credentials(nationalrail_username="user", nationalrail_password="pass"), session=session
        )

        with pytest.raises(FetchError):
            hook(requests.Request("GET", "https://opendata.nationalrail.co.uk/x"))

    def test_missing_credentials_reported(self):
        hook = NetworkRailBasicAuthHook(credentials(networkrail_username="user"))
        assert hook.missing_credentials() == ["networkrail_password"]

    def test_no_hook(self):
        assert DatasetFetcher(session=Mock()).hook_for(descriptor("https://example.test/open")) is None

    def test_hook_instances_shared_per_fetcher(self):
        fetcher = DatasetFetcher(session=Mock(), credentials=credentials(bods_api_key="key"))
        first = fetcher.hook_for(descriptor("https://example.test/a", hook="bods-api-key"))
        second = fetcher.hook_for(descriptor("https://example.test/b", hook="bods-api-key"))
        assert isinstance(first, BodsApiKeyHook)
        assert first is second


class TestDatasetFetcher:
    def test_local_file(self, tmp_path):
        path = tmp_path / "stops.xml"
        path.write_bytes(b"<stops/>")
        session = Mock()

        payloads = DatasetFetcher(session=session).fetch_payloads(descriptor(str(path)))

        assert [p.content for p in payloads] == [b"<stops/>"]
        session.send.assert_not_called()

    def test_file_url_zip(self, tmp_path):
        path = tmp_path / "bundle.zip"
        path.write_bytes(zip_bytes({"one.json": b"1", "two.json": b"2"}))

        payloads = DatasetFetcher(session=Mock()).fetch_payloads(descriptor(path.as_uri(), "zip"))

        assert sorted(p.name for p in payloads) == ["one.json", "two.json"]

    def test_missing_local_file(self, tmp_path):
        with pytest.raises(FetchError):
            DatasetFetcher(session=Mock()).fetch(descriptor(str(tmp_path / "missing.xml")))

    def test_hook_mutates_outgoing_request(self):
        session = requests.Session()
        session.send = Mock(return_value=ok_response(b"data"))
        fetcher = DatasetFetcher(session=session, credentials=credentials(bods_api_key="secret"))

        content = fetcher.fetch(descriptor("https://example.test/feed", hook="bods-api-key"))

        assert content == b"data"
        prepared = session.send.call_args.args[0]
        assert prepared.url == "https://example.test/feed?api_key=secret"

    def test_retries_server_errors(self):
        session = requests.Session()
        session.send = Mock(side_effect=[error_response(503), ok_response(b"data")])
        fetcher = DatasetFetcher(session=session, max_retries=3, backoff_seconds=0)

        assert fetcher.fetch(descriptor("https://example.test/feed")) == b"data"
        assert session.send.call_count == 2

    def test_client_errors_not_retried(self):
        session = requests.Session()
        session.send = Mock(return_value=error_response(404))
        fetcher = DatasetFetcher(session=session, max_retries=3, backoff_seconds=0)

        with pytest.raises(FetchError):
            fetcher.fetch(descriptor("https://example.test/feed"))
        assert session.send.call_count == 1

    def test_gives_up_after_max_retries(self):
        session = requests.Session()
        session.send = Mock(side_effect=requests.exceptions.ConnectionError("refused"))
        fetcher = DatasetFetcher(session=session, max_retries=3, backoff_seconds=0)

        with pytest.raises(FetchError):
            fetcher.fetch(descriptor("https://example.test/feed"))
        assert session.send.call_count == 3

    def test_check_credentials(self):
        fetcher = DatasetFetcher(session=Mock(), credentials=credentials(bods_api_key=""))

        with pytest.raises(MissingCredentialsError) as excinfo:
            fetcher.check_credentials([descriptor("https://example.test/feed", hook="bods-api-key")])
        assert excinfo.value.missing == ["bods_api_key"]
