"""Tests for the local and HTTP blob stores."""

import asyncio
import hashlib
import hmac
from types import SimpleNamespace
from urllib.parse import parse_qs, urlsplit

import pytest
import requests

from conftest import BytesStream, SlowUploadSession
from core.config import Config
from core.errors import ConfigError
from storage.backends.http import HttpBlobStore
from storage.backends.local import LocalBlobStore
from storage.manager import create_blob_store


class FailingStream(BytesStream):
    async def read(self, n=-1):
        if self._pos:
            raise ConnectionError("source went away")
        return await super().read(n)


class TestLocalBlobStore:
    def test_upload_download(self, tmp_path):
        store = LocalBlobStore(tmp_path)

        store.upload("c", "a.png", b"data", "image/png")

        assert store.download("c", "a.png") == b"data"
        assert store.temporary_read_url("c", "a.png", 60) == str(tmp_path.resolve() / "c" / "a.png")

    def test_read_url_for_missing_blob(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            LocalBlobStore(tmp_path).temporary_read_url("c", "missing", 60)

    @pytest.mark.parametrize("blob_id", ["../../etc/passwd", "/etc/passwd"])
    def test_path_escape_rejected(self, tmp_path, blob_id):
        with pytest.raises(ValueError):
            LocalBlobStore(tmp_path / "root").path_for("c", blob_id)

    @pytest.mark.asyncio
    async def test_streaming_sink_replaces_blob(self, tmp_path):
        store = LocalBlobStore(tmp_path, chunk_size=3)
        store.upload("c", "v.mp4", b"original", "video/mp4")

        await store.streaming_upload_sink("c", "v.mp4", "video/mp4")(BytesStream(b"watermarked bytes"))

        assert store.download("c", "v.mp4") == b"watermarked bytes"
        assert list((tmp_path / "c").iterdir()) == [tmp_path / "c" / "v.mp4"]

    @pytest.mark.asyncio
    async def test_failed_stream_keeps_original(self, tmp_path):
        store = LocalBlobStore(tmp_path, chunk_size=4)
        store.upload("c", "v.mp4", b"original", "video/mp4")

        with pytest.raises(ConnectionError):
            await store.streaming_upload_sink("c", "v.mp4", "video/mp4")(FailingStream(b"partial output"))

        assert store.download("c", "v.mp4") == b"original"
        assert not (tmp_path / "c" / "v.mp4.part").exists()


class FakeHttpSession:
    def __init__(self, status_code=201):
        self.status_code = status_code
        self.requests = []

    def _response(self, content=b""):
        def raise_for_status():
            if self.status_code >= 400:
                raise requests.HTTPError(f"HTTP {self.status_code}")
        return SimpleNamespace(status_code=self.status_code, content=content, raise_for_status=raise_for_status)

    def get(self, url, timeout=None):
        self.requests.append(("GET", url, None, {}))
        return self._response(b"blob")

    def put(self, url, data=None, headers=None, timeout=None):
        body = data if isinstance(data, bytes) else b"".join(data)
        self.requests.append(("PUT", url, body, headers))
        return self._response()

    def close(self):
        pass


class TestHttpBlobStore:
    def test_blob_url_quotes_segments(self):
        store = HttpBlobStore("https://blobs.example/", session=FakeHttpSession())

        assert store.blob_url("c", "a b/c.png") == "https://blobs.example/c/a%20b%2Fc.png"

    def test_signed_read_url_verifies(self):
        store = HttpBlobStore("https://blobs.example", signing_key="k3y", session=FakeHttpSession())

        url = store.temporary_read_url("c", "v.mp4", 3600)

        parts = urlsplit(url)
        query = parse_qs(parts.query)
        expires = query["expires"][0]
        expected = hmac.new(b"k3y", f"c/v.mp4:{expires}".encode(), hashlib.sha256).hexdigest()
        assert parts.path == "/c/v.mp4"
        assert query["signature"] == [expected]

    def test_unsigned_read_url(self):
        store = HttpBlobStore("https://blobs.example", session=FakeHttpSession())

        assert store.temporary_read_url("c", "v.mp4", 3600) == "https://blobs.example/c/v.mp4"

    def test_upload_and_download(self):
        session = FakeHttpSession()
        store = HttpBlobStore("https://blobs.example", session=session)

        store.upload("c", "a.png", b"png", "image/png")

        assert store.download("c", "a.png") == b"blob"
        method, url, body, headers = session.requests[0]
        assert (method, url, body) == ("PUT", "https://blobs.example/c/a.png", b"png")
        assert headers["Content-Type"] == "image/png"

    def test_upload_error_status_raises(self):
        store = HttpBlobStore("https://blobs.example", session=FakeHttpSession(status_code=503))

        with pytest.raises(requests.HTTPError):
            store.upload("c", "a.png", b"png", "image/png")

    @pytest.mark.asyncio
    async def test_streaming_sink_sends_whole_stream(self):
        session = FakeHttpSession()
        store = HttpBlobStore("https://blobs.example", session=session, chunk_size=5)

        await store.streaming_upload_sink("c", "v.mp4", "video/mp4")(BytesStream(b"fragmented mp4 bytes"))

        method, url, body, headers = session.requests[0]
        assert (method, url, body) == ("PUT", "https://blobs.example/c/v.mp4", b"fragmented mp4 bytes")
        assert headers["Content-Type"] == "video/mp4"

    @pytest.mark.asyncio
    async def test_cancelled_sink_waits_for_upload_to_stop(self):
        session = SlowUploadSession(delay=0.2)
        store = HttpBlobStore("https://blobs.example", session=session, chunk_size=4)
        sink = store.streaming_upload_sink("c", "v.mp4", "video/mp4")
        task = asyncio.ensure_future(sink(BytesStream(b"x" * 400)))

        await asyncio.sleep(0.3)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert session.finished.is_set()
        assert session.closed
        assert len(session.received) < 400

    def test_requires_base_url(self):
        with pytest.raises(ValueError):
            HttpBlobStore("")


class TestCreateBlobStore:
    def test_local(self, tmp_path):
        cfg = Config()
        cfg.storage.root = tmp_path / "blobs"

        store = create_blob_store(cfg)

        assert isinstance(store, LocalBlobStore)
        assert store.root == tmp_path / "blobs"

    def test_http(self):
        cfg = Config()
        cfg.storage.backend = "http"
        cfg.storage.base_url = "https://blobs.example"
        cfg.storage.signing_key = "k"

        assert isinstance(create_blob_store(cfg), HttpBlobStore)

    def test_http_without_url(self):
        cfg = Config()
        cfg.storage.backend = "http"

        with pytest.raises(ConfigError):
            create_blob_store(cfg)

    def test_unknown_backend(self):
        cfg = Config()
        cfg.storage.backend = "s3"

        with pytest.raises(ConfigError):
            create_blob_store(cfg)
