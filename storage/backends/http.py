"""
HTTP blob store client (requests)

Talks to a plain object-store endpoint:
    GET  {base_url}/{container}/{blob_id}
    PUT  {base_url}/{container}/{blob_id}   (chunked body for streams)
Read URLs are signed with HMAC-SHA256 over "{container}/{blob_id}:{expires}".
"""

import asyncio
import hashlib
import hmac
import threading
import time
from typing import Iterator, Optional
from urllib.parse import quote, urlencode

import requests

from core.models import ByteStream, Sink
from core.utils.logging import get_logger
from storage.base import BlobStore

logger = get_logger(__name__)


class UploadAborted(Exception):
    pass


class HttpBlobStore(BlobStore):
    def __init__(self, base_url: str, signing_key: Optional[str] = None, timeout: float = 600.0,
                 chunk_size: int = 4 * 1024 * 1024, session: Optional[requests.Session] = None,
                 cancel_grace: float = 10.0):
        if not base_url:
            raise ValueError("base_url is required for the HTTP blob store")
        self.base_url = base_url.rstrip("/")
        self.signing_key = signing_key
        self.timeout = timeout
        self.chunk_size = chunk_size
        self.cancel_grace = cancel_grace
        self.session = session or requests.Session()
        if not signing_key:
            logger.warning("No signing key set; temporary read URLs will be unsigned")

    def blob_url(self, container: str, blob_id: str) -> str:
        return f"{self.base_url}/{quote(container, safe='')}/{quote(blob_id, safe='')}"

    def download(self, container: str, blob_id: str) -> bytes:
        r = self.session.get(self.blob_url(container, blob_id), timeout=self.timeout)
        r.raise_for_status()
        return r.content

    def upload(self, container: str, blob_id: str, data: bytes, content_type: str) -> None:
        r = self.session.put(
            self.blob_url(container, blob_id),
            data=data,
            headers={"Content-Type": content_type},
            timeout=self.timeout,
        )
        r.raise_for_status()
        logger.info(f"Uploaded {container}/{blob_id} ({len(data)} bytes)")

    def sign(self, container: str, blob_id: str, expires: int) -> str:
        message = f"{container}/{blob_id}:{expires}".encode("utf-8")
        return hmac.new(self.signing_key.encode("utf-8"), message, hashlib.sha256).hexdigest()

    def temporary_read_url(self, container: str, blob_id: str, ttl: int) -> str:
        url = self.blob_url(container, blob_id)
        if not self.signing_key:
            return url
        expires = int(time.time()) + int(ttl)
        query = urlencode({"expires": expires, "signature": self.sign(container, blob_id, expires)})
        return f"{url}?{query}"

    def _iter_stream(self, stream: ByteStream, loop: asyncio.AbstractEventLoop,
                     abort: threading.Event) -> Iterator[bytes]:
        # Runs in the upload thread; each read hops back onto the event loop.
        while True:
            if abort.is_set():
                raise UploadAborted("stream upload aborted")
            chunk = asyncio.run_coroutine_threadsafe(stream.read(self.chunk_size), loop).result()
            if abort.is_set():
                raise UploadAborted("stream upload aborted")
            if not chunk:
                return
            yield chunk

    def _put_stream(self, url: str, body: Iterator[bytes], content_type: str) -> None:
        r = self.session.put(url, data=body, headers={"Content-Type": content_type}, timeout=self.timeout)
        r.raise_for_status()

    def streaming_upload_sink(self, container: str, blob_id: str, content_type: str) -> Sink:
        url = self.blob_url(container, blob_id)

        async def sink(stream: ByteStream) -> None:
            loop = asyncio.get_running_loop()
            abort = threading.Event()
            body = self._iter_stream(stream, loop, abort)
            upload = loop.run_in_executor(None, self._put_stream, url, body, content_type)
            try:
                await asyncio.shield(upload)
            except asyncio.CancelledError:
                abort.set()
                # Release pooled connections; the body iterator raises on its next pull.
                self.session.close()
                await self._settle(upload, container, blob_id)
                raise
            logger.info(f"Streamed upload to {container}/{blob_id} complete")

        return sink

    async def _settle(self, upload: asyncio.Future, container: str, blob_id: str) -> None:
        """Wait for a cancelled upload thread to unwind."""
        done, _ = await asyncio.wait({upload}, timeout=self.cancel_grace)
        if not done:
            logger.error(f"Aborted upload to {container}/{blob_id} still running after {self.cancel_grace}s")
            return
        error = upload.exception()
        if error is not None:
            logger.info(f"Upload to {container}/{blob_id} aborted: {error!r}")
