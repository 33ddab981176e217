"""
Blob store interface consumed by the job executor
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator

from core.models import ByteStream, Sink


async def iter_stream(stream: ByteStream, chunk_size: int) -> AsyncIterator[bytes]:
    while True:
        chunk = await stream.read(chunk_size)
        if not chunk:
            return
        yield chunk


class BlobStore(ABC):
    @abstractmethod
    def download(self, container: str, blob_id: str) -> bytes:
        ...

    @abstractmethod
    def upload(self, container: str, blob_id: str, data: bytes, content_type: str) -> None:
        ...

    @abstractmethod
    def temporary_read_url(self, container: str, blob_id: str, ttl: int) -> str:
        """URL (or path) the transcoder can read directly until ``ttl`` seconds pass."""

    @abstractmethod
    def streaming_upload_sink(self, container: str, blob_id: str, content_type: str) -> Sink:
        """Sink that stores a live byte stream at ``container/blob_id``."""
