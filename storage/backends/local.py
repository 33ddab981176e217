"""
Filesystem-backed blob store (development and tests)
"""

import asyncio
import os
from pathlib import Path
from typing import Union

from core.models import ByteStream, Sink
from core.utils.logging import get_logger
from storage.base import BlobStore, iter_stream

logger = get_logger(__name__)


class LocalBlobStore(BlobStore):
    def __init__(self, root: Union[str, Path], chunk_size: int = 1024 * 1024):
        self.root = Path(root)
        self.chunk_size = chunk_size
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, container: str, blob_id: str) -> Path:
        root = self.root.resolve()
        p = (root / container / blob_id).resolve()
        if root not in p.parents:
            raise ValueError(f"Blob path escapes store root: {container}/{blob_id}")
        return p

    def download(self, container: str, blob_id: str) -> bytes:
        return self.path_for(container, blob_id).read_bytes()

    def upload(self, container: str, blob_id: str, data: bytes, content_type: str) -> None:
        p = self.path_for(container, blob_id)
        p.parent.mkdir(parents=True, exist_ok=True)
        tmp = p.with_name(p.name + ".part")
        tmp.write_bytes(data)
        os.replace(tmp, p)
        logger.info(f"Stored {container}/{blob_id} ({len(data)} bytes, {content_type})")

    def temporary_read_url(self, container: str, blob_id: str, ttl: int) -> str:
        p = self.path_for(container, blob_id)
        if not p.exists():
            raise FileNotFoundError(f"Blob not found: {container}/{blob_id}")
        return str(p)

    def streaming_upload_sink(self, container: str, blob_id: str, content_type: str) -> Sink:
        target = self.path_for(container, blob_id)

        async def sink(stream: ByteStream) -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_name(target.name + ".part")
            total = 0
            try:
                with open(tmp, "wb") as f:
                    async for chunk in iter_stream(stream, self.chunk_size):
                        f.write(chunk)
                        total += len(chunk)
                        await asyncio.sleep(0)
                os.replace(tmp, target)
            except BaseException:
                try:
                    tmp.unlink()
                except OSError:
                    pass
                raise
            logger.info(f"Streamed {container}/{blob_id} ({total} bytes, {content_type})")

        return sink
