"""
Blob store selection from configuration
"""

from core.config import Config, get_config
from core.errors import ConfigError
from core.utils.logging import get_logger
from storage.backends.http import HttpBlobStore
from storage.backends.local import LocalBlobStore
from storage.base import BlobStore

logger = get_logger(__name__)

BACKENDS = ("local", "http")


def create_blob_store(cfg: Config = None) -> BlobStore:
    cfg = cfg or get_config()
    s = cfg.storage
    if s.backend == "local":
        return LocalBlobStore(s.root)
    if s.backend == "http":
        if not s.base_url:
            raise ConfigError("storage.base_url is required for the http backend")
        return HttpBlobStore(
            s.base_url,
            signing_key=s.signing_key,
            timeout=s.timeout,
            chunk_size=cfg.transcoder.chunk_size,
        )
    raise ConfigError(f"Unsupported storage backend: {s.backend} (expected one of {', '.join(BACKENDS)})")
