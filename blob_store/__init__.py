"""
Blob Store - raw payload storage for contribution records.

Usage:
    from blob_store import create_blob_store, BlobStoreConfig

    store = create_blob_store(BlobStoreConfig.from_env())
    record_id = await store.store(payload_bytes)
    data = await store.read(record_id)
"""

import logging
from typing import Optional

from .base import BlobStore
from .config import BlobStoreConfig
from .memory import InMemoryBlobConfig, InMemoryBlobStore
from .models import BlobStatus, StoreOptions, extract_blob_id
from .providers import CliBlobStore, HttpBlobStore


logger = logging.getLogger(__name__)


def create_blob_store(
    config: Optional[BlobStoreConfig] = None,
    dry_run: bool = False,
) -> BlobStore:
    """Pick the blob store implementation for a configuration."""
    if dry_run:
        logger.info("Dry run: using in-memory blob store")
        return InMemoryBlobStore()

    config = config or BlobStoreConfig.from_env()
    if config.use_http:
        return HttpBlobStore(config)
    return CliBlobStore(config)


__all__ = [
    "BlobStore",
    "BlobStoreConfig",
    "BlobStatus",
    "StoreOptions",
    "extract_blob_id",
    "HttpBlobStore",
    "CliBlobStore",
    "InMemoryBlobStore",
    "InMemoryBlobConfig",
    "create_blob_store",
]
