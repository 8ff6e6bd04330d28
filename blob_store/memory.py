"""
In-Memory Blob Store.

============================================================
PURPOSE
============================================================
Blob store for tests and dry runs.

FEATURES:
- Content-addressed record ids (same bytes, same id)
- Configurable error injection per record id
- Scan by asset id, so it can serve as a RecordSource for
  index rebuilds

============================================================
"""

import asyncio
import base64
import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from core.exceptions import BlobNotFound, BlobStoreError

from .base import BlobStore
from .models import BlobStatus, StoreOptions


logger = logging.getLogger(__name__)


@dataclass
class InMemoryBlobConfig:
    """Error injection for the in-memory store."""

    failing_reads: set[str] = field(default_factory=set)
    """Record ids whose reads raise BlobStoreError."""

    fail_stores: bool = False
    """Whether store() raises BlobStoreError."""

    read_delay_seconds: float = 0.0
    """Simulated read latency."""


class InMemoryBlobStore(BlobStore):
    """Dictionary-backed blob store."""

    def __init__(self, config: Optional[InMemoryBlobConfig] = None) -> None:
        super().__init__()
        self.config = config or InMemoryBlobConfig()
        self._blobs: dict[str, bytes] = {}
        self._options: dict[str, StoreOptions] = {}

    @property
    def name(self) -> str:
        return "memory"

    @staticmethod
    def blob_id_for(data: bytes) -> str:
        """URL-safe base64 of the SHA-256 digest, like a content address."""
        digest = hashlib.sha256(data).digest()
        return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")

    async def store(
        self,
        data: bytes,
        options: Optional[StoreOptions] = None,
    ) -> str:
        if self.config.fail_stores:
            self._stats["errors"] += 1
            raise BlobStoreError("Injected store failure", operation="store")

        blob_id = self.blob_id_for(data)
        self._blobs[blob_id] = bytes(data)
        self._options[blob_id] = options or StoreOptions()
        self._stats["stores"] += 1
        return blob_id

    async def read(self, record_id: str) -> bytes:
        self._stats["reads"] += 1
        if self.config.read_delay_seconds:
            await asyncio.sleep(self.config.read_delay_seconds)
        if record_id in self.config.failing_reads:
            self._stats["errors"] += 1
            raise BlobStoreError("Injected read failure", record_id=record_id, operation="read")
        try:
            return self._blobs[record_id]
        except KeyError:
            self._stats["not_found"] += 1
            raise BlobNotFound(f"Blob not found: {record_id}", record_id=record_id, operation="read") from None

    async def status(self, record_id: str) -> BlobStatus:
        self._stats["status_checks"] += 1
        if record_id not in self._blobs:
            self._stats["not_found"] += 1
            raise BlobNotFound(f"Blob not found: {record_id}", record_id=record_id, operation="status")
        options = self._options[record_id]
        return BlobStatus(
            record_id=record_id,
            certified=True,
            deletable=not options.is_permanent,
            permanent=options.is_permanent,
            expiry_epoch=options.epochs,
            end_epoch=options.epochs,
        )

    def delete(self, record_id: str) -> bool:
        """Drop a blob (simulates expiry)."""
        self._options.pop(record_id, None)
        return self._blobs.pop(record_id, None) is not None

    async def known_record_ids(self, asset_id: str) -> list[str]:
        """Scan stored blobs for contribution records of an asset."""
        found = []
        for blob_id, data in self._blobs.items():
            try:
                payload = json.loads(data.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError):
                continue
            if isinstance(payload, dict) and payload.get("ip_token_id") == asset_id:
                found.append(blob_id)
        return found

    def __len__(self) -> int:
        return len(self._blobs)
