"""
Blob Store - Abstract interface.

============================================================
RESPONSIBILITY
============================================================
Owns the raw payload bytes of contribution records.

    store(data, options) -> record_id
    read(record_id)      -> bytes
    status(record_id)    -> BlobStatus

The pipeline is indifferent to which implementation is used:
- HttpBlobStore: native HTTP client (publisher / aggregator)
- CliBlobStore:  subprocess wrapper around the `walrus` binary
- InMemoryBlobStore: tests and dry runs

All implementations raise BlobNotFound when a record id is
permanently missing and BlobStoreError for anything else.

============================================================
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from .models import BlobStatus, StoreOptions


logger = logging.getLogger(__name__)


class BlobStore(ABC):
    """Abstract blob store."""

    def __init__(self) -> None:
        self._stats = {
            "stores": 0,
            "reads": 0,
            "status_checks": 0,
            "not_found": 0,
            "errors": 0,
        }

    @property
    @abstractmethod
    def name(self) -> str:
        """Implementation name for logs."""
        pass

    @abstractmethod
    async def store(
        self,
        data: bytes,
        options: Optional[StoreOptions] = None,
    ) -> str:
        """Store bytes and return the store-assigned record id."""
        pass

    @abstractmethod
    async def read(self, record_id: str) -> bytes:
        """Read the bytes stored under record_id."""
        pass

    @abstractmethod
    async def status(self, record_id: str) -> BlobStatus:
        """Get certification / lifetime status of a blob."""
        pass

    async def close(self) -> None:
        """Release resources."""
        pass

    def get_stats(self) -> dict[str, Any]:
        return {"name": self.name, **self._stats}

    async def __aenter__(self) -> "BlobStore":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name}>"
