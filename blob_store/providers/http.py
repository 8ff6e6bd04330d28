"""
HTTP Blob Store - native client for the publisher / aggregator API.

    store:  PUT  {publisher}/v1/blobs?epochs=N&permanent=true
    read:   GET  {aggregator}/v1/blobs/{id}   (publisher on 404)
    status: HEAD {aggregator}/v1/blobs/{id}   (publisher on 404)
"""

import asyncio
import json
import logging
import time
from typing import Any, Optional

import aiohttp

from core.exceptions import BlobNotFound, BlobStoreError

from ..base import BlobStore
from ..config import BlobStoreConfig
from ..models import BlobStatus, StoreOptions, extract_blob_id


logger = logging.getLogger(__name__)


class HttpBlobStore(BlobStore):
    """
    Blob store over the HTTP API.

    Requests inherit the session timeout; the pipeline adds none
    of its own.
    """

    def __init__(
        self,
        config: Optional[BlobStoreConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__()
        self.config = config or BlobStoreConfig()
        self._session = session
        self._owns_session = session is None
        self._last_latency_ms: Optional[float] = None

    @property
    def name(self) -> str:
        return "http"

    # ─────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────

    async def store(
        self,
        data: bytes,
        options: Optional[StoreOptions] = None,
    ) -> str:
        options = options or StoreOptions(epochs=self.config.default_epochs)
        if not self.config.publisher_url:
            raise BlobStoreError("Publisher URL not configured", operation="store")

        url = f"{self.config.publisher_url.rstrip('/')}/v1/blobs"
        logger.info(
            f"Storing blob via HTTP: {url} ({len(data)} bytes, "
            f"permanent={options.is_permanent}, epochs={options.epochs})"
        )

        status, body = await self._request(
            "PUT", url, params=options.to_query_params(), data=data,
        )
        if status >= 400:
            self._stats["errors"] += 1
            raise BlobStoreError(
                f"Publisher returned HTTP {status}",
                operation="store",
                context={"status_code": status, "response_body": body[:500].decode("utf-8", "replace")},
            )

        try:
            result = json.loads(body.decode("utf-8"))
        except ValueError as e:
            self._stats["errors"] += 1
            raise BlobStoreError(f"Unparseable store response: {e}", operation="store") from e

        blob_id = extract_blob_id(result) if isinstance(result, dict) else None
        if not blob_id:
            self._stats["errors"] += 1
            raise BlobStoreError("Store response did not contain a blob id", operation="store")

        self._stats["stores"] += 1
        logger.info(f"Blob stored via HTTP: {blob_id}")
        return blob_id

    async def read(self, record_id: str) -> bytes:
        self._stats["reads"] += 1
        status, body = await self._first_found("GET", record_id, operation="read")
        logger.debug(f"Blob read via HTTP: {record_id} ({len(body)} bytes)")
        return body

    async def status(self, record_id: str) -> BlobStatus:
        self._stats["status_checks"] += 1
        await self._first_found("HEAD", record_id, operation="status")
        # The aggregator only serves certified blobs.
        return BlobStatus(record_id=record_id, certified=True)

    async def close(self) -> None:
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    # ─────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────

    def _blob_urls(self, record_id: str) -> list[str]:
        bases = [self.config.aggregator_url, self.config.publisher_url]
        return [f"{base.rstrip('/')}/v1/blobs/{record_id}" for base in bases if base]

    async def _first_found(
        self,
        method: str,
        record_id: str,
        operation: str,
    ) -> tuple[int, bytes]:
        """Try aggregator then publisher. 404 everywhere means not found."""
        urls = self._blob_urls(record_id)
        if not urls:
            raise BlobStoreError("No blob store URL configured", record_id=record_id, operation=operation)

        for url in urls:
            status, body = await self._request(method, url)
            if status == 404:
                logger.debug(f"Blob {record_id} not found at {url}")
                continue
            if status >= 400:
                self._stats["errors"] += 1
                raise BlobStoreError(
                    f"HTTP {status} from blob store",
                    record_id=record_id,
                    operation=operation,
                    context={"status_code": status, "request_url": url},
                )
            return status, body

        self._stats["not_found"] += 1
        raise BlobNotFound(f"Blob not found: {record_id}", record_id=record_id, operation=operation)

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds),
            )
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[dict[str, Any]] = None,
        data: Optional[bytes] = None,
    ) -> tuple[int, bytes]:
        """Make HTTP request, returning (status, body)."""
        session = await self._get_session()

        start_time = time.time()
        try:
            async with session.request(method, url, params=params, data=data) as response:
                body = await response.read()
                self._last_latency_ms = (time.time() - start_time) * 1000
                return response.status, body
        except aiohttp.ClientError as e:
            self._stats["errors"] += 1
            raise BlobStoreError(
                f"Connection error: {e}",
                operation=method.lower(),
                context={"request_url": url},
                cause=e,
            ) from e
        except asyncio.TimeoutError as e:
            self._stats["errors"] += 1
            raise BlobStoreError(
                f"Request timed out after {self.config.timeout_seconds}s",
                operation=method.lower(),
                context={"request_url": url},
                cause=e,
            ) from e
