"""
Contribution Index.

============================================================
RESPONSIBILITY
============================================================
Maps asset id -> set of record ids, with cached metadata used for
filtering without re-reading payload bytes.

- index():        idempotent add (set semantics per asset)
- query():        category / inclusive time-range filter
- load_records(): query + read + parse from the blob store
- rebuild():      best-effort recovery from a RecordSource

============================================================
LIFECYCLE
============================================================
empty -> index() as records arrive -> optional rebuild()

The in-memory map is lost on restart. With a SqlIndexStore it is
written through and hydrated again with warm().

============================================================
CONCURRENCY
============================================================
The index is the only shared mutable state in the process. All
reads and writes of the map hold one re-entrant lock, so index()
and query() may be called concurrently from tasks or threads.
Blob store reads never happen under the lock.

Durable writes run under a separate write lock, outside the map
lock, so queries never wait on the database. Async callers push
those writes to a worker thread.

============================================================
"""

import asyncio
import json
import logging
import threading
from typing import Any, Callable, Mapping, Optional

from blob_store.base import BlobStore
from core.clock import ClockFactory, ClockProtocol
from core.exceptions import BlobNotFound, BlobStoreError, IndexUnavailable

from .models import (
    ContributionRecord,
    IndexAck,
    IndexEntryMetadata,
    IndexFilter,
    IndexedRecord,
    LoadResult,
    RebuildResult,
)
from .repository import SqlIndexStore
from .sources import RecordSource


logger = logging.getLogger(__name__)


class ContributionIndex:
    """
    Per-asset index of contribution record ids.

    Usage:
        index = ContributionIndex(blob_store=store)
        index.index(asset_id, record_id, record.metadata())
        result = await index.load_records(asset_id)
    """

    def __init__(
        self,
        blob_store: Optional[BlobStore] = None,
        record_source: Optional[RecordSource] = None,
        store: Optional[SqlIndexStore] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._blob_store = blob_store
        self._record_source = record_source or store
        self._store = store
        self._clock = clock

        # asset_id -> {record_id: metadata}; dicts keep insertion order
        self._entries: dict[str, dict[str, IndexEntryMetadata]] = {}
        self._lock = threading.RLock()
        # Serialises durable writes in map order; never taken under _lock.
        self._write_lock = threading.Lock()

        self._stats = {
            "index_calls": 0,
            "duplicates": 0,
            "queries": 0,
            "pruned": 0,
            "rebuilds": 0,
            "store_errors": 0,
        }

    @property
    def clock(self) -> ClockProtocol:
        return self._clock or ClockFactory.get_clock()

    # ─────────────────────────────────────────────────────────────
    # Indexing entry point
    # ─────────────────────────────────────────────────────────────

    def index(
        self,
        asset_id: str,
        record_id: str,
        metadata: Optional[IndexEntryMetadata] = None,
    ) -> IndexAck:
        """
        Add a record id to an asset's set.

        Idempotent: re-indexing an existing id changes nothing and
        returns added=False.
        """
        if not asset_id or not record_id:
            raise ValueError("asset_id and record_id are required")

        metadata = metadata or IndexEntryMetadata()
        if metadata.indexed_at is None:
            metadata = IndexEntryMetadata(
                category=metadata.category,
                timestamp=metadata.timestamp,
                author=metadata.author,
                indexed_at=self.clock.now(),
            )

        with self._write_lock:
            with self._lock:
                self._stats["index_calls"] += 1
                records = self._entries.setdefault(asset_id, {})
                if record_id in records:
                    self._stats["duplicates"] += 1
                    return IndexAck(asset_id=asset_id, record_id=record_id, added=False)
                records[record_id] = metadata

            if self._store is not None:
                self._write_through(self._store.add, asset_id, record_id, metadata)

        logger.debug(f"Indexed contribution: {asset_id} -> {record_id}")
        return IndexAck(asset_id=asset_id, record_id=record_id, added=True)

    async def ingest(
        self,
        data: Mapping[str, Any],
    ) -> IndexAck:
        """
        Store an already-signed wire record and index it.

        Raises ValueError for malformed records and BlobStoreError
        when the payload cannot be stored.
        """
        if self._blob_store is None:
            raise BlobStoreError("No blob store configured", operation="store")

        record = ContributionRecord.from_dict(data)
        payload = json.dumps(dict(data), separators=(",", ":")).encode("utf-8")
        record_id = await self._blob_store.store(payload)
        return await self._offload(self.index, record.asset_id, record_id, record.metadata())

    # ─────────────────────────────────────────────────────────────
    # Query
    # ─────────────────────────────────────────────────────────────

    def query(
        self,
        asset_id: str,
        filter: Optional[IndexFilter] = None,
    ) -> list[IndexedRecord]:
        """Record ids for an asset matching the filter, in insertion order."""
        filter = filter or IndexFilter()
        with self._lock:
            self._stats["queries"] += 1
            snapshot = list(self._entries.get(asset_id, {}).items())

        return [
            IndexedRecord(record_id=record_id, metadata=metadata)
            for record_id, metadata in snapshot
            if filter.matches(metadata)
        ]

    async def load_records(
        self,
        asset_id: str,
        filter: Optional[IndexFilter] = None,
    ) -> LoadResult:
        """
        Query the index and read each record from the blob store.

        Never raises for per-record failures. Records the blob store
        reports as missing are pruned from the index.
        """
        result = LoadResult(asset_id=asset_id)
        entries = self.query(asset_id, filter)
        result.queried = len(entries)

        if not entries:
            return result

        if self._blob_store is None:
            logger.warning(f"No blob store configured, cannot load records for {asset_id}")
            result.unreadable = len(entries)
            return result

        for entry in entries:
            try:
                data = await self._blob_store.read(entry.record_id)
            except BlobNotFound:
                logger.warning(f"Record {entry.record_id} no longer exists, removing from index")
                await self._offload(self.remove, asset_id, entry.record_id)
                result.pruned.append(entry.record_id)
                continue
            except BlobStoreError as e:
                logger.warning(f"Failed to read record {entry.record_id}: {e.message}")
                result.unreadable += 1
                continue

            try:
                record = ContributionRecord.from_bytes(data, record_id=entry.record_id)
            except ValueError as e:
                logger.warning(f"Unparseable record {entry.record_id}: {e}")
                result.unparseable += 1
                continue

            if record.asset_id != asset_id:
                logger.warning(
                    f"Record {entry.record_id} belongs to {record.asset_id}, not {asset_id}"
                )
                result.unparseable += 1
                continue

            result.records.append(record)

        logger.info(
            f"Loaded {len(result.records)} contributions for {asset_id} "
            f"(from {result.queried} record ids)"
        )
        return result

    # ─────────────────────────────────────────────────────────────
    # Maintenance
    # ─────────────────────────────────────────────────────────────

    def remove(self, asset_id: str, record_id: str) -> bool:
        with self._write_lock:
            with self._lock:
                records = self._entries.get(asset_id)
                if not records or record_id not in records:
                    return False
                del records[record_id]
                self._stats["pruned"] += 1

            if self._store is not None:
                self._write_through(self._store.remove, asset_id, record_id)
            return True

    def _write_through(self, operation: Callable[..., Any], *args: Any) -> None:
        # Memory stays authoritative for this process.
        try:
            operation(*args)
        except IndexUnavailable:
            with self._lock:
                self._stats["store_errors"] += 1

    async def _offload(self, operation: Callable[..., Any], *args: Any) -> Any:
        """Run a mutating call off the event loop when it touches the durable store."""
        if self._store is None:
            return operation(*args)
        return await asyncio.to_thread(operation, *args)

    def warm(self) -> int:
        """Hydrate the in-memory map from the durable store."""
        if self._store is None:
            return 0

        try:
            rows = self._store.load_all()
        except IndexUnavailable as e:
            logger.error(f"Could not warm index from store: {e.message}")
            return 0

        loaded = 0
        with self._lock:
            for asset_id, record_id, metadata in rows:
                records = self._entries.setdefault(asset_id, {})
                if record_id not in records:
                    records[record_id] = metadata
                    loaded += 1

        logger.info(f"Warmed contribution index with {loaded} entries")
        return loaded

    async def rebuild(self, asset_id: str) -> RebuildResult:
        """
        Best-effort recovery of an asset's entries.

        Asks the record source for known ids, reads each one and
        re-indexes it. Failures are logged and counted; this never
        raises.
        """
        result = RebuildResult(asset_id=asset_id)
        with self._lock:
            self._stats["rebuilds"] += 1

        if self._record_source is None or self._blob_store is None:
            message = "rebuild needs a record source and a blob store"
            logger.warning(f"Cannot rebuild index for {asset_id}: {message}")
            result.errors.append(message)
            return result

        try:
            record_ids = await self._record_source.known_record_ids(asset_id)
        except Exception as e:
            logger.error(f"Record source failed during rebuild of {asset_id}: {e}")
            result.errors.append(f"record source: {e}")
            return result

        result.discovered = len(record_ids)

        for record_id in record_ids:
            try:
                data = await self._blob_store.read(record_id)
                record = ContributionRecord.from_bytes(data, record_id=record_id)
                if record.asset_id != asset_id:
                    raise ValueError(f"record belongs to {record.asset_id}")
                await self._offload(self.index, asset_id, record_id, record.metadata())
                result.indexed += 1
            except Exception as e:
                result.failed += 1
                result.errors.append(f"{record_id}: {e}")
                logger.warning(f"Rebuild skipped {record_id} for {asset_id}: {e}")

        logger.info(
            f"Rebuilt index for {asset_id}: {result.indexed}/{result.discovered} records, "
            f"{result.failed} failed"
        )
        return result

    # ─────────────────────────────────────────────────────────────
    # Observability
    # ─────────────────────────────────────────────────────────────

    def assets(self) -> list[str]:
        with self._lock:
            return list(self._entries.keys())

    def size(self, asset_id: Optional[str] = None) -> int:
        with self._lock:
            if asset_id is not None:
                return len(self._entries.get(asset_id, {}))
            return sum(len(records) for records in self._entries.values())

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                **self._stats,
                "assets": len(self._entries),
                "records": sum(len(records) for records in self._entries.values()),
                "durable": self._store is not None,
            }

    def clear(self) -> None:
        """Drop the in-memory map (the durable store is untouched)."""
        with self._lock:
            self._entries.clear()

    def close(self) -> None:
        if self._store is not None:
            self._store.close()
