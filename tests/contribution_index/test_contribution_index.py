"""
Tests for the Contribution Index.

============================================================
PURPOSE
============================================================
- Wire parsing into the tagged payload union
- Idempotent indexing and filtered queries
- Concurrent writers and readers, durable writes off the event loop
- Loading through the blob store (prune / skip on failure)
- Durable SQLite store, warm start and best-effort rebuild

============================================================
"""

import asyncio
import json
import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from blob_store import InMemoryBlobConfig, InMemoryBlobStore
from contribution_index import (
    Category,
    CompositeRecordSource,
    ContributionIndex,
    ContributionRecord,
    IndexConfig,
    IndexEntryMetadata,
    IndexFilter,
    ManifestRecordSource,
    MemePayload,
    RatingPayload,
    SqlIndexStore,
    StakePayload,
    create_index,
)
from core.clock import MockClock, to_epoch_millis
from core.exceptions import BlobStoreError


NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


# ============================================================
# FIXTURES
# ============================================================

def wire(asset_id="0xasset", author="0xalice", engagement_type="rating", age_hours=1, **fields):
    return {
        "ip_token_id": asset_id,
        "user_wallet": author,
        "engagement_type": engagement_type,
        "timestamp": to_epoch_millis(NOW - timedelta(hours=age_hours)),
        "signature": "ab" * 64,
        **fields,
    }


def encode(data) -> bytes:
    return json.dumps(data, separators=(",", ":")).encode("utf-8")


@pytest.fixture
def clock():
    return MockClock(NOW)


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


@pytest.fixture
def index(blob_store, clock):
    return ContributionIndex(blob_store=blob_store, clock=clock)


@pytest.fixture
def sqlite_url(tmp_path):
    return f"sqlite:///{tmp_path / 'index.db'}"


# ============================================================
# TEST: Record Parsing
# ============================================================

class TestContributionRecord:

    def test_rating_record(self):
        record = ContributionRecord.from_dict(wire(rating=9))
        assert record.category == Category.RATING
        assert isinstance(record.payload, RatingPayload)
        assert record.payload.rating == Decimal(9)
        assert record.timestamp == NOW - timedelta(hours=1)

    def test_meme_record(self):
        record = ContributionRecord.from_dict(
            wire(engagement_type="meme", likes=10, shares="2", caption="lol", image_url="https://x/y.png")
        )
        assert isinstance(record.payload, MemePayload)
        assert record.payload.engagement_total() == 12
        assert record.payload.caption == "lol"

    def test_stake_record(self):
        record = ContributionRecord.from_dict(wire(engagement_type="stake", position="long", stake_amount="25.5"))
        assert isinstance(record.payload, StakePayload)
        assert record.stake_amount == Decimal("25.5")

    def test_iso_timestamp(self):
        record = ContributionRecord.from_dict(wire(rating=5, timestamp="2025-06-01T10:00:00Z"))
        assert record.timestamp == datetime(2025, 6, 1, 10, 0, tzinfo=timezone.utc)

    def test_store_assigned_id(self):
        record = ContributionRecord.from_dict(wire(rating=5, walrus_cid="blob-1"))
        assert record.record_id == "blob-1"

    @pytest.mark.parametrize("missing", ["ip_token_id", "user_wallet", "engagement_type", "timestamp"])
    def test_missing_structural_field(self, missing):
        data = wire(rating=5)
        del data[missing]
        with pytest.raises(ValueError):
            ContributionRecord.from_dict(data)

    def test_unknown_category(self):
        with pytest.raises(ValueError):
            ContributionRecord.from_dict(wire(engagement_type="review"))

    def test_payload_must_match_category(self):
        with pytest.raises(ValueError):
            ContributionRecord(
                asset_id="0xasset",
                author="0xalice",
                category=Category.RATING,
                payload=StakePayload(position="long"),
                timestamp=NOW,
                signature="",
            )

    def test_not_json(self):
        with pytest.raises(ValueError):
            ContributionRecord.from_bytes(b"\xff\xfe")

    def test_raw_is_read_only(self):
        record = ContributionRecord.from_dict(wire(rating=5))
        with pytest.raises(TypeError):
            record.raw["rating"] = 10


# ============================================================
# TEST: Indexing
# ============================================================

class TestIndexing:

    def test_index_is_idempotent(self, index):
        acks = [index.index("0xasset", "r1") for _ in range(5)]

        assert acks[0].added is True
        assert all(ack.added is False for ack in acks[1:])
        assert [e.record_id for e in index.query("0xasset")] == ["r1"]
        assert index.stats()["duplicates"] == 4

    def test_query_keeps_insertion_order(self, index):
        for record_id in ("c", "a", "b"):
            index.index("0xasset", record_id)
        assert [e.record_id for e in index.query("0xasset")] == ["c", "a", "b"]

    def test_unknown_asset_is_empty(self, index):
        assert index.query("0xnothing") == []

    def test_indexed_at_is_filled(self, index, clock):
        index.index("0xasset", "r1", IndexEntryMetadata(category=Category.RATING))
        entry = index.query("0xasset")[0]
        assert entry.metadata.indexed_at == clock.now()

    def test_filters(self, index):
        index.index("0xasset", "old", IndexEntryMetadata(Category.RATING, NOW - timedelta(days=10)))
        index.index("0xasset", "meme", IndexEntryMetadata(Category.MEME, NOW - timedelta(days=1)))
        index.index("0xasset", "new", IndexEntryMetadata(Category.RATING, NOW - timedelta(hours=1)))

        ratings = index.query("0xasset", IndexFilter(category=Category.RATING))
        assert [e.record_id for e in ratings] == ["old", "new"]

        recent = index.query("0xasset", IndexFilter(from_time=NOW - timedelta(days=2), to_time=NOW))
        assert [e.record_id for e in recent] == ["meme", "new"]

    def test_requires_ids(self, index):
        with pytest.raises(ValueError):
            index.index("", "r1")

    def test_remove(self, index):
        index.index("0xasset", "r1")
        assert index.remove("0xasset", "r1") is True
        assert index.remove("0xasset", "r1") is False
        assert index.size("0xasset") == 0


# ============================================================
# TEST: Concurrent Access
# ============================================================

class RecordingStore:
    """Durable store double that can hold a write open."""

    def __init__(self, hold=False):
        self.entered = threading.Event()
        self.release = threading.Event()
        if not hold:
            self.release.set()
        self.added = []
        self.removed = []
        self.threads = set()

    def add(self, asset_id, record_id, metadata):
        self.threads.add(threading.get_ident())
        self.entered.set()
        self.release.wait(5)
        self.added.append(record_id)
        return True

    def remove(self, asset_id, record_id):
        self.threads.add(threading.get_ident())
        self.removed.append(record_id)
        return 1

    async def known_record_ids(self, asset_id):
        return list(self.added)

    def close(self):
        pass


class TestConcurrentAccess:

    def test_threads_index_overlapping_ids_while_querying(self, index):
        record_ids = [f"r{i}" for i in range(50)]
        writers, readers = 8, 4
        barrier = threading.Barrier(writers + readers)
        done = threading.Event()
        errors = []

        def write(offset):
            barrier.wait()
            for i in range(len(record_ids)):
                index.index("0xasset", record_ids[(i + offset) % len(record_ids)])

        def read():
            barrier.wait()
            while not done.is_set():
                seen = [e.record_id for e in index.query("0xasset")]
                if len(seen) != len(set(seen)):
                    errors.append(seen)

        threads = [threading.Thread(target=write, args=(n * 7,)) for n in range(writers)]
        threads += [threading.Thread(target=read) for _ in range(readers)]
        for thread in threads:
            thread.start()
        for thread in threads[:writers]:
            thread.join(10)
        done.set()
        for thread in threads[writers:]:
            thread.join(10)

        assert errors == []
        entries = [e.record_id for e in index.query("0xasset")]
        assert sorted(entries) == sorted(record_ids)
        stats = index.stats()
        assert stats["index_calls"] == writers * len(record_ids)
        assert stats["duplicates"] == (writers - 1) * len(record_ids)
        assert stats["records"] == len(record_ids)

    @pytest.mark.asyncio
    async def test_concurrent_tasks_keep_durable_store_consistent(self, sqlite_url, clock):
        store = SqlIndexStore(sqlite_url)
        index = ContributionIndex(store=store, clock=clock)

        await asyncio.gather(*(
            asyncio.to_thread(index.index, "0xasset", f"r{i % 20}")
            for i in range(60)
        ))

        assert index.size("0xasset") == 20
        assert store.count("0xasset") == 20
        assert index.stats()["duplicates"] == 40
        store.close()

    def test_query_does_not_wait_for_durable_write(self, clock):
        store = RecordingStore(hold=True)
        index = ContributionIndex(store=store, clock=clock)

        writer = threading.Thread(target=index.index, args=("0xasset", "r1"))
        writer.start()
        try:
            assert store.entered.wait(5)
            assert [e.record_id for e in index.query("0xasset")] == ["r1"]
        finally:
            store.release.set()
            writer.join(5)

        assert store.added == ["r1"]

    @pytest.mark.asyncio
    async def test_async_callers_write_off_the_event_loop(self, blob_store, clock):
        store = RecordingStore()
        index = ContributionIndex(blob_store=blob_store, store=store, clock=clock)

        ack = await index.ingest(wire(rating=8))
        blob_store.delete(ack.record_id)
        result = await index.load_records("0xasset")

        assert result.pruned == [ack.record_id]
        assert store.added == [ack.record_id]
        assert store.removed == [ack.record_id]
        assert threading.get_ident() not in store.threads


# ============================================================
# TEST: Loading Records
# ============================================================

class TestLoadRecords:

    @pytest.mark.asyncio
    async def test_ingest_then_load(self, index):
        ack = await index.ingest(wire(rating=8))
        assert ack.added is True

        result = await index.load_records("0xasset")
        assert len(result.records) == 1
        assert result.records[0].record_id == ack.record_id
        assert result.partial is False

    @pytest.mark.asyncio
    async def test_ingest_rejects_malformed(self, index):
        with pytest.raises(ValueError):
            await index.ingest({"engagement_type": "rating"})

    @pytest.mark.asyncio
    async def test_missing_blob_is_pruned(self, index, blob_store):
        ack = await index.ingest(wire(rating=8))
        blob_store.delete(ack.record_id)

        result = await index.load_records("0xasset")

        assert result.records == []
        assert result.pruned == [ack.record_id]
        assert index.query("0xasset") == []

    @pytest.mark.asyncio
    async def test_read_failure_is_skipped(self, index, blob_store):
        good = await index.ingest(wire(rating=8))
        bad = await index.ingest(wire(rating=3, author="0xbob"))
        blob_store.config.failing_reads.add(bad.record_id)

        result = await index.load_records("0xasset")

        assert [r.record_id for r in result.records] == [good.record_id]
        assert result.unreadable == 1
        assert index.size("0xasset") == 2

    @pytest.mark.asyncio
    async def test_unparseable_and_foreign_records(self, index, blob_store):
        garbage = await blob_store.store(b"not json")
        foreign = await blob_store.store(encode(wire(asset_id="0xother", rating=5)))
        index.index("0xasset", garbage)
        index.index("0xasset", foreign)

        result = await index.load_records("0xasset")

        assert result.records == []
        assert result.unparseable == 2

    @pytest.mark.asyncio
    async def test_filtered_load(self, index):
        await index.ingest(wire(rating=8))
        await index.ingest(wire(engagement_type="meme", likes=3))

        result = await index.load_records("0xasset", IndexFilter(category=Category.MEME))
        assert [r.category for r in result.records] == [Category.MEME]

    @pytest.mark.asyncio
    async def test_store_failure_surfaces(self, clock):
        store = InMemoryBlobStore(InMemoryBlobConfig(fail_stores=True))
        index = ContributionIndex(blob_store=store, clock=clock)
        with pytest.raises(BlobStoreError):
            await index.ingest(wire(rating=8))


# ============================================================
# TEST: Rebuild
# ============================================================

class TestRebuild:

    @pytest.mark.asyncio
    async def test_rebuild_from_blob_scan(self, blob_store, clock):
        ids = [await blob_store.store(encode(wire(rating=r, author=f"0x{r}"))) for r in (7, 8)]
        await blob_store.store(encode(wire(asset_id="0xother", rating=1)))
        index = ContributionIndex(blob_store=blob_store, record_source=blob_store, clock=clock)

        result = await index.rebuild("0xasset")

        assert result.discovered == 2
        assert result.indexed == 2
        assert result.complete is True
        assert sorted(e.record_id for e in index.query("0xasset")) == sorted(ids)

    @pytest.mark.asyncio
    async def test_rebuild_counts_failures(self, blob_store, clock):
        good = await blob_store.store(encode(wire(rating=9)))
        source = ManifestRecordSource({"0xasset": [good, "missing-blob"]})
        index = ContributionIndex(blob_store=blob_store, record_source=source, clock=clock)

        result = await index.rebuild("0xasset")

        assert result.indexed == 1
        assert result.failed == 1
        assert result.complete is False
        assert "missing-blob" in result.errors[0]

    @pytest.mark.asyncio
    async def test_rebuild_never_raises(self, blob_store, clock):
        source = AsyncMock()
        source.known_record_ids = AsyncMock(side_effect=RuntimeError("source down"))
        index = ContributionIndex(blob_store=blob_store, record_source=source, clock=clock)

        result = await index.rebuild("0xasset")

        assert result.indexed == 0
        assert result.errors

    @pytest.mark.asyncio
    async def test_rebuild_without_source(self, blob_store, clock):
        index = ContributionIndex(blob_store=blob_store, clock=clock)
        result = await index.rebuild("0xasset")
        assert result.discovered == 0
        assert result.errors


# ============================================================
# TEST: Durable Store
# ============================================================

class TestDurableStore:

    def test_round_trip_through_sqlite(self, sqlite_url, clock):
        store = SqlIndexStore(sqlite_url)
        first = ContributionIndex(store=store, clock=clock)
        first.index("0xasset", "r1", IndexEntryMetadata(Category.RATING, NOW - timedelta(hours=2), "0xalice"))
        first.index("0xasset", "r2", IndexEntryMetadata(Category.MEME, NOW - timedelta(hours=1), "0xbob"))
        first.index("0xasset", "r1")
        store.close()

        reopened = SqlIndexStore(sqlite_url)
        second = ContributionIndex(store=reopened, clock=clock)
        assert second.warm() == 2

        entries = second.query("0xasset")
        assert [e.record_id for e in entries] == ["r1", "r2"]
        assert entries[0].metadata.category == Category.RATING
        assert entries[0].metadata.timestamp == NOW - timedelta(hours=2)
        assert entries[1].metadata.author == "0xbob"
        assert reopened.count("0xasset") == 2
        reopened.close()

    def test_duplicate_add_returns_false(self):
        store = SqlIndexStore("sqlite://")
        metadata = IndexEntryMetadata(Category.RATING, NOW)
        assert store.add("0xasset", "r1", metadata) is True
        assert store.add("0xasset", "r1", metadata) is False
        assert store.count() == 1

    def test_remove_is_persisted(self, sqlite_url, clock):
        store = SqlIndexStore(sqlite_url)
        index = ContributionIndex(store=store, clock=clock)
        index.index("0xasset", "r1")
        index.remove("0xasset", "r1")
        assert store.count() == 0

    @pytest.mark.asyncio
    async def test_store_is_a_record_source(self):
        store = SqlIndexStore("sqlite://")
        store.add("0xasset", "r1", IndexEntryMetadata())
        store.add("0xother", "r2", IndexEntryMetadata())
        assert await store.known_record_ids("0xasset") == ["r1"]

    def test_create_index_durable(self, sqlite_url, blob_store):
        index = create_index(IndexConfig(database_url=sqlite_url), blob_store=blob_store)
        index.index("0xasset", "r1")
        index.close()

        again = create_index(IndexConfig(database_url=sqlite_url), blob_store=blob_store)
        assert again.size("0xasset") == 1
        assert again.stats()["durable"] is True
        again.close()

    def test_config_validation(self):
        assert IndexConfig(database_url="not a url").validate()
        assert IndexConfig().validate() == []


# ============================================================
# TEST: Record Sources
# ============================================================

class TestRecordSources:

    @pytest.mark.asyncio
    async def test_manifest_from_yaml(self, tmp_path):
        path = tmp_path / "manifest.yaml"
        path.write_text('assets:\n  "0xasset":\n    - r1\n    - r2\n')
        source = ManifestRecordSource.from_yaml(path)
        assert await source.known_record_ids("0xasset") == ["r1", "r2"]
        assert await source.known_record_ids("0xother") == []

    @pytest.mark.asyncio
    async def test_composite_dedupes_and_skips_failures(self):
        failing = AsyncMock()
        failing.known_record_ids = AsyncMock(side_effect=RuntimeError("boom"))
        source = CompositeRecordSource(
            ManifestRecordSource({"0xasset": ["r1", "r2"]}),
            failing,
            ManifestRecordSource({"0xasset": ["r2", "r3"]}),
        )
        assert await source.known_record_ids("0xasset") == ["r1", "r2", "r3"]
