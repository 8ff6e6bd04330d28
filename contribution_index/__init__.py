"""
Contribution Index - asset id -> contribution record ids.

Usage:
    from contribution_index import ContributionIndex, IndexFilter, Category

    index = ContributionIndex(blob_store=store)
    index.index(asset_id, record_id, record.metadata())

    ratings = index.query(asset_id, IndexFilter(category=Category.RATING))
    loaded = await index.load_records(asset_id)
"""

from typing import Optional

from blob_store.base import BlobStore

from .config import IndexConfig
from .index import ContributionIndex
from .models import (
    Category,
    ContributionRecord,
    EpisodePredictionPayload,
    IndexAck,
    IndexEntryMetadata,
    IndexFilter,
    IndexedRecord,
    LoadResult,
    MemePayload,
    PostPayload,
    PricePredictionPayload,
    RatingPayload,
    RebuildResult,
    StakePayload,
)
from .repository import SqlIndexStore
from .sources import CompositeRecordSource, ManifestRecordSource, RecordSource


def create_index(
    config: Optional[IndexConfig] = None,
    blob_store: Optional[BlobStore] = None,
    record_source: Optional[RecordSource] = None,
) -> ContributionIndex:
    """Build an index, durable when a database URL is configured."""
    config = config or IndexConfig.from_env()
    store = SqlIndexStore(config.database_url, echo=config.echo_sql) if config.durable else None

    if store is not None and record_source is not None:
        record_source = CompositeRecordSource(store, record_source)

    index = ContributionIndex(blob_store=blob_store, record_source=record_source, store=store)
    index.warm()
    return index


__all__ = [
    "Category",
    "ContributionRecord",
    "RatingPayload",
    "MemePayload",
    "PostPayload",
    "EpisodePredictionPayload",
    "PricePredictionPayload",
    "StakePayload",
    "IndexEntryMetadata",
    "IndexFilter",
    "IndexedRecord",
    "IndexAck",
    "RebuildResult",
    "LoadResult",
    "ContributionIndex",
    "IndexConfig",
    "SqlIndexStore",
    "RecordSource",
    "ManifestRecordSource",
    "CompositeRecordSource",
    "create_index",
]
