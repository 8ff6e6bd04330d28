"""
Contribution Index - Durable Store.

============================================================
PURPOSE
============================================================
Optional SQLAlchemy persistence for index entries, so the index
survives restarts. The in-memory map in ContributionIndex stays
the read path; this store is written through on every change and
read once at start (`ContributionIndex.warm()`).

Works with any SQLAlchemy URL. SQLite is used in tests.

============================================================
"""

import asyncio
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Generator, Optional

from sqlalchemy import (
    BigInteger, Column, DateTime, Integer, String, UniqueConstraint,
    create_engine, delete, select,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from core.clock import ensure_utc
from core.exceptions import IndexUnavailable

from .models import Category, IndexEntryMetadata


logger = logging.getLogger(__name__)


Base = declarative_base()


class IndexEntryRow(Base):
    """One (asset, record) pair with its cached metadata."""
    __tablename__ = "contribution_index_entries"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    asset_id = Column(String(128), nullable=False, index=True)
    record_id = Column(String(256), nullable=False)
    category = Column(String(32), nullable=True)
    record_timestamp = Column(DateTime(timezone=True), nullable=True)
    author = Column(String(128), nullable=True)
    indexed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("asset_id", "record_id", name="uq_index_asset_record"),
    )

    def to_metadata(self) -> IndexEntryMetadata:
        return IndexEntryMetadata(
            category=Category(self.category) if self.category else None,
            timestamp=_utc(self.record_timestamp),
            author=self.author,
            indexed_at=_utc(self.indexed_at),
        )


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite returns naive datetimes.
    return ensure_utc(value) if value is not None else None


class SqlIndexStore:
    """
    Write-through persistence for the contribution index.

    Also a RecordSource: `known_record_ids()` lists persisted ids,
    so a rebuild can re-read them from the blob store.
    """

    def __init__(self, database_url: str, echo: bool = False) -> None:
        kwargs = {"echo": echo, "future": True}
        if database_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool

        self._engine = create_engine(database_url, **kwargs)
        self._session_factory = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )
        Base.metadata.create_all(self._engine)
        logger.info(f"Index store ready: {database_url.split('@')[-1]}")

    @contextmanager
    def _transaction(self) -> Generator[Session, None, None]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Index store transaction failed, rolling back: {e}")
            raise IndexUnavailable(f"Index store transaction failed: {e}", cause=e) from e
        finally:
            session.close()

    def add(self, asset_id: str, record_id: str, metadata: IndexEntryMetadata) -> bool:
        """Persist an entry. Returns False when it already existed."""
        row = IndexEntryRow(
            asset_id=asset_id,
            record_id=record_id,
            category=metadata.category.value if metadata.category else None,
            record_timestamp=metadata.timestamp,
            author=metadata.author,
            indexed_at=metadata.indexed_at,
        )
        session = self._session_factory()
        try:
            session.add(row)
            session.commit()
            return True
        except IntegrityError:
            session.rollback()
            return False
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to persist index entry {asset_id}/{record_id}: {e}")
            raise IndexUnavailable(
                f"Failed to persist index entry: {e}", asset_id=asset_id, cause=e,
            ) from e
        finally:
            session.close()

    def remove(self, asset_id: str, record_id: str) -> int:
        with self._transaction() as session:
            result = session.execute(
                delete(IndexEntryRow).where(
                    IndexEntryRow.asset_id == asset_id,
                    IndexEntryRow.record_id == record_id,
                )
            )
            return result.rowcount or 0

    def load_all(self) -> list[tuple[str, str, IndexEntryMetadata]]:
        """All persisted entries in insertion order."""
        with self._transaction() as session:
            rows = session.execute(select(IndexEntryRow).order_by(IndexEntryRow.id)).scalars().all()
            return [(row.asset_id, row.record_id, row.to_metadata()) for row in rows]

    def count(self, asset_id: Optional[str] = None) -> int:
        with self._transaction() as session:
            query = select(IndexEntryRow.id)
            if asset_id is not None:
                query = query.where(IndexEntryRow.asset_id == asset_id)
            return len(session.execute(query).all())

    async def known_record_ids(self, asset_id: str) -> list[str]:
        return await asyncio.to_thread(self.record_ids, asset_id)

    def record_ids(self, asset_id: str) -> list[str]:
        with self._transaction() as session:
            rows = session.execute(
                select(IndexEntryRow.record_id)
                .where(IndexEntryRow.asset_id == asset_id)
                .order_by(IndexEntryRow.id)
            ).all()
            return [row[0] for row in rows]

    def close(self) -> None:
        self._engine.dispose()
