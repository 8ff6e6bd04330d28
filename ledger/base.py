"""
Ledger - Abstract interface to the authoritative store.

The ledger holds the committed composite per asset and the list
of assets the scheduler tracks. Consensus and pricing live on the
other side of this interface.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from aggregation.models import CompositeMetrics

from .models import CommitReceipt, TrackedAsset


class Ledger(ABC):
    """
    Subclasses implement:
    - commit() - raise LedgerCommitFailure when the write is rejected
    - read()
    - list_assets()
    """

    def __init__(self) -> None:
        self._stats = {
            "commits": 0,
            "commit_failures": 0,
            "reads": 0,
        }

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def commit(self, asset_id: str, metrics: CompositeMetrics) -> CommitReceipt:
        """Write the composite for an asset. Raises LedgerCommitFailure."""
        pass

    @abstractmethod
    async def read(self, asset_id: str) -> Optional[CompositeMetrics]:
        """Last committed composite, or None."""
        pass

    @abstractmethod
    async def list_assets(self) -> list[TrackedAsset]:
        pass

    async def close(self) -> None:
        pass

    def get_stats(self) -> dict[str, Any]:
        return {"name": self.name, **self._stats}

    async def __aenter__(self) -> "Ledger":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
