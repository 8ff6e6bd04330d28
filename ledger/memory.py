"""
In-memory ledger for dry runs and tests.

Last write wins per asset. Commits for assets in `failing_assets`
raise LedgerCommitFailure, which lets tests drive the FAILED path.
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from aggregation.models import CompositeMetrics
from core.clock import ClockFactory, ClockProtocol
from core.exceptions import LedgerCommitFailure

from .base import Ledger
from .models import CommitReceipt, TrackedAsset


logger = logging.getLogger(__name__)


@dataclass
class InMemoryLedgerConfig:
    failing_assets: set[str] = field(default_factory=set)
    commit_delay_seconds: float = 0.0


class InMemoryLedger(Ledger):

    def __init__(
        self,
        assets: Optional[Iterable[TrackedAsset]] = None,
        config: Optional[InMemoryLedgerConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        super().__init__()
        self.config = config or InMemoryLedgerConfig()
        self._clock = clock
        self._assets: dict[str, TrackedAsset] = {}
        self._committed: dict[str, CompositeMetrics] = {}
        self.receipts: list[CommitReceipt] = []
        for asset in assets or ():
            self.track(asset)

    @property
    def name(self) -> str:
        return "memory"

    @property
    def clock(self) -> ClockProtocol:
        return self._clock or ClockFactory.get_clock()

    def track(self, asset: TrackedAsset) -> None:
        self._assets[asset.asset_id] = asset

    def fail_commits_for(self, asset_id: str) -> None:
        self.config.failing_assets.add(asset_id)

    async def commit(self, asset_id: str, metrics: CompositeMetrics) -> CommitReceipt:
        if self.config.commit_delay_seconds:
            await asyncio.sleep(self.config.commit_delay_seconds)

        if asset_id in self.config.failing_assets:
            self._stats["commit_failures"] += 1
            raise LedgerCommitFailure(
                f"Ledger rejected commit for {asset_id}",
                asset_id=asset_id,
            )

        self._committed[asset_id] = metrics
        self._stats["commits"] += 1

        digest = hashlib.sha256(metrics.canonical_bytes()).hexdigest()
        receipt = CommitReceipt(
            tx_id=f"0x{digest[:64]}",
            success=True,
            asset_id=asset_id,
            committed_at=self.clock.now(),
            payload=metrics.to_ledger_payload(),
        )
        self.receipts.append(receipt)
        logger.info(f"Committed metrics for {asset_id}: tx={receipt.tx_id[:18]}")
        return receipt

    async def read(self, asset_id: str) -> Optional[CompositeMetrics]:
        self._stats["reads"] += 1
        return self._committed.get(asset_id)

    async def list_assets(self) -> list[TrackedAsset]:
        return list(self._assets.values())
