"""
Scheduler - Asset Pipeline.

============================================================
RESPONSIBILITY
============================================================
Runs one asset through one cycle, strictly in order:

    QUERYING -> VERIFYING -> AGGREGATING -> FETCHING_EXTERNAL
             -> COMBINING -> COMMITTING -> COMMITTED | FAILED

- Sub-step failures are recovered locally and folded into counters
- Only a ledger commit failure (or an unexpected exception)
  ends the run in FAILED
- run() never raises into the caller

============================================================
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from aggregation.combiner import MetricsCombiner
from aggregation.internal import InternalAggregator
from aggregation.models import CompositeMetrics, InternalMetrics, MetricsSnapshot
from contribution_index.index import ContributionIndex
from contribution_index.models import ContributionRecord
from core.clock import ClockFactory, ClockProtocol
from core.exceptions import IndexUnavailable, LedgerCommitFailure, OracleError
from external_sources.fetcher import ExternalMetricsFetcher
from external_sources.models import ExternalMetricBundle
from ledger.base import Ledger
from ledger.models import TrackedAsset
from verification.engine import VerificationEngine

from .models import CycleState, ScheduleCycleResult


logger = logging.getLogger(__name__)


@dataclass
class _Computation:
    """Intermediate values of one read-verify-aggregate-fetch-combine pass."""
    records_loaded: int = 0
    records_verified: int = 0
    records_excluded: int = 0
    records_pruned: int = 0
    records_unreadable: int = 0
    index_error: Optional[str] = None
    internal: Optional[InternalMetrics] = None
    bundles: List[ExternalMetricBundle] = field(default_factory=list)
    sources_queried: List[str] = field(default_factory=list)
    sources_succeeded: List[str] = field(default_factory=list)
    composite: Optional[CompositeMetrics] = None


class AssetPipeline:
    """
    Sequential state machine for one asset.

    Usage:
        pipeline = AssetPipeline(index, verifier, aggregator, fetcher, combiner, ledger)
        result = await pipeline.run(TrackedAsset("0xabc", "Chainsaw Man"), "cycle_1")
    """

    def __init__(
        self,
        index: ContributionIndex,
        verifier: VerificationEngine,
        aggregator: InternalAggregator,
        fetcher: ExternalMetricsFetcher,
        combiner: MetricsCombiner,
        ledger: Ledger,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self.index = index
        self.verifier = verifier
        self.aggregator = aggregator
        self.fetcher = fetcher
        self.combiner = combiner
        self.ledger = ledger
        self._clock = clock

    @property
    def clock(self) -> ClockProtocol:
        return self._clock or ClockFactory.get_clock()

    # --------------------------------------------------------
    # Full run
    # --------------------------------------------------------

    async def run(self, asset: TrackedAsset, cycle_id: str) -> ScheduleCycleResult:
        """Run one asset to COMMITTED or FAILED. Never raises."""
        result = ScheduleCycleResult(
            asset_id=asset.asset_id,
            cycle_id=cycle_id,
            started_at=self.clock.now(),
        )

        computation = _Computation()

        try:
            await self._compute(asset, computation, result)
            result.composite = computation.composite

            result.transition_to(CycleState.COMMITTING)
            receipt = await self.ledger.commit(asset.asset_id, computation.composite)
            if not receipt.success:
                raise LedgerCommitFailure(
                    receipt.error or "Ledger returned an unsuccessful receipt",
                    asset_id=asset.asset_id,
                )

            result.tx_id = receipt.tx_id
            result.transition_to(CycleState.COMMITTED)
            logger.info(f"Updated metrics for {asset.display_name} ({asset.asset_id}): tx={receipt.tx_id}")

        except LedgerCommitFailure as e:
            logger.error(f"Ledger commit failed for {asset.asset_id}: {e.message}")
            result.fail(e.message)
        except OracleError as e:
            logger.error(f"Pipeline error for {asset.asset_id} in {result.state.value}: {e.message}")
            result.fail(e.message)
        except Exception as e:
            logger.error(
                f"Unexpected error for {asset.asset_id} in {result.state.value}: {e}",
                exc_info=True,
            )
            result.fail(f"{type(e).__name__}: {e}")
        finally:
            self._copy_counts(computation, result)
            result.completed_at = self.clock.now()

        return result

    # --------------------------------------------------------
    # On-demand query
    # --------------------------------------------------------

    async def compute(self, asset: TrackedAsset) -> MetricsSnapshot:
        """Same pass as run() without the commit. Never raises."""
        snapshot = MetricsSnapshot(asset_id=asset.asset_id)
        computation = _Computation()
        try:
            await self._compute(asset, computation)
        except Exception as e:
            logger.error(f"Metrics computation failed for {asset.asset_id}: {e}", exc_info=True)
            snapshot.error = f"{type(e).__name__}: {e}"
            snapshot.partial = True
            return snapshot

        snapshot.composite = computation.composite
        snapshot.internal = computation.internal
        snapshot.records_loaded = computation.records_loaded
        snapshot.records_verified = computation.records_verified
        snapshot.records_excluded = computation.records_excluded
        snapshot.sources_queried = computation.sources_queried
        snapshot.sources_succeeded = computation.sources_succeeded
        snapshot.error = computation.index_error
        snapshot.partial = (
            computation.index_error is not None
            or len(computation.sources_succeeded) < len(computation.sources_queried)
        )
        return snapshot

    # --------------------------------------------------------
    # Steps
    # --------------------------------------------------------

    async def _compute(
        self,
        asset: TrackedAsset,
        computation: _Computation,
        result: Optional[ScheduleCycleResult] = None,
    ) -> None:
        def advance(state: CycleState) -> None:
            if result is not None:
                result.transition_to(state)

        advance(CycleState.QUERYING)
        records = await self._query(asset, computation)

        advance(CycleState.VERIFYING)
        verified = await self.verifier.verify_many(records)
        computation.records_verified = verified.verified
        computation.records_excluded = verified.excluded

        advance(CycleState.AGGREGATING)
        computation.internal = self.aggregator.aggregate(
            asset.asset_id,
            verified.records,
            now=self.clock.now(),
        )

        advance(CycleState.FETCHING_EXTERNAL)
        report = await self.fetcher.fetch_many(asset.asset_id, asset.display_name)
        computation.bundles = report.bundles
        computation.sources_queried = report.sources_queried
        computation.sources_succeeded = report.sources_succeeded

        advance(CycleState.COMBINING)
        computation.composite = self.combiner.combine(computation.internal, computation.bundles)

    async def _query(self, asset: TrackedAsset, computation: _Computation) -> List[ContributionRecord]:
        try:
            loaded = await self.index.load_records(asset.asset_id)
        except IndexUnavailable as e:
            logger.warning(f"Index unavailable for {asset.asset_id}, continuing with no records: {e.message}")
            computation.index_error = e.message
            return []

        computation.records_loaded = len(loaded.records)
        computation.records_pruned = len(loaded.pruned)
        computation.records_unreadable = loaded.unreadable
        if loaded.partial:
            logger.warning(
                f"Partial record load for {asset.asset_id}: "
                f"{loaded.unreadable} unreadable, {loaded.unparseable} unparseable"
            )
        return loaded.records

    @staticmethod
    def _copy_counts(computation: _Computation, result: ScheduleCycleResult) -> None:
        result.records_loaded = computation.records_loaded
        result.records_verified = computation.records_verified
        result.records_excluded = computation.records_excluded
        result.records_pruned = computation.records_pruned
        result.records_unreadable = computation.records_unreadable
        result.sources_queried = list(computation.sources_queried)
        result.sources_succeeded = list(computation.sources_succeeded)
