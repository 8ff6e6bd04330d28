"""
Scheduler - Runtime wiring.

Builds every component the scheduler needs from environment
configuration and owns their shutdown.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from aggregation.combiner import MetricsCombiner
from aggregation.config import AggregationConfig
from aggregation.internal import InternalAggregator
from blob_store import BlobStore, BlobStoreConfig, InMemoryBlobStore, create_blob_store
from contribution_index import ContributionIndex, IndexConfig, create_index
from core.clock import ClockProtocol
from core.exceptions import ConfigurationError
from external_sources import ExternalMetricsFetcher, FetcherConfig, create_fetcher
from ledger import InMemoryLedger, Ledger
from verification import VerificationEngine

from .config import SchedulerConfig
from .core import UpdateScheduler


logger = logging.getLogger(__name__)


@dataclass
class OracleRuntime:
    """The wired components of one oracle process."""

    scheduler: UpdateScheduler
    index: ContributionIndex
    blob_store: BlobStore
    fetcher: ExternalMetricsFetcher
    ledger: Ledger

    async def close(self) -> None:
        await self.scheduler.stop()
        await self.fetcher.close()
        await self.ledger.close()
        await self.blob_store.close()
        self.index.close()
        logger.info("Runtime resources released")


def build_runtime(
    config: SchedulerConfig,
    blob_config: Optional[BlobStoreConfig] = None,
    index_config: Optional[IndexConfig] = None,
    fetcher_config: Optional[FetcherConfig] = None,
    aggregation_config: Optional[AggregationConfig] = None,
    ledger: Optional[Ledger] = None,
    clock: Optional[ClockProtocol] = None,
) -> OracleRuntime:
    """
    Wire the oracle from configuration.

    Raises ConfigurationError when any section is invalid.
    """
    blob_config = blob_config or BlobStoreConfig.from_env()
    index_config = index_config or IndexConfig.from_env()
    fetcher_config = fetcher_config or FetcherConfig.from_env()
    aggregation_config = aggregation_config or AggregationConfig.from_env()

    errors = (
        config.validate()
        + ([] if config.dry_run else blob_config.validate())
        + index_config.validate()
        + fetcher_config.validate()
        + aggregation_config.validate()
    )
    if errors:
        raise ConfigurationError(
            message=f"Invalid configuration: {', '.join(errors)}",
        )

    blob_store = create_blob_store(blob_config, dry_run=config.dry_run)
    record_source = blob_store if isinstance(blob_store, InMemoryBlobStore) else None
    index = create_index(index_config, blob_store=blob_store, record_source=record_source)

    fetcher = create_fetcher(fetcher_config, clock=clock)

    if ledger is None:
        logger.warning("No ledger client configured, committing to the in-memory ledger")
        ledger = InMemoryLedger(clock=clock)

    scheduler = UpdateScheduler(
        config=config,
        index=index,
        verifier=VerificationEngine(),
        aggregator=InternalAggregator(aggregation_config, clock=clock),
        fetcher=fetcher,
        combiner=MetricsCombiner(aggregation_config),
        ledger=ledger,
        clock=clock,
    )

    return OracleRuntime(
        scheduler=scheduler,
        index=index,
        blob_store=blob_store,
        fetcher=fetcher,
        ledger=ledger,
    )
