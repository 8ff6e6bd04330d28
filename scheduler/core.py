"""
Scheduler - Core.

============================================================
RESPONSIBILITY
============================================================
Drives the periodic update of every tracked asset.

- Fixed-interval ticks (default hourly)
- One pipeline run per asset, bounded by a worker pool
- Overlapping ticks are skipped, never queued
- Manual triggers for a whole cycle or a single asset
- Graceful stop: in-flight runs finish before shutdown

============================================================
ARCHITECTURAL POSITION
============================================================
- The scheduler has NO metric logic
- It does NOT retry inside a cycle; the next tick retries
- It ONLY coordinates runs and records their outcomes

============================================================
"""

import asyncio
import json
import logging
import signal
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from aggregation.combiner import MetricsCombiner
from aggregation.internal import InternalAggregator
from aggregation.models import MetricsSnapshot
from contribution_index.index import ContributionIndex
from core.clock import ClockFactory, ClockProtocol
from core.exceptions import ConfigurationError, ShutdownError
from external_sources.fetcher import ExternalMetricsFetcher
from ledger.base import Ledger
from ledger.models import TrackedAsset
from verification.engine import VerificationEngine

from .config import SchedulerConfig
from .models import CycleHistory, CycleSummary, ScheduleCycleResult
from .pipeline import AssetPipeline


logger = logging.getLogger(__name__)


# ============================================================
# LOGGING SETUP
# ============================================================

def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    correlation_id: Optional[str] = None,
) -> logging.Logger:
    """
    Set up structured logging.

    Args:
        level: Log level
        log_format: Output format (json or text)
        correlation_id: Correlation ID for tracing

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
                "correlation_id": correlation_id or "",
            })
        )
    else:
        formatter = logging.Formatter(
            f"%(asctime)s | %(levelname)-8s | %(name)s | {correlation_id or ''} | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("scheduler")


def make_correlation_id(prefix: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"{prefix}_{now.strftime('%Y%m%d_%H%M%S')}"


# ============================================================
# UPDATE SCHEDULER
# ============================================================

class UpdateScheduler:
    """
    Periodic updater for tracked assets.

    Usage:
        scheduler = UpdateScheduler(config, index, verifier, aggregator,
                                    fetcher, combiner, ledger)
        summary = await scheduler.start_cycle()
        await scheduler.run_forever()
    """

    def __init__(
        self,
        config: SchedulerConfig,
        index: ContributionIndex,
        verifier: VerificationEngine,
        aggregator: InternalAggregator,
        fetcher: ExternalMetricsFetcher,
        combiner: MetricsCombiner,
        ledger: Ledger,
        clock: Optional[ClockProtocol] = None,
    ):
        errors = config.validate()
        if errors:
            raise ConfigurationError(
                message=f"Invalid configuration: {', '.join(errors)}",
            )

        self._config = config
        self._clock = clock
        self._ledger = ledger
        self._pipeline = AssetPipeline(
            index=index,
            verifier=verifier,
            aggregator=aggregator,
            fetcher=fetcher,
            combiner=combiner,
            ledger=ledger,
            clock=clock,
        )

        self._configured_assets = config.load_assets()
        self._cycle_history = CycleHistory(max_size=config.cycle_history_size)
        self._semaphore = asyncio.Semaphore(config.max_concurrent_runs)

        # Runtime state
        self._running = False
        self._shutdown_requested = False
        self._cycle_in_progress = False
        self._cycle_counter = 0
        self._current_cycle: Optional[CycleSummary] = None
        self._cycle_task: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()
        self._stop_event: Optional[asyncio.Event] = None
        self._signals_installed = False

        self._correlation_id = make_correlation_id(config.correlation_id_prefix, self.clock.now())

        logger.info(
            f"Update scheduler initialized | interval={config.tick_interval_seconds}s | "
            f"max_concurrent={config.max_concurrent_runs} | "
            f"correlation_id={self._correlation_id}"
        )

    # --------------------------------------------------------
    # Properties
    # --------------------------------------------------------

    @property
    def config(self) -> SchedulerConfig:
        return self._config

    @property
    def clock(self) -> ClockProtocol:
        return self._clock or ClockFactory.get_clock()

    @property
    def pipeline(self) -> AssetPipeline:
        return self._pipeline

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def cycle_in_progress(self) -> bool:
        return self._cycle_in_progress

    @property
    def cycle_history(self) -> CycleHistory:
        return self._cycle_history

    @property
    def correlation_id(self) -> str:
        return self._correlation_id

    # --------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._stop_event = asyncio.Event()
        self._shutdown_requested = False
        self._running = True
        logger.info(
            f"Scheduler started: updates every {self._config.tick_interval_seconds}s"
        )

    async def stop(self) -> None:
        """
        Stop gracefully.

        No new ticks start; in-flight runs are given up to
        shutdown_timeout_seconds to finish, then cancelled.
        """
        if self._shutdown_requested and not self._running:
            return

        logger.info("=== SCHEDULER SHUTDOWN SEQUENCE ===")
        self._shutdown_requested = True
        if self._stop_event is not None:
            self._stop_event.set()

        pending = [t for t in self._in_flight if not t.done()]
        if self._cycle_task is not None and not self._cycle_task.done():
            pending.append(self._cycle_task)
        current = asyncio.current_task()
        pending = [t for t in pending if t is not current]

        try:
            if pending:
                logger.info(f"Waiting for {len(pending)} in-flight task(s) to finish")
                _, still_running = await asyncio.wait(
                    pending,
                    timeout=self._config.shutdown_timeout_seconds,
                )
                if still_running:
                    logger.warning(
                        f"{len(still_running)} task(s) did not finish within "
                        f"{self._config.shutdown_timeout_seconds}s, cancelling"
                    )
                    for task in still_running:
                        task.cancel()
                    await asyncio.gather(*still_running, return_exceptions=True)
        except Exception as e:
            logger.error(f"Shutdown error: {e}", exc_info=True)
            raise ShutdownError(
                message=f"Shutdown error: {e}",
                cause=e,
            )
        finally:
            self._running = False
            self.restore_signal_handlers()

        logger.info("=== SCHEDULER SHUTDOWN COMPLETE ===")

    # --------------------------------------------------------
    # Main Loop
    # --------------------------------------------------------

    async def run_forever(self) -> None:
        """
        Tick until stop() is called.

        Each tick launches a cycle in the background; a tick that
        fires while the previous cycle is still running is skipped.
        """
        if not self._running:
            await self.start()

        logger.info(
            f"Starting main loop | interval={self._config.tick_interval_seconds}s"
        )

        while not self._shutdown_requested:
            self._cycle_task = asyncio.create_task(self.start_cycle())
            await self._wait_for_next_tick()

        if self._cycle_task is not None and not self._cycle_task.done():
            await asyncio.gather(self._cycle_task, return_exceptions=True)

    async def _wait_for_next_tick(self) -> None:
        interval = self._config.tick_interval_seconds
        if interval == 3600:
            wait_seconds = self.clock.time_until_next_tick(interval).total_seconds()
        else:
            wait_seconds = float(interval)

        logger.debug(f"Waiting {wait_seconds:.1f}s until next tick")
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=wait_seconds)
        except asyncio.TimeoutError:
            pass

    # --------------------------------------------------------
    # Cycles
    # --------------------------------------------------------

    async def start_cycle(self) -> CycleSummary:
        """
        Run one cycle over every tracked asset.

        Returns a skipped summary when a cycle is already running.
        """
        self._cycle_counter += 1
        cycle_id = f"{self._correlation_id}_{self._cycle_counter:04d}"
        summary = CycleSummary(cycle_id=cycle_id, started_at=self.clock.now())

        if self._cycle_in_progress:
            logger.warning(f"Previous update still running, skipping cycle {cycle_id}")
            summary.skipped = True
            summary.completed_at = summary.started_at
            await self._cycle_history.add(summary)
            return summary

        self._cycle_in_progress = True
        self._current_cycle = summary
        try:
            assets = await self.tracked_assets()
            logger.info(f"Starting cycle {cycle_id} for {len(assets)} asset(s)")

            tasks = [self._spawn(asset, cycle_id) for asset in assets]
            results = await asyncio.gather(*tasks, return_exceptions=True)

            for asset, result in zip(assets, results):
                if isinstance(result, ScheduleCycleResult):
                    summary.results.append(result)
                    continue
                failed = ScheduleCycleResult(
                    asset_id=asset.asset_id,
                    cycle_id=cycle_id,
                    started_at=summary.started_at,
                    completed_at=self.clock.now(),
                )
                failed.fail(f"{type(result).__name__}: {result}")
                summary.results.append(failed)
        finally:
            summary.completed_at = self.clock.now()
            self._cycle_in_progress = False
            self._current_cycle = None

        logger.info(
            f"Update cycle {cycle_id} complete: {summary.committed} succeeded, "
            f"{summary.failed} failed"
        )
        await self._cycle_history.add(summary)
        return summary

    async def run_asset(self, asset_id: str) -> ScheduleCycleResult:
        """Manual trigger for a single asset."""
        asset = await self._resolve_asset(asset_id)
        self._cycle_counter += 1
        cycle_id = f"{self._correlation_id}_manual_{self._cycle_counter:04d}"
        logger.info(f"Manual update for {asset.display_name} ({asset_id})")
        return await self._spawn(asset, cycle_id)

    async def compute_metrics(self, asset_id: str) -> MetricsSnapshot:
        """On-demand metrics for one asset, without a commit."""
        asset = await self._resolve_asset(asset_id)
        return await self._pipeline.compute(asset)

    def _spawn(self, asset: TrackedAsset, cycle_id: str) -> "asyncio.Task[ScheduleCycleResult]":
        task = asyncio.create_task(self._run_bounded(asset, cycle_id), name=f"run-{asset.asset_id}")
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def _run_bounded(self, asset: TrackedAsset, cycle_id: str) -> ScheduleCycleResult:
        async with self._semaphore:
            return await self._pipeline.run(asset, cycle_id)

    # --------------------------------------------------------
    # Assets
    # --------------------------------------------------------

    async def tracked_assets(self) -> List[TrackedAsset]:
        """Ledger assets plus configured ones, deduplicated by id."""
        assets: Dict[str, TrackedAsset] = {}
        try:
            for asset in await self._ledger.list_assets():
                assets[asset.asset_id] = asset
        except Exception as e:
            logger.error(f"Failed to list assets from ledger {self._ledger.name}: {e}")

        for asset in self._configured_assets:
            existing = assets.get(asset.asset_id)
            if existing is None or (not existing.name and asset.name):
                assets[asset.asset_id] = asset

        return list(assets.values())

    async def _resolve_asset(self, asset_id: str) -> TrackedAsset:
        for asset in await self.tracked_assets():
            if asset.asset_id == asset_id:
                return asset
        return TrackedAsset(asset_id=asset_id)

    # --------------------------------------------------------
    # Signal Handlers
    # --------------------------------------------------------

    def install_signal_handlers(self) -> None:
        """Call stop() on SIGINT/SIGTERM."""
        if sys.platform == "win32":
            return

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda s=sig: asyncio.create_task(self._async_signal_handler(s)),
            )
        self._signals_installed = True

    def restore_signal_handlers(self) -> None:
        if not self._signals_installed:
            return

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        self._signals_installed = False

    async def _async_signal_handler(self, sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}")
        await self.stop()

    # --------------------------------------------------------
    # Status
    # --------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "correlation_id": self._correlation_id,
            "cycle_in_progress": self._cycle_in_progress,
            "current_cycle": self._current_cycle.cycle_id if self._current_cycle else None,
            "in_flight_runs": len([t for t in self._in_flight if not t.done()]),
            "tick_interval_seconds": self._config.tick_interval_seconds,
            "cycle_statistics": self._cycle_history.get_statistics(),
        }
