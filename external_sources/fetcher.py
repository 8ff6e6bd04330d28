"""
External Metrics Fetcher - fan-out over registered truth sources.

The fetcher:
1. Manages the registered sources
2. Queries them concurrently, each under its own timeout
3. Isolates failures (one slow/broken source never affects another)
4. Keeps stats and an incident log

Total failure is normal operation: the cycle continues with
internal metrics only.
"""

import asyncio
import logging
import time
from typing import Any, Optional, Sequence

from core.clock import ClockFactory, ClockProtocol
from core.exceptions import SourceUnavailable

from .base import BaseTruthSource
from .config import FetcherConfig
from .models import FetchOutcome, FetchReport, FetchStatus, SourceHealth, SourceIncident


logger = logging.getLogger(__name__)


class ExternalMetricsFetcher:
    """
    Registry of external truth sources.

    Usage:
        fetcher = ExternalMetricsFetcher()
        fetcher.register(EnclaveTruthSource("myanimelist", url))
        report = await fetcher.fetch_many(asset_id, "Chainsaw Man")
        bundles = report.bundles
    """

    def __init__(
        self,
        config: Optional[FetcherConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self.config = config or FetcherConfig()
        self._clock = clock
        self._sources: dict[str, BaseTruthSource] = {}
        self._incidents: list[SourceIncident] = []

        self._stats = {
            "total_requests": 0,
            "successful_fetches": 0,
            "partial_fetches": 0,
            "failed_fetches": 0,
            "timeouts": 0,
            "errors": 0,
        }

    @property
    def clock(self) -> ClockProtocol:
        return self._clock or ClockFactory.get_clock()

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def register(self, source: BaseTruthSource) -> None:
        """Register a truth source."""
        if source.name in self._sources:
            logger.warning(f"Overwriting existing source: {source.name}")
        self._sources[source.name] = source
        logger.info(f"Registered external source: {source.name}")

    def unregister(self, name: str) -> bool:
        if name in self._sources:
            del self._sources[name]
            logger.info(f"Unregistered external source: {name}")
            return True
        return False

    @property
    def source_names(self) -> list[str]:
        return list(self._sources.keys())

    # ─────────────────────────────────────────────────────────────
    # Fetching
    # ─────────────────────────────────────────────────────────────

    async def fetch_one(
        self,
        asset_id: str,
        asset_name: str,
        source: BaseTruthSource,
    ) -> FetchOutcome:
        """
        Ask one source, bounded by the configured timeout.

        Never raises: timeouts and errors yield an outcome without a
        bundle.
        """
        start = time.monotonic()
        try:
            bundle = await asyncio.wait_for(
                source.fetch(asset_id, asset_name),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._stats["timeouts"] += 1
            message = f"timed out after {self.config.timeout_seconds}s"
            logger.warning(f"Source {source.name} {message} for {asset_id}")
            self._record_incident(source.name, "timeout", message, asset_id)
            return FetchOutcome(
                source=source.name,
                status=FetchStatus.TIMEOUT,
                error=message,
                latency_ms=(time.monotonic() - start) * 1000,
            )
        except SourceUnavailable as e:
            self._stats["errors"] += 1
            logger.warning(f"Source {source.name} unavailable for {asset_id}: {e.message}")
            self._record_incident(source.name, type(e).__name__, e.message, asset_id)
            return FetchOutcome(
                source=source.name,
                status=FetchStatus.ERROR,
                error=e.message,
                latency_ms=(time.monotonic() - start) * 1000,
            )
        except Exception as e:
            self._stats["errors"] += 1
            logger.error(f"Source {source.name} error for {asset_id}: {e}")
            self._record_incident(source.name, "fetch_error", str(e), asset_id)
            return FetchOutcome(
                source=source.name,
                status=FetchStatus.ERROR,
                error=str(e),
                latency_ms=(time.monotonic() - start) * 1000,
            )

        return FetchOutcome(
            source=source.name,
            status=FetchStatus.OK,
            bundle=bundle,
            latency_ms=(time.monotonic() - start) * 1000,
        )

    async def fetch_many(
        self,
        asset_id: str,
        asset_name: str,
        sources: Optional[Sequence[str]] = None,
    ) -> FetchReport:
        """
        Query sources concurrently.

        Args:
            asset_id: Asset being updated
            asset_name: Human name the providers search by
            sources: Source names to ask (default: all registered)
        """
        report = FetchReport(asset_id=asset_id)
        self._stats["total_requests"] += 1

        if not self.enabled:
            logger.debug("External sources disabled")
            return report

        selected: dict[str, BaseTruthSource] = {}
        for name in (sources if sources is not None else self.source_names):
            source = self._sources.get(name)
            if source is None:
                logger.warning(f"Unknown external source requested: {name}")
                report.outcomes.append(
                    FetchOutcome(source=name, status=FetchStatus.ERROR, error="unknown source")
                )
                continue
            selected[name] = source

        if not selected:
            if not report.outcomes:
                logger.warning("No external sources registered")
            self._stats["failed_fetches"] += 1
            return report

        logger.info(
            f"Fetching metrics from {len(selected)} source(s) for {asset_name}: "
            f"{', '.join(selected)}"
        )

        tasks = {
            name: asyncio.create_task(self.fetch_one(asset_id, asset_name, source), name=name)
            for name, source in selected.items()
        }
        results = await asyncio.gather(*tasks.values(), return_exceptions=True)

        for name, result in zip(tasks.keys(), results):
            if isinstance(result, BaseException):
                self._record_incident(name, "fetch_error", str(result), asset_id)
                report.outcomes.append(
                    FetchOutcome(source=name, status=FetchStatus.ERROR, error=str(result))
                )
            else:
                report.outcomes.append(result)

        succeeded = len(report.sources_succeeded)
        if succeeded and not report.sources_failed:
            self._stats["successful_fetches"] += 1
        elif succeeded:
            self._stats["partial_fetches"] += 1
        else:
            self._stats["failed_fetches"] += 1

        logger.info(
            f"Successfully fetched from {succeeded}/{len(report.outcomes)} sources for {asset_id}"
        )
        return report

    # ─────────────────────────────────────────────────────────────
    # Observability
    # ─────────────────────────────────────────────────────────────

    def _record_incident(
        self,
        source_name: str,
        incident_type: str,
        error_message: str,
        asset_id: Optional[str] = None,
    ) -> None:
        self._incidents.append(
            SourceIncident(
                source_name=source_name,
                incident_type=incident_type,
                timestamp=self.clock.now(),
                error_message=error_message,
                asset_id=asset_id,
            )
        )
        if len(self._incidents) > self.config.max_incidents:
            self._incidents = self._incidents[-self.config.max_incidents:]

    def get_incidents(
        self,
        limit: int = 20,
        source_name: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        incidents = self._incidents
        if source_name:
            incidents = [i for i in incidents if i.source_name == source_name]
        return [i.to_dict() for i in incidents[-limit:]]

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "enabled": self.enabled,
            "registered_sources": len(self._sources),
            "source_names": self.source_names,
            "source_stats": {name: s.get_stats() for name, s in self._sources.items()},
            "recent_incidents": len(self._incidents),
        }

    async def get_health(self) -> dict[str, SourceHealth]:
        health = {}
        for name, source in self._sources.items():
            health[name] = await source.health_check()
        return health

    async def close(self) -> None:
        for source in self._sources.values():
            await source.close()
        self._sources.clear()


def create_fetcher(
    config: Optional[FetcherConfig] = None,
    clock: Optional[ClockProtocol] = None,
) -> ExternalMetricsFetcher:
    """Fetcher with one enclave source per configured provider name."""
    from .providers import EnclaveTruthSource

    config = config or FetcherConfig.from_env()
    fetcher = ExternalMetricsFetcher(config, clock=clock)
    if not config.enabled:
        logger.info("External sources disabled; composites will use internal metrics only")
        return fetcher

    for name in config.sources:
        fetcher.register(
            EnclaveTruthSource(
                source_name=name,
                enclave_url=config.enclave_url,
                timeout_seconds=config.timeout_seconds,
                max_bundle_age_seconds=config.max_bundle_age_seconds,
                clock=clock,
            )
        )
    return fetcher
