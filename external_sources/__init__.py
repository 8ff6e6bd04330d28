"""
External Sources - independently signed truth signals.

This package provides:
- BaseTruthSource: interface for a provider of signed metrics
- EnclaveTruthSource: HTTP client for the attested enclave
- ExternalMetricsFetcher: isolated, timeout-bounded fan-out

Usage:
    from external_sources import create_fetcher

    fetcher = create_fetcher()
    report = await fetcher.fetch_many(asset_id, "Chainsaw Man")

    print(f"Succeeded: {report.sources_succeeded}")
    print(f"Bundles:   {len(report.bundles)}")
"""

from .base import BaseTruthSource
from .config import DEFAULT_SOURCES, FetcherConfig
from .exceptions import (
    SourceDisabled,
    SourceFetchError,
    SourceResponseError,
    SourceTimeout,
    StaleBundleError,
)
from .fetcher import ExternalMetricsFetcher, create_fetcher
from .models import (
    ExternalMetricBundle,
    FetchOutcome,
    FetchReport,
    FetchStatus,
    SourceHealth,
    SourceIncident,
    SourceStatus,
)
from .providers import EnclaveTruthSource


__all__ = [
    # Base
    "BaseTruthSource",

    # Providers
    "EnclaveTruthSource",

    # Fetcher
    "ExternalMetricsFetcher",
    "create_fetcher",

    # Config
    "FetcherConfig",
    "DEFAULT_SOURCES",

    # Exceptions
    "SourceDisabled",
    "SourceFetchError",
    "SourceResponseError",
    "SourceTimeout",
    "StaleBundleError",

    # Models
    "ExternalMetricBundle",
    "FetchOutcome",
    "FetchReport",
    "FetchStatus",
    "SourceHealth",
    "SourceIncident",
    "SourceStatus",
]
