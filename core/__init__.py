"""
Core Module Package.

This package contains the core infrastructure components
that all other modules depend on.

Components:
- clock: Unified time abstraction
- exceptions: Custom exception hierarchy
"""

from .clock import ClockFactory, ClockProtocol, MockClock, SystemClock, now_utc
from .exceptions import (
    BlobNotFound,
    BlobStoreError,
    ConfigurationError,
    IndexUnavailable,
    LedgerCommitFailure,
    LedgerError,
    OracleError,
    RecordUnverifiable,
    SourceUnavailable,
)


__all__ = [
    "ClockFactory",
    "ClockProtocol",
    "MockClock",
    "SystemClock",
    "now_utc",
    "BlobNotFound",
    "BlobStoreError",
    "ConfigurationError",
    "IndexUnavailable",
    "LedgerCommitFailure",
    "LedgerError",
    "OracleError",
    "RecordUnverifiable",
    "SourceUnavailable",
]
