"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines the exception hierarchy for the engagement oracle.

- Provides clear exception hierarchy
- Separates locally-recoverable failures from cycle failures
- Includes context for debugging

============================================================
EXCEPTION HIERARCHY
============================================================
OracleError (base)
├── ConfigurationError
├── RecordUnverifiable
├── IndexUnavailable
├── BlobStoreError
│   └── BlobNotFound
├── SourceUnavailable            (see external_sources.exceptions)
├── LedgerError
│   └── LedgerCommitFailure
└── SchedulerError
    ├── StateTransitionError
    └── ShutdownError

Only LedgerCommitFailure marks an asset's cycle FAILED. Everything
else is recovered where it is raised and folded into counters.

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for logging."""

    LOW = "low"
    """Minor issue, informational."""

    MEDIUM = "medium"
    """Moderate issue, requires attention."""

    HIGH = "high"
    """Serious issue, an asset's cycle is affected."""

    CRITICAL = "critical"
    """Process cannot continue."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class OracleError(Exception):
    """
    Base exception for all oracle errors.

    All exceptions carry:
    - severity: for logging
    - context: for debugging
    - recoverable: whether the pipeline continues past it
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM
    default_recoverable: bool = True

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.recoverable = recoverable if recoverable is not None else self.default_recoverable
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/storage."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }

    def to_log_format(self) -> str:
        """Format exception for structured logging."""
        ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        line = f"[{self.severity.value.upper()}] {type(self).__name__}: {self.message}"
        if ctx_str:
            line += f" | {ctx_str}"
        return line


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(OracleError):
    """Error in configuration."""

    default_severity = Severity.HIGH
    default_recoverable = False

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        actual_value: Optional[Any] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if config_key:
            context["config_key"] = config_key
        if actual_value is not None:
            context["actual_value"] = str(actual_value)[:100]

        super().__init__(message, context=context, **kwargs)


# ============================================================
# RECORD / INDEX ERRORS
# ============================================================

class RecordUnverifiable(OracleError):
    """A contribution record failed signature or format checks."""

    default_severity = Severity.LOW

    def __init__(
        self,
        message: str,
        record_id: Optional[str] = None,
        author: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if record_id:
            context["record_id"] = record_id
        if author:
            context["author"] = author

        super().__init__(message, context=context, **kwargs)


class IndexUnavailable(OracleError):
    """The contribution index could not answer fully."""

    def __init__(
        self,
        message: str,
        asset_id: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if asset_id:
            context["asset_id"] = asset_id

        super().__init__(message, context=context, **kwargs)


# ============================================================
# COLLABORATOR ERRORS
# ============================================================

class BlobStoreError(OracleError):
    """Blob store operation failed."""

    def __init__(
        self,
        message: str,
        record_id: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if record_id:
            context["record_id"] = record_id
        if operation:
            context["operation"] = operation

        super().__init__(message, context=context, **kwargs)


class BlobNotFound(BlobStoreError):
    """The blob store has no payload for a record id."""
    pass


class SourceUnavailable(OracleError):
    """An external truth source produced no usable bundle."""

    default_severity = Severity.LOW

    def __init__(
        self,
        message: str,
        source_name: str = "",
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        context["source_name"] = source_name

        super().__init__(message, context=context, **kwargs)
        self.source_name = source_name


class LedgerError(OracleError):
    """Base class for ledger errors."""

    default_severity = Severity.HIGH


class LedgerCommitFailure(LedgerError):
    """The ledger rejected or failed a commit. The asset's cycle is FAILED."""

    def __init__(
        self,
        message: str,
        asset_id: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if asset_id:
            context["asset_id"] = asset_id

        super().__init__(message, context=context, **kwargs)
        self.asset_id = asset_id


# ============================================================
# SCHEDULER ERRORS
# ============================================================

class SchedulerError(OracleError):
    """Base class for scheduler errors."""

    default_severity = Severity.HIGH


class StateTransitionError(SchedulerError):
    """Invalid cycle state transition."""

    default_recoverable = False

    def __init__(
        self,
        message: str,
        from_state: Optional[str] = None,
        to_state: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if from_state:
            context["from_state"] = from_state
        if to_state:
            context["to_state"] = to_state

        super().__init__(message, context=context, **kwargs)


class ShutdownError(SchedulerError):
    """Error during graceful shutdown."""
    pass


__all__ = [
    "Severity",
    "OracleError",
    "ConfigurationError",
    "RecordUnverifiable",
    "IndexUnavailable",
    "BlobStoreError",
    "BlobNotFound",
    "SourceUnavailable",
    "LedgerError",
    "LedgerCommitFailure",
    "SchedulerError",
    "StateTransitionError",
    "ShutdownError",
]
