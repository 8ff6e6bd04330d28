"""
External Sources - Data Models.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from core.clock import to_epoch_millis, to_iso8601


@dataclass(frozen=True)
class ExternalMetricBundle:
    """
    One signed payload from one source for one asset in one cycle.

    Scaled values follow the source's own convention (rating x100).
    """
    source: str
    asset_id: str
    average_rating: Decimal
    popularity_score: Decimal
    member_count: Decimal
    trending_score: Decimal
    signature: str
    timestamp: datetime
    intent: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "asset_id": self.asset_id,
            "average_rating": str(self.average_rating),
            "popularity_score": str(self.popularity_score),
            "member_count": str(self.member_count),
            "trending_score": str(self.trending_score),
            "signature": self.signature,
            "timestamp": to_epoch_millis(self.timestamp),
            "intent": self.intent,
        }


class FetchStatus(Enum):
    OK = "ok"
    TIMEOUT = "timeout"
    ERROR = "error"


@dataclass(frozen=True)
class FetchOutcome:
    """
    Result of asking one source.

    `bundle` is None exactly when status is not OK, which keeps
    "absent" distinguishable from a bundle full of zeros.
    """
    source: str
    status: FetchStatus
    bundle: Optional[ExternalMetricBundle] = None
    error: Optional[str] = None
    latency_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == FetchStatus.OK


@dataclass
class FetchReport:
    """Fan-out result for one asset."""
    asset_id: str
    outcomes: list[FetchOutcome] = field(default_factory=list)

    @property
    def bundles(self) -> list[ExternalMetricBundle]:
        return [o.bundle for o in self.outcomes if o.ok and o.bundle is not None]

    @property
    def sources_queried(self) -> list[str]:
        return [o.source for o in self.outcomes]

    @property
    def sources_succeeded(self) -> list[str]:
        return [o.source for o in self.outcomes if o.ok]

    @property
    def sources_failed(self) -> list[str]:
        return [o.source for o in self.outcomes if not o.ok]

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "sources_queried": self.sources_queried,
            "sources_succeeded": self.sources_succeeded,
            "sources_failed": self.sources_failed,
            "outcomes": [
                {"source": o.source, "status": o.status.value, "error": o.error}
                for o in self.outcomes
            ],
        }


class SourceStatus(Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


@dataclass
class SourceHealth:
    status: SourceStatus
    last_check: datetime
    public_key: Optional[str] = None
    endpoints_status: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "last_check": to_iso8601(self.last_check),
            "public_key": self.public_key,
            "endpoints_status": self.endpoints_status,
            "error": self.error,
        }


@dataclass
class SourceIncident:
    """An incident recorded by the fetcher, for debugging."""
    source_name: str
    incident_type: str
    timestamp: datetime
    error_message: str
    asset_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_name": self.source_name,
            "incident_type": self.incident_type,
            "timestamp": to_iso8601(self.timestamp),
            "error_message": self.error_message,
            "asset_id": self.asset_id,
        }
