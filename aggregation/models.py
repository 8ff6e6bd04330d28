"""
Aggregation - Data Models.

All scaled fields use one fixed-point convention: x100 for ratings
(8.50 -> 850) and basis points for percentages (25.00% -> 2500).
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from contribution_index.models import Category
from core.clock import to_epoch_millis, to_iso8601


@dataclass(frozen=True)
class InternalMetrics:
    """Metrics computed from verified contributions for one asset."""
    asset_id: str
    computed_at: datetime
    average_rating: int = 0
    rating_count: int = 0
    unique_contributors: int = 0
    total_engagements: int = 0
    category_counts: dict[str, int] = field(
        default_factory=lambda: {c.value: 0 for c in Category}
    )
    stake_volume: int = 0
    growth_rate: int = 0
    velocity: int = 0
    viral_score: int = 0
    prediction_accuracy: int = 0
    prediction_accuracy_known: bool = False
    new_contributors_this_week: int = 0
    degraded_metrics: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "computed_at": to_iso8601(self.computed_at),
            "average_rating": self.average_rating,
            "rating_count": self.rating_count,
            "unique_contributors": self.unique_contributors,
            "total_engagements": self.total_engagements,
            "category_counts": dict(self.category_counts),
            "stake_volume": self.stake_volume,
            "growth_rate": self.growth_rate,
            "velocity": self.velocity,
            "viral_score": self.viral_score,
            "prediction_accuracy": self.prediction_accuracy,
            "prediction_accuracy_known": self.prediction_accuracy_known,
            "new_contributors_this_week": self.new_contributors_this_week,
            "degraded_metrics": list(self.degraded_metrics),
        }


@dataclass(frozen=True)
class ExternalComposite:
    """Unweighted average of external bundles."""
    average_rating: int = 0
    popularity_score: int = 0
    member_count: int = 0
    trending_score: int = 0
    source_count: int = 0

    @property
    def available(self) -> bool:
        return self.source_count > 0


@dataclass(frozen=True)
class BundleSignature:
    """Audit trail entry for one external bundle."""
    source: str
    signature: str
    timestamp_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "signature": self.signature,
            "timestamp": self.timestamp_ms,
        }


@dataclass(frozen=True)
class CompositeMetrics:
    """
    The value committed to the ledger.

    Deterministic function of InternalMetrics and the external
    bundles: identical inputs give identical canonical_bytes().
    """
    asset_id: str
    as_of: datetime

    # Internal (user contributions)
    user_average_rating: int = 0
    user_total_contributors: int = 0
    user_total_engagements: int = 0
    user_growth_rate: int = 0
    user_viral_score: int = 0
    user_stake_volume: int = 0
    user_new_contributors_this_week: int = 0
    user_prediction_accuracy: int = 0
    prediction_accuracy_known: bool = False

    # External (truth sources)
    external_average_rating: int = 0
    external_popularity_score: int = 0
    external_member_count: int = 0
    external_trending_score: int = 0
    external_sources_count: int = 0
    external_available: bool = False

    # Blended
    combined_rating: int = 0
    combined_popularity: int = 0
    combined_growth_rate: int = 0
    internal_weight: str = "0.6"

    signatures: tuple[BundleSignature, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "as_of": to_epoch_millis(self.as_of),
            "user_average_rating": self.user_average_rating,
            "user_total_contributors": self.user_total_contributors,
            "user_total_engagements": self.user_total_engagements,
            "user_growth_rate": self.user_growth_rate,
            "user_viral_score": self.user_viral_score,
            "user_stake_volume": self.user_stake_volume,
            "user_new_contributors_this_week": self.user_new_contributors_this_week,
            "user_prediction_accuracy": self.user_prediction_accuracy,
            "prediction_accuracy_known": self.prediction_accuracy_known,
            "external_average_rating": self.external_average_rating,
            "external_popularity_score": self.external_popularity_score,
            "external_member_count": self.external_member_count,
            "external_trending_score": self.external_trending_score,
            "external_sources_count": self.external_sources_count,
            "external_available": self.external_available,
            "combined_rating": self.combined_rating,
            "combined_popularity": self.combined_popularity,
            "combined_growth_rate": self.combined_growth_rate,
            "internal_weight": self.internal_weight,
            "signatures": [s.to_dict() for s in self.signatures],
        }

    def canonical_bytes(self) -> bytes:
        """Byte-identical serialisation for audit."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":")).encode("utf-8")

    def to_ledger_payload(self) -> dict[str, int]:
        """Fields written to the ledger's engagement metrics entry."""
        return {
            "average_rating": self.combined_rating,
            "total_contributors": self.user_total_contributors,
            "total_engagements": self.user_total_engagements,
            "prediction_accuracy": self.user_prediction_accuracy,
            "growth_rate": self.combined_growth_rate,
        }


@dataclass
class MetricsSnapshot:
    """On-demand metrics query result (no commit)."""
    asset_id: str
    composite: Optional[CompositeMetrics] = None
    internal: Optional[InternalMetrics] = None
    records_loaded: int = 0
    records_verified: int = 0
    records_excluded: int = 0
    sources_queried: list[str] = field(default_factory=list)
    sources_succeeded: list[str] = field(default_factory=list)
    partial: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "composite": self.composite.to_dict() if self.composite else None,
            "internal": self.internal.to_dict() if self.internal else None,
            "records_loaded": self.records_loaded,
            "records_verified": self.records_verified,
            "records_excluded": self.records_excluded,
            "sources_queried": list(self.sources_queried),
            "sources_succeeded": list(self.sources_succeeded),
            "partial": self.partial,
            "error": self.error,
        }
