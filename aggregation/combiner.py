"""
Metrics Combiner.

============================================================
RESPONSIBILITY
============================================================
Deterministic blend of internal metrics with zero or more
external bundles into the CompositeMetrics committed to the ledger.

============================================================
POLICY
============================================================
1. External bundles are averaged (unweighted) per field, ignoring
   zero values; member counts are summed.
2. Each shared field is blended:
       combined = internal x w_internal + external x w_external
   When exactly one side is zero the other is used unchanged.
   Both zero gives zero.
3. Popularity: internal engagements are normalised to 0..10000
   against `popularity_reference` engagements.
   Growth: the external trending score is normalised to 0..10000
   against `trend_reference`.
4. Decimal arithmetic, results floored to int.

No bundles: every external field is zero, external_available is
False and each combined field equals its internal counterpart.

============================================================
"""

import logging
import math
from decimal import Decimal
from typing import Optional, Sequence

from core.clock import to_epoch_millis
from external_sources.models import ExternalMetricBundle

from .config import SCALE, AggregationConfig, CombinerWeights
from .models import BundleSignature, CompositeMetrics, ExternalComposite, InternalMetrics


logger = logging.getLogger(__name__)


def _floor(value: Decimal) -> int:
    return math.floor(value)


def _mean_of_nonzero(values: Sequence[Decimal]) -> int:
    nonzero = [v for v in values if v > 0]
    if not nonzero:
        return 0
    return _floor(sum(nonzero, Decimal(0)) / len(nonzero))


def aggregate_external(bundles: Sequence[ExternalMetricBundle]) -> ExternalComposite:
    """Unweighted average of bundles into one composite."""
    if not bundles:
        return ExternalComposite()

    return ExternalComposite(
        average_rating=_mean_of_nonzero([b.average_rating for b in bundles]),
        popularity_score=_mean_of_nonzero([b.popularity_score for b in bundles]),
        member_count=_floor(sum((b.member_count for b in bundles), Decimal(0))),
        trending_score=_mean_of_nonzero([b.trending_score for b in bundles]),
        source_count=len(bundles),
    )


def blend(
    internal: Decimal,
    external: Decimal,
    weights: CombinerWeights,
) -> int:
    """Weighted blend with the one-side-zero fallback."""
    if internal == 0 and external == 0:
        return 0
    if internal == 0:
        return _floor(external)
    if external == 0:
        return _floor(internal)
    w_internal, w_external = weights.as_decimals()
    return _floor(internal * w_internal + external * w_external)


class MetricsCombiner:
    """
    Pure combiner: identical inputs give byte-identical output.

    Usage:
        combiner = MetricsCombiner()
        composite = combiner.combine(internal_metrics, bundles)
    """

    def __init__(self, config: Optional[AggregationConfig] = None) -> None:
        self.config = config or AggregationConfig()

    @property
    def weights(self) -> CombinerWeights:
        return self.config.weights

    def normalize_engagements(self, engagements: int) -> Decimal:
        value = Decimal(engagements) * SCALE / self.config.popularity_reference
        return min(value, Decimal(SCALE))

    def normalize_trending(self, trending: int) -> Decimal:
        value = Decimal(trending) * SCALE / self.config.trend_reference
        return min(value, Decimal(SCALE))

    def combine(
        self,
        internal: InternalMetrics,
        bundles: Sequence[ExternalMetricBundle] = (),
    ) -> CompositeMetrics:
        bundles = list(bundles)
        external = aggregate_external(bundles)
        w_internal, _ = self.weights.as_decimals()

        logger.info(
            f"Combining internal metrics for {internal.asset_id} "
            f"with {external.source_count} external source(s)"
        )

        return CompositeMetrics(
            asset_id=internal.asset_id,
            as_of=internal.computed_at,
            user_average_rating=internal.average_rating,
            user_total_contributors=internal.unique_contributors,
            user_total_engagements=internal.total_engagements,
            user_growth_rate=internal.growth_rate,
            user_viral_score=internal.viral_score,
            user_stake_volume=internal.stake_volume,
            user_new_contributors_this_week=internal.new_contributors_this_week,
            user_prediction_accuracy=internal.prediction_accuracy,
            prediction_accuracy_known=internal.prediction_accuracy_known,
            external_average_rating=external.average_rating,
            external_popularity_score=external.popularity_score,
            external_member_count=external.member_count,
            external_trending_score=external.trending_score,
            external_sources_count=external.source_count,
            external_available=external.available,
            combined_rating=blend(
                Decimal(internal.average_rating),
                Decimal(external.average_rating),
                self.weights,
            ),
            combined_popularity=blend(
                self.normalize_engagements(internal.total_engagements),
                Decimal(external.popularity_score),
                self.weights,
            ),
            combined_growth_rate=blend(
                Decimal(internal.growth_rate),
                self.normalize_trending(external.trending_score),
                self.weights,
            ),
            internal_weight=str(w_internal),
            signatures=tuple(
                BundleSignature(
                    source=b.source,
                    signature=b.signature,
                    timestamp_ms=to_epoch_millis(b.timestamp),
                )
                for b in bundles
            ),
        )


def combine(
    internal: InternalMetrics,
    bundles: Sequence[ExternalMetricBundle] = (),
    config: Optional[AggregationConfig] = None,
) -> CompositeMetrics:
    """Module-level convenience for MetricsCombiner(config).combine()."""
    return MetricsCombiner(config).combine(internal, bundles)
