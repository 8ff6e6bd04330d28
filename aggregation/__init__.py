"""
Aggregation - internal metric computation and the metrics combiner.

Usage:
    from aggregation import InternalAggregator, MetricsCombiner

    internal = InternalAggregator().aggregate(asset_id, verified.records)
    composite = MetricsCombiner().combine(internal, bundles)
"""

from .combiner import MetricsCombiner, aggregate_external, blend, combine
from .config import SCALE, AggregationConfig, CombinerWeights, get_config, set_config
from .internal import InternalAggregator, growth_rate_from_counts
from .models import (
    BundleSignature,
    CompositeMetrics,
    ExternalComposite,
    InternalMetrics,
    MetricsSnapshot,
)


__all__ = [
    "SCALE",
    "AggregationConfig",
    "CombinerWeights",
    "get_config",
    "set_config",
    "InternalAggregator",
    "growth_rate_from_counts",
    "MetricsCombiner",
    "aggregate_external",
    "blend",
    "combine",
    "BundleSignature",
    "CompositeMetrics",
    "ExternalComposite",
    "InternalMetrics",
    "MetricsSnapshot",
]
