"""
Internal Aggregator.

============================================================
RESPONSIBILITY
============================================================
Pure reduction of verified contributions into InternalMetrics.

- Never raises
- A malformed field degrades only its own metric to zero
- Integer / Decimal arithmetic only, floor semantics

============================================================
METRICS
============================================================
average_rating      floor(mean(rating) x 100), 0 with no ratings
unique_contributors distinct authors, all categories
total_engagements   record count
category_counts     all six categories, zero-filled
stake_volume        sum of stake amounts on STAKE + PRICE_PREDICTION
growth_rate         cur = [now-7d, now), prior = [now-14d, now-7d)
                    prior == 0 -> 10000 if cur > 0 else 0
                    else floor((cur - prior) * 10000 / prior)
velocity            records per observed day (display only)
viral_score         like + share + comment counters on MEME/POST,
                    capped at 10000
prediction_accuracy 0, flagged unknown (no outcome resolution)
new_contributors_this_week  distinct authors in [now-7d, now)

============================================================
"""

import logging
import math
from datetime import datetime, timedelta
from decimal import Decimal
from fractions import Fraction
from typing import Callable, Optional, Sequence, TypeVar

from contribution_index.models import (
    Category,
    ContributionRecord,
    MemePayload,
    PostPayload,
    RatingPayload,
)
from core.clock import ClockFactory, ClockProtocol, ensure_utc

from .config import SCALE, AggregationConfig
from .models import InternalMetrics


logger = logging.getLogger(__name__)

T = TypeVar("T")

STAKED_CATEGORIES = (Category.STAKE, Category.PRICE_PREDICTION)
SOCIAL_CATEGORIES = (Category.MEME, Category.POST)


# ============================================================
# METRIC FUNCTIONS
# ============================================================

def average_rating(records: Sequence[ContributionRecord]) -> int:
    ratings = [
        r.payload.rating for r in records
        if r.category == Category.RATING
        and isinstance(r.payload, RatingPayload)
        and r.payload.rating is not None
    ]
    if not ratings:
        return 0
    return math.floor(Fraction(sum(ratings, Decimal(0))) * 100 / len(ratings))


def rating_count(records: Sequence[ContributionRecord]) -> int:
    return sum(1 for r in records if r.category == Category.RATING)


def unique_contributors(records: Sequence[ContributionRecord]) -> int:
    return len({r.author for r in records if r.author})


def category_counts(records: Sequence[ContributionRecord]) -> dict[str, int]:
    counts = {c.value: 0 for c in Category}
    for record in records:
        counts[record.category.value] += 1
    return counts


def stake_volume(records: Sequence[ContributionRecord]) -> int:
    total = sum(
        (r.stake_amount for r in records
         if r.category in STAKED_CATEGORIES and r.stake_amount is not None),
        Decimal(0),
    )
    return math.floor(total)


def window_counts(
    records: Sequence[ContributionRecord],
    now: datetime,
    window: timedelta,
) -> tuple[int, int]:
    """(cur, prior) counts for [now-w, now) and [now-2w, now-w)."""
    current_start = now - window
    prior_start = now - 2 * window
    cur = prior = 0
    for record in records:
        ts = record.timestamp
        if current_start <= ts < now:
            cur += 1
        elif prior_start <= ts < current_start:
            prior += 1
    return cur, prior


def growth_rate_from_counts(cur: int, prior: int) -> int:
    """Window-over-window growth in basis points, floored."""
    if prior == 0:
        return SCALE if cur > 0 else 0
    return ((cur - prior) * SCALE) // prior


def velocity(records: Sequence[ContributionRecord]) -> int:
    count = len(records)
    if count == 0:
        return 0
    timestamps = sorted(r.timestamp for r in records if r.timestamp is not None)
    if len(timestamps) < 2:
        return count
    span = timestamps[-1] - timestamps[0]
    span_ms = span // timedelta(milliseconds=1)
    if span_ms <= 0:
        return count
    day_ms = 24 * 60 * 60 * 1000
    return (count * day_ms) // span_ms


def viral_score(records: Sequence[ContributionRecord], cap: int = SCALE) -> int:
    total = 0
    for record in records:
        if record.category in SOCIAL_CATEGORIES and isinstance(record.payload, (MemePayload, PostPayload)):
            total += record.payload.engagement_total()
    return min(total, cap)


def new_contributors(
    records: Sequence[ContributionRecord],
    now: datetime,
    window: timedelta,
) -> int:
    start = now - window
    return len({r.author for r in records if r.author and start <= r.timestamp < now})


# ============================================================
# AGGREGATOR
# ============================================================

class InternalAggregator:
    """
    Reduces verified records into InternalMetrics.

    Usage:
        aggregator = InternalAggregator()
        metrics = aggregator.aggregate("0xasset", verified.records)
    """

    def __init__(
        self,
        config: Optional[AggregationConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self.config = config or AggregationConfig()
        self._clock = clock

    @property
    def clock(self) -> ClockProtocol:
        return self._clock or ClockFactory.get_clock()

    def aggregate(
        self,
        asset_id: str,
        records: Sequence[ContributionRecord],
        now: Optional[datetime] = None,
    ) -> InternalMetrics:
        """Compute all internal metrics. Never raises."""
        now = ensure_utc(now) if now is not None else self.clock.now()
        window = timedelta(days=self.config.window_days)
        records = list(records)
        degraded: list[str] = []

        def safe(name: str, compute: Callable[[], T], default: T) -> T:
            try:
                return compute()
            except Exception as e:
                logger.warning(f"Metric {name} degraded to zero for {asset_id}: {e}")
                degraded.append(name)
                return default

        cur, prior = safe("growth_rate", lambda: window_counts(records, now, window), (0, 0))

        metrics = InternalMetrics(
            asset_id=asset_id,
            computed_at=now,
            average_rating=safe("average_rating", lambda: average_rating(records), 0),
            rating_count=safe("rating_count", lambda: rating_count(records), 0),
            unique_contributors=safe("unique_contributors", lambda: unique_contributors(records), 0),
            total_engagements=len(records),
            category_counts=safe(
                "category_counts",
                lambda: category_counts(records),
                {c.value: 0 for c in Category},
            ),
            stake_volume=safe("stake_volume", lambda: stake_volume(records), 0),
            growth_rate=growth_rate_from_counts(cur, prior),
            velocity=safe("velocity", lambda: velocity(records), 0),
            viral_score=safe("viral_score", lambda: viral_score(records, self.config.viral_cap), 0),
            prediction_accuracy=0,
            prediction_accuracy_known=False,
            new_contributors_this_week=safe(
                "new_contributors_this_week",
                lambda: new_contributors(records, now, window),
                0,
            ),
            degraded_metrics=tuple(degraded),
        )

        logger.debug(f"Aggregated metrics for {asset_id}: {metrics.to_dict()}")
        return metrics
