"""
Tests for Internal Aggregation and the Metrics Combiner.

============================================================
PURPOSE
============================================================
- Exact fixed-point values for every internal metric
- Growth windows and truncation
- Combiner determinism and the no-external fallback

============================================================
"""

import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from aggregation.combiner import MetricsCombiner, aggregate_external, blend, combine
from aggregation.config import AggregationConfig, CombinerWeights
from aggregation.internal import (
    InternalAggregator,
    average_rating,
    growth_rate_from_counts,
    stake_volume,
    unique_contributors,
    velocity,
    viral_score,
)
from contribution_index.models import ContributionRecord
from core.clock import MockClock, to_epoch_millis
from external_sources.models import ExternalMetricBundle


NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


# ============================================================
# FIXTURES
# ============================================================

def make_record(
    asset_id: str = "0xasset",
    author: str = "0xalice",
    engagement_type: str = "rating",
    age: timedelta = timedelta(hours=1),
    **fields,
) -> ContributionRecord:
    data = {
        "ip_token_id": asset_id,
        "user_wallet": author,
        "engagement_type": engagement_type,
        "timestamp": to_epoch_millis(NOW - age),
        "signature": "00" * 64,
        **fields,
    }
    return ContributionRecord.from_dict(data)


def make_bundle(source: str, rating: int, popularity: int, members: int, trending: int) -> ExternalMetricBundle:
    return ExternalMetricBundle(
        source=source,
        asset_id="0xasset",
        average_rating=Decimal(rating),
        popularity_score=Decimal(popularity),
        member_count=Decimal(members),
        trending_score=Decimal(trending),
        signature="ab" * 64,
        timestamp=NOW - timedelta(minutes=5),
    )


@pytest.fixture
def clock():
    return MockClock(NOW)


@pytest.fixture
def aggregator(clock):
    return InternalAggregator(AggregationConfig(), clock=clock)


@pytest.fixture
def combiner():
    return MetricsCombiner(AggregationConfig())


# ============================================================
# TEST: Average Rating
# ============================================================

class TestAverageRating:
    """averageRating is floor(mean x 100)."""

    def test_scenario_a_ratings_8_9_10(self, aggregator):
        records = [make_record(rating=r, author=f"0xuser{r}") for r in (8, 9, 10)]
        metrics = aggregator.aggregate("0xasset", records)
        assert metrics.average_rating == 900

    def test_no_rating_records_gives_zero(self):
        records = [
            make_record(engagement_type="meme", likes=5),
            make_record(engagement_type="stake", position="long", stake_amount="10"),
        ]
        assert average_rating(records) == 0

    def test_empty_set_gives_zero(self):
        assert average_rating([]) == 0

    def test_average_is_floored(self):
        records = [make_record(rating=r) for r in (7, 8, 8)]
        # 23 / 3 = 7.666.. -> 766
        assert average_rating(records) == 766

    def test_malformed_rating_is_skipped(self):
        records = [make_record(rating="not-a-number"), make_record(rating=6)]
        assert average_rating(records) == 600


# ============================================================
# TEST: Contributors
# ============================================================

class TestUniqueContributors:
    """uniqueContributors counts distinct authors in any order."""

    def test_counts_distinct_authors(self):
        records = [
            make_record(author="0xa"),
            make_record(author="0xb", engagement_type="post", likes=1),
            make_record(author="0xa", engagement_type="meme", likes=2),
        ]
        assert unique_contributors(records) == 2

    def test_invariant_under_reordering(self):
        records = [make_record(author=f"0x{i % 4}") for i in range(12)]
        expected = unique_contributors(records)

        rng = random.Random(7)
        for _ in range(5):
            shuffled = list(records)
            rng.shuffle(shuffled)
            assert unique_contributors(shuffled) == expected == 4


# ============================================================
# TEST: Growth Rate
# ============================================================

class TestGrowthRate:
    """Window-over-window growth in basis points."""

    @pytest.mark.parametrize(
        "cur,prior,expected",
        [
            (5, 0, 10000),
            (0, 0, 0),
            (4, 3, 3333),
            (2, 3, -3334),
            (6, 3, 10000),
            (3, 3, 0),
        ],
    )
    def test_growth_from_counts(self, cur, prior, expected):
        assert growth_rate_from_counts(cur, prior) == expected

    def test_scenario_b_two_recent_none_prior(self, aggregator):
        records = [
            make_record(asset_id="0xY", age=timedelta(days=1)),
            make_record(asset_id="0xY", age=timedelta(days=3)),
        ]
        metrics = aggregator.aggregate("0xY", records)
        assert metrics.growth_rate == 10000

    def test_window_boundaries(self, aggregator):
        records = [
            make_record(age=timedelta(days=7)),              # current window start
            make_record(age=timedelta(days=7, seconds=1)),   # prior window
            make_record(age=timedelta(days=14)),             # prior window start
            make_record(age=timedelta(days=14, seconds=1)),  # outside both
        ]
        metrics = aggregator.aggregate("0xasset", records)
        # cur=1, prior=2 -> -5000
        assert metrics.growth_rate == -5000

    def test_future_records_not_counted(self, aggregator):
        records = [make_record(age=-timedelta(hours=1))]
        metrics = aggregator.aggregate("0xasset", records)
        assert metrics.growth_rate == 0


# ============================================================
# TEST: Other Metrics
# ============================================================

class TestOtherMetrics:

    def test_stake_volume_counts_stake_and_price_prediction(self):
        records = [
            make_record(engagement_type="stake", position="long", stake_amount="12.5"),
            make_record(engagement_type="price_prediction", target_price="3.2", horizon="7d", stake_amount=5),
            make_record(engagement_type="rating", rating=8, stake_amount=100),
        ]
        assert stake_volume(records) == 17

    def test_viral_score_sums_social_counters(self):
        records = [
            make_record(engagement_type="meme", likes=10, shares=2, comments=3),
            make_record(engagement_type="post", engagement_count=40),
            make_record(engagement_type="rating", rating=9),
        ]
        assert viral_score(records) == 55

    def test_viral_score_is_capped(self):
        records = [make_record(engagement_type="meme", likes=9000, shares=9000)]
        assert viral_score(records, cap=10000) == 10000

    def test_velocity_is_records_per_day(self):
        records = [
            make_record(age=timedelta(days=2)),
            make_record(age=timedelta(days=1)),
            make_record(age=timedelta(days=0)),
            make_record(age=timedelta(hours=12)),
        ]
        # 4 records over 2 days
        assert velocity(records) == 2

    def test_prediction_accuracy_is_unknown(self, aggregator):
        records = [make_record(engagement_type="episode_prediction", episode="12", prediction="reveal")]
        metrics = aggregator.aggregate("0xasset", records)
        assert metrics.prediction_accuracy == 0
        assert metrics.prediction_accuracy_known is False

    def test_category_counts_are_zero_filled(self, aggregator):
        metrics = aggregator.aggregate("0xasset", [make_record(rating=5)])
        assert metrics.category_counts["rating"] == 1
        assert metrics.category_counts["stake"] == 0
        assert len(metrics.category_counts) == 6

    def test_new_contributors_this_week(self, aggregator):
        records = [
            make_record(author="0xa", age=timedelta(days=1)),
            make_record(author="0xb", age=timedelta(days=2)),
            make_record(author="0xc", age=timedelta(days=10)),
        ]
        metrics = aggregator.aggregate("0xasset", records)
        assert metrics.new_contributors_this_week == 2
        assert metrics.unique_contributors == 3
        assert metrics.total_engagements == 3


# ============================================================
# TEST: Combiner
# ============================================================

class TestCombiner:
    """Deterministic blend of internal and external metrics."""

    def test_fallback_without_bundles(self, aggregator, combiner):
        records = [make_record(rating=r, author=f"0x{r}") for r in (8, 9, 10)]
        internal = aggregator.aggregate("0xasset", records)

        composite = combiner.combine(internal, [])

        assert composite.external_available is False
        assert composite.external_sources_count == 0
        assert composite.external_average_rating == 0
        assert composite.external_popularity_score == 0
        assert composite.external_member_count == 0
        assert composite.external_trending_score == 0
        assert composite.signatures == ()
        assert composite.combined_rating == internal.average_rating == 900
        assert composite.combined_growth_rate == internal.growth_rate
        assert composite.user_total_contributors == 3

    def test_determinism(self, aggregator, combiner):
        records = [make_record(rating=7), make_record(engagement_type="meme", likes=4)]
        internal = aggregator.aggregate("0xasset", records)
        bundles = [
            make_bundle("myanimelist", 850, 4200, 1000, 60),
            make_bundle("anilist", 810, 3900, 500, 40),
        ]

        first = combiner.combine(internal, bundles)
        second = combiner.combine(internal, bundles)

        assert first == second
        assert first.canonical_bytes() == second.canonical_bytes()

    def test_blend_values(self, aggregator, combiner):
        records = [
            make_record(rating=9, age=timedelta(days=1)),
            make_record(rating=9, age=timedelta(days=2)),
        ]
        internal = aggregator.aggregate("0xasset", records)
        bundles = [make_bundle("myanimelist", 800, 5000, 2000, 50)]

        composite = combiner.combine(internal, bundles)

        # 900 * 0.6 + 800 * 0.4
        assert composite.combined_rating == 860
        # growth 10000 * 0.6 + (50 / 100 * 10000) * 0.4
        assert composite.combined_growth_rate == 8000
        assert composite.external_available is True
        assert composite.external_sources_count == 1
        assert [s.source for s in composite.signatures] == ["myanimelist"]

    def test_external_used_when_internal_zero(self, aggregator, combiner):
        internal = aggregator.aggregate("0xasset", [])
        composite = combiner.combine(internal, [make_bundle("anilist", 780, 0, 10, 0)])
        assert composite.combined_rating == 780

    def test_module_level_combine_matches_class(self, aggregator):
        internal = aggregator.aggregate("0xasset", [make_record(rating=6)])
        bundles = [make_bundle("anilist", 700, 100, 1, 10)]
        assert combine(internal, bundles) == MetricsCombiner().combine(internal, bundles)

    def test_ledger_payload_fields(self, aggregator, combiner):
        internal = aggregator.aggregate("0xasset", [make_record(rating=8)])
        payload = combiner.combine(internal).to_ledger_payload()
        assert payload == {
            "average_rating": 800,
            "total_contributors": 1,
            "total_engagements": 1,
            "prediction_accuracy": 0,
            "growth_rate": 10000,
        }


class TestExternalAggregation:

    def test_average_ignores_zero_values(self):
        composite = aggregate_external([
            make_bundle("a", 800, 0, 100, 30),
            make_bundle("b", 0, 600, 200, 31),
        ])
        assert composite.average_rating == 800
        assert composite.popularity_score == 600
        assert composite.member_count == 300
        assert composite.trending_score == 30
        assert composite.source_count == 2

    def test_no_bundles(self):
        composite = aggregate_external([])
        assert composite.source_count == 0
        assert composite.available is False

    def test_blend_one_side_zero(self):
        weights = CombinerWeights()
        assert blend(Decimal(0), Decimal(500), weights) == 500
        assert blend(Decimal(500), Decimal(0), weights) == 500
        assert blend(Decimal(0), Decimal(0), weights) == 0


# ============================================================
# TEST: Configuration
# ============================================================

class TestAggregationConfig:

    def test_weights_normalised(self):
        weights = CombinerWeights(internal=3, external=1)
        assert weights.internal == pytest.approx(0.75)
        assert weights.external == pytest.approx(0.25)

    def test_negative_weight_rejected(self):
        with pytest.raises(ValueError):
            CombinerWeights(internal=-1, external=1)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("COMBINER_INTERNAL_WEIGHT", "0.7")
        monkeypatch.setenv("GROWTH_WINDOW_DAYS", "14")
        config = AggregationConfig.from_env()
        assert config.window_days == 14
        assert config.weights.internal == pytest.approx(0.7)
        assert config.validate() == []

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "aggregation.yaml"
        path.write_text("window_days: 3\nweights:\n  internal: 0.5\n  external: 0.5\n")
        config = AggregationConfig.from_yaml(path)
        assert config.window_days == 3
        assert config.weights.internal == pytest.approx(0.5)
