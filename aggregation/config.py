"""
Aggregation - Configuration.

============================================================
CONFIGURABLE METRIC COMPUTATION
============================================================

- Combiner weights (internal vs external)
- Growth window size
- Score caps and normalisation references

Configuration can be loaded from:
- Default values
- Environment variables
- YAML config file

============================================================
"""

import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional, Union

import yaml


logger = logging.getLogger(__name__)


# Fixed-point scale shared by every scaled field (100.00% == 10000).
SCALE = 10000


# =============================================================
# COMBINER WEIGHTS
# =============================================================


@dataclass
class CombinerWeights:
    """
    Weights for blending internal and external metrics.

    Must sum to 1.0; other totals are normalised.
    """
    internal: float = 0.6
    external: float = 0.4

    def __post_init__(self) -> None:
        if self.internal < 0 or self.external < 0:
            raise ValueError("Combiner weights must be non-negative")
        total = self.total()
        if total <= 0:
            raise ValueError("Combiner weights must not both be zero")
        if abs(total - 1.0) > 0.001:
            logger.warning(f"Combiner weights sum to {total}, normalizing to 1.0")
            self._normalize()

    def total(self) -> float:
        return self.internal + self.external

    def _normalize(self) -> None:
        total = self.total()
        self.internal /= total
        self.external /= total

    def as_decimals(self) -> tuple[Decimal, Decimal]:
        """Weights as Decimals, for exact fixed-point blending."""
        internal = Decimal(repr(round(self.internal, 6)))
        return internal, Decimal(1) - internal

    @classmethod
    def from_internal(cls, internal: float) -> "CombinerWeights":
        return cls(internal=internal, external=1.0 - internal)

    def to_dict(self) -> dict[str, float]:
        return {"internal": self.internal, "external": self.external}


# =============================================================
# AGGREGATION CONFIG
# =============================================================


@dataclass
class AggregationConfig:
    """Parameters for internal metric computation and combination."""

    window_days: int = 7
    """Growth window; the prior window is the same length before it."""

    viral_cap: int = SCALE
    """Upper bound for the viral score."""

    popularity_reference: int = 100000
    """Engagement count that maps to a full popularity score."""

    trend_reference: int = 100
    """External trending score that maps to 100% growth."""

    weights: CombinerWeights = field(default_factory=CombinerWeights)

    def validate(self) -> list[str]:
        errors = []
        if self.window_days < 1:
            errors.append("window_days must be >= 1")
        if self.viral_cap < 0:
            errors.append("viral_cap must be >= 0")
        if self.popularity_reference < 1:
            errors.append("popularity_reference must be >= 1")
        if self.trend_reference < 1:
            errors.append("trend_reference must be >= 1")
        return errors

    @classmethod
    def from_env(cls) -> "AggregationConfig":
        defaults = cls()
        return cls(
            window_days=int(os.getenv("GROWTH_WINDOW_DAYS", str(defaults.window_days))),
            viral_cap=int(os.getenv("VIRAL_SCORE_CAP", str(defaults.viral_cap))),
            popularity_reference=int(
                os.getenv("POPULARITY_REFERENCE_ENGAGEMENTS", str(defaults.popularity_reference))
            ),
            trend_reference=int(os.getenv("TREND_REFERENCE_SCORE", str(defaults.trend_reference))),
            weights=CombinerWeights.from_internal(
                float(os.getenv("COMBINER_INTERNAL_WEIGHT", str(defaults.weights.internal)))
            ),
        )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "AggregationConfig":
        with open(path, "r") as f:
            data: dict[str, Any] = yaml.safe_load(f) or {}

        weights_data = data.pop("weights", None) or {}
        config = cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})
        if weights_data:
            config.weights = CombinerWeights(**weights_data)

        logger.info(f"Loaded aggregation config from {path}")
        return config

    def to_dict(self) -> dict[str, Any]:
        return {
            "window_days": self.window_days,
            "viral_cap": self.viral_cap,
            "popularity_reference": self.popularity_reference,
            "trend_reference": self.trend_reference,
            "weights": self.weights.to_dict(),
        }


_config: Optional[AggregationConfig] = None


def get_config() -> AggregationConfig:
    global _config
    if _config is None:
        _config = AggregationConfig.from_env()
    return _config


def set_config(config: AggregationConfig) -> None:
    global _config
    _config = config
