"""
Scheduler - Configuration.

    TICK_INTERVAL_SECONDS       seconds between cycles (default 3600)
    MAX_CONCURRENT_RUNS         per-asset runs in flight at once
    SHUTDOWN_TIMEOUT_SECONDS    how long stop() waits for in-flight runs
    LOG_LEVEL / LOG_FORMAT      logging setup
    TRACKED_ASSETS_FILE         optional YAML list of assets
    DRY_RUN                     in-memory blob store and ledger
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

import yaml

from ledger.models import TrackedAsset


logger = logging.getLogger(__name__)


@dataclass
class SchedulerConfig:
    """Configuration for the update scheduler."""

    tick_interval_seconds: int = 3600
    """Seconds between cycles (default 1 hour)."""

    max_concurrent_runs: int = 10
    """Per-asset pipeline runs allowed at once."""

    shutdown_timeout_seconds: int = 30
    """Maximum wait for in-flight runs on stop()."""

    log_level: str = "INFO"
    log_format: str = "json"

    correlation_id_prefix: str = "oracle"

    tracked_assets_file: Optional[str] = None
    """YAML file with assets tracked in addition to the ledger's list."""

    assets: List[TrackedAsset] = field(default_factory=list)
    """Assets tracked in addition to the ledger's list."""

    dry_run: bool = False

    cycle_history_size: int = 100

    @classmethod
    def from_env(cls) -> "SchedulerConfig":
        """Load configuration from environment variables."""
        return cls(
            tick_interval_seconds=int(os.getenv("TICK_INTERVAL_SECONDS", "3600")),
            max_concurrent_runs=int(os.getenv("MAX_CONCURRENT_RUNS", "10")),
            shutdown_timeout_seconds=int(os.getenv("SHUTDOWN_TIMEOUT_SECONDS", "30")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
            tracked_assets_file=os.getenv("TRACKED_ASSETS_FILE") or None,
            dry_run=os.getenv("DRY_RUN", "false").lower() == "true",
        )

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.tick_interval_seconds < 1:
            errors.append("tick_interval_seconds must be at least 1")

        if self.max_concurrent_runs < 1:
            errors.append("max_concurrent_runs must be at least 1")

        if self.shutdown_timeout_seconds < 1:
            errors.append("shutdown_timeout_seconds must be at least 1")

        if self.log_format not in ("json", "text"):
            errors.append(f"log_format must be json or text, got {self.log_format}")

        if self.tracked_assets_file and not Path(self.tracked_assets_file).exists():
            errors.append(f"tracked assets file not found: {self.tracked_assets_file}")

        return errors

    def load_assets(self) -> List[TrackedAsset]:
        """Configured assets plus those in the tracked assets file."""
        assets = list(self.assets)
        if self.tracked_assets_file:
            assets.extend(TrackedAssetsFile.from_yaml(self.tracked_assets_file).assets)
        return assets


@dataclass
class TrackedAssetsFile:
    """
    YAML list of assets to update every tick.

        assets:
          - asset_id: "0xabc..."
            name: "Chainsaw Man"
          - "0xdef..."
    """

    assets: List[TrackedAsset] = field(default_factory=list)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "TrackedAssetsFile":
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        assets = []
        for entry in data.get("assets") or []:
            if isinstance(entry, str):
                assets.append(TrackedAsset(asset_id=entry))
            else:
                assets.append(TrackedAsset.from_dict(entry))

        logger.info(f"Loaded {len(assets)} tracked assets from {path}")
        return cls(assets=assets)
