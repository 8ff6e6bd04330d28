"""
Scheduler - periodic composite updates.

============================================================
PURPOSE
============================================================
Runs every tracked asset through

    query -> verify -> aggregate -> fetch external -> combine -> commit

once per tick, isolating failures per asset.

============================================================
USAGE
============================================================
python -m scheduler --single-cycle --dry-run

    from scheduler import build_runtime, SchedulerConfig

    runtime = build_runtime(SchedulerConfig(dry_run=True))
    summary = await runtime.scheduler.start_cycle()

============================================================
"""

from .config import SchedulerConfig, TrackedAssetsFile
from .core import UpdateScheduler, make_correlation_id, setup_logging
from .models import (
    ALLOWED_TRANSITIONS,
    CycleHistory,
    CycleState,
    CycleSummary,
    ScheduleCycleResult,
    can_transition,
)
from .pipeline import AssetPipeline
from .runtime import OracleRuntime, build_runtime


__all__ = [
    # Core
    "UpdateScheduler",
    "AssetPipeline",
    "setup_logging",
    "make_correlation_id",

    # Runtime
    "OracleRuntime",
    "build_runtime",

    # Config
    "SchedulerConfig",
    "TrackedAssetsFile",

    # Models
    "ALLOWED_TRANSITIONS",
    "CycleHistory",
    "CycleState",
    "CycleSummary",
    "ScheduleCycleResult",
    "can_transition",
]
