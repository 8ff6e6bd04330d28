"""
Scheduler - Models.

============================================================
RESPONSIBILITY
============================================================
Data models for the update scheduler.

- Per-asset cycle states with a validated transition table
- Per-asset run results
- Per-tick summaries and a bounded history

============================================================
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from aggregation.models import CompositeMetrics
from core.clock import to_iso8601
from core.exceptions import StateTransitionError


# ============================================================
# CYCLE STATES
# ============================================================

class CycleState(Enum):
    """Stages one asset passes through in a cycle, in order."""

    PENDING = "pending"
    QUERYING = "querying"
    VERIFYING = "verifying"
    AGGREGATING = "aggregating"
    FETCHING_EXTERNAL = "fetching_external"
    COMBINING = "combining"
    COMMITTING = "committing"
    COMMITTED = "committed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CycleState.COMMITTED, CycleState.FAILED)


ALLOWED_TRANSITIONS: Dict[CycleState, Set[CycleState]] = {
    CycleState.PENDING: {CycleState.QUERYING, CycleState.FAILED},
    CycleState.QUERYING: {CycleState.VERIFYING, CycleState.FAILED},
    CycleState.VERIFYING: {CycleState.AGGREGATING, CycleState.FAILED},
    CycleState.AGGREGATING: {CycleState.FETCHING_EXTERNAL, CycleState.FAILED},
    CycleState.FETCHING_EXTERNAL: {CycleState.COMBINING, CycleState.FAILED},
    CycleState.COMBINING: {CycleState.COMMITTING, CycleState.FAILED},
    CycleState.COMMITTING: {CycleState.COMMITTED, CycleState.FAILED},
    CycleState.COMMITTED: set(),
    CycleState.FAILED: set(),
}


def can_transition(from_state: CycleState, to_state: CycleState) -> bool:
    return to_state in ALLOWED_TRANSITIONS.get(from_state, set())


# ============================================================
# PER-ASSET RESULT
# ============================================================

@dataclass
class ScheduleCycleResult:
    """Outcome of one asset's run in one cycle."""

    asset_id: str
    cycle_id: str
    started_at: datetime
    state: CycleState = CycleState.PENDING
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    tx_id: Optional[str] = None
    composite: Optional[CompositeMetrics] = None

    records_loaded: int = 0
    records_verified: int = 0
    records_excluded: int = 0
    records_pruned: int = 0
    records_unreadable: int = 0
    sources_queried: List[str] = field(default_factory=list)
    sources_succeeded: List[str] = field(default_factory=list)

    history: List[CycleState] = field(default_factory=lambda: [CycleState.PENDING])

    def transition_to(self, new_state: CycleState) -> None:
        """Move to the next state. Raises StateTransitionError on an illegal edge."""
        if not can_transition(self.state, new_state):
            raise StateTransitionError(
                f"Invalid transition {self.state.value} -> {new_state.value} for {self.asset_id}",
                from_state=self.state.value,
                to_state=new_state.value,
            )
        self.state = new_state
        self.history.append(new_state)

    def fail(self, error: str) -> None:
        if not self.state.is_terminal:
            self.transition_to(CycleState.FAILED)
        self.error = error

    @property
    def success(self) -> bool:
        return self.state == CycleState.COMMITTED

    @property
    def duration_seconds(self) -> float:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "cycle_id": self.cycle_id,
            "state": self.state.value,
            "started_at": to_iso8601(self.started_at),
            "completed_at": to_iso8601(self.completed_at) if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "error": self.error,
            "tx_id": self.tx_id,
            "records_loaded": self.records_loaded,
            "records_verified": self.records_verified,
            "records_excluded": self.records_excluded,
            "records_pruned": self.records_pruned,
            "records_unreadable": self.records_unreadable,
            "sources_queried": list(self.sources_queried),
            "sources_succeeded": list(self.sources_succeeded),
            "history": [s.value for s in self.history],
        }


# ============================================================
# CYCLE SUMMARY
# ============================================================

@dataclass
class CycleSummary:
    """All asset results of one tick."""

    cycle_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    results: List[ScheduleCycleResult] = field(default_factory=list)
    skipped: bool = False

    @property
    def committed(self) -> int:
        return sum(1 for r in self.results if r.state == CycleState.COMMITTED)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.state == CycleState.FAILED)

    @property
    def success(self) -> bool:
        return not self.skipped and self.failed == 0

    @property
    def duration_seconds(self) -> float:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0.0

    def result_for(self, asset_id: str) -> Optional[ScheduleCycleResult]:
        return next((r for r in self.results if r.asset_id == asset_id), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "started_at": to_iso8601(self.started_at),
            "completed_at": to_iso8601(self.completed_at) if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "skipped": self.skipped,
            "assets": len(self.results),
            "committed": self.committed,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }


# ============================================================
# CYCLE HISTORY
# ============================================================

class CycleHistory:
    """
    Tracks recent cycle summaries.
    """

    def __init__(self, max_size: int = 100):
        self._max_size = max_size
        self._cycles: List[CycleSummary] = []
        self._lock = asyncio.Lock()

    async def add(self, summary: CycleSummary) -> None:
        async with self._lock:
            self._cycles.append(summary)
            if len(self._cycles) > self._max_size:
                self._cycles = self._cycles[-self._max_size:]

    def __len__(self) -> int:
        return len(self._cycles)

    def get_recent(self, limit: int = 10) -> List[CycleSummary]:
        return self._cycles[-limit:]

    def get_last(self) -> Optional[CycleSummary]:
        return self._cycles[-1] if self._cycles else None

    def get_success_rate(self, last_n: int = 10) -> float:
        """Share of the last N non-skipped cycles with no failed asset."""
        recent = [c for c in self._cycles[-last_n:] if not c.skipped]
        if not recent:
            return 0.0
        return sum(1 for c in recent if c.success) / len(recent)

    def get_statistics(self) -> Dict[str, Any]:
        if not self._cycles:
            return {
                "total_cycles": 0,
                "success_rate": 0.0,
                "average_duration_seconds": 0.0,
            }

        ran = [c for c in self._cycles if not c.skipped]
        successes = sum(1 for c in ran if c.success)
        durations = [c.duration_seconds for c in ran if c.completed_at]

        return {
            "total_cycles": len(self._cycles),
            "skipped_cycles": len(self._cycles) - len(ran),
            "successful_cycles": successes,
            "failed_cycles": len(ran) - successes,
            "success_rate": successes / len(ran) if ran else 0.0,
            "average_duration_seconds": sum(durations) / len(durations) if durations else 0.0,
            "assets_committed": sum(c.committed for c in ran),
            "assets_failed": sum(c.failed for c in ran),
            "last_cycle_time": to_iso8601(self._cycles[-1].started_at),
        }
