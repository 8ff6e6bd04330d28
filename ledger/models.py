"""
Ledger - Data Models.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from core.clock import to_iso8601


@dataclass(frozen=True)
class TrackedAsset:
    """An asset the scheduler updates every tick."""
    asset_id: str
    name: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.asset_id

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TrackedAsset":
        asset_id = data.get("asset_id") or data.get("ip_token_id") or data.get("id")
        if not asset_id:
            raise ValueError("tracked asset entry has no asset_id")
        return cls(asset_id=str(asset_id), name=str(data.get("name") or ""))


@dataclass(frozen=True)
class CommitReceipt:
    """Ledger acknowledgement of one commit."""
    tx_id: str
    success: bool
    asset_id: str
    committed_at: datetime
    payload: dict[str, int] = field(default_factory=dict, compare=False)
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tx_id": self.tx_id,
            "success": self.success,
            "asset_id": self.asset_id,
            "committed_at": to_iso8601(self.committed_at),
            "payload": dict(self.payload),
            "error": self.error,
        }
