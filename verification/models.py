"""
Verification - Data Models.
"""

from dataclasses import dataclass, field
from typing import Any

from contribution_index.models import ContributionRecord


@dataclass
class VerifiedContributionSet:
    """The subset of a record set that passed verification, plus counts."""
    records: list[ContributionRecord] = field(default_factory=list)
    total: int = 0
    excluded_ids: list[str] = field(default_factory=list)

    @property
    def verified(self) -> int:
        return len(self.records)

    @property
    def excluded(self) -> int:
        return self.total - self.verified

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "verified": self.verified,
            "excluded": self.excluded,
            "excluded_ids": list(self.excluded_ids),
        }
