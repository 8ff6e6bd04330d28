"""
Ledger - authoritative store for committed composites.

Usage:
    from ledger import InMemoryLedger, TrackedAsset

    ledger = InMemoryLedger([TrackedAsset("0xabc", "Chainsaw Man")])
    receipt = await ledger.commit("0xabc", composite)
"""

from .base import Ledger
from .memory import InMemoryLedger, InMemoryLedgerConfig
from .models import CommitReceipt, TrackedAsset


__all__ = [
    "Ledger",
    "InMemoryLedger",
    "InMemoryLedgerConfig",
    "CommitReceipt",
    "TrackedAsset",
]
