"""
Tests for the in-memory ledger.
"""

from datetime import datetime, timezone

import pytest

from aggregation import CompositeMetrics
from core.clock import MockClock
from core.exceptions import LedgerCommitFailure
from ledger import InMemoryLedger, InMemoryLedgerConfig, TrackedAsset


NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


# ============================================================
# FIXTURES
# ============================================================

def composite(asset_id="0xasset", rating=860):
    return CompositeMetrics(asset_id=asset_id, as_of=NOW, combined_rating=rating, user_total_contributors=3)


@pytest.fixture
def ledger():
    return InMemoryLedger(
        [TrackedAsset("0xasset", "Chainsaw Man"), TrackedAsset("0xother")],
        clock=MockClock(NOW),
    )


# ============================================================
# TEST: Commit / Read
# ============================================================

class TestInMemoryLedger:

    @pytest.mark.asyncio
    async def test_commit_then_read(self, ledger):
        metrics = composite()
        receipt = await ledger.commit("0xasset", metrics)

        assert receipt.success is True
        assert receipt.tx_id.startswith("0x")
        assert receipt.committed_at == NOW
        assert receipt.payload["average_rating"] == 860
        assert await ledger.read("0xasset") == metrics

    @pytest.mark.asyncio
    async def test_same_composite_same_tx_id(self, ledger):
        first = await ledger.commit("0xasset", composite())
        second = await ledger.commit("0xasset", composite())
        assert first.tx_id == second.tx_id
        assert len(ledger.receipts) == 2

    @pytest.mark.asyncio
    async def test_last_write_wins(self, ledger):
        await ledger.commit("0xasset", composite(rating=700))
        await ledger.commit("0xasset", composite(rating=900))
        assert (await ledger.read("0xasset")).combined_rating == 900

    @pytest.mark.asyncio
    async def test_injected_failure(self):
        ledger = InMemoryLedger(config=InMemoryLedgerConfig(failing_assets={"0xbad"}))
        with pytest.raises(LedgerCommitFailure) as exc_info:
            await ledger.commit("0xbad", composite("0xbad"))

        assert exc_info.value.asset_id == "0xbad"
        assert await ledger.read("0xbad") is None
        assert ledger.get_stats()["commit_failures"] == 1

    @pytest.mark.asyncio
    async def test_fail_commits_for(self, ledger):
        ledger.fail_commits_for("0xother")
        await ledger.commit("0xasset", composite())
        with pytest.raises(LedgerCommitFailure):
            await ledger.commit("0xother", composite("0xother"))
        assert ledger.get_stats()["commits"] == 1

    @pytest.mark.asyncio
    async def test_list_assets(self, ledger):
        assets = await ledger.list_assets()
        assert [a.asset_id for a in assets] == ["0xasset", "0xother"]
        assert assets[1].display_name == "0xother"


class TestTrackedAsset:

    @pytest.mark.parametrize("data", [
        {"asset_id": "0xa", "name": "A"},
        {"ip_token_id": "0xa", "name": "A"},
        {"id": "0xa", "name": "A"},
    ])
    def test_from_dict_aliases(self, data):
        assert TrackedAsset.from_dict(data) == TrackedAsset("0xa", "A")

    def test_from_dict_requires_id(self):
        with pytest.raises(ValueError):
            TrackedAsset.from_dict({"name": "A"})
