"""
Integration Tests - Engine state across restarts.

Tests verify:
1. Leases, auctions, bids and pools survive a restart
2. Lease transitions and bounty releases land in the audit trail
3. Priority resolves from reloaded state
"""

import asyncio

import pytest

from leasebid.core.config import EngineConfig
from leasebid.core.events import BOUNTY_RELEASED, LEASE_TRANSITION
from leasebid.engine import MarketEngine

ALICE = "0x" + "a" * 40
BOB = "0x" + "b" * 40
BUYER = "0x" + "1" * 40
SELLER = "0x" + "5" * 40
T0 = 1_700_000_000.0


# =============================================================================
# Fixtures
# =============================================================================

class FakeClock:
    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def config(tmp_path):
    return EngineConfig(data_dir=tmp_path / "state")


class TestEngineRestart:
    """State reloads from SQLite."""

    def test_state_survives_restart(self, config):
        clock = FakeClock()
        engine = MarketEngine.from_config(config, clock=clock)

        async def first_run():
            engine.add_vertical("solar")
            opened = engine.open_auction("solar", 100, 600, kind="LEASE")
            await engine.place_bid(opened.auction_id, ALICE, 150)
            clock.now += 601
            await engine.close_auction(opened.auction_id)

            pool = engine.deposit_bounty("solar", "buyer-1", BUYER, 200, {"geo_states": ["CA"]})
            engine.release_bounty(pool.pool_id, 50, SELLER, "lead-9")
            await engine.stop()
            return opened.auction_id, pool.pool_id

        auction_id, pool_id = asyncio.run(first_run())

        restarted = MarketEngine.from_config(config, clock=FakeClock(T0 + 700))
        try:
            lease = restarted.lease_status("solar")
            assert lease.success
            assert lease.data["holder"] == ALICE
            assert lease.data["status"] == "ACTIVE"

            auction = restarted.auction_status(auction_id).data
            assert auction["settled"]
            assert auction["winner"] == ALICE
            assert [b["bidder"] for b in auction["bids"]] == [ALICE]

            pool = restarted.registry.require_pool(pool_id)
            assert str(pool.available) == "150"
            assert pool.criteria.geo_states == ["CA"]
            assert restarted.bounty_total("solar").data["total"] == "150"

            priority = asyncio.run(restarted.resolve_priority("solar", ALICE))
            assert priority.data["is_priority_holder"]

            trail = restarted.storage.get_audit_trail("solar")
            assert [r["kind"] for r in trail] == [LEASE_TRANSITION]
            assert trail[0]["payload"]["event"] == "awarded"

            releases = restarted.storage.get_audit_trail(pool_id)
            assert releases[0]["kind"] == BOUNTY_RELEASED
            assert releases[0]["payload"]["tx_id"] == "lead-9"
        finally:
            asyncio.run(restarted.stop())

    def test_bid_history_drives_eligibility_after_restart(self, config):
        clock = FakeClock()
        engine = MarketEngine.from_config(config, clock=clock)

        async def bids():
            engine.add_vertical("solar")
            for i in range(5):
                opened = engine.open_auction("solar", 10, 60)
                await engine.place_bid(opened.auction_id, BOB, 20)
                clock.now += 61
            await engine.stop()

        asyncio.run(bids())

        restarted = MarketEngine.from_config(config, clock=FakeClock(clock.now))
        try:
            assert restarted.leases.check_reset_eligibility(BOB)
            assert not restarted.leases.check_reset_eligibility(ALICE)
        finally:
            asyncio.run(restarted.stop())
