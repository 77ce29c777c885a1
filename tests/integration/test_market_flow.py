"""
Integration Tests - End-to-end market flows through the engine facade.

Tests verify:
1. Lease auction -> holder priority on transaction rounds
2. Settlement with bounty matching and release
3. Lease expiry blocked by a live auction, then re-auctioned exactly once
4. Structured failures instead of exceptions
"""

import asyncio
from decimal import Decimal

import pytest

from leasebid.core.compliance import StaticComplianceGate
from leasebid.core.config import EngineConfig
from leasebid.core.errors import ErrorKind
from leasebid.core.tiebreak import MockRandomnessOracle
from leasebid.engine import MarketEngine

ALICE = "0x" + "a" * 40
BOB = "0x" + "b" * 40
BUYER_1 = "0x" + "1" * 40
BUYER_2 = "0x" + "2" * 40
BUYER_3 = "0x" + "3" * 40
SELLER = "0x" + "5" * 40
T0 = 1_700_000_000.0
DAY = 86_400


# =============================================================================
# Fixtures
# =============================================================================

class FakeClock:
    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(clock):
    config = EngineConfig(tiebreak_poll_interval_seconds=0.01)
    engine = MarketEngine(config=config, randomness_oracle=MockRandomnessOracle(), clock=clock)
    assert engine.add_vertical("solar").success
    return engine


async def lease_to(engine, clock, holder):
    """Run a lease auction on solar and award it to holder."""
    opened = engine.open_auction("solar", 100, 600, kind="LEASE")
    assert opened.success
    assert (await engine.place_bid(opened.auction_id, holder, 150)).success
    clock.advance(601)
    closed = await engine.close_auction(opened.auction_id)
    assert closed.success
    return closed


# =============================================================================
# Full Flow
# =============================================================================

class TestLeaseToSettlement:
    """Lease auction, priority bidding and bounty settlement."""

    def test_full_flow(self, engine, clock):
        async def scenario():
            # Lease auction: nobody holds the vertical, so no window
            opened = engine.open_auction("solar", 100, 600, kind="LEASE")
            assert opened.data["window_end"] == opened.data["start_time"]

            assert (await engine.place_bid(opened.auction_id, ALICE, 150)).success
            low = await engine.place_bid(opened.auction_id, BOB, 140)
            assert not low.success
            assert low.error_kind == ErrorKind.STATE_CONFLICT
            assert "not higher" in low.error
            under = await engine.place_bid(opened.auction_id, BOB, 90)
            assert under.error_kind == ErrorKind.VALIDATION

            clock.advance(601)
            closed = await engine.close_auction(opened.auction_id)
            assert closed.success
            assert closed.lease_id
            assert closed.data["winner"] == ALICE
            assert closed.data["price"] == "150"

            lease = engine.lease_status("solar")
            assert lease.data["status"] == "ACTIVE"
            assert lease.data["holder"] == ALICE
            assert lease.lease_id == closed.lease_id

            priority = await engine.resolve_priority("solar", ALICE)
            assert priority.data["is_priority_holder"]
            assert priority.data["multiplier"] == "1.2"

            # Transaction round: holder gets the early window and the boost
            tx_round = engine.open_auction("solar", 50, 120)
            window = tx_round.data["window_end"] - tx_round.data["start_time"]
            assert 5 <= window <= 10
            assert engine.verify_auction_window(tx_round.auction_id).data["valid"]

            early = await engine.place_bid(tx_round.auction_id, BOB, 100)
            assert not early.success
            assert "Priority window" in early.error

            holder_bid = await engine.place_bid(tx_round.auction_id, ALICE, 100)
            assert holder_bid.data["effective_amount"] == "120.00"
            assert holder_bid.data["is_priority_holder"]

            clock.advance(12)
            assert not (await engine.place_bid(tx_round.auction_id, BOB, 115)).success
            assert (await engine.place_bid(tx_round.auction_id, BOB, 125)).success

            ca = engine.deposit_bounty("solar", "buyer-1", BUYER_1, 80, {"geo_states": ["CA"]})
            anywhere = engine.deposit_bounty("solar", "buyer-2", BUYER_2, 60)
            ny = engine.deposit_bounty("solar", "buyer-3", BUYER_3, 500, {"geo_states": ["NY"]})
            assert engine.bounty_total("solar").data["total"] == "640"

            clock.advance(120)
            settled = await engine.close_auction(
                tx_round.auction_id,
                tx={"id": "lead-1", "state": "CA", "quality_score": 8000},
                seller_address=SELLER,
            )
            return settled, ca, anywhere, ny

        settled, ca, anywhere, ny = asyncio.run(scenario())

        assert settled.success
        assert settled.data["winner"] == BOB
        assert settled.data["price"] == "125"
        assert [a["pool_id"] for a in settled.data["allocations"]] == [ca.pool_id, anywhere.pool_id]
        assert [a["amount"] for a in settled.data["released"]] == ["80", "60"]
        assert settled.data["release_errors"] == []

        assert engine.bounty_total("solar").data["total"] == "500"
        assert not engine.registry.require_pool(ca.pool_id).active
        assert engine.registry.require_pool(ny.pool_id).active

    def test_stacking_cap_applied_at_settlement(self, engine, clock):
        async def scenario():
            engine.deposit_bounty("solar", "buyer-1", BUYER_1, 60)
            engine.deposit_bounty("solar", "buyer-2", BUYER_2, 80)
            opened = engine.open_auction("solar", 10, 60)
            await engine.place_bid(opened.auction_id, BOB, 50)
            clock.advance(60)
            return await engine.close_auction(opened.auction_id, tx={"id": "lead-2"})

        settled = asyncio.run(scenario())
        assert [a["amount"] for a in settled.data["allocations"]] == ["80", "20"]
        assert settled.data["released"] == []
        assert engine.bounty_total("solar").data["total"] == "140"

    def test_foreign_vertical_transaction_rejected(self, engine, clock):
        """Pools of another vertical cannot be paid out by this auction."""
        assert engine.add_vertical("hvac").success
        hvac_pool = engine.deposit_bounty("hvac", "buyer-1", BUYER_1, 60)

        async def scenario():
            opened = engine.open_auction("solar", 10, 60)
            await engine.place_bid(opened.auction_id, BOB, 50)
            clock.advance(60)
            rejected = await engine.close_auction(
                opened.auction_id, tx={"id": "lead-3", "vertical": "hvac"}, seller_address=SELLER
            )
            retried = await engine.close_auction(
                opened.auction_id, tx={"id": "lead-3", "vertical": "solar"}, seller_address=SELLER
            )
            return opened, rejected, retried

        opened, rejected, retried = asyncio.run(scenario())
        assert not rejected.success
        assert rejected.error_kind == ErrorKind.VALIDATION
        assert retried.success
        assert retried.data["allocations"] == []
        assert engine.registry.require_pool(hvac_pool.pool_id).available == Decimal("60")
        assert engine.bounty_total("hvac").data["total"] == "60"

    def test_compliance_denied_holder_bids_without_perks(self, clock):
        gate = StaticComplianceGate()
        engine = MarketEngine(compliance_gate=gate, clock=clock)
        engine.add_vertical("solar")

        async def scenario():
            await lease_to(engine, clock, ALICE)
            gate.deny(ALICE)
            opened = engine.open_auction("solar", 50, 120)
            clock.advance(15)
            return await engine.place_bid(opened.auction_id, ALICE, 100)

        result = asyncio.run(scenario())
        assert result.success
        assert result.data["effective_amount"] == "100"
        assert not result.data["is_priority_holder"]


# =============================================================================
# Lease Expiry
# =============================================================================

class TestPausedExpiry:
    """A live auction at the grace deadline pauses expiry."""

    def test_paused_then_expired_with_single_reauction(self, engine, clock):
        async def scenario():
            await lease_to(engine, clock, ALICE)
            lease_end = engine.lease_status("solar").data["lease_end"]

            clock.now = lease_end + 1
            assert engine.check_leases().data["to_grace"] == 1
            deadline = engine.lease_status("solar").data["renewal_deadline"]

            live = engine.open_auction("solar", 50, 8 * DAY)
            assert live.data["window_end"] == live.data["start_time"]

            clock.now = deadline + 1
            assert engine.check_leases().data["paused"] == 1
            paused = engine.lease_status("solar").data
            assert paused["status"] == "PAUSED"
            assert paused["blocking_auction_id"] == live.auction_id

            assert (await engine.place_bid(live.auction_id, BOB, 60)).success
            assert (await engine.close_auction(live.auction_id, force=True)).success

            sweep = engine.check_leases().data
            again = engine.check_leases().data
            return sweep, again

        sweep, again = asyncio.run(scenario())

        assert sweep["expired"] == 1
        assert sweep["reauctions_opened"] == 1
        assert again["reauctions_opened"] == 0
        assert engine.lease_status("solar").data["status"] == "EXPIRED"

        reauction = engine.auction_status(sweep["new_auction_ids"][0]).data
        assert reauction["kind"] == "LEASE"
        assert reauction["reserve_price"] == "100"

        priority = asyncio.run(engine.resolve_priority("solar", ALICE))
        assert not priority.data["is_priority_holder"]

    def test_renewal_in_grace_keeps_lease(self, engine, clock):
        asyncio.run(lease_to(engine, clock, ALICE))
        lease_end = engine.lease_status("solar").data["lease_end"]
        clock.now = lease_end + 1
        engine.check_leases()

        renewed = engine.renew_lease("solar", renewal_ref="pay-7")

        assert renewed.success
        assert renewed.data["status"] == "ACTIVE"
        assert renewed.data["lease_end"] == lease_end + 90 * DAY

    def test_manual_expiry_then_rejected_renewal(self, engine, clock):
        asyncio.run(lease_to(engine, clock, ALICE))
        assert engine.expire_lease("solar").success
        renewed = engine.renew_lease("solar")
        assert not renewed.success
        assert renewed.error_kind == ErrorKind.STATE_CONFLICT


# =============================================================================
# Structured Failures
# =============================================================================

class TestStructuredFailures:
    """Exposed operations report failures as results."""

    def test_unknown_records(self, engine):
        assert engine.open_auction("nope", 50).error_kind == ErrorKind.NOT_FOUND
        assert asyncio.run(engine.place_bid("missing", BOB, 10)).error_kind == ErrorKind.NOT_FOUND
        assert engine.lease_status("solar").error_kind == ErrorKind.NOT_FOUND
        assert engine.withdraw_bounty("missing").error_kind == ErrorKind.NOT_FOUND

    def test_validation_failures(self, engine):
        assert engine.add_vertical("Bad Slug!").error_kind == ErrorKind.VALIDATION
        assert engine.open_auction("solar", 50, kind="AUCTION").error_kind == ErrorKind.VALIDATION
        assert engine.deposit_bounty("solar", "b", BUYER_1, 5).error_kind == ErrorKind.VALIDATION
        opened = engine.open_auction("solar", 50)
        bad = asyncio.run(engine.place_bid(opened.auction_id, "bob", 60))
        assert bad.error_kind == ErrorKind.VALIDATION

    def test_conflicts(self, engine):
        assert engine.add_vertical("solar").error_kind == ErrorKind.STATE_CONFLICT
        opened = engine.open_auction("solar", 50)
        assert engine.open_auction("solar", 50).error_kind == ErrorKind.STATE_CONFLICT
        assert engine.cancel_auction(opened.auction_id).success
        assert engine.cancel_auction(opened.auction_id).error_kind == ErrorKind.STATE_CONFLICT

    def test_result_serializes(self, engine):
        payload = engine.priority_window("solar", "n1").to_dict()
        assert payload["success"] is True
        assert 5 <= payload["data"]["window_seconds"] <= 10


class TestEngineLifecycle:
    """Timers start and stop cleanly."""

    def test_start_stop(self, engine):
        async def run():
            engine.start()
            assert engine.sweep_task.is_started
            assert engine.digest_task.is_started
            await engine.stop()
            return engine.sweep_task.is_started

        assert asyncio.run(run()) is False
