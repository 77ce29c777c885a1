"""
Tests for the Bid Evaluator.

Tests cover:
1. Round opening rules and priority window derivation
2. Bid admission gates (activity, reserve, window, rate limit)
3. Effective-bid comparison and the holder multiplier
4. Concurrent bids on one auction
5. Settlement, including ties and empty rounds
6. Legacy bids without an effective amount
"""

import asyncio
from decimal import Decimal
from types import SimpleNamespace

import pytest

from leasebid.core.auction import REASON_INACTIVE, Bid, BidEvaluator, RoundKind, rank_bids
from leasebid.core.config import EngineConfig
from leasebid.core.errors import NotFoundError, StateConflictError, ValidationError
from leasebid.core.events import AUCTION_SETTLED, TIEBREAK_RESOLVED, EventBus
from leasebid.core.lease import LeaseSlot, LeaseStatus
from leasebid.core.priority import PriorityResolver, compute_priority_window
from leasebid.core.registry import MarketRegistry, VerticalStatus
from leasebid.core.tiebreak import MockRandomnessOracle, TieBreakCoordinator
from leasebid.crypto import hash_subject

HOLDER = "0x" + "a" * 40
BOB = "0x" + "b" * 40
CAROL = "0x" + "c" * 40
T0 = 1_700_000_000.0


# =============================================================================
# Fixtures
# =============================================================================

class FakeClock:
    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class StalledOracle(MockRandomnessOracle):
    """Holds every request until released."""

    def __init__(self):
        super().__init__(seed=3)
        self.release = asyncio.Event()

    async def request(self, subject_hash, candidates, purpose):
        await self.release.wait()
        return await super().request(subject_hash, candidates, purpose)


def build(holder=None, oracle=None, **config_overrides):
    clock = FakeClock()
    config = EngineConfig(tiebreak_poll_interval_seconds=0.01, **config_overrides)
    events = EventBus()
    registry = MarketRegistry()
    registry.add_vertical("solar")
    if holder:
        registry.save_lease(
            LeaseSlot(vertical="solar", status=LeaseStatus.ACTIVE, holder=holder, lease_end=T0 + 86_400)
        )
    resolver = PriorityResolver(registry, config, clock=clock)
    coordinator = TieBreakCoordinator(oracle, config, events=events, clock=clock)
    evaluator = BidEvaluator(registry, resolver, coordinator, config, events=events, clock=clock)
    return SimpleNamespace(
        clock=clock,
        config=config,
        events=events,
        registry=registry,
        resolver=resolver,
        coordinator=coordinator,
        evaluator=evaluator,
    )


@pytest.fixture
def market():
    return build()


@pytest.fixture
def held_market():
    return build(holder=HOLDER)


def bid(m, auction_id, bidder, amount, at):
    return asyncio.run(m.evaluator.place_bid(auction_id, bidder, amount, now=at))


# =============================================================================
# Opening Rounds
# =============================================================================

class TestOpenRound:
    """Tests for round creation."""

    def test_no_holder_means_no_window(self, market):
        r = market.evaluator.open_round("solar", 50, 60)
        assert r.window_end == r.start_time
        assert r.end_time == r.start_time + 60
        assert len(r.nonce) == 32

    def test_holder_window_from_nonce(self, held_market):
        r = held_market.evaluator.open_round("solar", 50, 60, nonce="n1")
        assert r.window_end - r.start_time == compute_priority_window("solar", "n1")

    def test_window_clipped_to_duration(self, held_market):
        r = held_market.evaluator.open_round("solar", 50, 3, nonce="n1")
        assert r.window_end == r.end_time

    def test_default_duration(self, market):
        r = market.evaluator.open_round("solar", 50)
        assert r.end_time - r.start_time == market.config.default_auction_duration_seconds

    def test_unknown_vertical(self, market):
        with pytest.raises(NotFoundError):
            market.evaluator.open_round("nope", 50, 60)

    def test_inactive_vertical(self, market):
        market.registry.add_vertical("legacy", VerticalStatus.DEPRECATED)
        with pytest.raises(StateConflictError):
            market.evaluator.open_round("legacy", 50, 60)

    def test_bad_reserve_or_duration(self, market):
        with pytest.raises(ValidationError):
            market.evaluator.open_round("solar", -1, 60)
        with pytest.raises(ValidationError):
            market.evaluator.open_round("solar", 50, 0)

    def test_one_live_round_per_kind(self, market):
        market.evaluator.open_round("solar", 50, 60)
        with pytest.raises(StateConflictError):
            market.evaluator.open_round("solar", 50, 60)
        lease_round = market.evaluator.open_round("solar", 50, 60, kind=RoundKind.LEASE)
        assert lease_round.kind == RoundKind.LEASE

    def test_lease_round_rejected_while_held(self, held_market):
        with pytest.raises(StateConflictError):
            held_market.evaluator.open_round("solar", 50, 60, kind=RoundKind.LEASE)

    def test_new_round_after_previous_ends(self, market):
        market.evaluator.open_round("solar", 50, 60, now=T0)
        r = market.evaluator.open_round("solar", 50, 60, now=T0 + 60)
        assert r.start_time == T0 + 60

    def test_cancel_round(self, market):
        r = market.evaluator.open_round("solar", 50, 60)
        market.evaluator.cancel_round(r.auction_id)
        assert r.cancelled
        with pytest.raises(StateConflictError):
            market.evaluator.cancel_round(r.auction_id)


# =============================================================================
# Bid Admission
# =============================================================================

class TestBidAdmission:
    """Tests for bid gates."""

    def test_accepts_first_bid(self, market):
        r = market.evaluator.open_round("solar", 50, 60)
        outcome = bid(market, r.auction_id, BOB, 75, T0 + 1)
        assert outcome.accepted
        assert outcome.effective_amount == Decimal("75")
        assert r.high_bidder == BOB
        assert r.bid_count == 1

    def test_below_reserve(self, market):
        r = market.evaluator.open_round("solar", 50, 60)
        outcome = bid(market, r.auction_id, BOB, 49, T0 + 1)
        assert not outcome.accepted
        assert "reserve" in outcome.reason

    def test_ended_round_inactive(self, market):
        r = market.evaluator.open_round("solar", 50, 60)
        outcome = bid(market, r.auction_id, BOB, 75, T0 + 60)
        assert not outcome.accepted
        assert outcome.reason == REASON_INACTIVE

    def test_cancelled_round_inactive(self, market):
        r = market.evaluator.open_round("solar", 50, 60)
        market.evaluator.cancel_round(r.auction_id)
        assert bid(market, r.auction_id, BOB, 75, T0 + 1).reason == REASON_INACTIVE

    def test_malformed_input_raises(self, market):
        r = market.evaluator.open_round("solar", 50, 60)
        with pytest.raises(ValidationError):
            bid(market, r.auction_id, "not-an-address", 75, T0 + 1)
        with pytest.raises(ValidationError):
            bid(market, r.auction_id, BOB, "lots", T0 + 1)

    def test_unknown_auction(self, market):
        with pytest.raises(NotFoundError):
            bid(market, "missing", BOB, 75, T0 + 1)

    def test_equal_bid_not_higher(self, market):
        r = market.evaluator.open_round("solar", 50, 60)
        bid(market, r.auction_id, BOB, 75, T0 + 1)
        outcome = bid(market, r.auction_id, CAROL, 75, T0 + 2)
        assert not outcome.accepted
        assert "not higher" in outcome.reason
        assert outcome.effective_high_bid == Decimal("75")


class TestPriorityWindowGate:
    """Tests for the holder-only early window."""

    def test_non_holder_blocked_during_window(self, held_market):
        r = held_market.evaluator.open_round("solar", 50, 60, nonce="n1")
        outcome = bid(held_market, r.auction_id, BOB, 100, T0 + 1)
        assert not outcome.accepted
        assert "Priority window" in outcome.reason

    def test_holder_bids_during_window(self, held_market):
        r = held_market.evaluator.open_round("solar", 50, 60, nonce="n1")
        outcome = bid(held_market, r.auction_id, HOLDER, 100, T0 + 1)
        assert outcome.accepted
        assert outcome.is_priority_holder
        assert outcome.effective_amount == Decimal("120.00")

    def test_grace_extends_window(self, held_market):
        r = held_market.evaluator.open_round("solar", 50, 60, nonce="n1")
        assert not bid(held_market, r.auction_id, BOB, 100, r.window_end + 1.0).accepted
        assert bid(held_market, r.auction_id, BOB, 100, r.window_end + 1.6).accepted

    def test_rejected_window_bid_does_not_consume_rate_budget(self, held_market):
        r = held_market.evaluator.open_round("solar", 50, 60, nonce="n1")
        for _ in range(10):
            bid(held_market, r.auction_id, BOB, 100, T0 + 1)
        assert held_market.evaluator.rate_limiter.remaining(BOB, T0 + 1) == 5


class TestEffectiveBids:
    """Tests for multiplier-adjusted comparison."""

    def test_holder_outranks_higher_raw_bid(self, held_market):
        r = held_market.evaluator.open_round("solar", 50, 60, nonce="n1")
        bid(held_market, r.auction_id, HOLDER, 100, T0 + 1)

        outcome = bid(held_market, r.auction_id, BOB, 110, T0 + 20)

        assert not outcome.accepted
        assert "not higher" in outcome.reason
        assert r.high_bidder == HOLDER
        assert r.high_raw == Decimal("100")
        assert r.high_effective == Decimal("120.00")

    def test_non_holder_can_beat_effective(self, held_market):
        r = held_market.evaluator.open_round("solar", 50, 60, nonce="n1")
        bid(held_market, r.auction_id, HOLDER, 100, T0 + 1)
        assert bid(held_market, r.auction_id, BOB, "120.01", T0 + 20).accepted

    def test_multiplier_resolved_per_bid(self, held_market):
        """A holder whose lease lapses mid-round bids at 1.0."""
        r = held_market.evaluator.open_round("solar", 50, 60, nonce="n1")
        bid(held_market, r.auction_id, HOLDER, 60, T0 + 1)

        held_market.registry.get_lease("solar").status = LeaseStatus.EXPIRED
        held_market.resolver.invalidate("solar")

        outcome = bid(held_market, r.auction_id, HOLDER, 80, T0 + 20)
        assert outcome.accepted
        assert outcome.effective_amount == Decimal("80")
        assert not outcome.is_priority_holder


class TestRateLimit:
    """Tests for per-bidder rate limiting."""

    def test_sixth_bid_rejected_then_recovers(self, market):
        r = market.evaluator.open_round("solar", 50, 3600)
        for i in range(5):
            assert bid(market, r.auction_id, BOB, 100 + i, T0 + i).accepted

        sixth = bid(market, r.auction_id, BOB, 105, T0 + 5)
        assert not sixth.accepted
        assert "Rate limit" in sixth.reason

        assert bid(market, r.auction_id, BOB, 106, T0 + 65).accepted

    def test_limit_is_per_bidder(self, market):
        r = market.evaluator.open_round("solar", 50, 3600)
        for i in range(5):
            bid(market, r.auction_id, BOB, 100 + i, T0 + i)
        assert bid(market, r.auction_id, CAROL, 200, T0 + 5).accepted

    def test_low_bid_still_counts(self, market):
        r = market.evaluator.open_round("solar", 50, 3600)
        bid(market, r.auction_id, CAROL, 500, T0)
        for i in range(5):
            assert "not higher" in bid(market, r.auction_id, BOB, 100, T0 + 1 + i).reason
        assert "Rate limit" in bid(market, r.auction_id, BOB, 600, T0 + 10).reason


class TestConcurrentBids:
    """Tests for compare-and-update under concurrency."""

    def test_equal_concurrent_bids_one_wins(self, market):
        r = market.evaluator.open_round("solar", 50, 60)

        async def run():
            return await asyncio.gather(
                market.evaluator.place_bid(r.auction_id, BOB, 100, now=T0 + 1),
                market.evaluator.place_bid(r.auction_id, CAROL, 100, now=T0 + 1),
            )

        outcomes = asyncio.run(run())
        assert sum(o.accepted for o in outcomes) == 1
        assert r.bid_count == 1
        loser = next(o for o in outcomes if not o.accepted)
        assert "not higher" in loser.reason

    def test_bursts_keep_highest(self, market):
        r = market.evaluator.open_round("solar", 50, 3600)
        bidders = ["0x" + f"{i:040x}" for i in range(1, 21)]

        async def run():
            return await asyncio.gather(*[
                market.evaluator.place_bid(r.auction_id, b, 100 + i, now=T0 + 1)
                for i, b in enumerate(bidders)
            ])

        asyncio.run(run())
        assert r.high_raw == Decimal("119")
        assert r.high_bidder == bidders[-1]

    def test_different_auctions_independent(self, market):
        market.registry.add_vertical("roofing")
        a = market.evaluator.open_round("solar", 50, 60)
        b = market.evaluator.open_round("roofing", 50, 60)

        async def run():
            return await asyncio.gather(
                market.evaluator.place_bid(a.auction_id, BOB, 100, now=T0 + 1),
                market.evaluator.place_bid(b.auction_id, CAROL, 100, now=T0 + 1),
            )

        assert all(o.accepted for o in asyncio.run(run()))


# =============================================================================
# Settlement
# =============================================================================

class TestCloseRound:
    """Tests for settlement."""

    def test_highest_effective_wins_at_raw_price(self, held_market):
        r = held_market.evaluator.open_round("solar", 50, 60, nonce="n1")
        bid(held_market, r.auction_id, HOLDER, 100, T0 + 1)
        bid(held_market, r.auction_id, BOB, 110, T0 + 20)

        outcome = asyncio.run(held_market.evaluator.close_round(r.auction_id, now=T0 + 60))

        assert outcome.winner == HOLDER
        assert outcome.price == Decimal("100")
        assert outcome.effective == Decimal("120.00")
        assert r.settled
        assert held_market.events.events(AUCTION_SETTLED)

    def test_no_bids_cancels(self, market):
        r = market.evaluator.open_round("solar", 50, 60)
        outcome = asyncio.run(market.evaluator.close_round(r.auction_id, now=T0 + 60))
        assert outcome.cancelled
        assert outcome.winner is None
        assert r.cancelled

    def test_not_ended(self, market):
        r = market.evaluator.open_round("solar", 50, 60)
        bid(market, r.auction_id, BOB, 75, T0 + 1)
        with pytest.raises(StateConflictError):
            asyncio.run(market.evaluator.close_round(r.auction_id, now=T0 + 30))
        outcome = asyncio.run(market.evaluator.close_round(r.auction_id, now=T0 + 30, force=True))
        assert outcome.winner == BOB

    def test_close_twice(self, market):
        r = market.evaluator.open_round("solar", 50, 60)
        bid(market, r.auction_id, BOB, 75, T0 + 1)
        asyncio.run(market.evaluator.close_round(r.auction_id, now=T0 + 60))
        with pytest.raises(StateConflictError):
            asyncio.run(market.evaluator.close_round(r.auction_id, now=T0 + 61))

    def test_bid_after_settlement_inactive(self, market):
        r = market.evaluator.open_round("solar", 50, 60)
        bid(market, r.auction_id, BOB, 75, T0 + 1)
        asyncio.run(market.evaluator.close_round(r.auction_id, now=T0 + 10, force=True))
        assert bid(market, r.auction_id, CAROL, 90, T0 + 11).reason == REASON_INACTIVE


def seed_tie(m):
    """Tied effective amounts: holder 100 x 1.2 vs a plain 120."""
    r = m.evaluator.open_round("solar", 50, 60, nonce="n1")
    m.registry.add_bid(Bid(r.auction_id, HOLDER, Decimal("100"), Decimal("120.00"), T0 + 1, True))
    m.registry.add_bid(Bid(r.auction_id, BOB, Decimal("120"), Decimal("120"), T0 + 20))
    return r


class TestTieSettlement:
    """Tests for tied top bids."""

    def test_live_bidding_cannot_tie(self, held_market):
        """An equal effective bid is rejected, so only stored bids can tie."""
        r = held_market.evaluator.open_round("solar", 50, 60, nonce="n1")
        assert bid(held_market, r.auction_id, HOLDER, 100, T0 + 1).accepted
        assert not bid(held_market, r.auction_id, BOB, 120, T0 + 20).accepted
        outcome = asyncio.run(held_market.evaluator.close_round(r.auction_id, now=T0 + 60))
        assert outcome.winner == HOLDER
        assert outcome.tied_candidates == []
        assert not outcome.tie_break_pending

    def test_tie_without_oracle_earliest_wins(self, held_market):
        r = seed_tie(held_market)
        outcome = asyncio.run(held_market.evaluator.close_round(r.auction_id, now=T0 + 60))
        assert outcome.winner == HOLDER
        assert outcome.price == Decimal("100")
        assert not outcome.tie_break_pending
        assert set(outcome.tied_candidates) == {HOLDER, BOB}

    def test_tie_with_oracle_records_verified_winner(self):
        oracle = MockRandomnessOracle(seed=7)
        m = build(holder=HOLDER, oracle=oracle)
        r = seed_tie(m)

        async def run():
            outcome = await m.evaluator.close_round(r.auction_id, now=T0 + 60)
            assert not r.verified_winner
            await asyncio.gather(*m.coordinator.watchers())
            return outcome

        outcome = asyncio.run(run())

        assert outcome.winner == HOLDER
        assert outcome.tie_break_pending
        assert oracle.request_count == 1

        word = oracle.random_word(hash_subject(f"auction-{r.auction_id}"))
        assert r.verified_winner == outcome.tied_candidates[word % 2]
        assert not r.tie_break_pending
        assert r.winner == HOLDER
        assert m.events.events(TIEBREAK_RESOLVED)

    def test_tie_oracle_request_failure(self):
        m = build(holder=HOLDER, oracle=MockRandomnessOracle(fail_requests=True))
        r = seed_tie(m)

        async def run():
            outcome = await m.evaluator.close_round(r.auction_id, now=T0 + 60)
            await asyncio.gather(*m.coordinator.watchers())
            return outcome

        outcome = asyncio.run(run())
        assert outcome.winner == HOLDER
        assert outcome.tie_break_pending
        assert not r.tie_break_pending
        assert r.verified_winner is None
        assert m.coordinator.active_watchers == 0
        assert m.coordinator.requests == {}

    def test_close_does_not_wait_for_oracle(self):
        """Settlement returns while the oracle request is still outstanding."""
        oracle = StalledOracle()
        m = build(holder=HOLDER, oracle=oracle)
        r = seed_tie(m)

        async def run():
            outcome = await asyncio.wait_for(m.evaluator.close_round(r.auction_id, now=T0 + 60), timeout=0.5)
            assert r.settled
            assert r.tie_break_pending
            assert r.tie_break_subject == f"auction-{r.auction_id}"
            assert m.coordinator.active_watchers == 1
            oracle.release.set()
            await asyncio.gather(*m.coordinator.watchers())
            return outcome

        outcome = asyncio.run(run())
        assert outcome.winner == HOLDER
        assert r.verified_winner in (HOLDER, BOB)
        assert not r.tie_break_pending
        assert m.coordinator.requests == {}


# =============================================================================
# Legacy Bids
# =============================================================================

class TestLegacyBids:
    """Tests for bids without a recorded effective amount."""

    def test_unknown_ranks_below_known(self):
        legacy = Bid("a", BOB, Decimal("200"), None, T0)
        known = Bid("a", CAROL, Decimal("150"), Decimal("150"), T0 + 1)
        zero = Bid("a", HOLDER, Decimal("0"), Decimal("0"), T0 + 2)
        assert rank_bids([legacy, zero, known]) == [known, zero, legacy]

    def test_unknowns_ordered_by_raw(self):
        low = Bid("a", BOB, Decimal("50"), None, T0)
        high = Bid("a", CAROL, Decimal("80"), None, T0 + 1)
        assert rank_bids([low, high]) == [high, low]

    def test_legacy_never_wins_over_known(self, market):
        r = market.evaluator.open_round("solar", 50, 60)
        market.registry.add_bid(Bid(r.auction_id, BOB, Decimal("500"), None, T0 + 1))
        market.registry.add_bid(Bid(r.auction_id, CAROL, Decimal("60"), Decimal("60"), T0 + 2))
        outcome = asyncio.run(market.evaluator.close_round(r.auction_id, now=T0 + 60))
        assert outcome.winner == CAROL

    def test_backfill(self, market):
        r = market.evaluator.open_round("solar", 50, 60)
        legacy = Bid(r.auction_id, BOB, Decimal("33.33"), None, T0)
        market.registry.add_bid(legacy)

        assert market.evaluator.backfill_effective(legacy, Decimal("1.2")) == Decimal("40.00")
        # never re-rounded
        assert market.evaluator.backfill_effective(legacy, Decimal("1.5")) == Decimal("40.00")
