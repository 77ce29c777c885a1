"""
Bid Evaluator - Priority-adjusted bidding inside time-boxed rounds.

This module provides:
- Round lifecycle: open, cancel, close (settle)
- Bid admission: activity, reserve, priority window and rate-limit gates
- Effective-bid compare-and-update under a per-auction lock

Design Notes:
-------------
Only effective amounts are compared. The multiplier is resolved fresh on
every bid. Priority resolution runs outside the lock so bids on one
auction do not block on compliance checks; the final compare-and-update
re-reads the high bid under the lock, and a bid that loses that race is
rejected exactly like a low bid.

Equal effective bids are rejected on entry, so live bidding never
produces a tie. Ties at close only come from stored bids that predate
that check (legacy rows, imported or backfilled data). close_round
still resolves them: earliest bid wins at once, and the verifiable
tie-break runs detached to record verified_winner for audit.
"""

import time
from decimal import Decimal
from typing import Any, List, Optional

from leasebid.core.auction.round import (
    AuctionRound,
    Bid,
    BidOutcome,
    RoundKind,
    SettlementOutcome,
)
from leasebid.core.auction.scoring import rank_bids
from leasebid.core.cache import Clock, KeyedLocks, SlidingWindowRateLimiter
from leasebid.core.config import EngineConfig
from leasebid.core.errors import StateConflictError, ValidationError
from leasebid.core.events import AUCTION_SETTLED, EventBus
from leasebid.core.lease.slot import LeaseStatus
from leasebid.core.money import apply_multiplier, format_money, to_decimal
from leasebid.core.priority.resolver import PriorityResolver, priority_window_status
from leasebid.core.registry.vertical import VerticalStatus
from leasebid.core.tiebreak.coordinator import TieBreakCoordinator, TieBreakRequest, find_tied
from leasebid.core.tiebreak.oracle import TieBreakPurpose
from leasebid.crypto import generate_nonce
from leasebid.utils.logger import get_logger
from leasebid.utils.validation import validate_address, validate_amount

logger = get_logger("auction")

REASON_INACTIVE = "Auction is no longer active"


class BidEvaluator:
    """
    Admits bids and maintains the high bid for every round.
    
    Bids on different auctions proceed in parallel; bids on the same
    auction serialize only at the compare-and-update.
    """

    def __init__(
        self,
        registry,
        resolver: PriorityResolver,
        coordinator: Optional[TieBreakCoordinator] = None,
        config: Optional[EngineConfig] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        events: Optional[EventBus] = None,
        clock: Clock = time.time,
    ):
        self.registry = registry
        self.resolver = resolver
        self.config = config or EngineConfig()
        self.events = events or EventBus()
        self.coordinator = coordinator or TieBreakCoordinator(config=self.config, events=self.events)
        self.clock = clock
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            limit=self.config.bid_rate_limit,
            window_seconds=self.config.bid_rate_window_seconds,
            clock=clock,
        )
        self._locks = KeyedLocks()

    # =========================================================================
    # Round Lifecycle
    # =========================================================================

    def open_round(
        self,
        vertical: str,
        reserve_price: Any,
        duration_seconds: Optional[float] = None,
        kind: RoundKind = RoundKind.TRANSACTION,
        now: Optional[float] = None,
        nonce: Optional[str] = None,
    ) -> AuctionRound:
        """
        Open a bidding round.
        
        The priority window is derived from the round nonce when the
        vertical has a current holder, and is zero otherwise.
        
        Raises:
            NotFoundError: unknown vertical
            StateConflictError: vertical not ACTIVE, live round of the same
                kind already open, or lease still held (LEASE rounds)
            ValidationError: bad reserve or duration
        """
        now = self.clock() if now is None else now
        duration = self.config.default_auction_duration_seconds if duration_seconds is None else duration_seconds

        vertical_record = self.registry.get_vertical(vertical)
        if vertical_record.status != VerticalStatus.ACTIVE:
            raise StateConflictError(f"Vertical {vertical} is {vertical_record.status.value}")

        reserve = to_decimal(reserve_price, "reserve price")
        ok, err = validate_amount(reserve, "reserve price")
        if not ok:
            raise ValidationError(err)
        if duration <= 0:
            raise ValidationError(f"duration must be positive, got {duration}")

        if kind == RoundKind.LEASE:
            slot = self.registry.get_lease(vertical)
            if slot is not None and slot.status != LeaseStatus.EXPIRED:
                raise StateConflictError(f"Lease on {vertical} is {slot.status.value}; no lease auction allowed")

        live = self.registry.live_rounds(vertical, now, kind)
        if live:
            raise StateConflictError(
                f"A live {kind.value} auction already exists for {vertical}: {live[0].auction_id}"
            )

        nonce = nonce if nonce is not None else generate_nonce(self.config.nonce_bytes)
        holder = self.resolver.current_holder(vertical)
        window = min(self.resolver.window_for(vertical, nonce), duration) if holder else 0

        auction_round = AuctionRound(
            vertical=vertical,
            kind=kind,
            reserve_price=reserve,
            start_time=now,
            end_time=now + duration,
            window_end=now + window,
            nonce=nonce,
        )
        self.registry.save_round(auction_round)
        logger.info(
            f"Auction opened: {auction_round.auction_id[:8]} {kind.value} on {vertical}, "
            f"reserve={format_money(reserve)}, duration={duration:g}s, window={window}s"
        )
        return auction_round

    def cancel_round(self, auction_id: str, now: Optional[float] = None) -> AuctionRound:
        auction_round = self.registry.require_round(auction_id)
        if auction_round.is_terminal:
            raise StateConflictError(f"Auction {auction_id} is already {'settled' if auction_round.settled else 'cancelled'}")
        auction_round.cancelled = True
        self.registry.save_round(auction_round)
        self._locks.discard(auction_id)
        logger.info(f"Auction cancelled: {auction_id[:8]} on {auction_round.vertical}")
        return auction_round

    # =========================================================================
    # Bidding
    # =========================================================================

    async def place_bid(
        self,
        auction_id: str,
        bidder: str,
        raw_amount: Any,
        now: Optional[float] = None,
    ) -> BidOutcome:
        """
        Attempt a bid.
        
        Args:
            auction_id: Target round
            bidder: Bidder address
            raw_amount: Raw bid amount
            now: Evaluation time (defaults to the clock)
            
        Returns:
            BidOutcome; rejections carry a human-readable reason
            
        Raises:
            NotFoundError: unknown auction
            ValidationError: malformed bidder or amount
        """
        ok, err = validate_address(bidder, "bidder")
        if not ok:
            raise ValidationError(err)
        raw = to_decimal(raw_amount, "bid amount")
        ok, err = validate_amount(raw, "bid amount")
        if not ok:
            raise ValidationError(err)

        now = self.clock() if now is None else now
        auction_round = self.registry.require_round(auction_id)

        if not auction_round.is_live(now):
            return BidOutcome(False, auction_round.high_effective, REASON_INACTIVE)

        if raw < auction_round.reserve_price:
            return BidOutcome(
                False,
                auction_round.high_effective,
                f"Bid {format_money(raw)} below reserve {format_money(auction_round.reserve_price)}",
            )

        status = await self.resolver.resolve_priority(auction_round.vertical, bidder, auction_round.nonce)

        if auction_round.window_end > auction_round.start_time and not status.is_priority_holder:
            window = priority_window_status(auction_round.window_end, now, self.config.priority_window_grace_ms)
            if window.in_window:
                opens_in_ms = window.remaining_ms + self.config.priority_window_grace_ms
                return BidOutcome(
                    False,
                    auction_round.high_effective,
                    f"Priority window active: only the lease holder may bid for another {opens_in_ms}ms",
                )

        if not self.rate_limiter.try_acquire(bidder, now):
            return BidOutcome(
                False,
                auction_round.high_effective,
                f"Rate limit exceeded: max {self.config.bid_rate_limit} bids per "
                f"{self.config.bid_rate_window_seconds:g}s",
            )

        effective = apply_multiplier(raw, status.multiplier)
        observed = auction_round.high_effective

        async with self._locks.get(auction_id):
            if not auction_round.is_live(now):
                return BidOutcome(False, auction_round.high_effective, REASON_INACTIVE)

            current = auction_round.high_effective
            if current is not None and effective <= current:
                if observed is None or effective > observed:
                    logger.debug(f"Bid on {auction_id[:8]} lost compare-and-update to a concurrent bid")
                return BidOutcome(
                    False,
                    current,
                    f"Bid {format_money(effective)} not higher than current {format_money(current)}",
                )

            bid = Bid(
                auction_id=auction_id,
                bidder=bidder,
                raw_amount=raw,
                effective_amount=effective,
                submitted_at=now,
                is_priority_holder=status.is_priority_holder,
            )
            self.registry.add_bid(bid)
            auction_round.high_raw = raw
            auction_round.high_effective = effective
            auction_round.high_bidder = bidder
            auction_round.bid_count += 1
            self.registry.save_round(auction_round)

        logger.info(
            f"Bid accepted on {auction_id[:8]}: {bidder[:10]} raw={format_money(raw)} "
            f"effective={format_money(effective)}{' (holder)' if status.is_priority_holder else ''}"
        )
        return BidOutcome(
            accepted=True,
            effective_high_bid=effective,
            bid_id=bid.bid_id,
            effective_amount=effective,
            is_priority_holder=status.is_priority_holder,
        )

    # =========================================================================
    # Settlement
    # =========================================================================

    async def close_round(
        self,
        auction_id: str,
        now: Optional[float] = None,
        force: bool = False,
    ) -> SettlementOutcome:
        """
        Settle a round.
        
        Tied top bids settle immediately to the earliest bid; a tie-break
        request and a background watcher are fired off to record the
        verifiable winner later. Closing a round with no bids cancels it.
        
        Raises:
            NotFoundError: unknown auction
            StateConflictError: already terminal, or not ended and not forced
        """
        now = self.clock() if now is None else now
        auction_round = self.registry.require_round(auction_id)

        async with self._locks.get(auction_id):
            if auction_round.is_terminal:
                raise StateConflictError(f"Auction {auction_id} is no longer active")
            if now < auction_round.end_time and not force:
                raise StateConflictError(f"Auction {auction_id} has not ended")

            bids = self.registry.bids_for(auction_id)
            if not bids:
                auction_round.cancelled = True
                self.registry.save_round(auction_round)
                logger.info(f"Auction {auction_id[:8]} closed without bids; cancelled")
                return SettlementOutcome(
                    auction_id=auction_id,
                    vertical=auction_round.vertical,
                    kind=auction_round.kind,
                    cancelled=True,
                )

            ranked = rank_bids(bids)
            tied = find_tied(ranked, lambda b: b.effective_amount)
            winning_bid = min(tied, key=lambda b: b.submitted_at) if tied else ranked[0]

            auction_round.settled = True
            auction_round.winner = winning_bid.bidder
            auction_round.winning_price = winning_bid.raw_amount
            self.registry.save_round(auction_round)
        self._locks.discard(auction_id)

        outcome = SettlementOutcome(
            auction_id=auction_id,
            vertical=auction_round.vertical,
            kind=auction_round.kind,
            winner=winning_bid.bidder,
            price=winning_bid.raw_amount,
            effective=winning_bid.effective_amount,
            tied_candidates=[b.bidder for b in tied],
        )

        if tied:
            outcome.tie_break_pending = self._start_tie_break(auction_round, tied)

        logger.info(
            f"Auction settled: {auction_id[:8]} on {auction_round.vertical} -> {winning_bid.bidder[:10]} "
            f"at {format_money(winning_bid.raw_amount)}"
            f"{f' (tie among {len(tied)})' if tied else ''}"
        )
        self.events.emit(AUCTION_SETTLED, {
            "auction_id": auction_id,
            "vertical": auction_round.vertical,
            "kind": auction_round.kind.value,
            "winner": outcome.winner,
            "price": str(outcome.price),
            "tie_break_pending": outcome.tie_break_pending,
        })
        return outcome

    def _start_tie_break(self, auction_round: AuctionRound, tied: List[Bid]) -> bool:
        subject = f"auction-{auction_round.auction_id}"

        def record_winner(req: TieBreakRequest, winner: str) -> None:
            auction_round.verified_winner = winner
            auction_round.tie_break_pending = False
            self.registry.save_round(auction_round)

        def clear_pending(subject_id: str) -> None:
            auction_round.tie_break_pending = False
            self.registry.save_round(auction_round)

        task = self.coordinator.request_detached(
            subject,
            [b.bidder for b in tied],
            TieBreakPurpose.AUCTION_TIE,
            on_resolved=record_winner,
            on_unresolved=clear_pending,
        )
        if task is None:
            return False

        auction_round.tie_break_subject = subject
        auction_round.tie_break_pending = True
        self.registry.save_round(auction_round)
        return True

    # =========================================================================
    # Legacy Data
    # =========================================================================

    def backfill_effective(self, bid: Bid, multiplier: Any) -> Decimal:
        """
        Fill in the effective amount of a legacy bid.
        
        Bids that already carry an effective amount are returned as-is so a
        rounded value is never rounded again.
        """
        if bid.effective_amount is not None:
            return bid.effective_amount
        bid.effective_amount = apply_multiplier(bid.raw_amount, multiplier)
        self.registry.save_bid(bid)
        logger.info(f"Backfilled effective amount for bid {bid.bid_id[:8]}: {format_money(bid.effective_amount)}")
        return bid.effective_amount

    def ranked_bids(self, auction_id: str) -> List[Bid]:
        self.registry.require_round(auction_id)
        return rank_bids(self.registry.bids_for(auction_id))


__all__ = [
    "BidEvaluator",
    "REASON_INACTIVE",
]
