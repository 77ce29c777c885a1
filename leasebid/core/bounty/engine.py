"""
Bounty Engine - Matching, ranking, capping and releasing bounty pools.

Matching pipeline for one transaction:
1. Candidates: active pools in the vertical with available balance > 0
2. Criteria: criteria oracle (once per pass) or local AND-matching
3. Rank by available balance, descending (creation order among equals)
4. Tie among top amounts: verifiable tie-break over payout addresses
5. Stacking cap: total <= cap multiplier x price (price 0 disables)
"""

import asyncio
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set

from leasebid.core.bounty.oracle import CriteriaOracle, NullCriteriaOracle
from leasebid.core.bounty.pool import (
    BountyPool,
    MatchedBounty,
    TransactionAttributes,
    parse_criteria,
    parse_transaction,
)
from leasebid.core.cache import Clock, TTLCache
from leasebid.core.config import EngineConfig
from leasebid.core.errors import StateConflictError, ValidationError
from leasebid.core.events import BOUNTY_RELEASED, EventBus
from leasebid.core.money import ZERO, format_money, to_decimal
from leasebid.core.tiebreak.coordinator import TieBreakCoordinator, find_tied
from leasebid.core.tiebreak.oracle import TieBreakPurpose
from leasebid.utils.logger import get_logger
from leasebid.utils.validation import validate_address, validate_amount

logger = get_logger("bounty")


class BountyEngine:
    """
    Manages bounty pools for every vertical.
    
    Pools are never deleted: an exhausted or withdrawn pool is
    deactivated and kept for audit.
    """

    def __init__(
        self,
        registry,
        coordinator: Optional[TieBreakCoordinator] = None,
        config: Optional[EngineConfig] = None,
        criteria_oracle: Optional[CriteriaOracle] = None,
        events: Optional[EventBus] = None,
        cache: Optional[TTLCache] = None,
        clock: Clock = time.time,
    ):
        self.registry = registry
        self.config = config or EngineConfig()
        self.events = events or EventBus()
        self.coordinator = coordinator or TieBreakCoordinator(config=self.config, events=self.events)
        self.criteria_oracle = criteria_oracle or NullCriteriaOracle()
        self.clock = clock
        self.cache = cache or TTLCache(
            max_size=self.config.cache_max_size,
            ttl_seconds=self.config.bounty_total_cache_ttl_seconds,
            clock=clock,
        )

    # =========================================================================
    # Pool Funding
    # =========================================================================

    def _deposit_amount(self, amount: Any) -> Decimal:
        value = to_decimal(amount, "deposit amount")
        ok, err = validate_amount(
            value,
            "deposit amount",
            min_val=self.config.bounty_min_deposit,
            max_val=self.config.bounty_max_deposit,
        )
        if not ok:
            raise ValidationError(err)
        return value

    def deposit(
        self,
        vertical: str,
        owner_id: str,
        payout_address: str,
        amount: Any,
        criteria: Any = None,
        now: Optional[float] = None,
    ) -> BountyPool:
        """
        Create a pool.
        
        Raises:
            NotFoundError: unknown vertical
            ValidationError: amount out of bounds, bad address or criteria
        """
        self.registry.get_vertical(vertical)
        if not owner_id:
            raise ValidationError("owner_id must not be empty")
        ok, err = validate_address(payout_address, "payout address")
        if not ok:
            raise ValidationError(err)
        value = self._deposit_amount(amount)

        pool = BountyPool(
            vertical=vertical,
            owner_id=owner_id,
            payout_address=payout_address,
            total_deposited=value,
            criteria=parse_criteria(criteria),
            created_at=self.clock() if now is None else now,
        )
        self.registry.save_pool(pool)
        self._invalidate_total(vertical)
        logger.info(f"Bounty pool {pool.pool_id[:8]} created on {vertical}: {format_money(value)} by {owner_id}")
        return pool

    def top_up(self, pool_id: str, amount: Any) -> BountyPool:
        pool = self.registry.require_pool(pool_id)
        value = self._deposit_amount(amount)
        pool.total_deposited += value
        pool.active = True
        self.registry.save_pool(pool)
        self._invalidate_total(pool.vertical)
        logger.info(f"Bounty pool {pool_id[:8]} topped up by {format_money(value)}")
        return pool

    def withdraw(self, pool_id: str, amount: Any = None) -> Decimal:
        """
        Return unreleased funds to the owner.
        
        Args:
            pool_id: Pool to withdraw from
            amount: Amount, or None for the full available balance
            
        Returns:
            Amount withdrawn
        """
        pool = self.registry.require_pool(pool_id)
        available = pool.available
        value = available if amount is None else to_decimal(amount, "withdraw amount")
        if value <= ZERO:
            if amount is None:
                raise StateConflictError(f"Pool {pool_id} has nothing to withdraw")
            raise ValidationError("withdraw amount must be positive")
        if value > available:
            raise StateConflictError(
                f"Withdraw {format_money(value)} exceeds available {format_money(available)}"
            )

        pool.total_deposited -= value
        if pool.available == ZERO:
            pool.active = False
        self.registry.save_pool(pool)
        self._invalidate_total(pool.vertical)
        logger.info(f"Bounty pool {pool_id[:8]} withdrew {format_money(value)}{' (deactivated)' if not pool.active else ''}")
        return value

    # =========================================================================
    # Matching
    # =========================================================================

    async def match_bounties(
        self,
        tx: Any,
        winning_price: Any = None,
        now: Optional[float] = None,
    ) -> List[MatchedBounty]:
        """
        Match pools against a completed transaction.
        
        Args:
            tx: TransactionAttributes (or a mapping of them)
            winning_price: Explicit settled price; falls back to the
                transaction's reserve price, else zero (no cap)
                
        Returns:
            Ranked, capped allocations

        Raises:
            ValidationError: malformed transaction or negative price
        """
        tx = parse_transaction(tx)
        now = self.clock() if now is None else now

        if winning_price is not None:
            price = to_decimal(winning_price, "winning price")
            if price < ZERO:
                raise ValidationError(f"winning price must be >= 0, got {price}")
        elif tx.reserve_price is not None:
            price = tx.reserve_price
        else:
            price = ZERO

        candidates = [p for p in self.registry.pools_for(tx.vertical) if p.active and p.available > ZERO]
        matched = await self._attested_matches(tx, candidates)
        if matched is None:
            matched = [p for p in candidates if p.criteria is None or p.criteria.matches(tx, now)]

        ranked = sorted(matched, key=lambda p: -p.available)
        allocations = [
            MatchedBounty(
                pool_id=p.pool_id,
                owner_id=p.owner_id,
                payout_address=p.payout_address,
                amount=p.available,
                vertical=p.vertical,
            )
            for p in ranked
        ]
        allocations = await self._break_top_tie(tx, allocations)

        if price > ZERO:
            allocations = self._apply_cap(allocations, price * self.config.bounty_stacking_cap_multiplier)

        logger.info(
            f"Bounty match for {tx.id} on {tx.vertical}: {len(allocations)} allocation(s), "
            f"total {format_money(sum((a.amount for a in allocations), ZERO))}"
        )
        return allocations

    async def _attested_matches(
        self,
        tx: TransactionAttributes,
        candidates: List[BountyPool],
    ) -> Optional[List[BountyPool]]:
        if not (self.config.criteria_oracle_enabled and self.criteria_oracle.enabled) or not candidates:
            return None

        payload = [
            {
                "pool_id": p.pool_id,
                "criteria": p.criteria.model_dump(exclude_none=True) if p.criteria else {},
            }
            for p in candidates
        ]
        try:
            attested = await asyncio.wait_for(
                self.criteria_oracle.evaluate(tx, payload),
                timeout=self.config.criteria_oracle_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Criteria oracle timed out for {tx.id}; falling back to local matching")
            return None
        except Exception as e:
            logger.warning(f"Criteria oracle failed for {tx.id}: {e}; falling back to local matching")
            return None

        if attested is None:
            logger.warning(f"Criteria oracle returned no result for {tx.id}; falling back to local matching")
            return None
        ids: Set[str] = set(attested)
        return [p for p in candidates if p.pool_id in ids]

    async def _break_top_tie(
        self,
        tx: TransactionAttributes,
        allocations: List[MatchedBounty],
    ) -> List[MatchedBounty]:
        tied = find_tied(allocations, lambda a: a.amount)
        if not tied:
            return allocations

        subject = f"bounty-{tx.id}"
        request = await self.coordinator.request_tie_break(
            subject,
            [a.payout_address for a in tied],
            TieBreakPurpose.BOUNTY_ALLOCATION,
        )
        if request is None:
            return allocations

        winner = await self.coordinator.await_resolution(
            subject, timeout=self.config.bounty_tiebreak_timeout_seconds
        )
        self.coordinator.discard(subject)
        if winner is None:
            logger.warning(f"Bounty tie for {tx.id} unresolved; keeping pool order")
            return allocations

        index = next(
            (i for i, a in enumerate(tied) if a.payout_address.lower() == winner.lower()),
            -1,
        )
        if index > 0:
            tied.insert(0, tied.pop(index))
        logger.info(f"Bounty tie for {tx.id} resolved in favour of {winner}")
        return tied + allocations[len(tied):]

    @staticmethod
    def _apply_cap(allocations: List[MatchedBounty], cap: Decimal) -> List[MatchedBounty]:
        capped = []
        remaining = cap
        for allocation in allocations:
            if remaining <= ZERO:
                break
            amount = min(allocation.amount, remaining)
            capped.append(
                MatchedBounty(
                    pool_id=allocation.pool_id,
                    owner_id=allocation.owner_id,
                    payout_address=allocation.payout_address,
                    amount=amount,
                    vertical=allocation.vertical,
                )
            )
            remaining -= amount
        return capped

    # =========================================================================
    # Release
    # =========================================================================

    def release_bounty(
        self,
        pool_id: str,
        amount: Any,
        recipient: str,
        tx_id: str,
        now: Optional[float] = None,
    ) -> BountyPool:
        """
        Release an allocation from one pool.
        
        Only the targeted pool changes. A pool whose available balance
        reaches zero is deactivated.
        
        Raises:
            NotFoundError: unknown pool
            ValidationError: non-positive amount or bad recipient
            StateConflictError: inactive pool or amount above available
        """
        value = to_decimal(amount, "release amount")
        if value <= ZERO:
            raise ValidationError("release amount must be positive")
        ok, err = validate_address(recipient, "recipient")
        if not ok:
            raise ValidationError(err)

        pool = self.registry.require_pool(pool_id)
        if not pool.active:
            raise StateConflictError(f"Pool {pool_id} is inactive")
        if value > pool.available:
            raise StateConflictError(
                f"Release {format_money(value)} exceeds available {format_money(pool.available)}"
            )

        pool.total_released += value
        if pool.available == ZERO:
            pool.active = False
        self.registry.save_pool(pool)
        self._invalidate_total(pool.vertical)

        now = self.clock() if now is None else now
        payload = {
            "pool_id": pool_id,
            "tx_id": tx_id,
            "recipient": recipient,
            "amount": str(value),
            "available": str(pool.available),
        }
        self.registry.record_audit(now, BOUNTY_RELEASED, pool_id, payload)
        self.events.emit(BOUNTY_RELEASED, payload)
        logger.info(
            f"Released {format_money(value)} from pool {pool_id[:8]} to {recipient[:10]} for {tx_id}"
            f"{' (pool exhausted)' if not pool.active else ''}"
        )
        return pool

    # =========================================================================
    # Totals
    # =========================================================================

    def vertical_total(self, vertical: str) -> Decimal:
        """Available balance across active pools in a vertical (cached)."""
        key = f"bounty-total:{vertical}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        total = sum(
            (p.available for p in self.registry.pools_for(vertical) if p.active),
            ZERO,
        )
        self.cache.set(key, total)
        return total

    def _invalidate_total(self, vertical: str) -> None:
        self.cache.delete(f"bounty-total:{vertical}")

    def pool_summary(self, vertical: str) -> List[Dict[str, Any]]:
        return [p.to_dict() for p in self.registry.pools_for(vertical)]


__all__ = ["BountyEngine"]
