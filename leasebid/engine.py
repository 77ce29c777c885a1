"""
Market Engine - Facade over the priority auction and incentive allocation core.

Composes the registry, Priority Resolver, Bid Evaluator, Tie-Break
Coordinator, Bounty Engine and Lease Lifecycle Manager. Every exposed
operation returns an OperationResult; internal exceptions never reach
the caller.

Usage:
    engine = MarketEngine.from_config(load_config())
    engine.add_vertical("solar")
    result = engine.open_auction("solar", reserve_price=50)
    await engine.place_bid(result.auction_id, "0x...", 75)
"""

import time
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from leasebid.core.auction import BidEvaluator, RoundKind, SettlementOutcome
from leasebid.core.bounty import BountyEngine, CriteriaOracle, TransactionAttributes, parse_transaction
from leasebid.core.cache import Clock
from leasebid.core.compliance import ComplianceGate
from leasebid.core.config import EngineConfig
from leasebid.core.errors import ErrorKind, LeaseBidError, OperationResult, ValidationError
from leasebid.core.events import EventBus
from leasebid.core.lease import LeaseLifecycleManager
from leasebid.core.notifications import DigestNotificationChannel, NotificationChannel
from leasebid.core.priority import PriorityResolver, compute_priority_window, verify_window_nonce
from leasebid.core.registry import MarketRegistry, VerticalStatus
from leasebid.core.scheduler import PeriodicTask
from leasebid.core.storage import StorageManager
from leasebid.core.tiebreak import RandomnessOracle, TieBreakCoordinator
from leasebid.utils.logger import get_logger

logger = get_logger("engine")


def _money(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def _enum(enum_cls, value: Any, name: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"{name} must be one of {allowed}, got {value!r}")


class MarketEngine:
    """
    Long-lived service owning every cache, queue and timer.
    
    Optional collaborators default to their null strategies, selected once
    here rather than checked throughout the business logic.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        storage: Optional[StorageManager] = None,
        compliance_gate: Optional[ComplianceGate] = None,
        randomness_oracle: Optional[RandomnessOracle] = None,
        criteria_oracle: Optional[CriteriaOracle] = None,
        notifier: Optional[NotificationChannel] = None,
        clock: Clock = time.time,
    ):
        self.config = config or EngineConfig()
        self.clock = clock
        self.storage = storage
        self.events = EventBus()
        self.registry = MarketRegistry(storage)
        self.notifier = notifier or DigestNotificationChannel(
            daily_cap=self.config.daily_notification_cap, clock=clock
        )

        self.resolver = PriorityResolver(
            self.registry, self.config, compliance_gate=compliance_gate, clock=clock
        )
        self.coordinator = TieBreakCoordinator(
            randomness_oracle, self.config, events=self.events, registry=self.registry, clock=clock
        )
        self.evaluator = BidEvaluator(
            self.registry, self.resolver, self.coordinator, self.config, events=self.events, clock=clock
        )
        self.bounties = BountyEngine(
            self.registry,
            self.coordinator,
            self.config,
            criteria_oracle=criteria_oracle,
            events=self.events,
            clock=clock,
        )
        self.leases = LeaseLifecycleManager(
            self.registry,
            self.evaluator,
            self.resolver,
            self.config,
            notifier=self.notifier,
            events=self.events,
            clock=clock,
        )

        self.sweep_task = PeriodicTask("lease-sweep", self.config.sweep_interval_seconds, self.leases.sweep)
        self.digest_task: Optional[PeriodicTask] = None
        if isinstance(self.notifier, DigestNotificationChannel):
            self.digest_task = PeriodicTask(
                "notification-digest", self.config.digest_interval_seconds, self.notifier.flush_digest
            )

    @classmethod
    def from_config(cls, config: EngineConfig, **collaborators) -> "MarketEngine":
        """Build an engine backed by SQLite under config.data_dir and load its state."""
        storage = StorageManager(config.data_dir, config.db_name)
        engine = cls(config=config, storage=storage, **collaborators)
        engine.registry.load()
        return engine

    # =========================================================================
    # Result Plumbing
    # =========================================================================

    def _guard(self, op: str, fn: Callable[[], OperationResult], **ids) -> OperationResult:
        try:
            return fn()
        except LeaseBidError as e:
            logger.info(f"{op} failed ({e.kind}): {e}")
            return OperationResult.from_exception(e, **ids)
        except Exception as e:
            logger.exception(f"{op} failed unexpectedly: {e}")
            return OperationResult.fail(f"Internal error: {e}", ErrorKind.INTERNAL, **ids)

    async def _guard_async(self, op: str, fn, **ids) -> OperationResult:
        try:
            return await fn()
        except LeaseBidError as e:
            logger.info(f"{op} failed ({e.kind}): {e}")
            return OperationResult.from_exception(e, **ids)
        except Exception as e:
            logger.exception(f"{op} failed unexpectedly: {e}")
            return OperationResult.fail(f"Internal error: {e}", ErrorKind.INTERNAL, **ids)

    # =========================================================================
    # Verticals & Priority
    # =========================================================================

    def add_vertical(self, slug: str, status: str = "ACTIVE") -> OperationResult:
        def run():
            vertical = self.registry.add_vertical(slug, _enum(VerticalStatus, status, "status"), now=self.clock())
            return OperationResult.ok(vertical=slug, data=vertical.to_dict())
        return self._guard("add_vertical", run, vertical=slug)

    async def resolve_priority(self, vertical: str, actor: Optional[str], nonce: str = "") -> OperationResult:
        async def run():
            self.registry.get_vertical(vertical)
            status = await self.resolver.resolve_priority(vertical, actor, nonce)
            return OperationResult.ok(vertical=vertical, data={
                "is_priority_holder": status.is_priority_holder,
                "multiplier": str(status.multiplier),
                "window_seconds": status.window_seconds,
            })
        return await self._guard_async("resolve_priority", run, vertical=vertical)

    def priority_window(self, vertical: str, nonce: str = "") -> OperationResult:
        seconds = compute_priority_window(
            vertical, nonce, self.config.priority_window_min, self.config.priority_window_max
        )
        return OperationResult.ok(vertical=vertical, data={"window_seconds": seconds, "nonce": nonce})

    def verify_auction_window(self, auction_id: str) -> OperationResult:
        """Recompute an auction's priority window from its stored nonce."""
        def run():
            auction_round = self.registry.require_round(auction_id)
            if auction_round.window_end == auction_round.start_time:
                return OperationResult.ok(auction_id=auction_id, vertical=auction_round.vertical, data={
                    "valid": True, "window_seconds": 0, "drift_ms": 0,
                })
            check = verify_window_nonce(
                auction_round.vertical,
                auction_round.nonce,
                auction_round.start_time,
                auction_round.window_end,
                self.config.priority_window_min,
                self.config.priority_window_max,
            )
            return OperationResult.ok(auction_id=auction_id, vertical=auction_round.vertical, data={
                "valid": check.valid,
                "expected_window_end": check.expected_window_end,
                "drift_ms": check.drift_ms,
            })
        return self._guard("verify_auction_window", run, auction_id=auction_id)

    # =========================================================================
    # Auctions
    # =========================================================================

    def open_auction(
        self,
        vertical: str,
        reserve_price: Any,
        duration_seconds: Optional[float] = None,
        kind: str = "TRANSACTION",
        now: Optional[float] = None,
    ) -> OperationResult:
        def run():
            auction_round = self.evaluator.open_round(
                vertical, reserve_price, duration_seconds, _enum(RoundKind, kind, "kind"), now=now
            )
            return OperationResult.ok(
                auction_id=auction_round.auction_id, vertical=vertical, data=auction_round.to_dict()
            )
        return self._guard("open_auction", run, vertical=vertical)

    async def place_bid(
        self,
        auction_id: str,
        bidder: str,
        amount: Any,
        now: Optional[float] = None,
    ) -> OperationResult:
        async def run():
            outcome = await self.evaluator.place_bid(auction_id, bidder, amount, now=now)
            data = {
                "accepted": outcome.accepted,
                "effective_high_bid": _money(outcome.effective_high_bid),
                "effective_amount": _money(outcome.effective_amount),
                "bid_id": outcome.bid_id,
                "is_priority_holder": outcome.is_priority_holder,
                "reason": outcome.reason,
            }
            if outcome.accepted:
                return OperationResult.ok(auction_id=auction_id, data=data)
            kind = ErrorKind.VALIDATION if "reserve" in outcome.reason else ErrorKind.STATE_CONFLICT
            return OperationResult.fail(outcome.reason, kind, auction_id=auction_id, data=data)
        return await self._guard_async("place_bid", run, auction_id=auction_id)

    def cancel_auction(self, auction_id: str) -> OperationResult:
        def run():
            auction_round = self.evaluator.cancel_round(auction_id)
            return OperationResult.ok(auction_id=auction_id, vertical=auction_round.vertical)
        return self._guard("cancel_auction", run, auction_id=auction_id)

    async def close_auction(
        self,
        auction_id: str,
        tx: Any = None,
        seller_address: Optional[str] = None,
        now: Optional[float] = None,
        force: bool = False,
    ) -> OperationResult:
        """
        Settle an auction.
        
        LEASE rounds award the lease to the winner. TRANSACTION rounds,
        when transaction attributes are supplied, match bounties at the
        winning raw price and release them to seller_address if given.
        """
        async def run():
            attributes = None
            if tx is not None:
                attributes = self._transaction_for(self.registry.require_round(auction_id).vertical, tx)
            outcome = await self.evaluator.close_round(auction_id, now=now, force=force)
            data: Dict[str, Any] = self._settlement_data(outcome)
            result = OperationResult.ok(auction_id=auction_id, vertical=outcome.vertical, data=data)

            if outcome.winner is None:
                return result

            if outcome.kind == RoundKind.LEASE:
                slot = self.leases.award_lease(outcome.vertical, outcome.winner, now=now)
                result.lease_id = slot.lease_id
                data["lease_end"] = slot.lease_end
            elif attributes is not None:
                await self._settle_bounties(attributes, outcome, seller_address, now, data)
            return result
        return await self._guard_async("close_auction", run, auction_id=auction_id)

    @staticmethod
    def _settlement_data(outcome: SettlementOutcome) -> Dict[str, Any]:
        return {
            "kind": outcome.kind.value,
            "winner": outcome.winner,
            "price": _money(outcome.price),
            "effective": _money(outcome.effective),
            "cancelled": outcome.cancelled,
            "tie_break_pending": outcome.tie_break_pending,
            "tied_candidates": list(outcome.tied_candidates),
        }

    @staticmethod
    def _transaction_for(vertical: str, tx: Any) -> TransactionAttributes:
        """Transaction attributes bound to the auction's vertical."""
        if isinstance(tx, dict) and not tx.get("vertical"):
            tx = {**tx, "vertical": vertical}
        attributes = parse_transaction(tx)
        if attributes.vertical.lower() != vertical.lower():
            raise ValidationError(
                f"Transaction vertical {attributes.vertical} does not match auction vertical {vertical}"
            )
        if attributes.vertical != vertical:
            attributes = attributes.model_copy(update={"vertical": vertical})
        return attributes

    async def _settle_bounties(
        self,
        attributes: TransactionAttributes,
        outcome: SettlementOutcome,
        seller_address: Optional[str],
        now: Optional[float],
        data: Dict[str, Any],
    ) -> None:
        allocations = await self.bounties.match_bounties(attributes, winning_price=outcome.price, now=now)
        data["allocations"] = [a.to_dict() for a in allocations]

        released: List[Dict[str, Any]] = []
        errors: List[str] = []
        if seller_address:
            for allocation in allocations:
                try:
                    self.bounties.release_bounty(
                        allocation.pool_id, allocation.amount, seller_address, attributes.id, now=now
                    )
                except LeaseBidError as e:
                    errors.append(f"{allocation.pool_id}: {e}")
                    logger.warning(f"Bounty release from {allocation.pool_id[:8]} failed: {e}")
                else:
                    released.append(allocation.to_dict())
        data["released"] = released
        data["release_errors"] = errors

    def auction_status(self, auction_id: str) -> OperationResult:
        def run():
            auction_round = self.registry.require_round(auction_id)
            data = auction_round.to_dict()
            data["bids"] = [b.to_dict() for b in self.evaluator.ranked_bids(auction_id)]
            return OperationResult.ok(auction_id=auction_id, vertical=auction_round.vertical, data=data)
        return self._guard("auction_status", run, auction_id=auction_id)

    # =========================================================================
    # Bounties
    # =========================================================================

    def deposit_bounty(
        self,
        vertical: str,
        owner_id: str,
        payout_address: str,
        amount: Any,
        criteria: Any = None,
    ) -> OperationResult:
        def run():
            pool = self.bounties.deposit(vertical, owner_id, payout_address, amount, criteria)
            return OperationResult.ok(pool_id=pool.pool_id, vertical=vertical, data=pool.to_dict())
        return self._guard("deposit_bounty", run, vertical=vertical)

    def top_up_bounty(self, pool_id: str, amount: Any) -> OperationResult:
        def run():
            pool = self.bounties.top_up(pool_id, amount)
            return OperationResult.ok(pool_id=pool_id, vertical=pool.vertical, data=pool.to_dict())
        return self._guard("top_up_bounty", run, pool_id=pool_id)

    def withdraw_bounty(self, pool_id: str, amount: Any = None) -> OperationResult:
        def run():
            withdrawn = self.bounties.withdraw(pool_id, amount)
            pool = self.registry.require_pool(pool_id)
            data = pool.to_dict()
            data["withdrawn"] = str(withdrawn)
            return OperationResult.ok(pool_id=pool_id, vertical=pool.vertical, data=data)
        return self._guard("withdraw_bounty", run, pool_id=pool_id)

    async def match_bounties(self, tx: Any, winning_price: Any = None) -> OperationResult:
        async def run():
            allocations = await self.bounties.match_bounties(tx, winning_price)
            return OperationResult.ok(data={"allocations": [a.to_dict() for a in allocations]})
        return await self._guard_async("match_bounties", run)

    def release_bounty(self, pool_id: str, amount: Any, recipient: str, tx_id: str) -> OperationResult:
        def run():
            pool = self.bounties.release_bounty(pool_id, amount, recipient, tx_id)
            return OperationResult.ok(pool_id=pool_id, vertical=pool.vertical, data=pool.to_dict())
        return self._guard("release_bounty", run, pool_id=pool_id)

    def bounty_total(self, vertical: str) -> OperationResult:
        def run():
            self.registry.get_vertical(vertical)
            return OperationResult.ok(vertical=vertical, data={"total": str(self.bounties.vertical_total(vertical))})
        return self._guard("bounty_total", run, vertical=vertical)

    # =========================================================================
    # Leases
    # =========================================================================

    def check_leases(self, now: Optional[float] = None) -> OperationResult:
        def run():
            result = self.leases.sweep(now)
            return OperationResult.ok(data=result.to_dict())
        return self._guard("check_leases", run)

    def renew_lease(self, vertical: str, now: Optional[float] = None, renewal_ref: Optional[str] = None) -> OperationResult:
        def run():
            slot = self.leases.renew(vertical, now=now, renewal_ref=renewal_ref)
            return OperationResult.ok(vertical=vertical, lease_id=slot.lease_id, data=slot.to_dict())
        return self._guard("renew_lease", run, vertical=vertical)

    def expire_lease(self, vertical: str, now: Optional[float] = None) -> OperationResult:
        def run():
            slot = self.leases.expire(vertical, now=now)
            return OperationResult.ok(vertical=vertical, lease_id=slot.lease_id, data=slot.to_dict())
        return self._guard("expire_lease", run, vertical=vertical)

    def lease_status(self, vertical: str) -> OperationResult:
        def run():
            slot = self.registry.require_lease(vertical)
            return OperationResult.ok(vertical=vertical, lease_id=slot.lease_id, data=slot.to_dict())
        return self._guard("lease_status", run, vertical=vertical)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start the periodic timers on the running event loop."""
        self.sweep_task.start()
        if self.digest_task is not None:
            self.digest_task.start()

    async def stop(self) -> None:
        await self.sweep_task.stop()
        if self.digest_task is not None:
            await self.digest_task.stop()
        await self.coordinator.shutdown()
        if self.storage is not None:
            self.storage.close()


__all__ = ["MarketEngine"]
