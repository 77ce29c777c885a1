"""
Lease Lifecycle Manager - Drives each vertical's lease state machine.

This module provides:
- award_lease(): create or re-activate a slot after a LEASE round settles
- renew(): extend from the current lease end, back to ACTIVE
- expire(): revoke holder perks immediately and queue a re-auction
- sweep(): periodic ACTIVE -> GRACE_PERIOD -> EXPIRED | PAUSED pass
- check_reset_eligibility(): bid-history gate for previous holders

Design Notes:
-------------
Every write invalidates the priority cache for the vertical before
returning. Notifications are consent-gated and best-effort; a failing
channel never rolls back a transition. Re-auctions opened per sweep are
capped; the excess stays pending and is picked up by the next sweep.
"""

import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from leasebid.core.auction.round import RoundKind
from leasebid.core.cache import Clock
from leasebid.core.config import EngineConfig
from leasebid.core.errors import LeaseBidError, StateConflictError, ValidationError
from leasebid.core.events import LEASE_TRANSITION, EventBus
from leasebid.core.lease.slot import LeaseEvent, LeaseSlot, LeaseStatus
from leasebid.core.notifications import Notification, NotificationChannel, NullNotificationChannel
from leasebid.utils.logger import get_logger
from leasebid.utils.validation import validate_address

logger = get_logger("lease")


@dataclass
class SweepResult:
    """Counters for one sweep pass."""
    to_grace: int = 0
    paused: int = 0
    expired: int = 0
    reauctions_opened: int = 0
    reauctions_deferred: int = 0
    notifications_sent: int = 0
    skipped: bool = False
    new_auction_ids: List[str] = field(default_factory=list)
    auto_eligible: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "to_grace": self.to_grace,
            "paused": self.paused,
            "expired": self.expired,
            "reauctions_opened": self.reauctions_opened,
            "reauctions_deferred": self.reauctions_deferred,
            "notifications_sent": self.notifications_sent,
            "skipped": self.skipped,
            "new_auction_ids": list(self.new_auction_ids),
            "auto_eligible": list(self.auto_eligible),
            "errors": list(self.errors),
        }


class LeaseLifecycleManager:
    """
    Owns every LeaseSlot mutation.
    
    Collaborators:
        registry: market store (slots, rounds, bid history, owner address)
        evaluator: opens re-auction rounds
        resolver: priority cache to invalidate on every write
        notifier: consent-gated notification channel
    """

    def __init__(
        self,
        registry,
        evaluator,
        resolver,
        config: Optional[EngineConfig] = None,
        notifier: Optional[NotificationChannel] = None,
        events: Optional[EventBus] = None,
        clock: Clock = time.time,
    ):
        self.registry = registry
        self.evaluator = evaluator
        self.resolver = resolver
        self.config = config or EngineConfig()
        self.notifier = notifier or NullNotificationChannel()
        self.events = events or EventBus()
        self.clock = clock
        self._sweep_lock = threading.Lock()
        self.notifications_sent = 0

    # =========================================================================
    # Transitions
    # =========================================================================

    def award_lease(
        self,
        vertical: str,
        holder: str,
        now: Optional[float] = None,
        renewal_ref: Optional[str] = None,
    ) -> LeaseSlot:
        """
        Grant the lease to the winner of a LEASE round.
        
        Raises:
            ValidationError: malformed holder
            NotFoundError: unknown vertical
            StateConflictError: the slot is still held
        """
        ok, err = validate_address(holder, "holder")
        if not ok:
            raise ValidationError(err)
        now = self.clock() if now is None else now
        self.registry.get_vertical(vertical)

        slot = self.registry.get_lease(vertical)
        if slot is not None and slot.status != LeaseStatus.EXPIRED:
            raise StateConflictError(f"Lease on {vertical} is {slot.status.value}; cannot award")

        slot = LeaseSlot(
            vertical=vertical,
            status=LeaseStatus.ACTIVE,
            holder=holder,
            lease_end=now + self.config.lease_duration_seconds,
            renewal_ref=renewal_ref,
            lease_id=uuid.uuid4().hex,
            updated_at=now,
        )
        self.registry.set_owner(vertical, holder)
        self._commit(slot, LeaseEvent.AWARDED, now)
        self._notify(holder, LeaseEvent.AWARDED, slot, "Lease awarded")
        return slot

    def renew(
        self,
        vertical: str,
        now: Optional[float] = None,
        renewal_ref: Optional[str] = None,
    ) -> LeaseSlot:
        """
        Extend the lease by one lease duration from its current end.
        
        Raises:
            NotFoundError: no slot for the vertical
            StateConflictError: slot is EXPIRED or PAUSED
        """
        now = self.clock() if now is None else now
        slot = self.registry.require_lease(vertical)
        if not slot.is_renewable:
            raise StateConflictError(f"Cannot renew lease on {vertical}: lease is {slot.status.value}")

        slot.lease_end = slot.lease_end + self.config.lease_duration_seconds
        slot.status = LeaseStatus.ACTIVE
        slot.renewal_deadline = None
        slot.renewal_ref = renewal_ref or slot.renewal_ref
        self._commit(slot, LeaseEvent.RENEWED, now)
        self._notify(slot.holder, LeaseEvent.RENEWED, slot, "Lease renewed")
        return slot

    def enter_grace(self, slot: LeaseSlot, now: float) -> LeaseSlot:
        if slot.status != LeaseStatus.ACTIVE:
            raise StateConflictError(f"Lease on {slot.vertical} is {slot.status.value}; cannot enter grace")
        slot.status = LeaseStatus.GRACE_PERIOD
        slot.renewal_deadline = now + self.config.grace_period_seconds
        self._commit(slot, LeaseEvent.GRACE_STARTED, now)
        self._notify(slot.holder, LeaseEvent.GRACE_STARTED, slot, "Lease ended: renewal grace period started")
        return slot

    def pause(self, slot: LeaseSlot, blocking_auction_id: str, now: float) -> LeaseSlot:
        slot.status = LeaseStatus.PAUSED
        slot.renewal_deadline = None
        slot.blocking_auction_id = blocking_auction_id
        self._commit(slot, LeaseEvent.PAUSED, now, {"blocking_auction_id": blocking_auction_id})
        self._notify(slot.holder, LeaseEvent.PAUSED, slot, "Lease expiry paused until the live auction closes")
        return slot

    def expire(self, vertical: str, now: Optional[float] = None, reauction: bool = True) -> LeaseSlot:
        """
        Expire a lease.
        
        The holder and the vertical's owner address are cleared and the
        priority cache invalidated before this returns.
        
        Raises:
            NotFoundError: no slot for the vertical
            StateConflictError: already expired
        """
        now = self.clock() if now is None else now
        slot = self.registry.require_lease(vertical)
        if slot.status == LeaseStatus.EXPIRED:
            raise StateConflictError(f"Lease on {vertical} is already expired")
        self._expire(slot, now, reauction)
        return slot

    def _expire(self, slot: LeaseSlot, now: float, reauction: bool) -> Optional[str]:
        previous_holder = slot.holder
        slot.status = LeaseStatus.EXPIRED
        slot.holder = None
        slot.renewal_deadline = None
        slot.blocking_auction_id = None
        slot.reauction_pending = reauction
        self.registry.set_owner(slot.vertical, None)
        self._commit(slot, LeaseEvent.EXPIRED, now, {"previous_holder": previous_holder})

        eligible = bool(previous_holder) and self.check_reset_eligibility(previous_holder, now)
        if eligible:
            title = "Lease expired: you are eligible for the re-auction"
        else:
            title = "Lease expired"
        self._notify(previous_holder, LeaseEvent.EXPIRED, slot, title, {"reauction_eligible": eligible})
        return previous_holder if eligible else None

    # =========================================================================
    # Eligibility
    # =========================================================================

    def check_reset_eligibility(self, wallet: str, now: Optional[float] = None) -> bool:
        """A wallet needs min_bids_for_reauction bids within the last lease term."""
        if not wallet:
            return False
        now = self.clock() if now is None else now
        since = now - self.config.lease_duration_seconds
        return self.registry.count_bids_by(wallet, since) >= self.config.min_bids_for_reauction

    # =========================================================================
    # Sweep
    # =========================================================================

    def sweep(self, now: Optional[float] = None) -> SweepResult:
        """
        Run one lifecycle pass.
        
        1. ACTIVE past lease end -> GRACE_PERIOD
        2. GRACE_PERIOD past deadline -> PAUSED (live auction) or EXPIRED
        3. PAUSED whose blocking auction is no longer live -> EXPIRED
        4. Open pending re-auctions, capped per sweep
        
        A sweep that starts while another is running is skipped.
        """
        if not self._sweep_lock.acquire(blocking=False):
            logger.info("Lease sweep already in progress; skipping")
            return SweepResult(skipped=True)
        try:
            return self._sweep(self.clock() if now is None else now)
        finally:
            self._sweep_lock.release()

    def _sweep(self, now: float) -> SweepResult:
        result = SweepResult()
        sent_before = self.notifications_sent

        for slot in self.registry.leases_with_status(LeaseStatus.ACTIVE):
            if slot.lease_end <= now:
                if self._guarded(result, slot, lambda s=slot: self.enter_grace(s, now)):
                    result.to_grace += 1

        for slot in self.registry.leases_with_status(LeaseStatus.GRACE_PERIOD):
            if slot.renewal_deadline is None or slot.renewal_deadline > now:
                continue
            live = self.registry.live_rounds(slot.vertical, now)
            if live:
                if self._guarded(result, slot, lambda s=slot, a=live[0].auction_id: self.pause(s, a, now)):
                    result.paused += 1
            else:
                self._expire_in_sweep(result, slot, now)

        for slot in self.registry.leases_with_status(LeaseStatus.PAUSED):
            blocking = self.registry.get_round(slot.blocking_auction_id) if slot.blocking_auction_id else None
            if blocking is not None and blocking.is_live(now):
                continue
            self._expire_in_sweep(result, slot, now)

        self._open_pending_reauctions(result, now)
        result.notifications_sent = self.notifications_sent - sent_before

        logger.info(
            f"Lease sweep: grace={result.to_grace} paused={result.paused} expired={result.expired} "
            f"reauctions={result.reauctions_opened} deferred={result.reauctions_deferred}"
        )
        return result

    def _expire_in_sweep(self, result: SweepResult, slot: LeaseSlot, now: float) -> None:
        try:
            eligible = self._expire(slot, now, reauction=True)
        except LeaseBidError as e:
            result.errors.append(f"{slot.vertical}: {e}")
            logger.error(f"Failed to expire lease on {slot.vertical}: {e}")
            return
        result.expired += 1
        if eligible:
            result.auto_eligible.append(eligible)

    def _open_pending_reauctions(self, result: SweepResult, now: float) -> None:
        pending = sorted(
            (s for s in self.registry.leases_with_status(LeaseStatus.EXPIRED) if s.reauction_pending),
            key=lambda s: s.updated_at,
        )
        for slot in pending:
            if self.registry.live_rounds(slot.vertical, now, RoundKind.LEASE):
                slot.reauction_pending = False
                self.registry.save_lease(slot)
                logger.info(f"Re-auction for {slot.vertical} not needed: a lease auction is already live")
                continue
            if result.reauctions_opened >= self.config.max_reauctions_per_sweep:
                result.reauctions_deferred += 1
                continue
            try:
                auction_round = self.evaluator.open_round(
                    slot.vertical,
                    self.config.reauction_reserve_price,
                    self.config.reauction_duration_seconds,
                    kind=RoundKind.LEASE,
                    now=now,
                )
            except LeaseBidError as e:
                result.errors.append(f"{slot.vertical}: {e}")
                logger.warning(f"Could not open re-auction for {slot.vertical}: {e}")
                continue
            slot.reauction_pending = False
            self.registry.save_lease(slot)
            result.reauctions_opened += 1
            result.new_auction_ids.append(auction_round.auction_id)

    def _guarded(self, result: SweepResult, slot: LeaseSlot, transition) -> bool:
        try:
            transition()
        except LeaseBidError as e:
            result.errors.append(f"{slot.vertical}: {e}")
            logger.error(f"Lease transition failed on {slot.vertical}: {e}")
            return False
        return True

    # =========================================================================
    # Helpers
    # =========================================================================

    def _commit(self, slot: LeaseSlot, event: LeaseEvent, now: float, extra: Optional[Dict[str, Any]] = None) -> None:
        slot.updated_at = now
        self.registry.save_lease(slot)
        self.resolver.invalidate(slot.vertical)

        payload = {
            "vertical": slot.vertical,
            "lease_id": slot.lease_id,
            "event": event.value,
            "status": slot.status.value,
            "holder": slot.holder,
            "lease_end": slot.lease_end,
            "renewal_deadline": slot.renewal_deadline,
        }
        if extra:
            payload.update(extra)
        self.registry.record_audit(now, LEASE_TRANSITION, slot.vertical, payload)
        self.events.emit(LEASE_TRANSITION, payload)
        logger.info(f"Lease {event.value}: {slot.vertical} -> {slot.status.value}")

    def _notify(
        self,
        actor: Optional[str],
        event: LeaseEvent,
        slot: LeaseSlot,
        title: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> bool:
        if not actor:
            return False
        try:
            if not self.notifier.may_notify(actor):
                return False
            notification = Notification(
                actor=actor,
                kind=f"lease_{event.value}",
                title=title,
                body=f"{slot.vertical}: {slot.status.value}",
                data={"vertical": slot.vertical, "lease_id": slot.lease_id, **(data or {})},
                created_at=self.clock(),
            )
            sent = self.notifier.enqueue(notification)
            if sent:
                self.notifications_sent += 1
            return sent
        except Exception as e:
            logger.warning(f"Notification to {actor[:10]} for {slot.vertical} failed: {e}")
            return False


__all__ = [
    "SweepResult",
    "LeaseLifecycleManager",
]
