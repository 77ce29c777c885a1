"""
Market Registry - In-memory market state with optional SQLite write-through.

Holds the minimal vertical registry (existence, status, current owner
address) plus lease slots, auction rounds, accepted bids and bounty pools.
Components read and write through the registry; when a StorageManager is
attached every write is persisted and `load()` restores state on start.
"""

from collections import defaultdict
from typing import Any, Dict, List, Optional

from leasebid.core.auction.round import AuctionRound, Bid, RoundKind
from leasebid.core.bounty.pool import BountyPool
from leasebid.core.errors import NotFoundError, StateConflictError, ValidationError
from leasebid.core.lease.slot import LeaseSlot, LeaseStatus
from leasebid.core.registry.vertical import Vertical, VerticalStatus
from leasebid.utils.logger import get_logger
from leasebid.utils.validation import normalize_address, validate_vertical_slug

logger = get_logger("registry")


class MarketRegistry:
    """
    Central store for market records.
    
    Lease slots and bounty pools are never removed; terminal states are
    kept for audit.
    """

    def __init__(self, storage=None):
        """
        Args:
            storage: Optional StorageManager for write-through persistence
        """
        self.storage = storage
        self.verticals: Dict[str, Vertical] = {}
        self.leases: Dict[str, LeaseSlot] = {}
        self.rounds: Dict[str, AuctionRound] = {}
        self.bids: Dict[str, List[Bid]] = defaultdict(list)
        self.pools: Dict[str, BountyPool] = {}
        # Bidder (lowercase) -> submission timestamps of accepted bids
        self._bid_times: Dict[str, List[float]] = defaultdict(list)

    def load(self) -> Dict[str, int]:
        """Restore state from storage; returns record counts."""
        if self.storage is None:
            return {}
        state = self.storage.load_market_state()
        for data in state["verticals"]:
            v = Vertical.from_dict(data)
            self.verticals[v.slug] = v
        for data in state["leases"]:
            slot = LeaseSlot.from_dict(data)
            self.leases[slot.vertical] = slot
        for data in state["rounds"]:
            r = AuctionRound.from_dict(data)
            self.rounds[r.auction_id] = r
        for data in state["bids"]:
            self._index_bid(Bid.from_dict(data))
        for data in state["pools"]:
            pool = BountyPool.from_dict(data)
            self.pools[pool.pool_id] = pool

        counts = {k: len(v) for k, v in state.items()}
        logger.info(f"Registry loaded: {counts}")
        return counts

    # =========================================================================
    # Verticals
    # =========================================================================

    def add_vertical(
        self,
        slug: str,
        status: VerticalStatus = VerticalStatus.ACTIVE,
        now: float = 0.0,
    ) -> Vertical:
        ok, err = validate_vertical_slug(slug)
        if not ok:
            raise ValidationError(err)
        if slug in self.verticals:
            raise StateConflictError(f"Vertical {slug} already exists")
        vertical = Vertical(slug=slug, status=status, created_at=now)
        self.verticals[slug] = vertical
        self._persist("persist_vertical", vertical)
        logger.info(f"Vertical registered: {slug} ({status.value})")
        return vertical

    def get_vertical(self, slug: str) -> Vertical:
        vertical = self.verticals.get(slug)
        if vertical is None:
            raise NotFoundError(f"Vertical {slug} not found")
        return vertical

    def has_vertical(self, slug: str) -> bool:
        return slug in self.verticals

    def set_owner(self, slug: str, address: Optional[str]) -> None:
        vertical = self.get_vertical(slug)
        vertical.owner_address = normalize_address(address) or None
        self._persist("persist_vertical", vertical)

    # =========================================================================
    # Lease Slots
    # =========================================================================

    def get_lease(self, vertical: str) -> Optional[LeaseSlot]:
        return self.leases.get(vertical)

    def require_lease(self, vertical: str) -> LeaseSlot:
        slot = self.leases.get(vertical)
        if slot is None:
            raise NotFoundError(f"No lease for vertical {vertical}")
        return slot

    def active_holder(self, vertical: str) -> Optional[str]:
        """Holder of the vertical's slot if it is ACTIVE, else None."""
        slot = self.leases.get(vertical)
        if slot is None or slot.status != LeaseStatus.ACTIVE:
            return None
        return slot.holder

    def find_lease_by_id(self, lease_id: str) -> LeaseSlot:
        for slot in self.leases.values():
            if slot.lease_id == lease_id:
                return slot
        raise NotFoundError(f"Lease {lease_id} not found")

    def save_lease(self, slot: LeaseSlot) -> None:
        self.leases[slot.vertical] = slot
        self._persist("persist_lease", slot)

    def leases_with_status(self, status: LeaseStatus) -> List[LeaseSlot]:
        return [s for s in self.leases.values() if s.status == status]

    # =========================================================================
    # Auction Rounds & Bids
    # =========================================================================

    def get_round(self, auction_id: str) -> Optional[AuctionRound]:
        return self.rounds.get(auction_id)

    def require_round(self, auction_id: str) -> AuctionRound:
        auction_round = self.rounds.get(auction_id)
        if auction_round is None:
            raise NotFoundError(f"Auction {auction_id} not found")
        return auction_round

    def save_round(self, auction_round: AuctionRound) -> None:
        self.rounds[auction_round.auction_id] = auction_round
        self._persist("persist_round", auction_round)

    def live_rounds(
        self,
        vertical: str,
        now: float,
        kind: Optional[RoundKind] = None,
    ) -> List[AuctionRound]:
        """Unsettled, uncancelled, not-yet-ended rounds for a vertical."""
        return [
            r for r in self.rounds.values()
            if r.vertical == vertical
            and r.is_live(now)
            and (kind is None or r.kind == kind)
        ]

    def _index_bid(self, bid: Bid) -> None:
        self.bids[bid.auction_id].append(bid)
        self._bid_times[bid.bidder.lower()].append(bid.submitted_at)

    def add_bid(self, bid: Bid) -> None:
        self._index_bid(bid)
        self._persist("persist_bid", bid)

    def save_bid(self, bid: Bid) -> None:
        """Persist an updated bid (effective-amount backfill)."""
        self._persist("persist_bid", bid)

    def bids_for(self, auction_id: str) -> List[Bid]:
        return list(self.bids.get(auction_id, ()))

    def count_bids_by(self, wallet: str, since: float) -> int:
        return sum(1 for ts in self._bid_times.get(wallet.lower(), ()) if ts >= since)

    # =========================================================================
    # Bounty Pools
    # =========================================================================

    def save_pool(self, pool: BountyPool) -> None:
        self.pools[pool.pool_id] = pool
        self._persist("persist_pool", pool)

    def require_pool(self, pool_id: str) -> BountyPool:
        pool = self.pools.get(pool_id)
        if pool is None:
            raise NotFoundError(f"Bounty pool {pool_id} not found")
        return pool

    def pools_for(self, vertical: str) -> List[BountyPool]:
        return [p for p in self.pools.values() if p.vertical == vertical]

    # =========================================================================
    # Persistence
    # =========================================================================

    def record_audit(self, ts: float, kind: str, subject: str, payload: Dict[str, Any]) -> None:
        if self.storage is not None:
            self.storage.record_audit(ts, kind, subject, payload)

    def _persist(self, method: str, record) -> None:
        if self.storage is not None:
            getattr(self.storage, method)(record)


__all__ = [
    "VerticalStatus",
    "Vertical",
    "MarketRegistry",
]
