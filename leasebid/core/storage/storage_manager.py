from pathlib import Path
from typing import Any, Dict, List, Optional

from leasebid.core.storage.sqlite_adapter import SQLiteAdapter
from leasebid.utils.logger import get_logger

logger = get_logger("storage.manager")


class StorageManager:
    """
    Manages persistent storage for the engine.
    
    Coordinates data persistence using SQLite adapter.
    Handles:
    - Verticals and lease slots
    - Auction rounds and accepted bids
    - Bounty pools
    - Audit trail (lease transitions, tie-break resolutions)
    """

    def __init__(self, data_dir: Path, db_name: str = "leasebid.db"):
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_name
        self.adapter = SQLiteAdapter(self.db_path)
        
        logger.info(f"StorageManager initialized at {self.db_path}")

    def close(self):
        self.adapter.close()

    # =========================================================================
    # Registry Records
    # =========================================================================

    def persist_vertical(self, vertical) -> None:
        self.adapter.save_vertical(vertical.slug, vertical.to_dict())

    def persist_lease(self, slot) -> None:
        self.adapter.save_lease(slot.vertical, slot.status.value, slot.to_dict())

    def persist_round(self, auction_round) -> None:
        self.adapter.save_round(auction_round.auction_id, auction_round.vertical, auction_round.to_dict())

    def persist_bid(self, bid) -> None:
        self.adapter.save_bid(bid.bid_id, bid.auction_id, bid.bidder.lower(), bid.submitted_at, bid.to_dict())

    def persist_pool(self, pool) -> None:
        self.adapter.save_pool(pool.pool_id, pool.vertical, pool.to_dict())

    def load_market_state(self) -> Dict[str, List[Dict[str, Any]]]:
        """
        Load every persisted record.
        
        Returns:
            Mapping with keys verticals, leases, rounds, bids, pools
        """
        return {
            "verticals": self.adapter.get_all_verticals(),
            "leases": self.adapter.get_all_leases(),
            "rounds": self.adapter.get_all_rounds(),
            "bids": self.adapter.get_all_bids(),
            "pools": self.adapter.get_all_pools(),
        }

    # =========================================================================
    # Audit
    # =========================================================================

    def record_audit(self, ts: float, kind: str, subject: str, payload: Dict[str, Any]) -> None:
        self.adapter.append_audit(ts, kind, subject, payload)

    def get_audit_trail(self, subject: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.adapter.get_audit(subject)
