"""
Lease Slot - Per-vertical lease record and its status machine.

States:
    ACTIVE -> GRACE_PERIOD -> EXPIRED | PAUSED
    PAUSED -> EXPIRED (once the blocking auction is no longer live)
    ACTIVE | GRACE_PERIOD -> ACTIVE (renewal)

Invariant: renewal_deadline is set if and only if status is GRACE_PERIOD.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional
import uuid


class LeaseStatus(str, Enum):
    ACTIVE = "ACTIVE"
    GRACE_PERIOD = "GRACE_PERIOD"
    PAUSED = "PAUSED"
    EXPIRED = "EXPIRED"


class LeaseEvent(str, Enum):
    """Transition names used for logging, audit and notifications."""
    AWARDED = "awarded"
    GRACE_STARTED = "grace_started"
    RENEWED = "renewed"
    PAUSED = "paused"
    EXPIRED = "expired"


@dataclass
class LeaseSlot:
    """
    Lease state for one vertical.
    
    Attributes:
        vertical: Vertical slug (one slot per vertical)
        status: Current lease status
        holder: Current holder address (None once expired)
        lease_end: Lease end timestamp (epoch seconds)
        renewal_deadline: Grace deadline, only while GRACE_PERIOD
        lease_id: Identifier of the current lease term
        blocking_auction_id: Live auction that caused PAUSED
        renewal_ref: Reference of the last renewal payment
        reauction_pending: Expired and waiting for a re-auction slot
    """
    vertical: str
    status: LeaseStatus
    holder: Optional[str]
    lease_end: float
    renewal_deadline: Optional[float] = None
    lease_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    blocking_auction_id: Optional[str] = None
    renewal_ref: Optional[str] = None
    reauction_pending: bool = False
    updated_at: float = 0.0

    def check_invariant(self) -> bool:
        return (self.renewal_deadline is not None) == (self.status == LeaseStatus.GRACE_PERIOD)

    @property
    def is_renewable(self) -> bool:
        return self.status in (LeaseStatus.ACTIVE, LeaseStatus.GRACE_PERIOD)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vertical": self.vertical,
            "status": self.status.value,
            "holder": self.holder,
            "lease_end": self.lease_end,
            "renewal_deadline": self.renewal_deadline,
            "lease_id": self.lease_id,
            "blocking_auction_id": self.blocking_auction_id,
            "renewal_ref": self.renewal_ref,
            "reauction_pending": self.reauction_pending,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeaseSlot":
        return cls(
            vertical=data["vertical"],
            status=LeaseStatus(data["status"]),
            holder=data.get("holder"),
            lease_end=float(data["lease_end"]),
            renewal_deadline=data.get("renewal_deadline"),
            lease_id=data.get("lease_id") or uuid.uuid4().hex,
            blocking_auction_id=data.get("blocking_auction_id"),
            renewal_ref=data.get("renewal_ref"),
            reauction_pending=bool(data.get("reauction_pending", False)),
            updated_at=float(data.get("updated_at") or 0.0),
        )


__all__ = [
    "LeaseStatus",
    "LeaseEvent",
    "LeaseSlot",
]
