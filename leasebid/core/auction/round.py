"""
Auction Round - Single-item English auction state and accepted bids.

A round is created on open, mutated by every accepted bid and becomes
terminal once settled or cancelled.

Invariants:
- window_end <= end_time
- high_effective >= high_raw (multiplier >= 1.0)
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid


class RoundKind(str, Enum):
    """What the round allocates."""
    LEASE = "LEASE"              # The vertical's lease slot itself
    TRANSACTION = "TRANSACTION"  # A single transaction inside the vertical


def _dec(value: Optional[str]) -> Optional[Decimal]:
    return None if value is None else Decimal(value)


def _str(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


@dataclass
class Bid:
    """
    One accepted bid.
    
    effective_amount is None for legacy rows written before multipliers
    existed; None means unknown, never zero.
    """
    auction_id: str
    bidder: str
    raw_amount: Decimal
    effective_amount: Optional[Decimal]
    submitted_at: float
    is_priority_holder: bool = False
    bid_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bid_id": self.bid_id,
            "auction_id": self.auction_id,
            "bidder": self.bidder,
            "raw_amount": str(self.raw_amount),
            "effective_amount": _str(self.effective_amount),
            "submitted_at": self.submitted_at,
            "is_priority_holder": self.is_priority_holder,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Bid":
        return cls(
            bid_id=data["bid_id"],
            auction_id=data["auction_id"],
            bidder=data["bidder"],
            raw_amount=Decimal(data["raw_amount"]),
            effective_amount=_dec(data.get("effective_amount")),
            submitted_at=float(data["submitted_at"]),
            is_priority_holder=bool(data.get("is_priority_holder", False)),
        )


@dataclass
class AuctionRound:
    """
    A time-boxed bidding round for a vertical.
    
    Attributes:
        auction_id: Unique round id
        vertical: Vertical slug
        kind: LEASE or TRANSACTION
        reserve_price: Minimum raw bid
        start_time / end_time: Bidding interval (epoch seconds)
        window_end: End of the holder-only priority window
        nonce: Per-round salt used to derive the window length
        high_raw / high_effective / high_bidder: Current high bid
        winner / winning_price: Set on settlement
        tie_break_subject: Oracle subject while a tie is being verified
        verified_winner: Oracle winner, recorded after the fact for audit
    """
    vertical: str
    reserve_price: Decimal
    start_time: float
    end_time: float
    window_end: float
    nonce: str = ""
    kind: RoundKind = RoundKind.TRANSACTION
    auction_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    settled: bool = False
    cancelled: bool = False
    high_raw: Optional[Decimal] = None
    high_effective: Optional[Decimal] = None
    high_bidder: Optional[str] = None
    bid_count: int = 0
    winner: Optional[str] = None
    winning_price: Optional[Decimal] = None
    tie_break_subject: Optional[str] = None
    tie_break_pending: bool = False
    verified_winner: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.settled or self.cancelled

    def is_live(self, now: float) -> bool:
        """Unsettled, uncancelled and not yet ended."""
        return not self.is_terminal and now < self.end_time

    @property
    def window_seconds(self) -> float:
        return self.window_end - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            "auction_id": self.auction_id,
            "vertical": self.vertical,
            "kind": self.kind.value,
            "reserve_price": str(self.reserve_price),
            "start_time": self.start_time,
            "end_time": self.end_time,
            "window_end": self.window_end,
            "nonce": self.nonce,
            "settled": self.settled,
            "cancelled": self.cancelled,
            "high_raw": _str(self.high_raw),
            "high_effective": _str(self.high_effective),
            "high_bidder": self.high_bidder,
            "bid_count": self.bid_count,
            "winner": self.winner,
            "winning_price": _str(self.winning_price),
            "tie_break_subject": self.tie_break_subject,
            "tie_break_pending": self.tie_break_pending,
            "verified_winner": self.verified_winner,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuctionRound":
        return cls(
            auction_id=data["auction_id"],
            vertical=data["vertical"],
            kind=RoundKind(data.get("kind", RoundKind.TRANSACTION.value)),
            reserve_price=Decimal(data["reserve_price"]),
            start_time=float(data["start_time"]),
            end_time=float(data["end_time"]),
            window_end=float(data["window_end"]),
            nonce=data.get("nonce", ""),
            settled=bool(data.get("settled", False)),
            cancelled=bool(data.get("cancelled", False)),
            high_raw=_dec(data.get("high_raw")),
            high_effective=_dec(data.get("high_effective")),
            high_bidder=data.get("high_bidder"),
            bid_count=int(data.get("bid_count", 0)),
            winner=data.get("winner"),
            winning_price=_dec(data.get("winning_price")),
            tie_break_subject=data.get("tie_break_subject"),
            tie_break_pending=bool(data.get("tie_break_pending", False)),
            verified_winner=data.get("verified_winner"),
        )


@dataclass
class BidOutcome:
    """Result of a bid attempt."""
    accepted: bool
    effective_high_bid: Optional[Decimal] = None
    reason: str = ""
    bid_id: Optional[str] = None
    effective_amount: Optional[Decimal] = None
    is_priority_holder: bool = False


@dataclass
class SettlementOutcome:
    """Result of closing a round."""
    auction_id: str
    vertical: str
    kind: RoundKind
    winner: Optional[str] = None
    price: Optional[Decimal] = None
    effective: Optional[Decimal] = None
    cancelled: bool = False
    tie_break_pending: bool = False
    tied_candidates: List[str] = field(default_factory=list)


__all__ = [
    "RoundKind",
    "Bid",
    "AuctionRound",
    "BidOutcome",
    "SettlementOutcome",
]
