"""
Auction Module.

Provides auction rounds, bid ranking and the bid evaluator that admits
priority-adjusted bids and settles rounds.
"""

from leasebid.core.auction.round import (
    AuctionRound,
    Bid,
    BidOutcome,
    RoundKind,
    SettlementOutcome,
)
from leasebid.core.auction.scoring import bid_rank_key, rank_bids
from leasebid.core.auction.evaluator import REASON_INACTIVE, BidEvaluator

__all__ = [
    "AuctionRound",
    "Bid",
    "BidOutcome",
    "RoundKind",
    "SettlementOutcome",
    "bid_rank_key",
    "rank_bids",
    "BidEvaluator",
    "REASON_INACTIVE",
]
