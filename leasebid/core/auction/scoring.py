"""
Bid ranking.

Order: effective amount descending with unknown (None) ranked below every
present value, then raw amount descending, then earliest submission.
An effective amount of zero is a real value.
"""

from typing import List, Tuple

from leasebid.core.auction.round import Bid
from leasebid.core.money import ZERO


def bid_rank_key(bid: Bid) -> Tuple:
    unknown = bid.effective_amount is None
    effective = ZERO if unknown else bid.effective_amount
    return (unknown, -effective, -bid.raw_amount, bid.submitted_at)


def rank_bids(bids: List[Bid]) -> List[Bid]:
    """Return bids sorted best-first."""
    return sorted(bids, key=bid_rank_key)


__all__ = ["bid_rank_key", "rank_bids"]
