"""
LeaseBid - Priority Auction & Incentive Allocation Engine

A marketplace engine integrating:
- Leased vertical slots with priority bidding perks
- Time-boxed English auctions with priority-adjusted bids
- Standing bounty pools with criteria matching and a stacking cap
- Verifiable-random tie-breaking with deterministic fallback
- Lease lifecycle (active, grace, paused, expired) with re-auction
"""

__version__ = "0.1.0"
