"""
Market Registry Module.

Provides the vertical registry and the in-memory market store shared by
the auction, bounty and lease components.
"""

from leasebid.core.registry.vertical import Vertical, VerticalStatus
from leasebid.core.registry.market_registry import MarketRegistry

__all__ = [
    "MarketRegistry",
    "Vertical",
    "VerticalStatus",
]
