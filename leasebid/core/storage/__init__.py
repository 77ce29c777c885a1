"""
Persistent Storage Module.

Provides SQLite-backed persistence for:
- Verticals and lease slots
- Auction rounds and bids
- Bounty pools
- Audit trail
"""

from leasebid.core.storage.sqlite_adapter import SQLiteAdapter
from leasebid.core.storage.storage_manager import StorageManager

__all__ = ["SQLiteAdapter", "StorageManager"]
