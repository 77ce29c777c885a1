import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from leasebid.utils.logger import get_logger

logger = get_logger("storage.sqlite")


class SQLiteAdapter:
    """
    SQLite backend for persistent storage.
    
    Provides:
    1. Market records (verticals, lease slots, auction rounds, bids,
       bounty pools) stored as JSON documents with indexed lookup columns.
    2. Append-only audit log for lease transitions and tie-break results.
    
    Lease slots and bounty pools are upserted, never deleted.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn_local = threading.local()
        
        # Ensure directory exists
        if not db_path.parent.exists():
            db_path.parent.mkdir(parents=True, exist_ok=True)
            
        self._init_schema()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create connection for current thread."""
        if not hasattr(self._conn_local, "conn"):
            self._conn_local.conn = sqlite3.connect(
                self.db_path, 
                timeout=30.0,
                check_same_thread=False
            )
            self._conn_local.conn.row_factory = sqlite3.Row
            # Enable WAL mode for better concurrency
            self._conn_local.conn.execute("PRAGMA journal_mode=WAL;")
            self._conn_local.conn.execute("PRAGMA synchronous=NORMAL;")
        return self._conn_local.conn

    def close(self):
        conn = getattr(self._conn_local, "conn", None)
        if conn is not None:
            conn.close()
            del self._conn_local.conn

    def _init_schema(self):
        """Initialize database schema."""
        conn = self._get_conn()
        with conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS verticals (
                    slug TEXT PRIMARY KEY,
                    data TEXT NOT NULL
                )
            """)

            # One row per vertical, upserted on every transition
            conn.execute("""
                CREATE TABLE IF NOT EXISTS lease_slots (
                    vertical TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    data TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS auction_rounds (
                    auction_id TEXT PRIMARY KEY,
                    vertical TEXT NOT NULL,
                    data TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_round_vertical ON auction_rounds(vertical);")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS bids (
                    bid_id TEXT PRIMARY KEY,
                    auction_id TEXT NOT NULL,
                    bidder TEXT NOT NULL,
                    submitted_at REAL NOT NULL,
                    data TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_bid_auction ON bids(auction_id);")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_bid_bidder ON bids(bidder, submitted_at);")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS bounty_pools (
                    pool_id TEXT PRIMARY KEY,
                    vertical TEXT NOT NULL,
                    data TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_pool_vertical ON bounty_pools(vertical);")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS audit_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    ts REAL NOT NULL,
                    kind TEXT NOT NULL,
                    subject TEXT NOT NULL,
                    payload TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_subject ON audit_log(subject);")

    # =========================================================================
    # Document Operations
    # =========================================================================

    def _upsert(self, sql: str, params: Tuple):
        conn = self._get_conn()
        with conn:
            conn.execute(sql, params)

    def _load_all(self, sql: str, params: Tuple = ()) -> List[Dict[str, Any]]:
        conn = self._get_conn()
        cursor = conn.execute(sql, params)
        return [json.loads(row["data"]) for row in cursor]

    def save_vertical(self, slug: str, data: Dict[str, Any]):
        self._upsert(
            "INSERT OR REPLACE INTO verticals (slug, data) VALUES (?, ?)",
            (slug, json.dumps(data)),
        )

    def save_lease(self, vertical: str, status: str, data: Dict[str, Any]):
        self._upsert(
            "INSERT OR REPLACE INTO lease_slots (vertical, status, data) VALUES (?, ?, ?)",
            (vertical, status, json.dumps(data)),
        )

    def save_round(self, auction_id: str, vertical: str, data: Dict[str, Any]):
        self._upsert(
            "INSERT INTO auction_rounds (auction_id, vertical, data) VALUES (?, ?, ?) "
            "ON CONFLICT(auction_id) DO UPDATE SET data = excluded.data",
            (auction_id, vertical, json.dumps(data)),
        )

    def save_bid(self, bid_id: str, auction_id: str, bidder: str, submitted_at: float, data: Dict[str, Any]):
        self._upsert(
            "INSERT OR REPLACE INTO bids (bid_id, auction_id, bidder, submitted_at, data) VALUES (?, ?, ?, ?, ?)",
            (bid_id, auction_id, bidder, submitted_at, json.dumps(data)),
        )

    def save_pool(self, pool_id: str, vertical: str, data: Dict[str, Any]):
        self._upsert(
            "INSERT INTO bounty_pools (pool_id, vertical, data) VALUES (?, ?, ?) "
            "ON CONFLICT(pool_id) DO UPDATE SET data = excluded.data",
            (pool_id, vertical, json.dumps(data)),
        )

    def get_all_verticals(self) -> List[Dict[str, Any]]:
        return self._load_all("SELECT data FROM verticals ORDER BY slug ASC")

    def get_all_leases(self) -> List[Dict[str, Any]]:
        return self._load_all("SELECT data FROM lease_slots ORDER BY vertical ASC")

    def get_all_rounds(self) -> List[Dict[str, Any]]:
        return self._load_all("SELECT data FROM auction_rounds ORDER BY rowid ASC")

    def get_all_bids(self) -> List[Dict[str, Any]]:
        return self._load_all("SELECT data FROM bids ORDER BY submitted_at ASC, rowid ASC")

    def get_all_pools(self) -> List[Dict[str, Any]]:
        return self._load_all("SELECT data FROM bounty_pools ORDER BY rowid ASC")

    # =========================================================================
    # Audit Log
    # =========================================================================

    def append_audit(self, ts: float, kind: str, subject: str, payload: Dict[str, Any]):
        """Append an audit record (never updated or deleted)."""
        self._upsert(
            "INSERT INTO audit_log (ts, kind, subject, payload) VALUES (?, ?, ?, ?)",
            (ts, kind, subject, json.dumps(payload, default=str)),
        )

    def get_audit(self, subject: Optional[str] = None) -> List[Dict[str, Any]]:
        conn = self._get_conn()
        if subject is None:
            cursor = conn.execute("SELECT * FROM audit_log ORDER BY id ASC")
        else:
            cursor = conn.execute("SELECT * FROM audit_log WHERE subject = ? ORDER BY id ASC", (subject,))
        return [
            {
                "ts": row["ts"],
                "kind": row["kind"],
                "subject": row["subject"],
                "payload": json.loads(row["payload"]),
            }
            for row in cursor
        ]
