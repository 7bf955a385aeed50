"""
Size index for the local object cache.

A small SQLite table mapping "<bucket>:::<key>" to the byte size last written
for it, so the total cache usage can be answered without walking every entry.
Best effort only: a failed write leaves the index and the cache out of step
and nothing reconciles them.
"""

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Dict, Optional

from shared.models import ObjectRef

logger = logging.getLogger(__name__)


class CacheSizeIndex:
    """Persisted cache-key -> size map."""

    def __init__(self, db_path):
        self.db_path = Path(db_path).expanduser()
        self.lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        """Initialize SQLite database for size tracking."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self.lock:
            self.conn = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=20
            )
            self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.execute("PRAGMA synchronous=NORMAL")

            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS cache_sizes (
                    cache_key TEXT PRIMARY KEY,
                    size_bytes INTEGER NOT NULL
                )
            """)
            self.conn.commit()

    def close(self):
        with self.lock:
            self.conn.close()

    def set(self, bucket: str, key: str, size_bytes: int):
        """Upsert the recorded size for one object."""
        size = max(0, int(size_bytes or 0))
        with self.lock:
            try:
                self.conn.execute(
                    "INSERT OR REPLACE INTO cache_sizes (cache_key, size_bytes) VALUES (?, ?)",
                    (ObjectRef(bucket, key).index_key, size)
                )
                self.conn.commit()
            except sqlite3.Error as e:
                logger.warning("Could not record size for %s/%s: %s", bucket, key, e)

    def remove(self, bucket: str, key: str):
        with self.lock:
            try:
                self.conn.execute(
                    "DELETE FROM cache_sizes WHERE cache_key = ?",
                    (ObjectRef(bucket, key).index_key,)
                )
                self.conn.commit()
            except sqlite3.Error as e:
                logger.warning("Could not drop size for %s/%s: %s", bucket, key, e)

    def clear(self):
        with self.lock:
            try:
                self.conn.execute("DELETE FROM cache_sizes")
                self.conn.commit()
            except sqlite3.Error as e:
                logger.warning("Could not clear size index: %s", e)

    def get(self, bucket: str, key: str) -> Optional[int]:
        with self.lock:
            try:
                row = self.conn.execute(
                    "SELECT size_bytes FROM cache_sizes WHERE cache_key = ?",
                    (ObjectRef(bucket, key).index_key,)
                ).fetchone()
            except sqlite3.Error:
                return None
        return row[0] if row else None

    def total_bytes(self) -> int:
        """Sum of all recorded sizes (0 when empty or unreadable)."""
        with self.lock:
            try:
                result = self.conn.execute("SELECT SUM(size_bytes) FROM cache_sizes").fetchone()[0]
            except sqlite3.Error:
                return 0
        return result if result else 0

    def is_empty(self) -> bool:
        with self.lock:
            try:
                row = self.conn.execute("SELECT 1 FROM cache_sizes LIMIT 1").fetchone()
            except sqlite3.Error:
                return True
        return row is None

    def records(self) -> Dict[str, int]:
        with self.lock:
            try:
                rows = self.conn.execute("SELECT cache_key, size_bytes FROM cache_sizes").fetchall()
            except sqlite3.Error:
                return {}
        return {cache_key: size for cache_key, size in rows}
