"""
Persistent key-value store for cache entries using SQLite.
"""

import os
import json
import sqlite3
import logging
from pathlib import Path
from typing import Optional, List, Dict, Any
from contextlib import contextmanager

from age_verifier.errors import CacheCorruption
from age_verifier.models import CacheEntry


class CacheStore:
    """SQLite store holding serialized cache entries keyed by handle."""

    SCHEMA_VERSION = 1

    SCHEMA = """
    -- Serialized CacheEntry per handle
    CREATE TABLE IF NOT EXISTS age_cache (
        handle TEXT PRIMARY KEY,
        payload TEXT NOT NULL,   -- JSON from CacheEntry.to_dict()
        stored_at REAL NOT NULL,
        expires_at REAL NOT NULL
    );

    -- Schema version tracking
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY
    );

    CREATE INDEX IF NOT EXISTS idx_age_cache_expires_at ON age_cache(expires_at);
    """

    def __init__(self, db_path: str):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.conn: Optional[sqlite3.Connection] = None
        self._connect()
        self._initialize_schema()

    def _connect(self):
        """Establish database connection."""
        self.conn = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            isolation_level=None  # Autocommit mode
        )
        self.conn.row_factory = sqlite3.Row

        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA synchronous=NORMAL")

        logging.debug(f"Cache store connected: {self.db_path}")

    def _initialize_schema(self):
        """Create database schema if it doesn't exist."""
        cursor = self.conn.cursor()

        cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'")
        if not cursor.fetchone():
            cursor.executescript(self.SCHEMA)
            cursor.execute("INSERT INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,))
            logging.info(f"Initialized fresh cache store with schema version {self.SCHEMA_VERSION}")
            return

        cursor.execute("SELECT version FROM schema_version LIMIT 1")
        result = cursor.fetchone()

        if not result:
            cursor.execute("INSERT INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,))
        elif result[0] > self.SCHEMA_VERSION:
            raise ValueError(
                f"Cache store schema version {result[0]} is newer than code version {self.SCHEMA_VERSION}. "
                f"Please update the age verifier."
            )

    @contextmanager
    def transaction(self):
        """Context manager for transactions."""
        cursor = self.conn.cursor()
        try:
            cursor.execute("BEGIN")
            yield cursor
            cursor.execute("COMMIT")
        except Exception:
            cursor.execute("ROLLBACK")
            raise

    def save(self, handle: str, entry: CacheEntry):
        """
        Insert or replace the entry for a handle.

        Args:
            handle: Normalized handle
            entry: Cache entry to persist
        """
        with self.transaction() as cursor:
            cursor.execute("""
                INSERT OR REPLACE INTO age_cache (handle, payload, stored_at, expires_at)
                VALUES (?, ?, ?, ?)
            """, (handle, json.dumps(entry.to_dict()), entry.stored_at, entry.expires_at))

    def delete(self, handle: str) -> bool:
        """
        Remove the entry for a handle.

        Returns:
            True if an entry was removed
        """
        with self.transaction() as cursor:
            cursor.execute("DELETE FROM age_cache WHERE handle = ?", (handle,))
            return cursor.rowcount > 0

    def load(self, now: float) -> Dict[str, CacheEntry]:
        """
        Load every live entry, oldest first.

        Expired rows and rows that fail to deserialize are deleted.

        Args:
            now: Current epoch time

        Returns:
            Mapping of handle to entry, in storage order
        """
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT handle, payload, expires_at FROM age_cache ORDER BY stored_at ASC"
        )

        entries: Dict[str, CacheEntry] = {}
        stale: List[str] = []

        for row in cursor.fetchall():
            handle = row['handle']
            if now > row['expires_at']:
                stale.append(handle)
                continue

            try:
                entries[handle] = self._decode(row['payload'])
            except CacheCorruption as e:
                logging.warning(f"Discarding corrupt cache entry for u/{handle}: {e}")
                stale.append(handle)

        if stale:
            with self.transaction() as cursor:
                cursor.executemany("DELETE FROM age_cache WHERE handle = ?", [(h,) for h in stale])
            logging.debug(f"Removed {len(stale)} stale or corrupt cache entries")

        logging.debug(f"Loaded {len(entries)} cache entries from {self.db_path}")
        return entries

    def _decode(self, payload: str) -> CacheEntry:
        try:
            data = json.loads(payload)
        except (TypeError, ValueError) as e:
            raise CacheCorruption(f"Invalid JSON: {e}") from e
        return CacheEntry.from_dict(data)

    def clear(self) -> int:
        """
        Remove every entry.

        Returns:
            Number of entries removed
        """
        with self.transaction() as cursor:
            cursor.execute("DELETE FROM age_cache")
            count = cursor.rowcount

        logging.info(f"Cleared {count} cached entries")
        return count

    def get_stats(self, now: float) -> Dict[str, Any]:
        """
        Get store statistics.

        Returns:
            Dictionary with total, live and expired entry counts
        """
        cursor = self.conn.cursor()

        cursor.execute("SELECT COUNT(*) FROM age_cache")
        total = cursor.fetchone()[0]

        cursor.execute("SELECT COUNT(*) FROM age_cache WHERE expires_at < ?", (now,))
        expired = cursor.fetchone()[0]

        cursor.execute("SELECT MIN(stored_at), MAX(stored_at) FROM age_cache")
        oldest, newest = cursor.fetchone()

        return {
            'total_entries': total,
            'live_entries': total - expired,
            'expired_entries': expired,
            'oldest_stored_at': oldest,
            'newest_stored_at': newest,
        }

    def vacuum(self) -> Dict[str, float]:
        """
        Compact database and reclaim space from deleted rows.

        Returns:
            Dictionary with size before and after in MB
        """
        size_before = os.path.getsize(self.db_path)

        logging.info("Compacting cache store (VACUUM)...")
        self.conn.execute("VACUUM")

        size_after = os.path.getsize(self.db_path)

        size_before_mb = size_before / (1024 * 1024)
        size_after_mb = size_after / (1024 * 1024)
        saved_mb = size_before_mb - size_after_mb

        logging.info(f"✓ Cache store compacted: {size_before_mb:.1f}MB → {size_after_mb:.1f}MB (saved {saved_mb:.1f}MB)")

        return {
            'size_before_mb': size_before_mb,
            'size_after_mb': size_after_mb,
            'saved_mb': saved_mb
        }

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logging.debug("Cache store connection closed")
