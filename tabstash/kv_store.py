"""
Key-value store using SQLite.

Every engine key (``urls``, ``savedTabs``, ``customProjects``, ...) is one
row holding a JSON document and a version counter. Writers never update
a row in place without checking its version: ``commit()`` is an
optimistic compare-and-swap over any number of keys, executed inside a
single IMMEDIATE transaction so that concurrent processes sharing the
database file either see all of a commit or none of it.

Change notifications are delivered in-process to subscribed listeners
after each successful write.
"""

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageChange:
    """Old and new value of one key in a write."""
    old_value: Optional[Any]
    new_value: Optional[Any]


class KeyValueStore:
    """
    SQLite-backed key -> JSON document store with per-key versions.

    Versions start at 1 on first write and increase by one per write.
    A key that has never been written (or was deleted) has version 0.
    """

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to SQLite database file
        """
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._listeners: list[Callable] = []
        self._listeners_lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        # isolation_level=None gives us manual transaction control
        # so we can use BEGIN IMMEDIATE for compare-and-swap
        self._conn = sqlite3.connect(
            str(self._db_path), check_same_thread=False,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row

        # WAL for concurrent readers alongside one writer across processes
        self._conn.execute("PRAGMA journal_mode=WAL")
        # Wait up to 5 seconds for locks instead of failing immediately
        self._conn.execute("PRAGMA busy_timeout=5000")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value_json TEXT NOT NULL,
                version INTEGER NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

    def _now(self) -> str:
        """Current timestamp in ISO format."""
        return datetime.now(timezone.utc).isoformat()

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def _select(self, keys: list[str]) -> dict[str, tuple[Any, int]]:
        if not keys:
            return {}
        placeholders = ",".join("?" * len(keys))
        cursor = self._conn.execute(
            f"SELECT key, value_json, version FROM kv WHERE key IN ({placeholders})",
            tuple(keys),
        )
        return {
            row["key"]: (json.loads(row["value_json"]), row["version"])
            for row in cursor
        }

    def get(self, keys: list[str]) -> dict[str, Any]:
        """
        Get values for several keys.

        Returns:
            Dict mapping key -> decoded JSON value (missing keys omitted)
        """
        with self._lock:
            rows = self._select(list(keys))
        return {k: value for k, (value, _) in rows.items()}

    def get_versioned(self, keys: list[str]) -> dict[str, tuple[Optional[Any], int]]:
        """
        Get values together with their versions.

        Returns:
            Dict mapping every requested key -> (value or None, version).
            Missing keys report version 0.
        """
        with self._lock:
            rows = self._select(list(keys))
        return {k: rows.get(k, (None, 0)) for k in keys}

    def keys(self) -> list[str]:
        """List all stored keys."""
        with self._lock:
            cursor = self._conn.execute("SELECT key FROM kv ORDER BY key")
            return [row["key"] for row in cursor]

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def _write(self, values: dict[str, Any], old: dict[str, tuple[Any, int]]) -> None:
        now = self._now()
        rows = []
        for key, value in values.items():
            version = old.get(key, (None, 0))[1] + 1
            rows.append((key, json.dumps(value, ensure_ascii=False), version, now))
        self._conn.executemany("""
            INSERT OR REPLACE INTO kv (key, value_json, version, updated_at)
            VALUES (?, ?, ?, ?)
        """, rows)

    def set(self, values: dict[str, Any]) -> None:
        """Unconditionally write several keys in one transaction."""
        if not values:
            return
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                old = self._select(list(values))
                self._write(values, old)
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
        self._notify(values, old)

    def commit(self, expected: dict[str, int], writes: dict[str, Any]) -> bool:
        """
        Compare-and-swap: write ``writes`` only if every key in ``expected``
        still has the expected version.

        ``expected`` may include keys that were only read; a concurrent
        write to any of them aborts the commit.

        Returns:
            True if written, False on a version conflict (nothing written)
        """
        check_keys = list(dict.fromkeys([*expected, *writes]))
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                current = self._select(check_keys)
                for key, version in expected.items():
                    if current.get(key, (None, 0))[1] != version:
                        self._conn.rollback()
                        logger.debug(
                            "Version conflict on %s (expected %d, found %d)",
                            key, version, current.get(key, (None, 0))[1],
                        )
                        return False
                if writes:
                    self._write(writes, current)
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
        if writes:
            self._notify(writes, current)
        return True

    def delete(self, keys: list[str]) -> int:
        """
        Delete keys.

        Returns:
            Number of keys that existed and were deleted
        """
        keys = list(keys)
        if not keys:
            return 0
        placeholders = ",".join("?" * len(keys))
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                old = self._select(keys)
                cursor = self._conn.execute(
                    f"DELETE FROM kv WHERE key IN ({placeholders})", tuple(keys),
                )
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
        if old:
            self._notify({k: None for k in old}, old)
        return cursor.rowcount

    # -------------------------------------------------------------------------
    # Change notifications
    # -------------------------------------------------------------------------

    def subscribe(self, listener: Callable[[dict[str, StorageChange]], None]) -> Callable[[], None]:
        """
        Register a listener for writes made through this store.

        Returns:
            A function that removes the listener
        """
        with self._listeners_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, values: dict[str, Any], old: dict[str, tuple[Any, int]]) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        if not listeners:
            return
        changes = {
            key: StorageChange(old.get(key, (None, 0))[0], value)
            for key, value in values.items()
        }
        for listener in listeners:
            try:
                listener(changes)
            except Exception as e:
                # A broken listener must not fail the write that already happened
                logger.warning("Change listener %r failed: %s", listener, e)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        """Ensure connection is closed on garbage collection."""
        self.close()
