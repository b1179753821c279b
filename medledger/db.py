"""
Database module for MedLedger.

Provides SQLite-based storage for records, provider keys, the owner
index, the record id counter and the hash-chained audit log.

One ``RegistryDatabase`` is the single shared state of a registry.
All access goes through one connection guarded by a re-entrant
lock, so callers are serialized. Mutating operations run inside
``transaction()``: nested transactions join the outermost one under
a savepoint, and an exception rolls back every change made since the failing
block began.
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterator, List

TABLES = ("records", "provider_keys", "owner_index", "counters", "audit_log")


class RegistryDatabase:
    """Single-writer SQLite store shared by all registry components."""

    def __init__(self, path: str = ":memory:"):
        self.path = path
        self._lock = threading.RLock()
        self._depth = 0
        self._on_commit: List[Callable[[], None]] = []

        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)

        # Autocommit mode; transactions are opened explicitly below.
        conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        if path != ":memory:":
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA foreign_keys=ON;")
        conn.row_factory = sqlite3.Row
        self._conn = conn

        self.init_schema()

    # ------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block atomically.

        Commits on success, rolls back on failure. A nested block runs
        under a SAVEPOINT, so its failure undoes only its own writes
        even if an enclosing block catches the error and carries on.
        Callbacks queued with ``on_commit`` run after the outermost
        commit and are dropped along with the block that queued them.
        """
        with self._lock:
            depth = self._depth
            queued = len(self._on_commit)
            savepoint = f"sp_{depth}"
            if depth == 0:
                self._conn.execute("BEGIN IMMEDIATE")
            else:
                self._conn.execute(f"SAVEPOINT {savepoint}")
            self._depth += 1
            try:
                yield self._conn
            except BaseException:
                self._depth -= 1
                if depth == 0:
                    self._conn.execute("ROLLBACK")
                    self._on_commit.clear()
                else:
                    self._conn.execute(f"ROLLBACK TO {savepoint}")
                    self._conn.execute(f"RELEASE {savepoint}")
                    del self._on_commit[queued:]
                raise
            self._depth -= 1
            if depth == 0:
                self._conn.execute("COMMIT")
                callbacks, self._on_commit = self._on_commit, []
                for callback in callbacks:
                    callback()
            else:
                self._conn.execute(f"RELEASE {savepoint}")

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Serialized read access; never opens a write transaction."""
        with self._lock:
            yield self._conn

    def in_transaction(self) -> bool:
        return self._depth > 0

    def on_commit(self, callback: Callable[[], None]) -> None:
        """Queue a callback for after the current transaction commits."""
        if not self.in_transaction():
            raise RuntimeError("on_commit called outside a transaction")
        self._on_commit.append(callback)

    # ------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------

    def init_schema(self) -> None:
        """
        Initialize database schema with proper indexes.
        Safe to call multiple times (uses IF NOT EXISTS).
        """
        with self.transaction() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS records (
                record_id INTEGER PRIMARY KEY,
                content_locator TEXT NOT NULL,
                content_digest BLOB NOT NULL,
                created_at INTEGER NOT NULL,
                creator TEXT NOT NULL,
                active INTEGER NOT NULL DEFAULT 1
            );""")

            conn.execute("""
            CREATE TABLE IF NOT EXISTS provider_keys (
                record_id INTEGER NOT NULL REFERENCES records(record_id),
                provider TEXT NOT NULL,
                encrypted_key BLOB NOT NULL,
                PRIMARY KEY (record_id, provider)
            );""")

            # Historical list; rows are never deleted.
            conn.execute("""
            CREATE TABLE IF NOT EXISTS owner_index (
                owner TEXT NOT NULL,
                position INTEGER NOT NULL,
                record_id INTEGER NOT NULL REFERENCES records(record_id),
                PRIMARY KEY (owner, position)
            );""")

            conn.execute("""
            CREATE TABLE IF NOT EXISTS counters (
                name TEXT PRIMARY KEY,
                value INTEGER NOT NULL
            );""")

            conn.execute("""
            CREATE TABLE IF NOT EXISTS audit_log (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                kind TEXT NOT NULL,
                record_id INTEGER NOT NULL,
                patient TEXT,
                provider TEXT,
                payload_json TEXT NOT NULL,
                occurred_at INTEGER NOT NULL,
                payload_hash TEXT NOT NULL,
                prev_entry_hash TEXT,
                entry_hash TEXT NOT NULL
            );""")
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_audit_log_record
            ON audit_log(record_id);""")

    # ------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------

    def next_value(self, name: str) -> int:
        """
        Increment and return a named counter, starting at 1.

        Must run inside a transaction so a rolled-back caller does
        not consume a value.
        """
        if not self.in_transaction():
            raise RuntimeError("counters may only advance inside a transaction")
        self._conn.execute(
            "INSERT INTO counters(name, value) VALUES(?, 1) "
            "ON CONFLICT(name) DO UPDATE SET value = value + 1",
            (name,)
        )
        row = self._conn.execute("SELECT value FROM counters WHERE name=?", (name,)).fetchone()
        return row["value"]

    # ------------------------------------------------------------
    # Metrics and Health
    # ------------------------------------------------------------

    def stats(self) -> Dict[str, int]:
        """Get database statistics for monitoring."""
        stats = {}
        with self.read() as conn:
            for table in TABLES:
                cur = conn.execute(f"SELECT COUNT(*) AS cnt FROM {table}")
                stats[f"{table}_count"] = cur.fetchone()["cnt"]
        return stats

    # ------------------------------------------------------------
    # Test Support
    # ------------------------------------------------------------

    def reset(self) -> None:
        """
        Reset the database for test isolation.
        Clears all tables but preserves schema.
        """
        with self.transaction() as conn:
            for table in ("provider_keys", "owner_index", "audit_log", "counters", "records"):
                conn.execute(f"DELETE FROM {table}")
            conn.execute("DELETE FROM sqlite_sequence WHERE name='audit_log'")

    def close(self) -> None:
        with self._lock:
            self._conn.close()
