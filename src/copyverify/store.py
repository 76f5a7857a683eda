"""
store.py — Pooled SQLite connections shared by every phase.

Connections are opened lazily with check_same_thread=False so any worker
thread may borrow one, and run in WAL mode: the orchestrator streams the
pending query on one connection while hash workers commit point updates on
others.
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path

from copyverify.errors import StoreError

DEFAULT_BUSY_TIMEOUT = 30.0


class ConnectionPool:
    """
    Bounded pool of SQLite connections to one database file.

    Args:
        db_path: SQLite database file (parent directories are created)
        max_connections: Max connections lent out at once; 0 means unbounded
        idle_connections: Max released connections kept open for reuse
        timeout: Busy timeout in seconds for each connection
    """

    def __init__(self, db_path: Path, max_connections: int = 0,
                 idle_connections: int = 2, timeout: float = DEFAULT_BUSY_TIMEOUT):
        self.db_path = Path(db_path)
        self.max_connections = max_connections
        self.idle_connections = idle_connections
        self.timeout = timeout
        self._idle: list[sqlite3.Connection] = []
        self._lock = threading.Lock()
        self._slots = threading.BoundedSemaphore(max_connections) if max_connections else None
        self._closed = False
        self.in_use = 0
        self.peak_in_use = 0

    def _open(self) -> sqlite3.Connection:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path), timeout=self.timeout,
                                   check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
        except (OSError, sqlite3.Error) as e:
            raise StoreError(f"cannot open ledger database {self.db_path}: {e}") from e
        return conn

    def acquire(self) -> sqlite3.Connection:
        """Borrow a connection, blocking while max_connections are lent out."""
        if self._closed:
            raise StoreError("connection pool is closed")
        if self._slots is not None:
            self._slots.acquire()
        try:
            with self._lock:
                conn = self._idle.pop() if self._idle else None
            if conn is None:
                conn = self._open()
        except BaseException:
            if self._slots is not None:
                self._slots.release()
            raise
        with self._lock:
            self.in_use += 1
            self.peak_in_use = max(self.peak_in_use, self.in_use)
        return conn

    def release(self, conn: sqlite3.Connection) -> None:
        """Return a borrowed connection; anything left uncommitted is rolled back."""
        try:
            if conn.in_transaction:
                conn.rollback()
        finally:
            with self._lock:
                self.in_use -= 1
                keep = not self._closed and len(self._idle) < self.idle_connections
                if keep:
                    self._idle.append(conn)
            if not keep:
                conn.close()
            if self._slots is not None:
                self._slots.release()

    @contextmanager
    def connection(self):
        """Lend a connection for the duration of a with-block."""
        conn = self.acquire()
        try:
            yield conn
        finally:
            self.release(conn)

    def ping(self) -> None:
        """Round-trip a trivial query; raises StoreError when the database is unusable."""
        with self.connection() as conn:
            try:
                conn.execute("SELECT 1").fetchone()
            except sqlite3.Error as e:
                raise StoreError(f"ping failed for {self.db_path}: {e}") from e

    def close(self) -> None:
        with self._lock:
            self._closed = True
            idle, self._idle = self._idle, []
        for conn in idle:
            conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
