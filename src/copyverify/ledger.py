"""
ledger.py — The durable table of discovered files and their two hashes.

Every phase coordinates through this table: the enumerator fills it once,
and each hashing phase only ever selects rows whose side column is still
NULL, which is what makes re-runs resume where the last one stopped.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator

from copyverify.errors import LedgerError
from copyverify.store import ConnectionPool


class Side(str, Enum):
    """Which tree a hash belongs to: destination ("new") or source ("old")."""
    NEW = "new"
    OLD = "old"

    @property
    def column(self) -> str:
        return f"hash_{self.value}"


@dataclass
class LedgerCoverage:
    """Row counts describing how far verification has progressed."""
    total: int
    hashed_new: int
    hashed_old: int
    matched: int
    total_bytes: int

    @property
    def pending_new(self) -> int:
        return self.total - self.hashed_new

    @property
    def pending_old(self) -> int:
        return self.total - self.hashed_old

    def pending(self, side: Side) -> int:
        return self.pending_new if side is Side.NEW else self.pending_old


def quote_identifier(name: str) -> str:
    """Quote a table name for safe interpolation into SQL."""
    if not name or "\x00" in name:
        raise LedgerError(f"invalid table name: {name!r}")
    return '"' + name.replace('"', '""') + '"'


PENDING_PAGE_SIZE = 1000


def _filter_sql(where_clause: str | None) -> str:
    return f" AND ({where_clause})" if where_clause else ""


class Ledger:
    """
    Ledger table accessed through a shared connection pool.

    Args:
        pool: Connection pool for the ledger database
        table_name: Unquoted table name
    """

    def __init__(self, pool: ConnectionPool, table_name: str = "files"):
        self.pool = pool
        self.table_name = table_name
        self._table = quote_identifier(table_name)

    def ensure_schema(self) -> None:
        """Create the ledger table if it does not exist yet."""
        with self.pool.connection() as conn:
            try:
                with conn:
                    conn.execute(f"""
                        CREATE TABLE IF NOT EXISTS {self._table} (
                            filename TEXT,
                            changed TIMESTAMP,
                            size BIGINT,
                            hash_new TEXT,
                            hash_old TEXT
                        )
                    """)
                    # Point updates look rows up by filename
                    conn.execute(
                        f"CREATE INDEX IF NOT EXISTS {quote_identifier(self.table_name + '_filename_idx')} "
                        f"ON {self._table}(filename)"
                    )
            except sqlite3.Error as e:
                raise LedgerError(f"cannot create table {self.table_name}: {e}") from e

    def _scalar(self, query: str, params=()) -> int:
        with self.pool.connection() as conn:
            try:
                row = conn.execute(query, params).fetchone()
            except sqlite3.Error as e:
                raise LedgerError(f"query failed on {self.table_name}: {e}") from e
        return row[0] or 0

    def exists(self) -> bool:
        with self.pool.connection() as conn:
            try:
                row = conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
                    (self.table_name,),
                ).fetchone()
            except sqlite3.Error as e:
                raise LedgerError(f"cannot inspect schema: {e}") from e
        return row is not None

    def count(self) -> int:
        return self._scalar(f"SELECT COUNT(*) FROM {self._table}")

    def bulk_insert(self, rows: Iterable[tuple]) -> int:
        """
        Insert (filename, size, changed) rows in a single transaction.

        Either every row is committed or none is.

        Returns:
            int: Number of rows inserted
        """
        rows = list(rows)
        with self.pool.connection() as conn:
            try:
                with conn:
                    conn.executemany(
                        f"INSERT INTO {self._table} (filename, size, changed) VALUES (?, ?, ?)",
                        rows,
                    )
            except (sqlite3.Error, UnicodeError) as e:
                raise LedgerError(f"bulk insert into {self.table_name} failed: {e}") from e
        return len(rows)

    def count_pending(self, side: Side, where_clause: str | None = None) -> int:
        return self._scalar(
            f"SELECT COUNT(*) FROM {self._table} "
            f"WHERE {side.column} IS NULL{_filter_sql(where_clause)}"
        )

    def pending_query(self, side: Side, where_clause: str | None = None) -> str:
        return (
            f"SELECT filename FROM {self._table} "
            f"WHERE {side.column} IS NULL{_filter_sql(where_clause)}"
        )

    def select_pending(self, side: Side, where_clause: str | None = None,
                       page_size: int = PENDING_PAGE_SIZE) -> Iterator[str]:
        """
        Lazily yield filenames still missing a hash for this side.

        Rows are read in rowid order, one page per short read, so no read
        snapshot stays open while workers commit hashes and the WAL can be
        checkpointed between pages.
        """
        query = (
            f"SELECT rowid, filename FROM {self._table} "
            f"WHERE {side.column} IS NULL AND rowid > ?{_filter_sql(where_clause)} "
            f"ORDER BY rowid LIMIT ?"
        )
        last_rowid = 0
        while True:
            with self.pool.connection() as conn:
                try:
                    rows = conn.execute(query, (last_rowid, page_size)).fetchall()
                except sqlite3.Error as e:
                    raise LedgerError(f"pending query failed: {e}") from e
            for row in rows:
                yield row[1]
            if len(rows) < page_size:
                return
            last_rowid = rows[-1][0]

    def set_hash(self, filename: str, side: Side, digest: str) -> bool:
        """
        Record a digest for one file, only if that side is still NULL.

        Returns:
            bool: True if a row was updated
        """
        column = side.column
        with self.pool.connection() as conn:
            try:
                with conn:
                    cursor = conn.execute(
                        f"UPDATE {self._table} SET {column} = ? "
                        f"WHERE filename = ? AND {column} IS NULL",
                        (digest, filename),
                    )
            except (sqlite3.Error, UnicodeError) as e:
                raise LedgerError(f"cannot store {column} for {filename}: {e}") from e
        return cursor.rowcount > 0

    def coverage(self, where_clause: str | None = None) -> LedgerCoverage:
        where = f" WHERE ({where_clause})" if where_clause else ""
        with self.pool.connection() as conn:
            try:
                row = conn.execute(f"""
                    SELECT COUNT(*),
                           COUNT(hash_new),
                           COUNT(hash_old),
                           COALESCE(SUM(CASE WHEN hash_new IS NOT NULL
                                             AND hash_old IS NOT NULL THEN 1 ELSE 0 END), 0),
                           COALESCE(SUM(size), 0)
                    FROM {self._table}{where}
                """).fetchone()
            except sqlite3.Error as e:
                raise LedgerError(f"coverage query failed on {self.table_name}: {e}") from e
        return LedgerCoverage(
            total=row[0],
            hashed_new=row[1],
            hashed_old=row[2],
            matched=row[3],
            total_bytes=row[4],
        )

    def sample_hashed(self, side: Side, limit: int,
                      where_clause: str | None = None) -> list[tuple[str, str]]:
        """Random (filename, digest) pairs whose side hash is already recorded."""
        column = side.column
        with self.pool.connection() as conn:
            try:
                rows = conn.execute(
                    f"SELECT filename, {column} FROM {self._table} "
                    f"WHERE {column} IS NOT NULL{_filter_sql(where_clause)} ORDER BY RANDOM() LIMIT ?",
                    (limit,),
                ).fetchall()
            except sqlite3.Error as e:
                raise LedgerError(f"sample query failed on {self.table_name}: {e}") from e
        return [(r[0], r[1]) for r in rows]
