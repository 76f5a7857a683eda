"""
enumerate.py — Concurrent walk of the destination tree.

A fixed pool of walker threads drains a shared queue of directories. Each
directory is listed once; its subdirectories go back on the queue and its
regular files are staged as ledger rows. An in-flight counter reaches zero
when the whole tree has been listed, and only then are the staged rows
written, in one transaction.

Traversal errors abort the walk by default (nothing is written, the next
run walks again). With skip_unreadable=True they are logged and the
unreadable directory is treated as empty. A name that is not valid UTF-8
cannot be stored in the ledger and is handled the same way.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from copyverify.errors import EnumerationError
from copyverify.ledger import Ledger

logger = logging.getLogger("copyverify.enumerate")

DEFAULT_WALK_WORKERS = 16


@dataclass
class EnumerationStats:
    """Counters for one enumeration pass."""
    directories: int = 0
    files: int = 0
    bytes: int = 0
    skipped: int = 0
    duration_seconds: float = 0.0


def format_changed(mtime: float) -> str:
    """Render an mtime the way the ledger's `changed` column stores it."""
    return datetime.fromtimestamp(mtime).isoformat(sep=" ")


def printable_path(path: str) -> str:
    """Escape undecodable bytes so a path can be logged or shown."""
    return path.encode("utf-8", "backslashreplace").decode("utf-8")


class DirectoryEnumerator:
    """
    Discover every regular file under root exactly once.

    Args:
        root: Destination tree root
        workers: Number of walker threads
        skip_unreadable: Log and skip unreadable entries instead of aborting
    """

    def __init__(self, root: Path, workers: int = DEFAULT_WALK_WORKERS,
                 skip_unreadable: bool = False):
        self.root = Path(root)
        self.workers = max(1, workers)
        self.skip_unreadable = skip_unreadable
        self.stats = EnumerationStats()
        self._prefix = os.path.join(str(self.root), "")
        self._queue: queue.Queue = queue.Queue()
        self._in_flight = 0
        self._idle = threading.Condition()
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._error: EnumerationError | None = None
        self._rows: list[tuple[str, int, str]] = []

    def _relative(self, path: str) -> str:
        rel = path[len(self._prefix):]
        if os.sep != "/":
            rel = rel.replace(os.sep, "/")
        return rel

    def _submit(self, path: str) -> None:
        with self._idle:
            self._in_flight += 1
        self._queue.put(path)

    def _finish_one(self) -> None:
        with self._idle:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.notify_all()

    def _wait_idle(self) -> None:
        with self._idle:
            while self._in_flight:
                self._idle.wait()

    def _fail(self, error: EnumerationError) -> None:
        with self._lock:
            if self._error is None:
                self._error = error
        self._stop.set()

    def _unreadable(self, path: str, exc: Exception) -> None:
        if not self.skip_unreadable:
            raise EnumerationError(path, exc)
        logger.warning(f"⚠️ Skipping unreadable: {path} ({exc})")
        with self._lock:
            self.stats.skipped += 1

    def _scan_dir(self, path: str) -> None:
        try:
            with os.scandir(path) as it:
                entries = list(it)
        except OSError as e:
            self._unreadable(path, e)
            return

        subdirs = []
        rows = []
        nbytes = 0
        for entry in entries:
            # The ledger stores names as UTF-8 text
            try:
                os.fsencode(entry.name).decode("utf-8")
            except UnicodeDecodeError as e:
                self._unreadable(printable_path(entry.path), e)
                continue
            try:
                if entry.is_dir(follow_symlinks=False):
                    subdirs.append(entry.path)
                    continue
                if not entry.is_file(follow_symlinks=False):
                    continue
                st = entry.stat(follow_symlinks=False)
            except OSError as e:
                self._unreadable(entry.path, e)
                continue
            rows.append((self._relative(entry.path), st.st_size, format_changed(st.st_mtime)))
            nbytes += st.st_size

        for sub in subdirs:
            self._submit(sub)

        with self._lock:
            self._rows.extend(rows)
            self.stats.directories += 1
            self.stats.files += len(rows)
            self.stats.bytes += nbytes

    def _worker(self) -> None:
        while True:
            path = self._queue.get()
            if path is None:
                return
            try:
                if not self._stop.is_set():
                    self._scan_dir(path)
            except EnumerationError as e:
                self._fail(e)
            except Exception as e:
                self._fail(EnumerationError(path, e))
            finally:
                self._finish_one()

    def walk(self) -> list[tuple[str, int, str]]:
        """
        Walk the tree and return staged (filename, size, changed) rows.

        Raises:
            EnumerationError: root is not a directory, or a traversal error
                occurred while skip_unreadable is off
        """
        if not self.root.is_dir():
            raise EnumerationError(self.root, NotADirectoryError("not a directory"))

        started = time.monotonic()
        threads = [
            threading.Thread(target=self._worker, name=f"walk-{i}", daemon=True)
            for i in range(self.workers)
        ]
        for t in threads:
            t.start()

        try:
            self._submit(str(self.root))
            self._wait_idle()
        except BaseException:
            self._stop.set()
            self._wait_idle()
            raise
        finally:
            for _ in threads:
                self._queue.put(None)
            for t in threads:
                t.join()

        self.stats.duration_seconds = time.monotonic() - started
        if self._error is not None:
            raise self._error
        return self._rows

    def run(self, ledger: Ledger) -> EnumerationStats:
        """Walk the tree, then write every staged row to the ledger in one transaction."""
        logger.info(f"📁 Walking {self.root} with {self.workers} walkers")
        rows = self.walk()
        logger.info(
            f"📁 Walk done: {self.stats.files:,} files in {self.stats.directories:,} directories "
            f"({self.stats.bytes / 1024 / 1024:.1f} MB)"
        )
        inserted = ledger.bulk_insert(rows)
        logger.info(f"🗃️  Recorded {inserted:,} files in ledger")
        return self.stats
