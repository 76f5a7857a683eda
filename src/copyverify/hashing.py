"""
hashing.py — SHA-256 worker pool for one side of the comparison.

The caller streams pending filenames into a bounded queue (capacity equal
to the worker count, so a slow pool throttles the pending query). Each
worker hashes root/filename and writes the digest into the side's column.
A file that cannot be read, or whose update fails, is logged and left
NULL; the next run selects it again.
"""

from __future__ import annotations

import hashlib
import logging
import queue
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from tqdm import tqdm

from copyverify.errors import LedgerError
from copyverify.ledger import Ledger, Side

logger = logging.getLogger("copyverify.hashing")

CHUNK_SIZE = 1024 * 1024
DEFAULT_HASH_WORKERS = 8


def hash_file(path: Path) -> tuple[str, int]:
    """Return (lowercase hex SHA-256, bytes read) for a file."""
    h = hashlib.sha256()
    nbytes = 0
    with open(path, "rb") as f:
        while chunk := f.read(CHUNK_SIZE):
            h.update(chunk)
            nbytes += len(chunk)
    return h.hexdigest(), nbytes


def compute_sha256(path: Path) -> str:
    return hash_file(path)[0]


@dataclass
class PhaseStats:
    """Outcome of one hashing phase."""
    side: Side
    queued: int = 0
    hashed: int = 0
    already_hashed: int = 0
    failed: int = 0
    bytes_hashed: int = 0
    duration_seconds: float = 0.0
    interrupted: bool = False


class HashWorkerPool:
    """
    Fixed-size pool hashing files under one tree root.

    Args:
        ledger: Ledger receiving the digests
        side: Which hash column to fill
        root: Tree root that filenames are relative to
        workers: Pool size (also the work queue capacity)
        progress: Show a tqdm progress bar
    """

    def __init__(self, ledger: Ledger, side: Side, root: Path,
                 workers: int = DEFAULT_HASH_WORKERS, progress: bool = False):
        self.ledger = ledger
        self.side = side
        self.root = Path(root)
        self.workers = max(1, workers)
        self.progress = progress
        self.stats = PhaseStats(side=side)
        self._queue: queue.Queue = queue.Queue(maxsize=self.workers)
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._fatal: BaseException | None = None
        self._bar = None

    def _record(self, *, hashed: int = 0, already: int = 0, failed: int = 0, nbytes: int = 0) -> None:
        with self._lock:
            self.stats.hashed += hashed
            self.stats.already_hashed += already
            self.stats.failed += failed
            self.stats.bytes_hashed += nbytes
            if self._bar is not None:
                self._bar.update(1)

    def _hash_one(self, filename: str) -> None:
        path = self.root / filename
        try:
            digest, nbytes = hash_file(path)
        except OSError as e:
            logger.warning(f"⚠️ Error hashing {path}: {e}")
            self._record(failed=1)
            return

        try:
            updated = self.ledger.set_hash(filename, self.side, digest)
        except LedgerError as e:
            logger.warning(f"⚠️ {e}")
            self._record(failed=1)
            return

        if not updated:
            # Another run or a duplicate row already recorded this side
            logger.debug(f"{self.side.column} already set for {filename}")
            self._record(already=1)
            return
        self._record(hashed=1, nbytes=nbytes)

    def _worker(self) -> None:
        while True:
            filename = self._queue.get()
            if filename is None:
                return
            if self._stop.is_set():
                continue
            try:
                self._hash_one(filename)
            except Exception as e:
                # Store gone or similar: stop the phase, re-raised by run()
                with self._lock:
                    if self._fatal is None:
                        self._fatal = e
                self._stop.set()

    def run(self, filenames: Iterable[str], total: int | None = None) -> PhaseStats:
        """
        Hash every filename produced by the iterable; return when all are done.

        Args:
            filenames: Pending filenames, typically Ledger.select_pending
            total: Expected count, only used to size the progress bar
        """
        started = time.monotonic()
        logger.info(f"🔐 Hashing {self.side.value} side under {self.root} with {self.workers} workers")

        self._bar = tqdm(total=total, desc=f"🔐 {self.side.column}", unit="file",
                         disable=not self.progress)
        threads = [
            threading.Thread(target=self._worker, name=f"hash-{self.side.value}-{i}", daemon=True)
            for i in range(self.workers)
        ]
        for t in threads:
            t.start()

        try:
            for filename in filenames:
                if self._stop.is_set():
                    break
                self._queue.put(filename)
                self.stats.queued += 1
        except KeyboardInterrupt:
            self.stats.interrupted = True
            self._stop.set()
            logger.warning("⚠️ Hashing interrupted; finishing files already in progress...")
        finally:
            for _ in threads:
                self._queue.put(None)
            for t in threads:
                t.join()
            self._bar.close()
            self._bar = None

        self.stats.duration_seconds = time.monotonic() - started
        if self._fatal is not None:
            raise self._fatal

        logger.info(
            f"   Done: {self.stats.hashed:,} hashed, {self.stats.already_hashed:,} already set, "
            f"{self.stats.failed:,} failed "
            f"({self.stats.bytes_hashed / 1024 / 1024:.1f} MB, {self.stats.duration_seconds:.1f}s)"
        )
        return self.stats
