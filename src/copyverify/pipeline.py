"""
pipeline.py — Sequence the enumerate, hash-new and hash-old phases.

Each phase finishes completely before the next starts, because each one
selects its work from state the previous one wrote. Progress lives in the
ledger rows themselves, so running the pipeline again simply continues.
"""

from __future__ import annotations

import logging
import time
from contextlib import closing
from dataclasses import dataclass, field
from pathlib import Path

from copyverify.config import Config
from copyverify.enumerate import DirectoryEnumerator, EnumerationStats
from copyverify.hashing import HashWorkerPool, PhaseStats
from copyverify.ledger import Ledger, Side
from copyverify.store import ConnectionPool

logger = logging.getLogger("copyverify.pipeline")


@dataclass
class VerifyContext:
    """Everything one pipeline run needs, passed explicitly to each phase."""
    ledger: Ledger
    new_root: Path
    old_root: Path
    where_clause: str = ""
    hash_workers: int = 8
    walk_workers: int = 16
    skip_unreadable: bool = False
    progress: bool = False

    def root_for(self, side: Side) -> Path:
        return self.new_root if side is Side.NEW else self.old_root

    @classmethod
    def from_config(cls, cfg: Config, pool: ConnectionPool, progress: bool = False) -> "VerifyContext":
        return cls(
            ledger=Ledger(pool, cfg.table_name),
            new_root=cfg.new_path,
            old_root=cfg.old_path,
            where_clause=cfg.where_clause,
            hash_workers=cfg.hash_workers,
            walk_workers=cfg.walk_workers,
            skip_unreadable=cfg.skip_unreadable,
            progress=progress,
        )


@dataclass
class RunSummary:
    """What a pipeline run did."""
    enumerated: EnumerationStats | None = None
    phases: list[PhaseStats] = field(default_factory=list)
    interrupted: bool = False
    duration_seconds: float = 0.0

    @property
    def failed(self) -> int:
        return sum(p.failed for p in self.phases)


def populate_if_empty(ctx: VerifyContext) -> EnumerationStats | None:
    """Run the enumerator only when the ledger has no rows yet."""
    ctx.ledger.ensure_schema()
    rows = ctx.ledger.count()
    if rows:
        logger.info(f"🗃️  Ledger {ctx.ledger.table_name} already holds {rows:,} files; skipping walk")
        return None

    logger.info(f"🗃️  Ledger {ctx.ledger.table_name} is empty, starting file walk")
    enumerator = DirectoryEnumerator(ctx.new_root, workers=ctx.walk_workers,
                                     skip_unreadable=ctx.skip_unreadable)
    return enumerator.run(ctx.ledger)


def hash_side(ctx: VerifyContext, side: Side) -> PhaseStats:
    """Hash every pending row for one side, optionally narrowed by the filter."""
    where = ctx.where_clause or None
    logger.info(f"🔎 Statement of work: {ctx.ledger.pending_query(side, where)}")
    total = ctx.ledger.count_pending(side, where) if ctx.progress else None

    pool = HashWorkerPool(ctx.ledger, side, ctx.root_for(side),
                          workers=ctx.hash_workers, progress=ctx.progress)
    with closing(ctx.ledger.select_pending(side, where)) as pending:
        return pool.run(pending, total=total)


def run_pipeline(ctx: VerifyContext, sides: tuple[Side, ...] = (Side.NEW, Side.OLD),
                 skip_enumerate: bool = False) -> RunSummary:
    """
    Run enumerate-if-empty, then hash each requested side in order.

    Fatal errors (store, schema, query, walk) propagate to the caller and
    leave the ledger as the last committed transaction left it.
    """
    started = time.monotonic()
    summary = RunSummary()

    if skip_enumerate:
        ctx.ledger.ensure_schema()
    else:
        summary.enumerated = populate_if_empty(ctx)

    for side in sides:
        stats = hash_side(ctx, side)
        summary.phases.append(stats)
        if stats.interrupted:
            summary.interrupted = True
            logger.warning("⚠️ Run interrupted; remaining phases skipped")
            break

    summary.duration_seconds = time.monotonic() - started
    return summary
