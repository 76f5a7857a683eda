"""
report.py — Read-only views of the ledger: progress status and hash spot checks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from rich.console import Console
from rich.table import Table

from copyverify.hashing import compute_sha256
from copyverify.ledger import Ledger, LedgerCoverage, Side
from copyverify.pipeline import RunSummary

console = Console()


def _pct(part: int, whole: int) -> str:
    return f"{100.0 * part / whole:.1f}%" if whole else "—"


def print_coverage(ledger: Ledger, coverage: LedgerCoverage, where_clause: str | None = None) -> None:
    console.rule(f"[bold]Ledger {ledger.table_name}")
    if where_clause:
        console.print(f"🔎 Filter: {where_clause}")
    if coverage.total == 0:
        console.print("🗃️  Ledger is empty — run `copyverify run` to populate it.")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Side")
    table.add_column("Hashed", justify="right")
    table.add_column("Pending", justify="right")
    table.add_column("Coverage", justify="right")
    for side in (Side.NEW, Side.OLD):
        hashed = coverage.hashed_new if side is Side.NEW else coverage.hashed_old
        table.add_row(side.column, f"{hashed:,}", f"{coverage.pending(side):,}",
                      _pct(hashed, coverage.total))
    console.print(table)
    console.print(f"📦 Files: {coverage.total:,} ({coverage.total_bytes / 1024 / 1024:.1f} MB)")
    console.print(f"🔗 Both sides hashed: {coverage.matched:,}")
    if coverage.matched == coverage.total:
        console.print("✅ Every file has been hashed on both sides.")


def print_run_summary(summary: RunSummary) -> None:
    console.rule("[bold]Run complete" if not summary.interrupted else "[bold yellow]Run interrupted")
    if summary.enumerated is not None:
        e = summary.enumerated
        line = f"📁 Enumerated {e.files:,} files in {e.directories:,} directories"
        if e.skipped:
            line += f" ({e.skipped:,} unreadable entries skipped)"
        console.print(line)
    for phase in summary.phases:
        console.print(
            f"🔐 {phase.side.column}: {phase.hashed:,} hashed, {phase.failed:,} failed, "
            f"{phase.bytes_hashed / 1024 / 1024:.1f} MB in {phase.duration_seconds:.1f}s"
        )
        if phase.already_hashed:
            console.print(f"   {phase.already_hashed:,} were already recorded")
    if summary.failed:
        console.print(f"⚠️  {summary.failed:,} files could not be hashed; they stay pending for the next run.")
    console.print(f"⏱️  Duration: {summary.duration_seconds:.1f}s")


@dataclass
class SpotCheckResult:
    """Outcome of recomputing a sample of recorded hashes."""
    side: Side
    sampled: int = 0
    mismatches: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.mismatches and not self.errors


def spot_check(ledger: Ledger, side: Side, root: Path, sample: int = 50,
               where_clause: str | None = None) -> SpotCheckResult:
    """
    Re-hash a random sample of files whose side hash is recorded.

    A mismatch means the file on disk changed after it was hashed (or the
    ledger was edited); an error means it can no longer be read.
    """
    result = SpotCheckResult(side=side)
    rows = ledger.sample_hashed(side, sample, where_clause)
    result.sampled = len(rows)
    if not rows:
        console.print(f"🔍 {side.column}: no recorded hashes to check")
        return result

    console.print(f"🔍 {side.column}: sampling {len(rows)} files under {root}")
    for filename, expected in rows:
        path = Path(root) / filename
        try:
            actual = compute_sha256(path)
        except OSError as exc:
            result.errors.append(filename)
            console.print(f"⚠️  Error hashing {path}: {exc}")
            continue
        if actual != expected:
            result.mismatches.append(filename)
            console.print(f"❌ {side.column} mismatch: {filename}")

    if result.ok:
        console.print("✅ All sampled hashes match")
    else:
        console.print(f"⚠️  Mismatches: {len(result.mismatches)}, Errors: {len(result.errors)}")
    return result
