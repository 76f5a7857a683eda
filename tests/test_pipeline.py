"""
End-to-end tests for the enumerate → hash new → hash old pipeline.

Covers:
- First run populates and hashes both sides
- Re-runs never duplicate rows or re-hash finished rows
- Filtered runs only touch matching rows
- Unreadable files stay pending and converge once fixed
"""

import hashlib
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from copyverify import hashing
from copyverify.config import build_config
from copyverify.errors import EnumerationError
from copyverify.ledger import Ledger, Side
from copyverify.pipeline import VerifyContext, run_pipeline
from copyverify.store import ConnectionPool

EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


def _make_tree(root: Path):
    (root / "sub").mkdir(parents=True)
    (root / "a.txt").write_bytes(b"abcd")
    (root / "sub" / "b.txt").write_bytes(b"")


@pytest.fixture
def test_env():
    """Identical source and destination trees plus an empty ledger."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        new, old = base / "new", base / "old"
        _make_tree(new)
        _make_tree(old)
        pool = ConnectionPool(base / "ledger.db", max_connections=4)
        ctx = VerifyContext(ledger=Ledger(pool), new_root=new, old_root=old,
                            hash_workers=3, walk_workers=2)
        yield ctx
        pool.close()


def _rows(ctx):
    with ctx.ledger.pool.connection() as conn:
        return {
            r["filename"]: dict(r)
            for r in conn.execute("SELECT filename, size, hash_new, hash_old FROM files")
        }


def test_enumeration_only_records_both_files(test_env):
    summary = run_pipeline(test_env, sides=())
    rows = _rows(test_env)

    assert summary.enumerated.files == 2
    assert set(rows) == {"a.txt", "sub/b.txt"}
    assert rows["a.txt"]["size"] == 4
    assert rows["sub/b.txt"]["size"] == 0
    assert all(r["hash_new"] is None and r["hash_old"] is None for r in rows.values())


def test_full_run_hashes_both_sides(test_env):
    summary = run_pipeline(test_env)
    rows = _rows(test_env)

    abcd = hashlib.sha256(b"abcd").hexdigest()
    assert rows["a.txt"]["hash_new"] == abcd
    assert rows["a.txt"]["hash_old"] == abcd
    assert rows["sub/b.txt"]["hash_new"] == EMPTY_SHA256
    assert rows["sub/b.txt"]["hash_old"] == EMPTY_SHA256
    assert [p.side for p in summary.phases] == [Side.NEW, Side.OLD]
    assert summary.failed == 0
    assert not summary.interrupted


def test_rerun_does_not_duplicate_rows(test_env):
    run_pipeline(test_env)
    (test_env.new_root / "late.txt").write_text("added after first run")

    summary = run_pipeline(test_env)

    assert summary.enumerated is None
    assert test_env.ledger.count() == 2
    assert all(p.queued == 0 for p in summary.phases)


def test_rerun_only_hashes_remaining_rows(test_env):
    run_pipeline(test_env, sides=())
    test_env.ledger.set_hash("a.txt", Side.NEW, "ab" * 32)

    with patch("copyverify.hashing.hash_file", wraps=hashing.hash_file) as spy:
        run_pipeline(test_env, sides=(Side.NEW,))

    hashed = [Path(c.args[0]).name for c in spy.call_args_list]
    assert hashed == ["b.txt"]
    # Already-recorded hashes are never overwritten
    assert _rows(test_env)["a.txt"]["hash_new"] == "ab" * 32


def test_filtered_run_leaves_other_rows_pending(test_env):
    test_env.where_clause = "filename like 'sub/%'"
    run_pipeline(test_env)
    rows = _rows(test_env)

    assert rows["sub/b.txt"]["hash_new"] == EMPTY_SHA256
    assert rows["sub/b.txt"]["hash_old"] == EMPTY_SHA256
    assert rows["a.txt"]["hash_new"] is None
    assert rows["a.txt"]["hash_old"] is None


def test_missing_source_file_converges_on_later_run(test_env):
    (test_env.old_root / "a.txt").unlink()

    first = run_pipeline(test_env)
    assert first.phases[1].failed == 1
    assert test_env.ledger.count_pending(Side.OLD) == 1

    (test_env.old_root / "a.txt").write_bytes(b"abcd")
    second = run_pipeline(test_env)
    assert second.phases[0].queued == 0
    assert second.phases[1].hashed == 1
    assert test_env.ledger.count_pending(Side.NEW) == 0
    assert test_env.ledger.count_pending(Side.OLD) == 0


def test_pending_counts_never_grow_across_runs(test_env):
    (test_env.new_root / "sub" / "b.txt").unlink()
    run_pipeline(test_env, sides=())
    (test_env.new_root / "sub" / "b.txt").write_bytes(b"")

    before = test_env.ledger.coverage()
    run_pipeline(test_env)
    after = test_env.ledger.coverage()
    run_pipeline(test_env)
    final = test_env.ledger.coverage()

    assert after.pending_new <= before.pending_new
    assert final.pending_new <= after.pending_new
    assert final.pending_old == 0


def test_failed_walk_leaves_ledger_empty_and_next_run_retries(test_env):
    with patch("copyverify.enumerate.DirectoryEnumerator.walk",
               side_effect=EnumerationError("/x", PermissionError("denied"))):
        with pytest.raises(EnumerationError):
            run_pipeline(test_env)
    assert test_env.ledger.count() == 0

    summary = run_pipeline(test_env)
    assert summary.enumerated.files == 2


def test_interrupted_phase_skips_remaining_phases(test_env):
    real_run = hashing.HashWorkerPool.run

    def interrupted_run(self, filenames, total=None):
        stats = real_run(self, filenames, total)
        stats.interrupted = True
        return stats

    with patch.object(hashing.HashWorkerPool, "run", interrupted_run):
        summary = run_pipeline(test_env)

    assert summary.interrupted
    assert [p.side for p in summary.phases] == [Side.NEW]
    assert test_env.ledger.count_pending(Side.OLD) == 2


def test_context_from_config(tmp_path):
    cfg = build_config(new_path=tmp_path / "n", old_path=tmp_path / "o",
                       db_path=tmp_path / "l.db", table_name="run1",
                       where_clause="size > 0", hash_workers=5)
    with ConnectionPool(cfg.db_path) as pool:
        ctx = VerifyContext.from_config(cfg, pool)
        assert ctx.ledger.table_name == "run1"
        assert ctx.root_for(Side.NEW) == tmp_path / "n"
        assert ctx.root_for(Side.OLD) == tmp_path / "o"
        assert ctx.where_clause == "size > 0"
        assert ctx.hash_workers == 5
