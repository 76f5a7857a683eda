"""
cli.py — copyverify command line.

    copyverify run --new /data/NEW --old /data/OLD --db ledger.db
    copyverify status --config config.json
    copyverify spot-check --config config.json --side old --sample 100
"""

import logging
import sys
from pathlib import Path

import click

from copyverify import __version__
from copyverify.config import build_config, load_config_file
from copyverify.errors import ConfigError, CopyVerifyError
from copyverify.ledger import Ledger, Side
from copyverify.logs import emit_run_header, setup_logging
from copyverify.pipeline import VerifyContext, run_pipeline
from copyverify.report import print_coverage, print_run_summary, spot_check
from copyverify.store import ConnectionPool

logger = logging.getLogger("copyverify.cli")

EXIT_INTERRUPTED = 130

SIDES = {
    "new": (Side.NEW,),
    "old": (Side.OLD,),
    "both": (Side.NEW, Side.OLD),
}


_LEDGER_OPTIONS = [
    click.option("--config", "config_path", type=click.Path(dir_okay=False),
                 help="JSON config file (new_path, old_path, db_path, table_name, ...)."),
    click.option("--db", "db_path", type=click.Path(dir_okay=False), default=None,
                 help="SQLite ledger path (default: ~/.copyverify/ledger.db)."),
    click.option("--table", "table_name", default=None, help="Ledger table name (default: files)."),
    click.option("--where", "where_clause", default=None,
                 help="Extra SQL condition narrowing the rows considered, e.g. \"filename like 'sub/%'\"."),
]


def ledger_options(func):
    """Options shared by every command that opens the ledger."""
    for option in reversed(_LEDGER_OPTIONS):
        func = option(func)
    return func


def _load(config_path, require_roots=True, **overrides):
    file_values = load_config_file(Path(config_path)) if config_path else {}
    return build_config(file_values, require_roots=require_roots, **overrides)


def _open_pool(cfg) -> ConnectionPool:
    pool = ConnectionPool(cfg.db_path, max_connections=cfg.max_connections,
                          idle_connections=cfg.idle_connections)
    pool.ping()
    return pool


def _fail(exc: CopyVerifyError) -> None:
    logger.error(f"❌ {exc}")
    sys.exit(1)


@click.group()
@click.version_option(__version__)
@click.option("-v", "--verbose", is_flag=True, help="Debug logging.")
def cli(verbose):
    """copyverify — resumable hash verification of a copied file tree"""
    log_path = setup_logging(verbose)
    emit_run_header(log_path)


@cli.command("run")
@ledger_options
@click.option("--new", "new_path", type=click.Path(file_okay=False), default=None,
              help="Destination (copied) tree root.")
@click.option("--old", "old_path", type=click.Path(file_okay=False), default=None,
              help="Source (original) tree root.")
@click.option("--workers", "hash_workers", type=int, default=None, help="Hash workers per side (default: 8).")
@click.option("--walk-workers", type=int, default=None, help="Directory walkers (default: 16).")
@click.option("--max-connections", type=int, default=None,
              help="Max open ledger connections (0 = unbounded).")
@click.option("--skip-unreadable", is_flag=True,
              help="Skip unreadable or non-UTF-8 entries during the walk instead of aborting.")
@click.option("--side", type=click.Choice(list(SIDES), case_sensitive=False), default="both",
              show_default=True, help="Which hashing phases to run.")
@click.option("--no-progress", is_flag=True, help="Hide progress bars.")
def run_cmd(config_path, db_path, table_name, where_clause, new_path, old_path,
            hash_workers, walk_workers, max_connections, skip_unreadable, side, no_progress):
    """Walk the destination tree once, then hash pending files on each side."""
    try:
        cfg = _load(config_path, new_path=new_path, old_path=old_path, db_path=db_path,
                    table_name=table_name, where_clause=where_clause,
                    hash_workers=hash_workers, walk_workers=walk_workers,
                    max_connections=max_connections, skip_unreadable=skip_unreadable or None)
    except ConfigError as e:
        _fail(e)

    logger.info(f"📁 New (destination): {cfg.new_path}")
    logger.info(f"📂 Old (source): {cfg.old_path}")
    logger.info(f"📄 Ledger: {cfg.db_path} [{cfg.table_name}]")

    try:
        pool = _open_pool(cfg)
    except CopyVerifyError as e:
        _fail(e)

    try:
        ctx = VerifyContext.from_config(cfg, pool, progress=not no_progress and sys.stderr.isatty())
        summary = run_pipeline(ctx, sides=SIDES[side.lower()])
    except CopyVerifyError as e:
        _fail(e)
    except KeyboardInterrupt:
        logger.warning("⚠️ Interrupted; committed progress stays in the ledger.")
        sys.exit(EXIT_INTERRUPTED)
    finally:
        pool.close()

    print_run_summary(summary)
    if summary.interrupted:
        sys.exit(EXIT_INTERRUPTED)


@cli.command("status")
@ledger_options
def status_cmd(config_path, db_path, table_name, where_clause):
    """Show how many files are hashed and pending on each side."""
    try:
        cfg = _load(config_path, require_roots=False, db_path=db_path,
                    table_name=table_name, where_clause=where_clause)
        if not cfg.db_path.exists():
            raise ConfigError(f"ledger database not found: {cfg.db_path}")
        with _open_pool(cfg) as pool:
            ledger = Ledger(pool, cfg.table_name)
            if not ledger.exists():
                raise ConfigError(f"no ledger table {cfg.table_name} in {cfg.db_path}")
            coverage = ledger.coverage(cfg.where_clause or None)
    except CopyVerifyError as e:
        _fail(e)

    print_coverage(ledger, coverage, cfg.where_clause or None)


@cli.command("spot-check")
@ledger_options
@click.option("--new", "new_path", type=click.Path(file_okay=False), default=None,
              help="Destination (copied) tree root.")
@click.option("--old", "old_path", type=click.Path(file_okay=False), default=None,
              help="Source (original) tree root.")
@click.option("--side", type=click.Choice(["new", "old"], case_sensitive=False), default="new",
              show_default=True, help="Which recorded hashes to re-check.")
@click.option("--sample", type=click.IntRange(min=1), default=50, show_default=True,
              help="Number of files to re-hash.")
def spot_check_cmd(config_path, db_path, table_name, where_clause, new_path, old_path, side, sample):
    """Re-hash a random sample of recorded files and compare with the ledger."""
    chosen = Side(side.lower())
    try:
        cfg = _load(config_path, require_roots=False, new_path=new_path, old_path=old_path,
                    db_path=db_path, table_name=table_name, where_clause=where_clause)
        root = cfg.new_path if chosen is Side.NEW else cfg.old_path
        if root is None:
            raise ConfigError(f"{chosen.value}_path is required to spot-check the {chosen.value} side")
        if not cfg.db_path.exists():
            raise ConfigError(f"ledger database not found: {cfg.db_path}")
        with _open_pool(cfg) as pool:
            ledger = Ledger(pool, cfg.table_name)
            if not ledger.exists():
                raise ConfigError(f"no ledger table {cfg.table_name} in {cfg.db_path}")
            result = spot_check(ledger, chosen, root, sample=sample,
                                where_clause=cfg.where_clause or None)
    except CopyVerifyError as e:
        _fail(e)

    if not result.ok:
        sys.exit(1)


if __name__ == "__main__":
    cli()
