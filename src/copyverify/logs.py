"""
logs.py — Console and master-log setup for CLI runs.

Console output is plain "%(message)s" lines; the same records are appended
with timestamps to a master log so long unattended runs leave a trail.
"""

from __future__ import annotations

import logging
import os
import sys
import time
from pathlib import Path

from copyverify import __version__

DEFAULT_LOG_DIR = Path.home() / ".logs" / "copyverify"

_CONFIGURED = False


def master_log_path() -> Path | None:
    """Where the master log goes, or None when COPYVERIFY_LOG_DISABLED=1."""
    if os.environ.get("COPYVERIFY_LOG_DISABLED") == "1":
        return None
    log_file = os.environ.get("COPYVERIFY_LOG_FILE")
    if log_file:
        return Path(os.path.expanduser(log_file))
    log_dir = os.environ.get("COPYVERIFY_LOG_DIR")
    base_dir = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    return base_dir / "copyverify.log"


def setup_logging(verbose: bool = False) -> Path | None:
    """
    Configure the copyverify logger tree once per process.

    Returns:
        Path of the master log, or None if it is disabled or unwritable
    """
    global _CONFIGURED
    root = logging.getLogger("copyverify")
    if _CONFIGURED:
        return master_log_path()

    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(console)

    log_path = master_log_path()
    if log_path is not None:
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(log_path, encoding="utf-8")
        except OSError as e:
            root.warning(f"⚠️  Could not open master log {log_path}: {e}")
            log_path = None
        else:
            handler.setFormatter(logging.Formatter(
                "%(asctime)s %(levelname)s %(name)s: %(message)s"))
            root.addHandler(handler)

    _CONFIGURED = True
    return log_path


def emit_run_header(log_path: Path | None) -> None:
    logger = logging.getLogger("copyverify")
    timestamp = time.strftime("%Y-%m-%dT%H:%M:%S%z")
    script = Path(sys.argv[0]).name or "copyverify"
    logger.info(f"🧾 {script} v{__version__} @ {timestamp}")
    if log_path:
        logger.info(f"🧾 log: {log_path}")
