"""
config.py — Load and validate run configuration.

The JSON layout matches the original verification tool's config.json, so
existing config files keep working. CLI options are layered on top via
build_config().
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path

import orjson

from copyverify.errors import ConfigError

DEFAULT_DB_PATH = Path.home() / ".copyverify" / "ledger.db"
DEFAULT_TABLE = "files"
DEFAULT_HASH_WORKERS = 8
DEFAULT_WALK_WORKERS = 16

# Legacy key -> field name
_ALIASES = {
    "db_connstr": "db_path",
    "db_maxconnections": "max_connections",
    "db_idleconnections": "idle_connections",
}


@dataclass
class Config:
    """Everything the pipeline needs to run, already validated."""
    new_path: Path | None = None
    old_path: Path | None = None
    db_path: Path = DEFAULT_DB_PATH
    table_name: str = DEFAULT_TABLE
    where_clause: str = ""
    max_connections: int = 0
    idle_connections: int = 2
    hash_workers: int = DEFAULT_HASH_WORKERS
    walk_workers: int = DEFAULT_WALK_WORKERS
    skip_unreadable: bool = False


def load_config_file(path: Path) -> dict:
    """
    Read a JSON config file into a dict keyed by Config field names.

    Unknown keys are ignored; legacy keys (db_connstr, db_maxconnections,
    db_idleconnections) are mapped onto their current names.
    """
    path = Path(path)
    try:
        raw = orjson.loads(path.read_bytes())
    except FileNotFoundError:
        raise ConfigError(f"config file not found: {path}") from None
    except OSError as e:
        raise ConfigError(f"cannot read config {path}: {e}") from e
    except orjson.JSONDecodeError as e:
        raise ConfigError(f"decoding json in {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"expected a JSON object in {path}, got {type(raw).__name__}")

    known = {f.name for f in fields(Config)}
    values = {}
    for key, value in raw.items():
        name = _ALIASES.get(key, key)
        if name in known:
            values[name] = value
    return values


def _as_int(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None


def _as_bool(name: str, value) -> bool:
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ConfigError(f"{name} must be true or false, got {value!r}")
    return value


def _as_path(value) -> Path | None:
    return Path(value).expanduser() if value else None


def build_config(file_values: dict | None = None, require_roots: bool = True, **overrides) -> Config:
    """
    Merge file values with CLI overrides (None means "not given") and validate.

    Raises:
        ConfigError: a required root is missing or a value is out of range
    """
    values = dict(file_values or {})
    values.update({k: v for k, v in overrides.items() if v is not None})

    if require_roots:
        for root in ("new_path", "old_path"):
            if not values.get(root):
                raise ConfigError(f"{root} is required")

    cfg = Config(
        new_path=_as_path(values.get("new_path")),
        old_path=_as_path(values.get("old_path")),
        db_path=Path(values.get("db_path") or DEFAULT_DB_PATH).expanduser(),
        table_name=str(values.get("table_name") or DEFAULT_TABLE),
        where_clause=str(values.get("where_clause") or "").strip(),
        max_connections=_as_int("max_connections", values.get("max_connections", 0)),
        idle_connections=_as_int("idle_connections", values.get("idle_connections", 2)),
        hash_workers=_as_int("hash_workers", values.get("hash_workers", DEFAULT_HASH_WORKERS)),
        walk_workers=_as_int("walk_workers", values.get("walk_workers", DEFAULT_WALK_WORKERS)),
        skip_unreadable=_as_bool("skip_unreadable", values.get("skip_unreadable", False)),
    )

    if cfg.hash_workers < 1:
        raise ConfigError("hash_workers must be at least 1")
    if cfg.walk_workers < 1:
        raise ConfigError("walk_workers must be at least 1")
    if cfg.max_connections < 0 or cfg.idle_connections < 0:
        raise ConfigError("connection limits cannot be negative")
    return cfg
