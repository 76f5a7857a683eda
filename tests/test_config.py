"""Tests for config loading and validation."""

import json
from pathlib import Path

import pytest

from copyverify.config import DEFAULT_TABLE, build_config, load_config_file
from copyverify.errors import ConfigError


def _write(tmp_path, data) -> Path:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data))
    return path


def test_legacy_keys_are_mapped(tmp_path):
    path = _write(tmp_path, {
        "new_path": "/data/NEW",
        "old_path": "/data/OLD",
        "db_connstr": str(tmp_path / "ledger.db"),
        "table_name": "migration",
        "where_clause": "filename like 'sub/%'",
        "db_maxconnections": 20,
        "db_idleconnections": 5,
        "unrelated": True,
    })
    values = load_config_file(path)
    assert "unrelated" not in values

    cfg = build_config(values)
    assert cfg.new_path == Path("/data/NEW")
    assert cfg.old_path == Path("/data/OLD")
    assert cfg.db_path == tmp_path / "ledger.db"
    assert cfg.table_name == "migration"
    assert cfg.where_clause == "filename like 'sub/%'"
    assert cfg.max_connections == 20
    assert cfg.idle_connections == 5
    assert cfg.hash_workers == 8


def test_overrides_win_and_none_is_ignored(tmp_path):
    values = {"new_path": "/a", "old_path": "/b", "hash_workers": 2, "table_name": "t1"}
    cfg = build_config(values, hash_workers=6, table_name=None, old_path="/c")
    assert cfg.hash_workers == 6
    assert cfg.table_name == "t1"
    assert cfg.old_path == Path("/c")


def test_defaults(tmp_path):
    cfg = build_config(new_path="/a", old_path="/b")
    assert cfg.table_name == DEFAULT_TABLE
    assert cfg.where_clause == ""
    assert cfg.max_connections == 0
    assert cfg.walk_workers == 16
    assert not cfg.skip_unreadable


@pytest.mark.parametrize("content", ["{not json", "[1, 2, 3]"])
def test_malformed_config_file(tmp_path, content):
    path = tmp_path / "config.json"
    path.write_text(content)
    with pytest.raises(ConfigError):
        load_config_file(path)


def test_missing_config_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config_file(tmp_path / "nope.json")


@pytest.mark.parametrize("bad", [
    {"old_path": "/b"},
    {"new_path": "/a"},
    {"new_path": "/a", "old_path": "/b", "hash_workers": 0},
    {"new_path": "/a", "old_path": "/b", "walk_workers": -1},
    {"new_path": "/a", "old_path": "/b", "idle_connections": -2},
    {"new_path": "/a", "old_path": "/b", "hash_workers": "eight"},
    {"new_path": "/a", "old_path": "/b", "hash_workers": 2.5},
])
def test_invalid_values_are_rejected(bad):
    with pytest.raises(ConfigError):
        build_config(bad)


def test_roots_optional_for_read_only_commands():
    cfg = build_config({}, require_roots=False, db_path="/tmp/x.db")
    assert cfg.new_path is None
    assert cfg.db_path == Path("/tmp/x.db")


@pytest.mark.parametrize("value", ["false", "yes", 0, 1])
def test_skip_unreadable_must_be_a_json_bool(value):
    with pytest.raises(ConfigError, match="skip_unreadable"):
        build_config({"new_path": "/a", "old_path": "/b", "skip_unreadable": value})


def test_skip_unreadable_accepts_bools():
    assert build_config({"new_path": "/a", "old_path": "/b", "skip_unreadable": True}).skip_unreadable
    assert not build_config({"new_path": "/a", "old_path": "/b", "skip_unreadable": False}).skip_unreadable
