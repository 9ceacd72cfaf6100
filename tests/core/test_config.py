"""Tests for configuration loading."""

import json

import pytest

from taskmr.core.taskmr_core.config import TaskmrConfig, check_integer, load_config
from taskmr.core.taskmr_core.errors import InvalidOperation


def test_defaults(tmp_path, monkeypatch):
    for name in ("TASKMR_DATA_DIR", "TASKMR_BACKEND", "TASKMR_ALLOW_EDIT_CLOSED", "TASKMR_VERIFY_READS"):
        monkeypatch.delenv(name, raising=False)

    config = load_config(tmp_path / "missing.json")

    assert config.backend == "es"
    assert config.allow_edit_closed is True
    assert config.verify_reads is False
    assert config.data_dir


def test_file_then_environment(tmp_path, monkeypatch):
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps({
        "backend": "simple",
        "data_dir": str(tmp_path / "from-file"),
        "allow_edit_closed": False,
        "unknown_key": 1,
    }))
    monkeypatch.setenv("TASKMR_DATA_DIR", str(tmp_path / "from-env"))
    monkeypatch.setenv("TASKMR_VERIFY_READS", "yes")
    monkeypatch.delenv("TASKMR_BACKEND", raising=False)
    monkeypatch.delenv("TASKMR_ALLOW_EDIT_CLOSED", raising=False)

    config = load_config(config_file)

    assert config.backend == "simple"
    assert config.allow_edit_closed is False
    assert config.verify_reads is True
    assert config.data_dir == str(tmp_path / "from-env")
    assert config.event_db_path == tmp_path / "from-env" / "events.sqlite3"


def test_unreadable_file_is_ignored(tmp_path, monkeypatch):
    monkeypatch.delenv("TASKMR_BACKEND", raising=False)
    config_file = tmp_path / "config.json"
    config_file.write_text("{not json")

    assert load_config(config_file).backend == "es"


def test_round_trip_dict():
    config = TaskmrConfig(data_dir="/tmp/x", backend="simple")
    assert TaskmrConfig.from_dict(config.to_dict()) == config


def test_file_booleans_are_coerced(tmp_path, monkeypatch):
    monkeypatch.delenv("TASKMR_ALLOW_EDIT_CLOSED", raising=False)
    monkeypatch.delenv("TASKMR_VERIFY_READS", raising=False)
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps({"allow_edit_closed": "false", "verify_reads": "yes"}))

    config = load_config(config_file)

    assert config.allow_edit_closed is False
    assert config.verify_reads is True


def test_invalid_backend_is_left_for_the_caller(tmp_path, monkeypatch):
    monkeypatch.setenv("TASKMR_BACKEND", "postgres")

    config = load_config(tmp_path / "missing.json")
    assert config.backend == "postgres"
    with pytest.raises(ValueError):
        config.validate()

    config.backend = "simple"
    config.validate()


def test_check_integer_bounds():
    assert check_integer("priority", None) is None
    assert check_integer("priority", 2 ** 63 - 1) == 2 ** 63 - 1
    assert check_integer("cost", -(2 ** 63)) == -(2 ** 63)
    with pytest.raises(InvalidOperation):
        check_integer("cost", 2 ** 63)
