"""Tests for YAML / environment configuration."""
from pathlib import Path

import pytest
import yaml

from pkg.kanban.config import Config


def write_config(tmp_path, data) -> str:
    path = tmp_path / "kanban.yaml"
    path.write_text(yaml.safe_dump(data))
    return str(path)


def test_defaults_when_file_missing(tmp_path, monkeypatch):
    monkeypatch.delenv("KANBAN_DB", raising=False)
    cfg = Config.load(str(tmp_path / "missing.yaml"))
    assert cfg.gap == 1000
    assert cfg.min_gap == 10
    assert cfg.port == 3000
    assert cfg.db_path == str(Path("~/.local/share/kanban/kanban.db").expanduser())


def test_yaml_values_and_unknown_keys(tmp_path, monkeypatch):
    monkeypatch.delenv("KANBAN_DB", raising=False)
    path = write_config(tmp_path, {"gap": 100, "min_gap": 5, "port": 8080, "colour": "blue"})
    cfg = Config.load(path)
    assert cfg.gap == 100
    assert cfg.min_gap == 5
    assert cfg.port == 8080
    assert not hasattr(cfg, "colour")


def test_env_overrides(tmp_path, monkeypatch):
    path = write_config(tmp_path, {"db_path": "/from/yaml.db"})
    monkeypatch.setenv("KANBAN_CONFIG", path)
    monkeypatch.setenv("KANBAN_DB", str(tmp_path / "env.db"))
    cfg = Config.load()
    assert cfg.db_path == str(tmp_path / "env.db")


def test_min_gap_must_be_below_gap(tmp_path):
    path = write_config(tmp_path, {"gap": 10, "min_gap": 10})
    with pytest.raises(ValueError):
        Config.load(path)
