"""
tests/test_config.py — YAML Configuration Loader Tests
=======================================================
"""

from __future__ import annotations

import pytest

from routebook.config import DEFAULT_CONFIG, load_config

EXAMPLE = """\
oris_api_url: "https://oris.example/API/"
oris_timeout_seconds: 5
default_map_title: "scan"
max_write_retries: 2
log_level: debug
"""


def test_load_config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(EXAMPLE, encoding="utf-8")
    cfg = load_config(path)
    assert cfg.oris_api_url == "https://oris.example/API/"
    assert cfg.oris_timeout_seconds == 5.0
    assert cfg.default_map_title == "scan"
    assert cfg.max_write_retries == 2
    assert cfg.log_level == "DEBUG"


def test_log_level_defaults_to_info(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("\n".join(EXAMPLE.splitlines()[:4]), encoding="utf-8")
    assert load_config(path).log_level == "INFO"


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


def test_missing_key(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("oris_api_url: x\n", encoding="utf-8")
    with pytest.raises(KeyError):
        load_config(path)


def test_default_config_is_frozen():
    with pytest.raises(AttributeError):
        DEFAULT_CONFIG.max_write_retries = 10
