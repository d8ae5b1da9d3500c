"""
Tests for configuration defaults, merging and loading.
"""

from pathlib import Path

import yaml

from sightgroup.main import load_config
from sightgroup.reid_config import DEFAULT_CONFIG, get_section, merge_config

DEFAULT_YAML = Path(__file__).resolve().parent.parent / "config" / "default.yaml"


def test_default_yaml_matches_defaults():
    with open(DEFAULT_YAML, "r") as f:
        assert yaml.safe_load(f) == DEFAULT_CONFIG


def test_merge_is_deep_and_pure():
    merged = merge_config({"grouping": {"norm_pro_min": 45}, "extra": {"a": 1}})

    assert merged["grouping"]["norm_pro_min"] == 45
    assert merged["grouping"]["pro_min"] == 120
    assert merged["extra"] == {"a": 1}
    assert DEFAULT_CONFIG["grouping"]["norm_pro_min"] == 35


def test_merge_does_not_share_nested_state():
    merged = merge_config()
    merged["fatal"]["enabled"] = False
    assert DEFAULT_CONFIG["fatal"]["enabled"] is True


def test_get_section_fills_missing_keys():
    section = get_section({"override": {"clarity_delta": 10}}, "override")
    assert section["clarity_delta"] == 10
    assert section["min_new_clarity"] == 60

    assert get_section(None, "fatal") == DEFAULT_CONFIG["fatal"]
    assert get_section({"fatal": None}, "fatal") == DEFAULT_CONFIG["fatal"]
    assert get_section({}, "missing") == {}


def test_load_partial_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("database:\n  db_path: /tmp/other.db\nlogging:\n  level: DEBUG\n")

    config = load_config(str(path))

    assert config["database"]["db_path"] == "/tmp/other.db"
    assert config["logging"] == {"level": "DEBUG", "output_dir": "logs"}
    assert config["grouping"] == DEFAULT_CONFIG["grouping"]


def test_load_empty_yaml(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_config(str(path)) == DEFAULT_CONFIG


def test_load_without_path():
    assert load_config(None) == DEFAULT_CONFIG
