"""Unit tests for pocketcal.config_loader."""
from pathlib import Path

import pytest

from pocketcal.config_loader import DEFAULT_STORE_PATH, Config, load_config

pytestmark = pytest.mark.unit


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    cfg = load_config(str(tmp_path / "absent.yaml"))
    assert cfg == Config()
    assert cfg.store_path == DEFAULT_STORE_PATH
    assert cfg.default_zone == "local"
    assert cfg.max_occurrences_per_rule == 5000


def test_yaml_values_are_loaded_and_coerced(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "store_path: /data/events.json\n"
        "default_zone: Europe/Berlin\n"
        "default_duration_minutes: '45'\n"
        "week_start: 6\n"
        "log_level: debug\n",
        encoding="utf-8",
    )
    cfg = load_config(str(path))
    assert cfg.store_path == "/data/events.json"
    assert cfg.default_zone == "Europe/Berlin"
    assert cfg.default_duration_minutes == 45
    assert cfg.week_start == 6
    assert cfg.log_level == "DEBUG"


def test_json_config_is_accepted(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text('{"expansion_cache_size": 4}', encoding="utf-8")
    assert load_config(str(path)).expansion_cache_size == 4


def test_out_of_range_values_are_clamped() -> None:
    cfg = Config.from_dict(
        {
            "default_duration_minutes": 0,
            "rule_window_padding_days": -3,
            "max_occurrences_per_rule": "lots",
            "expansion_cache_size": -1,
            "week_start": 9,
        }
    )
    assert cfg.default_duration_minutes == 1
    assert cfg.rule_window_padding_days == 1
    assert cfg.max_occurrences_per_rule == 5000
    assert cfg.expansion_cache_size == 0
    assert cfg.week_start == 0


def test_non_mapping_config_raises(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(str(path))


def test_invalid_yaml_raises_value_error(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("store_path: [unclosed\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(str(path))


def test_environment_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("store_path: /from/file.json\n", encoding="utf-8")
    monkeypatch.setenv("POCKETCAL_STORE_PATH", "/from/env.json")
    monkeypatch.setenv("POCKETCAL_DEFAULT_ZONE", "Asia/Tokyo")
    cfg = load_config(str(path))
    assert cfg.store_path == "/from/env.json"
    assert cfg.default_zone == "Asia/Tokyo"


def test_resolved_store_path_expands_home() -> None:
    assert Config(store_path="~/cal.json").resolved_store_path == Path.home() / "cal.json"
