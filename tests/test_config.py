import dataclasses
import json

import pytest

from publish_config_v1 import (
    DEFAULT_CONFIG,
    config_from_mapping,
    find_settings_file,
    load_config,
    month_override_for,
    normalize_vault_path,
)
from publish_errors_v1 import MalformedPayloadError

MONTHS = ["Ice", "Thaw", "Seed", "Rain", "Bloom", "Sun", "Heat", "Harvest", "Mist", "Leaf", "Frost", "Dark"]


def test_defaults():
    assert DEFAULT_CONFIG.scan_mode == "publishTrueOnly"
    assert DEFAULT_CONFIG.markers_folder == "ZoomMap/publish/markers"
    assert DEFAULT_CONFIG.timelines_folder == "ZoomMap/publish/timelines"
    assert DEFAULT_CONFIG.library_note_path == "ZoomMap/publish/library.md"


def test_config_is_frozen():
    with pytest.raises(dataclasses.FrozenInstanceError):
        DEFAULT_CONFIG.scan_mode = "allMarkdown"


def test_camel_case_keys_and_path_cleanup():
    cfg = config_from_mapping({"scanMode": "allMarkdown", "publishRoot": "/Pub//Root/"})
    assert cfg.scan_mode == "allMarkdown"
    assert cfg.publish_root == "Pub/Root"
    assert cfg.markers_folder == "Pub/Root/markers"
    # untouched fields keep their defaults
    assert cfg.assets_note_path == DEFAULT_CONFIG.assets_note_path


def test_empty_paths_fall_back_to_defaults():
    cfg = config_from_mapping({"publish_root": "", "assets_note_path": "  "})
    assert cfg.publish_root == DEFAULT_CONFIG.publish_root
    assert cfg.assets_note_path == DEFAULT_CONFIG.assets_note_path


def test_unknown_key_is_rejected():
    with pytest.raises(MalformedPayloadError):
        config_from_mapping({"bogus": 1})


def test_bad_scan_mode_is_rejected():
    with pytest.raises(MalformedPayloadError):
        config_from_mapping({"scan_mode": "everything"})


def test_overrides_apply_over_base():
    base = config_from_mapping({"scan_mode": "allMarkdown"})
    cfg = config_from_mapping({"include_note_links": False}, base=base)
    assert cfg.scan_mode == "allMarkdown"
    assert cfg.include_note_links is False


def test_load_yaml_settings_with_month_overrides(tmp_path):
    p = tmp_path / "publish.settings.yaml"
    p.write_text(
        "scanMode: allMarkdown\n"
        "timeline_month_overrides:\n"
        "  Empire: [" + ", ".join(MONTHS) + "]\n",
        encoding="utf-8",
    )
    cfg = load_config(p)
    assert cfg.scan_mode == "allMarkdown"
    assert month_override_for(cfg, "empire") == MONTHS
    assert month_override_for(cfg, "Other") is None


def test_load_json_settings(tmp_path):
    p = tmp_path / "publish.settings.json"
    p.write_text(json.dumps({"assetsNotePath": "Publish/assets.md"}), encoding="utf-8")
    assert load_config(p).assets_note_path == "Publish/assets.md"


def test_load_config_errors(tmp_path):
    assert load_config(None) is DEFAULT_CONFIG
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")

    p = tmp_path / "bad.yaml"
    p.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(MalformedPayloadError):
        load_config(p)

    p = tmp_path / "broken.json"
    p.write_text("{not json", encoding="utf-8")
    with pytest.raises(MalformedPayloadError):
        load_config(p)


def test_find_settings_file(tmp_path):
    assert find_settings_file(tmp_path) is None
    (tmp_path / "publish.settings.json").write_text("{}", encoding="utf-8")
    (tmp_path / "publish.settings.yaml").write_text("", encoding="utf-8")
    assert find_settings_file(tmp_path) == tmp_path / "publish.settings.yaml"


def test_normalize_vault_path():
    assert normalize_vault_path("./a//b/./c/") == "a/b/c"
    assert normalize_vault_path("\\a\\b") == "a/b"
    assert normalize_vault_path(None) == ""
