#!/usr/bin/env python3
# publish_config_v1.py — config for TTRPG Tools map/timeline publish automation

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml
from typing_extensions import Literal

from publish_errors_v1 import MalformedPayloadError

"""
Layout reminder (relative to the vault root passed on the command line):

<vault>/
    publish.js, publish.css        <- runtime blocks are upserted here
    ZoomMap/
        library.json               <- icon library exported by the map plugin
        publish/
            library.md             <- generated
            assets.md              <- generated manifest
            markers/m-<id>.md      <- generated, one per marker set
            timelines/t-<id>.md    <- generated, one per named timeline
"""

# Where we log things (inside the vault, hidden from scans)
PUBLISH_LOGS_DIRNAME: str = ".publish-logs"

# Settings files picked up automatically from the vault root, in order
SETTINGS_FILE_CANDIDATES: Tuple[str, ...] = (
    "publish.settings.yaml",
    "publish.settings.yml",
    "publish.settings.json",
)

TOOL_MARKER = "ttrpg-publish-tools"
TOOL_VERSION = "1.4.0"

ScanMode = Literal["publishTrueOnly", "allMarkdown"]
SCAN_MODES: Tuple[str, ...] = ("publishTrueOnly", "allMarkdown")

MARKERS_SUFFIX = ".markers.json"
ZOOMMAP_FENCE = "zoommap"

MARKER_NOTE_PREFIX = "m-"
TIMELINE_NOTE_PREFIX = "t-"


@dataclass(frozen=True)
class PublishConfig:
    """Settings passed by value into every stage of a publish pass."""

    scan_mode: ScanMode = "publishTrueOnly"
    publish_root: str = "ZoomMap/publish"
    assets_note_path: str = "ZoomMap/publish/assets.md"
    library_json_path: str = "ZoomMap/library.json"
    config_dir: str = ".obsidian"
    include_note_links: bool = True

    # Timeline frontmatter keys
    timeline_start_key: str = "start"
    timeline_end_key: str = "end"
    timeline_names_key: str = "timelines"
    timeline_title_key: str = "title"
    timeline_summary_key: str = "summary"
    timeline_image_key: str = "image"

    # Optional companion JSON with month tables, and explicit per-timeline tables
    timeline_settings_path: str = ""
    timeline_month_overrides: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)

    runtime_js_path: str = "publish.js"
    runtime_css_path: str = "publish.css"
    runtime_stamp: str = TOOL_VERSION

    # e.g. "obsidian-cli zoommap export-library {path}"; empty disables the exporter
    library_export_command: str = ""

    @property
    def markers_folder(self) -> str:
        return f"{self.publish_root}/markers"

    @property
    def timelines_folder(self) -> str:
        return f"{self.publish_root}/timelines"

    @property
    def library_note_path(self) -> str:
        return f"{self.publish_root}/library.md"


DEFAULT_CONFIG = PublishConfig()

# Keys used by the host plugin's saved settings
_CAMEL_ALIASES: Dict[str, str] = {
    "scanMode": "scan_mode",
    "publishRoot": "publish_root",
    "assetsNotePath": "assets_note_path",
    "libraryFilePath": "library_json_path",
    "libraryJsonPath": "library_json_path",
    "configDir": "config_dir",
    "includeNoteLinks": "include_note_links",
    "timelineSettingsPath": "timeline_settings_path",
    "timelineMonthOverrides": "timeline_month_overrides",
    "libraryExportCommand": "library_export_command",
}


def normalize_vault_path(path: str) -> str:
    """Vault-style path cleanup: forward slashes, no duplicate/leading/trailing slashes."""
    s = str(path or "").strip().replace("\\", "/")
    while s.startswith("./"):
        s = s[2:]
    parts = [p for p in s.split("/") if p and p != "."]
    return "/".join(parts)


def _coerce_month_overrides(value: object) -> Dict[str, Tuple[str, ...]]:
    if not isinstance(value, dict):
        raise MalformedPayloadError("timeline_month_overrides must be a mapping of timeline name -> month list")
    out: Dict[str, Tuple[str, ...]] = {}
    for name, months in value.items():
        if not isinstance(months, list):
            raise MalformedPayloadError(f"timeline_month_overrides[{name!r}] must be a list")
        out[str(name).strip().lower()] = tuple(str(m) for m in months)
    return out


def config_from_mapping(data: Mapping[str, Any], base: Optional[PublishConfig] = None) -> PublishConfig:
    """Build a config from a plain mapping (settings file contents or CLI overrides)."""
    base = base or DEFAULT_CONFIG
    known = {f.name for f in fields(PublishConfig)}

    updates: Dict[str, Any] = {}
    for raw_key, value in data.items():
        key = _CAMEL_ALIASES.get(raw_key, raw_key)
        if key not in known:
            raise MalformedPayloadError(f"Unknown setting: {raw_key!r}")
        updates[key] = value

    if "scan_mode" in updates and updates["scan_mode"] not in SCAN_MODES:
        raise MalformedPayloadError(
            f"scan_mode must be one of {', '.join(SCAN_MODES)} (got {updates['scan_mode']!r})"
        )

    for key in ("publish_root", "assets_note_path", "library_json_path", "config_dir",
                "timeline_settings_path", "runtime_js_path", "runtime_css_path"):
        if key in updates:
            updates[key] = normalize_vault_path(updates[key])

    if not updates.get("publish_root", base.publish_root):
        updates["publish_root"] = DEFAULT_CONFIG.publish_root
    if not updates.get("assets_note_path", base.assets_note_path):
        updates["assets_note_path"] = DEFAULT_CONFIG.assets_note_path

    if "timeline_month_overrides" in updates:
        updates["timeline_month_overrides"] = _coerce_month_overrides(updates["timeline_month_overrides"])

    if "include_note_links" in updates:
        updates["include_note_links"] = bool(updates["include_note_links"])

    return replace(base, **updates)


def find_settings_file(vault_root: Path) -> Optional[Path]:
    for cand in SETTINGS_FILE_CANDIDATES:
        p = vault_root / cand
        if p.exists():
            return p
    return None


def load_config(config_path: Optional[Path]) -> PublishConfig:
    """
    Load a YAML or JSON settings file and merge it over the defaults.
    Returns DEFAULT_CONFIG when no path is given.
    """
    if config_path is None:
        return DEFAULT_CONFIG

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Settings file not found: {config_path}")

    try:
        text = config_path.read_text(encoding="utf-8")
        if config_path.suffix.lower() == ".json":
            data = json.loads(text) if text.strip() else {}
        else:
            data = yaml.safe_load(text) or {}
    except (yaml.YAMLError, ValueError) as exc:
        raise MalformedPayloadError(f"Failed to parse settings {config_path}: {exc}") from exc

    if not isinstance(data, dict):
        raise MalformedPayloadError(f"Settings file {config_path} must contain a mapping at top level")

    return config_from_mapping(data)


def month_override_for(config: PublishConfig, timeline_name: str) -> Optional[List[str]]:
    months = config.timeline_month_overrides.get(str(timeline_name).strip().lower())
    return list(months) if months is not None else None
