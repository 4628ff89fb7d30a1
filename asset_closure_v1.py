#!/usr/bin/env python3
# asset_closure_v1.py — collect every vault file a published map/timeline needs
#
# Sources walked per pass (nothing is cached between passes):
#   * zoommap blocks: image, imageBases, imageOverlays, viewportFrame
#   * marker JSON:    bases[], overlays[].path, markers[type=sticker].stickerPath,
#                     drawings[].bakedPath
#   * library JSON:   icons[].pathOrDataUrl (local files only),
#                     baseCollections[].include.stickers[].imagePath
#   * note links (include_note_links):
#                     markers[].link, swap markers' swapLinks / swapStates[].link,
#                     and for markers[].swapPresetId the preset's frames[].link plus
#                     each frame icon's defaultLink. Preset frames are not followed
#                     any further.
#   * timeline entries: the note itself and its local image
#
# The manifest drops .json payloads and the vault config folder.

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from publish_config_v1 import PublishConfig, normalize_vault_path
from publish_errors_v1 import MalformedPayloadError, MissingResourceError
from scan_timelines_v1 import TimelineEntry, natural_key
from scan_zoommaps_v1 import MapBlock, as_dict, as_list, path_list, scalar_string
from vault_store_v1 import DocumentStore, is_inline_data, is_remote, strip_link_syntax

logger = logging.getLogger("publish_tools.assets")


# ── JSON resources ────────────────────────────────────────────────────────────


def load_json_resource(store: DocumentStore, path: str) -> Any:
    if not store.exists(path):
        raise MissingResourceError(path)
    raw = store.read(path)
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedPayloadError(f"invalid JSON: {path} ({exc})") from exc


@dataclass
class LibraryIndex:
    """What the closure needs from library.json, parsed once per pass."""

    asset_paths: List[str] = field(default_factory=list)
    presets: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    icon_default_links: Dict[str, str] = field(default_factory=dict)


def _preset_frames(value: object) -> List[Dict[str, Any]]:
    d = as_dict(value)
    if d is not None:
        value = d.get("frames")
    return [f for f in as_list(value) if isinstance(f, dict)]


def _collect_presets(value: object, into: Dict[str, List[Dict[str, Any]]]) -> None:
    d = as_dict(value)
    if d is not None:
        for preset_id, frames in d.items():
            into.setdefault(str(preset_id), _preset_frames(frames))
        return
    for it in as_list(value):
        rec = as_dict(it)
        if rec is None:
            continue
        preset_id = scalar_string(rec, "id")
        if preset_id:
            into.setdefault(preset_id, _preset_frames(rec))


def parse_library(data: object) -> LibraryIndex:
    index = LibraryIndex()
    obj = as_dict(data)
    if obj is None:
        raise MalformedPayloadError("library JSON must be an object")

    for it in as_list(obj.get("icons")):
        icon = as_dict(it)
        if icon is None:
            continue
        src = scalar_string(icon, "pathOrDataUrl")
        if src and not is_inline_data(src) and not is_remote(src):
            index.asset_paths.append(src)
        key = scalar_string(icon, "key")
        link = scalar_string(icon, "defaultLink")
        if key and link:
            index.icon_default_links[key] = link

    _collect_presets(obj.get("swapPresets"), index.presets)

    for c in as_list(obj.get("baseCollections")):
        include = as_dict((as_dict(c) or {}).get("include"))
        if include is None:
            continue
        for s in as_list(include.get("stickers")):
            sticker = as_dict(s)
            if sticker is None:
                continue
            p = scalar_string(sticker, "imagePath")
            if p and not is_inline_data(p):
                index.asset_paths.append(p)
        _collect_presets(include.get("swapPresets"), index.presets)

    return index


# ── Marker documents ──────────────────────────────────────────────────────────


def marker_asset_refs(data: object) -> List[str]:
    """Bases, overlays, sticker images and baked drawings referenced by a marker JSON."""
    obj = as_dict(data)
    if obj is None:
        raise MalformedPayloadError("marker JSON must be an object")

    refs: List[str] = []
    refs.extend(path_list(obj.get("bases")))
    refs.extend(scalar_string(o, "path") for o in as_list(obj.get("overlays")) if isinstance(o, dict))

    for m in as_list(obj.get("markers")):
        marker = as_dict(m)
        if marker is not None and marker.get("type") == "sticker":
            refs.append(scalar_string(marker, "stickerPath"))

    for d in as_list(obj.get("drawings")):
        drawing = as_dict(d)
        if drawing is not None:
            refs.append(scalar_string(drawing, "bakedPath"))

    return [r for r in refs if r]


def _swap_state_links(marker: Dict[str, Any]) -> List[str]:
    links: List[str] = []
    swap_links = marker.get("swapLinks")
    if isinstance(swap_links, dict):
        links.extend(v.strip() for v in swap_links.values() if isinstance(v, str))
    else:
        for it in as_list(swap_links):
            if isinstance(it, str):
                links.append(it.strip())
            elif isinstance(it, dict):
                links.append(scalar_string(it, "link"))
    for st in as_list(marker.get("swapStates")):
        if isinstance(st, dict):
            links.append(scalar_string(st, "link"))
    return links


def marker_note_links(data: object, library: Optional[LibraryIndex]) -> List[str]:
    """Note links of a marker JSON, following swap presets exactly one level."""
    obj = as_dict(data) or {}
    links: List[str] = []
    for m in as_list(obj.get("markers")):
        marker = as_dict(m)
        if marker is None:
            continue
        links.append(scalar_string(marker, "link"))
        if marker.get("type") != "swap":
            continue
        links.extend(_swap_state_links(marker))

        preset_id = scalar_string(marker, "swapPresetId")
        if not preset_id or library is None:
            continue
        frames = library.presets.get(preset_id)
        if frames is None:
            logger.warning("Unknown swap preset %r (marker %s)", preset_id, marker.get("id", "?"))
            continue
        for frame in frames:
            links.append(scalar_string(frame, "link"))
            icon_key = scalar_string(frame, "iconKey")
            if icon_key:
                links.append(library.icon_default_links.get(icon_key, ""))
    return [ln for ln in links if ln]


# ── Closure ───────────────────────────────────────────────────────────────────


class AssetCollector:
    """De-duplicated set of vault paths, with a warning per unresolvable reference."""

    def __init__(self, store: DocumentStore, warnings: Optional[List[str]] = None):
        self.store = store
        self.paths: Set[str] = set()
        self.warnings: List[str] = warnings if warnings is not None else []

    def warn(self, ref: str, source: str) -> None:
        msg = str(MissingResourceError(ref, source))
        if msg not in self.warnings:
            self.warnings.append(msg)
            logger.warning("Asset %s", msg)

    def add(self, path: str) -> None:
        """Add a generated/known path without checking the vault."""
        p = normalize_vault_path(path)
        if p:
            self.paths.add(p)

    def add_ref(self, ref: str, source: str = "", is_link: bool = False) -> Optional[str]:
        """
        Add a file reference. Remote and inline references are ignored. The ref
        is tried as a vault path first, then through link resolution.
        """
        ref = (ref or "").strip()
        if not ref or is_remote(ref) or is_inline_data(ref):
            return None
        wiki = ref.startswith("[[") or ref.startswith("![[")
        bare = normalize_vault_path(strip_link_syntax(ref) if (is_link or wiki) else ref)
        if not bare:
            return None
        if self.store.exists(bare):
            self.paths.add(bare)
            return bare
        resolved = self.store.resolve_link(bare, source)
        if resolved:
            self.paths.add(resolved)
            return resolved
        self.warn(bare, source)
        if not is_link:
            # keep it listed so the manifest shows the broken embed
            self.paths.add(bare)
        return None


def resolve_asset_closure(
    store: DocumentStore,
    config: PublishConfig,
    maps: Iterable[MapBlock],
    generated_paths: Iterable[str] = (),
    timeline_entries: Iterable[TimelineEntry] = (),
    warnings: Optional[List[str]] = None,
) -> List[str]:
    """Return the sorted, filtered list of every path the publish run must ship."""
    maps = list(maps)
    assets = AssetCollector(store, warnings)

    # seeds: generated notes and block-declared files
    for p in generated_paths:
        assets.add(p)
    for m in maps:
        for p in m.direct_asset_paths:
            assets.add_ref(p, m.source_document)

    # library first: swap presets are needed for marker links
    library: Optional[LibraryIndex] = None
    lib_path = config.library_json_path
    if store.exists(lib_path):
        try:
            library = parse_library(load_json_resource(store, lib_path))
        except (MalformedPayloadError, MissingResourceError) as exc:
            logger.warning("Failed to read library JSON %s: %s", lib_path, exc)
    else:
        logger.info("No library JSON at %s; skipping icon assets.", lib_path)
    if library is not None:
        for p in library.asset_paths:
            assets.add_ref(p, lib_path)

    # marker documents and their note links
    seen_markers: Set[str] = set()
    for m in maps:
        if m.markers_path in seen_markers:
            continue
        seen_markers.add(m.markers_path)
        try:
            data = load_json_resource(store, m.markers_path)
            refs = marker_asset_refs(data)
        except MissingResourceError:
            assets.warn(m.markers_path, m.source_document)
            continue
        except MalformedPayloadError as exc:
            logger.warning("Failed to parse markers JSON %s: %s", m.markers_path, exc)
            continue

        for ref in refs:
            assets.add_ref(ref, m.markers_path)
        if config.include_note_links:
            for link in marker_note_links(data, library):
                assets.add_ref(link, m.source_document, is_link=True)

    for entry in timeline_entries:
        assets.add(entry.note_path)
        if entry.image_path:
            assets.add_ref(entry.image_path, entry.note_path)

    return filter_and_sort_assets(assets.paths, config.config_dir)


def filter_and_sort_assets(paths: Iterable[str], config_dir: str) -> List[str]:
    prefix = normalize_vault_path(config_dir) + "/"
    out = [
        p
        for p in paths
        if p and not p.startswith(prefix) and not p.lower().endswith(".json")
    ]
    out.sort(key=natural_key)
    return out


# ── Manifest ──────────────────────────────────────────────────────────────────


def manifest_link(path: str) -> str:
    return path[:-3] if path.endswith(".md") else path


def render_assets_manifest(assets: Iterable[str]) -> str:
    lines = [
        "---",
        "publish: true",
        "---",
        "",
        "# TTRPG Tools: Maps – Publish assets",
        "",
        "Generated by **TTRPG Tools: Publish**.",
        "Publish this note, then use **Publish changes → Add linked** to include all map assets.",
        "",
        "## Assets",
        "",
    ]
    for p in assets:
        lines.append(f"- [[{manifest_link(p)}]]")
    lines.append("")
    return "\n".join(lines)

