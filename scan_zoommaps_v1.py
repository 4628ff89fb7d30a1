#!/usr/bin/env python3
# scan_zoommaps_v1.py — find ```zoommap blocks in vault notes and collect their map records
#
# A zoommap block is YAML. The minimum a block needs is a base image, either
#   image: Maps/World.png
# or the first entry of
#   imageBases: [Maps/World.png, {path: Maps/World-night.png}]
# Blocks inside callouts ("> ```zoommap") are supported.

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import yaml

from publish_config_v1 import MARKERS_SUFFIX, ZOOMMAP_FENCE, PublishConfig, normalize_vault_path
from publish_errors_v1 import MalformedPayloadError, MissingResourceError
from vault_store_v1 import DocumentStore, list_candidate_documents

logger = logging.getLogger("publish_tools.scan")

_QUOTE_PREFIX_RE = re.compile(r"^\s*>\s?")


# ── Data structures ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class MapBlock:
    source_document: str
    markers_path: str
    direct_asset_paths: Tuple[str, ...]


# ── Tolerant shape helpers (shared with the closure resolver) ─────────────────


def as_dict(value: object) -> Optional[Dict[str, Any]]:
    return value if isinstance(value, dict) else None


def as_list(value: object) -> List[Any]:
    return value if isinstance(value, list) else []


def scalar_string(obj: Dict[str, Any], key: str) -> str:
    v = obj.get(key)
    return v.strip() if isinstance(v, str) else ""


def path_list(value: object) -> List[str]:
    """Entries may be plain strings or {path: ...} mappings; anything else is ignored."""
    out: List[str] = []
    for it in as_list(value):
        if isinstance(it, str):
            p = it.strip()
            if p:
                out.append(p)
            continue
        d = as_dict(it)
        if d is not None:
            p = scalar_string(d, "path")
            if p:
                out.append(p)
    return out


# ── Block extraction ──────────────────────────────────────────────────────────


def strip_quote_prefix(line: str) -> str:
    s = line or ""
    while True:
        m = _QUOTE_PREFIX_RE.match(s)
        if not m:
            return s
        s = s[m.end():]


def extract_fenced_blocks(note_text: str, fence: str = ZOOMMAP_FENCE) -> List[str]:
    """Return the raw bodies of every ```<fence> block, quote prefixes removed."""
    opener = f"```{fence.lower()}"
    blocks: List[str] = []
    buf: List[str] = []
    in_block = False

    for ln in (note_text or "").split("\n"):
        ln = ln.rstrip("\r")
        bare = strip_quote_prefix(ln).lstrip()
        if not in_block:
            if bare.lower().startswith(opener):
                in_block = True
                buf = []
            continue

        if bare.startswith("```"):
            in_block = False
            blocks.append("\n".join(buf))
            buf = []
            continue

        buf.append(strip_quote_prefix(ln))

    return blocks


def parse_block_yaml(src: str) -> Dict[str, Any]:
    try:
        obj = yaml.safe_load(src)
    except (yaml.YAMLError, ValueError) as exc:
        raise MalformedPayloadError(f"zoommap block is not valid YAML: {exc}") from exc
    d = as_dict(obj)
    if d is None:
        raise MalformedPayloadError("zoommap block is not a mapping")
    return d


def map_block_from_yaml(source_document: str, y: Dict[str, Any]) -> Optional[MapBlock]:
    image = scalar_string(y, "image") or next(iter(path_list(y.get("imageBases"))), "")
    if not image:
        return None

    markers = scalar_string(y, "markers") or f"{image}{MARKERS_SUFFIX}"

    assets: List[str] = [image]
    assets.extend(path_list(y.get("imageBases")))
    assets.extend(path_list(y.get("imageOverlays")))
    frame = scalar_string(y, "viewportFrame")
    if frame:
        assets.append(frame)

    return MapBlock(
        source_document=source_document,
        markers_path=normalize_vault_path(markers),
        direct_asset_paths=tuple(normalize_vault_path(a) for a in assets),
    )


def scan_note_text(source_document: str, text: str) -> List[MapBlock]:
    out: List[MapBlock] = []
    for i, src in enumerate(extract_fenced_blocks(text)):
        try:
            y = parse_block_yaml(src)
        except MalformedPayloadError as exc:
            logger.warning("Skipping zoommap block #%d in %s: %s", i + 1, source_document, exc)
            continue
        block = map_block_from_yaml(source_document, y)
        if block is None:
            logger.warning("Skipping zoommap block #%d in %s: no base image", i + 1, source_document)
            continue
        out.append(block)
    return out


def scan_zoommaps(
    store: DocumentStore,
    config: PublishConfig,
    warnings: Optional[List[str]] = None,
) -> List[MapBlock]:
    """Scan candidate notes and return every map block found, in vault order."""
    out: List[MapBlock] = []
    for meta in list_candidate_documents(store, config.scan_mode, config.publish_root, warnings):
        try:
            text = store.read(meta.path)
        except MissingResourceError as exc:
            logger.warning("Note vanished during scan: %s", exc)
            continue
        except MalformedPayloadError as exc:
            msg = f"skipped unreadable note: {exc}"
            logger.warning(msg)
            if warnings is not None and msg not in warnings:
                warnings.append(msg)
            continue
        out.extend(scan_note_text(meta.path, text))
    logger.debug("Found %d zoommap block(s)", len(out))
    return out
