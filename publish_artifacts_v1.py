#!/usr/bin/env python3
"""
publish_artifacts_v1.py

Write generated publish notes and keep them stable across re-runs.

A generated note looks like:

    ---
    publish: true
    publishTool: "ttrpg-publish-tools"
    publishKind: "markers"
    sourceKey: "Maps/World.png.markers.json"
    sourceFile: "Maps/World.png.markers.json"
    sourceFingerprint: 1718000000000
    generatedAt: "2026-01-01T00:00:00.000Z"
    ---

    # Publish data (markers)

    ```json
    { ... }
    ```

Rewrites are skipped when the recorded sourceFingerprint matches the current
source, so an unchanged vault produces no writes at all.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from typing_extensions import Literal

from publish_config_v1 import TOOL_MARKER
from publish_errors_v1 import ArtifactCollisionError, MalformedPayloadError, MissingResourceError
from vault_store_v1 import DocumentStore, read_frontmatter_lenient

logger = logging.getLogger("publish_tools.artifacts")

Fingerprint = Union[int, float, str]
WriteOutcome = Literal["updated", "unchanged"]


# ── Note rendering ────────────────────────────────────────────────────────────


def utc_timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def stringify_frontmatter(obj: Dict[str, Any]) -> str:
    """Minimal YAML writer: strings JSON-quoted, numbers/bools bare, None dropped."""
    lines = ["---"]
    for k, v in obj.items():
        if v is None:
            continue
        if isinstance(v, bool):
            lines.append(f"{k}: {'true' if v else 'false'}")
        elif isinstance(v, (int, float)):
            lines.append(f"{k}: {v}")
        else:
            lines.append(f"{k}: {json.dumps(v, ensure_ascii=False)}")
    lines.append("---")
    return "\n".join(lines)


def wrap_json_as_publish_note(
    kind: str,
    payload: Any,
    meta: Optional[Dict[str, Any]] = None,
    generated_at: Optional[str] = None,
) -> str:
    fm: Dict[str, Any] = {
        "publish": True,
        "publishTool": TOOL_MARKER,
        "publishKind": kind,
    }
    fm.update(meta or {})
    fm["generatedAt"] = generated_at or utc_timestamp()

    return "\n".join(
        [
            stringify_frontmatter(fm),
            "",
            f"# Publish data ({kind})",
            "",
            "```json",
            json.dumps(payload, indent=2, ensure_ascii=False),
            "```",
            "",
        ]
    )


# ── Change detection ──────────────────────────────────────────────────────────


def read_recorded_fingerprint(store: DocumentStore, path: str) -> Optional[Fingerprint]:
    if not store.exists(path):
        return None
    try:
        fm = read_frontmatter_lenient(store.read(path))
    except (MissingResourceError, MalformedPayloadError):
        return None
    value = fm.get("sourceFingerprint")
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, str)):
        return value
    return None


def write_if_changed(store: DocumentStore, path: str, content: str) -> bool:
    """Write unless the file already holds exactly this content. Returns True if written."""
    if store.exists(path):
        try:
            if store.read(path) == content:
                return False
        except (MissingResourceError, MalformedPayloadError):
            # unreadable previous copy is overwritten
            pass
    store.write(path, content)
    logger.info("WROTE: %s (%d chars)", path, len(content))
    return True


def write_artifact(
    store: DocumentStore,
    path: str,
    kind: str,
    payload: Any,
    fingerprint: Optional[Fingerprint],
    meta: Optional[Dict[str, Any]] = None,
) -> WriteOutcome:
    """
    Materialize one generated note.

    'unchanged' when the note on disk was generated from the same source
    fingerprint; otherwise the note is rewritten and 'updated' is returned.
    """
    previous = read_recorded_fingerprint(store, path)
    if fingerprint is not None and previous is not None and previous == fingerprint:
        logger.debug("SKIP (unchanged): %s", path)
        return "unchanged"

    full_meta: Dict[str, Any] = dict(meta or {})
    full_meta["sourceFingerprint"] = fingerprint
    content = wrap_json_as_publish_note(kind, payload, full_meta)
    if not write_if_changed(store, path, content):
        return "unchanged"
    return "updated"


# ── Marker blocks in external files ───────────────────────────────────────────


def upsert_block(src: str, begin: str, end: str, block: str) -> str:
    """
    Replace the text between `begin` and `end` (markers included in `block`),
    or append `block` after the existing content. Idempotent.
    """
    a = src.find(begin)
    b = src.find(end, a + len(begin)) if a >= 0 else -1

    if a >= 0 and b > a:
        before = src[:a]
        after = src[b + len(end):]
        needs_nl_before = len(before) > 0 and not before.endswith("\n")
        needs_nl_after = len(after) > 0 and not after.startswith("\n")
        joined = (
            before
            + ("\n" if needs_nl_before else "")
            + block.rstrip()
            + ("\n" if needs_nl_after else "")
            + after
        )
        return joined.rstrip() + "\n"

    trimmed = src.rstrip()
    if not trimmed:
        return block.rstrip() + "\n"
    return trimmed + "\n\n" + block.rstrip() + "\n"


def upsert_file_block(store: DocumentStore, path: str, begin: str, end: str, block: str) -> bool:
    text = store.read(path) if store.exists(path) else ""
    return write_if_changed(store, path, upsert_block(text, begin, end, block))


# ── Collision tracking ────────────────────────────────────────────────────────


class ArtifactRegistry:
    """Remembers which source key produced each generated path during one pass."""

    def __init__(self) -> None:
        self._owners: Dict[str, str] = {}

    def claim(self, path: str, source_key: str) -> bool:
        """
        Register `path` for `source_key`. Returns False if this key already owns
        the path (duplicate reference), raises ArtifactCollisionError if another
        key does.
        """
        owner = self._owners.get(path)
        if owner is None:
            self._owners[path] = source_key
            return True
        if owner == source_key:
            return False
        raise ArtifactCollisionError(path, owner, source_key)
