#!/usr/bin/env python3
# build_timelines_v1.py — group timeline entries per named timeline and format their dates
#
# Date display rules (English defaults):
#   - Single date:        1 March 1165
#   - Same month/year:    1–3 March 1165           (en dash, no spaces)
#   - Cross-month/year:   1 March 1165 – 2 April 1165
#
# Month names come from, in order:
#   1) timeline_month_overrides in the publish settings
#   2) the companion timeline settings JSON (per timeline, then global)
#   3) DEFAULT_MONTH_NAMES

from __future__ import annotations

import copy
import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from publish_config_v1 import TIMELINE_NOTE_PREFIX, PublishConfig, month_override_for
from publish_errors_v1 import MalformedPayloadError, MissingResourceError
from scan_timelines_v1 import TimelineDate, TimelineEntry
from stable_id_v1 import hash_key_to_id
from vault_store_v1 import DocumentStore

logger = logging.getLogger("publish_tools.timelines")

DEFAULT_MONTH_NAMES: List[str] = [
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
]

EN_DASH = "–"


@dataclass
class TimelineGroup:
    name: str
    timeline_id: str
    month_names: List[str]
    entries: List[TimelineEntry] = field(default_factory=list)


# ── Month tables ──────────────────────────────────────────────────────────────


def _valid_month_table(value: object) -> Optional[List[str]]:
    if not isinstance(value, list) or len(value) != 12:
        return None
    names = [str(v).strip() if v is not None else "" for v in value]
    if not all(names):
        return None
    return names


def load_timeline_settings(store: DocumentStore, path: str) -> Dict[str, Any]:
    """Read the optional companion timeline settings JSON; {} when absent or broken."""
    if not path:
        return {}
    try:
        raw = store.read(path)
    except MissingResourceError:
        logger.info("Timeline settings not found at %s; using defaults.", path)
        return {}
    except MalformedPayloadError as exc:
        logger.warning("Timeline settings at %s are unreadable: %s", path, exc)
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Timeline settings at %s are not valid JSON: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Timeline settings at %s must be a JSON object; ignoring.", path)
        return {}
    return data


def _settings_month_table(settings: Dict[str, Any], timeline_name: str) -> Optional[List[str]]:
    timelines = settings.get("timelines")
    if isinstance(timelines, dict):
        wanted = timeline_name.strip().lower()
        for key, value in timelines.items():
            if str(key).strip().lower() != wanted or not isinstance(value, dict):
                continue
            table = _valid_month_table(value.get("monthNames"))
            if table is not None:
                return table
            if "monthNames" in value:
                logger.warning("Ignoring invalid monthNames for timeline %r in timeline settings", timeline_name)
    table = _valid_month_table(settings.get("monthNames"))
    if table is None and "monthNames" in settings:
        logger.warning("Ignoring invalid global monthNames in timeline settings")
    return table


def resolve_month_names(config: PublishConfig, settings: Dict[str, Any], timeline_name: str) -> List[str]:
    override = month_override_for(config, timeline_name)
    if override is not None:
        table = _valid_month_table(override)
        if table is not None:
            return table
        logger.warning("Ignoring month override for %r: need 12 non-empty names", timeline_name)

    table = _settings_month_table(settings, timeline_name)
    if table is not None:
        return table

    return list(DEFAULT_MONTH_NAMES)


# ── Formatting ────────────────────────────────────────────────────────────────


def _month_name(month_names: List[str], month: int) -> str:
    if 1 <= month <= len(month_names):
        return month_names[month - 1]
    return str(month)


def format_single(d: TimelineDate, month_names: List[str]) -> str:
    return f"{d.day} {_month_name(month_names, d.month)} {d.year}"


def format_date_range(start: TimelineDate, end: Optional[TimelineDate], month_names: List[str]) -> str:
    if end is None or end == start:
        return format_single(start, month_names)
    if start.year == end.year and start.month == end.month:
        return f"{start.day}{EN_DASH}{end.day} {_month_name(month_names, start.month)} {start.year}"
    return f"{format_single(start, month_names)} {EN_DASH} {format_single(end, month_names)}"


# ── Grouping ──────────────────────────────────────────────────────────────────


def entry_sort_key(entry: TimelineEntry):
    return (entry.start.sort_key, entry.title.casefold(), entry.note_path)


def group_timeline_entries(
    entries: List[TimelineEntry],
    config: PublishConfig,
    settings: Optional[Dict[str, Any]] = None,
) -> List[TimelineGroup]:
    """Fan entries out per timeline name (case-insensitive), sort each group by date."""
    settings = settings or {}
    groups: Dict[str, TimelineGroup] = {}

    for entry in entries:
        for name in entry.timeline_names:
            key = name.strip().lower()
            group = groups.get(key)
            if group is None:
                group = TimelineGroup(
                    name=name.strip(),
                    timeline_id=hash_key_to_id(name),
                    month_names=resolve_month_names(config, settings, name),
                )
                groups[key] = group
            group.entries.append(copy.copy(entry))

    out = list(groups.values())
    for group in out:
        group.entries.sort(key=entry_sort_key)
    out.sort(key=lambda g: g.name.casefold())
    return out


def entry_payload(entry: TimelineEntry, month_names: List[str]) -> Dict[str, Any]:
    link = entry.note_path[:-3] if entry.note_path.lower().endswith(".md") else entry.note_path
    return {
        "note": entry.note_path,
        "link": link,
        "title": entry.title,
        "summary": entry.summary,
        "start": entry.start.to_dict(),
        "end": entry.end.to_dict() if entry.end is not None else None,
        "display": format_date_range(entry.start, entry.end, month_names),
        "sortKey": entry.start.sort_key,
        "image": entry.image_path,
    }


def timeline_payload(group: TimelineGroup) -> Dict[str, Any]:
    return {
        "name": group.name,
        "id": group.timeline_id,
        "monthNames": list(group.month_names),
        "entries": [entry_payload(e, group.month_names) for e in group.entries],
    }


def timeline_fingerprint(group: TimelineGroup) -> str:
    """Changes whenever a member note or the rendered payload changes (image, summary, month table)."""
    material = {
        "name": group.name,
        "monthNames": group.month_names,
        "sources": [[e.note_path, e.source_fingerprint] for e in group.entries],
        "payload": timeline_payload(group),
    }
    blob = json.dumps(material, sort_keys=True, ensure_ascii=False).encode("utf-8")
    return hashlib.sha256(blob).hexdigest()[:16]


def timeline_note_path(config: PublishConfig, timeline_name: str) -> str:
    return f"{config.timelines_folder}/{TIMELINE_NOTE_PREFIX}{hash_key_to_id(timeline_name)}.md"

