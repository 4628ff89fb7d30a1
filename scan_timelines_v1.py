#!/usr/bin/env python3
"""
scan_timelines_v1.py

Read timeline entries from note frontmatter.

A note joins one or more named timelines through its frontmatter, e.g.

    ---
    publish: true
    timelines: [Empire, "[[House Varn]]"]
    start: 1165-03-01
    end: {year: 1165, month: 3, day: 3}
    title: The Siege of Korr
    ---

Notes with no parseable start date or no timeline names are skipped.
Summary and image have fallbacks (first plain paragraph, first image in the
note, first image next to the note); see resolve_summary / resolve_image.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import unquote

from publish_config_v1 import PublishConfig
from publish_errors_v1 import MalformedPayloadError, MissingResourceError
from vault_store_v1 import (
    DocumentMeta,
    DocumentStore,
    is_inline_data,
    is_remote,
    list_candidate_documents,
    split_frontmatter,
    strip_link_syntax,
)

logger = logging.getLogger("publish_tools.scan")

SUMMARY_MAX_CHARS = 500
ELLIPSIS = "…"

IMAGE_EXTS = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".avif", ".bmp"}

_DATE_PREFIX_RE = re.compile(r"^\s*(-?\d{1,6})-(\d{1,2})-(\d{1,2})")
_INT_RE = re.compile(r"^\s*-?\d+\s*$")

# Body markup
_FENCE_RE = re.compile(r"^\s*(```|~~~)")
_HEADING_RE = re.compile(r"^\s{0,3}#{1,6}(\s|$)")
_QUOTE_RE = re.compile(r"^\s*>")
_LIST_RE = re.compile(r"^\s*([-*+]|\d+[.)])\s+")
_HR_RE = re.compile(r"^\s*([-*_])(\s*\1){2,}\s*$")
_TABLE_RE = re.compile(r"^\s*\|")
_COMMENT_RE = re.compile(r"^\s*(<!--|%%)")

_WIKI_EMBED_RE = re.compile(r"!\[\[([^\]]+)\]\]")
_MD_EMBED_RE = re.compile(r"!\[[^\]]*\]\(([^)]+)\)")
_WIKI_LINK_RE = re.compile(r"(?<!!)\[\[([^\]]+)\]\]")
_MD_LINK_RE = re.compile(r"(?<!!)\[([^\]]*)\]\(([^)]+)\)")


# ── Data structures ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TimelineDate:
    year: int
    month: int
    day: int

    @property
    def sort_key(self) -> int:
        return self.year * 10000 + self.month * 100 + self.day

    def to_dict(self) -> Dict[str, int]:
        return {"y": self.year, "m": self.month, "d": self.day}


@dataclass
class TimelineEntry:
    note_path: str
    title: str
    summary: str
    start: TimelineDate
    end: Optional[TimelineDate] = None
    timeline_names: List[str] = field(default_factory=list)
    image_path: Optional[str] = None
    source_fingerprint: Optional[int] = None


# ── Frontmatter values ────────────────────────────────────────────────────────


def _as_int(value: object) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and _INT_RE.match(value):
        return int(value.strip())
    return None


def _valid(year: Optional[int], month: Optional[int], day: Optional[int]) -> Optional[TimelineDate]:
    if year is None or month is None or day is None:
        return None
    if not (1 <= month <= 12 and 1 <= day <= 31):
        return None
    return TimelineDate(year, month, day)


def parse_timeline_date(value: object) -> Optional[TimelineDate]:
    """
    Accepts '1165-03-01' (anything after the date is ignored), {year, month, day},
    or a date already decoded by YAML. Anything else is None.
    """
    if isinstance(value, dt.date):
        return TimelineDate(value.year, value.month, value.day)
    if isinstance(value, str):
        m = _DATE_PREFIX_RE.match(value)
        if not m:
            return None
        return _valid(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    if isinstance(value, dict):
        return _valid(_as_int(value.get("year")), _as_int(value.get("month")), _as_int(value.get("day")))
    return None


def parse_timeline_names(value: object) -> List[str]:
    raw: List[Any]
    if isinstance(value, list):
        raw = value
    elif value is None:
        raw = []
    else:
        raw = [value]

    names: List[str] = []
    seen = set()
    for it in raw:
        if it is None or isinstance(it, (dict, list)):
            continue
        name = str(it).strip()
        if name.startswith("[[") and name.endswith("]]"):
            name = name[2:-2].strip()
        if not name or name.lower() in seen:
            continue
        seen.add(name.lower())
        names.append(name)
    return names


def note_basename(note_path: str) -> str:
    name = PurePosixPath(note_path).name
    return name[:-3] if name.lower().endswith(".md") else name


# ── Summary ───────────────────────────────────────────────────────────────────


def _is_structural(line: str) -> bool:
    return bool(
        _HEADING_RE.match(line)
        or _QUOTE_RE.match(line)
        or _LIST_RE.match(line)
        or _HR_RE.match(line)
        or _TABLE_RE.match(line)
        or _COMMENT_RE.match(line)
    )


def iter_plain_paragraphs(body: str):
    """Yield plain-text paragraphs (lists of lines), skipping code, headings, quotes and lists."""
    in_fence = False
    para: List[str] = []
    for ln in body.split("\n"):
        ln = ln.rstrip("\r")
        if _FENCE_RE.match(ln):
            if para:
                yield para
                para = []
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        if not ln.strip() or _is_structural(ln):
            if para:
                yield para
                para = []
            continue
        para.append(ln.strip())
    if para and not in_fence:
        yield para


def strip_inline_markup(text: str) -> str:
    s = _WIKI_EMBED_RE.sub("", text)
    s = _MD_EMBED_RE.sub("", s)

    def _wiki(m: re.Match) -> str:
        inner = m.group(1)
        if "|" in inner:
            return inner.split("|", 1)[1].strip()
        return note_basename(inner.split("#", 1)[0].strip())

    s = _WIKI_LINK_RE.sub(_wiki, s)
    s = _MD_LINK_RE.sub(lambda m: m.group(1), s)
    s = re.sub(r"`([^`]*)`", r"\1", s)
    s = re.sub(r"(\*\*|__)(.+?)\1", r"\2", s)
    s = re.sub(r"(?<![\w*])\*(?!\s)(.+?)(?<!\s)\*(?![\w*])", r"\1", s)
    s = re.sub(r"(?<!\w)_(?!\s)(.+?)(?<!\s)_(?!\w)", r"\1", s)
    s = re.sub(r"~~(.+?)~~", r"\1", s)
    s = re.sub(r"==(.+?)==", r"\1", s)
    s = re.sub(r"<[^>]+>", "", s)
    return " ".join(s.split())


def truncate_summary(text: str, limit: int = SUMMARY_MAX_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + ELLIPSIS


def extract_first_paragraph(body: str) -> str:
    for para in iter_plain_paragraphs(body):
        cleaned = strip_inline_markup(" ".join(para))
        if cleaned:
            return truncate_summary(cleaned)
    return ""


def resolve_summary(frontmatter: Dict[str, Any], summary_key: str, body: str) -> str:
    """An explicit summary key always wins, even when empty."""
    if summary_key in frontmatter:
        value = frontmatter[summary_key]
        return "" if value is None else str(value)
    return extract_first_paragraph(body)


# ── Image ─────────────────────────────────────────────────────────────────────


def is_image_path(ref: str) -> bool:
    return PurePosixPath(ref.split("?", 1)[0]).suffix.lower() in IMAGE_EXTS


def _clean_md_target(raw: str) -> str:
    target = raw.strip()
    if target.startswith("<") and target.endswith(">"):
        target = target[1:-1]
    else:
        # drop an optional "title"
        target = target.split(" ", 1)[0] if " \"" in target else target
    return unquote(target)


def _resolve_internal(store: DocumentStore, ref: str, note_path: str) -> Optional[str]:
    return store.resolve_link(strip_link_syntax(ref), note_path)


def _first_image_ref(
    store: DocumentStore,
    body: str,
    wiki_re: re.Pattern,
    md_re: re.Pattern,
    md_group: int,
    note_path: str,
) -> Optional[str]:
    refs: List[Tuple[int, str]] = []
    for m in wiki_re.finditer(body):
        refs.append((m.start(), strip_link_syntax(m.group(1))))
    for m in md_re.finditer(body):
        refs.append((m.start(), _clean_md_target(m.group(md_group))))
    refs.sort(key=lambda r: r[0])

    for _, ref in refs:
        if not ref or not is_image_path(ref):
            continue
        if is_remote(ref):
            return ref
        resolved = _resolve_internal(store, ref, note_path)
        if resolved:
            return resolved
        logger.debug("Image reference %s in %s does not resolve", ref, note_path)
    return None


def _first_sibling_image(store: DocumentStore, note_path: str) -> Optional[str]:
    parent = str(PurePosixPath(note_path).parent)
    folder = "" if parent == "." else parent
    siblings = []
    for p in store.list_files(folder):
        rel = p[len(folder) + 1:] if folder else p
        if "/" in rel or not is_image_path(p):
            continue
        siblings.append(p)
    if not siblings:
        return None
    siblings.sort(key=natural_key)
    return siblings[0]


def resolve_image(
    store: DocumentStore,
    note_path: str,
    frontmatter: Dict[str, Any],
    image_key: str,
    body: str,
    warnings: Optional[List[str]] = None,
) -> Optional[str]:
    explicit = frontmatter.get(image_key)
    if isinstance(explicit, str) and explicit.strip():
        ref = explicit.strip()
        if is_remote(ref) or is_inline_data(ref):
            return ref
        resolved = _resolve_internal(store, ref, note_path)
        if resolved:
            return resolved
        msg = str(MissingResourceError(strip_link_syntax(ref), note_path))
        logger.warning("Timeline image %s", msg)
        if warnings is not None:
            warnings.append(msg)

    embedded = _first_image_ref(store, body, _WIKI_EMBED_RE, _MD_EMBED_RE, 1, note_path)
    if embedded:
        return embedded

    linked = _first_image_ref(store, body, _WIKI_LINK_RE, _MD_LINK_RE, 2, note_path)
    if linked:
        return linked

    return _first_sibling_image(store, note_path)


# ── Sorting ───────────────────────────────────────────────────────────────────


def natural_key(s: str) -> Tuple[Any, ...]:
    """Case-insensitive, numeric-aware sort key ('img2' < 'IMG10')."""
    parts: List[Tuple[int, int, str]] = []
    for tok in re.split(r"(\d+)", s):
        if not tok:
            continue
        if tok.isdigit():
            parts.append((0, int(tok), ""))
        else:
            parts.append((1, 0, tok.casefold()))
    return (tuple(parts), s)


# ── Scanner ───────────────────────────────────────────────────────────────────


def entry_from_note(
    store: DocumentStore,
    meta: DocumentMeta,
    text: str,
    config: PublishConfig,
    warnings: Optional[List[str]] = None,
) -> Optional[TimelineEntry]:
    fm = meta.frontmatter
    names = parse_timeline_names(fm.get(config.timeline_names_key))
    if not names:
        return None

    start = parse_timeline_date(fm.get(config.timeline_start_key))
    if start is None:
        if config.timeline_start_key in fm:
            logger.warning("Skipping %s: unparseable start date %r", meta.path, fm.get(config.timeline_start_key))
        return None

    end: Optional[TimelineDate] = None
    raw_end = fm.get(config.timeline_end_key)
    if raw_end is not None:
        end = parse_timeline_date(raw_end)
        if end is None:
            logger.warning("Ignoring unparseable end date %r in %s", raw_end, meta.path)

    raw_title = fm.get(config.timeline_title_key)
    title = str(raw_title).strip() if raw_title is not None and not isinstance(raw_title, (dict, list)) else ""
    if not title:
        title = note_basename(meta.path)

    _, body = split_frontmatter(text)

    return TimelineEntry(
        note_path=meta.path,
        title=title,
        summary=resolve_summary(fm, config.timeline_summary_key, body),
        start=start,
        end=end,
        timeline_names=names,
        image_path=resolve_image(store, meta.path, fm, config.timeline_image_key, body, warnings),
        source_fingerprint=meta.fingerprint,
    )


def scan_timelines(
    store: DocumentStore,
    config: PublishConfig,
    warnings: Optional[List[str]] = None,
) -> List[TimelineEntry]:
    out: List[TimelineEntry] = []
    for meta in list_candidate_documents(store, config.scan_mode, config.publish_root, warnings):
        if config.timeline_names_key not in meta.frontmatter:
            continue
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
        entry = entry_from_note(store, meta, text, config, warnings)
        if entry is not None:
            out.append(entry)
    logger.debug("Found %d timeline entr(ies)", len(out))
    return out
