#!/usr/bin/env python3
# stable_id_v1.py — stable, platform-independent ids for generated artifact names

from __future__ import annotations

import re

FNV_OFFSET_BASIS = 0x811C9DC5
FNV_PRIME = 0x01000193

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"

_LEADING_DOT_SLASH = re.compile(r"^\./+")
_MULTI_SLASH = re.compile(r"/{2,}")
_LEADING_SLASH = re.compile(r"^/+")


def normalize_for_hash(raw: object) -> str:
    """
    Canonical form of a path-like key.

    '[[Maps/World.png]]', './Maps//World.png', '\\Maps\\World.png' and
    '/Maps/World.png' all normalize to 'Maps/World.png'.
    """
    s = str(raw if raw is not None else "").strip()

    if s.startswith("[[") and s.endswith("]]"):
        s = s[2:-2].strip()

    s = s.replace("\\", "/")
    s = _LEADING_DOT_SLASH.sub("", s)
    s = _MULTI_SLASH.sub("/", s)
    s = _LEADING_SLASH.sub("", s)
    return s


def _utf16_code_units(text: str):
    # Ids must match the ones the map plugin computes from JS strings.
    data = text.encode("utf-16-le", "surrogatepass")
    for i in range(0, len(data), 2):
        yield data[i] | (data[i + 1] << 8)


def fnv1a32(text: str) -> int:
    """FNV-1a, 32-bit."""
    h = FNV_OFFSET_BASIS
    for unit in _utf16_code_units(text):
        h ^= unit
        h = (h * FNV_PRIME) & 0xFFFFFFFF
    return h


def to_base36(n: int) -> str:
    if n < 0:
        raise ValueError("to_base36 expects a non-negative integer")
    if n == 0:
        return "0"
    digits = []
    while n:
        n, rem = divmod(n, 36)
        digits.append(_BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def hash_path_to_id(path: str) -> str:
    """Case-preserving id for a vault path (marker sets, sources)."""
    return to_base36(fnv1a32(normalize_for_hash(path)))


def hash_key_to_id(key: str) -> str:
    """Case-insensitive id for name-like keys such as timeline names."""
    norm = str(key if key is not None else "").strip().lower()
    return to_base36(fnv1a32(norm))
