#!/usr/bin/env python3
"""
vault_store_v1.py

Document store used by every publish stage.

All paths are vault-relative POSIX strings ("ZoomMap/publish/assets.md").
The filesystem implementation keeps the same conventions as the host vault:
hidden folders are not listed, a document's fingerprint is its modification
time in milliseconds, and frontmatter is the leading '---' YAML block.
"""

from __future__ import annotations

import logging
import re
import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional

import yaml
from typing_extensions import Protocol

from publish_config_v1 import normalize_vault_path
from publish_errors_v1 import (
    IntegrationUnavailableError,
    MalformedPayloadError,
    MissingResourceError,
    WriteFailureError,
)

logger = logging.getLogger("publish_tools.vault")

FM_BLOCK_RE = re.compile(r"^---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|$)", re.DOTALL)


class FrontmatterLoader(yaml.SafeLoader):
    """SafeLoader that leaves Y-M-D values as strings; calendar dates like 1165-02-30 are valid here."""


FrontmatterLoader.yaml_implicit_resolvers = {
    first: [(tag, rx) for tag, rx in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


# ── Frontmatter ───────────────────────────────────────────────────────────────


def split_frontmatter(text: str) -> tuple[Optional[str], str]:
    """Return (frontmatter_yaml_or_None, body)."""
    m = FM_BLOCK_RE.match(text or "")
    if not m:
        return None, text or ""
    return m.group(1), text[m.end():]


def parse_frontmatter(text: str) -> Dict[str, Any]:
    """
    Parse the leading YAML block of a note.

    Returns {} when there is no frontmatter. Raises MalformedPayloadError when
    the block exists but is not a YAML mapping.
    """
    fm_text, _ = split_frontmatter(text)
    if fm_text is None:
        return {}
    try:
        data = yaml.load(fm_text, Loader=FrontmatterLoader)
    except (yaml.YAMLError, ValueError) as exc:
        raise MalformedPayloadError(f"invalid frontmatter YAML: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise MalformedPayloadError("frontmatter is not a mapping")
    return data


def read_frontmatter_lenient(text: str) -> Dict[str, Any]:
    try:
        return parse_frontmatter(text)
    except MalformedPayloadError:
        return {}


# ── Store interface ───────────────────────────────────────────────────────────


@dataclass
class DocumentMeta:
    path: str
    fingerprint: Optional[int]
    frontmatter: Dict[str, Any] = field(default_factory=dict)


class DocumentStore(Protocol):
    config_dir: str

    def exists(self, path: str) -> bool: ...

    def read(self, path: str) -> str: ...

    def write(self, path: str, text: str) -> None: ...

    def delete(self, path: str) -> None: ...

    def create_folder(self, path: str) -> None: ...

    def list_markdown(self) -> List[str]: ...

    def list_files(self, folder: str = "") -> List[str]: ...

    def metadata(self, path: str) -> DocumentMeta: ...

    def resolve_link(self, link: str, source_path: str = "") -> Optional[str]: ...


class LibraryExporter(Protocol):
    def export_library(self, path: str) -> None: ...


# ── Link helpers ──────────────────────────────────────────────────────────────


def strip_link_syntax(link: str) -> str:
    """'[[Folder/Note#Heading|Alias]]' -> 'Folder/Note'."""
    s = str(link or "").strip()
    if s.startswith("!"):
        s = s[1:]
    if s.startswith("[[") and s.endswith("]]"):
        s = s[2:-2]
    s = s.split("|", 1)[0]
    s = s.split("#", 1)[0]
    return s.strip()


def is_remote(ref: str) -> bool:
    return bool(re.match(r"^https?://", ref.strip(), re.IGNORECASE))


def is_inline_data(ref: str) -> bool:
    return ref.strip().lower().startswith("data:")


# ── Filesystem vault ──────────────────────────────────────────────────────────


def _decode(p: Path, path: str) -> str:
    try:
        return p.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedPayloadError(f"{path} is not valid UTF-8 ({exc.reason} at byte {exc.start})") from exc


class FileSystemVault:
    """DocumentStore over a directory on disk."""

    def __init__(self, root: Path, config_dir: str = ".obsidian"):
        self.root = Path(root).expanduser().resolve()
        self.config_dir = normalize_vault_path(config_dir) or ".obsidian"
        if not self.root.is_dir():
            raise FileNotFoundError(f"Vault root does not exist: {self.root}")

    def _abs(self, path: str) -> Path:
        rel = normalize_vault_path(path)
        target = (self.root / rel).resolve()
        try:
            target.relative_to(self.root)
        except ValueError:
            raise WriteFailureError(f"Refusing to touch a path outside the vault: {path}")
        return target

    def _rel(self, p: Path) -> str:
        return p.relative_to(self.root).as_posix()

    def exists(self, path: str) -> bool:
        try:
            return self._abs(path).is_file()
        except WriteFailureError:
            return False

    def read(self, path: str) -> str:
        p = self._abs(path)
        if not p.is_file():
            raise MissingResourceError(normalize_vault_path(path))
        return _decode(p, path)

    def write(self, path: str, text: str) -> None:
        p = self._abs(path)
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(text, encoding="utf-8")
        except OSError as exc:
            raise WriteFailureError(f"write failed for {path}: {exc}") from exc

    def delete(self, path: str) -> None:
        p = self._abs(path)
        try:
            p.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise WriteFailureError(f"delete failed for {path}: {exc}") from exc

    def create_folder(self, path: str) -> None:
        p = self._abs(path)
        try:
            p.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise WriteFailureError(f"could not create folder {path}: {exc}") from exc

    def _iter_files(self, base: Path):
        for p in sorted(base.rglob("*")):
            if not p.is_file():
                continue
            rel_parts = p.relative_to(self.root).parts
            if any(part.startswith(".") for part in rel_parts):
                continue
            yield p

    def list_files(self, folder: str = "") -> List[str]:
        base = self._abs(folder) if folder else self.root
        if not base.is_dir():
            return []
        return [self._rel(p) for p in self._iter_files(base)]

    def list_markdown(self) -> List[str]:
        return [p for p in self.list_files() if p.lower().endswith(".md")]

    def metadata(self, path: str) -> DocumentMeta:
        """Raises MalformedPayloadError for a note that is not UTF-8; bad frontmatter YAML only logs."""
        p = self._abs(path)
        if not p.is_file():
            raise MissingResourceError(normalize_vault_path(path))
        fingerprint = p.stat().st_mtime_ns // 1_000_000
        frontmatter: Dict[str, Any] = {}
        if p.suffix.lower() == ".md":
            text = _decode(p, path)
            try:
                frontmatter = parse_frontmatter(text)
            except MalformedPayloadError as exc:
                logger.warning("Ignoring frontmatter of %s: %s", path, exc)
        return DocumentMeta(path=self._rel(p), fingerprint=fingerprint, frontmatter=frontmatter)

    def resolve_link(self, link: str, source_path: str = "") -> Optional[str]:
        """
        Resolve a wiki/markdown link target to an existing vault file.

        Tries the exact path, then relative to the linking note's folder, then a
        basename match anywhere in the vault (shortest path wins).
        """
        target = normalize_vault_path(strip_link_syntax(link))
        if not target:
            return None

        candidates: List[str] = [target]
        if not PurePosixPath(target).suffix:
            candidates.append(f"{target}.md")

        src_dir = str(PurePosixPath(normalize_vault_path(source_path)).parent) if source_path else ""
        if src_dir and src_dir != ".":
            candidates.append(normalize_vault_path(f"{src_dir}/{target}"))
            if not PurePosixPath(target).suffix:
                candidates.append(normalize_vault_path(f"{src_dir}/{target}.md"))

        for cand in candidates:
            if self.exists(cand):
                return cand

        name = PurePosixPath(target).name.lower()
        wanted = {name} if PurePosixPath(name).suffix else {name, f"{name}.md"}
        matches = [p for p in self.list_files() if PurePosixPath(p).name.lower() in wanted]
        if not matches:
            return None
        matches.sort(key=lambda p: (p.count("/"), len(p), p))
        return matches[0]


# ── Companion library exporter ────────────────────────────────────────────────


class CommandLibraryExporter:
    """
    Ask an external tool to write the icon library JSON to a vault path.

    The command is split shell-style; '{path}' is replaced with the absolute
    target path.
    """

    def __init__(self, command: str, vault_root: Path, timeout: float = 60.0):
        self.command = command
        self.vault_root = Path(vault_root)
        self.timeout = timeout

    def export_library(self, path: str) -> None:
        target = self.vault_root / normalize_vault_path(path)
        argv = [part.replace("{path}", str(target)) for part in shlex.split(self.command)]
        if not argv:
            raise IntegrationUnavailableError("library export command is empty")
        try:
            result = subprocess.run(argv, capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.SubprocessError) as exc:
            raise IntegrationUnavailableError(f"library export failed to run: {exc}") from exc
        if result.returncode != 0:
            raise IntegrationUnavailableError(
                f"library export exited with {result.returncode}: {result.stderr.strip()}"
            )
        logger.info("Library export command finished: %s", target)


def build_library_exporter(command: str, vault_root: Path) -> Optional[CommandLibraryExporter]:
    command = (command or "").strip()
    if not command:
        return None
    return CommandLibraryExporter(command, vault_root)


def list_candidate_documents(
    store: DocumentStore,
    scan_mode: str,
    exclude_folder: str = "",
    warnings: Optional[List[str]] = None,
) -> List[DocumentMeta]:
    """
    Markdown documents to scan: every note, or only notes with 'publish: true'.

    An unreadable note is skipped with a warning; the rest of the vault is
    still returned.
    """
    skip_prefix = f"{exclude_folder.rstrip('/')}/" if exclude_folder else ""
    out: List[DocumentMeta] = []
    for path in store.list_markdown():
        if skip_prefix and path.startswith(skip_prefix):
            continue
        try:
            meta = store.metadata(path)
        except MissingResourceError:
            # deleted between list and stat
            continue
        except MalformedPayloadError as exc:
            msg = f"skipped unreadable note: {exc}"
            logger.warning(msg)
            if warnings is not None and msg not in warnings:
                warnings.append(msg)
            continue
        if scan_mode == "publishTrueOnly" and meta.frontmatter.get("publish") is not True:
            continue
        out.append(meta)
    return out
