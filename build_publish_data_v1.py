#!/usr/bin/env python3
# build_publish_data_v1 — generate publish data notes, assets manifest and runtime blocks for a vault
#
# v1 goal:
#   * Scan vault notes for ```zoommap blocks and timeline frontmatter
#   * Write one data note per marker set, one per named timeline, one for the icon library
#   * Write an assets manifest linking every file the published maps/timelines need
#   * Delete generated notes that no longer have a source
#   * Re-runs with no source changes write nothing
#
# Usage:
#   python build_publish_data_v1.py --vault ~/Vaults/Campaign prepare-all
#   python build_publish_data_v1.py --vault ~/Vaults/Campaign generate-data --scan-mode allMarkdown
#   python build_publish_data_v1.py --vault ~/Vaults/Campaign generate-assets --level debug

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Set

from publish_config_v1 import (
    MARKER_NOTE_PREFIX,
    PUBLISH_LOGS_DIRNAME,
    SCAN_MODES,
    TIMELINE_NOTE_PREFIX,
    PublishConfig,
    config_from_mapping,
    find_settings_file,
    load_config,
)
from asset_closure_v1 import load_json_resource, render_assets_manifest, resolve_asset_closure
from build_timelines_v1 import (
    group_timeline_entries,
    load_timeline_settings,
    timeline_fingerprint,
    timeline_note_path,
    timeline_payload,
)
from cleanup_artifacts_v1 import collect_orphans
from publish_artifacts_v1 import ArtifactRegistry, upsert_file_block, write_artifact, write_if_changed
from publish_errors_v1 import (
    ArtifactCollisionError,
    IntegrationUnavailableError,
    MalformedPayloadError,
    MissingResourceError,
    PublishError,
    WriteFailureError,
)
from publish_templates_v1 import (
    ZM_BEGIN_CSS,
    ZM_BEGIN_JS,
    ZM_END_CSS,
    ZM_END_JS,
    build_publish_css_block,
    build_publish_js_block,
)
from scan_timelines_v1 import TimelineEntry, scan_timelines
from scan_zoommaps_v1 import MapBlock, scan_zoommaps
from stable_id_v1 import hash_path_to_id, normalize_for_hash
from vault_store_v1 import DocumentStore, FileSystemVault, LibraryExporter, build_library_exporter

logger = logging.getLogger("publish_tools")

# ── Logging setup ──────────────────────────────────────────────────────────────


def setup_logger(log_dir: Optional[Path] = None, level: int = logging.INFO) -> logging.Logger:
    """Create a simple, file+console logger for the publish tools."""
    logger.setLevel(level)

    # Avoid duplicate handlers if main() is called repeatedly in the same process.
    if not logger.handlers:
        fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")

        if log_dir is not None:
            log_dir.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(log_dir / "build_publish_data_v1.log", encoding="utf-8")
            fh.setFormatter(fmt)
            logger.addHandler(fh)

        ch = logging.StreamHandler()
        ch.setFormatter(fmt)
        logger.addHandler(ch)

    for h in logger.handlers:
        h.setLevel(level)
    return logger


# ── Data structures ───────────────────────────────────────────────────────────


@dataclass
class PassReport:
    """Counts and named warnings for one command run."""

    name: str
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0
    deleted: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    keep: Set[str] = field(default_factory=set)
    written: List[str] = field(default_factory=list)

    def count(self, outcome: str, path: str) -> None:
        if outcome == "updated":
            self.updated += 1
            self.written.append(path)
        else:
            self.unchanged += 1

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def merge(self, other: "PassReport") -> None:
        self.updated += other.updated
        self.unchanged += other.unchanged
        self.skipped += other.skipped
        self.failed += other.failed
        self.deleted.extend(other.deleted)
        self.warnings.extend(other.warnings)
        self.keep |= other.keep
        self.written.extend(other.written)

    def summary(self) -> str:
        return (
            f"{self.name}: updated {self.updated}, unchanged {self.unchanged}, "
            f"skipped {self.skipped}, failed {self.failed}, deleted {len(self.deleted)}, "
            f"warnings {len(self.warnings)}"
        )


# ── Helpers ───────────────────────────────────────────────────────────────────


def marker_note_path(config: PublishConfig, markers_path: str) -> str:
    return f"{config.markers_folder}/{MARKER_NOTE_PREFIX}{hash_path_to_id(markers_path)}.md"


def ensure_artifact_folders(store: DocumentStore, config: PublishConfig) -> None:
    """Raises WriteFailureError; the caller's pass must not continue without these folders."""
    for folder in (config.publish_root, config.markers_folder, config.timelines_folder):
        store.create_folder(folder)


# ── Library ───────────────────────────────────────────────────────────────────


def export_library_note(
    store: DocumentStore,
    config: PublishConfig,
    report: PassReport,
    exporter: Optional[LibraryExporter] = None,
) -> None:
    lib_json = config.library_json_path
    lib_note = config.library_note_path

    if not store.exists(lib_json) and exporter is not None:
        try:
            exporter.export_library(lib_json)
        except IntegrationUnavailableError as exc:
            logger.warning("Library exporter unavailable: %s", exc)

    if not store.exists(lib_json):
        report.skipped += 1
        report.warn(
            f"library JSON missing: {lib_json}. Export it once from the map plugin settings (library file path)."
        )
        return

    try:
        data = load_json_resource(store, lib_json)
    except MalformedPayloadError as exc:
        report.skipped += 1
        report.warn(f"library JSON is invalid: {exc}")
        return

    meta = store.metadata(lib_json)
    outcome = write_artifact(
        store,
        lib_note,
        "library",
        data,
        meta.fingerprint,
        {"sourceKey": normalize_for_hash(lib_json), "sourceFile": meta.path},
    )
    report.count(outcome, lib_note)


# ── Markers ───────────────────────────────────────────────────────────────────


def generate_marker_notes(
    store: DocumentStore,
    config: PublishConfig,
    maps: List[MapBlock],
    report: PassReport,
    registry: ArtifactRegistry,
) -> Set[str]:
    keep: Set[str] = set()

    for m in maps:
        markers_path = m.markers_path
        note_path = marker_note_path(config, markers_path)
        try:
            if not registry.claim(note_path, normalize_for_hash(markers_path)):
                # several maps share one marker file
                continue
            if not store.exists(markers_path):
                raise MissingResourceError(markers_path, m.source_document)
            data = load_json_resource(store, markers_path)
            meta = store.metadata(markers_path)

            keep.add(note_path)
            outcome = write_artifact(
                store,
                note_path,
                "markers",
                data,
                meta.fingerprint,
                {
                    "sourceKey": normalize_for_hash(markers_path),
                    "sourceFile": meta.path,
                    "sourceNote": m.source_document,
                },
            )
            report.count(outcome, note_path)
        except MissingResourceError as exc:
            report.skipped += 1
            report.warn(f"missing marker file: {exc}")
        except MalformedPayloadError as exc:
            report.skipped += 1
            report.warn(f"invalid marker JSON: {exc}")
        except ArtifactCollisionError as exc:
            report.failed += 1
            report.warn(str(exc))
        except WriteFailureError as exc:
            report.failed += 1
            logger.error("WRITE FAILED: %s (%s)", note_path, exc)

    return keep


# ── Timelines ─────────────────────────────────────────────────────────────────


def generate_timeline_notes(
    store: DocumentStore,
    config: PublishConfig,
    entries: List[TimelineEntry],
    report: PassReport,
    registry: ArtifactRegistry,
) -> Set[str]:
    keep: Set[str] = set()
    settings = load_timeline_settings(store, config.timeline_settings_path)

    for group in group_timeline_entries(entries, config, settings):
        note_path = timeline_note_path(config, group.name)
        try:
            registry.claim(note_path, group.name.lower())
            keep.add(note_path)
            outcome = write_artifact(
                store,
                note_path,
                "timeline",
                timeline_payload(group),
                timeline_fingerprint(group),
                {"sourceKey": group.name, "timelineId": group.timeline_id},
            )
            report.count(outcome, note_path)
        except ArtifactCollisionError as exc:
            report.failed += 1
            report.warn(str(exc))
        except WriteFailureError as exc:
            report.failed += 1
            logger.error("WRITE FAILED: %s (%s)", note_path, exc)

    return keep


# ── Commands ──────────────────────────────────────────────────────────────────


def generate_publish_data(
    store: DocumentStore,
    config: PublishConfig,
    exporter: Optional[LibraryExporter] = None,
) -> PassReport:
    """Library note + marker notes + timeline notes, then orphan cleanup."""
    report = PassReport(name="data notes")
    ensure_artifact_folders(store, config)

    try:
        export_library_note(store, config, report, exporter)
    except (PublishError, OSError) as exc:
        report.failed += 1
        report.warn(f"library export failed (continuing with markers): {exc}")

    registry = ArtifactRegistry()

    maps = scan_zoommaps(store, config, report.warnings)
    marker_keep = generate_marker_notes(store, config, maps, report, registry)

    entries = scan_timelines(store, config, report.warnings)
    timeline_keep = generate_timeline_notes(store, config, entries, report, registry)

    report.keep = marker_keep | timeline_keep
    report.deleted.extend(collect_orphans(store, config.markers_folder, MARKER_NOTE_PREFIX, marker_keep))
    report.deleted.extend(collect_orphans(store, config.timelines_folder, TIMELINE_NOTE_PREFIX, timeline_keep))

    logger.info(
        "Generated publish data notes: %d marker, %d timeline (%s)",
        len(marker_keep),
        len(timeline_keep),
        report.summary(),
    )
    return report


def generate_assets_manifest(store: DocumentStore, config: PublishConfig) -> PassReport:
    report = PassReport(name="assets manifest")
    parent = str(PurePosixPath(config.assets_note_path).parent)
    store.create_folder("" if parent == "." else parent)

    maps = scan_zoommaps(store, config, report.warnings)
    entries = scan_timelines(store, config, report.warnings)

    generated: List[str] = [config.library_note_path, config.assets_note_path]
    generated.extend(marker_note_path(config, m.markers_path) for m in maps)
    names: Dict[str, str] = {}
    for e in entries:
        for n in e.timeline_names:
            names.setdefault(n.lower(), n)
    generated.extend(timeline_note_path(config, n) for n in names.values())

    assets = resolve_asset_closure(store, config, maps, generated, entries, report.warnings)
    text = render_assets_manifest(assets)

    try:
        if write_if_changed(store, config.assets_note_path, text):
            report.count("updated", config.assets_note_path)
        else:
            report.count("unchanged", config.assets_note_path)
    except WriteFailureError as exc:
        report.failed += 1
        logger.error("WRITE FAILED: %s (%s)", config.assets_note_path, exc)

    report.keep = set(assets)
    logger.info("Assets manifest %s: %d asset(s)", config.assets_note_path, len(assets))
    return report


def install_publish_runtime(store: DocumentStore, config: PublishConfig) -> PassReport:
    report = PassReport(name="runtime")
    blocks = [
        (config.runtime_js_path, ZM_BEGIN_JS, ZM_END_JS, build_publish_js_block(config.runtime_stamp, config.publish_root)),
        (config.runtime_css_path, ZM_BEGIN_CSS, ZM_END_CSS, build_publish_css_block()),
    ]
    for path, begin, end, block in blocks:
        try:
            wrote = upsert_file_block(store, path, begin, end, block)
            report.count("updated" if wrote else "unchanged", path)
        except WriteFailureError as exc:
            report.failed += 1
            logger.error("WRITE FAILED: %s (%s)", path, exc)
        except MalformedPayloadError as exc:
            report.failed += 1
            report.warn(f"cannot update runtime block: {exc}")

    logger.info("Publish runtime installed/updated: %s + %s", config.runtime_js_path, config.runtime_css_path)
    logger.info("Reminder: publish.js works only with a custom domain and must be published.")
    return report


def prepare_all(
    store: DocumentStore,
    config: PublishConfig,
    exporter: Optional[LibraryExporter] = None,
) -> PassReport:
    report = PassReport(name="prepare all")
    report.merge(install_publish_runtime(store, config))
    report.merge(generate_publish_data(store, config, exporter))
    report.merge(generate_assets_manifest(store, config))
    logger.info(
        "Done. Next: Publish changes → select %s, %s and %s → Add linked → Publish.",
        config.runtime_js_path,
        config.runtime_css_path,
        config.assets_note_path,
    )
    return report


COMMANDS = ("install-runtime", "generate-data", "generate-assets", "prepare-all")


def run_command(
    command: str,
    store: DocumentStore,
    config: PublishConfig,
    exporter: Optional[LibraryExporter] = None,
) -> PassReport:
    if command == "install-runtime":
        return install_publish_runtime(store, config)
    if command == "generate-data":
        return generate_publish_data(store, config, exporter)
    if command == "generate-assets":
        return generate_assets_manifest(store, config)
    if command == "prepare-all":
        return prepare_all(store, config, exporter)
    raise ValueError(f"Unknown command: {command}")


# ── CLI ───────────────────────────────────────────────────────────────────────


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate publish data notes, assets manifest and runtime blocks for a map/timeline vault.",
    )
    parser.add_argument("--vault", required=True, help="Vault root folder.")
    parser.add_argument(
        "--config",
        default=None,
        help="Settings file (YAML/JSON). Default: publish.settings.{yaml,yml,json} in the vault root, if present.",
    )
    parser.add_argument("--scan-mode", choices=list(SCAN_MODES), default=None, help="Which notes to scan.")
    parser.add_argument("--publish-root", default=None, help="Folder for generated data notes (e.g. ZoomMap/publish).")
    parser.add_argument("--assets-note", default=None, help="Path of the generated assets manifest note.")
    parser.add_argument("--library-json", default=None, help="Path of the map plugin's library JSON.")
    parser.add_argument(
        "--no-note-links",
        action="store_true",
        help="Do not add notes linked from markers (and swap presets) to the assets manifest.",
    )
    parser.add_argument(
        "--library-export-cmd",
        default=None,
        help="Command that writes the library JSON when it is missing; '{path}' is replaced with the target.",
    )
    parser.add_argument("--log-dir", default=None, help=f"Log folder (default: <vault>/{PUBLISH_LOGS_DIRNAME}).")
    parser.add_argument(
        "--level",
        choices=["debug", "info", "warning", "error"],
        default="info",
        help="Logging level (default: info).",
    )
    parser.add_argument("command", choices=list(COMMANDS), help="What to run.")
    return parser.parse_args(argv)


def cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if args.scan_mode:
        overrides["scan_mode"] = args.scan_mode
    if args.publish_root:
        overrides["publish_root"] = args.publish_root
    if args.assets_note:
        overrides["assets_note_path"] = args.assets_note
    if args.library_json:
        overrides["library_json_path"] = args.library_json
    if args.no_note_links:
        overrides["include_note_links"] = False
    if args.library_export_cmd is not None:
        overrides["library_export_command"] = args.library_export_cmd
    return overrides


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)

    vault_root = Path(args.vault).expanduser().resolve()
    level_map = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
    }
    chosen = level_map.get(str(args.level).lower(), logging.INFO)
    log_dir = Path(args.log_dir).expanduser() if args.log_dir else vault_root / PUBLISH_LOGS_DIRNAME
    setup_logger(log_dir if vault_root.is_dir() else None, chosen)
    logger.info("Log level set to %s", str(args.level).lower())

    try:
        config_path = Path(args.config).expanduser() if args.config else find_settings_file(vault_root)
        config = load_config(config_path)
        config = config_from_mapping(cli_overrides(args), base=config)
        store = FileSystemVault(vault_root, config.config_dir)
    except (PublishError, OSError) as exc:
        logger.error("Cannot start: %s", exc)
        raise SystemExit(2) from exc

    if config_path is not None:
        logger.info("Using settings: %s", config_path)
    logger.info("Vault: %s (scan mode: %s)", vault_root, config.scan_mode)

    exporter = build_library_exporter(config.library_export_command, vault_root)

    try:
        report = run_command(args.command, store, config, exporter)
    except (PublishError, OSError) as exc:
        logger.error("Failed to run %s: %s", args.command, exc)
        raise SystemExit(1) from exc

    logger.info(report.summary())
    for w in report.warnings:
        logger.info("  warning: %s", w)
    if report.failed:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
