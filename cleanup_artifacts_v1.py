#!/usr/bin/env python3
"""
cleanup_artifacts_v1.py

Remove generated notes that the current pass no longer produces.

Only files named '<prefix><base36 id>.md' directly inside the artifact folder
are candidates; anything else in that folder is left alone.
"""

from __future__ import annotations

import logging
import re
from typing import List, Set

from publish_errors_v1 import WriteFailureError
from vault_store_v1 import DocumentStore

logger = logging.getLogger("publish_tools.cleanup")


def generated_name_pattern(prefix: str) -> "re.Pattern[str]":
    return re.compile(rf"^{re.escape(prefix)}[0-9a-z]+\.md$")


def collect_orphans(store: DocumentStore, folder: str, prefix: str, keep: Set[str]) -> List[str]:
    """Delete stale generated notes in `folder`. Returns the deleted paths."""
    pattern = generated_name_pattern(prefix)
    folder = folder.rstrip("/")
    deleted: List[str] = []

    for path in store.list_files(folder):
        rel = path[len(folder) + 1:] if folder else path
        if "/" in rel or not pattern.match(rel):
            continue
        if path in keep:
            continue
        try:
            store.delete(path)
        except WriteFailureError as exc:
            logger.warning("Failed to delete old generated note %s: %s", path, exc)
            continue
        logger.info("DELETED (orphan): %s", path)
        deleted.append(path)

    return deleted
