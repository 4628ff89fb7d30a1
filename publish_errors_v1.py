#!/usr/bin/env python3
"""
publish_errors_v1.py

Error types raised by the publish pipeline.

Per-record errors (missing file, bad JSON/YAML, collisions) are caught by the
pass that raised them, logged, and counted. Only folder setup failures are
allowed to abort a pass.
"""


class PublishError(Exception):
    """Base class for all publish pipeline errors."""


class MissingResourceError(PublishError, FileNotFoundError):
    """A referenced path does not resolve to an existing file in the vault."""

    def __init__(self, path: str, referenced_from: str = ""):
        self.path = path
        self.referenced_from = referenced_from
        msg = f"missing: {path}"
        if referenced_from:
            msg += f" (referenced from {referenced_from})"
        super().__init__(msg)


class MalformedPayloadError(PublishError, ValueError):
    """A JSON/YAML source could not be parsed into the expected shape."""


class IntegrationUnavailableError(PublishError, RuntimeError):
    """The optional companion library exporter is absent or failed."""


class WriteFailureError(PublishError, OSError):
    """The vault rejected a write/delete/create operation."""


class ArtifactCollisionError(PublishError, ValueError):
    """Two different source keys map to the same generated artifact path."""

    def __init__(self, path: str, first_key: str, second_key: str):
        self.path = path
        self.first_key = first_key
        self.second_key = second_key
        super().__init__(
            f"artifact path collision at {path}: {first_key!r} and {second_key!r} hash to the same id"
        )
