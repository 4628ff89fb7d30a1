import json
import logging
import os
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from vault_store_v1 import FileSystemVault  # noqa: E402


class VaultBuilder:
    """Writes fixture files into a throwaway vault directory."""

    def __init__(self, root: Path):
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    def path(self, rel: str) -> Path:
        return self.root / rel

    def write(self, rel: str, text: str) -> Path:
        p = self.path(rel)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(text, encoding="utf-8")
        return p

    def write_json(self, rel: str, obj) -> Path:
        return self.write(rel, json.dumps(obj, indent=2))

    def write_bytes(self, rel: str, data: bytes = b"\x89PNG\r\n") -> Path:
        p = self.path(rel)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)
        return p

    def set_mtime_ms(self, rel: str, ms: int) -> None:
        ns = ms * 1_000_000
        os.utime(self.path(rel), ns=(ns, ns))

    def read(self, rel: str) -> str:
        return self.path(rel).read_text(encoding="utf-8")

    def exists(self, rel: str) -> bool:
        return self.path(rel).is_file()

    def store(self) -> FileSystemVault:
        return FileSystemVault(self.root)


@pytest.fixture
def vault(tmp_path):
    return VaultBuilder(tmp_path / "vault")


@pytest.fixture
def store(vault):
    return vault.store()


@pytest.fixture
def clean_logger():
    lg = logging.getLogger("publish_tools")
    yield lg
    for h in list(lg.handlers):
        lg.removeHandler(h)
        h.close()
    lg.setLevel(logging.NOTSET)
