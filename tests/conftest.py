"""Shared test fixtures for the tika test suite.

Design:
- vault: isolated vault directory; TIKA_* variables cleared so the user's
  environment and config file never leak in
- write_note: writes a note with front matter and a fixed mtime
- runner / cli_invoke: CliRunner bound to the vault
"""

import os
from pathlib import Path
from typing import Any

import pytest
import yaml
from click.testing import CliRunner

from tika_notes.cli import cli
from tika_notes.models import FileEntry

# Fixed base mtime so ordering and staleness never depend on the wall clock
BASE_MTIME = 1_700_000_000.0


# ─────────────────────────────────────────────────────────────────────────────
# Core Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Point config lookups at an empty temp location."""
    for name in ("TIKA_SOURCE", "TIKA_INDEX_PATH", "TIKA_WORKERS", "TIKA_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TIKA_CONFIG", str(tmp_path / "no-such-config.yaml"))


@pytest.fixture
def vault(tmp_path: Path) -> Path:
    """Empty vault directory."""
    root = tmp_path / "vault"
    root.mkdir()
    return root


@pytest.fixture
def index_file(vault: Path) -> Path:
    """Default index location for the vault."""
    return vault / ".tika" / "index.json"


@pytest.fixture
def runner() -> CliRunner:
    """CLI runner with isolated environment."""
    return CliRunner()


@pytest.fixture
def cli_invoke(runner: CliRunner, vault: Path):
    """Helper for invoking the CLI against the vault.

    Usage:
        def test_query(cli_invoke):
            result = cli_invoke(["query", "tag:x"])
            assert result.exit_code == 0
    """

    def _invoke(args: list[str], catch_exceptions: bool = False):
        return runner.invoke(
            cli,
            ["--source", str(vault), *args],
            catch_exceptions=catch_exceptions,
        )

    return _invoke


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def note_text(title: str | None = None, body: str = "", tags: list[str] | None = None, **extra: Any) -> str:
    """Render a note with YAML front matter."""
    front_matter: dict[str, Any] = {}
    if title is not None:
        front_matter["title"] = title
    if tags is not None:
        front_matter["tags"] = tags
    front_matter.update(extra)
    header = yaml.safe_dump(front_matter, sort_keys=True) if front_matter else ""
    return f"---\n{header}---\n\n{body}\n"


def write_note(
    root: Path,
    path: str,
    title: str | None = None,
    body: str = "",
    tags: list[str] | None = None,
    mtime: float = BASE_MTIME,
    **extra: Any,
) -> Path:
    """Helper to create a note with front matter and a fixed mtime.

    Usage in tests:
        from conftest import write_note
        write_note(vault, "a.md", "Foo", "See [[b]]", ["x"])
    """
    file_path = root / path
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(note_text(title, body, tags, **extra), encoding="utf-8")
    os.utime(file_path, (mtime, mtime))
    return file_path


def write_raw(root: Path, path: str, raw: bytes, mtime: float = BASE_MTIME) -> Path:
    """Write arbitrary bytes as a vault file."""
    file_path = root / path
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_bytes(raw)
    os.utime(file_path, (mtime, mtime))
    return file_path


class MemoryVault:
    """In-memory file listing and reader for builder tests."""

    def __init__(self) -> None:
        self.files: dict[str, tuple[bytes, float]] = {}
        self.reads: list[str] = []
        self.unreadable: set[str] = set()

    def put(self, path: str, content: str | bytes, mtime: float = BASE_MTIME) -> None:
        raw = content.encode("utf-8") if isinstance(content, str) else content
        self.files[path] = (raw, mtime)

    def remove(self, path: str) -> None:
        del self.files[path]

    def listing(self) -> list[FileEntry]:
        return [
            FileEntry(path, mtime, len(raw))
            for path, (raw, mtime) in sorted(self.files.items())
        ]

    def read(self, path: str) -> bytes:
        self.reads.append(path)
        if path in self.unreadable:
            raise PermissionError(13, "Permission denied", path)
        return self.files[path][0]
