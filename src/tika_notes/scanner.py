"""Vault enumeration and raw file reading.

These are the filesystem collaborators of the index builder, which itself
never touches the disk.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from .config import DEFAULT_GLOB
from .errors import ScanError
from .models import FileEntry

log = logging.getLogger(__name__)


def _is_hidden(rel_path: Path) -> bool:
    return any(part.startswith(".") for part in rel_path.parts)


def scan_vault(
    root: Path,
    pattern: str = DEFAULT_GLOB,
    *,
    exclude_hidden: bool = True,
) -> list[FileEntry]:
    """List the markdown files of a vault.

    Args:
        root: Vault directory.
        pattern: Glob relative to *root*.
        exclude_hidden: Skip files under dot-directories (e.g. ``.tika/``, ``.git/``).

    Returns:
        Entries sorted by relative path.

    Raises:
        ScanError: If *root* does not exist or cannot be listed.
    """
    root = Path(root)
    if not root.exists():
        raise ScanError(str(root), f"Source directory does not exist: {root}")
    if not root.is_dir():
        raise ScanError(str(root), f"Source is not a directory: {root}")

    entries: list[FileEntry] = []
    try:
        # glob() silently yields nothing for unreadable directories
        next(root.iterdir(), None)
        candidates = list(root.glob(pattern))
    except (OSError, ValueError) as e:
        raise ScanError(str(root), f"Cannot list {root}: {e}") from e

    for file_path in candidates:
        rel_path = file_path.relative_to(root)
        if exclude_hidden and _is_hidden(rel_path):
            continue
        try:
            stat = file_path.stat()
        except OSError as e:
            log.debug("Skipping %s: %s", file_path, e)
            continue
        if not file_path.is_file():
            continue
        entries.append(FileEntry(rel_path.as_posix(), stat.st_mtime, stat.st_size))

    entries.sort(key=lambda entry: entry.path)
    log.info("Found %d files matching %s in %s", len(entries), pattern, root)
    return entries


def read_vault_file(root: Path) -> Callable[[str], bytes]:
    """Return a reader resolving relative vault paths against *root*."""
    root = Path(root)

    def _read(rel_path: str) -> bytes:
        return (root / rel_path).read_bytes()

    return _read
