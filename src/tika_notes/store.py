"""Persistent index storage.

The index is a single JSON file::

    {"schema_version": 1, "documents": {"<id>": {...}, ...}}

written with sorted keys so that saving the same Index twice produces
byte-identical files. Derived structures (backlinks, tag index) are not
stored; they are rebuilt whenever an Index is constructed.

Locking uses fcntl advisory locks:

- Writers hold ``LOCK_EX | LOCK_NB`` on the sidecar ``<index>.lock`` file.
  A second writer fails immediately with ``LOCK_CONFLICT``.
- Readers hold ``LOCK_SH`` on the index file while reading it.
- ``save`` writes a temp file in the same directory and ``os.replace``s it
  over the index while holding ``LOCK_EX`` on the old file, so a reader sees
  either the previous index or the new one, never a partial write.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO

from pydantic import ValidationError

from .config import LOCK_SUFFIX, SCHEMA_VERSION
from .errors import StoreError, StoreErrorKind
from .models import Index

log = logging.getLogger(__name__)


def encode_index(index: Index) -> bytes:
    """Serialize an Index to its canonical on-disk bytes."""
    payload = index.model_dump(mode="json")
    payload["schema_version"] = SCHEMA_VERSION
    text = json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False)
    return (text + "\n").encode("utf-8")


def decode_index(raw: bytes, location: str = "<memory>") -> Index:
    """Deserialize on-disk bytes into an Index.

    Raises:
        StoreError: ``CORRUPT`` if the bytes are not a valid index,
            ``UNSUPPORTED_VERSION`` if written by a newer schema.
    """
    try:
        payload = json.loads(raw.decode("utf-8"))
    except ValueError as e:
        raise StoreError(StoreErrorKind.CORRUPT, location, f"Index file is corrupt: {e}") from e

    if not isinstance(payload, dict):
        raise StoreError(StoreErrorKind.CORRUPT, location, "Index file is corrupt: not a JSON object")

    version = payload.get("schema_version")
    if not isinstance(version, int) or isinstance(version, bool) or version < 1:
        raise StoreError(
            StoreErrorKind.CORRUPT,
            location,
            f"Index file is corrupt: invalid schema_version {version!r}",
        )
    if version > SCHEMA_VERSION:
        raise StoreError(
            StoreErrorKind.UNSUPPORTED_VERSION,
            location,
            f"Index schema version {version} is newer than supported version {SCHEMA_VERSION}",
        )

    try:
        return Index.model_validate(payload)
    except ValidationError as e:
        raise StoreError(
            StoreErrorKind.CORRUPT,
            location,
            f"Index file is corrupt: {e.error_count()} invalid field(s)",
        ) from e


class IndexStore:
    """Load and save the Index at a fixed location."""

    def __init__(self, location: Path | str) -> None:
        self.location = Path(location)
        self.lock_path = self.location.with_name(self.location.name + LOCK_SUFFIX)
        self._lock_file: IO[bytes] | None = None
        self._lock_depth = 0

    # ─────────────────────────────────────────────────────────────────────────
    # Writer lock
    # ─────────────────────────────────────────────────────────────────────────

    def _acquire_writer_lock(self) -> None:
        try:
            self.location.parent.mkdir(parents=True, exist_ok=True)
            lock_file = open(self.lock_path, "ab")
        except OSError as e:
            raise StoreError(
                StoreErrorKind.IO, str(self.location), f"Cannot open lock file {self.lock_path}: {e}"
            ) from e

        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            lock_file.close()
            raise StoreError(
                StoreErrorKind.LOCK_CONFLICT,
                str(self.location),
                f"Index {self.location} is locked by another writer",
            )
        except OSError as e:
            lock_file.close()
            raise StoreError(
                StoreErrorKind.IO, str(self.location), f"Cannot lock {self.lock_path}: {e}"
            ) from e

        self._lock_file = lock_file
        log.debug("Acquired writer lock %s", self.lock_path)

    def _release_writer_lock(self) -> None:
        if self._lock_file is None:
            return
        try:
            fcntl.flock(self._lock_file.fileno(), fcntl.LOCK_UN)
        finally:
            self._lock_file.close()
            self._lock_file = None
        log.debug("Released writer lock %s", self.lock_path)

    @contextmanager
    def writer_lock(self) -> Iterator[None]:
        """Hold the exclusive writer lock; re-entrant for this store.

        Raises:
            StoreError: ``LOCK_CONFLICT`` if another writer holds it.
        """
        if self._lock_depth == 0:
            self._acquire_writer_lock()
        self._lock_depth += 1
        try:
            yield
        finally:
            self._lock_depth -= 1
            if self._lock_depth == 0:
                self._release_writer_lock()

    # ─────────────────────────────────────────────────────────────────────────
    # Load / save
    # ─────────────────────────────────────────────────────────────────────────

    def exists(self) -> bool:
        return self.location.exists()

    def load(self) -> Index:
        """Read the Index under a shared lock.

        Raises:
            StoreError: ``MISSING``, ``CORRUPT``, ``UNSUPPORTED_VERSION`` or ``IO``.
        """
        try:
            fh = open(self.location, "rb")
        except FileNotFoundError:
            raise StoreError(
                StoreErrorKind.MISSING, str(self.location), f"No index found at {self.location}"
            )
        except OSError as e:
            raise StoreError(
                StoreErrorKind.IO, str(self.location), f"Cannot read index {self.location}: {e}"
            ) from e

        with fh:
            try:
                fcntl.flock(fh.fileno(), fcntl.LOCK_SH)
                try:
                    raw = fh.read()
                finally:
                    fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
            except OSError as e:
                raise StoreError(
                    StoreErrorKind.IO, str(self.location), f"Cannot read index {self.location}: {e}"
                ) from e

        index = decode_index(raw, str(self.location))
        log.debug("Loaded %d documents from %s", len(index.documents), self.location)
        return index

    def load_or_empty(self) -> Index:
        """Like :meth:`load`, but a missing index is an empty one."""
        try:
            return self.load()
        except StoreError as e:
            if e.kind is StoreErrorKind.MISSING:
                log.info("No previous index at %s, starting fresh", self.location)
                return Index()
            raise

    def _replace(self, tmp_path: Path) -> None:
        try:
            current = open(self.location, "rb")
        except FileNotFoundError:
            os.replace(tmp_path, self.location)
            return

        with current:
            # Wait for in-flight readers of the old file
            fcntl.flock(current.fileno(), fcntl.LOCK_EX)
            try:
                os.replace(tmp_path, self.location)
            finally:
                fcntl.flock(current.fileno(), fcntl.LOCK_UN)

    def save(self, index: Index) -> None:
        """Atomically replace the persisted Index.

        Raises:
            StoreError: ``LOCK_CONFLICT`` if another writer holds the lock,
                ``IO`` if the file cannot be written.
        """
        data = encode_index(index)

        with self.writer_lock():
            tmp_path: Path | None = None
            try:
                with tempfile.NamedTemporaryFile(
                    mode="wb",
                    dir=self.location.parent,
                    prefix=f".{self.location.name}.",
                    suffix=".tmp",
                    delete=False,
                ) as f:
                    tmp_path = Path(f.name)
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                self._replace(tmp_path)
            except OSError as e:
                if tmp_path is not None and tmp_path.exists():
                    tmp_path.unlink()
                raise StoreError(
                    StoreErrorKind.IO, str(self.location), f"Cannot write index {self.location}: {e}"
                ) from e

        log.info("Saved %d documents to %s", len(index.documents), self.location)


def load_index(location: Path | str) -> Index:
    """Load the Index stored at *location*."""
    return IndexStore(location).load()


def save_index(location: Path | str, index: Index) -> None:
    """Atomically persist *index* at *location*."""
    IndexStore(location).save(index)
