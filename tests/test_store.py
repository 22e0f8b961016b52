"""Tests for index persistence: format, atomic save, locking and load errors."""

from __future__ import annotations

import fcntl
import json
from pathlib import Path

import pytest

from conftest import MemoryVault, note_text
from tika_notes.config import SCHEMA_VERSION
from tika_notes.errors import ErrorCode, StoreError, StoreErrorKind
from tika_notes.indexer import build
from tika_notes.models import Index
from tika_notes.store import IndexStore, decode_index, encode_index, load_index, save_index


@pytest.fixture
def sample_index() -> Index:
    mem = MemoryVault()
    mem.put("a.md", note_text("Foo", "See [[b]] and [[ghost]].", ["x", "y"], author="Ada", date="2024-01-15"))
    mem.put("b.md", note_text("Bar", "Ünïcödé body"))
    return build(Index(), mem.listing(), mem.read).index


# =============================================================================
# Format
# =============================================================================


class TestFormat:
    def test_round_trip(self, tmp_path: Path, sample_index: Index):
        location = tmp_path / "index.json"

        save_index(location, sample_index)
        loaded = load_index(location)

        assert loaded.model_dump() == sample_index.model_dump()
        assert loaded.backlinks == sample_index.backlinks
        assert loaded.tag_index == sample_index.tag_index

    def test_round_trip_non_finite_metadata(self, tmp_path: Path):
        mem = MemoryVault()
        mem.put("w.md", "---\nweight: .inf\nfloor: -.inf\nratio: .nan\nplain: 1.5\n---\n")
        index = build(Index(), mem.listing(), mem.read).index
        location = tmp_path / "index.json"

        save_index(location, index)
        loaded = load_index(location)

        assert index.documents["w"].metadata == {
            "weight": "inf",
            "floor": "-inf",
            "ratio": "nan",
            "plain": 1.5,
        }
        assert loaded.model_dump() == index.model_dump()

    def test_saving_twice_is_byte_identical(self, tmp_path: Path, sample_index: Index):
        location = tmp_path / "index.json"

        save_index(location, sample_index)
        first = location.read_bytes()
        save_index(location, load_index(location))

        assert location.read_bytes() == first

    def test_layout(self, sample_index: Index):
        raw = encode_index(sample_index)
        payload = json.loads(raw)

        assert raw.endswith(b"\n")
        assert payload["schema_version"] == SCHEMA_VERSION
        assert sorted(payload) == ["documents", "schema_version"]
        assert list(payload["documents"]) == ["a", "b"]
        assert "backlinks" not in payload
        assert "Ünïcödé".encode("utf-8") in raw

    def test_empty_index(self, tmp_path: Path):
        location = tmp_path / "nested" / "dir" / "index.json"

        save_index(location, Index())

        assert load_index(location).documents == {}


# =============================================================================
# Load errors
# =============================================================================


class TestLoadErrors:
    def test_missing(self, tmp_path: Path):
        with pytest.raises(StoreError) as exc_info:
            load_index(tmp_path / "absent.json")

        assert exc_info.value.kind is StoreErrorKind.MISSING
        assert exc_info.value.code is ErrorCode.INDEX_NOT_FOUND

    def test_load_or_empty_only_for_missing(self, tmp_path: Path):
        location = tmp_path / "index.json"

        assert IndexStore(location).load_or_empty().documents == {}

        location.write_bytes(b"garbage")
        with pytest.raises(StoreError):
            IndexStore(location).load_or_empty()

    @pytest.mark.parametrize(
        "raw",
        [
            b"not json at all",
            b"\xff\xfe\x00",
            b"[1, 2, 3]",
            b"{}",
            b'{"schema_version": "1", "documents": {}}',
            b'{"schema_version": true, "documents": {}}',
            b'{"schema_version": 1, "documents": {"a": {"id": "a"}}}',
            b'{"schema_version": 1, "documents": []}',
        ],
    )
    def test_corrupt(self, raw: bytes):
        with pytest.raises(StoreError) as exc_info:
            decode_index(raw, "mem")

        assert exc_info.value.kind is StoreErrorKind.CORRUPT
        assert exc_info.value.code is ErrorCode.INDEX_CORRUPT
        assert "--rebuild" in exc_info.value.details["suggestion"]

    def test_mismatched_key_is_corrupt(self, sample_index: Index):
        payload = json.loads(encode_index(sample_index))
        payload["documents"]["zzz"] = payload["documents"].pop("a")

        with pytest.raises(StoreError) as exc_info:
            decode_index(json.dumps(payload).encode(), "mem")

        assert exc_info.value.kind is StoreErrorKind.CORRUPT

    def test_truncated_file_is_corrupt(self, tmp_path: Path, sample_index: Index):
        location = tmp_path / "index.json"
        save_index(location, sample_index)
        location.write_bytes(location.read_bytes()[:40])

        with pytest.raises(StoreError) as exc_info:
            load_index(location)

        assert exc_info.value.kind is StoreErrorKind.CORRUPT

    def test_newer_version_is_unsupported(self):
        raw = json.dumps({"schema_version": SCHEMA_VERSION + 1, "documents": {}}).encode()

        with pytest.raises(StoreError) as exc_info:
            decode_index(raw, "mem")

        assert exc_info.value.kind is StoreErrorKind.UNSUPPORTED_VERSION
        assert exc_info.value.code is ErrorCode.INDEX_UNSUPPORTED_VERSION


# =============================================================================
# Atomic save and locking
# =============================================================================


class TestSaveAndLocking:
    def test_no_temp_files_left_behind(self, tmp_path: Path, sample_index: Index):
        location = tmp_path / "index.json"

        save_index(location, sample_index)
        save_index(location, sample_index)

        assert sorted(p.name for p in tmp_path.iterdir()) == ["index.json", "index.json.lock"]

    def test_save_fails_fast_when_locked(self, tmp_path: Path, sample_index: Index):
        location = tmp_path / "index.json"
        save_index(location, Index())
        before = location.read_bytes()

        with open(location.with_name("index.json.lock"), "ab") as other:
            fcntl.flock(other.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            with pytest.raises(StoreError) as exc_info:
                save_index(location, sample_index)

        assert exc_info.value.kind is StoreErrorKind.LOCK_CONFLICT
        assert exc_info.value.code is ErrorCode.INDEX_LOCKED
        assert "retry later" in exc_info.value.details["suggestion"]
        assert location.read_bytes() == before

    def test_second_writer_conflicts(self, tmp_path: Path):
        location = tmp_path / "index.json"
        first = IndexStore(location)
        second = IndexStore(location)

        with first.writer_lock():
            with pytest.raises(StoreError) as exc_info:
                with second.writer_lock():
                    pass

        assert exc_info.value.kind is StoreErrorKind.LOCK_CONFLICT
        # Released afterwards
        with second.writer_lock():
            pass

    def test_writer_lock_is_reentrant(self, tmp_path: Path, sample_index: Index):
        store = IndexStore(tmp_path / "index.json")

        with store.writer_lock():
            previous = store.load_or_empty()
            store.save(sample_index)

        assert previous.documents == {}
        assert store.load().model_dump() == sample_index.model_dump()

    def test_reads_allowed_while_writer_lock_held(self, tmp_path: Path, sample_index: Index):
        location = tmp_path / "index.json"
        save_index(location, sample_index)
        writer = IndexStore(location)

        with writer.writer_lock():
            assert load_index(location).model_dump() == sample_index.model_dump()

    def test_unwritable_directory(self, tmp_path: Path, sample_index: Index):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")

        with pytest.raises(StoreError) as exc_info:
            save_index(blocker / "index.json", sample_index)

        assert exc_info.value.kind is StoreErrorKind.IO
