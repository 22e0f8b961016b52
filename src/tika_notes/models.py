"""Pydantic models for the note index."""

from __future__ import annotations

from datetime import datetime
from pathlib import PurePosixPath
from typing import Any, NamedTuple

from pydantic import BaseModel, Field, PrivateAttr, field_validator, model_validator

from .config import SCHEMA_VERSION
from .errors import ParseErrorKind

# Accepted besides RFC 3339, e.g. 2021-06-22T12:48:16-0400
_LEGACY_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


class FileEntry(NamedTuple):
    """One file in the externally supplied listing."""

    path: str  # POSIX path relative to the vault root
    mtime: float
    size: int


class Document(BaseModel):
    """One indexed note."""

    model_config = {"frozen": True}

    id: str  # Derived from the filename, stable across re-index
    path: str  # Relative to the vault root
    title: str | None = None
    tags: list[str] = Field(default_factory=list)  # Set semantics: sorted, unique
    metadata: dict[str, Any] = Field(default_factory=dict)  # Other front-matter keys
    body: str = ""
    outgoing_links: list[str] = Field(default_factory=list)  # First-occurrence order
    content_hash: str
    modified_at: float = 0.0
    size: int = 0

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> list[str]:
        # A bare string is a single tag
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, (list, tuple, set, frozenset)):
            raise ValueError("tags must be a string or a list of strings")
        tags = {str(tag).strip() for tag in value if tag is not None}
        return sorted(tag for tag in tags if tag)

    @property
    def filename(self) -> str:
        """Front-matter ``filename`` if set, else the basename of ``path``."""
        return self.get_str("filename") or PurePosixPath(self.path).name

    def get_str(self, key: str, default: str | None = None) -> str | None:
        """Return a front-matter value as a string, or *default* if absent."""
        value = self.metadata.get(key)
        if value is None or isinstance(value, (list, dict)):
            return default
        return str(value)

    def get_list(self, key: str) -> list[Any]:
        """Return a front-matter value as a list (scalars are wrapped)."""
        value = self.metadata.get(key)
        if value is None:
            return []
        if isinstance(value, list):
            return list(value)
        return [value]

    @property
    def author(self) -> str | None:
        return self.get_str("author")

    @property
    def date(self) -> datetime | None:
        """Front-matter ``date`` parsed as RFC 3339 or the legacy offset format."""
        raw = self.get_str("date")
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            pass
        try:
            return datetime.strptime(raw, _LEGACY_DATE_FORMAT)
        except ValueError:
            return None


class Index(BaseModel):
    """The full corpus.

    ``backlinks`` and ``tag_index`` are derived from ``documents`` when the
    Index is constructed and are never persisted. Only ids present in
    ``documents`` appear in them; dangling links are simply left out.
    """

    schema_version: int = SCHEMA_VERSION
    documents: dict[str, Document] = Field(default_factory=dict)

    _backlinks: dict[str, frozenset[str]] = PrivateAttr(default_factory=dict)
    _tag_index: dict[str, frozenset[str]] = PrivateAttr(default_factory=dict)

    @model_validator(mode="after")
    def _check_keys(self) -> Index:
        for doc_id, document in self.documents.items():
            if doc_id != document.id:
                raise ValueError(f"document key {doc_id!r} does not match id {document.id!r}")
        return self

    def model_post_init(self, __context: Any) -> None:
        self._rebuild_derived()

    def _rebuild_derived(self) -> None:
        backlinks: dict[str, set[str]] = {}
        tag_index: dict[str, set[str]] = {}
        for doc_id, document in self.documents.items():
            for target in document.outgoing_links:
                if target in self.documents:
                    backlinks.setdefault(target, set()).add(doc_id)
            for tag in document.tags:
                tag_index.setdefault(tag, set()).add(doc_id)
        self._backlinks = {k: frozenset(v) for k, v in backlinks.items()}
        self._tag_index = {k: frozenset(v) for k, v in tag_index.items()}

    @property
    def backlinks(self) -> dict[str, frozenset[str]]:
        return self._backlinks

    @property
    def tag_index(self) -> dict[str, frozenset[str]]:
        return self._tag_index

    def backlinks_for(self, doc_id: str) -> frozenset[str]:
        return self._backlinks.get(doc_id, frozenset())


class Diagnostic(BaseModel):
    """A non-fatal problem with one source file, reported after a build."""

    path: str
    kind: ParseErrorKind
    message: str


class BuildStats(BaseModel):
    """What a build did to each document."""

    added: int = 0
    updated: int = 0
    touched: int = 0  # mtime/size changed, content identical
    unchanged: int = 0
    removed: int = 0
    failed: int = 0


class BuildResult(BaseModel):
    index: Index
    diagnostics: list[Diagnostic] = Field(default_factory=list)
    stats: BuildStats = Field(default_factory=BuildStats)


class ResultRecord(BaseModel):
    """A query match, serialized for downstream field extraction."""

    id: str
    filename: str
    title: str | None = None
    tags: list[str] = Field(default_factory=list)
    score: float
    author: str | None = None
    date: str | None = None
