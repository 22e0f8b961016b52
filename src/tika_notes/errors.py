"""Structured errors for tika.

Every error raised by the core carries an :class:`ErrorCode` so the CLI can
render it either as a human-readable line or as a JSON object
(``tika --json-errors ...``).

Recoverable errors (:class:`ParseError`, :class:`QueryError`) are turned into
diagnostics by their callers. :class:`StoreError`, :class:`ScanError` and
:class:`ConfigurationError` are fatal for the invoking command.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes for programmatic consumers."""

    PARSE_ERROR = "PARSE_ERROR"
    INDEX_NOT_FOUND = "INDEX_NOT_FOUND"
    INDEX_CORRUPT = "INDEX_CORRUPT"
    INDEX_UNSUPPORTED_VERSION = "INDEX_UNSUPPORTED_VERSION"
    INDEX_LOCKED = "INDEX_LOCKED"
    INDEX_IO_ERROR = "INDEX_IO_ERROR"
    INVALID_FILTER_KEY = "INVALID_FILTER_KEY"
    SOURCE_UNREADABLE = "SOURCE_UNREADABLE"
    DOCUMENT_NOT_FOUND = "DOCUMENT_NOT_FOUND"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


class TikaError(Exception):
    """Base class for all tika errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"error": error}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class ParseErrorKind(str, Enum):
    """Why a single source file could not become a Document.

    The first three come from the parser itself. ``UNREADABLE``,
    ``DUPLICATE_ID`` and ``EMPTY_ID`` are only produced by the index builder.
    """

    MISSING_FRONT_MATTER = "missing_front_matter"
    MALFORMED_FRONT_MATTER = "malformed_front_matter"
    INVALID_ENCODING = "invalid_encoding"
    UNREADABLE = "unreadable"
    DUPLICATE_ID = "duplicate_id"
    EMPTY_ID = "empty_id"


class ParseError(TikaError):
    """Raised when a markdown file cannot be parsed into a Document."""

    def __init__(self, path: str, kind: ParseErrorKind, message: str) -> None:
        self.path = path
        self.kind = kind
        super().__init__(
            ErrorCode.PARSE_ERROR,
            f"{path}: {message}",
            {"path": path, "kind": kind.value},
        )
        self.reason = message


class StoreErrorKind(str, Enum):
    CORRUPT = "corrupt"
    UNSUPPORTED_VERSION = "unsupported_version"
    LOCK_CONFLICT = "lock_conflict"
    MISSING = "missing"
    IO = "io"


_STORE_CODES = {
    StoreErrorKind.CORRUPT: ErrorCode.INDEX_CORRUPT,
    StoreErrorKind.UNSUPPORTED_VERSION: ErrorCode.INDEX_UNSUPPORTED_VERSION,
    StoreErrorKind.LOCK_CONFLICT: ErrorCode.INDEX_LOCKED,
    StoreErrorKind.MISSING: ErrorCode.INDEX_NOT_FOUND,
    StoreErrorKind.IO: ErrorCode.INDEX_IO_ERROR,
}

_STORE_SUGGESTIONS = {
    StoreErrorKind.CORRUPT: "Run 'tika index --rebuild' to recreate the index",
    StoreErrorKind.UNSUPPORTED_VERSION: (
        "The index was written by a newer tika. Upgrade, or run 'tika index --rebuild'"
    ),
    StoreErrorKind.LOCK_CONFLICT: "Another 'tika index' is running; retry later",
    StoreErrorKind.MISSING: "Run 'tika index <source_directory>' first",
}


class StoreError(TikaError):
    """Raised when the persisted index cannot be read, written or locked."""

    def __init__(self, kind: StoreErrorKind, location: str, message: str) -> None:
        self.kind = kind
        self.location = location
        details: dict[str, Any] = {"location": location, "kind": kind.value}
        suggestion = _STORE_SUGGESTIONS.get(kind)
        if suggestion:
            details["suggestion"] = suggestion
        super().__init__(_STORE_CODES[kind], message, details)


class QueryError(TikaError):
    """A query term that could not be interpreted."""

    def __init__(self, term: str, key: str, message: str) -> None:
        self.term = term
        self.key = key
        super().__init__(ErrorCode.INVALID_FILTER_KEY, message, {"term": term, "key": key})


class ScanError(TikaError):
    """Raised when the source directory cannot be listed."""

    def __init__(self, root: str, message: str) -> None:
        self.root = root
        super().__init__(ErrorCode.SOURCE_UNREADABLE, message, {"source": root})


class ConfigurationError(TikaError):
    """Raised when required configuration is missing."""

    def __init__(self, message: str, suggestion: str | None = None) -> None:
        details = {"suggestion": suggestion} if suggestion else None
        super().__init__(ErrorCode.CONFIGURATION_ERROR, message, details)
