"""Markdown parsing with YAML frontmatter support."""

from __future__ import annotations

import hashlib
import math
import re
from datetime import date, datetime, time
from typing import Any

import yaml
from frontmatter import YAMLHandler
from pydantic import ValidationError

from ..errors import ParseError, ParseErrorKind
from ..models import Document
from .links import document_id, extract_links

# Opening marker: a line of three or more dashes. Anything before it is ignored.
_OPENING_MARKER = re.compile(r"^-{3,}[ \t]*$", re.MULTILINE)

# Front-matter keys modeled as Document fields; everything else goes to metadata
_MODELED_KEYS = frozenset({"title", "tags"})

_handler = YAMLHandler()


def hash_content(raw: bytes) -> str:
    """Return the content fingerprint used for change detection."""
    return "sha256:" + hashlib.sha256(raw).hexdigest()


def _json_safe(value: Any) -> Any:
    """Convert YAML-decoded values into JSON-serializable ones.

    Dates and times become ISO-8601 strings; mapping keys become strings.
    Non-finite floats (``.inf``, ``.nan``) have no JSON form and become
    strings too.
    """
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, float) and not math.isfinite(value):
        return str(value)
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def split_front_matter(path: str, text: str) -> tuple[dict[str, Any], str]:
    """Split *text* into decoded front matter and body.

    Returns:
        Tuple of (front_matter, body).

    Raises:
        ParseError: If there is no complete block, or it is not a YAML mapping.
    """
    opening = _OPENING_MARKER.search(text)
    if opening is None:
        raise ParseError(
            path,
            ParseErrorKind.MISSING_FRONT_MATTER,
            "Missing frontmatter (no '---' block found)",
        )

    try:
        raw_fm, body = _handler.split(text[opening.start() :])
    except ValueError:
        raise ParseError(
            path,
            ParseErrorKind.MISSING_FRONT_MATTER,
            "Missing frontmatter (block opened with '---' is never closed)",
        )

    try:
        data = _handler.load(raw_fm)
    except yaml.YAMLError as e:
        raise ParseError(
            path,
            ParseErrorKind.MALFORMED_FRONT_MATTER,
            f"Failed to parse frontmatter: {e}",
        ) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ParseError(
            path,
            ParseErrorKind.MALFORMED_FRONT_MATTER,
            f"Frontmatter must be a mapping, got {type(data).__name__}",
        )

    return data, body.strip()


def parse_document(
    path: str,
    raw: bytes,
    *,
    modified_at: float = 0.0,
    size: int | None = None,
) -> Document:
    """Parse raw file bytes into a Document.

    Args:
        path: Path relative to the vault root (used for the id and messages).
        raw: Complete file contents.
        modified_at: Source modification time to record.
        size: Source size to record. Defaults to ``len(raw)``.

    Returns:
        The parsed Document.

    Raises:
        ParseError: If the bytes are not UTF-8, or the front matter is
            missing or malformed.
    """
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ParseError(
            path,
            ParseErrorKind.INVALID_ENCODING,
            f"File is not valid UTF-8: {e.reason} at byte {e.start}",
        ) from e

    front_matter, body = split_front_matter(path, text)

    title = front_matter.get("title")
    metadata = {
        str(key): _json_safe(value)
        for key, value in front_matter.items()
        if key not in _MODELED_KEYS
    }

    try:
        return Document(
            id=document_id(path),
            path=path,
            title=None if title is None else str(_json_safe(title)),
            tags=_json_safe(front_matter.get("tags")),
            metadata=metadata,
            body=body,
            outgoing_links=extract_links(body),
            content_hash=hash_content(raw),
            modified_at=modified_at,
            size=len(raw) if size is None else size,
        )
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        raise ParseError(
            path,
            ParseErrorKind.MALFORMED_FRONT_MATTER,
            "Invalid frontmatter:\n" + "\n".join(errors),
        ) from e
