"""Query evaluation against a loaded Index.

Grammar: whitespace-separated terms.

- ``key:value`` is a structured filter. Known keys:
    - ``tag:``      the document has this tag
    - ``id:``       the document id equals or starts with the value
    - ``link:``     the document links to this id
    - ``backlink:`` the document is a backlink of this id (links to an
      existing document with this id)
  Unknown keys are reported as QueryErrors and the term is dropped.
- Anything else is a free-text token, fuzzy-matched against the title,
  tags and id.

All filters and tokens are AND-ed. An empty query matches every document.
Results are ordered by descending score, then most recently modified, then
id.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from .config import (
    EXACT_MATCH_SCORE,
    MIN_TOKEN_SCORE,
    SUBSEQUENCE_WEIGHT,
    SUBSTRING_MATCH_SCORE,
)
from .errors import QueryError
from .models import Document, Index, ResultRecord
from .parser import normalize_link

log = logging.getLogger(__name__)

FILTER_KEYS = ("tag", "id", "link", "backlink")

_FILTER_RE = re.compile(r"^([A-Za-z_]+):(.+)$")


@dataclass(frozen=True)
class Filter:
    key: str
    value: str


@dataclass
class ParsedQuery:
    filters: list[Filter] = field(default_factory=list)
    tokens: list[str] = field(default_factory=list)
    errors: list[QueryError] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.filters and not self.tokens


def parse_query(text: str) -> ParsedQuery:
    """Split query text into structured filters and free-text tokens."""
    parsed = ParsedQuery()
    for term in text.split():
        match = _FILTER_RE.match(term)
        if match is None:
            parsed.tokens.append(term)
            continue

        key, value = match.group(1).lower(), match.group(2)
        if key not in FILTER_KEYS:
            parsed.errors.append(
                QueryError(
                    term,
                    key,
                    f"Unknown filter key '{key}:' in {term!r} "
                    f"(expected one of: {', '.join(FILTER_KEYS)}); term ignored",
                )
            )
            continue
        parsed.filters.append(Filter(key, value))
    return parsed


def _common_subsequence_length(token: str, text: str) -> int:
    # One DP row per token character; fields are short
    previous = [0] * (len(text) + 1)
    for char in token:
        current = [0]
        for j, other in enumerate(text):
            if char == other:
                current.append(previous[j] + 1)
            else:
                current.append(max(previous[j + 1], current[j]))
        previous = current
    return previous[-1]


def fuzzy_score(token: str, text: str) -> float:
    """Score how well *token* matches *text*, case-insensitively.

    - 1.0 if equal
    - 0.9 if *token* is a substring
    - otherwise 0.8 x the fraction of token characters found in order,
      counting the longest common subsequence of token and text
    - 0.0 if no character is found
    """
    token = token.casefold()
    text = text.casefold()
    if not token or not text:
        return 0.0
    if token == text:
        return EXACT_MATCH_SCORE
    if token in text:
        return SUBSTRING_MATCH_SCORE

    matched = _common_subsequence_length(token, text)
    if matched == 0:
        return 0.0
    return SUBSEQUENCE_WEIGHT * matched / len(token)


def _match_fields(document: Document) -> list[str]:
    title = document.title or ""
    tags = " ".join(document.tags)
    fields = [title, tags, document.id]
    return [f for f in fields if f] + [" ".join(f for f in fields if f)]


def score_token(token: str, document: Document) -> float:
    """Best score of *token* against the document's title, tags and id."""
    return max((fuzzy_score(token, f) for f in _match_fields(document)), default=0.0)


class QueryEngine:
    """Evaluates queries against a read-only view of an Index."""

    def __init__(self, index: Index) -> None:
        self._index = index

    def _passes(self, document: Document, flt: Filter) -> bool:
        value = flt.value
        if flt.key == "tag":
            wanted = value.casefold()
            return any(tag.casefold() == wanted for tag in document.tags)
        if flt.key == "id":
            return document.id.startswith(value.casefold())
        if flt.key == "link":
            return normalize_link(value) in document.outgoing_links
        if flt.key == "backlink":
            return document.id in self._index.backlinks_for(normalize_link(value))
        return False

    def _score(self, document: Document, tokens: list[str]) -> float | None:
        """Sum of token scores, or None if any token falls below the minimum."""
        total = 0.0
        for token in tokens:
            score = score_token(token, document)
            if score < MIN_TOKEN_SCORE:
                return None
            total += score
        return total

    def evaluate(self, query: str | ParsedQuery, *, limit: int | None = None) -> list[ResultRecord]:
        """Return matching documents as ranked ResultRecords.

        Args:
            query: Query text or an already parsed query.
            limit: Maximum number of records, or None for all.
        """
        parsed = parse_query(query) if isinstance(query, str) else query
        for error in parsed.errors:
            log.debug("Ignoring query term %r: %s", error.term, error.message)

        scored: list[tuple[float, Document]] = []
        for document in self._index.documents.values():
            if not all(self._passes(document, flt) for flt in parsed.filters):
                continue
            score = self._score(document, parsed.tokens)
            if score is None:
                continue
            scored.append((score, document))

        scored.sort(key=lambda item: (-item[0], -item[1].modified_at, item[1].id))
        if limit is not None:
            scored = scored[:limit]

        return [
            ResultRecord(
                id=document.id,
                filename=document.path,
                title=document.title,
                tags=list(document.tags),
                score=round(score, 4),
                author=document.author,
                date=document.get_str("date"),
            )
            for score, document in scored
        ]


def evaluate(
    index: Index,
    query: str | ParsedQuery,
    *,
    limit: int | None = None,
) -> list[ResultRecord]:
    """Evaluate *query* against *index*. See :class:`QueryEngine`."""
    return QueryEngine(index).evaluate(query, limit=limit)


def to_json_lines(records: Iterable[ResultRecord]) -> str:
    """One compact JSON object per line, for line-oriented tools."""
    return "\n".join(record.model_dump_json() for record in records)


def to_json_array(records: Iterable[ResultRecord]) -> str:
    return json.dumps([record.model_dump(mode="json") for record in records], indent=2)
