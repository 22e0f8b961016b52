"""Parsing of markdown notes and their note references."""

from .links import document_id, extract_links, normalize_link
from .markdown import hash_content, parse_document, split_front_matter

__all__ = [
    "document_id",
    "extract_links",
    "hash_content",
    "normalize_link",
    "parse_document",
    "split_front_matter",
]
