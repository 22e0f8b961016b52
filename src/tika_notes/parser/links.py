"""Note reference extraction and id normalization."""

import re

# Pattern for [[link]] syntax - captures content between double brackets
# Handles [[target]], [[target|alias]] and [[target#heading]]
LINK_PATTERN = re.compile(r"\[\[([^\]]+)\]\]")

MARKDOWN_EXTENSIONS = (".md", ".markdown")


def normalize_link(link: str) -> str:
    """Normalize a link target or a file path to a canonical document id.

    - Strips whitespace
    - Normalizes path separators and keeps the last component
    - Removes a markdown extension
    - Case-folds

    Args:
        link: Raw link target or relative path.

    Returns:
        Canonical id, or an empty string if nothing is left.
    """
    link = link.strip().replace("\\", "/").strip("/")
    name = link.rsplit("/", 1)[-1].strip()

    lowered = name.lower()
    for ext in MARKDOWN_EXTENSIONS:
        if lowered.endswith(ext):
            name = name[: -len(ext)]
            break

    return name.strip().casefold()


def document_id(path: str) -> str:
    """Derive the canonical id of a document from its path."""
    return normalize_link(path)


def extract_links(content: str) -> list[str]:
    """Extract note references from markdown content.

    Args:
        content: Markdown body to extract links from.

    Returns:
        Unique normalized ids, in order of first occurrence.
    """
    seen: set[str] = set()
    links: list[str] = []

    for raw in LINK_PATTERN.findall(content):
        # Drop alias and heading parts
        target = re.split(r"[|#]", raw, maxsplit=1)[0]
        normalized = normalize_link(target)
        if normalized and normalized not in seen:
            seen.add(normalized)
            links.append(normalized)

    return links
