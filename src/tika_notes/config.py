"""Configuration management for tika.

Settings are resolved in this order (first wins):
1. Explicit CLI options
2. Environment variables (TIKA_SOURCE, TIKA_INDEX_PATH, TIKA_WORKERS)
3. The user config file (~/.config/tika/config.yaml, or TIKA_CONFIG)
4. The defaults below

Magic numbers are documented here rather than scattered throughout the codebase.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError

# =============================================================================
# Persisted Index
# =============================================================================

# Bumped whenever the on-disk layout changes incompatibly. Indexes written
# with a newer version are refused on load.
SCHEMA_VERSION = 1

# Index lives inside the vault by default: {source}/.tika/index.json
INDEX_DIRNAME = ".tika"
INDEX_FILENAME = "index.json"

# Sidecar file holding the single-writer lock
LOCK_SUFFIX = ".lock"


# =============================================================================
# Scanning / Building
# =============================================================================

DEFAULT_GLOB = "**/*.md"

# Upper bound on parser threads. Parsing is I/O plus YAML decoding, so a
# small pool is enough to overlap reads.
DEFAULT_WORKERS = min(8, os.cpu_count() or 1)


# =============================================================================
# Query Scoring
# =============================================================================

# Exact (case-insensitive) equality between a token and a field
EXACT_MATCH_SCORE = 1.0

# Token appears as a contiguous substring of the field
SUBSTRING_MATCH_SCORE = 0.9

# Weight applied to the fraction of token characters found in order.
# Kept below SUBSTRING_MATCH_SCORE so a full subsequence never outranks a substring.
SUBSEQUENCE_WEIGHT = 0.8

# Every free-text token must score at least this against the document.
# 0.5 means at least 5/8 of the token's characters must appear in order.
MIN_TOKEN_SCORE = 0.5


# =============================================================================
# User Config File
# =============================================================================

DEFAULT_CONFIG_PATH = Path("~/.config/tika/config.yaml")


@dataclass
class TikaConfig:
    """Settings loaded from the environment and the user config file."""

    source: Path | None = None
    index_path: Path | None = None
    glob: str = DEFAULT_GLOB
    workers: int = DEFAULT_WORKERS


def get_config_path() -> Path:
    """Return the user config file location (may not exist)."""
    override = os.environ.get("TIKA_CONFIG")
    if override:
        return Path(override).expanduser()
    return DEFAULT_CONFIG_PATH.expanduser()


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a YAML mapping")
    return data


def _parse_workers(value: Any, origin: str) -> int:
    try:
        workers = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{origin}: workers must be an integer, got {value!r}")
    if workers < 1:
        raise ConfigurationError(f"{origin}: workers must be at least 1, got {workers}")
    return workers


def load_config(path: Path | None = None) -> TikaConfig:
    """Load settings from the config file, then apply environment overrides.

    Args:
        path: Config file to read. Defaults to :func:`get_config_path`.

    Returns:
        The merged configuration.

    Raises:
        ConfigurationError: If the file exists but is invalid.
    """
    config_path = path or get_config_path()
    data = _read_config_file(config_path)
    config = TikaConfig()

    if data.get("source"):
        config.source = Path(str(data["source"])).expanduser()
    if data.get("index_path"):
        config.index_path = Path(str(data["index_path"])).expanduser()
    if data.get("glob"):
        config.glob = str(data["glob"])
    if "workers" in data:
        config.workers = _parse_workers(data["workers"], str(config_path))

    source = os.environ.get("TIKA_SOURCE")
    if source:
        config.source = Path(source).expanduser()
    index_path = os.environ.get("TIKA_INDEX_PATH")
    if index_path:
        config.index_path = Path(index_path).expanduser()
    workers = os.environ.get("TIKA_WORKERS")
    if workers:
        config.workers = _parse_workers(workers, "TIKA_WORKERS")

    return config


def default_index_path(source: Path) -> Path:
    """Return the index location for a vault: ``{source}/.tika/index.json``."""
    return source / INDEX_DIRNAME / INDEX_FILENAME


def resolve_index_path(index_path: Path | None, source: Path | None) -> Path:
    """Pick the index location from an explicit path or the vault directory.

    Raises:
        ConfigurationError: If neither is known.
    """
    if index_path is not None:
        return index_path
    if source is not None:
        return default_index_path(source)
    raise ConfigurationError(
        "No index location configured.",
        suggestion=(
            "Pass --source DIR or --index-path FILE, set TIKA_SOURCE, "
            f"or add 'source:' to {get_config_path()}"
        ),
    )
