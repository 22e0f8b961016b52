"""Incremental index building."""

from .builder import build, is_stale

__all__ = ["build", "is_stale"]
