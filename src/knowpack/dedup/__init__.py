"""Deduplication and staleness handling."""

from .service import DedupConfig, DedupStaleFilter

__all__ = ["DedupConfig", "DedupStaleFilter"]
