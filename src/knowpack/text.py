"""Text normalization shared by the store, scorer and dedup stages."""

from __future__ import annotations

import re
import unicodedata
from typing import Iterable

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_SLUG_STRIP_RE = re.compile(r"[^a-z0-9]+")


def _fold(raw: str) -> str:
    normalized = unicodedata.normalize("NFKC", raw)
    return normalized.casefold()


def tokenize(*values: str | None) -> frozenset[str]:
    """Lowercase alphanumeric tokens across all given strings."""

    tokens: set[str] = set()
    for value in values:
        if value:
            tokens.update(_TOKEN_RE.findall(_fold(value)))
    return frozenset(tokens)


def tokenize_all(values: Iterable[str]) -> frozenset[str]:
    return tokenize(*values)


def normalize_slug(raw: str) -> str:
    """``"Bridge Integration"`` and ``"bridge-integration.md"`` share a slug."""

    folded = _fold(raw).strip()
    if folded.endswith(".md"):
        folded = folded[:-3]
    return _SLUG_STRIP_RE.sub("-", folded).strip("-")
