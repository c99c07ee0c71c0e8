"""Shared domain models used across the knowpack pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Sequence


EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive timestamps as UTC so all comparisons are between aware values."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ExclusionReason(str, Enum):
    """Why a fetched candidate did not make it into the assembled context."""

    LOW_SCORE = "low-score"
    DUPLICATE = "duplicate"
    STALE_UNSELECTED = "stale-deprioritized-and-unselected"
    OVER_BUDGET = "over-budget"
    SCAN_LIMIT = "scan-limit"


@dataclass(frozen=True)
class Document:
    """One immutable version of a knowledge article."""

    document_id: str
    pack: str
    topic: str
    body: str
    confidence: int | None = None
    sources_checked: int | None = None
    last_updated: datetime | None = None
    last_verified: datetime | None = None
    tags: frozenset[str] = field(default_factory=frozenset)
    slug: str | None = None
    source_path: str | None = None
    deleted: bool = False

    @property
    def size_bytes(self) -> int:
        return len(self.body.encode("utf-8"))

    @property
    def verified_at(self) -> datetime | None:
        """Last verification time, falling back to the last update."""

        return as_utc(self.last_verified or self.last_updated)


@dataclass(frozen=True)
class Query:
    """Request for an assembled context."""

    pack: str
    budget_bytes: int
    topic_hint: str | None = None
    tags: frozenset[str] = field(default_factory=frozenset)
    now: datetime | None = None

    def with_now(self, now: datetime) -> "Query":
        return replace(self, now=now)


@dataclass(frozen=True)
class ScoredCandidate:
    """Document paired with its ranking score and dedup/staleness annotations."""

    document: Document
    score: float
    stale: bool = False
    exclusion: ExclusionReason | None = None

    @property
    def document_id(self) -> str:
        return self.document.document_id

    @property
    def size_bytes(self) -> int:
        return self.document.size_bytes


@dataclass(frozen=True)
class PartialDataWarning:
    """Non-fatal report about a malformed document that was defaulted."""

    document_id: str
    fields: tuple[str, ...]
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"document_id": self.document_id, "fields": list(self.fields), "message": self.message}


@dataclass(frozen=True)
class IncludedDocument:
    """Document emitted into the assembled body."""

    document_id: str
    pack: str
    topic: str
    score: float
    stale: bool
    size_bytes: int
    truncated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "pack": self.pack,
            "topic": self.topic,
            "score": self.score,
            "stale": self.stale,
            "size_bytes": self.size_bytes,
            "truncated": self.truncated,
        }


@dataclass(frozen=True)
class Exclusion:
    """Candidate left out of the assembled body, with the reason."""

    document_id: str
    reason: ExclusionReason
    score: float

    def to_dict(self) -> dict[str, Any]:
        return {"document_id": self.document_id, "reason": self.reason.value, "score": self.score}


@dataclass(frozen=True)
class AssembledContext:
    """Packed bodies joined by the separator, plus the inclusion report."""

    body: str
    separator: str
    documents: Sequence[IncludedDocument] = ()
    excluded: Sequence[Exclusion] = ()
    total_bytes: int = 0
    reason: str | None = None
    warnings: Sequence[PartialDataWarning] = ()

    @property
    def truncated(self) -> bool:
        return any(doc.truncated for doc in self.documents)

    def split(self) -> list[str]:
        """Recover the individual document bodies."""

        if not self.documents:
            return []
        return self.body.split(self.separator)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_bytes": self.total_bytes,
            "reason": self.reason,
            "truncated": self.truncated,
            "separator": self.separator,
            "documents": [doc.to_dict() for doc in self.documents],
            "excluded": [item.to_dict() for item in self.excluded],
            "warnings": [warning.to_dict() for warning in self.warnings],
        }
