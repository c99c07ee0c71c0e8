"""Collapse duplicate versions and de-prioritize stale documents."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Dict, List, Sequence

from knowpack.metrics.observability import get_logger
from knowpack.models import EPOCH, ExclusionReason, ScoredCandidate, as_utc
from knowpack.text import normalize_slug


@dataclass(frozen=True)
class DedupConfig:
    """Configuration for duplicate collapsing and staleness."""

    stale_days: int = 365
    stale_penalty: float = 0.5


def group_key(candidate: ScoredCandidate) -> tuple[str, str, str]:
    document = candidate.document
    return document.pack, normalize_slug(document.topic), normalize_slug(document.slug or document.topic)


def survivor_rank(candidate: ScoredCandidate) -> tuple:
    """Sort key under which the group survivor sorts first."""

    document = candidate.document
    verified = document.verified_at or EPOCH
    return (
        -verified.timestamp(),
        -(document.confidence or 0),
        -(document.sources_checked or 0),
        document.document_id,
    )


class DedupStaleFilter:
    """Keeps the latest verified version per article and marks stale survivors."""

    def __init__(self, config: DedupConfig | None = None) -> None:
        self._config = config or DedupConfig()
        self._logger = get_logger("dedup")

    def filter(
        self,
        candidates: Sequence[ScoredCandidate],
        now: datetime,
        stale_days: int | None = None,
    ) -> List[ScoredCandidate]:
        """Return every candidate, duplicates marked and stale survivors penalized.

        Output order follows input order.
        """

        threshold = timedelta(days=self._config.stale_days if stale_days is None else stale_days)
        reference = as_utc(now)
        groups: Dict[tuple[str, str], List[int]] = {}
        for index, candidate in enumerate(candidates):
            groups.setdefault(group_key(candidate), []).append(index)

        survivors: set[int] = set()
        for indices in groups.values():
            survivors.add(min(indices, key=lambda i: survivor_rank(candidates[i])))

        result: List[ScoredCandidate] = []
        duplicates = 0
        stale = 0
        for index, candidate in enumerate(candidates):
            if index not in survivors:
                duplicates += 1
                result.append(replace(candidate, exclusion=ExclusionReason.DUPLICATE))
                continue
            verified = candidate.document.verified_at
            if verified is None or reference - verified > threshold:
                stale += 1
                result.append(replace(candidate, stale=True, score=candidate.score * self._config.stale_penalty))
                continue
            result.append(candidate)

        self._logger.info(
            "dedup.complete",
            candidate_count=len(candidates),
            group_count=len(groups),
            duplicate_count=duplicates,
            stale_count=stale,
        )
        return result
