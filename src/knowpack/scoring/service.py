"""Relevance scoring for candidate documents."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Protocol, Sequence

from knowpack.metrics.observability import get_logger
from knowpack.models import Document, PartialDataWarning, Query, ScoredCandidate, as_utc
from knowpack.text import tokenize, tokenize_all

SECONDS_PER_DAY = 86_400.0


@dataclass(frozen=True)
class ScoringConfig:
    """Weights and decay parameters for relevance scoring."""

    freshness_half_life_days: float = 180.0
    corroboration_saturation: int = 15
    base_weight: float = 0.5
    confidence_weight: float = 0.2
    corroboration_weight: float = 0.15
    freshness_weight: float = 0.15

    @property
    def decay_rate(self) -> float:
        return math.log(2) / self.freshness_half_life_days


class TopicMatcher(Protocol):
    """Topical match in ``[0, 1]`` between a query and a document."""

    def match(self, document: Document, query: Query) -> float:
        """Return the topical match weight."""


def query_keywords(query: Query) -> frozenset[str]:
    return tokenize(query.topic_hint) | tokenize_all(query.tags)


def document_keywords(document: Document) -> frozenset[str]:
    return tokenize(document.topic, document.slug) | tokenize_all(document.tags)


class TokenOverlapMatcher:
    """Share of query keywords present in the document's topic, slug and tags."""

    def match(self, document: Document, query: Query) -> float:
        wanted = query_keywords(query)
        if not wanted:
            return 1.0
        overlap = len(wanted & document_keywords(document))
        return overlap / len(wanted)


class JaccardMatcher:
    """Jaccard similarity between query and document keyword sets."""

    def match(self, document: Document, query: Query) -> float:
        wanted = query_keywords(query)
        if not wanted:
            return 1.0
        present = document_keywords(document)
        union = wanted | present
        return len(wanted & present) / len(union)


def _clamp_unit(value: float) -> float:
    if value < 0.0:
        return 0.0
    if value > 1.0:
        return 1.0
    return value


class RelevanceScorer:
    """Combines topical match, confidence, corroboration and freshness.

    ``score = Tm * (0.5 + 0.2*Cw + 0.15*Sw + 0.15*Fw)``. A document with no
    topical overlap scores 0 however trusted it is. Scores depend only on the
    document and the query, including the query's explicit ``now``.
    """

    def __init__(self, config: ScoringConfig | None = None, matcher: TopicMatcher | None = None) -> None:
        self._config = config or ScoringConfig()
        self._matcher = matcher or TokenOverlapMatcher()
        self._logger = get_logger("scoring")

    @property
    def config(self) -> ScoringConfig:
        return self._config

    def score(self, document: Document, query: Query) -> float:
        value, _ = self._score(document, query)
        return value

    def score_all(
        self,
        documents: Sequence[Document],
        query: Query,
    ) -> tuple[List[ScoredCandidate], List[PartialDataWarning]]:
        candidates: List[ScoredCandidate] = []
        warnings: List[PartialDataWarning] = []
        for document in documents:
            value, defaulted = self._score(document, query)
            candidates.append(ScoredCandidate(document=document, score=value))
            if defaulted:
                warning = PartialDataWarning(
                    document_id=document.document_id,
                    fields=tuple(defaulted),
                    message="missing or out-of-range fields defaulted during scoring",
                )
                warnings.append(warning)
                self._logger.warning(
                    "scoring.partial_data",
                    document_id=document.document_id,
                    pack=document.pack,
                    fields=list(defaulted),
                )
        return candidates, warnings

    def _score(self, document: Document, query: Query) -> tuple[float, list[str]]:
        defaulted: list[str] = []
        topical = _clamp_unit(self._matcher.match(document, query))

        confidence = document.confidence
        if confidence is None:
            defaulted.append("confidence")
            confidence = 0
        elif not 0 <= confidence <= 10:
            defaulted.append("confidence")
            confidence = min(max(confidence, 0), 10)

        sources = document.sources_checked
        if sources is None or sources < 0:
            defaulted.append("sources_checked")
            sources = 0

        freshness = self.freshness(document.verified_at, query.now)
        if document.verified_at is None:
            defaulted.append("last_verified")

        cfg = self._config
        trust = (
            cfg.base_weight
            + cfg.confidence_weight * (confidence / 10)
            + cfg.corroboration_weight * min(1.0, sources / cfg.corroboration_saturation)
            + cfg.freshness_weight * freshness
        )
        return topical * trust, defaulted

    def freshness(self, verified_at: datetime | None, now: datetime | None) -> float:
        """``exp(-λ·ageDays)``; unknown age or unknown clock yields 0."""

        if verified_at is None or now is None:
            return 0.0
        age_days = (as_utc(now) - as_utc(verified_at)).total_seconds() / SECONDS_PER_DAY
        return math.exp(-self._config.decay_rate * max(age_days, 0.0))
