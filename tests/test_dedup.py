"""Tests for duplicate collapsing and staleness."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

from knowpack.dedup.service import DedupConfig, DedupStaleFilter
from knowpack.models import Document, ExclusionReason, ScoredCandidate

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _candidate(doc_id: str, *, topic: str = "bridge-integration", verified: datetime | None = NOW, confidence: int | None = 5, sources: int | None = 3, score: float = 0.8, pack: str = "solana") -> ScoredCandidate:
    document = Document(
        document_id=doc_id,
        pack=pack,
        topic=topic,
        body="text",
        confidence=confidence,
        sources_checked=sources,
        last_verified=verified,
    )
    return ScoredCandidate(document=document, score=score)


def _by_id(candidates):
    return {candidate.document_id: candidate for candidate in candidates}


def test_latest_verified_version_survives_despite_lower_confidence():
    newer = _candidate("new", verified=datetime(2026, 2, 16, tzinfo=timezone.utc), confidence=8)
    older = _candidate("old", verified=datetime(2024, 1, 1, tzinfo=timezone.utc), confidence=9)
    result = _by_id(DedupStaleFilter().filter([older, newer], NOW, 365))
    assert result["new"].exclusion is None
    assert result["old"].exclusion is ExclusionReason.DUPLICATE


def test_grouping_uses_normalized_slug_and_pack():
    a = _candidate("a", topic="Bridge Integration", verified=NOW - timedelta(days=1))
    b = _candidate("b", topic="bridge-integration")
    c = _candidate("c", topic="bridge-integration", pack="other")
    result = _by_id(DedupStaleFilter().filter([a, b, c], NOW, 365))
    assert result["a"].exclusion is ExclusionReason.DUPLICATE
    assert result["b"].exclusion is None
    assert result["c"].exclusion is None


def test_shared_slug_with_different_topics_keeps_both():
    a = replace(_candidate("a", topic="Bridge fees").document, slug="bridges")
    b = replace(_candidate("b", topic="Bridge security").document, slug="bridges")
    candidates = [ScoredCandidate(document=a, score=0.8), ScoredCandidate(document=b, score=0.8)]
    result = _by_id(DedupStaleFilter().filter(candidates, NOW, 365))
    assert result["a"].exclusion is None
    assert result["b"].exclusion is None


def test_tie_breaks_confidence_then_sources_then_id():
    result = _by_id(DedupStaleFilter().filter([_candidate("x", confidence=5), _candidate("y", confidence=6)], NOW, 365))
    assert result["y"].exclusion is None

    result = _by_id(DedupStaleFilter().filter([_candidate("x", sources=9), _candidate("y", sources=2)], NOW, 365))
    assert result["x"].exclusion is None

    result = _by_id(DedupStaleFilter().filter([_candidate("b"), _candidate("a")], NOW, 365))
    assert result["a"].exclusion is None
    assert result["b"].exclusion is ExclusionReason.DUPLICATE


def test_exactly_one_survivor_per_group():
    group = [_candidate(f"v{i}", verified=NOW - timedelta(days=i)) for i in range(6)]
    survivors = [c for c in DedupStaleFilter().filter(group, NOW, 365) if c.exclusion is None]
    assert [c.document_id for c in survivors] == ["v0"]


def test_stale_survivor_is_halved_not_excluded():
    stale = _candidate("stale", verified=NOW - timedelta(days=400), score=0.8)
    fresh = _candidate("fresh", topic="priority-fees", verified=NOW - timedelta(days=10), score=0.8)
    result = _by_id(DedupStaleFilter().filter([stale, fresh], NOW, 365))
    assert result["stale"].stale is True
    assert result["stale"].exclusion is None
    assert result["stale"].score == 0.4
    assert result["fresh"].stale is False
    assert result["fresh"].score == 0.8


def test_missing_timestamp_counts_as_stale():
    result = DedupStaleFilter().filter([_candidate("undated", verified=None)], NOW, 365)
    assert result[0].stale is True


def test_default_stale_days_come_from_config():
    candidate = _candidate("c", verified=NOW - timedelta(days=40))
    assert DedupStaleFilter(DedupConfig(stale_days=30)).filter([candidate], NOW)[0].stale is True
    assert DedupStaleFilter().filter([candidate], NOW)[0].stale is False


def test_output_preserves_input_order_and_length():
    items = [_candidate("b"), _candidate("a", topic="other"), _candidate("c")]
    result = DedupStaleFilter().filter(items, NOW, 365)
    assert [c.document_id for c in result] == ["b", "a", "c"]
