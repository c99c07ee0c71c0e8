"""Tests for the context packer."""

from __future__ import annotations

import pytest

from knowpack.errors import BudgetTooSmall
from knowpack.models import Document, ExclusionReason, ScoredCandidate
from knowpack.packing.service import ContextPacker, PackingConfig, select_greedy_with_skip, truncate_body

SEP = "|SEP|"


def _candidate(doc_id: str, size: int, score: float, *, stale: bool = False, exclusion=None, body: str | None = None) -> ScoredCandidate:
    document = Document(document_id=doc_id, pack="solana", topic=doc_id, body=body if body is not None else "x" * size)
    return ScoredCandidate(document=document, score=score, stale=stale, exclusion=exclusion)


def _packer(**overrides) -> ContextPacker:
    return ContextPacker(PackingConfig(separator=SEP, **overrides))


def _greedy_with_stop(ranked, budget, sep_bytes):
    accepted, running = [], 0
    for candidate in ranked:
        cost = candidate.size_bytes + sep_bytes
        if running + cost > budget:
            break
        accepted.append(candidate)
        running += cost
    return accepted


def test_budget_smaller_than_separator_is_rejected():
    with pytest.raises(BudgetTooSmall):
        _packer().pack([_candidate("a", 1, 0.5)], len(SEP))


def test_empty_candidates_yield_explicit_reason():
    context = _packer().pack([], 100)
    assert context.documents == ()
    assert context.body == ""
    assert context.reason == "no-candidates"


def test_orders_by_score_then_size():
    candidates = [_candidate("big", 20, 0.9), _candidate("small", 10, 0.9), _candidate("top", 10, 0.95)]
    context = _packer().pack(candidates, 1_000)
    assert [doc.document_id for doc in context.documents] == ["top", "small", "big"]
    assert context.split() == ["x" * 10, "x" * 10, "x" * 20]
    assert context.total_bytes == 40 + 2 * len(SEP)


def test_greedy_with_skip_beats_greedy_with_stop():
    huge = _candidate("huge", 600, 0.99)
    small = [_candidate(f"s{i}", 100, 0.9 - i * 0.01) for i in range(9)]
    ranked = [huge, *small]
    budget = 500
    assert sum(c.size_bytes for c in ranked) >= 3 * budget

    naive = _greedy_with_stop(ranked, budget, len(SEP))
    accepted, skipped = select_greedy_with_skip(ranked, budget, len(SEP))
    assert naive == []
    assert huge in skipped
    assert [c.document_id for c in accepted] == ["s0", "s1", "s2", "s3"]
    assert sum(c.score for c in accepted) > sum(c.score for c in naive)

    context = _packer().pack(ranked, budget)
    assert [doc.document_id for doc in context.documents] == ["s0", "s1", "s2", "s3"]
    assert not context.truncated
    reasons = {item.document_id: item.reason for item in context.excluded}
    assert reasons["huge"] is ExclusionReason.OVER_BUDGET


def test_single_oversized_document_is_truncated_at_paragraph():
    paragraph = "Sentence one. Sentence two.\n\n"
    body = paragraph * 2000
    context = _packer().pack([_candidate("only", 0, 0.7, body=body)], 1_000)
    assert len(context.documents) == 1
    assert context.documents[0].truncated is True
    assert context.truncated
    assert len(context.body.encode("utf-8")) <= 1_000 - len(SEP)
    assert context.body.endswith("Sentence two.")
    assert context.reason is None


def test_truncate_falls_back_to_sentence_and_character_boundaries():
    assert truncate_body("First sentence. Second sentence runs long", 30) == "First sentence."
    assert truncate_body("abcdefghij", 4) == "abcd"
    # two-byte characters are never split
    assert truncate_body("éééé", 3) == "é"
    assert truncate_body("short", 100) == "short"


def test_exclusion_reasons_and_accounting():
    candidates = [
        _candidate("dup", 10, 0.9, exclusion=ExclusionReason.DUPLICATE),
        _candidate("zero", 10, 0.0),
        _candidate("fit", 40, 0.8),
        _candidate("stale", 40, 0.4, stale=True),
        _candidate("large", 40, 0.3),
    ]
    context = _packer().pack(candidates, 50)
    reasons = {item.document_id: item.reason for item in context.excluded}
    assert [doc.document_id for doc in context.documents] == ["fit"]
    assert reasons == {
        "dup": ExclusionReason.DUPLICATE,
        "zero": ExclusionReason.LOW_SCORE,
        "stale": ExclusionReason.STALE_UNSELECTED,
        "large": ExclusionReason.OVER_BUDGET,
    }
    seen = [doc.document_id for doc in context.documents] + [item.document_id for item in context.excluded]
    assert sorted(seen) == sorted(c.document_id for c in candidates)


def test_scan_limit_caps_considered_candidates():
    candidates = [_candidate(f"c{i}", 5, 1.0 - i * 0.1) for i in range(4)]
    context = _packer(max_candidates_scanned=2).pack(candidates, 1_000)
    assert [doc.document_id for doc in context.documents] == ["c0", "c1"]
    assert {item.document_id: item.reason for item in context.excluded} == {
        "c2": ExclusionReason.SCAN_LIMIT,
        "c3": ExclusionReason.SCAN_LIMIT,
    }


def test_all_excluded_is_reported():
    context = _packer().pack([_candidate("zero", 10, 0.0)], 100)
    assert context.documents == ()
    assert context.reason == "all-excluded"


@pytest.mark.parametrize("budget", [6, 17, 64, 333, 1_000])
def test_body_never_exceeds_budget(budget):
    candidates = [_candidate(f"d{i}", size, 0.5 + i / 100) for i, size in enumerate([3, 50, 7, 120, 31, 2, 64])]
    context = _packer().pack(candidates, budget)
    assert len(context.body.encode("utf-8")) <= budget
    assert context.total_bytes == len(context.body.encode("utf-8"))


def test_metadata_block_is_json_ready():
    context = _packer().pack([_candidate("a", 3, 0.5), _candidate("b", 3, 0.0)], 100)
    payload = context.to_dict()
    assert payload["documents"][0]["document_id"] == "a"
    assert payload["excluded"] == [{"document_id": "b", "reason": "low-score", "score": 0.0}]
    assert payload["separator"] == SEP
