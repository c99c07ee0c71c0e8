"""Budget-constrained selection and serialization of ranked candidates."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Sequence

from knowpack.config import DEFAULT_SEPARATOR
from knowpack.errors import BudgetTooSmall
from knowpack.metrics.observability import get_logger
from knowpack.models import (
    AssembledContext,
    Exclusion,
    ExclusionReason,
    IncludedDocument,
    PartialDataWarning,
    ScoredCandidate,
)

NO_CANDIDATES = "no-candidates"
ALL_EXCLUDED = "all-excluded"

# Cut points tried in order when a body must be shortened. Each pattern's match
# start is the cut position, except sentence ends which keep their punctuation.
_PARAGRAPH_RE = re.compile(r"\n[ \t]*\n")
_SENTENCE_RE = re.compile(r"[.!?][\"')\]]*(?=\s)")
_LINE_RE = re.compile(r"\n")
_SPACE_RE = re.compile(r"\s")


@dataclass(frozen=True)
class PackingConfig:
    """Configuration for context packing."""

    separator: str = DEFAULT_SEPARATOR
    min_score: float = 0.0
    max_candidates_scanned: int = 500
    min_document_bytes: int = 1

    @property
    def separator_bytes(self) -> int:
        return len(self.separator.encode("utf-8"))


def rank_key(candidate: ScoredCandidate) -> tuple:
    """Score descending, then cheaper bodies, then id for a total order."""

    return (-candidate.score, candidate.size_bytes, candidate.document_id)


def select_greedy_with_skip(
    ranked: Sequence[ScoredCandidate],
    budget_bytes: int,
    separator_bytes: int,
) -> tuple[List[ScoredCandidate], List[ScoredCandidate]]:
    """Accept candidates in rank order, skipping (not stopping at) any that overflow.

    Every accepted document is charged its body plus one separator.
    """

    accepted: List[ScoredCandidate] = []
    skipped: List[ScoredCandidate] = []
    running = 0
    for candidate in ranked:
        cost = candidate.size_bytes + separator_bytes
        if running + cost <= budget_bytes:
            accepted.append(candidate)
            running += cost
        else:
            skipped.append(candidate)
    return accepted, skipped


def _last_cut(head: str, pattern: re.Pattern[str], keep_match: bool) -> int:
    cut = 0
    for match in pattern.finditer(head):
        position = match.end() if keep_match else match.start()
        if head[:position].strip():
            cut = position
    return cut


def truncate_body(text: str, limit_bytes: int) -> str:
    """Shorten ``text`` to at most ``limit_bytes`` UTF-8 bytes.

    Prefers the last paragraph break, then sentence end, line break and
    whitespace. Never splits a multi-byte character.
    """

    encoded = text.encode("utf-8")
    if len(encoded) <= limit_bytes:
        return text
    if limit_bytes <= 0:
        return ""
    head = encoded[:limit_bytes].decode("utf-8", errors="ignore")
    for pattern, keep_match in (
        (_PARAGRAPH_RE, False),
        (_SENTENCE_RE, True),
        (_LINE_RE, False),
        (_SPACE_RE, False),
    ):
        cut = _last_cut(head, pattern, keep_match)
        if cut:
            return head[:cut].rstrip()
    return head


def _source_indices(scanned: Sequence[tuple[int, ScoredCandidate]], subset: Sequence[ScoredCandidate]) -> List[int]:
    """Map an order-preserving subset of scanned candidates back to input positions."""

    remaining = iter(scanned)
    indices: List[int] = []
    for wanted in subset:
        for index, candidate in remaining:
            if candidate is wanted:
                indices.append(index)
                break
    return indices


class ContextPacker:
    """Selects a byte-bounded subset of ranked candidates and serializes it."""

    def __init__(self, config: PackingConfig | None = None) -> None:
        self._config = config or PackingConfig()
        self._logger = get_logger("packing")

    @property
    def config(self) -> PackingConfig:
        return self._config

    def minimum_budget(self) -> int:
        return self._config.separator_bytes + self._config.min_document_bytes

    def pack(
        self,
        candidates: Sequence[ScoredCandidate],
        budget_bytes: int,
        *,
        warnings: Sequence[PartialDataWarning] = (),
    ) -> AssembledContext:
        minimum = self.minimum_budget()
        if budget_bytes < minimum:
            raise BudgetTooSmall(budget_bytes, minimum)
        separator = self._config.separator
        if not candidates:
            self._logger.info("packing.complete", included=0, excluded=0, total_bytes=0, reason=NO_CANDIDATES)
            return AssembledContext(body="", separator=separator, reason=NO_CANDIDATES, warnings=tuple(warnings))

        reasons: Dict[int, ExclusionReason] = {}
        eligible: List[tuple[int, ScoredCandidate]] = []
        for index, candidate in enumerate(candidates):
            if candidate.exclusion is not None:
                reasons[index] = candidate.exclusion
            elif candidate.score <= self._config.min_score:
                reasons[index] = ExclusionReason.LOW_SCORE
            else:
                eligible.append((index, candidate))

        eligible.sort(key=lambda item: rank_key(item[1]))
        limit = max(self._config.max_candidates_scanned, 0)
        for index, _ in eligible[limit:]:
            reasons[index] = ExclusionReason.SCAN_LIMIT
        scanned = eligible[:limit]

        accepted, skipped = select_greedy_with_skip(
            [candidate for _, candidate in scanned],
            budget_bytes,
            self._config.separator_bytes,
        )
        bodies = [candidate.document.body for candidate in accepted]
        truncated_index: int | None = None
        if not accepted and scanned:
            top = skipped[0]
            shortened = truncate_body(top.document.body, budget_bytes - self._config.separator_bytes)
            if shortened.strip():
                accepted, skipped = [top], skipped[1:]
                bodies = [shortened]
                truncated_index = 0
                self._logger.info(
                    "packing.truncated",
                    document_id=top.document_id,
                    original_bytes=top.size_bytes,
                    kept_bytes=len(shortened.encode("utf-8")),
                )

        for index, candidate in zip(_source_indices(scanned, skipped), skipped):
            reasons[index] = (
                ExclusionReason.STALE_UNSELECTED if candidate.stale else ExclusionReason.OVER_BUDGET
            )

        included = [
            IncludedDocument(
                document_id=candidate.document_id,
                pack=candidate.document.pack,
                topic=candidate.document.topic,
                score=candidate.score,
                stale=candidate.stale,
                size_bytes=len(body.encode("utf-8")),
                truncated=slot == truncated_index,
            )
            for slot, (candidate, body) in enumerate(zip(accepted, bodies))
        ]
        excluded = [
            Exclusion(document_id=candidate.document_id, reason=reasons[index], score=candidate.score)
            for index, candidate in enumerate(candidates)
            if index in reasons
        ]
        body = separator.join(bodies)
        total_bytes = len(body.encode("utf-8"))
        reason = None if included else ALL_EXCLUDED
        self._logger.info(
            "packing.complete",
            included=len(included),
            excluded=len(excluded),
            total_bytes=total_bytes,
            budget_bytes=budget_bytes,
            reason=reason,
        )
        return AssembledContext(
            body=body,
            separator=separator,
            documents=tuple(included),
            excluded=tuple(excluded),
            total_bytes=total_bytes,
            reason=reason,
            warnings=tuple(warnings),
        )
