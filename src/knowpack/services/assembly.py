"""Query orchestration: fetch, score, deduplicate and pack."""

from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Sequence

from knowpack.config import Settings, get_settings
from knowpack.dedup.service import DedupConfig, DedupStaleFilter
from knowpack.errors import BudgetTooSmall, KnowpackError, StoreUnavailable
from knowpack.metrics.observability import PipelineMetrics, TimedSection, get_logger
from knowpack.models import AssembledContext, Document, Query
from knowpack.packing.service import ContextPacker, PackingConfig
from knowpack.scoring.service import RelevanceScorer, ScoringConfig, TopicMatcher
from knowpack.store.service import DocumentStore


@dataclass(frozen=True)
class AssemblyConfig:
    """Per-service knobs that are not owned by a single stage."""

    stale_days: int = 365
    fetch_timeout_seconds: float | None = None


class ContextAssemblyService:
    """Turns a query into an assembled context.

    The service holds no per-request state; one instance can serve concurrent
    queries. Fetching from the store is the only blocking step and the only
    point where an async caller can cancel.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        scorer: RelevanceScorer | None = None,
        dedup: DedupStaleFilter | None = None,
        packer: ContextPacker | None = None,
        config: AssemblyConfig | None = None,
    ) -> None:
        self._store = store
        self._scorer = scorer or RelevanceScorer()
        self._dedup = dedup or DedupStaleFilter()
        self._packer = packer or ContextPacker()
        self._config = config or AssemblyConfig()
        self._logger = get_logger("assembly")

    @classmethod
    def from_settings(
        cls,
        store: DocumentStore,
        settings: Settings | None = None,
        *,
        matcher: TopicMatcher | None = None,
    ) -> "ContextAssemblyService":
        settings = settings or get_settings()
        return cls(
            store,
            scorer=RelevanceScorer(
                ScoringConfig(freshness_half_life_days=settings.freshness_half_life_days),
                matcher=matcher,
            ),
            dedup=DedupStaleFilter(DedupConfig(stale_days=settings.stale_days)),
            packer=ContextPacker(
                PackingConfig(
                    separator=settings.separator,
                    min_score=settings.min_score,
                    max_candidates_scanned=settings.max_candidates_scanned,
                    min_document_bytes=settings.min_document_bytes,
                ),
            ),
            config=AssemblyConfig(
                stale_days=settings.stale_days,
                fetch_timeout_seconds=settings.fetch_timeout_seconds,
            ),
        )

    @property
    def store(self) -> DocumentStore:
        return self._store

    @property
    def packer(self) -> ContextPacker:
        return self._packer

    def assemble(self, query: Query) -> AssembledContext:
        query = self._prepare(query)
        start = time.perf_counter()
        documents = self._fetch(query)
        self._record_fetch(query, documents, time.perf_counter() - start)
        return self._build(query, documents)

    async def assemble_async(self, query: Query) -> AssembledContext:
        """Async variant; cancelling the awaiting task cancels the store fetch."""

        query = self._prepare(query)
        start = time.perf_counter()
        try:
            documents = await asyncio.wait_for(self._fetch_async(query), timeout=self._config.fetch_timeout_seconds)
        except asyncio.TimeoutError as exc:
            self._logger.error("fetch.timeout", pack=query.pack, timeout_seconds=self._config.fetch_timeout_seconds)
            raise StoreUnavailable(f"Fetching pack {query.pack!r} timed out") from exc
        self._record_fetch(query, documents, time.perf_counter() - start)
        return self._build(query, documents)

    def _prepare(self, query: Query) -> Query:
        # Reject unusable budgets before touching the store.
        minimum = self._packer.minimum_budget()
        if query.budget_bytes < minimum:
            raise BudgetTooSmall(query.budget_bytes, minimum)
        if query.now is None:
            return query.with_now(datetime.now(timezone.utc))
        return query

    def _fetch(self, query: Query) -> Sequence[Document]:
        try:
            return list(self._store.fetch_candidates(query.pack, query.topic_hint, query.tags or None))
        except KnowpackError:
            raise
        except Exception as exc:
            self._logger.error("fetch.failed", pack=query.pack, detail=str(exc))
            raise StoreUnavailable(f"Document store failed for pack {query.pack!r}: {exc}") from exc

    async def _fetch_async(self, query: Query) -> Sequence[Document]:
        native = getattr(self._store, "afetch_candidates", None)
        if native is not None and inspect.iscoroutinefunction(native):
            try:
                return list(await native(query.pack, query.topic_hint, query.tags or None))
            except KnowpackError:
                raise
            except Exception as exc:
                self._logger.error("fetch.failed", pack=query.pack, detail=str(exc))
                raise StoreUnavailable(f"Document store failed for pack {query.pack!r}: {exc}") from exc
        return await asyncio.to_thread(self._fetch, query)

    def _record_fetch(self, query: Query, documents: Sequence[Document], duration: float) -> None:
        PipelineMetrics.observe_fetch(duration, len(documents))
        self._logger.info("fetch.complete", pack=query.pack, candidate_count=len(documents), duration_seconds=duration)

    def _build(self, query: Query, documents: Sequence[Document]) -> AssembledContext:
        with TimedSection() as timer:
            scored, warnings = self._scorer.score_all(documents, query)
            filtered = self._dedup.filter(scored, query.now, self._config.stale_days)
            context = self._packer.pack(filtered, query.budget_bytes, warnings=warnings)
        PipelineMetrics.observe_scores(candidate.score for candidate in scored)
        PipelineMetrics.observe_partial_data(len(warnings))
        PipelineMetrics.observe_packing(
            timer.duration,
            context.total_bytes,
            (item.reason.value for item in context.excluded),
        )
        self._logger.info(
            "assembly.complete",
            pack=query.pack,
            topic_hint=query.topic_hint,
            candidate_count=len(documents),
            included=len(context.documents),
            excluded=len(context.excluded),
            total_bytes=context.total_bytes,
            budget_bytes=query.budget_bytes,
            reason=context.reason,
            duration_seconds=timer.duration,
        )
        return context
