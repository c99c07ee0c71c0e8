"""Observability helpers for knowpack."""

from __future__ import annotations

import logging
import time
from contextvars import ContextVar
from typing import Iterable

import structlog
from prometheus_client import Counter, Histogram

_logger_configured = False
_correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")


def configure_logging(level: int = logging.INFO) -> None:
    global _logger_configured  # noqa: PLW0603 - module-level guard
    if _logger_configured:
        return
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _logger_configured = True


def bind_correlation_id(correlation_id: str) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    structlog.contextvars.clear_contextvars()
    _correlation_id_var.set("-")


def get_correlation_id() -> str:
    return _correlation_id_var.get()


def get_logger(name: str = "knowpack") -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


def _clamp_score(score: float) -> float:
    if score < 0.0:
        return 0.0
    if score > 1.0:
        return 1.0
    return score


class PipelineMetrics:
    """Prometheus metrics for pipeline stages."""

    fetch_latency = Histogram(
        "knowpack_fetch_duration_seconds",
        "Time spent fetching candidates from the document store.",
        buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
    )
    candidate_count = Histogram(
        "knowpack_candidate_count",
        "Candidates returned by the document store per query.",
        buckets=(0, 1, 5, 10, 25, 50, 100, 250, 500),
    )
    candidate_score = Histogram(
        "knowpack_candidate_score",
        "Relevance score of fetched candidates.",
        buckets=(0.0, 0.25, 0.5, 0.75, 1.0),
    )
    packed_bytes = Histogram(
        "knowpack_packed_bytes",
        "Bytes emitted in assembled context bodies.",
        buckets=(0, 1_000, 4_000, 16_000, 64_000, 256_000, 1_000_000),
    )
    packing_latency = Histogram(
        "knowpack_packing_duration_seconds",
        "Time spent scoring, deduplicating and packing candidates.",
        buckets=(0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5),
    )
    exclusions = Counter(
        "knowpack_exclusions_total",
        "Candidates excluded from assembled contexts.",
        ["reason"],
    )
    partial_data = Counter(
        "knowpack_partial_data_warnings_total",
        "Malformed documents that were defaulted instead of rejected.",
    )

    @classmethod
    def observe_fetch(cls, duration_seconds: float, candidate_count: int) -> None:
        cls.fetch_latency.observe(duration_seconds)
        cls.candidate_count.observe(candidate_count)

    @classmethod
    def observe_scores(cls, scores: Iterable[float]) -> None:
        for score in scores:
            cls.candidate_score.observe(_clamp_score(score))

    @classmethod
    def observe_packing(cls, duration_seconds: float, total_bytes: int, reasons: Iterable[str]) -> None:
        cls.packing_latency.observe(duration_seconds)
        cls.packed_bytes.observe(total_bytes)
        for reason in reasons:
            cls.exclusions.labels(reason=reason).inc()

    @classmethod
    def observe_partial_data(cls, count: int) -> None:
        if count:
            cls.partial_data.inc(count)


class TimedSection:
    """Context manager capturing elapsed time for metrics."""

    def __init__(self) -> None:
        self._start = 0.0
        self.duration = 0.0

    def __enter__(self) -> "TimedSection":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        self.duration = time.perf_counter() - self._start


__all__ = [
    "PipelineMetrics",
    "TimedSection",
    "bind_correlation_id",
    "clear_correlation_id",
    "configure_logging",
    "get_correlation_id",
    "get_logger",
]
