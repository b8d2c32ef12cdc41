"""Observability helpers for docsrag."""

from __future__ import annotations

import logging
import time
from contextvars import ContextVar
from typing import Iterable

import structlog
from prometheus_client import Counter, Gauge, Histogram

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


def get_logger(name: str = "docsrag") -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


def _clamp_similarity(score: float) -> float:
    if score < -1.0:
        return -1.0
    if score > 1.0:
        return 1.0
    return score


class PipelineMetrics:
    """Prometheus metrics for ingestion, search and workflow stages."""

    ingestion_latency = Histogram(
        "docsrag_ingestion_duration_seconds",
        "Time spent on one ingestion pass.",
        buckets=(0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0),
    )
    ingestion_chunks = Histogram(
        "docsrag_ingestion_chunk_count",
        "Chunks inserted per ingestion pass.",
        buckets=(0, 1, 10, 50, 100, 500, 1000, 5000),
    )
    file_changes = Counter(
        "docsrag_file_changes_total",
        "Files classified by the change detector.",
        ["kind"],
    )
    embedding_batch_failures = Counter(
        "docsrag_embedding_batch_failures_total",
        "Embedding batches skipped after a provider failure.",
    )
    index_chunk_count = Gauge(
        "docsrag_index_chunk_count",
        "Number of chunks in the live index snapshot.",
    )
    search_latency = Histogram(
        "docsrag_search_duration_seconds",
        "Time spent scanning the index for one query vector.",
        buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0),
    )
    search_hits = Histogram(
        "docsrag_search_hit_count",
        "Number of hits returned by similarity search.",
        buckets=(0, 1, 2, 3, 5, 8, 13),
    )
    similarity = Histogram(
        "docsrag_search_similarity",
        "Cosine similarity of returned hits.",
        buckets=(-1.0, 0.0, 0.25, 0.5, 0.75, 0.9, 1.0),
    )
    stage_latency = Histogram(
        "docsrag_stage_duration_seconds",
        "Time spent in a workflow stage, retries included.",
        ["stage"],
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0),
    )
    stage_retries = Counter(
        "docsrag_stage_retries_total",
        "Retries performed by workflow stages.",
        ["stage"],
    )
    workflow_runs = Counter(
        "docsrag_workflow_runs_total",
        "Completed workflow runs by terminal path.",
        ["path"],
    )

    @classmethod
    def observe_ingestion(cls, duration_seconds: float, chunk_count: int) -> None:
        cls.ingestion_latency.observe(duration_seconds)
        cls.ingestion_chunks.observe(chunk_count)

    @classmethod
    def observe_search(cls, duration_seconds: float, similarities: Iterable[float]) -> None:
        cls.search_latency.observe(duration_seconds)
        count = 0
        for score in similarities:
            cls.similarity.observe(_clamp_similarity(score))
            count += 1
        cls.search_hits.observe(count)

    @classmethod
    def observe_stage(cls, stage: str, duration_seconds: float) -> None:
        cls.stage_latency.labels(stage=stage).observe(duration_seconds)


class TimedSection:
    """Context manager capturing elapsed time for metrics."""

    def __init__(self, callback) -> None:
        self._callback = callback
        self._start = 0.0

    def __enter__(self) -> "TimedSection":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        duration = time.perf_counter() - self._start
        self._callback(duration)


__all__ = [
    "PipelineMetrics",
    "TimedSection",
    "bind_correlation_id",
    "clear_correlation_id",
    "configure_logging",
    "get_correlation_id",
    "get_logger",
]
