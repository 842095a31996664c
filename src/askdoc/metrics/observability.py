"""Observability helpers for askdoc."""

from __future__ import annotations

import logging

import structlog
from prometheus_client import Counter, Histogram

_logger_configured = False


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


def clear_correlation_id() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str = "askdoc") -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


class PipelineMetrics:
    """Prometheus metrics for pipeline stages."""

    token_acquisitions = Counter(
        "askdoc_token_acquisitions_total",
        "Token requests sent to the identity provider.",
        ["outcome"],
    )
    upload_latency = Histogram(
        "askdoc_upload_duration_seconds",
        "Time spent creating the upload session and transferring bytes.",
        buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
    )
    upload_bytes = Histogram(
        "askdoc_upload_bytes",
        "Size of uploaded documents.",
        buckets=(1024, 64 * 1024, 1024**2, 4 * 1024**2, 16 * 1024**2, 64 * 1024**2),
    )
    retrieval_latency = Histogram(
        "askdoc_retrieval_duration_seconds",
        "Time spent retrieving context chunks.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0),
    )
    retrieved_chunk_count = Histogram(
        "askdoc_retrieved_chunk_count",
        "Number of chunks returned by retrieval.",
        buckets=(0, 1, 2, 3, 5, 8, 13),
    )
    completion_latency = Histogram(
        "askdoc_completion_duration_seconds",
        "Time spent waiting for the chat completion.",
        buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
    )
    pipeline_failures = Counter(
        "askdoc_pipeline_failures_total",
        "Pipeline runs that ended in the failed state.",
        ["kind"],
    )

    @classmethod
    def observe_upload(cls, duration_seconds: float, size_bytes: int) -> None:
        cls.upload_latency.observe(duration_seconds)
        cls.upload_bytes.observe(size_bytes)

    @classmethod
    def observe_retrieval(cls, duration_seconds: float, chunk_count: int) -> None:
        cls.retrieval_latency.observe(duration_seconds)
        cls.retrieved_chunk_count.observe(chunk_count)

    @classmethod
    def observe_completion(cls, duration_seconds: float) -> None:
        cls.completion_latency.observe(duration_seconds)

    @classmethod
    def record_failure(cls, kind: str) -> None:
        cls.pipeline_failures.labels(kind=kind).inc()


__all__ = [
    "PipelineMetrics",
    "bind_correlation_id",
    "clear_correlation_id",
    "configure_logging",
    "get_logger",
]
