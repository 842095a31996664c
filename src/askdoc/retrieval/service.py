"""Scope-constrained passage retrieval against the Graph retrieval API."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

import httpx

from askdoc.auth import TokenProvider
from askdoc.errors import RetrievalError, status_of
from askdoc.metrics.observability import PipelineMetrics, get_logger
from askdoc.models import Chunk, ChunkSource, RetrievalQuery
from askdoc.transport import RetryPolicy, bearer, send_with_retry


@dataclass(frozen=True)
class RetrievalConfig:
    """Configuration for retrieval."""

    endpoint: str
    scope: str = "https://graph.microsoft.com/.default"
    retry: RetryPolicy = RetryPolicy()


class Retriever(Protocol):
    """Retrieve relevant chunks for a question within one scope."""

    async def retrieve(self, question: str, scope_filter: str, top_n: int) -> Sequence[Chunk]:
        """Return at most ``top_n`` chunks, most relevant first."""


def _parse_chunk(raw: dict[str, Any]) -> Chunk:
    source = raw.get("source") or {}
    return Chunk(
        content=raw.get("content") or "",
        source=ChunkSource(url=source.get("url"), drive_item_id=source.get("driveItemId")),
    )


class RetrievalClient:
    """Query the retrieval backend, keeping the backend's relevance order."""

    def __init__(self, client: httpx.AsyncClient, tokens: TokenProvider, config: RetrievalConfig) -> None:
        self._client = client
        self._tokens = tokens
        self._config = config
        self._logger = get_logger("retrieval")

    async def retrieve(self, question: str, scope_filter: str, top_n: int) -> tuple[Chunk, ...]:
        if top_n < 0:
            raise ValueError("top_n must be non-negative")
        if top_n == 0:
            return ()
        query = RetrievalQuery(question=question, scope_filter=scope_filter, top_n=top_n)
        token = await self._tokens.get_token(self._config.scope)
        start = time.perf_counter()
        try:
            response = await send_with_retry(
                self._client,
                "POST",
                self._config.endpoint,
                policy=self._config.retry,
                headers=bearer(token),
                json=query.to_payload(),
            )
            raw_chunks = response.json().get("chunks") or []
            chunks = tuple(_parse_chunk(raw) for raw in raw_chunks[:top_n])
        except httpx.HTTPError as exc:
            self._logger.error("retrieval.failed", scope_filter=scope_filter, status_code=status_of(exc))
            raise RetrievalError(f"retrieval for {scope_filter} failed", status_code=status_of(exc)) from exc
        except (AttributeError, TypeError, ValueError) as exc:
            self._logger.error("retrieval.failed", scope_filter=scope_filter, error="malformed response")
            raise RetrievalError(f"retrieval response for {scope_filter} is malformed") from exc
        duration = time.perf_counter() - start
        PipelineMetrics.observe_retrieval(duration, len(chunks))
        self._logger.info(
            "retrieval.complete",
            scope_filter=scope_filter,
            chunk_count=len(chunks),
            top_n=top_n,
            duration_seconds=duration,
        )
        return chunks
