"""Chat-completion client for an Azure OpenAI deployment."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol, Sequence

import httpx

from askdoc.errors import CompletionError, ErrorKind, status_of
from askdoc.metrics.observability import PipelineMetrics, get_logger
from askdoc.models import ChatMessage, Chunk
from askdoc.transport import RetryPolicy, send_with_retry

SYSTEM_PREAMBLE = "You are a helpful assistant. Use ONLY the following context to answer."
CONTEXT_SEPARATOR = "\n---\n"


@dataclass(frozen=True)
class CompletionConfig:
    """Configuration for answer generation."""

    endpoint: str
    deployment: str
    api_key: str
    api_version: str = "2024-08-01-preview"
    retry: RetryPolicy = RetryPolicy()

    @property
    def url(self) -> str:
        return (
            f"{self.endpoint.rstrip('/')}/openai/deployments/{self.deployment}"
            f"/chat/completions?api-version={self.api_version}"
        )


class Completer(Protocol):
    """Protocol describing generation behaviour."""

    async def complete(self, chunks: Sequence[Chunk], question: str) -> str:
        """Return an answer grounded on ``chunks``."""


def build_messages(chunks: Sequence[Chunk], question: str) -> list[ChatMessage]:
    """Return the system and user messages for one grounded question."""

    system = SYSTEM_PREAMBLE
    contents = [chunk.content for chunk in chunks]
    if contents:
        system += "\n\n" + CONTEXT_SEPARATOR.join(contents)
    return [ChatMessage(role="system", content=system), ChatMessage(role="user", content=question)]


class CompletionClient:
    """Single-shot chat completion: no history, no streaming, no tools."""

    def __init__(self, client: httpx.AsyncClient, config: CompletionConfig) -> None:
        self._client = client
        self._config = config
        self._logger = get_logger("generation")

    async def complete(self, chunks: Sequence[Chunk], question: str) -> str:
        messages = build_messages(chunks, question)
        start = time.perf_counter()
        try:
            response = await send_with_retry(
                self._client,
                "POST",
                self._config.url,
                policy=self._config.retry,
                headers={"api-key": self._config.api_key},
                json={"messages": [message.to_payload() for message in messages]},
            )
            choices = response.json().get("choices") or []
            if not choices:
                raise CompletionError(ErrorKind.NO_CHOICES, "completion returned no choices")
            content = choices[0]["message"]["content"]
        except httpx.HTTPError as exc:
            self._logger.error("generation.failed", status_code=status_of(exc), error=type(exc).__name__)
            raise CompletionError(
                ErrorKind.REQUEST_FAILED,
                "completion request failed",
                status_code=status_of(exc),
            ) from exc
        except (AttributeError, KeyError, IndexError, TypeError, ValueError) as exc:
            self._logger.error("generation.failed", error="malformed response")
            raise CompletionError(ErrorKind.REQUEST_FAILED, "completion response is malformed") from exc
        duration = time.perf_counter() - start
        PipelineMetrics.observe_completion(duration)
        self._logger.info("generation.complete", context_chunks=len(chunks), duration_seconds=duration)
        return content or ""
