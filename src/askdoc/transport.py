"""Outbound HTTP helpers shared by the backend clients."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential_jitter

from askdoc.metrics.observability import get_logger

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

_logger = get_logger("transport")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with jittered exponential backoff.

    ``max_attempts=1`` disables retrying altogether.
    """

    max_attempts: int = 3
    initial_backoff: float = 0.5
    max_backoff: float = 8.0

    @classmethod
    def disabled(cls) -> "RetryPolicy":
        return cls(max_attempts=1, initial_backoff=0.0, max_backoff=0.0)


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exc, httpx.TransportError)


def _log_retry(retry_state) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    _logger.warning(
        "http.retry",
        attempt=retry_state.attempt_number,
        error=type(exc).__name__ if exc else None,
        status_code=exc.response.status_code if isinstance(exc, httpx.HTTPStatusError) else None,
    )


async def send_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    policy: RetryPolicy,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request and return the successful response.

    Non-success responses raise ``httpx.HTTPStatusError``. Only transient
    statuses and transport errors are retried; the last error is re-raised once
    the policy is exhausted.
    """

    retrying = AsyncRetrying(
        retry=retry_if_exception(is_transient),
        stop=stop_after_attempt(max(1, policy.max_attempts)),
        wait=wait_exponential_jitter(
            initial=policy.initial_backoff,
            max=policy.max_backoff,
            jitter=policy.initial_backoff,
        ),
        before_sleep=_log_retry,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            response = await client.request(method, url, **kwargs)
            response.raise_for_status()
    return response


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
