"""Bearer token cache with single-flight refresh per scope."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Protocol

import httpx

from askdoc.errors import AuthError, status_of
from askdoc.metrics.observability import PipelineMetrics, get_logger
from askdoc.models import CachedToken


@dataclass(frozen=True)
class ClientCredentials:
    """Azure AD application credentials for the client-credentials grant."""

    token_url: str
    client_id: str
    client_secret: str


class TokenProvider(Protocol):
    async def get_token(self, scope: str) -> str:
        """Return a bearer token valid for ``scope``."""


class CredentialManager:
    """Acquire and cache bearer tokens, one per audience scope.

    Concurrent callers asking for the same scope while no usable token is
    cached share a single in-flight acquisition and observe the same token or
    the same ``AuthError``. Acquisition failures are not retried.
    """

    def __init__(
        self,
        credentials: ClientCredentials,
        *,
        client: httpx.AsyncClient,
        refresh_margin: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._credentials = credentials
        self._client = client
        self._refresh_margin = refresh_margin
        self._clock = clock
        self._tokens: dict[str, CachedToken] = {}
        self._inflight: dict[str, asyncio.Task[CachedToken]] = {}
        self._closed = False
        self._logger = get_logger("auth")

    async def get_token(self, scope: str) -> str:
        if self._closed:
            raise AuthError("credential manager is closed")
        cached = self._tokens.get(scope)
        if cached is not None and cached.is_valid(self._clock()):
            return cached.token

        task = self._inflight.get(scope)
        if task is None:
            task = asyncio.create_task(self._acquire(scope))
            self._inflight[scope] = task
            task.add_done_callback(lambda done, key=scope: self._forget(key, done))
        # Shielded so one waiter's cancellation leaves the others' acquisition alone.
        token = await asyncio.shield(task)
        return token.token

    def _forget(self, scope: str, task: asyncio.Task[CachedToken]) -> None:
        if self._inflight.get(scope) is task:
            del self._inflight[scope]
        if not task.cancelled():
            # Mark the exception as retrieved when every waiter went away.
            task.exception()

    async def _acquire(self, scope: str) -> CachedToken:
        form = {
            "client_id": self._credentials.client_id,
            "client_secret": self._credentials.client_secret,
            "scope": scope,
            "grant_type": "client_credentials",
        }
        try:
            response = await self._client.post(self._credentials.token_url, data=form)
            response.raise_for_status()
            payload = response.json()
            access_token = payload["access_token"]
            expires_in = float(payload["expires_in"])
        except httpx.HTTPError as exc:
            PipelineMetrics.token_acquisitions.labels(outcome="failure").inc()
            self._logger.error("token.failed", scope=scope, status_code=status_of(exc), error=type(exc).__name__)
            raise AuthError(f"token request for {scope} failed", status_code=status_of(exc)) from exc
        except (KeyError, TypeError, ValueError) as exc:
            PipelineMetrics.token_acquisitions.labels(outcome="failure").inc()
            self._logger.error("token.failed", scope=scope, error="malformed response")
            raise AuthError(f"token response for {scope} is malformed") from exc

        # The margin never exceeds half the token lifetime.
        margin = min(self._refresh_margin, expires_in / 2)
        cached = CachedToken(
            scope=scope,
            token=access_token,
            expires_at=self._clock() + expires_in,
            refresh_margin=margin,
        )
        self._tokens[scope] = cached
        PipelineMetrics.token_acquisitions.labels(outcome="success").inc()
        self._logger.info("token.acquired", scope=scope, expires_in=expires_in)
        return cached

    async def aclose(self) -> None:
        self._closed = True
        pending = list(self._inflight.values())
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._inflight.clear()
        self._tokens.clear()
