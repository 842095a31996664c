"""Shared fakes for the backend client tests."""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from askdoc.transport import RetryPolicy

GRAPH = "https://graph.example/v1.0"
TOKEN_URL = "https://login.example/tenant-1/oauth2/v2.0/token"
RETRIEVAL_URL = "https://graph.example/beta/copilot/retrieval"
OPENAI_ENDPOINT = "https://openai.example"
UPLOAD_URL = "https://upload.example/session/xyz"
SCOPE = "https://graph.microsoft.com/.default"

NO_RETRY = RetryPolicy.disabled()
FAST_RETRY = RetryPolicy(max_attempts=3, initial_backoff=0.0, max_backoff=0.0)


class FakeTokens:
    """Token provider that never touches the network."""

    def __init__(self, token: str = "graph-token") -> None:
        self.token = token
        self.scopes: list[str] = []

    async def get_token(self, scope: str) -> str:
        self.scopes.append(scope)
        return self.token


class Recorder:
    """Wraps a MockTransport handler and keeps every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], Any]) -> None:
        self.requests: list[httpx.Request] = []
        self._handler = handler

    def __call__(self, request: httpx.Request) -> Any:
        self.requests.append(request)
        return self._handler(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def methods(self) -> list[str]:
        return [request.method for request in self.requests]


def body_json(request: httpx.Request) -> Any:
    return json.loads(request.content)


@pytest.fixture
def fake_tokens() -> FakeTokens:
    return FakeTokens()
