"""Shared domain models used across the askdoc pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

SCOPE_FILTER_FIELD = "driveItemId"


def scope_filter_for(item_id: str) -> str:
    """Return the KQL filter that restricts retrieval to a single drive item."""

    return f"{SCOPE_FILTER_FIELD}:{item_id}"


@dataclass(frozen=True)
class Document:
    """Document supplied by the caller for a single pipeline run."""

    name: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class UploadSession:
    """Pre-authenticated upload target returned by the storage backend."""

    upload_url: str
    expires_at: str | None = None


@dataclass(frozen=True)
class UploadedItem:
    """Drive item created by a completed upload."""

    item_id: str
    name: str
    web_url: str | None = None


@dataclass(frozen=True)
class RetrievalQuery:
    question: str
    scope_filter: str
    top_n: int

    @classmethod
    def for_item(cls, question: str, item_id: str, top_n: int) -> "RetrievalQuery":
        return cls(question=question, scope_filter=scope_filter_for(item_id), top_n=top_n)

    def to_payload(self) -> dict[str, object]:
        return {"query": self.question, "kql": self.scope_filter, "topN": self.top_n}


@dataclass(frozen=True)
class ChunkSource:
    url: str | None = None
    drive_item_id: str | None = None


@dataclass(frozen=True)
class Chunk:
    """Passage returned by the retrieval backend, most relevant first."""

    content: str
    source: ChunkSource


@dataclass(frozen=True)
class ChatMessage:
    role: Literal["system", "user"]
    content: str

    def to_payload(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class Answer:
    text: str


@dataclass(frozen=True)
class CachedToken:
    """Bearer token cached for one audience scope.

    ``expires_at`` is expressed on the same monotonic clock the credential
    manager uses, not wall-clock time. The token is refreshed once fewer than
    ``refresh_margin`` seconds remain.
    """

    scope: str
    token: str
    expires_at: float
    refresh_margin: float = 0.0

    def is_valid(self, now: float) -> bool:
        return now + self.refresh_margin < self.expires_at
