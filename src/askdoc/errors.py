"""Error taxonomy for the askdoc pipeline.

Each stage raises exactly one exception family. ``kind`` identifies the
failure for the API layer, which turns it into a user-facing message without
exposing backend payloads.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    AUTH_FAILED = "auth_failed"
    SESSION_CREATION_FAILED = "session_creation_failed"
    TRANSFER_FAILED = "transfer_failed"
    QUERY_FAILED = "query_failed"
    NO_CHOICES = "no_choices"
    REQUEST_FAILED = "request_failed"
    DEADLINE_EXCEEDED = "deadline_exceeded"


PUBLIC_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.AUTH_FAILED: "Could not authenticate against the document store",
    ErrorKind.SESSION_CREATION_FAILED: "Could not start the document upload",
    ErrorKind.TRANSFER_FAILED: "Could not transfer the document",
    ErrorKind.QUERY_FAILED: "Could not search the uploaded document",
    ErrorKind.NO_CHOICES: "The language model returned no answer",
    ErrorKind.REQUEST_FAILED: "The language model request failed",
    ErrorKind.DEADLINE_EXCEEDED: "The request took too long to complete",
}


class PipelineError(RuntimeError):
    """Base class for every failure surfaced by a pipeline stage."""

    allowed_kinds: frozenset[ErrorKind] = frozenset(ErrorKind)

    def __init__(self, kind: ErrorKind, message: str, *, status_code: int | None = None) -> None:
        if kind not in self.allowed_kinds:
            raise ValueError(f"{type(self).__name__} cannot carry kind {kind.value}")
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @property
    def public_message(self) -> str:
        return PUBLIC_MESSAGES[self.kind]


class AuthError(PipelineError):
    """Raised when a bearer token cannot be acquired."""

    allowed_kinds = frozenset({ErrorKind.AUTH_FAILED})

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(ErrorKind.AUTH_FAILED, message, status_code=status_code)


class UploadError(PipelineError):
    allowed_kinds = frozenset({ErrorKind.SESSION_CREATION_FAILED, ErrorKind.TRANSFER_FAILED})


class RetrievalError(PipelineError):
    allowed_kinds = frozenset({ErrorKind.QUERY_FAILED})

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(ErrorKind.QUERY_FAILED, message, status_code=status_code)


class CompletionError(PipelineError):
    allowed_kinds = frozenset({ErrorKind.NO_CHOICES, ErrorKind.REQUEST_FAILED})


class PipelineTimeoutError(PipelineError):
    allowed_kinds = frozenset({ErrorKind.DEADLINE_EXCEEDED})

    def __init__(self, message: str) -> None:
        super().__init__(ErrorKind.DEADLINE_EXCEEDED, message)


def status_of(exc: BaseException) -> int | None:
    """Return the HTTP status attached to an httpx error, if any."""

    response = getattr(exc, "response", None)
    return getattr(response, "status_code", None)


__all__ = [
    "AuthError",
    "CompletionError",
    "ErrorKind",
    "PUBLIC_MESSAGES",
    "PipelineError",
    "PipelineTimeoutError",
    "RetrievalError",
    "UploadError",
    "status_of",
]
