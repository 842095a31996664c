"""Two-phase upload-session client for Microsoft Graph drives."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Iterator
from urllib.parse import quote

import httpx

from askdoc.auth import TokenProvider
from askdoc.errors import ErrorKind, UploadError, status_of
from askdoc.metrics.observability import PipelineMetrics, get_logger
from askdoc.models import Document, UploadedItem, UploadSession
from askdoc.transport import RetryPolicy, bearer, send_with_retry

CONFLICT_BEHAVIOR_KEY = "@microsoft.graph.conflictBehavior"


@dataclass(frozen=True)
class UploadConfig:
    """Configuration for drive uploads."""

    graph_base_url: str
    drive_id: str
    parent_path: str = "/askdoc"
    scope: str = "https://graph.microsoft.com/.default"
    segment_bytes: int | None = None
    retry: RetryPolicy = RetryPolicy()


def content_range(start: int, end: int, total: int) -> str:
    """Return the ``Content-Range`` value for the inclusive byte range ``start..end``."""

    return f"bytes {start}-{end}/{total}"


def check_file_name(file_name: str) -> str:
    """Return ``file_name`` if it names a single item, else raise ``ValueError``.

    Names are placed under the configured parent folder, so separators and dot
    segments are refused.
    """

    if not file_name.strip() or file_name in (".", "..") or "/" in file_name or "\\" in file_name:
        raise ValueError(f"invalid file name: {file_name!r}")
    return file_name


def _segments(total: int, segment_bytes: int | None) -> Iterator[tuple[int, int]]:
    step = segment_bytes if segment_bytes and segment_bytes > 0 else total
    for start in range(0, total, step):
        yield start, min(start + step, total) - 1


class UploadSessionClient:
    """Upload a document by creating an upload session and sending its bytes.

    The session URL is pre-authenticated and single-use: it is consumed by one
    transfer and discarded whatever the outcome. A failed transfer is not
    resumed.
    """

    def __init__(self, client: httpx.AsyncClient, tokens: TokenProvider, config: UploadConfig) -> None:
        self._client = client
        self._tokens = tokens
        self._config = config
        self._logger = get_logger("upload")

    def session_url(self, file_name: str) -> str:
        name = quote(check_file_name(file_name), safe="")
        parent = quote(self._config.parent_path.strip("/"), safe="/")
        path = f"/{parent}/{name}" if parent else f"/{name}"
        base = self._config.graph_base_url.rstrip("/")
        return f"{base}/drives/{self._config.drive_id}/root:{path}:/createUploadSession"

    async def upload(self, document: Document) -> UploadedItem:
        if document.size == 0:
            raise UploadError(ErrorKind.TRANSFER_FAILED, f"{document.name} is empty")
        start = time.perf_counter()
        session = await self.create_session(document.name)
        item = await self.transfer(session, document)
        PipelineMetrics.observe_upload(time.perf_counter() - start, document.size)
        self._logger.info("upload.complete", item_id=item.item_id, name=item.name, size=document.size)
        return item

    async def create_session(self, file_name: str) -> UploadSession:
        try:
            url = self.session_url(file_name)
        except ValueError as exc:
            self._logger.error("upload.session_failed", file_name=file_name, error="invalid file name")
            raise UploadError(ErrorKind.SESSION_CREATION_FAILED, str(exc)) from exc
        token = await self._tokens.get_token(self._config.scope)
        body = {"item": {CONFLICT_BEHAVIOR_KEY: "replace"}}
        try:
            response = await send_with_retry(
                self._client,
                "POST",
                url,
                policy=self._config.retry,
                headers=bearer(token),
                json=body,
            )
            payload = response.json()
            session = UploadSession(upload_url=payload["uploadUrl"], expires_at=payload.get("expirationDateTime"))
        except httpx.HTTPError as exc:
            self._logger.error("upload.session_failed", file_name=file_name, status_code=status_of(exc))
            raise UploadError(
                ErrorKind.SESSION_CREATION_FAILED,
                f"upload session for {file_name} could not be created",
                status_code=status_of(exc),
            ) from exc
        except (KeyError, TypeError, ValueError) as exc:
            self._logger.error("upload.session_failed", file_name=file_name, error="malformed response")
            raise UploadError(
                ErrorKind.SESSION_CREATION_FAILED,
                f"upload session response for {file_name} has no upload URL",
            ) from exc
        self._logger.info("upload.session_created", file_name=file_name, expires_at=session.expires_at)
        return session

    async def transfer(self, session: UploadSession, document: Document) -> UploadedItem:
        """Send the document bytes to ``session`` in increasing, non-overlapping ranges."""

        total = document.size
        payload: dict[str, object] = {}
        try:
            for first, last in _segments(total, self._config.segment_bytes):
                body = document.data[first : last + 1]
                response = await self._client.put(
                    session.upload_url,
                    content=body,
                    headers={
                        "Content-Range": content_range(first, last, total),
                        "Content-Length": str(len(body)),
                        "Content-Type": "application/octet-stream",
                    },
                )
                response.raise_for_status()
                payload = response.json()
            item = UploadedItem(item_id=payload["id"], name=payload.get("name", document.name), web_url=payload.get("webUrl"))
        except httpx.HTTPError as exc:
            self._logger.error("upload.transfer_failed", file_name=document.name, status_code=status_of(exc))
            raise UploadError(
                ErrorKind.TRANSFER_FAILED,
                f"transfer of {document.name} failed",
                status_code=status_of(exc),
            ) from exc
        except (KeyError, TypeError, ValueError) as exc:
            self._logger.error("upload.transfer_failed", file_name=document.name, error="malformed response")
            raise UploadError(ErrorKind.TRANSFER_FAILED, f"transfer of {document.name} returned no item") from exc
        return item
