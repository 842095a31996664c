"""Tests for the two-phase drive upload."""

from __future__ import annotations

import httpx
import pytest

from askdoc.errors import ErrorKind, UploadError
from askdoc.models import Document, UploadSession
from askdoc.storage import CONFLICT_BEHAVIOR_KEY, UploadConfig, UploadSessionClient, content_range
from conftest import FAST_RETRY, GRAPH, NO_RETRY, SCOPE, UPLOAD_URL, Recorder, body_json

SESSION_URL = f"{GRAPH}/drives/drive-1/root:/rag/spec.pdf:/createUploadSession"


def config(**overrides) -> UploadConfig:
    values = {"graph_base_url": GRAPH, "drive_id": "drive-1", "parent_path": "/rag", "scope": SCOPE, "retry": NO_RETRY}
    values.update(overrides)
    return UploadConfig(**values)


def drive_backend(item_id: str = "abc123", transfer_status: int = 201) -> Recorder:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith(":/createUploadSession"):
            return httpx.Response(200, json={"uploadUrl": UPLOAD_URL, "expirationDateTime": "2026-10-20T00:00:00Z"})
        if str(request.url) == UPLOAD_URL:
            return httpx.Response(
                transfer_status,
                json={"id": item_id, "name": "spec.pdf", "webUrl": f"https://drive.example/{item_id}"},
            )
        return httpx.Response(404)

    return Recorder(handler)


async def test_upload_creates_session_then_transfers_whole_payload(fake_tokens):
    backend = drive_backend()
    async with backend.client() as client:
        uploader = UploadSessionClient(client, fake_tokens, config())
        item = await uploader.upload(Document(name="spec.pdf", data=b"0123456789"))

    assert item.item_id == "abc123"
    assert item.web_url == "https://drive.example/abc123"
    create, transfer = backend.requests
    assert create.method == "POST"
    assert str(create.url) == SESSION_URL
    assert create.headers["Authorization"] == "Bearer graph-token"
    assert body_json(create) == {"item": {CONFLICT_BEHAVIOR_KEY: "replace"}}
    assert transfer.method == "PUT"
    assert str(transfer.url) == UPLOAD_URL
    assert transfer.headers["Content-Range"] == "bytes 0-9/10"
    assert transfer.headers["Content-Length"] == "10"
    assert transfer.content == b"0123456789"
    assert "Authorization" not in transfer.headers
    assert fake_tokens.scopes == [SCOPE]


@pytest.mark.parametrize("size", [1, 2, 10, 4096, 327_681])
async def test_single_transfer_declares_full_range(fake_tokens, size):
    backend = drive_backend()
    async with backend.client() as client:
        uploader = UploadSessionClient(client, fake_tokens, config())
        await uploader.upload(Document(name="spec.pdf", data=b"x" * size))

    transfer = backend.requests[-1]
    assert transfer.headers["Content-Range"] == f"bytes 0-{size - 1}/{size}"
    assert transfer.headers["Content-Length"] == str(size)


async def test_segmented_transfer_sends_ordered_ranges(fake_tokens):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json={"uploadUrl": UPLOAD_URL})
        if request.headers["Content-Range"].startswith("bytes 8-"):
            return httpx.Response(201, json={"id": "abc123", "name": "spec.pdf"})
        return httpx.Response(202, json={"nextExpectedRanges": ["..."]})

    backend = Recorder(handler)
    async with backend.client() as client:
        uploader = UploadSessionClient(client, fake_tokens, config(segment_bytes=4))
        item = await uploader.upload(Document(name="spec.pdf", data=b"0123456789"))

    assert item.item_id == "abc123"
    puts = [request for request in backend.requests if request.method == "PUT"]
    assert [request.headers["Content-Range"] for request in puts] == [
        "bytes 0-3/10",
        "bytes 4-7/10",
        "bytes 8-9/10",
    ]
    assert [request.content for request in puts] == [b"0123", b"4567", b"89"]


async def test_session_creation_failure_skips_transfer(fake_tokens):
    backend = Recorder(lambda request: httpx.Response(403, json={"error": {"code": "accessDenied"}}))
    async with backend.client() as client:
        uploader = UploadSessionClient(client, fake_tokens, config())
        with pytest.raises(UploadError) as excinfo:
            await uploader.upload(Document(name="spec.pdf", data=b"0123456789"))

    assert excinfo.value.kind is ErrorKind.SESSION_CREATION_FAILED
    assert excinfo.value.status_code == 403
    assert backend.methods() == ["POST"]


async def test_session_without_upload_url_is_a_session_failure(fake_tokens):
    backend = Recorder(lambda request: httpx.Response(200, json={}))
    async with backend.client() as client:
        uploader = UploadSessionClient(client, fake_tokens, config())
        with pytest.raises(UploadError) as excinfo:
            await uploader.upload(Document(name="spec.pdf", data=b"abc"))

    assert excinfo.value.kind is ErrorKind.SESSION_CREATION_FAILED


async def test_transient_session_failure_is_retried(fake_tokens):
    attempts = iter([503, 200])

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            status = next(attempts)
            return httpx.Response(status, json={"uploadUrl": UPLOAD_URL} if status == 200 else {})
        return httpx.Response(201, json={"id": "abc123", "name": "spec.pdf"})

    backend = Recorder(handler)
    async with backend.client() as client:
        uploader = UploadSessionClient(client, fake_tokens, config(retry=FAST_RETRY))
        item = await uploader.upload(Document(name="spec.pdf", data=b"abc"))

    assert item.item_id == "abc123"
    assert backend.methods() == ["POST", "POST", "PUT"]


async def test_transfer_failure_is_not_retried(fake_tokens):
    backend = drive_backend(transfer_status=503)
    async with backend.client() as client:
        uploader = UploadSessionClient(client, fake_tokens, config(retry=FAST_RETRY))
        with pytest.raises(UploadError) as excinfo:
            await uploader.upload(Document(name="spec.pdf", data=b"abc"))

    assert excinfo.value.kind is ErrorKind.TRANSFER_FAILED
    assert excinfo.value.status_code == 503
    assert backend.methods() == ["POST", "PUT"]


async def test_expired_session_reports_transfer_failure(fake_tokens):
    backend = drive_backend(transfer_status=404)
    async with backend.client() as client:
        uploader = UploadSessionClient(client, fake_tokens, config())
        with pytest.raises(UploadError) as excinfo:
            await uploader.transfer(UploadSession(upload_url=UPLOAD_URL), Document(name="spec.pdf", data=b"abc"))

    assert excinfo.value.kind is ErrorKind.TRANSFER_FAILED


async def test_empty_document_is_rejected_before_any_request(fake_tokens):
    backend = drive_backend()
    async with backend.client() as client:
        uploader = UploadSessionClient(client, fake_tokens, config())
        with pytest.raises(UploadError) as excinfo:
            await uploader.upload(Document(name="empty.txt", data=b""))

    assert excinfo.value.kind is ErrorKind.TRANSFER_FAILED
    assert backend.requests == []


def test_session_url_quotes_file_name(fake_tokens):
    uploader = UploadSessionClient(httpx.AsyncClient(), fake_tokens, config(parent_path="/team docs/"))
    assert uploader.session_url("Q3 report #1?.pdf") == (
        f"{GRAPH}/drives/drive-1/root:/team%20docs/Q3%20report%20%231%3F.pdf:/createUploadSession"
    )


@pytest.mark.parametrize("name", ["../Finance/budget.xlsx", "..", ".", "a/b.txt", "..\\x.txt", "  "])
async def test_file_name_cannot_leave_parent_folder(fake_tokens, name):
    backend = drive_backend()
    async with backend.client() as client:
        uploader = UploadSessionClient(client, fake_tokens, config())
        with pytest.raises(UploadError) as excinfo:
            await uploader.upload(Document(name=name, data=b"abc"))

    assert excinfo.value.kind is ErrorKind.SESSION_CREATION_FAILED
    assert backend.requests == []
    assert fake_tokens.scopes == []


def test_session_url_at_drive_root(fake_tokens):
    uploader = UploadSessionClient(httpx.AsyncClient(), fake_tokens, config(parent_path=""))
    assert uploader.session_url("a.txt") == f"{GRAPH}/drives/drive-1/root:/a.txt:/createUploadSession"


def test_content_range_is_inclusive():
    assert content_range(0, 9, 10) == "bytes 0-9/10"
