"""Pipeline orchestration: upload, scoped retrieval, grounded completion."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from askdoc.errors import PipelineTimeoutError
from askdoc.metrics.observability import PipelineMetrics, get_logger
from askdoc.models import Answer, Chunk, Document, RetrievalQuery, UploadedItem
from askdoc.retrieval.service import Retriever
from askdoc.services.generation import Completer


class Uploader(Protocol):
    async def upload(self, document: Document) -> UploadedItem:
        """Store ``document`` and return the created item."""


class PipelineState(str, Enum):
    UPLOADING = "uploading"
    RETRIEVING = "retrieving"
    COMPLETING = "completing"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.UPLOADING: frozenset({PipelineState.RETRIEVING, PipelineState.FAILED}),
    PipelineState.RETRIEVING: frozenset({PipelineState.COMPLETING, PipelineState.FAILED}),
    PipelineState.COMPLETING: frozenset({PipelineState.DONE, PipelineState.FAILED}),
    PipelineState.DONE: frozenset(),
    PipelineState.FAILED: frozenset(),
}


@dataclass
class PipelineRun:
    """State of one ``ingest_and_ask`` invocation."""

    document: Document
    question: str
    state: PipelineState = PipelineState.UPLOADING
    history: list[PipelineState] = field(default_factory=lambda: [PipelineState.UPLOADING])
    item: UploadedItem | None = None
    chunks: tuple[Chunk, ...] = ()
    answer: Answer | None = None
    error: BaseException | None = None

    def advance(self, target: PipelineState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"invalid pipeline transition {self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)

    @property
    def finished(self) -> bool:
        return self.state in (PipelineState.DONE, PipelineState.FAILED)


class Orchestrator:
    """Run the three stages strictly in sequence for each request.

    A failure at any stage ends the run in ``FAILED`` and re-raises the
    originating error. Completed side effects are kept: an uploaded item stays
    in the drive even when retrieval or completion fails afterwards.
    """

    def __init__(
        self,
        uploader: Uploader,
        retriever: Retriever,
        completer: Completer,
        *,
        top_n: int = 6,
        timeout: float | None = None,
    ) -> None:
        self._uploader = uploader
        self._retriever = retriever
        self._completer = completer
        self._top_n = top_n
        self._timeout = timeout
        self._logger = get_logger("orchestrator")

    async def ingest_and_ask(self, file_name: str, data: bytes, question: str) -> str:
        run = PipelineRun(document=Document(name=file_name, data=data), question=question)
        await self.execute(run)
        return run.answer.text if run.answer else ""

    async def execute(self, run: PipelineRun) -> PipelineRun:
        start = time.perf_counter()
        try:
            if self._timeout is None:
                await self._run_stages(run)
            else:
                await asyncio.wait_for(self._run_stages(run), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            error = PipelineTimeoutError(f"pipeline exceeded {self._timeout}s while {run.state.value}")
            self._fail(run, error)
            raise error from exc
        except asyncio.CancelledError as exc:
            self._fail(run, exc)
            raise
        except Exception as exc:
            self._fail(run, exc)
            raise
        self._logger.info(
            "pipeline.complete",
            item_id=run.item.item_id if run.item else None,
            chunk_count=len(run.chunks),
            duration_seconds=time.perf_counter() - start,
        )
        return run

    async def _run_stages(self, run: PipelineRun) -> None:
        run.item = await self._uploader.upload(run.document)
        run.advance(PipelineState.RETRIEVING)

        query = RetrievalQuery.for_item(run.question, run.item.item_id, self._top_n)
        run.chunks = tuple(await self._retriever.retrieve(query.question, query.scope_filter, query.top_n))
        run.advance(PipelineState.COMPLETING)

        run.answer = Answer(text=await self._completer.complete(run.chunks, run.question))
        run.advance(PipelineState.DONE)

    def _fail(self, run: PipelineRun, error: BaseException) -> None:
        failed_in = run.state
        if not run.finished:
            run.advance(PipelineState.FAILED)
        run.error = error
        kind = getattr(error, "kind", None)
        if kind is not None:
            label = kind.value
        elif isinstance(error, asyncio.CancelledError):
            label = "cancelled"
        else:
            label = "unexpected"
        PipelineMetrics.record_failure(label)
        self._logger.warning(
            "pipeline.failed",
            stage=failed_in.value,
            kind=label,
            item_id=run.item.item_id if run.item else None,
            detail=str(error),
        )

