"""
Chat Routes - Query answering, routing preview and answer validation.

The streaming endpoint speaks server-sent events:
- ``chunk``: {text, index, backend, kind} for every delivered piece
- ``done``: the final orchestration result
On both endpoints a client disconnect sets the abort signal, cancelling
in-flight backend calls.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from switchyard.domains.orchestration import (
    ChunkMeta,
    OrchestrationResult,
    OrchestrationStatus,
    Orchestrator,
    Query,
)
from switchyard.domains.quality import QualityThresholds, QualityValidationResult
from switchyard.domains.routing import (
    ComplexityScore,
    ContextTurn,
    OrchestrationDecision,
    Preferences,
)
from switchyard.interfaces.api.deps import get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter()

DISCONNECT_POLL_SECONDS = 0.25


class ChatBody(BaseModel):
    """Chat request body."""

    query: str = Field(..., min_length=1, description="User query")
    context: list[ContextTurn] = Field(default_factory=list)
    preferences: Preferences = Field(default_factory=Preferences)

    def to_query(self) -> Query:
        return Query(text=self.query, context=self.context)


class RouteResponse(BaseModel):
    """Routing preview: what would happen, without calling a backend."""

    complexity: ComplexityScore
    decision: OrchestrationDecision


class ValidateBody(BaseModel):
    """Answer validation request body."""

    query: str = Field(..., min_length=1)
    answer: str
    thresholds: QualityThresholds | None = None


def _encode_sse(event: str, data: dict[str, Any]) -> str:
    payload = json.dumps(data, ensure_ascii=False)
    return f"event: {event}\ndata: {payload}\n\n"


async def _watch_disconnect(request: Request, abort: asyncio.Event) -> None:
    """Set ``abort`` once the client goes away."""
    while not abort.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected, aborting query")
            abort.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@router.post("/chat", response_model=OrchestrationResult)
async def chat(
    body: ChatBody,
    request: Request,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """
    Answer a query.

    - **query**: Query text
    - **context**: Earlier conversation turns
    - **preferences**: Priority, privacy, cost/latency caps, strategy override

    Backend failures return 502 with the result body (status ``failed``);
    a client that disconnects mid-query gets 499 (status ``aborted``).
    """
    abort = asyncio.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, abort))
    try:
        result = await orchestrator.run(body.to_query(), body.preferences, abort)
    finally:
        watcher.cancel()
        await asyncio.gather(watcher, return_exceptions=True)

    if result.status == OrchestrationStatus.FAILED:
        return JSONResponse(status_code=502, content=result.model_dump(mode="json"))
    if result.status == OrchestrationStatus.ABORTED:
        return JSONResponse(status_code=499, content=result.model_dump(mode="json"))
    return result


@router.post("/chat/stream")
async def chat_stream(
    body: ChatBody,
    request: Request,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    """Answer a query as a server-sent event stream."""
    abort = asyncio.Event()
    queue: asyncio.Queue[tuple[str, ChunkMeta] | None] = asyncio.Queue()

    async def on_chunk(text: str, meta: ChunkMeta) -> None:
        await queue.put((text, meta))

    async def events() -> AsyncIterator[str]:
        task = asyncio.create_task(
            orchestrator.stream(body.to_query(), body.preferences, on_chunk=on_chunk, abort=abort)
        )
        task.add_done_callback(lambda _: queue.put_nowait(None))
        try:
            while True:
                item = await queue.get()
                if item is None:
                    break
                if await request.is_disconnected():
                    logger.info("Client disconnected, aborting stream")
                    abort.set()
                    return
                text, meta = item
                yield _encode_sse("chunk", {"text": text, **meta.model_dump()})

            result = await task
            yield _encode_sse("done", result.model_dump(mode="json"))
        finally:
            if not task.done():
                abort.set()
                await asyncio.gather(task, return_exceptions=True)

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post("/route", response_model=RouteResponse)
async def route(
    body: ChatBody,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> RouteResponse:
    """Estimate complexity and decide a strategy without executing it."""
    complexity, decision = await orchestrator.plan(body.to_query(), body.preferences)
    return RouteResponse(complexity=complexity, decision=decision)


@router.post("/validate", response_model=QualityValidationResult)
async def validate(
    body: ValidateBody,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> QualityValidationResult:
    """Score a candidate answer against the quality gate."""
    return orchestrator.validator.validate(body.answer, body.query, body.thresholds)
