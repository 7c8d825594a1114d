"""
Streaming Executor - Live quality monitoring with mid-stream backend switch.

Chunks are forwarded to the caller as they arrive. For local-first
strategies a cheap check runs at chunk 5 and every 3 chunks after; if it
trips, the executor:

1. emits a visible transition marker,
2. asks the fallback backend to continue from the partial output,
3. streams the remainder from the fallback and records a switch point.

If the fallback cannot be reached, a degraded-completion notice is emitted
and the original stream is drained (or, when the original itself failed,
the answer ends there); text already delivered is never retracted.

The primary's generation slot is released while the fallback streams.
The abort signal is checked at every chunk boundary and also cancels the
in-flight read.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AsyncExitStack
from typing import TYPE_CHECKING, Any

from switchyard.adapters.llm.cancellation import ensure_not_aborted, next_chunk
from switchyard.adapters.llm.models import ChatChunk, ChatMessage, ChatRequest, ChatRole
from switchyard.config.errors import BackendError
from switchyard.domains.quality.contracts import StreamQualityMonitor
from switchyard.domains.quality.models import SwitchVerdict
from switchyard.domains.quality.monitor import StreamMonitor
from switchyard.domains.routing.models import OrchestrationDecision, Strategy

from .models import ChunkMeta, StreamingResult, StreamingSwitchPoint

if TYPE_CHECKING:
    from switchyard.adapters.llm import BackendRegistry

logger = logging.getLogger(__name__)

__all__ = [
    "CONTINUE_INSTRUCTION",
    "DEGRADED_NOTICE",
    "ChunkCallback",
    "StreamingExecutor",
    "TRANSITION_MARKER",
]

TRANSITION_MARKER = "\n\n[Switching to enhanced model for better quality...]\n\n"
DEGRADED_NOTICE = "\n\n[Enhanced model unavailable, completing with the original model...]\n\n"
CONTINUE_INSTRUCTION = (
    "Please continue and complete the response above with high quality, "
    "addressing any gaps or improving clarity."
)
BACKEND_ERROR_REASON = "backend_error"

ChunkCallback = Callable[[str, ChunkMeta], Awaitable[None] | None]


class _Delivery:
    """Everything sent to the caller during one run."""

    def __init__(self, on_chunk: ChunkCallback | None) -> None:
        self._on_chunk = on_chunk
        self.delivered: list[str] = []
        self.content: list[str] = []
        self.chars_by_backend: dict[str, int] = {}
        self.backends: list[str] = []

    async def emit(self, text: str, backend: str, kind: str = "content") -> None:
        meta = ChunkMeta(index=len(self.delivered), backend=backend, kind=kind)
        self.delivered.append(text)
        if kind == "content":
            self.content.append(text)
            self.chars_by_backend[backend] = self.chars_by_backend.get(backend, 0) + len(text)
            if backend not in self.backends:
                self.backends.append(backend)
        if self._on_chunk is not None:
            outcome = self._on_chunk(text, meta)
            if inspect.isawaitable(outcome):
                await outcome


class StreamingExecutor:
    """
    Streams a decision's answer, switching backends mid-stream when needed.

    Example:
        >>> streamer = StreamingExecutor(registry)
        >>> result = await streamer.run(request, decision, on_chunk=print_chunk)
        >>> [p.reason for p in result.switch_points]
        ['repetition']
    """

    def __init__(
        self,
        registry: BackendRegistry,
        monitor: StreamQualityMonitor | None = None,
    ) -> None:
        self._registry = registry
        self._monitor = monitor or StreamMonitor()

    async def run(
        self,
        request: ChatRequest,
        decision: OrchestrationDecision,
        on_chunk: ChunkCallback | None = None,
        abort: asyncio.Event | None = None,
        min_confidence: float | None = None,
    ) -> StreamingResult:
        """
        Stream the answer for ``decision``.

        Args:
            request: Chat request (model is filled in per backend)
            decision: Routing decision; its fallback is the switch target
            on_chunk: Sync or async callback receiving every delivered chunk
            abort: Cancellation signal
            min_confidence: Confidence floor for the mid-stream check

        Returns:
            StreamingResult with the delivered text and any switch points

        Raises:
            BackendError: Primary failed before any output and no fallback worked
            RequestAbortedError: The abort signal fired
        """
        primary = decision.target_backend
        fallback = decision.fallback_backend
        monitored = (
            fallback is not None
            and decision.strategy in (Strategy.HYBRID, Strategy.ITERATIVE)
        )
        delivery = _Delivery(on_chunk)
        switch_points: list[StreamingSwitchPoint] = []
        degraded = False

        try:
            async with AsyncExitStack() as stack:
                stream, slot = await self._open(stack, primary, request, abort)
                verdict = await self._pump(
                    stream, primary, delivery, abort, monitored, min_confidence
                )
                if verdict is not None and fallback is not None:
                    # Primary slot is free while the fallback continues
                    await slot.aclose()
                    point = await self._switch(
                        request, delivery, primary, fallback, verdict.reason.value,
                        verdict.quality_score, abort,
                    )
                    switch_points.append(point)
                    if not point.succeeded:
                        degraded = True
                        await slot.enter_async_context(self._registry.slot(primary))
                        await delivery.emit(DEGRADED_NOTICE, primary, kind="notice")
                        await self._drain(stream, primary, delivery, abort)
        except BackendError as e:
            if fallback is None or switch_points:
                raise
            logger.warning("Stream from %s failed (%s), continuing on %s", primary, e.message, fallback)
            if delivery.content:
                point = await self._switch(
                    request, delivery, primary, fallback, BACKEND_ERROR_REASON, 0.0, abort
                )
                switch_points.append(point)
                if not point.succeeded:
                    # Nothing left to drain; keep what was already delivered
                    degraded = True
                    await delivery.emit(DEGRADED_NOTICE, primary, kind="notice")
            else:
                async with AsyncExitStack() as stack:
                    stream, _ = await self._open(stack, fallback, request, abort)
                    await self._pump(stream, fallback, delivery, abort, False, None)

        return self._result(delivery, primary, switch_points, degraded)

    async def _open(
        self,
        stack: AsyncExitStack,
        backend_id: str,
        request: ChatRequest,
        abort: asyncio.Event | None,
    ) -> tuple[AsyncIterator[ChatChunk], AsyncExitStack]:
        """
        Acquire the backend's slot and start its stream; both released by ``stack``.

        The slot is held by its own exit stack so it can be let go (and taken
        back) while the stream stays open.
        """
        ensure_not_aborted(abort)
        backend = self._registry.get(backend_id)
        adapter = self._registry.adapter(backend_id)
        slot = AsyncExitStack()
        await slot.enter_async_context(self._registry.slot(backend_id))
        stack.push_async_callback(slot.aclose)
        stream = adapter.query_stream(request.for_model(backend.model, stream=True), abort)
        stack.push_async_callback(_close_stream, stream)
        return stream, slot

    async def _drain(
        self,
        stream: AsyncIterator[ChatChunk],
        backend_id: str,
        delivery: _Delivery,
        abort: asyncio.Event | None,
    ) -> None:
        """Finish a degraded stream; a failure here ends the answer early."""
        try:
            await self._pump(stream, backend_id, delivery, abort, False, None)
        except BackendError as e:
            logger.warning("Degraded stream from %s ended early: %s", backend_id, e.message)

    async def _pump(
        self,
        stream: AsyncIterator[ChatChunk],
        backend_id: str,
        delivery: _Delivery,
        abort: asyncio.Event | None,
        monitored: bool,
        min_confidence: float | None,
    ) -> SwitchVerdict | None:
        """Forward chunks until the stream ends or the monitor asks for a switch."""
        seen: list[str] = []
        while True:
            try:
                chunk = await next_chunk(stream, abort)
            except StopAsyncIteration:
                return None

            text = chunk.text
            if not text:
                continue
            seen.append(text)
            await delivery.emit(text, backend_id)

            if monitored and self._monitor.should_check(len(seen)):
                verdict = self._monitor.evaluate(seen, min_confidence)
                if verdict.switch:
                    logger.info(
                        "Stream check tripped on %s at chunk %d: %s (quality %.2f)",
                        backend_id,
                        len(seen),
                        verdict.reason.value if verdict.reason else "unknown",
                        verdict.quality_score,
                    )
                    return verdict

    async def _switch(
        self,
        request: ChatRequest,
        delivery: _Delivery,
        source: str,
        destination: str,
        reason: str,
        quality_score: float,
        abort: asyncio.Event | None,
    ) -> StreamingSwitchPoint:
        """Continue the answer on ``destination``; never raises BackendError."""
        point = StreamingSwitchPoint(
            chunk_index=len(delivery.delivered),
            reason=reason,
            quality_score=quality_score,
            from_backend=source,
            to_backend=destination,
        )
        partial = "".join(delivery.content)
        continuation = request.with_messages(
            [
                *request.messages,
                ChatMessage(role=ChatRole.ASSISTANT, content=partial),
                ChatMessage(role=ChatRole.USER, content=CONTINUE_INSTRUCTION),
            ]
        )

        await delivery.emit(TRANSITION_MARKER, destination, kind="marker")
        try:
            async with AsyncExitStack() as stack:
                stream, _ = await self._open(stack, destination, continuation, abort)
                await self._pump(stream, destination, delivery, abort, False, None)
        except BackendError as e:
            logger.warning("Live switch %s -> %s failed: %s", source, destination, e.message)
            return point.model_copy(update={"succeeded": False})

        logger.info("Live switch %s -> %s at chunk %d (%s)", source, destination, point.chunk_index, reason)
        return point

    def _result(
        self,
        delivery: _Delivery,
        primary: str,
        switch_points: list[StreamingSwitchPoint],
        degraded: bool,
    ) -> StreamingResult:
        cost = 0.0
        for backend_id, chars in delivery.chars_by_backend.items():
            cost += self._registry.get(backend_id).estimate_cost(math.ceil(chars / 4))

        return StreamingResult(
            text="".join(delivery.delivered),
            content="".join(delivery.content),
            backend=delivery.backends[-1] if delivery.backends else primary,
            backends_used=delivery.backends,
            chunk_count=len(delivery.content),
            switch_points=switch_points,
            degraded=degraded,
            cost=round(cost, 6),
        )


async def _close_stream(stream: Any) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        logger.debug("Error closing stream: %s", e)
