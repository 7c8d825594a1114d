"""
Shared test fixtures - scripted in-memory backends.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable

import pytest

from switchyard.adapters.llm import (
    Backend,
    BackendCapabilities,
    BackendRegistry,
    ChatChunk,
    ChatRequest,
    ChatResponse,
    Usage,
)
from switchyard.adapters.llm.cancellation import ensure_not_aborted
from switchyard.config.errors import BackendError
from switchyard.domains.quality.models import (
    QualityScores,
    QualityThresholds,
    QualityValidationResult,
    Recommendation,
)


class FakeBackend:
    """Backend adapter that replays scripted answers and records requests."""

    def __init__(
        self,
        backend_id: str,
        answers: list[str | Exception] | None = None,
        chunks: list[str] | None = None,
        stream_error: Exception | None = None,
        chunk_delay: float = 0.0,
        answer_delay: float = 0.0,
        fail_after: int | None = None,
    ) -> None:
        self.backend_id = backend_id
        self.answers = list(answers or [f"Answer from {backend_id}."])
        self.chunks = list(chunks or [])
        self.stream_error = stream_error
        self.chunk_delay = chunk_delay
        self.answer_delay = answer_delay
        # stream_error is raised after this many chunks (None = before the first)
        self.fail_after = fail_after
        self.requests: list[ChatRequest] = []
        self.stream_requests: list[ChatRequest] = []
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.requests) + len(self.stream_requests)

    async def query(
        self, request: ChatRequest, abort: asyncio.Event | None = None
    ) -> ChatResponse:
        ensure_not_aborted(abort)
        self.requests.append(request)
        if self.answer_delay:
            await asyncio.sleep(self.answer_delay)
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(answer, Exception):
            raise answer
        return ChatResponse.from_text(
            model=self.backend_id,
            text=answer,
            usage=Usage(prompt_tokens=10, completion_tokens=20, total_tokens=30),
        )

    async def query_stream(
        self, request: ChatRequest, abort: asyncio.Event | None = None
    ) -> AsyncIterator[ChatChunk]:
        self.stream_requests.append(request)
        if self.stream_error is not None and self.fail_after is None:
            raise self.stream_error
        for index, text in enumerate(self.chunks):
            if self.stream_error is not None and index == self.fail_after:
                raise self.stream_error
            if self.chunk_delay:
                await asyncio.sleep(self.chunk_delay)
            yield ChatChunk.from_text(self.backend_id, text)

    async def close(self) -> None:
        self.closed = True


def make_backend(
    backend_id: str,
    latency: float,
    cost: float,
    local: bool = False,
    trust: int = 0,
) -> Backend:
    return Backend(
        id=backend_id,
        model=f"{backend_id}-model",
        base_latency_ms=latency,
        cost_per_1k_tokens=cost,
        capabilities=BackendCapabilities(
            supports_streaming=True,
            max_context_tokens=8192,
            max_concurrency=1 if local else None,
        ),
        is_local=local,
        trust_rank=trust,
    )


DEFAULT_BACKENDS = [
    make_backend("local", 250, 0.0, local=True),
    make_backend("claude", 1500, 0.0025, trust=3),
    make_backend("gpt4", 2000, 0.0075, trust=2),
    make_backend("gemini", 1800, 0.0003, trust=1),
]


@pytest.fixture
def fake_backend() -> type[FakeBackend]:
    """The scripted backend class."""
    return FakeBackend


@pytest.fixture
def backends() -> list[Backend]:
    """Descriptors for local, claude, gpt4 and gemini."""
    return list(DEFAULT_BACKENDS)


@pytest.fixture
def make_registry(
    backends: list[Backend],
) -> Callable[..., BackendRegistry]:
    """
    Build a registry from scripted adapters.

    Backends without an adapter in ``adapters`` are configured but unavailable.
    """

    def _make(**adapters: FakeBackend) -> BackendRegistry:
        return BackendRegistry(backends, adapters)

    return _make


@pytest.fixture
def backend_failure() -> Callable[[str], BackendError]:
    """Factory for backend errors."""

    def _make(backend_id: str) -> BackendError:
        return BackendError(backend_id, f"{backend_id} connection refused")

    return _make


class ScriptedValidator:
    """Quality gate that fails any answer starting with "Bad"."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    def validate(
        self,
        answer: str,
        query: str,
        thresholds: QualityThresholds | None = None,
    ) -> QualityValidationResult:
        self.calls.append((answer, query))
        passed = not answer.startswith("Bad")
        score = 0.9 if passed else 0.4
        return QualityValidationResult(
            scores=QualityScores(
                coherence=score,
                completeness=score,
                relevance=score,
                accuracy=score,
                safety=1.0,
            ),
            overall=score,
            passed=passed,
            recommendation=Recommendation.ACCEPT if passed else Recommendation.ESCALATE,
            confidence=0.8,
            reasoning="scripted",
        )


@pytest.fixture
def scripted_validator() -> ScriptedValidator:
    return ScriptedValidator()
