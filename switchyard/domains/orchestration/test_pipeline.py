"""
Tests for the orchestrator pipeline.
"""

from __future__ import annotations

import asyncio
import logging
import time
from unittest.mock import AsyncMock, patch

import pytest

from switchyard.conftest import FakeBackend
from switchyard.domains.routing.meta_prompt import MetaPromptAdvisor
from switchyard.domains.routing.models import (
    ContextTurn,
    ParsedAdvice,
    Preferences,
    Priority,
    Strategy,
)

from .audit import InMemoryAuditSink
from .contracts import AuditSink, QueryOrchestrator
from .models import ChunkMeta, OrchestrationStatus, Query
from .pipeline import ABORTED_MESSAGE, Orchestrator

SSN_QUERY = "My SSN is 123-45-6789, can you help me apply for a loan?"
LOOPING_CHUNKS = ["Intro text here. ", "More words follow. "] + ["the same six word chunk here "] * 4


@pytest.fixture
def local() -> FakeBackend:
    return FakeBackend("local", answers=["4"])


@pytest.fixture
def claude() -> FakeBackend:
    return FakeBackend("claude", answers=["Good cloud answer."])


@pytest.fixture
def gpt4() -> FakeBackend:
    return FakeBackend("gpt4", answers=["Good answer from gpt4."])


@pytest.fixture
def registry(make_registry, local, claude, gpt4):
    return make_registry(local=local, claude=claude, gpt4=gpt4)


@pytest.fixture
def audit() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def orchestrator(registry, audit) -> Orchestrator:
    return Orchestrator(registry, audit=audit)


# --- Scenarios ---


async def test_simple_query_stays_local(orchestrator: Orchestrator, claude: FakeBackend) -> None:
    """Test "What is 2+2?" -> local-only, "4" passes, no escalation."""
    result = await orchestrator.run(Query(text="What is 2+2?"))

    assert result.status == OrchestrationStatus.OK
    assert result.text == "4"
    assert result.backend == "local"
    assert result.decision is not None
    assert result.decision.strategy == Strategy.LOCAL_ONLY
    assert result.quality is not None and result.quality.passed is True
    assert result.escalated is False
    assert claude.calls == 0
    assert [s.name for s in result.steps] == ["cache", "estimate", "decide", "execute", "cache_store"]


async def test_repeat_query_served_from_cache(orchestrator: Orchestrator, local: FakeBackend) -> None:
    await orchestrator.run("What is 2+2?")
    second = await orchestrator.run("what is 2+2")

    assert second.cache_hit is True
    assert second.text == "4"
    assert second.decision is None
    assert local.calls == 1


async def test_approximate_cache_hit_needs_no_backend(
    orchestrator: Orchestrator, local: FakeBackend, claude: FakeBackend
) -> None:
    """Test "please explain recursion" is served from the "explain recursion" entry."""
    await orchestrator.cache.set("explain recursion", "A function that calls itself.", "local")

    result = await orchestrator.run("please explain recursion")

    assert result.cache_hit is True
    assert result.text == "A function that calls itself."
    assert local.calls == 0
    assert claude.calls == 0


async def test_ssn_query_forced_local(orchestrator: Orchestrator, claude: FakeBackend) -> None:
    """Test PII keeps the query on device even under priority=quality."""
    await orchestrator.cache.set(SSN_QUERY, "Cloud cached answer.", "claude")

    result = await orchestrator.run(SSN_QUERY, Preferences(priority=Priority.QUALITY))

    assert result.cache_hit is False
    assert result.complexity is not None and result.complexity.contains_sensitive_data
    assert result.decision is not None
    assert result.decision.strategy == Strategy.LOCAL_ONLY
    assert result.decision.fallback_backend is None
    assert result.backend == "local"
    assert claude.calls == 0


async def test_sensitive_context_turn_forces_local(orchestrator: Orchestrator) -> None:
    query = Query(
        text="Draft a short reply to them",
        context=[ContextTurn(role="user", content="Their address is jane.doe@example.com")],
    )
    result = await orchestrator.run(query, Preferences(priority=Priority.QUALITY))

    assert result.decision is not None
    assert result.decision.strategy == Strategy.LOCAL_ONLY


async def test_hybrid_escalates_poor_local_answer(make_registry, claude: FakeBackend) -> None:
    local = FakeBackend("local", answers=["I don't know."])
    orchestrator = Orchestrator(make_registry(local=local, claude=claude))

    result = await orchestrator.run(
        "Explain the difference between TCP and UDP protocols",
        Preferences(strategy_override=Strategy.HYBRID),
    )

    assert result.escalated is True
    assert result.backend == "claude"
    assert result.text == "Good cloud answer."
    assert await orchestrator.cache.get(
        "Explain the difference between TCP and UDP protocols", "claude"
    ) == "Good cloud answer."


async def test_context_turns_bypass_cache(orchestrator: Orchestrator, local: FakeBackend) -> None:
    await orchestrator.cache.set("What is 2+2?", "cached", "local")

    result = await orchestrator.run(
        Query(text="What is 2+2?", context=[ContextTurn(role="user", content="Let's do math")])
    )

    assert result.cache_hit is False
    assert result.steps[0].status == "skipped"
    assert local.requests[0].messages[0].content == "Let's do math"


# --- Failures ---


async def test_backend_failure_is_reported(make_registry, backend_failure) -> None:
    registry = make_registry(
        local=FakeBackend("local"),
        claude=FakeBackend("claude", answers=[backend_failure("claude")]),
        gpt4=FakeBackend("gpt4", answers=[backend_failure("gpt4")]),
    )
    orchestrator = Orchestrator(registry)

    result = await orchestrator.run("Explain recursion", Preferences(strategy_override=Strategy.DELEGATE))

    assert result.status == OrchestrationStatus.FAILED
    assert result.system_message == "Unable to get a response: gpt4 connection refused"
    assert result.text == ""
    assert result.ok is False


async def test_abort_is_reported_distinctly(orchestrator: Orchestrator) -> None:
    abort = asyncio.Event()
    abort.set()

    result = await orchestrator.run("What is 2+2?", abort=abort)

    assert result.status == OrchestrationStatus.ABORTED
    assert result.system_message == ABORTED_MESSAGE


async def test_decision_error_uses_conservative_default(
    orchestrator: Orchestrator, claude: FakeBackend
) -> None:
    with patch.object(orchestrator.engine, "decide", side_effect=RuntimeError("boom")):
        result = await orchestrator.run("What is 2+2?")

    assert result.decision is not None
    assert result.decision.source == "conservative"
    assert result.decision.strategy == Strategy.DELEGATE
    assert result.backend == "claude"
    assert claude.calls == 1


async def test_meta_prompt_advice_is_used(registry, gpt4: FakeBackend) -> None:
    advisor = AsyncMock()
    advisor.advise.return_value = ParsedAdvice(
        strategy=Strategy.DELEGATE, target_backend="gpt4", confidence=0.9
    )
    orchestrator = Orchestrator(registry, advisor=advisor)

    result = await orchestrator.run("Explain recursion")

    assert result.decision is not None
    assert result.decision.source == "meta-prompt"
    assert result.backend == "gpt4"
    assert gpt4.calls == 1


async def test_abort_during_meta_prompt_advice_is_immediate(make_registry) -> None:
    slow_local = FakeBackend("local", answers=["{}"], answer_delay=2.0)
    registry = make_registry(local=slow_local, claude=FakeBackend("claude"))
    orchestrator = Orchestrator(registry, advisor=MetaPromptAdvisor(registry))
    abort = asyncio.Event()
    asyncio.get_running_loop().call_later(0.1, abort.set)

    started = time.perf_counter()
    result = await orchestrator.run("Explain recursion", abort=abort)

    assert result.status == OrchestrationStatus.ABORTED
    assert time.perf_counter() - started < 1.0
    assert len(slow_local.requests) == 1


async def test_meta_prompt_skipped_for_sensitive_query(registry) -> None:
    advisor = AsyncMock()
    orchestrator = Orchestrator(registry, advisor=advisor)

    await orchestrator.run(SSN_QUERY)

    advisor.advise.assert_not_called()


# --- Audit and metrics ---


async def test_decisions_are_audited(orchestrator: Orchestrator, audit: InMemoryAuditSink) -> None:
    await orchestrator.run("What is 2+2?")
    await orchestrator.run("What is 2+2?")  # cache hit, no decision
    await orchestrator.aclose()

    records = audit.records()
    assert len(records) == 1
    assert records[0].decision.strategy == Strategy.LOCAL_ONLY
    assert records[0].result["status"] == "ok"
    assert records[0].result["backend"] == "local"
    assert "2+2" not in records[0].model_dump_json()


async def test_audit_failure_never_fails_query(registry, caplog) -> None:
    sink = AsyncMock()
    sink.append.side_effect = OSError("disk full")
    orchestrator = Orchestrator(registry, audit=sink)

    with caplog.at_level(logging.WARNING):
        result = await orchestrator.run("What is 2+2?")
        await orchestrator.aclose()

    assert result.ok is True
    assert "Audit write failed" in caplog.text


async def test_metrics(make_registry) -> None:
    orchestrator = Orchestrator(make_registry(local=FakeBackend("local", answers=["4"])))
    abort = asyncio.Event()
    abort.set()

    await orchestrator.run("What is 2+2?")
    await orchestrator.run("What is 2+2?")
    await orchestrator.run("Explain recursion", abort=abort)

    metrics = orchestrator.metrics()
    assert metrics.total_queries == 3
    assert metrics.cache_hits == 1
    assert metrics.aborted == 1
    assert metrics.failed == 0
    assert metrics.by_strategy == {"local-only": 2}
    assert metrics.by_backend == {"local": 2}
    assert metrics.cache_hit_rate == pytest.approx(0.3333, abs=1e-4)
    assert metrics.quality_pass_rate == 1.0


# --- Streaming ---


async def test_stream_switches_on_repetition(make_registry, claude: FakeBackend) -> None:
    local = FakeBackend("local", chunks=LOOPING_CHUNKS)
    claude.chunks = ["Recursion is a function ", "calling itself."]
    orchestrator = Orchestrator(make_registry(local=local, claude=claude))
    received: list[str] = []

    result = await orchestrator.stream(
        "Explain recursion",
        Preferences(strategy_override=Strategy.HYBRID),
        on_chunk=lambda text, meta: received.append(text),
    )

    assert result.ok is True
    assert len(result.switch_points) == 1
    assert result.switch_points[0].reason == "repetition"
    assert result.escalated is True
    assert result.backend == "claude"
    assert "".join(received) == result.text
    assert orchestrator.metrics().stream_switches == 1


async def test_stream_keeps_partial_text_when_both_backends_fail(make_registry, backend_failure) -> None:
    local = FakeBackend(
        "local",
        chunks=["Recursion is ", "when a function ", "calls itself."],
        stream_error=backend_failure("local"),
        fail_after=2,
    )
    claude = FakeBackend("claude", stream_error=backend_failure("claude"))
    orchestrator = Orchestrator(make_registry(local=local, claude=claude))

    result = await orchestrator.stream(
        "Explain recursion", Preferences(strategy_override=Strategy.HYBRID)
    )

    assert result.status == OrchestrationStatus.OK
    assert result.degraded is True
    assert result.text.startswith("Recursion is when a function ")
    assert await orchestrator.cache.get("Explain recursion", "local") is None


async def test_stream_cache_hit_is_single_chunk(orchestrator: Orchestrator, local: FakeBackend) -> None:
    await orchestrator.cache.set("explain recursion", "A function that calls itself.", "local")
    received: list[tuple[str, ChunkMeta]] = []

    async def on_chunk(text: str, meta: ChunkMeta) -> None:
        received.append((text, meta))

    result = await orchestrator.stream("please explain recursion", on_chunk=on_chunk)

    assert result.cache_hit is True
    assert [t for t, _ in received] == ["A function that calls itself."]
    assert received[0][1].backend == "local"
    assert local.calls == 0


def test_protocol_conformance(orchestrator: Orchestrator) -> None:
    assert isinstance(orchestrator, QueryOrchestrator)
    assert isinstance(InMemoryAuditSink(), AuditSink)
