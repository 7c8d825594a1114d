"""
Tests for the Ollama backend.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable

import httpx
import pytest
from tenacity import wait_none

from switchyard.adapters.llm import BackendAdapter, ChatMessage, ChatRequest, ChatRole, Embedder
from switchyard.config.errors import (
    BackendResponseError,
    BackendTimeoutError,
    BackendUnavailableError,
    RequestAbortedError,
)

from .client import OllamaBackend

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(OllamaBackend._post.retry, "wait", wait_none())


def make_backend(handler: Handler) -> OllamaBackend:
    backend = OllamaBackend(model="llama3.2")
    backend._client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url=backend.base_url,
    )
    return backend


@pytest.fixture
def request_() -> ChatRequest:
    return ChatRequest(
        messages=[
            ChatMessage(role=ChatRole.SYSTEM, content="Be brief."),
            ChatMessage(role=ChatRole.USER, content="What is 2+2?"),
        ],
        temperature=0.2,
        max_tokens=64,
    )


# --- Query ---


async def test_query_posts_chat_payload(request_: ChatRequest) -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        assert request.url.path == "/api/chat"
        return httpx.Response(
            200,
            json={
                "model": "llama3.2",
                "message": {"role": "assistant", "content": "4"},
                "done": True,
                "done_reason": "stop",
                "prompt_eval_count": 12,
                "eval_count": 1,
            },
        )

    backend = make_backend(handler)
    response = await backend.query(request_)

    assert response.text == "4"
    assert response.usage is not None
    assert response.usage.total_tokens == 13
    assert seen[0]["model"] == "llama3.2"
    assert seen[0]["stream"] is False
    assert seen[0]["options"] == {"temperature": 0.2, "num_predict": 64}
    assert seen[0]["messages"][0] == {"role": "system", "content": "Be brief."}


async def test_query_uses_request_model(request_: ChatRequest) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        return httpx.Response(200, json={"model": body["model"], "message": {"content": "ok"}})

    backend = make_backend(handler)
    response = await backend.query(request_.for_model("qwen2.5"))

    assert response.model == "qwen2.5"


async def test_status_error_is_not_retried(request_: ChatRequest) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(500, json={"error": "model crashed"})

    backend = make_backend(handler)
    with pytest.raises(BackendResponseError) as exc:
        await backend.query(request_)

    assert calls == 1
    assert exc.value.details["status_code"] == 500
    assert exc.value.backend == "local"


async def test_connection_error_retried_then_raised(request_: ChatRequest) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        raise httpx.ConnectError("connection refused", request=request)

    backend = make_backend(handler)
    with pytest.raises(BackendUnavailableError):
        await backend.query(request_)

    assert calls == 3


async def test_transient_connection_error_recovers(request_: ChatRequest) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise httpx.ConnectError("connection reset", request=request)
        return httpx.Response(200, json={"message": {"content": "4"}})

    backend = make_backend(handler)
    response = await backend.query(request_)

    assert response.text == "4"
    assert calls == 2


async def test_timeout_maps_to_timeout_error(request_: ChatRequest) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    backend = make_backend(handler)
    with pytest.raises(BackendTimeoutError):
        await backend.query(request_)


async def test_error_payload_raises(request_: ChatRequest) -> None:
    backend = make_backend(lambda r: httpx.Response(200, json={"error": "model not found"}))
    with pytest.raises(BackendResponseError, match="model not found"):
        await backend.query(request_)


async def test_aborted_before_call(request_: ChatRequest) -> None:
    abort = asyncio.Event()
    abort.set()
    backend = make_backend(lambda r: httpx.Response(200, json={}))

    with pytest.raises(RequestAbortedError):
        await backend.query(request_, abort)


# --- Streaming ---


def ndjson(*objects: dict) -> bytes:
    return "\n".join(json.dumps(o) for o in objects).encode() + b"\n"


async def test_stream_yields_ndjson_chunks(request_: ChatRequest) -> None:
    body = ndjson(
        {"model": "llama3.2", "message": {"content": "Hel"}, "done": False},
        {"model": "llama3.2", "message": {"content": "lo"}, "done": False},
        {"model": "llama3.2", "message": {"content": ""}, "done": True, "done_reason": "stop"},
    )
    backend = make_backend(lambda r: httpx.Response(200, content=body))

    chunks = [c async for c in backend.query_stream(request_)]

    assert [c.text for c in chunks] == ["Hel", "lo", ""]
    assert chunks[-1].finish_reason == "stop"
    assert chunks[0].finish_reason is None


async def test_stream_error_line_raises(request_: ChatRequest) -> None:
    body = ndjson({"message": {"content": "Hi"}, "done": False}, {"error": "out of memory"})
    backend = make_backend(lambda r: httpx.Response(200, content=body))

    with pytest.raises(BackendResponseError, match="out of memory"):
        async for _ in backend.query_stream(request_):
            pass


async def test_stream_status_error(request_: ChatRequest) -> None:
    backend = make_backend(lambda r: httpx.Response(404))

    with pytest.raises(BackendResponseError):
        async for _ in backend.query_stream(request_):
            pass


async def test_stream_stops_when_aborted(request_: ChatRequest) -> None:
    body = ndjson(*({"message": {"content": f"w{i} "}, "done": False} for i in range(5)))
    backend = make_backend(lambda r: httpx.Response(200, content=body))
    abort = asyncio.Event()
    received: list[str] = []

    with pytest.raises(RequestAbortedError):
        async for chunk in backend.query_stream(request_, abort):
            received.append(chunk.text)
            if len(received) == 2:
                abort.set()

    assert received == ["w0 ", "w1 "]


# --- Embeddings and models ---


async def test_embed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/embeddings"
        assert json.loads(request.content)["model"] == "nomic-embed-text"
        return httpx.Response(200, json={"embedding": [0.1, 0.2, 0.3]})

    backend = make_backend(handler)
    assert await backend.embed("hello") == [0.1, 0.2, 0.3]


async def test_empty_embedding_raises() -> None:
    backend = make_backend(lambda r: httpx.Response(200, json={"embedding": []}))
    with pytest.raises(BackendResponseError):
        await backend.embed("hello")


async def test_list_models() -> None:
    backend = make_backend(
        lambda r: httpx.Response(200, json={"models": [{"name": "llama3.2"}, {"name": "qwen2.5"}]})
    )
    assert await backend.list_models() == ["llama3.2", "qwen2.5"]


async def test_close_resets_client() -> None:
    backend = make_backend(lambda r: httpx.Response(200, json={}))
    await backend.close()
    assert backend._client is None


def test_satisfies_contracts() -> None:
    backend = OllamaBackend()
    assert isinstance(backend, BackendAdapter)
    assert isinstance(backend, Embedder)
