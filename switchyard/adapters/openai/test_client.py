"""
Tests for the OpenAI-compatible backend.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable

import httpx
import pytest
from tenacity import wait_none

from switchyard.adapters.llm import BackendAdapter, ChatMessage, ChatRequest, ChatRole
from switchyard.config.errors import (
    BackendError,
    BackendRateLimitError,
    BackendResponseError,
    ErrorCode,
)

from .client import DONE, OpenAICompatibleBackend, parse_sse_line

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(OpenAICompatibleBackend._post.retry, "wait", wait_none())


def make_backend(handler: Handler, api_key: str | None = "sk-test") -> OpenAICompatibleBackend:
    backend = OpenAICompatibleBackend(api_key=api_key, model="gpt-4o", backend_id="gpt4")
    backend._client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url=backend.base_url,
        headers={"Authorization": f"Bearer {api_key}"},
    )
    return backend


@pytest.fixture
def request_() -> ChatRequest:
    return ChatRequest(messages=[ChatMessage(role=ChatRole.USER, content="Explain recursion")])


def sse(*events: str) -> bytes:
    return "".join(f"{e}\n\n" for e in events).encode()


def delta_event(text: str, finish: str | None = None) -> str:
    payload = {
        "id": "chatcmpl-1",
        "model": "gpt-4o",
        "choices": [{"index": 0, "delta": {"content": text}, "finish_reason": finish}],
    }
    return f"data: {json.dumps(payload)}"


# --- SSE parsing ---


@pytest.mark.parametrize("line", ["", "   ", ": keep-alive", "event: message", "id: 7"])
def test_parse_sse_skips_non_data_lines(line: str) -> None:
    assert parse_sse_line(line) is None


def test_parse_sse_done() -> None:
    assert parse_sse_line("data: [DONE]") == DONE


def test_parse_sse_data() -> None:
    assert parse_sse_line('data: {"a": 1}') == {"a": 1}
    assert parse_sse_line('data:{"a": 2}') == {"a": 2}


def test_parse_sse_malformed_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING):
        assert parse_sse_line("data: {not json") is None
    assert "malformed SSE" in caplog.text


# --- Query ---


async def test_query(request_: ChatRequest) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "id": "chatcmpl-9",
                "model": "gpt-4o",
                "choices": [
                    {
                        "index": 0,
                        "message": {"role": "assistant", "content": "A function calling itself."},
                        "finish_reason": "stop",
                    }
                ],
                "usage": {"prompt_tokens": 9, "completion_tokens": 6, "total_tokens": 15},
            },
        )

    backend = make_backend(handler)
    response = await backend.query(request_)

    assert response.id == "chatcmpl-9"
    assert response.text == "A function calling itself."
    assert response.usage is not None and response.usage.total_tokens == 15
    assert seen[0].url.path == "/v1/chat/completions"
    assert seen[0].headers["Authorization"] == "Bearer sk-test"
    body = json.loads(seen[0].content)
    assert body["model"] == "gpt-4o"
    assert body["stream"] is False
    assert "max_tokens" not in body


async def test_query_without_usage(request_: ChatRequest) -> None:
    backend = make_backend(
        lambda r: httpx.Response(200, json={"choices": [{"message": {"content": "Hi"}}]})
    )
    response = await backend.query(request_)

    assert response.text == "Hi"
    assert response.usage is None


async def test_no_choices_raises(request_: ChatRequest) -> None:
    backend = make_backend(lambda r: httpx.Response(200, json={"choices": []}))
    with pytest.raises(BackendResponseError, match="no choices"):
        await backend.query(request_)


@pytest.mark.parametrize(
    "status,error_type,code",
    [
        (429, BackendRateLimitError, ErrorCode.BACKEND_RATE_LIMITED),
        (401, BackendError, ErrorCode.BACKEND_AUTH_FAILED),
        (503, BackendResponseError, ErrorCode.BACKEND_INVALID_RESPONSE),
    ],
)
async def test_status_errors(
    request_: ChatRequest, status: int, error_type: type[BackendError], code: ErrorCode
) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(status)

    backend = make_backend(handler)
    with pytest.raises(error_type) as exc:
        await backend.query(request_)

    assert exc.value.code == code
    assert exc.value.backend == "gpt4"
    assert calls == 1


async def test_invalid_json_body(request_: ChatRequest) -> None:
    backend = make_backend(lambda r: httpx.Response(200, content=b"<html>oops</html>"))
    with pytest.raises(BackendResponseError):
        await backend.query(request_)


# --- Streaming ---


async def test_stream_parses_sse(request_: ChatRequest) -> None:
    body = sse(
        ": ping",
        delta_event("A function "),
        "data: {broken",
        delta_event("calling itself.", finish="stop"),
        "data: [DONE]",
        delta_event("never seen"),
    )

    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content)["stream"] is True
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    backend = make_backend(handler)
    chunks = [c async for c in backend.query_stream(request_)]

    assert [c.text for c in chunks] == ["A function ", "calling itself."]
    assert chunks[-1].finish_reason == "stop"
    assert chunks[0].id == "chatcmpl-1"


async def test_stream_status_error(request_: ChatRequest) -> None:
    backend = make_backend(lambda r: httpx.Response(429))

    with pytest.raises(BackendRateLimitError):
        async for _ in backend.query_stream(request_):
            pass


async def test_default_client_sends_bearer_token() -> None:
    backend = OpenAICompatibleBackend(api_key="sk-live", base_url="https://example.test/v1/")
    client = await backend._get_client()

    assert client.headers["Authorization"] == "Bearer sk-live"
    assert str(client.base_url).rstrip("/") == "https://example.test/v1"
    await backend.close()


def test_satisfies_contract() -> None:
    assert isinstance(OpenAICompatibleBackend(), BackendAdapter)
