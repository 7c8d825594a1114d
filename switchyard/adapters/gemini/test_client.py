"""
Tests for the Gemini backend.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import ValidationError
from tenacity import wait_none

from switchyard.adapters.llm import BackendAdapter, ChatMessage, ChatRequest, ChatRole
from switchyard.config.errors import (
    BackendRateLimitError,
    BackendResponseError,
    BackendUnavailableError,
    RequestAbortedError,
)

from .client import GeminiBackend
from .models import GeminiConfig


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(GeminiBackend._generate.retry, "wait", wait_none())


@pytest.fixture
def mock_genai() -> Generator[MagicMock, None, None]:
    """Mock the google.generativeai module."""
    with patch("switchyard.adapters.gemini.client.genai") as mock:
        mock_model = MagicMock()
        mock_model.generate_content.return_value = MagicMock(
            text="Test response",
            usage_metadata=MagicMock(
                prompt_token_count=10,
                candidates_token_count=20,
            ),
        )
        mock.GenerativeModel.return_value = mock_model
        yield mock


@pytest.fixture
def backend(mock_genai: MagicMock) -> GeminiBackend:
    return GeminiBackend(GeminiConfig(api_key="test-key"))


@pytest.fixture
def request_() -> ChatRequest:
    return ChatRequest(
        messages=[
            ChatMessage(role=ChatRole.SYSTEM, content="You are a tutor."),
            ChatMessage(role=ChatRole.USER, content="What is 2+2?"),
            ChatMessage(role=ChatRole.ASSISTANT, content="4"),
            ChatMessage(role=ChatRole.USER, content="And 3+3?"),
        ],
        temperature=0.3,
    )


# --- Config ---


def test_config_defaults() -> None:
    config = GeminiConfig()
    assert config.model == "gemini-2.0-flash"
    assert config.api_key is None
    assert config.rate_limit_rpm == 60
    assert "api_key" not in repr(GeminiConfig(api_key="secret"))


def test_config_rejects_zero_rpm() -> None:
    with pytest.raises(ValidationError):
        GeminiConfig(rate_limit_rpm=0)


def test_api_key_configures_sdk(mock_genai: MagicMock) -> None:
    GeminiBackend(GeminiConfig(api_key="abc"))
    mock_genai.configure.assert_called_once_with(api_key="abc")


def test_no_api_key_uses_default_credentials(mock_genai: MagicMock) -> None:
    GeminiBackend()
    mock_genai.configure.assert_not_called()


# --- Query ---


async def test_query(backend: GeminiBackend, mock_genai: MagicMock, request_: ChatRequest) -> None:
    response = await backend.query(request_)

    assert response.text == "Test response"
    assert response.model == "gemini-2.0-flash"
    assert response.usage is not None
    assert response.usage.total_tokens == 30

    model = mock_genai.GenerativeModel.return_value
    contents = model.generate_content.call_args.args[0]
    assert [c["role"] for c in contents] == ["user", "model", "user", "model", "user"]
    assert contents[1]["parts"] == ["Understood."]
    kwargs = model.generate_content.call_args.kwargs
    assert kwargs["generation_config"]["temperature"] == 0.3
    assert kwargs["stream"] is False


async def test_query_uses_request_model(
    backend: GeminiBackend, mock_genai: MagicMock, request_: ChatRequest
) -> None:
    response = await backend.query(request_.for_model("gemini-2.5-pro"))

    assert response.model == "gemini-2.5-pro"
    mock_genai.GenerativeModel.assert_called_with(model_name="gemini-2.5-pro")


async def test_rate_limit_error(
    backend: GeminiBackend, mock_genai: MagicMock, request_: ChatRequest
) -> None:
    model = mock_genai.GenerativeModel.return_value
    model.generate_content.side_effect = RuntimeError("429 Resource exhausted")

    with pytest.raises(BackendRateLimitError) as exc:
        await backend.query(request_)

    assert exc.value.backend == "gemini"
    assert model.generate_content.call_count == 1


async def test_connection_error_is_retried(
    backend: GeminiBackend, mock_genai: MagicMock, request_: ChatRequest
) -> None:
    model = mock_genai.GenerativeModel.return_value
    model.generate_content.side_effect = [
        ConnectionError("reset"),
        MagicMock(text="Recovered", usage_metadata=None),
    ]

    response = await backend.query(request_)

    assert response.text == "Recovered"
    assert model.generate_content.call_count == 2


async def test_persistent_connection_error(
    backend: GeminiBackend, mock_genai: MagicMock, request_: ChatRequest
) -> None:
    model = mock_genai.GenerativeModel.return_value
    model.generate_content.side_effect = ConnectionError("no route")

    with pytest.raises(BackendUnavailableError):
        await backend.query(request_)

    assert model.generate_content.call_count == 3


async def test_blocked_response(
    backend: GeminiBackend, mock_genai: MagicMock, request_: ChatRequest
) -> None:
    class Blocked:
        usage_metadata = None

        @property
        def text(self) -> str:
            raise ValueError("blocked by safety")

    mock_genai.GenerativeModel.return_value.generate_content.return_value = Blocked()

    with pytest.raises(BackendResponseError, match="blocked by safety"):
        await backend.query(request_)


async def test_query_aborted(backend: GeminiBackend, request_: ChatRequest) -> None:
    abort = asyncio.Event()
    abort.set()
    with pytest.raises(RequestAbortedError):
        await backend.query(request_, abort)


# --- Streaming ---


async def test_stream(backend: GeminiBackend, mock_genai: MagicMock, request_: ChatRequest) -> None:
    model = mock_genai.GenerativeModel.return_value
    model.generate_content.return_value = [
        MagicMock(text="Six"),
        MagicMock(text=""),
        MagicMock(text=" it is."),
    ]

    chunks = [c async for c in backend.query_stream(request_)]

    assert [c.text for c in chunks] == ["Six", " it is.", ""]
    assert chunks[-1].finish_reason == "stop"
    assert model.generate_content.call_args.kwargs["stream"] is True


async def test_stream_abort_between_chunks(
    backend: GeminiBackend, mock_genai: MagicMock, request_: ChatRequest
) -> None:
    model = mock_genai.GenerativeModel.return_value
    model.generate_content.return_value = [MagicMock(text=f"w{i} ") for i in range(4)]
    abort = asyncio.Event()
    received: list[str] = []

    with pytest.raises(RequestAbortedError):
        async for chunk in backend.query_stream(request_, abort):
            received.append(chunk.text)
            abort.set()

    assert received == ["w0 "]


async def test_stream_error_translated(
    backend: GeminiBackend, mock_genai: MagicMock, request_: ChatRequest
) -> None:
    def broken():
        yield MagicMock(text="partial")
        raise RuntimeError("server hiccup")

    mock_genai.GenerativeModel.return_value.generate_content.return_value = broken()

    with pytest.raises(BackendResponseError, match="server hiccup"):
        async for _ in backend.query_stream(request_):
            pass


# --- Rate limiting ---


async def test_rate_limit_waits(mock_genai: MagicMock) -> None:
    backend = GeminiBackend(GeminiConfig(rate_limit_rpm=1))
    backend._request_times = [time.time() - 30]

    with patch("switchyard.adapters.gemini.client.asyncio.sleep", new=AsyncMock()) as sleep:
        await backend._check_rate_limit()

    sleep.assert_awaited_once()
    assert 29 <= sleep.await_args.args[0] <= 30


async def test_rate_limit_not_reached(mock_genai: MagicMock) -> None:
    backend = GeminiBackend(GeminiConfig(rate_limit_rpm=2))
    backend._request_times = [time.time() - 90, time.time() - 10]

    with patch("switchyard.adapters.gemini.client.asyncio.sleep", new=AsyncMock()) as sleep:
        await backend._check_rate_limit()

    sleep.assert_not_awaited()
    assert len(backend._request_times) == 2


def test_satisfies_contract(mock_genai: MagicMock) -> None:
    assert isinstance(GeminiBackend(), BackendAdapter)
