"""
Gemini Backend - Google Gemini behind the uniform chat contract.

Features:
- google-generativeai SDK, sync calls moved off the event loop
- Rate limiting (requests per minute)
- Automatic retries with exponential backoff on connection failures
- Streaming by pulling the SDK iterator in a worker thread
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from typing import Any

import google.generativeai as genai
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from switchyard.adapters.llm import (
    ChatChunk,
    ChatRequest,
    ChatResponse,
    ChatRole,
    Usage,
    ensure_not_aborted,
    run_cancellable,
)
from switchyard.config.errors import (
    BackendError,
    BackendRateLimitError,
    BackendResponseError,
    BackendTimeoutError,
    BackendUnavailableError,
    RequestAbortedError,
)

from .models import GeminiConfig

logger = logging.getLogger(__name__)

__all__ = ["GeminiBackend"]

_END = object()


class GeminiBackend:
    """
    Gemini chat backend.

    Example:
        >>> backend = GeminiBackend(GeminiConfig(api_key="..."))
        >>> response = await backend.query(request)
        >>> print(response.text)
    """

    def __init__(
        self,
        config: GeminiConfig | None = None,
        backend_id: str = "gemini",
    ) -> None:
        """
        Initialize Gemini backend.

        Args:
            config: Backend configuration. Uses defaults if None.
            backend_id: Registry id reported in errors
        """
        self.config = config or GeminiConfig()
        self.backend_id = backend_id

        if self.config.api_key:
            genai.configure(api_key=self.config.api_key)

        # Rate limiting state
        self._request_times: list[float] = []
        self._rate_lock = asyncio.Lock()

        self._models: dict[str, genai.GenerativeModel] = {}

        logger.info("GeminiBackend initialized: model=%s", self.config.model)

    def _get_model(self, name: str) -> genai.GenerativeModel:
        """Get or create model instance."""
        if name not in self._models:
            self._models[name] = genai.GenerativeModel(model_name=name)
        return self._models[name]

    async def _check_rate_limit(self) -> None:
        """Enforce rate limiting."""
        async with self._rate_lock:
            now = time.time()
            # Keep only the last minute
            self._request_times = [t for t in self._request_times if now - t < 60]

            if len(self._request_times) >= self.config.rate_limit_rpm:
                wait_time = 60 - (now - self._request_times[0])
                if wait_time > 0:
                    logger.warning("Gemini rate limit reached, waiting %.1fs", wait_time)
                    await asyncio.sleep(wait_time)

            self._request_times.append(time.time())

    @staticmethod
    def _contents(request: ChatRequest) -> list[dict[str, Any]]:
        """Translate chat turns; system turns become an acknowledged user turn."""
        contents: list[dict[str, Any]] = []
        for message in request.messages:
            if message.role == ChatRole.SYSTEM:
                contents.append({"role": "user", "parts": [message.content]})
                contents.append({"role": "model", "parts": ["Understood."]})
            elif message.role == ChatRole.ASSISTANT:
                contents.append({"role": "model", "parts": [message.content]})
            else:
                contents.append({"role": "user", "parts": [message.content]})
        return contents

    def _generation_config(self, request: ChatRequest) -> dict[str, Any]:
        return {
            "temperature": request.temperature,
            "max_output_tokens": request.max_tokens or self.config.max_output_tokens,
        }

    def _translate(self, error: Exception) -> BackendError:
        message = str(error)
        lowered = message.lower()
        if "429" in lowered or "rate limit" in lowered or "resource exhausted" in lowered:
            return BackendRateLimitError(self.backend_id, f"Gemini rate limited: {message}")
        if isinstance(error, TimeoutError) or "deadline" in lowered:
            return BackendTimeoutError(self.backend_id, f"Gemini timed out: {message}")
        if isinstance(error, ConnectionError):
            return BackendUnavailableError(self.backend_id, f"Gemini unreachable: {message}")
        return BackendResponseError(self.backend_id, f"Gemini API error: {message}")

    @retry(
        retry=retry_if_exception_type((ConnectionError, TimeoutError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    )
    async def _generate(self, request: ChatRequest, stream: bool = False) -> Any:
        await self._check_rate_limit()
        model = self._get_model(request.model or self.config.model)
        return await asyncio.to_thread(
            model.generate_content,
            self._contents(request),
            generation_config=self._generation_config(request),
            stream=stream,
            request_options={"timeout": self.config.timeout_seconds},
        )

    async def query(
        self,
        request: ChatRequest,
        abort: asyncio.Event | None = None,
    ) -> ChatResponse:
        """
        Generate a response.

        Args:
            request: Uniform chat request
            abort: Cancellation signal

        Returns:
            Chat response with usage from ``usage_metadata``

        Raises:
            BackendError: API call failed
        """
        ensure_not_aborted(abort)
        model_name = request.model or self.config.model

        try:
            response = await run_cancellable(self._generate(request), abort)
            # .text raises ValueError when the candidate was blocked
            text = response.text
        except RequestAbortedError:
            raise
        except Exception as e:
            raise self._translate(e) from e

        usage = getattr(response, "usage_metadata", None)
        prompt_tokens = getattr(usage, "prompt_token_count", 0) if usage else 0
        completion_tokens = getattr(usage, "candidates_token_count", 0) if usage else 0

        return ChatResponse.from_text(
            model=model_name,
            text=text,
            usage=Usage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        )

    async def query_stream(
        self,
        request: ChatRequest,
        abort: asyncio.Event | None = None,
    ) -> AsyncIterator[ChatChunk]:
        """
        Stream a response.

        The SDK's stream is a blocking iterator; each ``next`` runs in a
        worker thread.

        Yields:
            Content chunks, then a final chunk with ``finish_reason="stop"``
        """
        ensure_not_aborted(abort)
        model_name = request.model or self.config.model

        try:
            stream = await run_cancellable(self._generate(request, stream=True), abort)
            iterator = iter(stream)
            while True:
                ensure_not_aborted(abort)
                piece = await asyncio.to_thread(next, iterator, _END)
                if piece is _END:
                    break
                text = piece.text
                if text:
                    yield ChatChunk.from_text(model=model_name, text=text)
        except RequestAbortedError:
            raise
        except Exception as e:
            raise self._translate(e) from e

        yield ChatChunk.from_text(model=model_name, text="", finish_reason="stop")

    async def close(self) -> None:
        """Drop cached model handles."""
        self._models.clear()
