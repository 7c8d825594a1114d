"""
OpenAI-Compatible Backend - Any /chat/completions endpoint.

Covers OpenAI itself and providers exposing a compatible endpoint
(Anthropic's compatibility layer is the default ``claude`` backend).

Features:
- Bearer-token auth (BYOK)
- Server-sent events streaming
- Transport retries with exponential backoff
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from switchyard.adapters.llm import (
    ChatChunk,
    ChatDelta,
    ChatRequest,
    ChatResponse,
    ChunkChoice,
    Usage,
    ensure_not_aborted,
    run_cancellable,
    translate_http_error,
    transport_retry,
)
from switchyard.config.errors import BackendResponseError

logger = logging.getLogger(__name__)

__all__ = ["OpenAICompatibleBackend", "parse_sse_line"]

DONE = "[DONE]"


def parse_sse_line(line: str) -> dict[str, Any] | str | None:
    """
    Decode one server-sent-events line.

    Returns:
        The JSON payload of a ``data:`` line, ``DONE`` for the terminator,
        or None for blank lines, comments, other fields and malformed data
    """
    line = line.strip()
    if not line or line.startswith(":") or not line.startswith("data:"):
        return None

    data = line[len("data:"):].strip()
    if data == DONE:
        return DONE

    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        logger.warning("Skipping malformed SSE line: %.80s", data)
        return None
    return payload if isinstance(payload, dict) else None


class OpenAICompatibleBackend:
    """
    Chat completions backend.

    Example:
        >>> backend = OpenAICompatibleBackend(api_key="sk-...", model="gpt-4o")
        >>> async for chunk in backend.query_stream(request):
        ...     print(chunk.text, end="")
    """

    def __init__(
        self,
        base_url: str = "https://api.openai.com/v1",
        api_key: str | None = None,
        model: str = "gpt-4o",
        timeout: float = 120.0,
        backend_id: str = "gpt4",
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.backend_id = backend_id
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=headers,
            )
        return self._client

    def _payload(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": request.model or self.model,
            "messages": [
                {"role": m.role.value, "content": m.content} for m in request.messages
            ],
            "temperature": request.temperature,
            "stream": stream,
        }
        if request.max_tokens:
            payload["max_tokens"] = request.max_tokens
        return payload

    @transport_retry
    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()
        response = await client.post("/chat/completions", json=payload)
        response.raise_for_status()
        return response.json()

    async def query(
        self,
        request: ChatRequest,
        abort: asyncio.Event | None = None,
    ) -> ChatResponse:
        """
        Chat completion.

        Args:
            request: Uniform chat request
            abort: Cancellation signal

        Returns:
            First choice and reported usage
        """
        ensure_not_aborted(abort)
        payload = self._payload(request, stream=False)

        try:
            data = await run_cancellable(self._post(payload), abort)
        except (httpx.HTTPError, ValueError) as e:
            raise translate_http_error(self.backend_id, e) from e

        choices = data.get("choices") or []
        if not choices:
            raise BackendResponseError(self.backend_id, f"{self.backend_id} returned no choices")

        first = choices[0]
        usage = data.get("usage")
        return ChatResponse.from_text(
            model=data.get("model", payload["model"]),
            text=(first.get("message") or {}).get("content") or "",
            usage=Usage(**usage) if isinstance(usage, dict) else None,
            finish_reason=first.get("finish_reason"),
            response_id=data.get("id"),
        )

    async def query_stream(
        self,
        request: ChatRequest,
        abort: asyncio.Event | None = None,
    ) -> AsyncIterator[ChatChunk]:
        """
        Stream a chat completion over server-sent events.

        Yields:
            One chunk per ``data:`` event until ``[DONE]``
        """
        ensure_not_aborted(abort)
        client = await self._get_client()
        payload = self._payload(request, stream=True)

        try:
            async with client.stream("POST", "/chat/completions", json=payload) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    ensure_not_aborted(abort)
                    event = parse_sse_line(line)
                    if event is None:
                        continue
                    if event == DONE:
                        return
                    yield self._chunk(event, payload["model"])
        except httpx.HTTPError as e:
            raise translate_http_error(self.backend_id, e) from e

    @staticmethod
    def _chunk(event: dict[str, Any], model: str) -> ChatChunk:
        choices = []
        for raw in event.get("choices") or []:
            delta = raw.get("delta") or {}
            choices.append(
                ChunkChoice(
                    index=raw.get("index", 0),
                    delta=ChatDelta(content=delta.get("content")),
                    finish_reason=raw.get("finish_reason"),
                )
            )
        return ChatChunk(id=event.get("id", ""), model=event.get("model", model), choices=choices)

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
