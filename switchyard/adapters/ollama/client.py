"""
Ollama Backend - On-device model behind the uniform chat contract.

Features:
- Async HTTP client (lazily created)
- /api/chat non-streaming and NDJSON streaming
- /api/embeddings for the complexity estimator
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
    ChatRequest,
    ChatResponse,
    Usage,
    ensure_not_aborted,
    run_cancellable,
    translate_http_error,
    transport_retry,
)
from switchyard.config.errors import BackendResponseError

logger = logging.getLogger(__name__)

__all__ = ["OllamaBackend"]


class OllamaBackend:
    """
    Ollama local model backend.

    Example:
        >>> backend = OllamaBackend(model="llama3.2")
        >>> response = await backend.query(ChatRequest(messages=[...]))
        >>> response.text
        '4'
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3.2",
        timeout: float = 120.0,
        backend_id: str = "local",
        embedding_model: str = "nomic-embed-text",
    ) -> None:
        """
        Initialize Ollama backend.

        Args:
            base_url: Ollama server URL
            model: Chat model used when the request names none
            timeout: Request timeout in seconds
            backend_id: Registry id reported in errors
            embedding_model: Model used by ``embed``
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.backend_id = backend_id
        self.embedding_model = embedding_model
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    def _payload(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        options: dict[str, Any] = {"temperature": request.temperature}
        if request.max_tokens:
            options["num_predict"] = request.max_tokens
        return {
            "model": request.model or self.model,
            "messages": [
                {"role": m.role.value, "content": m.content} for m in request.messages
            ],
            "stream": stream,
            "options": options,
        }

    @transport_retry
    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()
        response = await client.post(path, json=payload)
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
            Assistant response with token usage
        """
        ensure_not_aborted(abort)
        payload = self._payload(request, stream=False)

        try:
            data = await run_cancellable(self._post("/api/chat", payload), abort)
        except (httpx.HTTPError, ValueError) as e:
            raise translate_http_error(self.backend_id, e) from e

        if "error" in data:
            raise BackendResponseError(self.backend_id, f"{self.backend_id}: {data['error']}")

        message = data.get("message") or {}
        prompt_tokens = data.get("prompt_eval_count", 0)
        completion_tokens = data.get("eval_count", 0)

        return ChatResponse.from_text(
            model=data.get("model", payload["model"]),
            text=message.get("content", ""),
            usage=Usage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            finish_reason=data.get("done_reason", "stop"),
        )

    async def query_stream(
        self,
        request: ChatRequest,
        abort: asyncio.Event | None = None,
    ) -> AsyncIterator[ChatChunk]:
        """
        Stream a chat completion.

        Ollama streams newline-delimited JSON objects; the last one carries
        ``done: true``.

        Yields:
            One chunk per non-empty NDJSON line
        """
        ensure_not_aborted(abort)
        client = await self._get_client()
        payload = self._payload(request, stream=True)

        try:
            async with client.stream("POST", "/api/chat", json=payload) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    ensure_not_aborted(abort)
                    if not line.strip():
                        continue
                    data = json.loads(line)
                    if "error" in data:
                        raise BackendResponseError(
                            self.backend_id, f"{self.backend_id}: {data['error']}"
                        )

                    content = (data.get("message") or {}).get("content", "")
                    done = bool(data.get("done"))
                    if content or done:
                        yield ChatChunk.from_text(
                            model=data.get("model", payload["model"]),
                            text=content,
                            finish_reason=data.get("done_reason", "stop") if done else None,
                        )
                    if done:
                        return
        except (httpx.HTTPError, ValueError) as e:
            raise translate_http_error(self.backend_id, e) from e

    async def embed(self, text: str) -> list[float]:
        """
        Embed text for the complexity estimator.

        Args:
            text: Text to embed

        Returns:
            Dense embedding vector
        """
        payload = {"model": self.embedding_model, "prompt": text}
        try:
            data = await self._post("/api/embeddings", payload)
        except (httpx.HTTPError, ValueError) as e:
            raise translate_http_error(self.backend_id, e) from e

        embedding = data.get("embedding")
        if not embedding:
            raise BackendResponseError(self.backend_id, "Empty embedding returned")
        return [float(v) for v in embedding]

    async def list_models(self) -> list[str]:
        """List models installed on the Ollama server."""
        client = await self._get_client()
        try:
            response = await client.get("/api/tags")
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise translate_http_error(self.backend_id, e) from e

        data = response.json()
        return [m["name"] for m in data.get("models", [])]

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
