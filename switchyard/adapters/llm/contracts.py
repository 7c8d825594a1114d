"""
LLM Contracts - Interface every backend adapter implements.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable

from .models import ChatChunk, ChatRequest, ChatResponse


@runtime_checkable
class BackendAdapter(Protocol):
    """Contract for a language-model backend."""

    async def query(
        self,
        request: ChatRequest,
        abort: asyncio.Event | None = None,
    ) -> ChatResponse:
        """
        Run a non-streaming chat completion.

        Args:
            request: Uniform chat request
            abort: Optional cancellation signal; setting it cancels the call

        Returns:
            Chat response

        Raises:
            BackendError: Transport, status or payload failure
            RequestAbortedError: The abort signal fired
        """
        ...

    def query_stream(
        self,
        request: ChatRequest,
        abort: asyncio.Event | None = None,
    ) -> AsyncIterator[ChatChunk]:
        """
        Stream a chat completion.

        Args:
            request: Uniform chat request
            abort: Optional cancellation signal, checked between chunks

        Yields:
            Chat chunks as they arrive
        """
        ...

    async def close(self) -> None:
        """Release network resources."""
        ...


@runtime_checkable
class Embedder(Protocol):
    """Contract for an embedding provider."""

    async def embed(self, text: str) -> list[float]:
        """Embed text into a dense vector."""
        ...
