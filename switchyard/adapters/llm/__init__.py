"""
LLM Adapter - Provider-neutral backend contract.

Every concrete adapter (Ollama, OpenAI-compatible, Gemini) speaks these
types, so the orchestration core never touches a vendor protocol.

Usage:
    from switchyard.adapters.llm import BackendRegistry, ChatMessage, ChatRequest

    registry = BackendRegistry.from_settings(get_settings())
    request = ChatRequest(messages=[ChatMessage(role="user", content="Hi")])
    response = await registry.adapter("local").query(request)
"""

from .cancellation import ensure_not_aborted, next_chunk, run_cancellable
from .contracts import BackendAdapter, Embedder
from .http import translate_http_error, transport_retry
from .models import (
    Backend,
    BackendCapabilities,
    ChatChoice,
    ChatChunk,
    ChatDelta,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ChatRole,
    ChunkChoice,
    Usage,
)
from .registry import BackendRegistry, backend_from_config

__all__ = [
    # Contracts
    "BackendAdapter",
    "Embedder",
    # Models
    "Backend",
    "BackendCapabilities",
    "ChatRole",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ChatChoice",
    "ChatChunk",
    "ChatDelta",
    "ChunkChoice",
    "Usage",
    # Implementations
    "BackendRegistry",
    "backend_from_config",
    "run_cancellable",
    "next_chunk",
    "ensure_not_aborted",
    "translate_http_error",
    "transport_retry",
]
