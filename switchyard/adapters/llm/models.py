"""
LLM Models - Provider-neutral chat request/response types.

Every backend adapter translates its vendor protocol to and from these
types; the orchestration core never sees a vendor payload.
"""

from __future__ import annotations

import uuid
from enum import Enum

from pydantic import BaseModel, Field


class ChatRole(str, Enum):
    """Author of a chat message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """Single chat turn."""

    role: ChatRole
    content: str

    model_config = {"frozen": True}


class ChatRequest(BaseModel):
    """Uniform chat request sent to any backend."""

    model: str = ""
    messages: list[ChatMessage]
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int | None = None
    stream: bool = False

    model_config = {"frozen": True}

    def last_user_message(self) -> str:
        """Content of the most recent user turn ("" if none)."""
        for message in reversed(self.messages):
            if message.role == ChatRole.USER:
                return message.content
        return ""

    def with_messages(self, messages: list[ChatMessage]) -> ChatRequest:
        """Copy of this request with a different message list."""
        return self.model_copy(update={"messages": messages})

    def for_model(self, model: str, stream: bool | None = None) -> ChatRequest:
        """Copy of this request addressed to a specific backend model."""
        update: dict[str, object] = {"model": model}
        if stream is not None:
            update["stream"] = stream
        return self.model_copy(update=update)


class Usage(BaseModel):
    """Token accounting reported by a backend."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatChoice(BaseModel):
    """One completion alternative."""

    index: int = 0
    message: ChatMessage
    finish_reason: str | None = "stop"


class ChatResponse(BaseModel):
    """Non-streaming backend response."""

    id: str = Field(default_factory=lambda: f"chat-{uuid.uuid4().hex[:12]}")
    model: str
    choices: list[ChatChoice] = Field(default_factory=list)
    usage: Usage | None = None

    @property
    def text(self) -> str:
        """Content of the first choice."""
        if not self.choices:
            return ""
        return self.choices[0].message.content

    @classmethod
    def from_text(
        cls,
        model: str,
        text: str,
        usage: Usage | None = None,
        finish_reason: str | None = "stop",
        response_id: str | None = None,
    ) -> ChatResponse:
        """Build a single-choice assistant response."""
        kwargs: dict[str, object] = {}
        if response_id:
            kwargs["id"] = response_id
        return cls(
            model=model,
            choices=[
                ChatChoice(
                    message=ChatMessage(role=ChatRole.ASSISTANT, content=text),
                    finish_reason=finish_reason,
                )
            ],
            usage=usage,
            **kwargs,
        )


class ChatDelta(BaseModel):
    """Incremental content inside a streaming chunk."""

    role: ChatRole | None = None
    content: str | None = None


class ChunkChoice(BaseModel):
    """One streaming alternative."""

    index: int = 0
    delta: ChatDelta = Field(default_factory=ChatDelta)
    finish_reason: str | None = None


class ChatChunk(BaseModel):
    """Streaming backend chunk."""

    id: str = ""
    model: str = ""
    choices: list[ChunkChoice] = Field(default_factory=list)

    @property
    def text(self) -> str:
        """Delta content of the first choice ("" if none)."""
        if not self.choices:
            return ""
        return self.choices[0].delta.content or ""

    @property
    def finish_reason(self) -> str | None:
        if not self.choices:
            return None
        return self.choices[0].finish_reason

    @classmethod
    def from_text(
        cls,
        model: str,
        text: str,
        chunk_id: str = "",
        finish_reason: str | None = None,
    ) -> ChatChunk:
        """Build a single-choice content chunk."""
        return cls(
            id=chunk_id,
            model=model,
            choices=[
                ChunkChoice(
                    delta=ChatDelta(content=text),
                    finish_reason=finish_reason,
                )
            ],
        )


class BackendCapabilities(BaseModel):
    """What a backend can do."""

    supports_streaming: bool = True
    max_context_tokens: int = 8192
    max_concurrency: int | None = None  # None = unbounded

    model_config = {"frozen": True}


class Backend(BaseModel):
    """Registry entry describing a language-model execution target."""

    id: str
    model: str = ""
    base_latency_ms: float = 1000.0
    cost_per_1k_tokens: float = 0.0
    capabilities: BackendCapabilities = Field(default_factory=BackendCapabilities)
    is_local: bool = False
    trust_rank: int = 0

    model_config = {"frozen": True}

    def estimate_cost(self, tokens: int) -> float:
        """Monetary cost of processing ``tokens`` tokens."""
        return self.cost_per_1k_tokens * tokens / 1000
