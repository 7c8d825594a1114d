"""
Meta-Prompt Decisions - Ask a model for routing advice, trust nothing.

The model's free-text answer is parsed into a strictly validated
``ParsedAdvice`` or an explicit ``ParseFailure``. Callers fall back to the
deterministic thresholds on failure, and the privacy rule is re-applied by
the decision engine after parsing.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import TYPE_CHECKING, Any

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator

from switchyard.adapters.llm.cancellation import run_cancellable
from switchyard.adapters.llm.models import ChatMessage, ChatRequest, ChatRole
from switchyard.config.errors import BackendError

from .models import MetaPromptAdvice, ParsedAdvice, ParseFailure, Preferences, Strategy

if TYPE_CHECKING:
    from switchyard.adapters.llm import Backend, BackendRegistry

logger = logging.getLogger(__name__)

__all__ = ["MetaPromptAdvisor", "build_meta_prompt", "parse_advice"]

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


class _AdvicePayload(BaseModel):
    """Wire shape of the model's JSON answer (snake or camel case)."""

    strategy: Strategy
    target_backend: str = Field(
        validation_alias=AliasChoices("target_backend", "targetBackend", "backend")
    )
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    query_type: str = Field(
        default="general", validation_alias=AliasChoices("query_type", "queryType")
    )
    contains_sensitive_data: bool = Field(
        default=False,
        validation_alias=AliasChoices("contains_sensitive_data", "containsSensitiveData"),
    )

    @field_validator("strategy", mode="before")
    @classmethod
    def _normalize_strategy(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower().replace("_", "-").replace(" ", "-")
        return value


def build_meta_prompt(
    query: str,
    preferences: Preferences,
    backends: list[Backend],
    sensitive: bool,
) -> str:
    """Routing prompt listing the available backends and the caller's priorities."""
    backend_lines = "\n".join(
        f"- {b.id}: {'local' if b.is_local else 'cloud'}, ~{b.base_latency_ms:.0f}ms, "
        f"${b.cost_per_1k_tokens:.4f}/1K tokens"
        for b in backends
    )
    return f"""You are a routing controller for a local-first assistant.
Decide how the query below should be executed.

Query: "{query}"

Caller priority: {preferences.priority.value}
Privacy level: {preferences.privacy_level.value}
Sensitive data detected: {"yes" if sensitive else "no"}

Available backends:
{backend_lines}

Strategies:
- local-only: answer with the local backend only
- delegate: send the query straight to one cloud backend
- hybrid: answer locally, escalate to a cloud backend if quality is poor
- iterative: like hybrid, with a local improvement round before escalating

Guidelines:
- Queries with personal data must use local-only.
- Prefer local-only for simple factual or conversational queries.
- Delegate only complex, multi-step or specialised queries.

Respond with JSON only:
{{"strategy": "...", "target_backend": "...", "confidence": 0.0, "reasoning": "...", "query_type": "..."}}"""


def parse_advice(text: str) -> MetaPromptAdvice:
    """
    Parse model output into validated advice.

    Args:
        text: Raw model output (may be fenced or wrapped in prose)

    Returns:
        ParsedAdvice, or ParseFailure describing why it was rejected
    """
    raw = text.strip()
    fenced = _FENCE.search(raw)
    body = fenced.group(1) if fenced else raw

    start = body.find("{")
    end = body.rfind("}") + 1
    if start < 0 or end <= start:
        return ParseFailure(reason="no JSON object in response", raw=raw[:500])

    try:
        data = json.loads(body[start:end])
    except json.JSONDecodeError as e:
        return ParseFailure(reason=f"invalid JSON: {e.msg}", raw=raw[:500])

    if not isinstance(data, dict):
        return ParseFailure(reason="JSON root is not an object", raw=raw[:500])

    try:
        payload = _AdvicePayload.model_validate(data)
    except ValidationError as e:
        return ParseFailure(reason=f"schema mismatch: {e.error_count()} error(s)", raw=raw[:500])

    return ParsedAdvice(
        strategy=payload.strategy,
        target_backend=payload.target_backend,
        confidence=payload.confidence,
        reasoning=payload.reasoning,
        query_type=payload.query_type,
        claims_sensitive=payload.contains_sensitive_data,
    )


class MetaPromptAdvisor:
    """
    Routing advice from the local model.

    Example:
        >>> advisor = MetaPromptAdvisor(registry)
        >>> advice = await advisor.advise("Compare Raft and Paxos", Preferences(), False)
    """

    def __init__(self, registry: BackendRegistry, temperature: float = 0.1) -> None:
        self._registry = registry
        self._temperature = temperature

    async def advise(
        self,
        query: str,
        preferences: Preferences,
        sensitive: bool,
        abort: asyncio.Event | None = None,
    ) -> MetaPromptAdvice:
        """
        Ask the local backend for advice; backend errors become ParseFailure.

        Raises:
            RequestAbortedError: ``abort`` fired while the model was answering
        """
        local = self._registry.local()
        prompt = build_meta_prompt(
            query,
            preferences,
            [self._registry.get(bid) for bid in self._registry.available_ids()],
            sensitive,
        )
        request = ChatRequest(
            model=local.model,
            messages=[ChatMessage(role=ChatRole.USER, content=prompt)],
            temperature=self._temperature,
        )

        try:
            async with self._registry.slot(local.id):
                response = await run_cancellable(
                    self._registry.adapter(local.id).query(request, abort), abort
                )
        except BackendError as e:
            logger.warning("Meta-prompt call failed: %s", e.message)
            return ParseFailure(reason=f"backend error: {e.message}")

        advice = parse_advice(response.text)
        if isinstance(advice, ParseFailure):
            logger.warning("Meta-prompt parse failed: %s", advice.reason)
        return advice
