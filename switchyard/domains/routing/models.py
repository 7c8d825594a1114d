"""
Routing Models - Data types for complexity estimation and decisions.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class Strategy(str, Enum):
    """High-level execution plan for a query."""

    LOCAL_ONLY = "local-only"
    DELEGATE = "delegate"
    HYBRID = "hybrid"
    ITERATIVE = "iterative"


class Priority(str, Enum):
    """What the caller wants optimised."""

    COST = "cost"
    QUALITY = "quality"
    LATENCY = "latency"
    BALANCED = "balanced"


class PrivacyLevel(str, Enum):
    STRICT = "strict"
    MODERATE = "moderate"
    RELAXED = "relaxed"


class TaskCategory(str, Enum):
    """Coarse task class used for backend specialisation."""

    CODING = "coding"
    CREATIVE = "creative"
    MATH = "math"
    GENERAL = "general"


class ComplexityRecommendation(str, Enum):
    LOCAL = "local"
    HYBRID = "hybrid"
    CLOUD = "cloud"


class ContextTurn(BaseModel):
    """Prior conversation turn sent along with a query."""

    role: Literal["user", "assistant", "system"] = "user"
    content: str

    model_config = {"frozen": True}


class Preferences(BaseModel):
    """Per-call caller preferences; read-only to the core."""

    priority: Priority = Priority.BALANCED
    privacy_level: PrivacyLevel = PrivacyLevel.MODERATE
    max_cost_per_query: float | None = Field(default=None, ge=0.0)
    max_latency_ms: float | None = Field(default=None, gt=0.0)
    min_confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    strategy_override: Strategy | None = None

    model_config = {"frozen": True}


class ComplexityFactors(BaseModel):
    """Five independent difficulty factors in [0, 1]."""

    semantic_depth: float = Field(ge=0.0, le=1.0)
    reasoning_steps: float = Field(ge=0.0, le=1.0)
    knowledge_breadth: float = Field(ge=0.0, le=1.0)
    ambiguity: float = Field(ge=0.0, le=1.0)
    context_dependency: float = Field(ge=0.0, le=1.0)

    model_config = {"frozen": True}

    def values(self) -> list[float]:
        return [
            self.semantic_depth,
            self.reasoning_steps,
            self.knowledge_breadth,
            self.ambiguity,
            self.context_dependency,
        ]


class ComplexityScore(BaseModel):
    """Difficulty and privacy assessment of one query."""

    factors: ComplexityFactors
    score: float = Field(ge=0.0, le=1.0)
    contains_sensitive_data: bool = False
    sensitive_kinds: list[str] = Field(default_factory=list)
    task_category: TaskCategory = TaskCategory.GENERAL
    estimated_tokens: int = 0
    embedding_used: bool = False
    recommendation: ComplexityRecommendation = ComplexityRecommendation.LOCAL
    reasoning: str = ""

    model_config = {"frozen": True}


class OrchestrationDecision(BaseModel):
    """Chosen strategy and backends for one query. Immutable, audited."""

    strategy: Strategy
    target_backend: str
    fallback_backend: str | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    estimated_latency_ms: float = 0.0
    estimated_cost: float = 0.0
    reasoning: str = ""
    source: Literal["deterministic", "meta-prompt", "conservative", "override"] = "deterministic"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"frozen": True}


class DecisionRecord(BaseModel):
    """Append-only audit record of one decision and its outcome."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    query_digest: str
    decision: OrchestrationDecision
    result: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class DecisionThresholds(BaseModel):
    """Complexity thresholds and preference bias."""

    local_max: float = 0.4
    cloud_min: float = 0.7
    preference_bias: float = 0.1

    model_config = {"frozen": True}

    def adjusted(self, priority: Priority) -> tuple[float, float]:
        """Thresholds shifted toward local (cost) or toward cloud (quality)."""
        shift = 0.0
        if priority == Priority.COST:
            shift = self.preference_bias
        elif priority == Priority.QUALITY:
            shift = -self.preference_bias
        return self.local_max + shift, self.cloud_min + shift


class ParsedAdvice(BaseModel):
    """Validated routing advice produced by the meta-prompt model."""

    kind: Literal["parsed"] = "parsed"
    strategy: Strategy
    target_backend: str
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    query_type: str = "general"
    claims_sensitive: bool = False

    model_config = {"frozen": True}


class ParseFailure(BaseModel):
    """The meta-prompt output could not be trusted."""

    kind: Literal["failed"] = "failed"
    reason: str
    raw: str = ""

    model_config = {"frozen": True}


MetaPromptAdvice = ParsedAdvice | ParseFailure
