"""
Quality Models - Data types for the quality gate.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class Recommendation(str, Enum):
    """What to do with a validated answer."""

    ACCEPT = "accept"
    IMPROVE = "improve"
    ESCALATE = "escalate"


class QualityDimension(str, Enum):
    """Independent scoring dimensions."""

    COHERENCE = "coherence"
    COMPLETENESS = "completeness"
    RELEVANCE = "relevance"
    ACCURACY = "accuracy"
    SAFETY = "safety"


class QualityScores(BaseModel):
    """Per-dimension scores in [0, 1]."""

    coherence: float = Field(ge=0.0, le=1.0)
    completeness: float = Field(ge=0.0, le=1.0)
    relevance: float = Field(ge=0.0, le=1.0)
    accuracy: float = Field(ge=0.0, le=1.0)
    safety: float = Field(ge=0.0, le=1.0)

    model_config = {"frozen": True}

    def as_dict(self) -> dict[QualityDimension, float]:
        return {dim: getattr(self, dim.value) for dim in QualityDimension}


class QualityWeights(BaseModel):
    """Weights for the overall score (sum to 1)."""

    relevance: float = 0.30
    completeness: float = 0.20
    accuracy: float = 0.20
    coherence: float = 0.15
    safety: float = 0.15

    model_config = {"frozen": True}


class QualityThresholds(BaseModel):
    """Minimum scores an answer needs to pass the gate."""

    overall: float = Field(default=0.70, ge=0.0, le=1.0)
    coherence: float = Field(default=0.60, ge=0.0, le=1.0)
    completeness: float = Field(default=0.65, ge=0.0, le=1.0)
    relevance: float = Field(default=0.70, ge=0.0, le=1.0)
    accuracy: float = Field(default=0.65, ge=0.0, le=1.0)
    safety: float = Field(default=0.95, ge=0.0, le=1.0)
    improve_floor: float = Field(default=0.60, ge=0.0, le=1.0)

    model_config = {"frozen": True}

    def minimum(self, dimension: QualityDimension) -> float:
        return getattr(self, dimension.value)


class QualityValidationResult(BaseModel):
    """Outcome of validating one candidate answer."""

    scores: QualityScores
    overall: float = Field(ge=0.0, le=1.0)
    passed: bool
    recommendation: Recommendation
    confidence: float = Field(ge=0.0, le=1.0)
    failed_dimensions: list[QualityDimension] = Field(default_factory=list)
    reasoning: str = ""

    model_config = {"frozen": True}


class StreamCheckReason(str, Enum):
    """Why the stream monitor wants to switch backends."""

    REPETITION = "repetition"
    COHERENCE = "coherence"
    CONFIDENCE = "confidence"
    QUALITY = "quality"


class StreamMonitorConfig(BaseModel):
    """Tunables for the lightweight mid-stream checks."""

    min_chunks: int = Field(default=5, ge=1)
    check_interval: int = Field(default=3, ge=1)
    coherence_threshold: float = 0.6
    repetition_threshold: int = Field(default=3, ge=2)
    repetition_window: int = Field(default=10, ge=2)
    min_quality: float = 0.5
    default_min_confidence: float = 0.6

    model_config = {"frozen": True}


class SwitchVerdict(BaseModel):
    """Result of one mid-stream check."""

    switch: bool
    reason: StreamCheckReason | None = None
    quality_score: float = 1.0
    coherence: float = 1.0
    confidence: float = 1.0
    repetition: int = 0

    model_config = {"frozen": True}
