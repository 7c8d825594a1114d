"""
Quality Domain - Answer validation and live stream monitoring.

This domain handles:
- Five-dimension quality gate for finished answers
- Lightweight repetition/coherence/confidence checks during streaming
- Shared lexical patterns (PII, harm, hedging)
"""

from .contracts import AnswerValidator, StreamQualityMonitor
from .models import (
    QualityDimension,
    QualityScores,
    QualityThresholds,
    QualityValidationResult,
    QualityWeights,
    Recommendation,
    StreamCheckReason,
    StreamMonitorConfig,
    SwitchVerdict,
)
from .monitor import StreamMonitor, max_repetition, stream_coherence, uncertainty_confidence
from .patterns import SENSITIVE_PATTERNS, detect_sensitive
from .validator import QualityGateValidator

__all__ = [
    # Contracts
    "AnswerValidator",
    "StreamQualityMonitor",
    # Models
    "QualityDimension",
    "QualityScores",
    "QualityThresholds",
    "QualityWeights",
    "QualityValidationResult",
    "Recommendation",
    "StreamCheckReason",
    "StreamMonitorConfig",
    "SwitchVerdict",
    # Implementations
    "QualityGateValidator",
    "StreamMonitor",
    "stream_coherence",
    "max_repetition",
    "uncertainty_confidence",
    "SENSITIVE_PATTERNS",
    "detect_sensitive",
]
