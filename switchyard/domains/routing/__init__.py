"""
Routing Domain - Complexity estimation and strategy selection.

This domain handles:
- Query complexity and sensitive-data scoring
- Deterministic strategy/backend decisions with preference bias
- Meta-prompt routing advice with strict validation
- Append-only decision log
"""

from .complexity import FACTOR_WEIGHTS, ComplexityEstimator, classify_category
from .contracts import ComplexityScorer, DecisionMaker, DecisionSink, RoutingAdvisor
from .decision import DEFAULT_PRIORITIES, DecisionEngine
from .decision_log import DecisionLog, query_digest
from .meta_prompt import MetaPromptAdvisor, build_meta_prompt, parse_advice
from .models import (
    ComplexityFactors,
    ComplexityRecommendation,
    ComplexityScore,
    ContextTurn,
    DecisionRecord,
    DecisionThresholds,
    MetaPromptAdvice,
    OrchestrationDecision,
    ParsedAdvice,
    ParseFailure,
    Preferences,
    Priority,
    PrivacyLevel,
    Strategy,
    TaskCategory,
)

__all__ = [
    # Contracts
    "ComplexityScorer",
    "DecisionMaker",
    "DecisionSink",
    "RoutingAdvisor",
    # Models
    "ComplexityFactors",
    "ComplexityRecommendation",
    "ComplexityScore",
    "ContextTurn",
    "DecisionRecord",
    "DecisionThresholds",
    "MetaPromptAdvice",
    "OrchestrationDecision",
    "ParsedAdvice",
    "ParseFailure",
    "Preferences",
    "Priority",
    "PrivacyLevel",
    "Strategy",
    "TaskCategory",
    # Implementations
    "ComplexityEstimator",
    "DecisionEngine",
    "DecisionLog",
    "MetaPromptAdvisor",
    "FACTOR_WEIGHTS",
    "DEFAULT_PRIORITIES",
    "build_meta_prompt",
    "classify_category",
    "parse_advice",
    "query_digest",
]
