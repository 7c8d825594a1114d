"""
Complexity Estimator - Lexical difficulty and privacy scoring of queries.

Scores five independent factors and combines them with fixed weights:

    depth 0.20, reasoning 0.30, breadth 0.20, ambiguity 0.15, context 0.15

Reasoning steps dominate because they best predict whether a small local
model will lose the thread. Sensitive-data detection (government ID,
payment card, email, phone) runs over the query and every prior turn.

An optional embedding collaborator can lift the semantic-depth factor;
if it fails the estimator stays purely lexical and logs a warning.
"""

from __future__ import annotations

import logging
import math
import re
import statistics
from collections.abc import Sequence

from switchyard.adapters.llm.contracts import Embedder
from switchyard.domains.quality.patterns import detect_sensitive

from .models import (
    ComplexityFactors,
    ComplexityRecommendation,
    ComplexityScore,
    ContextTurn,
    TaskCategory,
)

logger = logging.getLogger(__name__)

__all__ = ["ComplexityEstimator", "FACTOR_WEIGHTS", "classify_category"]

FACTOR_WEIGHTS = {
    "semantic_depth": 0.20,
    "reasoning_steps": 0.30,
    "knowledge_breadth": 0.20,
    "ambiguity": 0.15,
    "context_dependency": 0.15,
}

ABSTRACT_TERMS = re.compile(
    r"\b(concept|theory|philosophy|meaning|essence|abstract|algorithm|architecture"
    r"|pattern|principle)s?\b"
)
TECHNICAL_TERMS = re.compile(
    r"\b(quantum|neural|algorithm|api|framework|architecture|protocol|schema"
    r"|entropy|regression)s?\b"
)

REASONING_MARKERS = [
    (re.compile(r"\b(first|then|next|finally|after|before)\b"), 0.15),
    (re.compile(r"\b(if|given|assuming|suppose)\b"), 0.15),
    (re.compile(r"\b(versus|vs|compare|contrast|difference between|advantages?|disadvantages?)\b"), 0.20),
    (re.compile(r"\b(why|cause|effect|because|result|consequence|lead to)\b"), 0.15),
    (re.compile(r"\b(evaluate|assess|judge|criticize|analy[sz]e|determine)\b"), 0.15),
]

DOMAIN_KEYWORDS = {
    "technology": re.compile(r"\b(computer|software|ai|algorithm|internet|data|database|network)\b"),
    "science": re.compile(r"\b(physics|chemistry|biology|quantum|molecule|experiment|energy)\b"),
    "philosophy": re.compile(r"\b(philosophy|ethics|ethical|moral|consciousness|existence|meaning)\b"),
    "business": re.compile(r"\b(market|economy|finance|investment|revenue|profit)\b"),
    "law": re.compile(r"\b(legal|law|court|contract|rights|regulation)\b"),
    "history": re.compile(r"\b(history|historical|ancient|century|war|civilization)\b"),
    "politics": re.compile(r"\b(government|policy|election|politics|political|democracy)\b"),
}

VAGUE_TERMS = re.compile(
    r"\b(somehow|something|what do you think|help me|sort of|kind of|in some way)\b"
)
QUESTION_WORDS = re.compile(
    r"^(what|why|how|when|where|who|which|can|could|would|should|is|are|do|does|did|will)\b"
)
PRONOUNS = re.compile(r"\b(it|they|this|that)\b")

CATEGORY_PATTERNS = [
    (
        TaskCategory.CODING,
        re.compile(
            r"\b(code|coding|function|bug|debug|python|javascript|typescript|java|rust"
            r"|sql|compile|api|class|regex|script|programm?ing|refactor|stack trace)\b"
        ),
    ),
    (
        TaskCategory.MATH,
        re.compile(
            r"(\b(calculate|equation|integral|derivative|solve|proof|theorem|algebra"
            r"|calculus|probability|matrix)\b|\d+\s*[-+*/^]\s*\d+)"
        ),
    ),
    (
        TaskCategory.CREATIVE,
        re.compile(r"\b(story|poem|write a|creative|fiction|lyrics|novel|imagine|haiku|song)\b"),
    ),
]

DEFAULT_ANCHOR_TEXT = (
    "Analyze the abstract theoretical principles, compare competing frameworks "
    "and reason step by step across several technical domains."
)


def classify_category(text: str) -> TaskCategory:
    """Coarse task category for backend specialisation."""
    lowered = text.lower()
    for category, pattern in CATEGORY_PATTERNS:
        if pattern.search(lowered):
            return category
    return TaskCategory.GENERAL


def _cosine(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


def _turn_text(turn: ContextTurn | str) -> str:
    return turn if isinstance(turn, str) else turn.content


class ComplexityEstimator:
    """
    Query complexity and sensitivity estimator.

    Example:
        >>> estimator = ComplexityEstimator()
        >>> score = estimator.score_lexical("What is 2+2?")
        >>> score.score < 0.4, score.contains_sensitive_data
        (True, False)
    """

    def __init__(
        self,
        embedder: Embedder | None = None,
        anchor_text: str = DEFAULT_ANCHOR_TEXT,
        local_max: float = 0.4,
        cloud_min: float = 0.7,
    ) -> None:
        """
        Initialize estimator.

        Args:
            embedder: Optional embedding collaborator for semantic depth
            anchor_text: Reference text for "deep" queries in embedding space
            local_max: Score below which local handling is recommended
            cloud_min: Score at or above which cloud handling is recommended
        """
        self._embedder = embedder
        self._anchor_text = anchor_text
        self._anchor: list[float] | None = None
        self._local_max = local_max
        self._cloud_min = cloud_min

    async def score(
        self,
        query: str,
        context: Sequence[ContextTurn | str] | None = None,
    ) -> ComplexityScore:
        """
        Score a query, using the embedding collaborator when configured.

        Never raises because of the embedder; falls back to lexical depth.
        """
        semantic_override: float | None = None
        if self._embedder is not None:
            try:
                semantic_override = await self._embedding_depth(query)
            except Exception as e:
                logger.warning("Embedding lookup failed, using lexical score: %s", e)

        return self.score_lexical(query, context, semantic_override)

    def score_lexical(
        self,
        query: str,
        context: Sequence[ContextTurn | str] | None = None,
        semantic_override: float | None = None,
    ) -> ComplexityScore:
        """Score a query from lexical heuristics only (pure function)."""
        turns = list(context or [])
        text = query.lower().strip()

        depth = self._semantic_depth(text)
        if semantic_override is not None:
            depth = max(depth, semantic_override)

        factors = ComplexityFactors(
            semantic_depth=round(depth, 4),
            reasoning_steps=round(self._reasoning_steps(text), 4),
            knowledge_breadth=round(self._knowledge_breadth(text), 4),
            ambiguity=round(self._ambiguity(text), 4),
            context_dependency=round(min(0.1 * len(turns), 1.0), 4),
        )
        scalar = round(
            sum(getattr(factors, name) * weight for name, weight in FACTOR_WEIGHTS.items()),
            4,
        )

        sensitive_kinds = detect_sensitive(query)
        for turn in turns:
            for kind in detect_sensitive(_turn_text(turn)):
                if kind not in sensitive_kinds:
                    sensitive_kinds.append(kind)

        if scalar < self._local_max:
            recommendation = ComplexityRecommendation.LOCAL
        elif scalar < self._cloud_min:
            recommendation = ComplexityRecommendation.HYBRID
        else:
            recommendation = ComplexityRecommendation.CLOUD

        return ComplexityScore(
            factors=factors,
            score=min(scalar, 1.0),
            contains_sensitive_data=bool(sensitive_kinds),
            sensitive_kinds=sensitive_kinds,
            task_category=classify_category(query),
            estimated_tokens=math.ceil(len(query) / 4),
            embedding_used=semantic_override is not None,
            recommendation=recommendation,
            reasoning=self._reasoning(factors, scalar, sensitive_kinds),
        )

    @staticmethod
    def agreement_confidence(factors: ComplexityFactors) -> float:
        """Confidence from how much the factors agree with each other."""
        spread = statistics.pstdev(factors.values())
        return round(max(0.7 - spread * 0.5, 0.5), 4)

    # --- Factors ---

    @staticmethod
    def _semantic_depth(text: str) -> float:
        score = 0.0
        if ABSTRACT_TERMS.search(text):
            score += 0.3
        score += min(len(text) / 500, 0.4)
        if TECHNICAL_TERMS.search(text):
            score += 0.3
        return min(score, 1.0)

    @staticmethod
    def _reasoning_steps(text: str) -> float:
        score = 0.1
        for pattern, weight in REASONING_MARKERS:
            if pattern.search(text):
                score += weight
        return min(score, 1.0)

    @staticmethod
    def _knowledge_breadth(text: str) -> float:
        domains = sum(1 for pattern in DOMAIN_KEYWORDS.values() if pattern.search(text))
        return min(0.1 + min(0.15 * domains, 0.8), 1.0)

    @staticmethod
    def _ambiguity(text: str) -> float:
        score = 0.0
        if VAGUE_TERMS.search(text):
            score += 0.3
        if text.endswith("?") and not QUESTION_WORDS.search(text):
            score += 0.2
        if text.count("?") > 1:
            score += 0.2
        if len(PRONOUNS.findall(text)) > 2:
            score += 0.1
        return min(score, 1.0)

    async def _embedding_depth(self, query: str) -> float:
        assert self._embedder is not None
        if self._anchor is None:
            self._anchor = await self._embedder.embed(self._anchor_text)
        vector = await self._embedder.embed(query)
        return max(0.0, min(_cosine(self._anchor, vector), 1.0))

    @staticmethod
    def _reasoning(factors: ComplexityFactors, scalar: float, sensitive: list[str]) -> str:
        summary = (
            f"complexity {scalar:.2f} (depth {factors.semantic_depth:.2f}, "
            f"reasoning {factors.reasoning_steps:.2f}, breadth {factors.knowledge_breadth:.2f}, "
            f"ambiguity {factors.ambiguity:.2f}, context {factors.context_dependency:.2f})"
        )
        if sensitive:
            summary += f"; sensitive data detected: {', '.join(sensitive)}"
        return summary
