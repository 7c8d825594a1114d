"""
Quality Gate Validator - Multi-factor heuristic scoring of candidate answers.

Scores an answer on five independent dimensions (coherence, completeness,
relevance, accuracy, safety), combines them into a weighted overall score
and decides pass/fail plus a recommendation.

The validator is stateless and deterministic: identical (answer, query)
pairs always produce identical results. A bad answer is never an error;
it is a low score with an ``escalate`` recommendation.
"""

from __future__ import annotations

import logging
import re
import statistics

from .models import (
    QualityDimension,
    QualityScores,
    QualityThresholds,
    QualityValidationResult,
    QualityWeights,
    Recommendation,
)
from .patterns import (
    CITATION,
    DISCRIMINATION_PATTERNS,
    EXPLANATION_QUERY,
    FACTUAL_QUERY,
    HARM_PATTERNS,
    HEDGING,
    NEGATION_PAIRS,
    NUANCE,
    OPINION_QUERY,
    OUTPUT_PII_KINDS,
    PROFANITY_PATTERNS,
    REFUSAL_PHRASES,
    SENSITIVE_PATTERNS,
    STOPWORDS,
    STRUCTURE_MARKERS,
    split_sentences,
    tokenize,
    words,
)

logger = logging.getLogger(__name__)

__all__ = ["QualityGateValidator"]

SHORT_QUERY_WORDS = 10
NEUTRAL_RELEVANCE = 0.75
_NEGATION_WORDS = frozenset(
    {"not", "never", "always", "cannot", "can't", "isn't", "aren't", "won't", "will", "can"}
)


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _stem(token: str) -> str:
    return token[:-1] if len(token) > 4 and token.endswith("s") else token


def _content_terms(text: str) -> set[str]:
    return {
        _stem(t)
        for t in tokenize(text)
        if t not in STOPWORDS and t not in _NEGATION_WORDS
    }


class QualityGateValidator:
    """
    Quality gate for candidate answers.

    Example:
        >>> validator = QualityGateValidator()
        >>> result = validator.validate("4", "What is 2+2?")
        >>> result.passed, result.recommendation
        (True, <Recommendation.ACCEPT: 'accept'>)
    """

    def __init__(
        self,
        thresholds: QualityThresholds | None = None,
        weights: QualityWeights | None = None,
    ) -> None:
        """
        Initialize validator.

        Args:
            thresholds: Default thresholds (overridable per call)
            weights: Dimension weights for the overall score
        """
        self.thresholds = thresholds or QualityThresholds()
        self.weights = weights or QualityWeights()

    def validate(
        self,
        answer: str,
        query: str,
        thresholds: QualityThresholds | None = None,
    ) -> QualityValidationResult:
        """
        Validate a candidate answer.

        Args:
            answer: Candidate answer text
            query: Original user query
            thresholds: Optional per-call thresholds

        Returns:
            QualityValidationResult with scores, pass flag and recommendation
        """
        limits = thresholds or self.thresholds
        try:
            scores = QualityScores(
                coherence=self.score_coherence(answer),
                completeness=self.score_completeness(answer, query),
                relevance=self.score_relevance(answer, query),
                accuracy=self.score_accuracy(answer, query),
                safety=self.score_safety(answer),
            )
        except Exception:
            logger.exception("Quality scoring failed, forcing escalation")
            return self._failed_result("Quality scoring failed")

        overall = round(
            sum(
                getattr(self.weights, dim.value) * score
                for dim, score in scores.as_dict().items()
            ),
            4,
        )

        failed = [
            dim for dim, score in scores.as_dict().items() if score < limits.minimum(dim)
        ]
        passed = overall >= limits.overall and not failed

        if passed:
            recommendation = Recommendation.ACCEPT
        elif overall >= limits.improve_floor:
            recommendation = Recommendation.IMPROVE
        else:
            recommendation = Recommendation.ESCALATE

        return QualityValidationResult(
            scores=scores,
            overall=_clamp(overall),
            passed=passed,
            recommendation=recommendation,
            confidence=self._assessment_confidence(scores),
            failed_dimensions=failed,
            reasoning=self._reasoning(scores, overall, failed, limits),
        )

    # --- Dimension scorers ---

    def score_coherence(self, answer: str) -> float:
        """Multi-sentence structure, lexical variety and punctuation."""
        text = answer.strip()
        if not text:
            return 0.0

        score = 0.5
        if len(split_sentences(text)) >= 2:
            score += 0.15

        tokens = [w.lower() for w in words(text)]
        if tokens and len(set(tokens)) / len(tokens) > 0.5:
            score += 0.15

        if re.search(r"[.,;:!?]", text):
            score += 0.10
        if re.search(r"[.!?]$", text):
            score += 0.10

        return _clamp(score)

    def score_completeness(self, answer: str, query: str) -> float:
        """Answer length and structure relative to the query's class."""
        answer_words = len(words(answer))
        if answer_words == 0:
            return 0.0

        query_words = len(words(query))
        wants_explanation = bool(EXPLANATION_QUERY.search(query.lower()))

        if query_words < SHORT_QUERY_WORDS:
            # Short factual queries are satisfied by short answers
            score = 0.7
            if answer_words >= 5:
                score += 0.1
            if answer_words >= 20:
                score += 0.1
            if wants_explanation and answer_words < 30:
                score -= 0.15
            return _clamp(score)

        score = 0.5
        if answer_words >= 50:
            score += 0.25
        elif answer_words >= 20:
            score += 0.15
        elif answer_words < 10:
            score -= 0.2

        if query_words > 15 and STRUCTURE_MARKERS.search(answer):
            score += 0.15
        if wants_explanation and answer_words >= 30:
            score += 0.1

        return _clamp(score)

    def score_relevance(self, answer: str, query: str) -> float:
        """Keyword overlap, first-sentence echo and refusal penalty."""
        answer_lower = answer.lower()
        penalty = 0.3 if any(p in answer_lower for p in REFUSAL_PHRASES) else 0.0

        keywords = {
            _stem(t) for t in tokenize(query) if len(t) > 3 and t not in STOPWORDS
        }
        if not keywords:
            return _clamp(NEUTRAL_RELEVANCE - penalty)

        answer_terms = {_stem(t) for t in tokenize(answer)}
        overlap = len(keywords & answer_terms) / len(keywords)
        score = 0.4 + 0.4 * overlap

        sentences = split_sentences(answer)
        if sentences:
            first = {_stem(t) for t in tokenize(sentences[0])}
            if keywords & first:
                score += 0.2

        return _clamp(score - penalty)

    def score_accuracy(self, answer: str, query: str) -> float:
        """Hedging fit, internal contradictions and citation markers."""
        if not answer.strip():
            return 0.0

        query_lower = query.lower().strip()
        is_factual = bool(FACTUAL_QUERY.search(query_lower))
        is_opinion = bool(OPINION_QUERY.search(query_lower))

        score = 0.6
        if is_factual:
            score += -0.10 if HEDGING.search(answer) else 0.15
        elif is_opinion and NUANCE.search(answer):
            score += 0.15

        if self._has_contradiction(answer):
            score -= 0.25

        if is_factual and CITATION.search(answer):
            score += 0.10

        return _clamp(score)

    def score_safety(self, answer: str) -> float:
        """Starts at 1.0; one harm-instruction match zeroes it outright."""
        if any(p.search(answer) for p in HARM_PATTERNS):
            return 0.0

        score = 1.0
        if any(SENSITIVE_PATTERNS[kind].search(answer) for kind in OUTPUT_PII_KINDS):
            score -= 0.5
        if any(p.search(answer) for p in PROFANITY_PATTERNS):
            score -= 0.2
        if any(p.search(answer) for p in DISCRIMINATION_PATTERNS):
            score -= 0.5

        return _clamp(score)

    # --- Helpers ---

    @staticmethod
    def _has_contradiction(answer: str) -> bool:
        """Adjacent sentences that differ mainly by a negation."""
        sentences = [s for s in split_sentences(answer) if len(s) > 10]
        for first, second in zip(sentences, sentences[1:]):
            for positive, negative in NEGATION_PAIRS:
                first_neg = bool(re.search(negative, first, re.IGNORECASE))
                second_neg = bool(re.search(negative, second, re.IGNORECASE))
                if first_neg == second_neg:
                    continue
                affirmative = second if first_neg else first
                if not re.search(positive, affirmative, re.IGNORECASE):
                    continue

                a, b = _content_terms(first), _content_terms(second)
                if a and b and len(a & b) / len(a | b) >= 0.5:
                    return True
        return False

    @staticmethod
    def _assessment_confidence(scores: QualityScores) -> float:
        """Agreement between dimensions: low variance, high confidence."""
        variance = statistics.pvariance(list(scores.as_dict().values()))
        return round(_clamp(1 - min(variance * 2, 0.4), 0.6, 1.0), 4)

    @staticmethod
    def _reasoning(
        scores: QualityScores,
        overall: float,
        failed: list[QualityDimension],
        limits: QualityThresholds,
    ) -> str:
        values = scores.as_dict()
        if not failed and overall >= limits.overall:
            return f"All quality dimensions passed (overall {overall:.2f})"

        parts = [
            f"{dim.value} {values[dim]:.2f} < {limits.minimum(dim):.2f}" for dim in failed
        ]
        if overall < limits.overall:
            parts.append(f"overall {overall:.2f} < {limits.overall:.2f}")
        return "Below threshold: " + "; ".join(parts)

    @staticmethod
    def _failed_result(reason: str) -> QualityValidationResult:
        return QualityValidationResult(
            scores=QualityScores(
                coherence=0.0, completeness=0.0, relevance=0.0, accuracy=0.0, safety=0.0
            ),
            overall=0.0,
            passed=False,
            recommendation=Recommendation.ESCALATE,
            confidence=0.6,
            failed_dimensions=list(QualityDimension),
            reasoning=reason,
        )
