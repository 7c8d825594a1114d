"""
Tests for the quality gate validator and stream monitor.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest

from .models import (
    QualityDimension,
    QualityThresholds,
    Recommendation,
    StreamCheckReason,
    StreamMonitorConfig,
)
from .monitor import StreamMonitor, max_repetition, stream_coherence, uncertainty_confidence
from .patterns import detect_sensitive, split_sentences
from .validator import QualityGateValidator


@pytest.fixture
def validator() -> QualityGateValidator:
    return QualityGateValidator()


@pytest.fixture
def monitor() -> StreamMonitor:
    return StreamMonitor()


# --- Validator Scenarios ---


def test_short_factual_answer_passes(validator: QualityGateValidator) -> None:
    """Test "4" is an acceptable answer to "What is 2+2?"."""
    result = validator.validate("4", "What is 2+2?")

    assert result.scores.coherence == pytest.approx(0.65)
    assert result.scores.completeness == pytest.approx(0.7)
    assert result.scores.relevance == pytest.approx(0.75)
    assert result.scores.accuracy == pytest.approx(0.75)
    assert result.scores.safety == 1.0
    assert result.overall == pytest.approx(0.7625)
    assert result.passed is True
    assert result.recommendation == Recommendation.ACCEPT
    assert result.failed_dimensions == []


def test_validator_is_deterministic(validator: QualityGateValidator) -> None:
    """Test identical inputs give identical results."""
    answer = "Recursion is when a function calls itself. Each call shrinks the problem."
    query = "Explain recursion"

    first = validator.validate(answer, query)
    second = validator.validate(answer, query)
    assert first == second


def test_harm_keyword_fails_gate(validator: QualityGateValidator) -> None:
    """Test a harm-instruction keyword zeroes safety and fails the gate."""
    answer = (
        "Chemistry is a fascinating subject with many uses. "
        "Here is how to make a bomb at home, step by step."
    )
    result = validator.validate(answer, "Tell me about chemistry experiments")

    assert result.scores.safety == 0.0
    assert result.passed is False
    assert QualityDimension.SAFETY in result.failed_dimensions


def test_refusal_is_penalized(validator: QualityGateValidator) -> None:
    """Test deflection answers get low relevance and an escalate recommendation."""
    result = validator.validate(
        "I don't know.",
        "Explain the difference between TCP and UDP protocols",
    )

    assert result.scores.relevance == pytest.approx(0.1)
    assert result.overall == pytest.approx(0.5375)
    assert result.passed is False
    assert result.recommendation == Recommendation.ESCALATE
    assert "relevance" in result.reasoning


def test_empty_answer_escalates(validator: QualityGateValidator) -> None:
    """Test an empty answer scores zero on content dimensions."""
    result = validator.validate("", "What is the capital of France?")

    assert result.scores.coherence == 0.0
    assert result.scores.completeness == 0.0
    assert result.passed is False
    assert result.recommendation == Recommendation.ESCALATE


def test_custom_thresholds_yield_improve(validator: QualityGateValidator) -> None:
    """Test per-call thresholds; a near miss is recommended for improvement."""
    result = validator.validate("4", "What is 2+2?", QualityThresholds(overall=0.9))

    assert result.passed is False
    assert result.recommendation == Recommendation.IMPROVE


def test_scoring_error_returns_escalation(validator: QualityGateValidator) -> None:
    """Test an internal scoring error never raises."""
    with patch.object(validator, "score_coherence", side_effect=RuntimeError("boom")):
        result = validator.validate("Some answer.", "Some question?")

    assert result.passed is False
    assert result.recommendation == Recommendation.ESCALATE
    assert result.overall == 0.0


def test_confidence_bounds(validator: QualityGateValidator) -> None:
    """Test assessment confidence stays within [0.6, 1.0]."""
    for answer in ("", "4", "I don't know.", "Paris is the capital of France."):
        result = validator.validate(answer, "What is the capital of France?")
        assert 0.6 <= result.confidence <= 1.0


# --- Dimension Scorers ---


def test_accuracy_hedging_on_factual_query(validator: QualityGateValidator) -> None:
    """Test hedging is penalized and citations rewarded on factual queries."""
    query = "What is the capital of France?"

    assert validator.score_accuracy("The capital of France is Paris.", query) == pytest.approx(0.75)
    assert validator.score_accuracy("It might be Paris, perhaps.", query) == pytest.approx(0.5)
    assert validator.score_accuracy(
        "According to the atlas, the capital of France is Paris.", query
    ) == pytest.approx(0.85)


def test_accuracy_rewards_nuance_on_opinion(validator: QualityGateValidator) -> None:
    """Test nuance markers help opinion answers."""
    score = validator.score_accuracy(
        "It depends on your budget; however, consider battery life.",
        "Which laptop should I buy?",
    )
    assert score == pytest.approx(0.75)


def test_accuracy_detects_contradiction(validator: QualityGateValidator) -> None:
    """Test adjacent negated sentences are penalized."""
    score = validator.score_accuracy("The sky is blue. The sky is not blue.", "What color is the sky?")
    assert score == pytest.approx(0.35)

    consistent = validator.score_accuracy(
        "The sky is blue. The ocean is not green.", "What color is the sky?"
    )
    assert consistent == pytest.approx(0.6)


def test_safety_penalties(validator: QualityGateValidator) -> None:
    """Test PII and profanity penalties."""
    assert validator.score_safety("Your SSN 123-45-6789 is on file.") == pytest.approx(0.5)
    assert validator.score_safety("This is damn good.") == pytest.approx(0.8)
    assert validator.score_safety("A perfectly polite answer.") == 1.0


def test_relevance_keyword_overlap(validator: QualityGateValidator) -> None:
    """Test keyword echo in the first sentence maxes relevance."""
    score = validator.score_relevance(
        "Recursion is when a function calls itself.", "Explain recursion"
    )
    assert score == pytest.approx(1.0)

    off_topic = validator.score_relevance("Bananas are yellow.", "Explain recursion")
    assert off_topic == pytest.approx(0.4)


def test_completeness_long_structured_answer(validator: QualityGateValidator) -> None:
    """Test long queries reward long, structured answers."""
    query = (
        "Can you explain in detail why distributed databases need consensus protocols "
        "and how Raft compares to Paxos in practice?"
    )
    answer = "\n".join(
        [
            "1. Consensus keeps replicas agreeing on one ordered log of writes.",
            "2. Raft splits the problem into leader election and log replication.",
            "3. Paxos is more general but notoriously harder to implement correctly.",
            "Finally, both tolerate a minority of failed nodes while staying safe.",
            "In practice Raft is preferred for new systems because it is easier to reason about.",
        ]
    )
    assert validator.score_completeness(answer, query) == pytest.approx(1.0)
    assert validator.score_completeness("Use Raft.", query) == pytest.approx(0.3)


# --- Patterns ---


@pytest.mark.parametrize(
    "text,kind",
    [
        ("My SSN is 123-45-6789", "ssn"),
        ("card 4111 1111 1111 1111", "card"),
        ("mail me at jane.doe@example.com", "email"),
        ("call 555-123-4567", "phone"),
    ],
)
def test_detect_sensitive(text: str, kind: str) -> None:
    """Test each PII detector fires independently."""
    assert kind in detect_sensitive(text)


def test_detect_sensitive_clean_text() -> None:
    assert detect_sensitive("What is 2+2?") == []


def test_split_sentences() -> None:
    assert split_sentences("One. Two! Three?\nFour") == ["One.", "Two!", "Three?", "Four"]


# --- Stream Monitor ---


def test_should_check_schedule(monitor: StreamMonitor) -> None:
    """Test checks start at chunk 5 and repeat every 3 chunks."""
    assert [n for n in range(1, 15) if monitor.should_check(n)] == [5, 8, 11, 14]


def test_repetition_trips_switch(monitor: StreamMonitor) -> None:
    """Test a repeated 6-word chunk trips the repetition detector."""
    repeated = "the same six word chunk here "
    chunks = ["Intro text here. ", "More words follow. "] + [repeated] * 4

    assert max_repetition(chunks) == 4

    verdict = monitor.evaluate(chunks[:5])
    assert verdict.switch is True
    assert verdict.reason == StreamCheckReason.REPETITION
    assert verdict.repetition == 3


def test_repetition_ignores_stopword_tokens() -> None:
    """Test naturally repeating tokens are not repetition."""
    assert max_repetition([" the", " of", " the", " the", ".", "."]) == 0


def test_repetition_window() -> None:
    """Test only the last window of chunks is considered."""
    chunks = ["loop again"] * 3 + [f"chunk {i}" for i in range(10)]
    assert max_repetition(chunks, window=10) == 1


def test_gibberish_trips_coherence(monitor: StreamMonitor) -> None:
    """Test gibberish output trips the coherence check."""
    chunks = ["xkcdqwrtz ", "bzzzzzt ", "plmnkjh ", "qrstvwxz ", "grrrrrh "]
    verdict = monitor.evaluate(chunks)

    assert verdict.switch is True
    assert verdict.reason == StreamCheckReason.COHERENCE
    assert verdict.coherence < 0.6


def test_uncertainty_trips_confidence(monitor: StreamMonitor) -> None:
    """Test dense uncertainty markers trip the confidence check."""
    chunks = [
        "Maybe it is. ",
        "Perhaps not. ",
        "I think so. ",
        "Possibly yes. ",
        "Not sure really. ",
        "It might.",
    ]
    verdict = monitor.evaluate(chunks)

    assert verdict.reason == StreamCheckReason.CONFIDENCE
    assert verdict.confidence == pytest.approx(0.5)

    # A lower caller-supplied threshold tolerates the same text
    assert monitor.evaluate(chunks, min_confidence=0.4).switch is False


def test_healthy_stream_does_not_switch(monitor: StreamMonitor) -> None:
    chunks = ["Paris ", "is ", "the ", "capital ", "of France."]
    verdict = monitor.evaluate(chunks)
    assert verdict.switch is False
    assert verdict.reason is None


def test_monitor_helpers_on_empty_text() -> None:
    assert stream_coherence("") == 0.5
    assert uncertainty_confidence("") == 1.0
    assert max_repetition([]) == 0


def test_monitor_config_override() -> None:
    """Test a stricter repetition threshold."""
    monitor = StreamMonitor(StreamMonitorConfig(repetition_threshold=2))
    verdict = monitor.evaluate(["Hello there friend. ", "Hello there friend. "])
    assert verdict.reason == StreamCheckReason.REPETITION
