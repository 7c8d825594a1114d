"""
Stream Monitor - Cheap quality checks over a partially streamed answer.

Runs on the same path that emits chunks, so every check is linear in the
accumulated text and allocation-light.
"""

from __future__ import annotations

import re
from collections import Counter

from .models import StreamCheckReason, StreamMonitorConfig, SwitchVerdict
from .patterns import STOPWORDS, split_sentences

__all__ = [
    "StreamMonitor",
    "max_repetition",
    "stream_coherence",
    "uncertainty_confidence",
]

UNCERTAINTY_MARKERS = re.compile(
    r"\b(i think|maybe|perhaps|possibly|might|not sure|unclear|i believe)\b",
    re.IGNORECASE,
)
_VOWELS = set("aeiouy")


def _is_gibberish(word: str) -> bool:
    letters = "".join(c for c in word.lower() if c.isalpha())
    if len(letters) <= 3:
        return False
    if not _VOWELS & set(letters):
        return True
    return re.search(r"(.)\1{3,}", letters) is not None


def stream_coherence(text: str) -> float:
    """Mean of complete-sentence, capitalised-start and non-gibberish ratios."""
    sentences = split_sentences(text)
    if not sentences:
        return 0.5

    complete = sum(1 for s in sentences if len(s.split()) >= 3) / len(sentences)
    capitalised = sum(
        1 for s in sentences if s[0].isupper() or not s[0].isalpha()
    ) / len(sentences)

    tokens = text.split()
    gibberish = sum(1 for w in tokens if _is_gibberish(w)) / len(tokens) if tokens else 0.0

    return (complete + capitalised + (1 - gibberish)) / 3


def _normalize_chunk(chunk: str) -> str:
    return " ".join(chunk.lower().split())


def max_repetition(chunks: list[str], window: int = 10) -> int:
    """
    Highest repeat count of any normalized chunk among the last ``window``.

    Whitespace, punctuation-only and single stop-word chunks are ignored;
    they repeat naturally in token streams.
    """
    counts = Counter(
        normalized
        for normalized in (_normalize_chunk(c) for c in chunks[-window:])
        if normalized
        and any(ch.isalnum() for ch in normalized)
        and normalized not in STOPWORDS
    )
    return max(counts.values(), default=0)


def uncertainty_confidence(text: str) -> float:
    """Confidence proxy: 1.0 minus 0.1 per uncertainty marker (floor 0.5)."""
    markers = len(UNCERTAINTY_MARKERS.findall(text))
    return 1 - min(0.5, 0.1 * markers)


class StreamMonitor:
    """
    Periodic mid-stream quality checks.

    Example:
        >>> monitor = StreamMonitor()
        >>> monitor.should_check(5)
        True
        >>> monitor.evaluate(["Paris ", "is ", "the ", "capital ", "of France."]).switch
        False
    """

    def __init__(self, config: StreamMonitorConfig | None = None) -> None:
        self.config = config or StreamMonitorConfig()

    def should_check(self, chunk_count: int) -> bool:
        """First check at ``min_chunks``, then every ``check_interval`` chunks."""
        if chunk_count < self.config.min_chunks:
            return False
        return (chunk_count - self.config.min_chunks) % self.config.check_interval == 0

    def evaluate(
        self,
        chunks: list[str],
        min_confidence: float | None = None,
    ) -> SwitchVerdict:
        """
        Decide whether the stream should switch backends.

        Checks run in order: repetition, coherence, confidence, overall quality.
        """
        cfg = self.config
        threshold = cfg.default_min_confidence if min_confidence is None else min_confidence
        text = "".join(chunks)

        repetition = max_repetition(chunks, cfg.repetition_window)
        coherence = stream_coherence(text)
        confidence = uncertainty_confidence(text)
        quality = (coherence + confidence) / 2

        reason: StreamCheckReason | None = None
        if repetition >= cfg.repetition_threshold:
            reason = StreamCheckReason.REPETITION
        elif coherence < cfg.coherence_threshold:
            reason = StreamCheckReason.COHERENCE
        elif confidence < threshold:
            reason = StreamCheckReason.CONFIDENCE
        elif quality < cfg.min_quality:
            reason = StreamCheckReason.QUALITY

        return SwitchVerdict(
            switch=reason is not None,
            reason=reason,
            quality_score=round(quality, 4),
            coherence=round(coherence, 4),
            confidence=round(confidence, 4),
            repetition=repetition,
        )
