"""
Lexical Patterns - Shared regexes and word lists for heuristic scoring.

Sensitive-data detectors are shared with the complexity estimator so the
privacy check and the output safety check agree on what PII looks like.
"""

from __future__ import annotations

import re

__all__ = [
    "SENSITIVE_PATTERNS",
    "detect_sensitive",
    "split_sentences",
    "tokenize",
    "words",
]

# Independent detectors; any match marks the text sensitive
SENSITIVE_PATTERNS: dict[str, re.Pattern[str]] = {
    "ssn": re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
    "card": re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b"),
    "email": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    "phone": re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b"),
}

# Identifiers whose presence in an answer is a safety violation
OUTPUT_PII_KINDS = ("ssn", "card")

HARM_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bhow to (harm|hurt|kill|poison)\b",
        r"\bkill yourself\b",
        r"\bcommit suicide\b",
        r"\b(make|build) a bomb\b",
        r"\billegal drugs\b",
        r"\bhack into\b",
        r"\bhow to steal\b",
        r"\bsteal (someone'?s|their|a person'?s)\b",
        r"\bincite violence\b",
    )
]

PROFANITY_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bfuck\w*\b",
        r"\bshit\w*\b",
        r"\bbitch\w*\b",
        r"\basshole\w*\b",
        r"\bbastard\w*\b",
        r"\bdamn\b",
    )
]

DISCRIMINATION_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bracist\b",
        r"\bsexist\b",
        r"\bhomophobic\b",
        r"\binferior race\b",
        r"\bsuperior gender\b",
    )
]

REFUSAL_PHRASES = (
    "i don't know",
    "i do not know",
    "i cannot help",
    "i can't help",
    "i'm not sure",
    "sorry, i can't",
    "unable to assist",
)

HEDGING = re.compile(
    r"\b(maybe|perhaps|possibly|might be|could be|uncertain|not sure)\b", re.IGNORECASE
)
NUANCE = re.compile(
    r"\b(however|although|depending|depends|may vary|consider|typically)\b", re.IGNORECASE
)
FACTUAL_QUERY = re.compile(r"^(what is|what are|define|who is|who was|when did|when was)\b")
OPINION_QUERY = re.compile(r"\b(should|better|best|recommend|suggest|opinion)\b")
EXPLANATION_QUERY = re.compile(r"\b(why|how|explain|describe)\b")
CITATION = re.compile(
    r"(according to|research shows|studies (show|indicate)|\[[^\]]+\])", re.IGNORECASE
)
STRUCTURE_MARKERS = re.compile(
    r"(^\s*(\d+[.)]|[-*•])\s|\b(first|second|third|finally|additionally|in summary)\b)",
    re.IGNORECASE | re.MULTILINE,
)

# (affirmative, negated) forms for adjacent-sentence contradiction checks
NEGATION_PAIRS = (
    (r"\bis\b", r"\bis not\b|\bisn't\b"),
    (r"\bare\b", r"\bare not\b|\baren't\b"),
    (r"\bcan\b", r"\bcannot\b|\bcan't\b|\bcan not\b"),
    (r"\bwill\b", r"\bwill not\b|\bwon't\b"),
    (r"\balways\b", r"\bnever\b"),
)

STOPWORDS = frozenset(
    """
    a about above after again against all also am an and any are as at be because been
    before being below between both but by can could did do does doing down during each
    explain describe few for from further give had has have having he her here hers
    him his how i if in into is it its itself just know let like me more most my no nor
    not now of off on once only or other our ours out over own please same she should
    so some such tell than that the their them then there these they this those through
    to too under until up very was we were what when where which while who whom why will
    with would you your yours
    """.split()
)

_TOKEN = re.compile(r"[a-z0-9']+")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")


def detect_sensitive(text: str) -> list[str]:
    """Names of the sensitive-data detectors that match ``text``."""
    return [name for name, pattern in SENSITIVE_PATTERNS.items() if pattern.search(text)]


def tokenize(text: str) -> list[str]:
    """Lower-cased alphanumeric tokens."""
    return _TOKEN.findall(text.lower())


def words(text: str) -> list[str]:
    """Whitespace-delimited words."""
    return text.split()


def split_sentences(text: str) -> list[str]:
    """Non-empty sentences, split on terminal punctuation and line breaks."""
    return [s.strip() for s in _SENTENCE_SPLIT.split(text) if s and s.strip()]
