"""Jaccard similarity for detecting meaningful text changes.

The similarity of two snapshots is defined over their content-token sets:

    J(A, B) = |A ∩ B| / |A ∪ B|

Tokens are normalised, stop-word filtered words of at least two characters.
Very large inputs are uniformly sampled before filtering, trading recall for
bounded latency.
"""

from __future__ import annotations

import logging
import re
from typing import Any, FrozenSet, Set

from nanocontext.observability.tracing import JACCARD_SIMILARITY, record_metric, timed

logger = logging.getLogger(__name__)

# ── Tunables ─────────────────────────────────────────────────────────

SAMPLING_THRESHOLD = 10_000  # normalised chars
SAMPLING_TARGET = 5_000
LARGE_COMPARISON_WARNING = 50_000
MIN_TOKEN_LENGTH = 2

STOP_WORDS: FrozenSet[str] = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "for", "from",
        "has", "he", "in", "is", "it", "its", "of", "on", "that", "the",
        "to", "was", "will", "with", "would", "could", "should", "can",
        "have", "had", "this", "these", "they", "them", "their", "there",
        "where", "when", "what", "who", "why", "how", "do", "does", "did",
        "been", "being", "but", "or", "not", "no", "yes", "if", "then",
    }
)

_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^\w\s.,!?;:'-]")
_TOKEN_SPLIT = re.compile(r"[\s.,!?;:'\"()\-]+")
_WORD_CHAR = re.compile(r"\w")


def normalize_text(text: Any) -> str:
    """Lowercase, strip special characters and collapse whitespace.

    Total: non-string input yields ``""``.
    """
    if not isinstance(text, str):
        return ""
    normalized = _WHITESPACE.sub(" ", text.lower().strip())
    normalized = _DISALLOWED.sub(" ", normalized)
    return _WHITESPACE.sub(" ", normalized).strip()


def _sample_words(normalized: str) -> str:
    sample_rate = max(1, len(normalized) // SAMPLING_TARGET)
    words = _TOKEN_SPLIT.split(normalized)
    sampled = " ".join(word for index, word in enumerate(words) if index % sample_rate == 0)
    logger.debug("tokenize_text: sampling large text (%d -> %d chars)", len(normalized), len(sampled))
    return sampled


def tokenize_text(text: Any) -> Set[str]:
    """Return the set of content tokens of *text*."""
    normalized = normalize_text(text)
    if not normalized:
        return set()

    if len(normalized) > SAMPLING_THRESHOLD:
        normalized = _sample_words(normalized)

    return {
        word
        for word in _TOKEN_SPLIT.split(normalized)
        if len(word) >= MIN_TOKEN_LENGTH
        and word not in STOP_WORDS
        and _WORD_CHAR.search(word)
    }


def jaccard_similarity(text_a: Any, text_b: Any) -> float:
    """Similarity coefficient in ``[0, 1]`` between two texts.

    Never raises: invalid input or any internal fault maps to ``0.0`` so the
    caller errs on the side of regenerating.
    """
    try:
        if not isinstance(text_a, str) or not isinstance(text_b, str):
            logger.warning("jaccard_similarity: invalid input types (%s, %s)", type(text_a), type(text_b))
            return 0.0

        if text_a == text_b:
            return 1.0

        total_length = len(text_a) + len(text_b)
        if total_length > LARGE_COMPARISON_WARNING:
            logger.warning("jaccard_similarity: processing large text (%d chars)", total_length)

        record_metric("similarity_check_count")
        with timed(JACCARD_SIMILARITY, total_length=total_length):
            tokens_a = tokenize_text(text_a)
            tokens_b = tokenize_text(text_b)

            if not tokens_a and not tokens_b:
                return 1.0
            if not tokens_a or not tokens_b:
                return 0.0

            return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)
    except Exception:
        logger.exception("jaccard_similarity failed; treating texts as different")
        return 0.0


def is_significant_change(text_a: Any, text_b: Any, threshold: float = 0.8) -> bool:
    """True when the similarity drops below *threshold*."""
    return jaccard_similarity(text_a, text_b) < threshold
