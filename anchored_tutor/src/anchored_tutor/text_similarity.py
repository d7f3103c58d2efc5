"""
Text Similarity Engine

Keyword-set (Jaccard) comparison used for topic relevance and for
duplicate course/topic detection.
"""

import re
from typing import FrozenSet, Iterable, Optional, Set

# Common stop words ignored by the topic moderator
STOP_WORDS: FrozenSet[str] = frozenset([
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "up", "about", "into", "through", "during",
    "is", "are", "was", "were", "been", "be", "have", "has", "had", "do",
    "does", "did", "will", "would", "could", "should", "may", "might",
    "can", "what", "how", "why", "when", "where", "which", "who",
])

MIN_TOKEN_LENGTH = 3

_PUNCTUATION = re.compile(r"[^\w\s]")


def tokenize(text: Optional[str]) -> list:
    """Lowercase, strip punctuation and split on whitespace (no length filter)."""
    if not text:
        return []
    return _PUNCTUATION.sub("", text.lower()).split()


def extract_keywords(text: Optional[str], stop_words: Optional[Iterable[str]] = None) -> Set[str]:
    """
    Normalize text to a keyword set.

    Args:
        text: Raw text (may be None or empty)
        stop_words: Optional words to drop after normalization

    Returns:
        Set of lowercase tokens longer than two characters
    """
    excluded = set(stop_words) if stop_words else set()
    return {
        word for word in tokenize(text)
        if len(word) >= MIN_TOKEN_LENGTH and word not in excluded
    }


def jaccard(set_a: Set[str], set_b: Set[str]) -> float:
    """Jaccard similarity of two keyword sets (both empty -> 1.0, one empty -> 0.0)."""
    if not set_a and not set_b:
        return 1.0
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def similarity(text_a: Optional[str], text_b: Optional[str], stop_words: Optional[Iterable[str]] = None) -> float:
    """
    Compare two texts by the overlap of their keyword sets.

    Args:
        text_a: First text
        text_b: Second text
        stop_words: Optional stop-word list removed from both sides

    Returns:
        Score between 0.0 (disjoint) and 1.0 (identical keyword sets)
    """
    return jaccard(extract_keywords(text_a, stop_words), extract_keywords(text_b, stop_words))
