"""
Place-name similarity: normalized character-bigram Dice coefficient.

Normalization keeps only Hangul syllables and ASCII letters/digits, so
"코코몽 에코파크" and "코코몽에코파크" normalize to the same string.

Scoring:
  - both empty          -> 1.0
  - one empty           -> 0.0
  - equal               -> 1.0
  - one contains other  -> 0.9
  - otherwise Dice over bigram multisets, rounded to 3 decimals
"""

import re
import unicodedata
from collections import Counter
from typing import Iterable, Optional

# Score given when one normalized name is a substring of the other
CONTAINMENT_SCORE = 0.9

# Default threshold for "same place" decisions
DEFAULT_THRESHOLD = 0.7

_DROP_RE = re.compile(r"[^가-힣a-zA-Z0-9]")


def normalize_place_name(name: Optional[str]) -> str:
    """NFKC, drop everything outside Hangul/ASCII alphanumerics, lowercase."""
    if not name:
        return ""
    text = unicodedata.normalize("NFKC", name)
    return _DROP_RE.sub("", text).lower()


def bigrams(text: str) -> Counter:
    """Character bigram multiset. A single character is one bigram of itself."""
    if len(text) < 2:
        return Counter([text]) if text else Counter()
    return Counter(text[i:i + 2] for i in range(len(text) - 1))


def similarity(a: Optional[str], b: Optional[str]) -> float:
    s1 = normalize_place_name(a)
    s2 = normalize_place_name(b)

    if not s1 and not s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    if s1 == s2:
        return 1.0
    if s1 in s2 or s2 in s1:
        return CONTAINMENT_SCORE

    b1 = bigrams(s1)
    b2 = bigrams(s2)
    overlap = sum((b1 & b2).values())
    total = sum(b1.values()) + sum(b2.values())
    if total == 0:
        return 0.0
    return round(2 * overlap / total, 3)


def is_similar_place(a: str, b: str, threshold: float = DEFAULT_THRESHOLD) -> bool:
    return similarity(a, b) >= threshold


def find_best_match(
    name: str,
    candidates: Iterable[str],
    threshold: float = DEFAULT_THRESHOLD,
) -> Optional[tuple[str, float]]:
    """
    Return (candidate, score) for the highest-scoring candidate at or above
    threshold, or None. Ties keep the earliest candidate.
    """
    best: Optional[tuple[str, float]] = None
    for candidate in candidates:
        score = similarity(name, candidate)
        if score >= threshold and (best is None or score > best[1]):
            best = (candidate, score)
    return best
