"""Keyword extraction and overlap scoring for report text."""
import re
from collections import Counter
from typing import List, Optional, Sequence

MAX_KEYWORDS = 10
MIN_TOKEN_LENGTH = 3

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "can", "this", "that", "these", "those",
    "i", "you", "he", "she", "it", "we", "they", "me", "him", "her", "us",
    "them", "my", "your", "his", "its", "our", "their",
})

_NON_WORD = re.compile(r"[^\w\s]")


def extract_keywords(text: Optional[str], limit: int = MAX_KEYWORDS, unique: bool = False) -> List[str]:
    """Tokenize free text into at most ``limit`` lowercase keywords, in order.

    Punctuation becomes whitespace, tokens shorter than three characters and
    stop words are dropped. Repeated tokens are kept unless ``unique`` is set,
    in which case only the first occurrence survives (before truncation).
    """
    if not text:
        return []
    keywords: List[str] = []
    seen = set()
    for word in _NON_WORD.sub(" ", text.lower()).split():
        if len(word) < MIN_TOKEN_LENGTH or word in STOP_WORDS:
            continue
        if unique:
            if word in seen:
                continue
            seen.add(word)
        keywords.append(word)
        if len(keywords) >= limit:
            break
    return keywords


def keyword_similarity(a: Sequence[str], b: Sequence[str]) -> float:
    """Dice coefficient 2·|A∩B| / (|A|+|B|) over keyword multisets.

    The intersection counts each token min(count in A, count in B) times, so
    the score is symmetric and stays within [0, 1] when tokens repeat.
    """
    if not a or not b:
        return 0.0
    common = sum((Counter(a) & Counter(b)).values())
    return (2.0 * common) / (len(a) + len(b))
