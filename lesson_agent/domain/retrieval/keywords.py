from __future__ import annotations

import re
from typing import Optional

STOP_WORDS: frozenset[str] = frozenset(
    {
        "的", "了", "是", "在", "和", "与", "或", "等", "这", "那",
        "有", "为", "以", "及", "被", "把", "给", "对", "让", "使",
        "the", "a", "an", "is", "are", "was", "were", "be", "been",
        "being", "have", "has", "had", "do", "does", "did", "will",
        "would", "could", "should", "may", "might", "must", "can",
    }
)

# Whitespace plus Latin and CJK punctuation.
_TOKEN_SEPARATORS = re.compile(r"[\s,，。！？、；：\"“”'‘’（）()\[\]【】{}]+")


def extract_keywords(text: str) -> list[str]:
    """Lower-cased, de-duplicated terms longer than one character, in first-seen order."""
    seen: dict[str, None] = {}
    for word in _TOKEN_SEPARATORS.split((text or "").lower()):
        if len(word) > 1 and word not in STOP_WORDS:
            seen.setdefault(word, None)
    return list(seen)


def keyword_overlap_score(query: str, haystack: str, importance: Optional[float] = None) -> float:
    """`0.3 + 0.5 * matched/total + 0.2 * importance/10`, importance defaulting to 1."""
    terms = [term for term in (query or "").lower().split() if term]
    text = (haystack or "").lower()
    matched = sum(1 for term in terms if term in text)
    overlap = matched / len(terms) if terms else 0.0
    weight = importance if importance else 1
    return 0.3 + overlap * 0.5 + (weight / 10) * 0.2
