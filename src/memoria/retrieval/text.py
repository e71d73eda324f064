"""Keyword helpers shared by the query-rewriting stages."""

from __future__ import annotations

import re
from collections.abc import Iterable

STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
        "with", "by", "is", "are", "was", "were", "be", "been", "have", "has", "had",
        "do", "does", "did", "will", "would", "should", "could", "may", "might", "can",
        "this", "that", "these", "those",
    }
)

# Pronouns only matter when mining conversation turns.
CONVERSATION_STOP_WORDS = STOP_WORDS | {"i", "you", "he", "she", "it", "we", "they"}

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def keyword_terms(text: str, stop_words: frozenset[str] = STOP_WORDS) -> list[str]:
    """Lowercased words longer than 3 chars, stripped to [a-z0-9], minus stop words."""
    terms = []
    for word in text.lower().split():
        if len(word) <= 3 or word in stop_words:
            continue
        cleaned = _NON_ALNUM.sub("", word)
        if len(cleaned) > 2:
            terms.append(cleaned)
    return terms


def top_terms(weights: dict[str, float], limit: int, exclude: Iterable[str] = ()) -> list[str]:
    """Highest-weighted terms first; ties keep first-seen order."""
    skip = set(exclude)
    ranked = sorted(weights.items(), key=lambda item: item[1], reverse=True)
    return [term for term, _ in ranked if term not in skip][:limit]


def query_terms(query: str) -> list[str]:
    """Lowercased whitespace tokens longer than 2 characters."""
    return [t for t in query.lower().split() if len(t) > 2]
