"""Query expansion from a static lexicon or from the current results.

Both flavours sit behind ``QueryExpander`` so a model-backed expander can be
dropped in without touching the pipeline.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from memoria.retrieval.text import keyword_terms, query_terms, top_terms
from memoria.retrieval.types import SearchResult

FEEDBACK_RESULTS = 5
FEEDBACK_CONFIDENCE = 0.6

SYNONYMS: dict[str, list[str]] = {
    # technical
    "error": ["bug", "issue", "problem", "failure"],
    "fix": ["repair", "resolve", "solve", "correct"],
    "feature": ["functionality", "capability", "function"],
    "config": ["configuration", "settings", "setup"],
    "api": ["endpoint", "service", "interface"],
    "database": ["db", "store", "storage"],
    "server": ["host", "machine", "instance"],
    "client": ["app", "application", "frontend"],
    "backend": ["server", "api", "service"],
    # verbs
    "create": ["make", "build", "generate", "add"],
    "update": ["modify", "change", "edit", "alter"],
    "delete": ["remove", "drop", "erase"],
    "get": ["fetch", "retrieve", "load", "read"],
    "set": ["configure", "assign", "define"],
    # nouns
    "user": ["person", "account", "profile"],
    "message": ["text", "chat", "communication"],
    "file": ["document", "resource"],
    "folder": ["directory", "path"],
    "project": ["workspace", "repo", "codebase"],
    # time
    "today": ["now", "current", "recent"],
    "yesterday": ["previous day", "recent"],
    "week": ["7 days", "recent"],
    "month": ["30 days", "recent period"],
    # memory
    "remember": ["recall", "retrieve", "find"],
    "memory": ["recall", "history", "past"],
    "fact": ["information", "detail", "data"],
}


@dataclass
class ExpandedQuery:
    original: str
    expanded_terms: list[str]
    expanded: str
    confidence: float


class QueryExpander(Protocol):
    def expand(
        self, query: str, results: Sequence[SearchResult] | None = None
    ) -> ExpandedQuery: ...


def _join(query: str, terms: list[str]) -> str:
    return " ".join([query, *terms]) if terms else query


def expand_query(query: str, max_terms: int = 3) -> ExpandedQuery:
    """Append up to ``max_terms`` lexicon synonyms per query term."""
    terms = query_terms(query)
    seen = set(terms)
    budget = max_terms * len(terms)
    added: list[str] = []

    for term in terms:
        for synonym in SYNONYMS.get(term, [])[:max_terms]:
            if synonym in seen or len(terms) + len(added) >= budget:
                continue
            seen.add(synonym)
            added.append(synonym)

    return ExpandedQuery(
        original=query,
        expanded_terms=added,
        expanded=_join(query, added),
        confidence=max(0.3, 1.0 - len(added) * 0.1),
    )


def expand_query_from_results(
    query: str, results: Sequence[SearchResult], max_terms: int = 3
) -> ExpandedQuery:
    """Pseudo-relevance feedback: frequent terms of the top snippets, weighted by score.

    Falls back to the lexicon when there are no results.
    """
    if not results:
        return expand_query(query, max_terms)

    weights: dict[str, float] = {}
    for result in results[:FEEDBACK_RESULTS]:
        for term in keyword_terms(result.snippet):
            weights[term] = weights.get(term, 0.0) + result.score

    added = top_terms(weights, max_terms, exclude=query.lower().split())
    return ExpandedQuery(
        original=query,
        expanded_terms=added,
        expanded=_join(query, added),
        confidence=FEEDBACK_CONFIDENCE,
    )


@dataclass
class LexiconExpander:
    max_terms: int = 3

    def expand(
        self, query: str, results: Sequence[SearchResult] | None = None
    ) -> ExpandedQuery:
        return expand_query(query, self.max_terms)


@dataclass
class FeedbackExpander:
    max_terms: int = 3

    def expand(
        self, query: str, results: Sequence[SearchResult] | None = None
    ) -> ExpandedQuery:
        return expand_query_from_results(query, results or [], self.max_terms)
