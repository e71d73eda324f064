"""Re-ranking of raw search hits.

``heuristic_relevance`` is a lexical stand-in for a cross-encoder. Pass a
``RelevanceScorer`` to ``rerank_with_scorer`` to use a real model instead.
"""

from __future__ import annotations

import asyncio
import dataclasses
import re
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass
from typing import Protocol, Union

from memoria.retrieval.text import query_terms
from memoria.retrieval.types import SearchResult

ORIGINAL_WEIGHT = 0.6
OVERLAP_WEIGHT = 0.2
EXACT_MATCH_BONUS = 0.2
POSITION_BONUS = 0.1
PATH_BONUS = 0.1

_PATH_SPLIT = re.compile(r"[/._-]")


class RelevanceScorer(Protocol):
    def __call__(self, query: str, text: str) -> Union[float, Awaitable[float]]: ...


@dataclass
class RerankOptions:
    top_k: int | None = None
    min_score: float = 0.0


def heuristic_relevance(query: str, result: SearchResult) -> float:
    """Blend the original score with lexical overlap, phrase, position and path signals."""
    needle = query.lower()
    terms = query_terms(query)
    snippet = result.snippet.lower()
    text = f"{snippet} {result.locator.lower()}"

    overlap = sum(1 for t in terms if t in text) / len(terms) if terms else 0.0
    exact = EXACT_MATCH_BONUS if needle in text else 0.0

    index = snippet.find(needle)
    position = max(0.0, POSITION_BONUS * (1 - index / 100)) if index >= 0 else 0.0

    path_parts = _PATH_SPLIT.split(result.locator.lower())
    path_hits = sum(1 for t in terms if any(t in part for part in path_parts))
    path = (path_hits / len(terms)) * PATH_BONUS if terms else 0.0

    score = result.score * ORIGINAL_WEIGHT + overlap * OVERLAP_WEIGHT + exact + position + path
    return min(1.0, score)


def _finish(
    scored: list[tuple[SearchResult, float]], min_score: float
) -> list[SearchResult]:
    scored.sort(key=lambda item: item[1], reverse=True)
    return [
        dataclasses.replace(result, score=score, original_score=result.score)
        for result, score in scored
        if score >= min_score
    ]


def rerank_results(
    query: str,
    results: Sequence[SearchResult],
    options: RerankOptions | None = None,
) -> list[SearchResult]:
    """Re-score the top ``top_k`` hits and drop those under ``min_score``."""
    options = options or RerankOptions()
    top = list(results)[: options.top_k] if options.top_k is not None else list(results)
    return _finish([(r, heuristic_relevance(query, r)) for r in top], options.min_score)


async def rerank_with_scorer(
    query: str,
    results: Sequence[SearchResult],
    scorer: RelevanceScorer,
    options: RerankOptions | None = None,
) -> list[SearchResult]:
    """Same as ``rerank_results`` but scored by an external model (sync or async)."""
    options = options or RerankOptions()
    top = list(results)[: options.top_k] if options.top_k is not None else list(results)
    scored = []
    for result in top:
        value = scorer(query, result.snippet)
        if asyncio.iscoroutine(value):
            value = await value
        scored.append((result, max(0.0, min(1.0, float(value)))))
    return _finish(scored, options.min_score)
