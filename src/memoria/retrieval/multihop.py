"""Multi-hop retrieval: let each round's hits shape the next round's query."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Union

from memoria.retrieval.context import extract_entities_simple
from memoria.retrieval.expansion import FeedbackExpander, QueryExpander
from memoria.retrieval.types import SearchFn, SearchResult, run_search

logger = logging.getLogger(__name__)

ENTITY_SOURCE_RESULTS = 5
MAX_HOP_ENTITIES = 3

EntityExtractor = Callable[[str], Union[list[str], Awaitable[list[str]]]]
NextQuery = Callable[[str, list[SearchResult]], Awaitable[Union[str, None]]]


@dataclass
class MultiHopOptions:
    max_hops: int = 2
    min_improvement: float = 0.05
    results_per_hop: int = 10


async def _run_hops(
    query: str,
    search: SearchFn,
    options: MultiHopOptions,
    next_query: NextQuery,
) -> list[SearchResult]:
    found: dict[tuple, SearchResult] = {}
    current = query
    previous_best = 0.0
    hops_run = 0

    for hop in range(options.max_hops):
        results = await run_search(search, current, options.results_per_hop * 2)
        hops_run += 1
        if not results:
            break

        for result in results:
            existing = found.get(result.key)
            if existing is None or result.score > existing.score:
                found[result.key] = dataclasses.replace(result, hop=hop, query=current)

        best = max(r.score for r in found.values())
        if hop > 0 and best - previous_best < options.min_improvement:
            logger.debug("Multi-hop stopped after hop %d: best score %.3f", hop, best)
            break
        previous_best = best

        if hop == options.max_hops - 1:
            break
        try:
            following = await next_query(current, results)
        except Exception as e:
            logger.warning("Multi-hop query rewrite failed, stopping at hop %d: %s", hop, e)
            break
        if not following:
            break
        current = following

    ranked = sorted(found.values(), key=lambda r: r.score, reverse=True)
    return ranked[: options.results_per_hop * hops_run]


async def multi_hop_retrieval(
    query: str,
    search: SearchFn,
    options: MultiHopOptions | None = None,
    expander: QueryExpander | None = None,
) -> list[SearchResult]:
    """Search, expand the query from the hits, search again, up to ``max_hops`` rounds.

    Stops early when the best score improves by less than ``min_improvement``
    (never after the first hop) or when the expander has nothing new to add.
    """
    expander = expander or FeedbackExpander(max_terms=2)

    async def next_query(current: str, results: list[SearchResult]) -> str | None:
        expanded = expander.expand(current, results)
        return expanded.expanded if expanded.expanded_terms else None

    return await _run_hops(query, search, options or MultiHopOptions(), next_query)


async def multi_hop_with_entities(
    query: str,
    search: SearchFn,
    entity_extractor: EntityExtractor = extract_entities_simple,
    options: MultiHopOptions | None = None,
) -> list[SearchResult]:
    """Multi-hop where each next query is the original plus entities named in the hits.

    Falls back to result-based expansion when no new entity turns up.
    """
    used: set[str] = set()
    fallback = FeedbackExpander(max_terms=2)

    async def next_query(current: str, results: list[SearchResult]) -> str | None:
        entities: list[str] = []
        for result in results[:ENTITY_SOURCE_RESULTS]:
            extracted = entity_extractor(result.snippet)
            if asyncio.iscoroutine(extracted):
                extracted = await extracted
            for entity in extracted:
                if entity not in used and len(entities) < MAX_HOP_ENTITIES:
                    entities.append(entity)
                    used.add(entity)
        if entities:
            return " ".join([query, *entities])
        expanded = fallback.expand(current, results)
        return expanded.expanded if expanded.expanded_terms else None

    return await _run_hops(query, search, options or MultiHopOptions(), next_query)

