"""Enhanced search: optional stages around a base ``search(query, limit)``.

Stage order: context augmentation -> query expansion -> multi-hop (or a
single search) -> re-ranking. A heuristic stage that fails is logged and
skipped; errors from the base search itself propagate unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from memoria.memory.importance import record_retrieval_for_results
from memoria.retrieval.context import ConversationContext, contextualize_query
from memoria.retrieval.expansion import LexiconExpander, QueryExpander
from memoria.retrieval.multihop import MultiHopOptions, multi_hop_retrieval
from memoria.retrieval.rerank import (
    RelevanceScorer,
    RerankOptions,
    rerank_results,
    rerank_with_scorer,
)
from memoria.retrieval.types import SearchFn, SearchResult, run_search

if TYPE_CHECKING:
    from memoria.memory.importance import ImportanceScorer

logger = logging.getLogger(__name__)


@dataclass
class ContextStage:
    enabled: bool = False
    context: ConversationContext | None = None


@dataclass
class ExpansionStage:
    enabled: bool = False
    max_terms: int = 3
    expander: QueryExpander | None = None


@dataclass
class MultiHopStage:
    enabled: bool = False
    max_hops: int = 2
    min_improvement: float = 0.05
    results_per_hop: int = 10


@dataclass
class RerankStage:
    enabled: bool = False
    top_k: int = 20
    min_score: float = 0.0
    scorer: RelevanceScorer | None = None


@dataclass
class EnhancedSearchOptions:
    """Per-stage switches. Everything off means one plain search of ``limit`` hits."""

    context: ContextStage = field(default_factory=ContextStage)
    expansion: ExpansionStage = field(default_factory=ExpansionStage)
    multi_hop: MultiHopStage = field(default_factory=MultiHopStage)
    rerank: RerankStage = field(default_factory=RerankStage)
    limit: int = 10


def _reporting(search: SearchFn, importance: ImportanceScorer | None) -> SearchFn:
    """Wrap ``search`` so every completed call counts as a retrieval of its hits."""
    if importance is None:
        return search

    async def wrapped(query: str, limit: int) -> list[SearchResult]:
        results = await run_search(search, query, limit)
        record_retrieval_for_results(importance, results)
        return results

    return wrapped


async def enhanced_search(
    search: SearchFn,
    query: str,
    options: EnhancedSearchOptions | None = None,
    importance: ImportanceScorer | None = None,
) -> list[SearchResult]:
    options = options or EnhancedSearchOptions()
    base = _reporting(search, importance)
    search_query = query

    if options.context.enabled and options.context.context is not None:
        try:
            search_query = contextualize_query(search_query, options.context.context).contextualized
        except Exception as e:
            logger.warning("Context augmentation skipped: %s", e)

    if options.expansion.enabled:
        expander = options.expansion.expander or LexiconExpander(options.expansion.max_terms)
        try:
            search_query = expander.expand(search_query).expanded
        except Exception as e:
            logger.warning("Query expansion skipped: %s", e)

    if options.multi_hop.enabled:
        results = await multi_hop_retrieval(
            search_query,
            base,
            MultiHopOptions(
                max_hops=options.multi_hop.max_hops,
                min_improvement=options.multi_hop.min_improvement,
                results_per_hop=options.multi_hop.results_per_hop,
            ),
        )
    else:
        limit = options.rerank.top_k * 2 if options.rerank.enabled else options.limit
        results = await run_search(base, search_query, limit)

    if options.rerank.enabled and results:
        rerank_options = RerankOptions(top_k=options.rerank.top_k, min_score=options.rerank.min_score)
        try:
            if options.rerank.scorer is not None:
                results = await rerank_with_scorer(
                    query, results, options.rerank.scorer, rerank_options
                )
            else:
                results = rerank_results(query, results, rerank_options)
        except Exception as e:
            logger.warning("Re-ranking skipped: %s", e)

    return results


# ── Shortcuts ─────────────────────────────────────────────

async def search_with_expansion(
    search: SearchFn,
    query: str,
    max_terms: int = 3,
    importance: ImportanceScorer | None = None,
) -> list[SearchResult]:
    options = EnhancedSearchOptions(expansion=ExpansionStage(enabled=True, max_terms=max_terms))
    return await enhanced_search(search, query, options, importance)


async def search_with_reranking(
    search: SearchFn,
    query: str,
    top_k: int = 20,
    min_score: float = 0.25,
    importance: ImportanceScorer | None = None,
) -> list[SearchResult]:
    options = EnhancedSearchOptions(
        rerank=RerankStage(enabled=True, top_k=top_k, min_score=min_score)
    )
    return await enhanced_search(search, query, options, importance)


async def search_with_multi_hop(
    search: SearchFn,
    query: str,
    max_hops: int = 2,
    importance: ImportanceScorer | None = None,
) -> list[SearchResult]:
    options = EnhancedSearchOptions(multi_hop=MultiHopStage(enabled=True, max_hops=max_hops))
    return await enhanced_search(search, query, options, importance)


async def search_with_context(
    search: SearchFn,
    query: str,
    context: ConversationContext,
    importance: ImportanceScorer | None = None,
) -> list[SearchResult]:
    options = EnhancedSearchOptions(context=ContextStage(enabled=True, context=context))
    return await enhanced_search(search, query, options, importance)
