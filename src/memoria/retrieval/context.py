"""Context-aware retrieval: fold conversation context into the query."""

from __future__ import annotations

import dataclasses
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from memoria.memory.capture import message_text
from memoria.retrieval.text import CONVERSATION_STOP_WORDS, keyword_terms, top_terms
from memoria.retrieval.types import SearchFn, SearchResult, run_search

RECENT_MESSAGES = 5
MAX_CONTEXT_TERMS = 5
MAX_ENTITIES = 10
ORIGINAL_QUERY_BOOST = 0.1

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


@dataclass
class ConversationContext:
    """What the conversation is about right now.

    ``recent_messages`` holds ``{"role": ..., "content": ...}`` mappings.
    """

    recent_messages: list[Mapping[str, Any]] = field(default_factory=list)
    intent: str | None = None
    entities: list[str] = field(default_factory=list)
    task: str | None = None


@dataclass
class ContextualizedQuery:
    original: str
    contextualized: str
    context_terms: list[str]
    confidence: float


def extract_keywords(messages: Sequence[Mapping[str, Any]], max_keywords: int = 3) -> list[str]:
    """Most frequent terms of the last few messages; user turns count double."""
    weights: dict[str, float] = {}
    for message in list(messages)[-RECENT_MESSAGES:]:
        weight = 2 if message.get("role") == "user" else 1
        for term in keyword_terms(message_text(message.get("content")), CONVERSATION_STOP_WORDS):
            weights[term] = weights.get(term, 0) + weight
    return top_terms(weights, max_keywords)


def contextualize_query(query: str, context: ConversationContext) -> ContextualizedQuery:
    """Append intent, conversation keywords, named entities and task words to ``query``."""
    terms: list[str] = []

    def add(term: str) -> None:
        if term and term not in terms:
            terms.append(term)

    if context.intent:
        add(context.intent)
    for keyword in extract_keywords(context.recent_messages):
        if len(terms) < MAX_CONTEXT_TERMS:
            add(keyword)
    for entity in context.entities[:3]:
        add(entity)
    if context.task:
        for word in [w for w in context.task.split() if len(w) > 3][:2]:
            add(word)

    contextualized = " ".join([query, *terms]) if terms else query
    return ContextualizedQuery(
        original=query,
        contextualized=contextualized,
        context_terms=terms,
        confidence=max(0.5, 1.0 - len(terms) * 0.1),
    )


async def context_aware_search(
    query: str,
    context: ConversationContext,
    search: SearchFn,
    limit: int = 10,
) -> list[SearchResult]:
    """Search with the contextualized query, favouring hits that contain the original."""
    contextualized = contextualize_query(query, context)
    results = await run_search(search, contextualized.contextualized, limit * 2)

    needle = query.lower()
    boosted = [
        dataclasses.replace(
            r,
            score=min(1.0, r.score + (ORIGINAL_QUERY_BOOST if needle in r.snippet.lower() else 0.0)),
        )
        for r in results
    ]
    boosted.sort(key=lambda r: r.score, reverse=True)
    return boosted[:limit]


def extract_entities_simple(text: str) -> list[str]:
    """Runs of capitalized words, e.g. ``"Alice Chen"``; at most ten, first-seen order."""
    entities: list[str] = []
    current: list[str] = []

    def flush() -> None:
        if current:
            entity = " ".join(current)
            if len(entity) > 2 and entity not in entities:
                entities.append(entity)
            current.clear()

    for word in text.split():
        cleaned = _NON_ALNUM.sub("", word)
        if len(cleaned) > 2 and cleaned[0].isupper():
            current.append(cleaned)
        else:
            flush()
    flush()
    return entities[:MAX_ENTITIES]
