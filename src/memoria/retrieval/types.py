"""Shared result type and the base-search calling convention."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Union


@dataclass
class SearchResult:
    """One hit from a base search.

    ``hop``/``query`` are filled in by multi-hop retrieval and
    ``original_score`` by re-ranking.
    """

    locator: str
    score: float
    snippet: str = ""
    start_line: int | None = None
    end_line: int | None = None
    source: str | None = None
    hop: int | None = None
    query: str | None = None
    original_score: float | None = None

    @property
    def key(self) -> tuple[str, int | None, int | None]:
        """Identity of the hit: locator plus line span."""
        return (self.locator, self.start_line, self.end_line)


# (query, limit) -> results, either plain or as a coroutine.
SearchFn = Callable[[str, int], Union[list[SearchResult], Awaitable[list[SearchResult]]]]


async def run_search(search: SearchFn, query: str, limit: int) -> list[SearchResult]:
    results = search(query, limit)
    if asyncio.iscoroutine(results):
        results = await results
    return list(results)
