"""Workspace: the stores of one memory workspace, built once and passed around.

There is no module-level registry: whoever owns the workspace constructs a
``Workspace`` and hands it to capture and retrieval. One owner writes at a
time; ``memoria.hooks`` serializes writers within a process.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from pathlib import Path

from memoria.config import MemoriaConfig
from memoria.memory.entities import EntityStore
from memoria.memory.importance import ImportanceScorer, record_retrieval_for_results
from memoria.memory.models import Evidence, Fact, utcnow
from memoria.memory.opinions import OpinionStore, OpinionUpdate
from memoria.retrieval.pipeline import EnhancedSearchOptions, enhanced_search
from memoria.retrieval.types import SearchFn, SearchResult

logger = logging.getLogger(__name__)


class Workspace:
    """Entity store, opinion store and importance ledger rooted at one directory."""

    def __init__(
        self,
        root: Path,
        config: MemoriaConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.root = Path(root).expanduser()
        self.config = config or MemoriaConfig(workspace_dir=self.root)
        self.entities = EntityStore(self.root, clock=clock)
        self.opinions = OpinionStore(self.root, clock=clock)
        self.importance = ImportanceScorer(
            self.root, weights=self.config.importance.weights(), clock=clock
        )

    def record_opinion(self, entity: str, fact: Fact) -> Fact:
        """Store an opinion on the entity page and in the opinion store.

        Returns the stored copy (with its assigned id).
        """
        if not fact.entities:
            fact = dataclasses.replace(fact, entities=[entity])
        stored = self.entities.add_fact_to_entity(entity, fact)
        self.opinions.add_opinion(stored)
        return stored

    def update_opinion_confidence(self, fact_id: str, evidence: Evidence) -> OpinionUpdate | None:
        """Apply evidence in the opinion store, then copy the result onto entity pages.

        The opinion store is authoritative; entity pages hold a synced copy.
        """
        result = self.opinions.update_confidence(fact_id, evidence)
        if result is not None:
            self.entities.sync_opinion(result.opinion)
        return result

    def record_retrievals(self, results: Iterable[SearchResult]) -> int:
        return record_retrieval_for_results(self.importance, results)

    async def search(
        self,
        query: str,
        search: SearchFn,
        options: EnhancedSearchOptions | None = None,
    ) -> list[SearchResult]:
        """Enhanced search whose hits are counted in this workspace's importance ledger."""
        options = options or self.config.retrieval.search_options()
        return await enhanced_search(search, query, options, importance=self.importance)

    def save(self) -> None:
        """Persist buffered importance signals. Entity and opinion writes are immediate."""
        self.importance.save()
