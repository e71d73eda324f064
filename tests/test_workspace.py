"""Tests for the workspace context object."""

from __future__ import annotations

from pathlib import Path

import pytest

from memoria.config import ImportanceConfig, MemoriaConfig
from memoria.memory.models import Evidence, Fact
from memoria.retrieval.bank import BankSearch
from memoria.workspace import Workspace

from conftest import FakeClock


@pytest.fixture
def workspace(tmp_path: Path, clock: FakeClock) -> Workspace:
    return Workspace(tmp_path, clock=clock)


class TestOpinions:
    def test_record_writes_both_stores(self, workspace: Workspace):
        stored = workspace.record_opinion(
            "alice", Fact(type="opinion", content="prefers pairing", confidence=0.7)
        )

        page = workspace.entities.get_entity("alice")
        assert page.get_fact(stored.id).confidence == pytest.approx(0.7)
        opinion = workspace.opinions.get_opinion(stored.id)
        assert opinion.fact.entities == ["alice"]
        assert opinion.fact.source == "bank/entities/alice.md"

    def test_update_syncs_entity_page(self, workspace: Workspace):
        stored = workspace.record_opinion(
            "alice", Fact(type="opinion", content="prefers pairing", entities=["alice"], confidence=0.7)
        )

        result = workspace.update_opinion_confidence(stored.id, Evidence("e1", "supporting", 1.0))
        assert result.opinion.confidence == pytest.approx(0.76)

        fact = workspace.entities.get_entity("alice").get_fact(stored.id)
        assert fact.confidence == pytest.approx(0.76)
        assert fact.supporting_evidence == ["e1"]

    def test_update_unknown_opinion(self, workspace: Workspace):
        assert workspace.update_opinion_confidence("missing", Evidence("e1", "supporting", 1.0)) is None


class TestSearch:
    @pytest.mark.asyncio
    async def test_hits_feed_importance(self, tmp_path: Path, workspace: Workspace):
        (tmp_path / "memory").mkdir()
        (tmp_path / "memory" / "2026-10-19.md").write_text(
            "websocket reconnect fixed\n", encoding="utf-8"
        )

        results = await workspace.search("websocket reconnect", BankSearch(tmp_path))

        assert results[0].locator == "memory/2026-10-19.md"
        assert results[0].original_score is not None
        assert workspace.importance.get_record("memory/2026-10-19.md#L1").retrieval_count == 1

        workspace.save()
        reopened = Workspace(tmp_path)
        assert reopened.importance.get_record("memory/2026-10-19.md#L1").retrieval_count == 1

    def test_config_weights_used(self, tmp_path: Path):
        config = MemoriaConfig(importance=ImportanceConfig(citation=0.0))
        workspace = Workspace(tmp_path, config=config)
        workspace.importance.record_citation("a.md")
        assert workspace.importance.get_importance("a.md") == pytest.approx(0.5)
