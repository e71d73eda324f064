"""Tests for the importance scorer."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

import pytest

from memoria.memory.importance import (
    ImportanceRecord,
    ImportanceScorer,
    ImportanceWeights,
    compute_importance_score,
    importance_key,
    record_retrieval_for_results,
)

from conftest import T0, FakeClock


@dataclass
class Hit:
    locator: str
    start_line: int | None = None


@pytest.fixture
def scorer(tmp_path: Path, frozen_clock: FakeClock) -> ImportanceScorer:
    return ImportanceScorer(tmp_path, clock=frozen_clock)


class TestScore:
    def test_neutral_midpoint(self):
        assert compute_importance_score(ImportanceRecord(last_updated=T0), now=T0) == 0.5

    def test_citations_raise_score(self):
        low = compute_importance_score(ImportanceRecord(citation_count=1, last_updated=T0), now=T0)
        high = compute_importance_score(ImportanceRecord(citation_count=2, last_updated=T0), now=T0)
        assert 0.5 < low < high

    def test_corrections_lower_score(self):
        one = compute_importance_score(
            ImportanceRecord(user_correction_count=1, last_updated=T0), now=T0
        )
        two = compute_importance_score(
            ImportanceRecord(user_correction_count=2, last_updated=T0), now=T0
        )
        assert two < one < 0.5

    def test_extreme_counts_saturate(self):
        buried = compute_importance_score(
            ImportanceRecord(user_correction_count=100_000, last_updated=T0), now=T0
        )
        assert buried == pytest.approx(0.0)
        popular = compute_importance_score(
            ImportanceRecord(retrieval_count=100_000, last_updated=T0), now=T0
        )
        assert popular == pytest.approx(1.0)

    def test_recency_decay(self):
        record = ImportanceRecord(last_updated=T0)
        assert compute_importance_score(record, now=T0 + timedelta(days=10)) == pytest.approx(0.4)
        assert compute_importance_score(record, now=T0 + timedelta(days=60)) == 0.0

    def test_custom_weights(self):
        weights = ImportanceWeights(retrieval=0.0)
        record = ImportanceRecord(retrieval_count=10, last_updated=T0)
        assert compute_importance_score(record, weights, now=T0) == 0.5


class TestScorer:
    def test_unknown_key_is_neutral(self, scorer: ImportanceScorer):
        assert scorer.get_importance("memory/nothing.md") == 0.5

    def test_signals(self, scorer: ImportanceScorer):
        scorer.record_retrieval("a.md")
        scorer.record_retrieval("a.md")
        scorer.record_citation("a.md")
        scorer.record_user_correction("b.md")

        record = scorer.get_record("a.md")
        assert (record.retrieval_count, record.citation_count) == (2, 1)
        assert record.last_updated == T0
        assert scorer.get_importance("a.md") > 0.5 > scorer.get_importance("b.md")

    def test_top_keys(self, scorer: ImportanceScorer):
        scorer.record_citation("cited.md")
        scorer.record_retrieval("seen.md")
        scorer.record_user_correction("wrong.md")

        assert [key for key, _ in scorer.get_top_keys()] == ["cited.md", "seen.md", "wrong.md"]
        assert [key for key, _ in scorer.get_top_keys(limit=1)] == ["cited.md"]
        assert [key for key, _ in scorer.get_top_keys(min_score=0.5)] == ["cited.md", "seen.md"]

    def test_empty_results_are_noop(self, scorer: ImportanceScorer):
        assert record_retrieval_for_results(scorer, []) == 0
        assert scorer.get_top_keys() == []

    def test_results_keyed_by_line(self, scorer: ImportanceScorer):
        record_retrieval_for_results(scorer, [Hit("notes.md", 12), Hit("notes.md")])
        assert scorer.get_record("notes.md#L12").retrieval_count == 1
        assert scorer.get_record("notes.md").retrieval_count == 1


class TestPersistence:
    def test_save_and_reload(self, tmp_path: Path, scorer: ImportanceScorer, frozen_clock):
        scorer.record_citation("a.md")
        scorer.save()

        data = json.loads(scorer.store_path.read_text(encoding="utf-8"))
        assert data["a.md"]["citation_count"] == 1
        assert data["a.md"]["last_updated"] == "2026-10-19T08:00:00+00:00"

        reloaded = ImportanceScorer(tmp_path, clock=frozen_clock)
        assert reloaded.get_record("a.md").citation_count == 1

    def test_save_without_changes_writes_nothing(self, scorer: ImportanceScorer):
        scorer.save()
        assert not scorer.store_path.exists()

    def test_signals_before_load_are_merged(self, tmp_path: Path, frozen_clock):
        first = ImportanceScorer(tmp_path, clock=frozen_clock)
        first.record_retrieval("old.md")
        first.save()

        second = ImportanceScorer(tmp_path, clock=frozen_clock)
        second.record_retrieval("new.md")
        assert {key for key, _ in second.get_top_keys()} == {"old.md", "new.md"}

    def test_malformed_ledger(self, scorer: ImportanceScorer):
        scorer.bank_dir.mkdir(parents=True, exist_ok=True)
        scorer.store_path.write_text("{not json", encoding="utf-8")
        assert scorer.get_top_keys() == []
        assert scorer.get_importance("anything") == 0.5


def test_importance_key():
    assert importance_key("memory/2026-10-19.md") == "memory/2026-10-19.md"
    assert importance_key("memory/2026-10-19.md", 12) == "memory/2026-10-19.md#L12"
