"""Tests for confidence updates and conflict detection."""

from __future__ import annotations

import pytest

from memoria.memory.confidence import (
    calculate_confidence_from_evidence,
    calculate_confidence_update,
    detect_conflicts,
    merge_evidence,
    update_opinion_confidence,
    word_similarity,
)
from memoria.memory.models import Evidence, Fact, OpinionState

from conftest import T0


def _opinion(fact_id: str, content: str, confidence: float, entities: list[str]) -> OpinionState:
    fact = Fact(type="opinion", content=content, entities=entities, confidence=confidence, id=fact_id)
    return OpinionState(fact=fact, confidence=confidence)


class TestConfidenceUpdate:
    @pytest.mark.parametrize("start", [0.01, 0.25, 0.5, 0.75, 0.99])
    def test_monotonic(self, start: float):
        up = calculate_confidence_update(start, "supporting", 0.8).confidence
        down = calculate_confidence_update(start, "contradicting", 0.8).confidence
        assert start < up <= 1.0
        assert 0.0 <= down < start

    def test_formulas(self):
        assert calculate_confidence_update(0.5, "supporting", 1.0).confidence == pytest.approx(0.6)
        assert calculate_confidence_update(0.5, "contradicting", 1.0).confidence == pytest.approx(0.35)

    def test_bounds(self):
        assert calculate_confidence_update(1.0, "supporting", 1.0).confidence == 1.0
        assert calculate_confidence_update(0.0, "contradicting", 1.0).confidence == 0.0
        assert calculate_confidence_update(0.5, "supporting", 5.0).confidence <= 1.0

    def test_reason_mentions_strength(self):
        update = calculate_confidence_update(0.5, "supporting", 0.8)
        assert "0.80" in update.reason


class TestAggregation:
    def test_strongest_first(self):
        evidence = [
            Evidence(fact_id="weak", type="supporting", strength=0.2),
            Evidence(fact_id="strong", type="contradicting", strength=0.9),
        ]
        # 0.5 -> 0.365 (contradicting 0.9) -> 0.3904 (supporting 0.2)
        assert calculate_confidence_from_evidence(0.5, evidence) == pytest.approx(0.3904)

    def test_no_evidence(self):
        assert calculate_confidence_from_evidence(0.42, []) == pytest.approx(0.42)

    def test_update_opinion_applies_one_item(self):
        opinion = _opinion("op", "likes tea", 0.5, ["user"])
        opinion.supporting_evidence.append(Evidence(fact_id="old", type="supporting", strength=1.0))

        update_opinion_confidence(
            opinion, Evidence(fact_id="new", type="supporting", strength=1.0), now=T0
        )
        assert opinion.confidence == pytest.approx(0.6)
        assert opinion.fact.confidence == pytest.approx(0.6)
        assert opinion.fact.supporting_evidence == ["old", "new"]
        assert opinion.last_updated == T0

    def test_merge_keeps_strongest(self):
        a = [Evidence(fact_id="x", type="supporting", strength=0.3)]
        b = [
            Evidence(fact_id="x", type="supporting", strength=0.7),
            Evidence(fact_id="y", type="contradicting", strength=0.1),
        ]
        merged = {e.fact_id: e.strength for e in merge_evidence(a, b)}
        assert merged == {"x": 0.7, "y": 0.1}


class TestConflicts:
    def test_contradiction_and_inconsistency(self):
        a = _opinion("a", "Alice likes working remotely from home", 0.9, ["alice"])
        b = _opinion("b", "Alice does not like working remotely from home", 0.2, ["Alice"])

        conflicts = detect_conflicts([a, b])
        assert [c.type for c in conflicts] == ["contradiction", "inconsistency"]
        assert conflicts[0].severity == pytest.approx(0.7)
        assert conflicts[1].severity == pytest.approx(0.49)

    def test_symmetry(self):
        a = _opinion("a", "Alice likes working remotely from home", 0.9, ["alice"])
        b = _opinion("b", "Alice does not like working remotely from home", 0.2, ["alice"])

        def view(conflicts):
            return sorted(
                (c.type, frozenset((c.fact_id1, c.fact_id2)), round(c.severity, 9))
                for c in conflicts
            )

        assert view(detect_conflicts([a, b])) == view(detect_conflicts([b, a]))

    def test_needs_shared_entity(self):
        a = _opinion("a", "Alice likes working remotely from home", 0.9, ["alice"])
        b = _opinion("b", "Alice does not like working remotely from home", 0.2, ["bob"])
        assert detect_conflicts([a, b]) == []

    def test_unrelated_opinions(self):
        a = _opinion("a", "Prefers green tea in the morning", 0.9, ["user"])
        b = _opinion("b", "Never schedule meetings on Friday", 0.1, ["user"])
        assert detect_conflicts([a, b]) == []

    def test_word_similarity(self):
        assert word_similarity("short replies please", "short replies please") == 1.0
        assert word_similarity("", "") == 0.0
