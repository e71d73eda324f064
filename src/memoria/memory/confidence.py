"""Confidence engine: evidence-driven confidence updates and opinion conflicts.

Everything here is a pure function over in-memory records; persistence
lives in ``memoria.memory.opinions``.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime

from memoria.errors import InvalidNameError
from memoria.memory.models import (
    Conflict,
    Evidence,
    EvidenceType,
    Fact,
    OpinionState,
    normalize_name,
    utcnow,
)

SUPPORT_GAIN = 0.2
CONTRADICTION_LOSS = 0.3
CONTRADICTION_SIMILARITY = 0.3
INCONSISTENCY_SIMILARITY = 0.4
INCONSISTENCY_CONFIDENCE_GAP = 0.3
INCONSISTENCY_SEVERITY_FACTOR = 0.7

NEGATION_WORDS = frozenset(
    {"not", "no", "never", "none", "doesn't", "don't", "won't", "can't", "isn't", "aren't"}
)

_WORD_RE = re.compile(r"[a-z0-9][a-z0-9']*")


@dataclass
class ConfidenceUpdate:
    """Result of applying evidence to a confidence value."""

    confidence: float
    reason: str
    evidence: Evidence | None = None


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def calculate_confidence_update(
    current_confidence: float,
    evidence_type: EvidenceType,
    evidence_strength: float,
) -> ConfidenceUpdate:
    """Move confidence toward 1 (supporting) or 0 (contradicting).

    Supporting evidence has diminishing returns near 1; contradicting
    evidence bites harder the more confident the opinion is.
    """
    strength = _clamp(evidence_strength)
    if evidence_type == "supporting":
        delta = strength * (1 - current_confidence) * SUPPORT_GAIN
        reason = f"Supporting evidence (strength: {strength:.2f}) increases confidence"
    else:
        delta = -strength * current_confidence * CONTRADICTION_LOSS
        reason = f"Contradicting evidence (strength: {strength:.2f}) decreases confidence"
    return ConfidenceUpdate(confidence=_clamp(current_confidence + delta), reason=reason)


def calculate_confidence_from_evidence(
    initial_confidence: float, evidence: Iterable[Evidence]
) -> float:
    """Fold evidence into a confidence value, strongest item first."""
    confidence = _clamp(initial_confidence)
    for item in sorted(evidence, key=lambda e: e.strength, reverse=True):
        confidence = calculate_confidence_update(confidence, item.type, item.strength).confidence
    return confidence


def update_opinion_confidence(
    opinion: OpinionState, evidence: Evidence, now: datetime | None = None
) -> OpinionState:
    """Append evidence to the opinion's log and apply it to the current confidence."""
    if evidence.type == "supporting":
        opinion.supporting_evidence.append(evidence)
    else:
        opinion.contradicting_evidence.append(evidence)

    update = calculate_confidence_update(opinion.confidence, evidence.type, evidence.strength)
    opinion.confidence = update.confidence
    opinion.fact.confidence = update.confidence
    opinion.fact.supporting_evidence = [e.fact_id for e in opinion.supporting_evidence]
    opinion.fact.contradicting_evidence = [e.fact_id for e in opinion.contradicting_evidence]
    opinion.last_updated = now or utcnow()
    return opinion


def merge_evidence(first: Iterable[Evidence], second: Iterable[Evidence]) -> list[Evidence]:
    """Union by fact id, keeping the strongest item for each id."""
    merged: dict[str, Evidence] = {}
    for item in [*first, *second]:
        existing = merged.get(item.fact_id)
        if existing is None or item.strength > existing.strength:
            merged[item.fact_id] = item
    return list(merged.values())


# ── Conflict detection ────────────────────────────────────

def _words(text: str) -> set[str]:
    return {w for w in _WORD_RE.findall(text.lower()) if len(w) > 3}


def _has_negation(text: str) -> bool:
    return any(w in NEGATION_WORDS for w in _WORD_RE.findall(text.lower()))


def word_similarity(text1: str, text2: str) -> float:
    """Jaccard overlap of the two texts' longer words."""
    words1, words2 = _words(text1), _words(text2)
    union = words1 | words2
    return len(words1 & words2) / max(1, len(union))


def _entity_keys(fact: Fact) -> set[str]:
    keys = set()
    for name in fact.entities:
        try:
            keys.add(normalize_name(name))
        except InvalidNameError:
            continue
    return keys


def _shares_entities(fact1: Fact, fact2: Fact) -> bool:
    return bool(_entity_keys(fact1) & _entity_keys(fact2))


def are_contradictory(fact1: Fact, fact2: Fact) -> bool:
    """Exactly one side negates, and the two talk about the same thing."""
    if _has_negation(fact1.content) == _has_negation(fact2.content):
        return False
    if not _shares_entities(fact1, fact2):
        return False
    return word_similarity(fact1.content, fact2.content) > CONTRADICTION_SIMILARITY


def are_inconsistent(op1: OpinionState, op2: OpinionState) -> bool:
    """Same topic, noticeably different confidence."""
    if not _shares_entities(op1.fact, op2.fact):
        return False
    if word_similarity(op1.fact.content, op2.fact.content) <= INCONSISTENCY_SIMILARITY:
        return False
    return abs(op1.confidence - op2.confidence) > INCONSISTENCY_CONFIDENCE_GAP


def detect_conflicts(opinions: Sequence[OpinionState]) -> list[Conflict]:
    """Pairwise scan for contradictions and inconsistencies, most severe first."""
    conflicts: list[Conflict] = []
    for i, op1 in enumerate(opinions):
        for op2 in opinions[i + 1 :]:
            entities = tuple(sorted(set(op1.fact.entities) | set(op2.fact.entities)))
            gap = abs(op1.confidence - op2.confidence)
            if are_contradictory(op1.fact, op2.fact):
                conflicts.append(
                    Conflict(
                        fact_id1=op1.fact.id,
                        fact_id2=op2.fact.id,
                        type="contradiction",
                        severity=gap,
                        description=(
                            f'Opinions contradict each other: "{op1.fact.content}" '
                            f'vs "{op2.fact.content}"'
                        ),
                        entities=entities,
                    )
                )
            if are_inconsistent(op1, op2):
                conflicts.append(
                    Conflict(
                        fact_id1=op1.fact.id,
                        fact_id2=op2.fact.id,
                        type="inconsistency",
                        severity=gap * INCONSISTENCY_SEVERITY_FACTOR,
                        description=(
                            f'Opinions are inconsistent: "{op1.fact.content}" '
                            f'vs "{op2.fact.content}"'
                        ),
                        entities=entities,
                    )
                )
    conflicts.sort(key=lambda c: c.severity, reverse=True)
    return conflicts
