"""Capture engine: turn a finished conversation into entity facts.

Extraction is a regex heuristic behind the ``CandidateExtractor`` protocol, so
a model-backed extractor can replace it without touching the persistence loop.
Capture is best-effort: every failure below ``capture_from_agent_end`` ends up
as a ``skipped`` count and a log line.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from memoria.memory.models import Fact, FactType

if TYPE_CHECKING:
    from memoria.workspace import Workspace

logger = logging.getLogger(__name__)

MIN_MESSAGE_LENGTH = 10
MIN_CONTENT_LENGTH = 3
MAX_CONTENT_LENGTH = 500
DEDUP_PREFIX_LENGTH = 80

_FLAGS = re.IGNORECASE | re.MULTILINE

PREFERENCE_PATTERNS = [
    re.compile(r"\b(?:I prefer|I like|I love|I enjoy)\s+(.+?)(?:\.|$)", _FLAGS),
    re.compile(r"\b(?:I don't like|I dislike|I hate|don't)\s+(.+?)(?:\.|$)", _FLAGS),
    re.compile(r"\b(?:please do|please don't|always|never)\s+(.+?)(?:\.|$)", _FLAGS),
    re.compile(r"\b(?:prefer|want)\s+(?:my |me )?(.+?)(?:\.|$)", _FLAGS),
]

EXPERIENCE_PATTERNS = [
    re.compile(r"\b(?:we fixed|we did|we completed|fixed|completed)\s+(.+?)(?:\.|$)", _FLAGS),
    re.compile(r"\b(?:decided to|decided that)\s+(.+?)(?:\.|$)", _FLAGS),
]

_AT_MENTION_RE = re.compile(r"@([A-Za-z0-9_-]+)")
_WITH_NAME_RE = re.compile(r"\bwith\s+([A-Za-z0-9_-]+)\b", re.IGNORECASE)


@dataclass
class Candidate:
    """A fact the extractor thinks is worth keeping. Empty ``entities`` means "default"."""

    content: str
    type: FactType
    entities: list[str] = field(default_factory=list)


class CandidateExtractor(Protocol):
    def extract_candidates(self, text: str) -> list[Candidate]: ...


@dataclass
class CaptureResult:
    captured: int = 0
    skipped: int = 0


def message_text(content: Any) -> str:
    """Plain text of a message body: a string, or the text parts of a part list."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            part["text"]
            for part in content
            if isinstance(part, Mapping)
            and part.get("type") == "text"
            and isinstance(part.get("text"), str)
        ]
        return "\n".join(parts)
    return ""


def extract_entity_mentions(text: str) -> list[str]:
    """``@name`` tokens and ``with Name`` phrases, in order of first appearance."""
    names: dict[str, None] = {}
    for match in _AT_MENTION_RE.finditer(text):
        names.setdefault(match.group(1), None)
    for match in _WITH_NAME_RE.finditer(text):
        names.setdefault(match.group(1), None)
    return list(names)


class PatternExtractor:
    """Preference phrases become opinions; completion and decision phrases become experiences."""

    def extract_candidates(self, text: str) -> list[Candidate]:
        entities = extract_entity_mentions(text)
        candidates = []
        for fact_type, patterns in (
            ("opinion", PREFERENCE_PATTERNS),
            ("experience", EXPERIENCE_PATTERNS),
        ):
            for pattern in patterns:
                for match in pattern.finditer(text):
                    content = match.group(1).strip()
                    if MIN_CONTENT_LENGTH <= len(content) <= MAX_CONTENT_LENGTH:
                        candidates.append(Candidate(content, fact_type, list(entities)))
        return candidates


def _collect_candidates(
    messages: Iterable[Mapping[str, Any]],
    extractor: CandidateExtractor,
    default_entity: str,
) -> list[Candidate]:
    seen: set[str] = set()
    collected = []
    for message in messages:
        text = message_text(message.get("content"))
        if len(text) < MIN_MESSAGE_LENGTH:
            continue
        for candidate in extractor.extract_candidates(text):
            key = f"{candidate.type}:{candidate.content[:DEDUP_PREFIX_LENGTH]}"
            if key in seen:
                continue
            seen.add(key)
            if not candidate.entities:
                candidate.entities = [default_entity]
            collected.append(candidate)
    return collected


def capture_from_agent_end(
    workspace: Workspace,
    messages: list[Mapping[str, Any]],
    *,
    default_entity: str = "user",
    max_facts_per_run: int = 5,
    opinion_confidence: float = 0.7,
    run_id: str | None = None,
    session_key: str | None = None,
    success: bool | None = None,
    extractor: CandidateExtractor | None = None,
) -> CaptureResult:
    """Extract candidate facts from ``messages`` and persist up to ``max_facts_per_run``.

    Every candidate is counted once: as captured, as skipped because
    persisting it failed, or as skipped because the run's budget was spent.
    Never raises.
    """
    result = CaptureResult()
    if not messages:
        return result

    try:
        candidates = _collect_candidates(messages, extractor or PatternExtractor(), default_entity)
    except Exception as e:
        logger.error("Capture extraction failed (run %s): %s", run_id or "?", e)
        return result

    for candidate in candidates:
        if result.captured >= max_facts_per_run:
            result.skipped += 1
            continue
        primary = candidate.entities[0]
        try:
            fact = Fact(
                type=candidate.type,
                content=candidate.content,
                entities=candidate.entities,
                confidence=opinion_confidence if candidate.type == "opinion" else None,
            )
            if fact.type == "opinion":
                workspace.record_opinion(primary, fact)
            else:
                workspace.entities.add_fact_to_entity(primary, fact)
        except Exception as e:
            logger.debug("Skip fact for %r: %s", primary, e)
            result.skipped += 1
            continue
        result.captured += 1
        logger.debug("Captured %s fact for %s: %s", candidate.type, primary, candidate.content[:60])

    if result.captured:
        logger.info(
            "Capture: %d facts added, %d skipped (run %s, session %s, success=%s)",
            result.captured,
            result.skipped,
            run_id or "?",
            session_key or "?",
            success,
        )
    return result


def record_preference_change(workspace: Workspace, key: str) -> None:
    """Note that the user corrected the memory stored under ``key``."""
    workspace.importance.record_user_correction(key)
    logger.debug("Preference change recorded for key: %s", key)
