"""Data model for entity-centric memory: facts, entities, relationships, opinions."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Literal

from memoria.errors import InvalidNameError

FactType = Literal["world", "experience", "opinion", "summary", "observation"]
RelationType = Literal[
    "works_with",
    "knows",
    "related_to",
    "part_of",
    "owns",
    "created",
    "manages",
    "prefers",
    "dislikes",
    "custom",
]
EvidenceType = Literal["supporting", "contradicting"]
ConflictType = Literal["contradiction", "inconsistency", "overlap"]

FACT_TYPES: tuple[str, ...] = ("world", "experience", "opinion", "summary", "observation")
RELATION_TYPES: tuple[str, ...] = (
    "works_with",
    "knows",
    "related_to",
    "part_of",
    "owns",
    "created",
    "manages",
    "prefers",
    "dislikes",
    "custom",
)
SYMMETRIC_RELATIONS = frozenset({"works_with", "knows", "related_to"})

DEFAULT_OPINION_CONFIDENCE = 0.5


# ── Time helpers ──────────────────────────────────────────

def utcnow() -> datetime:
    """Current UTC time, truncated to whole seconds (the on-disk precision)."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: object) -> datetime:
    """Parse an ISO string, date, datetime or epoch seconds into aware UTC."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return ensure_utc(datetime.fromisoformat(text))
    raise ValueError(f"Cannot parse timestamp from {value!r}")


def format_timestamp(value: datetime) -> str:
    return ensure_utc(value).isoformat(timespec="seconds")


# ── Identity helpers ──────────────────────────────────────

def normalize_name(name: str) -> str:
    """Slug used as the sole entity key: lowercase, hyphen-separated alphanumerics."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    if not slug:
        raise InvalidNameError(f"Entity name {name!r} has no usable characters")
    return slug


def new_fact_id() -> str:
    return uuid.uuid4().hex


# ── Records ───────────────────────────────────────────────

@dataclass
class DateRange:
    """Time span a fact refers to (end is open when absent)."""

    start: datetime
    end: datetime | None = None


@dataclass
class Fact:
    """An atomic, timestamped, sourced statement.

    Attributes:
        type: One of world / experience / opinion / summary / observation.
        content: Self-contained narrative text of the fact.
        entities: Names of the entities the fact mentions.
        confidence: Present for opinions only, in [0, 1].
        source: Locator of the memory the fact came from.
        id: Unique within a workspace, assigned at creation.
        timestamp: When the fact was recorded.
        date_range: Optional period the fact refers to.
        supporting_evidence: Fact ids supporting an opinion.
        contradicting_evidence: Fact ids contradicting an opinion.
    """

    type: FactType
    content: str
    entities: list[str] = field(default_factory=list)
    confidence: float | None = None
    source: str = ""
    id: str = field(default_factory=new_fact_id)
    timestamp: datetime = field(default_factory=utcnow)
    date_range: DateRange | None = None
    supporting_evidence: list[str] = field(default_factory=list)
    contradicting_evidence: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.type not in FACT_TYPES:
            raise ValueError(f"Unknown fact type: {self.type!r}")
        if self.type == "opinion":
            if self.confidence is None:
                self.confidence = DEFAULT_OPINION_CONFIDENCE
            if not 0.0 <= self.confidence <= 1.0:
                raise ValueError(f"Confidence out of range: {self.confidence}")
        elif self.confidence is not None:
            raise ValueError(f"Only opinions carry a confidence (got type {self.type!r})")

    @property
    def effective_time(self) -> datetime:
        """The time a fact is about: its date range start, else its timestamp."""
        if self.date_range is not None:
            return self.date_range.start
        return self.timestamp


@dataclass
class EntityRelationship:
    """A directed link from one entity page to another."""

    entity: str
    relation: RelationType
    description: str | None = None
    established_at: datetime = field(default_factory=utcnow)
    source_fact_id: str | None = None

    def __post_init__(self) -> None:
        if self.relation not in RELATION_TYPES:
            raise ValueError(f"Unknown relation type: {self.relation!r}")


@dataclass
class EntityRecord:
    """One entity page: a named subject with accumulated facts and links."""

    name: str
    display_name: str
    type: str = "unknown"
    description: str | None = None
    facts: list[Fact] = field(default_factory=list)
    relationships: list[EntityRelationship] = field(default_factory=list)
    last_updated: datetime = field(default_factory=utcnow)

    def get_fact(self, fact_id: str) -> Fact | None:
        for fact in self.facts:
            if fact.id == fact_id:
                return fact
        return None


@dataclass
class EntitySummary:
    name: str
    display_name: str
    type: str
    summary: str
    key_facts: list[Fact]
    relationship_count: int
    last_updated: datetime


@dataclass(frozen=True)
class Evidence:
    """A reference from one fact to an opinion it supports or contradicts."""

    fact_id: str
    type: EvidenceType
    strength: float
    added_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if self.type not in ("supporting", "contradicting"):
            raise ValueError(f"Unknown evidence type: {self.type!r}")
        if not 0.0 <= self.strength <= 1.0:
            raise ValueError(f"Evidence strength out of range: {self.strength}")


@dataclass
class OpinionState:
    """An opinion fact with its current confidence and evidence trail."""

    fact: Fact
    confidence: float
    supporting_evidence: list[Evidence] = field(default_factory=list)
    contradicting_evidence: list[Evidence] = field(default_factory=list)
    last_updated: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Conflict:
    """Derived tension between two opinions; recomputed on demand, never stored."""

    fact_id1: str
    fact_id2: str
    type: ConflictType
    severity: float
    description: str
    entities: tuple[str, ...]
