"""Opinion store: opinions with confidence and evidence in bank/opinions.md.

File layout::

    # Opinions

    Opinions with confidence scores and evidence tracking.

    ## user

    ### 3f2a...

    > prefers short replies

    - **Confidence:** 0.7000
    - **Entities:** user
    - **Source:** bank/entities/user.md
    - **Recorded:** 2026-10-19T08:00:00+00:00
    - **Last Updated:** 2026-10-19T08:00:00+00:00

    **Supporting Evidence:**
    - 9b1c... (strength: 0.80, added: 2026-10-19T09:00:00+00:00)

Opinions are grouped under their first entity. Entity names escape ``,``
and ``\\`` with a backslash; evidence ids that contain whitespace or quotes
are written as JSON strings. A block that cannot be parsed is logged and
left out of the loaded set, and its text is written back unchanged on the
next save.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from memoria.errors import InvalidNameError
from memoria.memory.confidence import (
    ConfidenceUpdate,
    calculate_confidence_update,
    detect_conflicts,
    update_opinion_confidence,
)
from memoria.memory.models import (
    Conflict,
    DateRange,
    Evidence,
    Fact,
    OpinionState,
    format_timestamp,
    normalize_name,
    parse_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)

GENERAL_SECTION = "general"
NO_OPINIONS = "_No opinions recorded yet._"

_FIELD_RE = re.compile(r"^- \*\*(?P<field>[A-Za-z ]+):\*\* ?(?P<value>.*)$")
_EVIDENCE_RE = re.compile(
    r'^- (?P<id>"(?:[^"\\]|\\.)*"|\S+) '
    r"\(strength: (?P<strength>[0-9.]+)(?:, added: (?P<added>[^)]+))?\)$"
)
# Ids matching this are written bare; anything else is written as a JSON string.
_PLAIN_ID_RE = re.compile(r'[^\s"]+')


@dataclass
class OpinionUpdate:
    """Outcome of ``OpinionStore.update_confidence``."""

    opinion: OpinionState
    update: ConfidenceUpdate


@dataclass
class UnparsedBlock:
    """Raw lines of an opinion block that could not be read, kept for the next save."""

    fact_id: str
    section: str
    lines: list[str]


@dataclass
class OpinionsFile:
    opinions: list[OpinionState] = field(default_factory=list)
    unparsed: list[UnparsedBlock] = field(default_factory=list)


def _entity_keys(names: Iterable[str]) -> set[str]:
    keys = set()
    for name in names:
        try:
            keys.add(normalize_name(name))
        except InvalidNameError:
            continue
    return keys


def _primary_section(opinion: OpinionState) -> str:
    for name in opinion.fact.entities:
        try:
            return normalize_name(name)
        except InvalidNameError:
            continue
    return GENERAL_SECTION


# ── Markdown rendering ────────────────────────────────────

def _join_entities(names: Iterable[str]) -> str:
    return ", ".join(name.replace("\\", "\\\\").replace(",", "\\,") for name in names)


def _split_entities(value: str) -> list[str]:
    names, current, escaped = [], [], False
    for char in value:
        if escaped:
            current.append(char)
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == ",":
            names.append("".join(current))
            current = []
        else:
            current.append(char)
    names.append("".join(current))
    return [name.strip() for name in names if name.strip()]


def _format_evidence_id(fact_id: str) -> str:
    return fact_id if _PLAIN_ID_RE.fullmatch(fact_id) else json.dumps(fact_id)


def _render_opinion(opinion: OpinionState) -> list[str]:
    fact = opinion.fact
    lines = [f"### {fact.id}", ""]
    lines += [f"> {part}" if part else ">" for part in fact.content.split("\n")]
    lines.append("")
    lines.append(f"- **Confidence:** {opinion.confidence:.4f}")
    lines.append(f"- **Entities:** {_join_entities(fact.entities)}")
    lines.append(f"- **Source:** {fact.source}")
    lines.append(f"- **Recorded:** {format_timestamp(fact.timestamp)}")
    if fact.date_range is not None:
        lines.append(f"- **From:** {format_timestamp(fact.date_range.start)}")
        if fact.date_range.end is not None:
            lines.append(f"- **Until:** {format_timestamp(fact.date_range.end)}")
    lines.append(f"- **Last Updated:** {format_timestamp(opinion.last_updated)}")
    lines.append("")

    for label, trail in (
        ("Supporting", opinion.supporting_evidence),
        ("Contradicting", opinion.contradicting_evidence),
    ):
        if not trail:
            continue
        lines.append(f"**{label} Evidence:**")
        for ev in trail:
            lines.append(
                f"- {_format_evidence_id(ev.fact_id)} (strength: {ev.strength:.2f}, "
                f"added: {format_timestamp(ev.added_at)})"
            )
        lines.append("")
    return lines


def render_opinions(
    opinions: list[OpinionState], unparsed: Iterable[UnparsedBlock] = ()
) -> str:
    """Render the opinions file. ``unparsed`` blocks are written back as they were read."""
    unparsed = list(unparsed)
    lines = ["# Opinions", "", "Opinions with confidence scores and evidence tracking.", ""]
    if not opinions and not unparsed:
        lines += [NO_OPINIONS, ""]
        return "\n".join(lines)

    sections: dict[str, list[str]] = {}
    for opinion in opinions:
        sections.setdefault(_primary_section(opinion), []).extend(_render_opinion(opinion))
    for block in unparsed:
        sections.setdefault(block.section, []).extend([*block.lines, ""])

    for section in sorted(sections):
        lines += [f"## {section}", ""]
        lines += sections[section]
    return "\n".join(lines).rstrip() + "\n"


# ── Markdown parsing ──────────────────────────────────────

def _build_opinion(fact_id: str, block: dict) -> OpinionState:
    fields: dict[str, str] = block["fields"]
    confidence = float(fields["confidence"])
    entities = _split_entities(fields.get("entities", ""))
    recorded = parse_timestamp(fields["recorded"])

    date_range = None
    if fields.get("from"):
        date_range = DateRange(
            start=parse_timestamp(fields["from"]),
            end=parse_timestamp(fields["until"]) if fields.get("until") else None,
        )

    supporting = [e for e in block["evidence"] if e.type == "supporting"]
    contradicting = [e for e in block["evidence"] if e.type == "contradicting"]
    fact = Fact(
        type="opinion",
        content="\n".join(block["content"]),
        entities=entities,
        confidence=confidence,
        source=fields.get("source", ""),
        id=fact_id,
        timestamp=recorded,
        date_range=date_range,
        supporting_evidence=[e.fact_id for e in supporting],
        contradicting_evidence=[e.fact_id for e in contradicting],
    )
    last_updated = fields.get("last updated")
    return OpinionState(
        fact=fact,
        confidence=confidence,
        supporting_evidence=supporting,
        contradicting_evidence=contradicting,
        last_updated=parse_timestamp(last_updated) if last_updated else recorded,
    )


def _parse_evidence(line: str, mode: str) -> Evidence:
    match = _EVIDENCE_RE.match(line)
    if not match:
        raise ValueError(f"bad evidence line {line!r}")
    fact_id = match.group("id")
    if fact_id.startswith('"'):
        fact_id = json.loads(fact_id)
    return Evidence(
        fact_id=fact_id,
        type=mode,
        strength=float(match.group("strength")),
        added_at=parse_timestamp(match.group("added")) if match.group("added") else utcnow(),
    )


def read_opinions(text: str) -> OpinionsFile:
    """Parse bank/opinions.md, keeping the raw lines of blocks that do not parse."""
    blocks: list[tuple[str, str, dict]] = []
    current: dict | None = None
    section = GENERAL_SECTION

    for raw in text.splitlines():
        line = raw.strip()
        if raw.startswith("### "):
            current = {
                "content": [], "fields": {}, "evidence": [], "mode": None, "errors": [],
                "lines": [raw],
            }
            blocks.append((line[4:].strip(), section, current))
            continue
        if raw.startswith("## ") or raw.startswith("# "):
            current = None
            if raw.startswith("## "):
                section = line[3:].strip() or GENERAL_SECTION
            continue
        if current is None:
            continue
        current["lines"].append(raw)
        if not line:
            continue

        if line.startswith(">"):
            current["content"].append(line[2:] if line.startswith("> ") else line[1:])
        elif line == "**Supporting Evidence:**":
            current["mode"] = "supporting"
        elif line == "**Contradicting Evidence:**":
            current["mode"] = "contradicting"
        elif current["mode"] and line.startswith("- "):
            try:
                current["evidence"].append(_parse_evidence(line, current["mode"]))
            except ValueError:
                current["errors"].append(line)
        else:
            match = _FIELD_RE.match(line)
            if match:
                current["fields"][match.group("field").lower()] = match.group("value").strip()

    result = OpinionsFile()
    for fact_id, block_section, block in blocks:
        raw_lines = block["lines"]
        while raw_lines and not raw_lines[-1].strip():
            raw_lines.pop()
        unparsed = UnparsedBlock(fact_id=fact_id, section=block_section, lines=raw_lines)
        if block["errors"]:
            logger.warning("Skipping opinion %s: bad evidence line %r", fact_id, block["errors"][0])
            result.unparsed.append(unparsed)
            continue
        try:
            result.opinions.append(_build_opinion(fact_id, block))
        except (KeyError, ValueError) as e:
            logger.warning("Skipping malformed opinion %s: %s", fact_id, e)
            result.unparsed.append(unparsed)
    return result


def parse_opinions(text: str) -> list[OpinionState]:
    """Parse bank/opinions.md; malformed blocks are skipped with a warning."""
    return read_opinions(text).opinions


# ── Store ─────────────────────────────────────────────────

class OpinionStore:
    """Persistence for opinion facts and their evidence trail."""

    def __init__(self, root: Path, clock: Callable[[], datetime] = utcnow) -> None:
        self.root = root
        self.bank_dir = root / "bank"
        self.opinions_file = self.bank_dir / "opinions.md"
        self._clock = clock

    def _read(self) -> OpinionsFile:
        try:
            text = self.opinions_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return OpinionsFile()
        return read_opinions(text)

    def load_opinions(self) -> list[OpinionState]:
        return self._read().opinions

    def save_opinions(self, opinions: list[OpinionState]) -> None:
        """Write ``opinions``; blocks in the file that could not be parsed are kept as they are."""
        ids = {opinion.fact.id for opinion in opinions}
        kept = [block for block in self._read().unparsed if block.fact_id not in ids]
        if kept:
            logger.warning(
                "Keeping %d unparsed opinion block(s) in %s as written", len(kept), self.opinions_file
            )
        self.bank_dir.mkdir(parents=True, exist_ok=True)
        self.opinions_file.write_text(render_opinions(opinions, kept), encoding="utf-8")
        logger.info("Saved %d opinions to %s", len(opinions), self.opinions_file)

    def get_opinion(self, fact_id: str) -> OpinionState | None:
        for opinion in self.load_opinions():
            if opinion.fact.id == fact_id:
                return opinion
        return None

    def add_opinion(self, fact: Fact, initial_confidence: float | None = None) -> OpinionState:
        """Create or replace the opinion with ``fact.id``.

        ``initial_confidence`` wins over the fact's own confidence. Replacing
        an existing opinion keeps its evidence trail.

        Raises:
            ValueError: the fact is not an opinion.
        """
        if fact.type != "opinion":
            raise ValueError(f"Fact must be of type 'opinion', got {fact.type!r}")

        confidence = initial_confidence if initial_confidence is not None else fact.confidence
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"Confidence out of range: {confidence}")
        fact.confidence = confidence
        now = self._clock()

        opinions = self.load_opinions()
        existing = next((o for o in opinions if o.fact.id == fact.id), None)
        if existing is not None:
            fact.supporting_evidence = [e.fact_id for e in existing.supporting_evidence]
            fact.contradicting_evidence = [e.fact_id for e in existing.contradicting_evidence]
            existing.fact = fact
            existing.confidence = confidence
            existing.last_updated = now
            self.save_opinions(opinions)
            return existing

        opinion = OpinionState(fact=fact, confidence=confidence, last_updated=now)
        opinions.append(opinion)
        self.save_opinions(opinions)
        logger.info("Added opinion %s: %s", fact.id, fact.content[:50])
        return opinion

    def update_confidence(self, fact_id: str, evidence: Evidence) -> OpinionUpdate | None:
        """Apply one piece of evidence. Returns None when the opinion is unknown."""
        opinions = self.load_opinions()
        opinion = next((o for o in opinions if o.fact.id == fact_id), None)
        if opinion is None:
            logger.debug("No opinion %s to update", fact_id)
            return None

        before = opinion.confidence
        update = calculate_confidence_update(before, evidence.type, evidence.strength)
        update.evidence = evidence
        update_opinion_confidence(opinion, evidence, now=self._clock())
        self.save_opinions(opinions)

        logger.info(
            "Updated opinion %s: confidence %.2f -> %.2f", fact_id, before, opinion.confidence
        )
        return OpinionUpdate(opinion=opinion, update=update)

    def get_opinions_for_entities(self, names: Iterable[str]) -> list[OpinionState]:
        """Opinions mentioning any of the given entities (compared by normalized name)."""
        wanted = _entity_keys(names)
        return [o for o in self.load_opinions() if _entity_keys(o.fact.entities) & wanted]

    def detect_conflicts_for_entities(self, names: Iterable[str] | None = None) -> list[Conflict]:
        opinions = (
            self.load_opinions() if names is None else self.get_opinions_for_entities(names)
        )
        return detect_conflicts(opinions)
