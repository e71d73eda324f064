"""Entity page codec: EntityRecord <-> Markdown with YAML front matter.

Page layout::

    ---
    name: alice-chen
    display_name: Alice Chen
    type: person
    updated: '2026-10-19T08:00:00+00:00'
    ---

    # Alice Chen

    ## Relationships

    - **works_with** [bob](./bob.md): pairs on the API <!-- {"at": "..."} -->

    ## Facts

    ### Opinion

    - prefers short replies (c=0.70) [source](bank/entities/alice-chen.md) <!-- {"id": "...", "type": "opinion", ...} -->

    ## Evidence

    **Supporting <fact id>:**
    - <evidence fact id>

The visible text is for people; the trailing HTML comment carries the fields a
reader does not need to see. Pages written by hand (no comments, no front
matter) still decode.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime

import frontmatter
import yaml

from memoria.errors import InvalidNameError, MalformedRecordError
from memoria.memory.models import (
    FACT_TYPES,
    DateRange,
    EntityRecord,
    EntityRelationship,
    Fact,
    format_timestamp,
    new_fact_id,
    normalize_name,
    parse_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)

TYPE_ORDER = ("world", "experience", "opinion", "observation", "summary")
NO_FACTS = "_No facts recorded yet._"

_META_OPEN = " <!-- {"
_META_CLOSE = "} -->"
_LINKABLE = re.compile(r"[^\s()]+")
_SOURCE_RE = re.compile(r"^(?P<body>.*?) \[source\]\((?P<src>[^\s()]+)\)$")
_CONFIDENCE_RE = re.compile(r"^(?P<body>.*?) \(c=(?P<c>[0-9.]+)\)$")
_RELATION_RE = re.compile(
    r"^- \*\*(?P<relation>[a-z_]+)\*\* \[(?P<label>[^\]]*)\]\(\./(?P<entity>[^)]+)\.md\)"
    r"(?:: (?P<desc>.*))?$"
)
_EVIDENCE_HEADER_RE = re.compile(r"^\*\*(?P<kind>Supporting|Contradicting) (?P<id>.+):\*\*$")
_LEGACY_TYPE = "**Type:**"
_LEGACY_UPDATED = "**Last Updated:**"


# ── Escaping ──────────────────────────────────────────────

def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def _unescape(text: str) -> str:
    return re.sub(r"\\(\\|n)", lambda m: "\n" if m.group(1) == "n" else "\\", text)


def _render_meta(meta: dict) -> str:
    raw = json.dumps(meta, ensure_ascii=False).replace("-->", "--\\u003e")
    return f" <!-- {raw} -->"


def _split_meta(text: str) -> tuple[str, dict]:
    """Separate a trailing metadata comment from the visible part of a bullet."""
    marker = text.rfind(_META_OPEN)
    if marker < 0 or not text.endswith(_META_CLOSE):
        return text, {}
    raw = text[marker + len(" <!-- ") : -len(" -->")]
    try:
        meta = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedRecordError(f"Unreadable metadata comment: {raw!r}") from e
    if not isinstance(meta, dict):
        raise MalformedRecordError(f"Metadata comment is not an object: {raw!r}")
    return text[:marker], meta


# ── Encoding ──────────────────────────────────────────────

def _render_relationship(rel: EntityRelationship) -> str:
    line = f"- **{rel.relation}** [{rel.entity}](./{rel.entity}.md)"
    if rel.description:
        line += f": {_escape(rel.description)}"
    meta: dict = {"at": format_timestamp(rel.established_at)}
    if rel.source_fact_id:
        meta["fact"] = rel.source_fact_id
    return line + _render_meta(meta)


def _render_fact(fact: Fact) -> str:
    line = f"- {_escape(fact.content)}"
    if fact.confidence is not None:
        line += f" (c={fact.confidence:.2f})"
    meta: dict = {
        "id": fact.id,
        "type": fact.type,
        "at": format_timestamp(fact.timestamp),
        "entities": list(fact.entities),
    }
    if fact.date_range is not None:
        meta["from"] = format_timestamp(fact.date_range.start)
        if fact.date_range.end is not None:
            meta["to"] = format_timestamp(fact.date_range.end)
    if fact.source:
        meta["source"] = fact.source
        if _LINKABLE.fullmatch(fact.source):
            line += f" [source]({fact.source})"
    return line + _render_meta(meta)


def encode_entity(record: EntityRecord) -> str:
    """Render an entity record as a Markdown page with YAML front matter."""
    lines: list[str] = [f"# {record.display_name}", ""]

    if record.relationships:
        lines += ["## Relationships", ""]
        lines += [_render_relationship(rel) for rel in record.relationships]
        lines.append("")

    lines += ["## Facts", ""]
    if not record.facts:
        lines += [NO_FACTS, ""]
    for fact_type in TYPE_ORDER:
        facts = [f for f in record.facts if f.type == fact_type]
        if not facts:
            continue
        lines += [f"### {fact_type.capitalize()}", ""]
        lines += [_render_fact(f) for f in facts]
        lines.append("")

    with_evidence = [
        f
        for f in record.facts
        if f.type == "opinion" and (f.supporting_evidence or f.contradicting_evidence)
    ]
    if with_evidence:
        lines += ["## Evidence", ""]
        for fact in with_evidence:
            for label, ids in (
                ("Supporting", fact.supporting_evidence),
                ("Contradicting", fact.contradicting_evidence),
            ):
                if ids:
                    lines.append(f"**{label} {fact.id}:**")
                    lines += [f"- {evidence_id}" for evidence_id in ids]
                    lines.append("")

    metadata: dict = {
        "name": record.name,
        "display_name": record.display_name,
        "type": record.type,
    }
    if record.description:
        metadata["description"] = record.description
    metadata["updated"] = format_timestamp(record.last_updated)

    post = frontmatter.Post("\n".join(lines).rstrip() + "\n", **metadata)
    return frontmatter.dumps(post, sort_keys=False) + "\n"


# ── Decoding ──────────────────────────────────────────────

def _parse_relationship(line: str) -> EntityRelationship | None:
    text, meta = _split_meta(line)
    match = _RELATION_RE.match(text)
    if not match:
        logger.warning("Skipping unrecognized relationship line: %s", line)
        return None
    desc = match.group("desc")
    try:
        return EntityRelationship(
            entity=match.group("entity"),
            relation=match.group("relation"),
            description=_unescape(desc) if desc else None,
            established_at=parse_timestamp(meta["at"]) if "at" in meta else utcnow(),
            source_fact_id=meta.get("fact"),
        )
    except ValueError as e:
        raise MalformedRecordError(f"Invalid relationship {line!r}: {e}") from e


def _strip_known_markers(text: str, meta: dict) -> tuple[str, str, str | None, float | None]:
    """Markers on a line this codec wrote: the comment says which ones are present."""
    fact_type = meta["type"]
    source = meta.get("source")
    if source and _LINKABLE.fullmatch(source) and text.endswith(f" [source]({source})"):
        text = text[: -len(f" [source]({source})")]

    confidence = None
    if fact_type == "opinion":
        match = _CONFIDENCE_RE.match(text)
        if match:
            text = match.group("body")
            confidence = float(match.group("c"))
    return text, fact_type, source, confidence


def _strip_guessed_markers(
    text: str, meta: dict, subsection: str | None
) -> tuple[str, str, str | None, float | None]:
    """Markers on a hand-written line: a ``(c=...)`` suffix makes it an opinion."""
    source = meta.get("source")
    match = _SOURCE_RE.match(text)
    if match:
        text = match.group("body")
        source = source or match.group("src")

    confidence = None
    match = _CONFIDENCE_RE.match(text)
    if match:
        text = match.group("body")
        confidence = float(match.group("c"))

    fact_type = subsection if subsection in FACT_TYPES else "observation"
    if confidence is not None:
        fact_type = "opinion"
    return text, fact_type, source, confidence


def _parse_fact(
    line: str,
    subsection: str | None,
    *,
    default_source: str,
    default_time: datetime,
) -> Fact:
    text, meta = _split_meta(line[2:])
    try:
        if meta.get("type") in FACT_TYPES:
            text, fact_type, source, confidence = _strip_known_markers(text, meta)
        else:
            text, fact_type, source, confidence = _strip_guessed_markers(
                text, meta, subsection
            )

        date_range = None
        if "from" in meta:
            date_range = DateRange(
                start=parse_timestamp(meta["from"]),
                end=parse_timestamp(meta["to"]) if meta.get("to") else None,
            )

        return Fact(
            type=fact_type,
            content=_unescape(text),
            entities=[str(e) for e in meta.get("entities", [])],
            confidence=confidence,
            source=source or default_source,
            id=str(meta.get("id") or new_fact_id()),
            timestamp=parse_timestamp(meta["at"]) if "at" in meta else default_time,
            date_range=date_range,
        )
    except (TypeError, ValueError) as e:
        raise MalformedRecordError(f"Invalid fact {line!r}: {e}") from e


def decode_entity(
    text: str,
    name: str | None = None,
    default_source: str = "",
) -> EntityRecord:
    """Parse an entity page. ``name`` (the file slug) overrides the stored name.

    Raises:
        MalformedRecordError: front matter or a field cannot be parsed.
    """
    try:
        post = frontmatter.loads(text)
    except (yaml.YAMLError, ValueError) as e:
        raise MalformedRecordError(f"Unreadable front matter: {e}") from e
    meta = post.metadata

    heading: str | None = None
    legacy_type: str | None = None
    legacy_updated: str | None = None
    description_lines: list[str] = []
    relationships: list[EntityRelationship] = []
    fact_lines: list[tuple[str, str | None]] = []
    evidence: dict[str, dict[str, list[str]]] = {}

    section: str | None = None
    subsection: str | None = None
    evidence_target: tuple[str, str] | None = None

    for raw in post.content.splitlines():
        line = raw.strip()
        if not line:
            continue
        if raw.startswith("# "):
            heading = heading or line[2:].strip()
            continue
        if raw.startswith("## "):
            section = line[3:].strip().lower()
            subsection = None
            evidence_target = None
            continue
        if raw.startswith("### "):
            subsection = line[4:].strip().lower()
            continue

        if section is None:
            if line.startswith(_LEGACY_TYPE):
                legacy_type = line[len(_LEGACY_TYPE) :].strip()
            elif line.startswith(_LEGACY_UPDATED):
                legacy_updated = line[len(_LEGACY_UPDATED) :].strip()
            elif not line.startswith("**"):
                description_lines.append(line)
        elif section == "relationships" and line.startswith("- "):
            rel = _parse_relationship(line)
            if rel is not None:
                relationships.append(rel)
        elif section == "facts" and line.startswith("- "):
            fact_lines.append((line, subsection))
        elif section == "evidence":
            header = _EVIDENCE_HEADER_RE.match(line)
            if header:
                evidence_target = (header.group("id"), header.group("kind").lower())
            elif line.startswith("- ") and evidence_target:
                fact_id, kind = evidence_target
                evidence.setdefault(fact_id, {}).setdefault(kind, []).append(line[2:].strip())

    display_name = str(meta.get("display_name") or heading or meta.get("name") or name or "")
    if not display_name:
        raise MalformedRecordError("Entity page has neither a name nor a heading")
    try:
        slug = name or str(meta.get("name") or "") or normalize_name(display_name)
    except InvalidNameError as e:
        raise MalformedRecordError(str(e)) from e

    try:
        updated_raw = meta.get("updated") or legacy_updated
        last_updated = parse_timestamp(updated_raw) if updated_raw else utcnow()
    except ValueError as e:
        raise MalformedRecordError(f"Invalid updated timestamp: {e}") from e

    facts = [
        _parse_fact(line, sub, default_source=default_source, default_time=last_updated)
        for line, sub in fact_lines
    ]
    for fact in facts:
        trail = evidence.get(fact.id)
        if trail:
            fact.supporting_evidence = trail.get("supporting", [])
            fact.contradicting_evidence = trail.get("contradicting", [])

    description = meta.get("description")
    if description is None and description_lines:
        description = " ".join(description_lines)

    return EntityRecord(
        name=slug,
        display_name=display_name,
        type=str(meta.get("type") or legacy_type or "unknown"),
        description=str(description) if description is not None else None,
        facts=facts,
        relationships=relationships,
        last_updated=last_updated,
    )
