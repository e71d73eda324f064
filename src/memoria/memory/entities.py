"""Entity store: CRUD and queries over entity pages in bank/entities/.

Each entity is one Markdown page named after its normalized slug. Every
mutation is a read-modify-write of that single page; there is no file
locking, so callers that share a workspace must serialize writes themselves.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from memoria.errors import AlreadyExistsError, InvalidNameError, NotFoundError
from memoria.memory.codec import decode_entity, encode_entity
from memoria.memory.models import (
    SYMMETRIC_RELATIONS,
    EntityRecord,
    EntityRelationship,
    EntitySummary,
    Fact,
    FactType,
    OpinionState,
    RelationType,
    new_fact_id,
    normalize_name,
    utcnow,
)
from memoria.memory.temporal import in_range

logger = logging.getLogger(__name__)

KEY_FACTS_LIMIT = 5


@dataclass
class EntityPatch:
    """Changes applied by ``EntityStore.update_entity``.

    Scalar fields left as None are not touched. ``remove_fact_ids`` is applied
    before ``add_facts``, so a fact can be replaced by id in one patch.
    ``remove_relationships`` holds ``(target entity, relation)`` pairs.
    """

    display_name: str | None = None
    type: str | None = None
    description: str | None = None
    add_facts: list[Fact] = field(default_factory=list)
    remove_fact_ids: list[str] = field(default_factory=list)
    add_relationships: list[EntityRelationship] = field(default_factory=list)
    remove_relationships: list[tuple[str, str]] = field(default_factory=list)


@dataclass
class EntityQuery:
    """Filter for ``EntityStore.query_entities``. Empty fields do not filter."""

    fact_type: FactType | None = None
    since: datetime | None = None
    until: datetime | None = None
    relation_type: RelationType | None = None
    limit: int | None = None


def _key_fact_order(fact: Fact) -> tuple:
    if fact.type == "opinion":
        return (0, -(fact.confidence or 0.0), -fact.timestamp.timestamp())
    return (1, 0.0, -fact.timestamp.timestamp())


class EntityStore:
    """Read/write access to entity pages."""

    def __init__(self, root: Path, clock: Callable[[], datetime] = utcnow) -> None:
        self.root = root
        self.entities_dir = root / "bank" / "entities"
        self._clock = clock
        self._ensure_initialized()

    def _ensure_initialized(self) -> None:
        self.entities_dir.mkdir(parents=True, exist_ok=True)

    # ── Paths & raw I/O ───────────────────────────────────────

    def _path_for(self, slug: str) -> Path:
        return self.entities_dir / f"{slug}.md"

    def source_for(self, name: str) -> str:
        """Workspace-relative locator of an entity page."""
        return f"bank/entities/{normalize_name(name)}.md"

    def _read(self, slug: str) -> EntityRecord | None:
        path = self._path_for(slug)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return decode_entity(text, name=slug, default_source=f"bank/entities/{slug}.md")
        except ValueError as e:
            logger.warning("Ignoring malformed entity page %s: %s", path, e)
            return None

    def _write(self, record: EntityRecord) -> None:
        self._path_for(record.name).write_text(encode_entity(record), encoding="utf-8")

    def _load_all(self) -> list[EntityRecord]:
        records = []
        for md_file in sorted(self.entities_dir.glob("*.md")):
            record = self._read(md_file.stem)
            if record is not None:
                records.append(record)
        records.sort(key=lambda r: r.last_updated, reverse=True)
        return records

    # ── CRUD ──────────────────────────────────────────────────

    def create_entity(
        self,
        name: str,
        display_name: str | None = None,
        type: str = "unknown",
        description: str | None = None,
    ) -> EntityRecord:
        """Create an empty entity page.

        Raises:
            AlreadyExistsError: a page for the normalized name already exists.
            InvalidNameError: the name has no usable characters.
        """
        slug = normalize_name(name)
        if self._path_for(slug).exists():
            raise AlreadyExistsError(f"Entity {name!r} already exists ({slug})")

        record = EntityRecord(
            name=slug,
            display_name=display_name or name,
            type=type or "unknown",
            description=description,
            last_updated=self._clock(),
        )
        self._write(record)
        logger.info("Created entity: %s (%s)", name, slug)
        return record

    def get_entity(self, name: str) -> EntityRecord | None:
        """Load an entity page; None when absent, unreadable or unnameable."""
        try:
            slug = normalize_name(name)
        except InvalidNameError:
            return None
        return self._read(slug)

    def update_entity(self, name: str, patch: EntityPatch) -> EntityRecord:
        """Apply a patch and persist. Always bumps ``last_updated``.

        Raises:
            NotFoundError: no entity with that name.
            AlreadyExistsError: an added fact reuses an id already on the page
                or repeated within the patch.
        """
        record = self.get_entity(name)
        if record is None:
            raise NotFoundError(f"Entity {name!r} not found")

        drop = set(patch.remove_fact_ids)
        taken = {f.id for f in record.facts if f.id not in drop}
        for fact in patch.add_facts:
            if not fact.id:
                continue
            if fact.id in taken:
                raise AlreadyExistsError(f"Fact {fact.id!r} already exists on entity {record.name!r}")
            taken.add(fact.id)

        now = self._clock()
        if patch.display_name is not None:
            record.display_name = patch.display_name
        if patch.type is not None:
            record.type = patch.type
        if patch.description is not None:
            record.description = patch.description

        if drop:
            record.facts = [f for f in record.facts if f.id not in drop]
        for fact in patch.add_facts:
            if not fact.id:
                fact.id = new_fact_id()
            record.facts.append(fact)

        record.relationships.extend(patch.add_relationships)
        if patch.remove_relationships:
            drop_links = set(patch.remove_relationships)
            record.relationships = [
                r for r in record.relationships if (r.entity, r.relation) not in drop_links
            ]

        record.last_updated = now
        self._write(record)
        logger.info("Updated entity: %s", record.name)
        return record

    def delete_entity(self, name: str) -> None:
        """Remove an entity page for good.

        Raises:
            NotFoundError: no entity with that name.
        """
        try:
            path = self._path_for(normalize_name(name))
        except InvalidNameError as e:
            raise NotFoundError(f"Entity {name!r} not found") from e
        try:
            path.unlink()
        except FileNotFoundError as e:
            raise NotFoundError(f"Entity {name!r} not found") from e
        logger.info("Deleted entity: %s", name)

    # ── Listing & queries ─────────────────────────────────────

    def list_entities(self) -> list[EntitySummary]:
        """Summaries of all entities, most recently updated first."""
        summaries = []
        for record in self._load_all():
            key_facts = sorted(record.facts, key=_key_fact_order)[:KEY_FACTS_LIMIT]
            summaries.append(
                EntitySummary(
                    name=record.name,
                    display_name=record.display_name,
                    type=record.type,
                    summary=record.description or f"Entity of type {record.type}",
                    key_facts=key_facts,
                    relationship_count=len(record.relationships),
                    last_updated=record.last_updated,
                )
            )
        return summaries

    def query_entities(self, query: EntityQuery | None = None) -> list[EntityRecord]:
        """Entities matching every given filter, in listing order."""
        query = query or EntityQuery()
        results: list[EntityRecord] = []

        for record in self._load_all():
            if query.fact_type and not any(f.type == query.fact_type for f in record.facts):
                continue

            if query.since is not None or query.until is not None:
                has_facts_in_range = any(
                    in_range(f.effective_time, query.since, query.until) for f in record.facts
                )
                if not has_facts_in_range and not in_range(
                    record.last_updated, query.since, query.until
                ):
                    continue

            if query.relation_type and not any(
                r.relation == query.relation_type for r in record.relationships
            ):
                continue

            results.append(record)

        if query.limit is not None:
            results = results[: query.limit]
        return results

    # ── Relationships & facts ─────────────────────────────────

    def link_entities(
        self,
        entity1: str,
        entity2: str,
        relation: RelationType,
        description: str | None = None,
        source_fact_id: str | None = None,
    ) -> None:
        """Record ``entity1 -relation-> entity2``; mirror it for symmetric kinds.

        Calling twice appends a second relationship entry.

        Raises:
            NotFoundError: either entity is missing.
        """
        first = self.get_entity(entity1)
        if first is None:
            raise NotFoundError(f"Entity {entity1!r} not found")
        second = self.get_entity(entity2)
        if second is None:
            raise NotFoundError(f"Entity {entity2!r} not found")

        now = self._clock()
        self.update_entity(
            first.name,
            EntityPatch(
                add_relationships=[
                    EntityRelationship(
                        entity=second.name,
                        relation=relation,
                        description=description,
                        established_at=now,
                        source_fact_id=source_fact_id,
                    )
                ]
            ),
        )
        if relation in SYMMETRIC_RELATIONS:
            self.update_entity(
                second.name,
                EntityPatch(
                    add_relationships=[
                        EntityRelationship(
                            entity=first.name,
                            relation=relation,
                            description=description,
                            established_at=now,
                            source_fact_id=source_fact_id,
                        )
                    ]
                ),
            )

    def add_fact_to_entity(self, name: str, fact: Fact) -> Fact:
        """Append a fact, creating the entity (type ``unknown``) when missing.

        The stored copy gets a fresh id, timestamp and source; it is returned.
        """
        if self.get_entity(name) is None:
            self.create_entity(name, type="unknown")

        stored = dataclasses.replace(
            fact,
            id=new_fact_id(),
            timestamp=self._clock(),
            source=self.source_for(name),
        )
        self.update_entity(name, EntityPatch(add_facts=[stored]))
        return stored

    def sync_opinion(self, state: OpinionState) -> int:
        """Copy an opinion's confidence and evidence ids onto entity pages holding it.

        Returns the number of pages rewritten.
        """
        updated = 0
        seen: set[str] = set()
        for entity in state.fact.entities:
            record = self.get_entity(entity)
            if record is None or record.name in seen:
                continue
            seen.add(record.name)
            fact = record.get_fact(state.fact.id)
            if fact is None:
                continue
            fact.confidence = state.confidence
            fact.supporting_evidence = [e.fact_id for e in state.supporting_evidence]
            fact.contradicting_evidence = [e.fact_id for e in state.contradicting_evidence]
            record.last_updated = self._clock()
            self._write(record)
            updated += 1
        if updated:
            logger.debug("Synced opinion %s to %d entity page(s)", state.fact.id, updated)
        return updated
