"""Tests for the entity page codec."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from memoria.errors import MalformedRecordError
from memoria.memory.codec import decode_entity, encode_entity
from memoria.memory.models import (
    RELATION_TYPES,
    DateRange,
    EntityRecord,
    EntityRelationship,
    Fact,
)

T0 = datetime(2026, 10, 19, 8, 0, 0, tzinfo=timezone.utc)


def _full_record() -> EntityRecord:
    source = "bank/entities/alice-chen.md"
    facts = [
        Fact(type="world", content="Works at Acme", entities=["alice-chen"], source=source,
             id="f-world", timestamp=T0),
        Fact(type="experience", content="Shipped the billing API", entities=["alice-chen", "bob"],
             source=source, id="f-exp", timestamp=T0 + timedelta(hours=1),
             date_range=DateRange(T0 - timedelta(days=7), T0)),
        Fact(type="opinion", content="Prefers short replies", entities=["alice-chen"],
             confidence=0.75, source=source, id="f-op", timestamp=T0,
             supporting_evidence=["f-exp"], contradicting_evidence=["f-world"]),
        Fact(type="observation", content="Line one\nline two with a \\ backslash",
             entities=["alice-chen"], source="chat transcript (morning)", id="f-obs",
             timestamp=T0),
        Fact(type="summary", content="Senior engineer on payments", entities=["alice-chen"],
             source=source, id="f-sum", timestamp=T0,
             date_range=DateRange(T0)),
    ]
    relationships = [
        EntityRelationship(
            entity=f"target-{i}",
            relation=relation,
            description="pairs on the API" if i % 2 == 0 else None,
            established_at=T0 + timedelta(minutes=i),
            source_fact_id="f-exp" if i == 0 else None,
        )
        for i, relation in enumerate(RELATION_TYPES)
    ]
    return EntityRecord(
        name="alice-chen",
        display_name="Alice Chen",
        type="person",
        description="Backend engineer",
        facts=facts,
        relationships=relationships,
        last_updated=T0 + timedelta(days=1),
    )


class TestRoundTrip:
    def test_full_record(self):
        record = _full_record()
        decoded = decode_entity(encode_entity(record))
        assert decoded == record

    def test_confidence_two_decimals(self):
        record = _full_record()
        record.facts[2].confidence = 0.7349
        decoded = decode_entity(encode_entity(record))
        assert decoded.get_fact("f-op").confidence == pytest.approx(0.73)

    @pytest.mark.parametrize(
        "fact",
        [
            Fact(type="world", content="Benchmark result (c=0.95)", id="f-1", timestamp=T0),
            Fact(type="summary", content="See the wiki [source](notes.md)", id="f-2", timestamp=T0),
            Fact(type="world", content="Cited twice [source](a.md)", source="a.md", id="f-3",
                 timestamp=T0),
            Fact(type="opinion", content="Rated it (c=0.20)", confidence=0.9,
                 source="bank/entities/bob.md", id="f-4", timestamp=T0),
        ],
    )
    def test_content_that_looks_like_markers(self, fact: Fact):
        record = EntityRecord(name="bob", display_name="Bob", facts=[fact], last_updated=T0)
        decoded = decode_entity(encode_entity(record))
        assert decoded == record

    def test_evidence_for_id_with_spaces(self):
        fact = Fact(type="opinion", content="Likes tea", confidence=0.5, id="chat 12",
                    timestamp=T0, supporting_evidence=["msg 3"])
        record = EntityRecord(name="bob", display_name="Bob", facts=[fact], last_updated=T0)
        assert decode_entity(encode_entity(record)).get_fact("chat 12").supporting_evidence == [
            "msg 3"
        ]

    def test_empty_record(self):
        record = EntityRecord(name="bob", display_name="Bob", last_updated=T0)
        text = encode_entity(record)
        assert "_No facts recorded yet._" in text
        assert decode_entity(text) == record

    def test_page_is_readable(self):
        text = encode_entity(_full_record())
        assert text.startswith("---\n")
        assert "# Alice Chen" in text
        assert "## Relationships" in text
        assert "### Opinion" in text
        assert "- Prefers short replies (c=0.75)" in text
        assert "**Supporting f-op:**" in text


class TestDecode:
    def test_hand_written_page(self):
        text = (
            "# Bob\n\n"
            "**Type:** person\n"
            "**Last Updated:** 2026-10-01T10:00:00Z\n\n"
            "Backend developer.\n\n"
            "## Facts\n\n"
            "### World\n\n"
            "- Lives in Berlin\n"
            "- Likes tea (c=0.60)\n"
        )
        record = decode_entity(text, name="bob", default_source="bank/entities/bob.md")
        assert record.name == "bob"
        assert record.display_name == "Bob"
        assert record.type == "person"
        assert record.description == "Backend developer."
        assert record.last_updated == datetime(2026, 10, 1, 10, 0, tzinfo=timezone.utc)
        world, opinion = record.facts
        assert world.type == "world"
        assert world.content == "Lives in Berlin"
        assert world.source == "bank/entities/bob.md"
        assert world.timestamp == record.last_updated
        assert opinion.type == "opinion"
        assert opinion.confidence == pytest.approx(0.6)

    def test_broken_front_matter(self):
        with pytest.raises(MalformedRecordError):
            decode_entity("---\nname: [unclosed\n---\n# X\n")

    def test_broken_metadata_comment(self):
        text = "# X\n\n## Facts\n\n### World\n\n- fact <!-- {bad} -->\n"
        with pytest.raises(MalformedRecordError):
            decode_entity(text, name="x")

    def test_unknown_relationship_line_skipped(self):
        text = "# X\n\n## Relationships\n\n- just some note\n"
        record = decode_entity(text, name="x")
        assert record.relationships == []

    def test_no_name_at_all(self):
        with pytest.raises(MalformedRecordError):
            decode_entity("## Facts\n")
