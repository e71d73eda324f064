"""Tests for time-range queries over facts."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from memoria.memory.models import DateRange, Fact
from memoria.memory.temporal import (
    TemporalQuery,
    facts_for_date_range,
    facts_for_day,
    filter_facts_by_temporal_query,
    group_facts_by_date,
    most_recent_facts,
    query_facts_between,
    query_facts_in_date_range,
    query_facts_since,
    query_facts_until,
)

from conftest import T0


def _fact(content: str, when: datetime, date_range: DateRange | None = None) -> Fact:
    return Fact(type="world", content=content, timestamp=when, date_range=date_range)


MONDAY = _fact("monday", T0)
TUESDAY = _fact("tuesday", T0 + timedelta(days=1))
FRIDAY = _fact("friday", T0 + timedelta(days=4))
# Recorded on Friday but about last month.
BACKDATED = _fact(
    "backdated",
    T0 + timedelta(days=4),
    DateRange(start=T0 - timedelta(days=30), end=T0 - timedelta(days=29)),
)
FACTS = [MONDAY, TUESDAY, FRIDAY, BACKDATED]


def _names(facts) -> list[str]:
    return [f.content for f in facts]


class TestRangeQueries:
    def test_since_is_inclusive(self):
        assert _names(query_facts_since(FACTS, T0 + timedelta(days=1))) == ["tuesday", "friday"]

    def test_until_is_inclusive(self):
        assert _names(query_facts_until(FACTS, T0)) == ["monday", "backdated"]

    def test_between(self):
        found = query_facts_between(FACTS, T0, T0 + timedelta(days=2))
        assert _names(found) == ["monday", "tuesday"]

    def test_date_range_uses_effective_time(self):
        found = query_facts_in_date_range(FACTS, T0 - timedelta(days=31))
        assert _names(found) == ["monday", "tuesday", "friday", "backdated"]
        found = query_facts_in_date_range(FACTS, T0 - timedelta(days=31), T0 - timedelta(days=1))
        assert _names(found) == ["backdated"]

    def test_empty_query_matches_all(self):
        query = TemporalQuery()
        assert query.is_empty()
        assert filter_facts_by_temporal_query(FACTS, query) == FACTS

    def test_naive_bounds_are_utc(self):
        naive = datetime(2026, 10, 20, 8, 0, 0)
        assert _names(query_facts_since(FACTS, naive)) == ["tuesday", "friday"]

    def test_other_timezone(self):
        plus_two = timezone(timedelta(hours=2))
        bound = datetime(2026, 10, 19, 10, 0, 0, tzinfo=plus_two)
        assert _names(query_facts_until([MONDAY, TUESDAY], bound)) == ["monday"]


class TestGrouping:
    def test_most_recent(self):
        assert _names(most_recent_facts(FACTS, limit=2)) == ["friday", "tuesday"]

    def test_group_by_date(self):
        grouped = group_facts_by_date(FACTS)
        assert list(grouped) == ["2026-10-19", "2026-10-20", "2026-10-23", "2026-09-19"]
        assert _names(grouped["2026-10-19"]) == ["monday"]

    def test_day(self):
        assert _names(facts_for_day(FACTS, T0 + timedelta(hours=10))) == ["monday"]
        assert facts_for_day(FACTS, T0 + timedelta(days=2)) == []

    def test_date_range_grouping(self):
        grouped = facts_for_date_range(FACTS, T0, T0 + timedelta(days=7))
        assert {day: _names(facts) for day, facts in grouped.items()} == {
            "2026-10-19": ["monday"],
            "2026-10-20": ["tuesday"],
            "2026-10-23": ["friday"],
        }
