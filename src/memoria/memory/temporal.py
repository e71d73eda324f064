"""Time-range queries over facts ("since", "until", "between", by day)."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from memoria.memory.models import DateRange, Fact, ensure_utc


@dataclass
class TemporalQuery:
    """Inclusive bounds on a fact's effective time. Missing bounds are open."""

    since: datetime | None = None
    until: datetime | None = None
    date_range: DateRange | None = None

    def is_empty(self) -> bool:
        return self.since is None and self.until is None and self.date_range is None


def in_range(moment: datetime, since: datetime | None, until: datetime | None) -> bool:
    moment = ensure_utc(moment)
    if since is not None and moment < ensure_utc(since):
        return False
    if until is not None and moment > ensure_utc(until):
        return False
    return True


def fact_matches_temporal_query(fact: Fact, query: TemporalQuery) -> bool:
    moment = fact.effective_time
    if not in_range(moment, query.since, query.until):
        return False
    if query.date_range is not None:
        return in_range(moment, query.date_range.start, query.date_range.end)
    return True


def filter_facts_by_temporal_query(facts: Iterable[Fact], query: TemporalQuery) -> list[Fact]:
    return [f for f in facts if fact_matches_temporal_query(f, query)]


def query_facts_since(facts: Iterable[Fact], since: datetime) -> list[Fact]:
    return filter_facts_by_temporal_query(facts, TemporalQuery(since=since))


def query_facts_until(facts: Iterable[Fact], until: datetime) -> list[Fact]:
    return filter_facts_by_temporal_query(facts, TemporalQuery(until=until))


def query_facts_between(facts: Iterable[Fact], start: datetime, end: datetime) -> list[Fact]:
    return filter_facts_by_temporal_query(facts, TemporalQuery(since=start, until=end))


def query_facts_in_date_range(
    facts: Iterable[Fact], start: datetime, end: datetime | None = None
) -> list[Fact]:
    return filter_facts_by_temporal_query(
        facts, TemporalQuery(date_range=DateRange(start=start, end=end))
    )


def most_recent_facts(facts: Iterable[Fact], limit: int = 10) -> list[Fact]:
    """Newest first by effective time."""
    return sorted(facts, key=lambda f: f.effective_time, reverse=True)[:limit]


def group_facts_by_date(facts: Iterable[Fact]) -> dict[str, list[Fact]]:
    """Group facts by UTC calendar day (``YYYY-MM-DD``), preserving input order."""
    grouped: dict[str, list[Fact]] = {}
    for fact in facts:
        key = ensure_utc(fact.effective_time).date().isoformat()
        grouped.setdefault(key, []).append(fact)
    return grouped


def facts_for_day(facts: Iterable[Fact], day: datetime) -> list[Fact]:
    return group_facts_by_date(facts).get(ensure_utc(day).date().isoformat(), [])


def facts_for_date_range(
    facts: Iterable[Fact], start: datetime, end: datetime
) -> dict[str, list[Fact]]:
    return group_facts_by_date(query_facts_between(facts, start, end))
