"""Importance scorer: usage signals per memory key, persisted in bank/importance.json.

Keys are locators (``memory/2026-10-19.md``) or line-anchored locators
(``memory/2026-10-19.md#L12``). Signals are kept in memory until ``save()``.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Protocol

from memoria.memory.models import ensure_utc, format_timestamp, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 0.5
SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class ImportanceWeights:
    retrieval: float = 0.3
    citation: float = 0.5
    user_correction: float = -0.8
    recency_decay_per_day: float = 0.02


DEFAULT_WEIGHTS = ImportanceWeights()


@dataclass
class ImportanceRecord:
    retrieval_count: int = 0
    citation_count: int = 0
    user_correction_count: int = 0
    last_updated: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "retrieval_count": self.retrieval_count,
            "citation_count": self.citation_count,
            "user_correction_count": self.user_correction_count,
            "last_updated": format_timestamp(self.last_updated or utcnow()),
        }

    @classmethod
    def from_dict(cls, data: dict) -> ImportanceRecord:
        return cls(
            retrieval_count=int(data.get("retrieval_count", 0)),
            citation_count=int(data.get("citation_count", 0)),
            user_correction_count=int(data.get("user_correction_count", 0)),
            last_updated=parse_timestamp(data["last_updated"]) if data.get("last_updated") else None,
        )


class Locatable(Protocol):
    locator: str
    start_line: int | None


def importance_key(locator: str, start_line: int | None = None) -> str:
    return f"{locator}#L{start_line}" if start_line is not None else locator


def _sigmoid(x: float) -> float:
    if x >= 0:
        return 1 / (1 + math.exp(-x))
    z = math.exp(x)
    return z / (1 + z)


def compute_importance_score(
    record: ImportanceRecord,
    weights: ImportanceWeights = DEFAULT_WEIGHTS,
    now: datetime | None = None,
) -> float:
    """Sigmoid of the weighted signal counts, scaled down linearly with age.

    A record with no signals sits at the midpoint (0.5) when fresh.
    """
    now = now or utcnow()
    days = 0.0
    if record.last_updated is not None:
        elapsed = (ensure_utc(now) - ensure_utc(record.last_updated)).total_seconds()
        days = max(0.0, elapsed / SECONDS_PER_DAY)
    recency = max(0.0, 1 - weights.recency_decay_per_day * days)

    raw = (
        record.retrieval_count * weights.retrieval
        + record.citation_count * weights.citation
        + record.user_correction_count * weights.user_correction
    )
    normalized = _sigmoid(raw)
    return max(0.0, min(1.0, normalized * recency))


class ImportanceScorer:
    """In-memory importance ledger for one workspace, saved on demand."""

    def __init__(
        self,
        root: Path,
        weights: ImportanceWeights = DEFAULT_WEIGHTS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.bank_dir = root / "bank"
        self.store_path = self.bank_dir / "importance.json"
        self.weights = weights
        self._clock = clock
        self._records: dict[str, ImportanceRecord] = {}
        self._loaded = False
        self._dirty = False

    def load(self) -> dict[str, ImportanceRecord]:
        """Read the ledger once; in-memory signals recorded since win on conflict."""
        if self._loaded:
            return self._records
        self._loaded = True
        try:
            data = json.loads(self.store_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return self._records
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Failed to load importance store %s: %s", self.store_path, e)
            return self._records
        if not isinstance(data, dict):
            logger.warning("Ignoring importance store %s: not a JSON object", self.store_path)
            return self._records

        for key, raw in data.items():
            if key in self._records:
                continue
            try:
                self._records[key] = ImportanceRecord.from_dict(raw)
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping importance record %r: %s", key, e)
        return self._records

    def save(self) -> None:
        """Write the ledger if anything changed since the last save."""
        if not self._dirty:
            return
        self.bank_dir.mkdir(parents=True, exist_ok=True)
        payload = {key: record.to_dict() for key, record in self._records.items()}
        self.store_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        self._dirty = False
        logger.debug("Saved importance store to %s", self.store_path)

    def _touch(self, key: str) -> ImportanceRecord:
        self.load()
        record = self._records.get(key)
        if record is None:
            record = ImportanceRecord()
            self._records[key] = record
        record.last_updated = self._clock()
        self._dirty = True
        return record

    def record_retrieval(self, key: str) -> None:
        self._touch(key).retrieval_count += 1

    def record_citation(self, key: str) -> None:
        self._touch(key).citation_count += 1

    def record_user_correction(self, key: str) -> None:
        self._touch(key).user_correction_count += 1

    def get_record(self, key: str) -> ImportanceRecord | None:
        return self.load().get(key)

    def get_importance(self, key: str) -> float:
        """Score in [0, 1]; keys never seen score the neutral 0.5."""
        record = self.load().get(key)
        if record is None:
            return NEUTRAL_SCORE
        return compute_importance_score(record, self.weights, now=self._clock())

    def get_top_keys(self, limit: int = 50, min_score: float = 0.0) -> list[tuple[str, float]]:
        now = self._clock()
        scored = [
            (key, compute_importance_score(record, self.weights, now=now))
            for key, record in self.load().items()
        ]
        scored = [item for item in scored if item[1] >= min_score]
        scored.sort(key=lambda item: item[1], reverse=True)
        return scored[:limit]


def record_retrieval_for_results(scorer: ImportanceScorer, results: Iterable[Locatable]) -> int:
    """Count one retrieval per result. Returns how many keys were touched."""
    count = 0
    for result in results:
        scorer.record_retrieval(importance_key(result.locator, result.start_line))
        count += 1
    return count
