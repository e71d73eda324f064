"""Shared fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

T0 = datetime(2026, 10, 19, 8, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Returns ``now`` and then moves it forward by ``step``."""

    def __init__(self, now: datetime = T0, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = now
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def frozen_clock() -> FakeClock:
    return FakeClock(step=timedelta(0))
