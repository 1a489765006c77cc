"""Shared test fixtures and configuration."""
from datetime import datetime, timedelta, timezone

import pytest

from civicwatch.models import Report

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

# Johannesburg CBD
JHB_LAT, JHB_LNG = -26.2041, 28.0473

# One metre of latitude in degrees (R = 6371 km)
DEG_PER_M = 1 / 111194.9266


def make_report(
    id="r1",
    lat=JHB_LAT,
    lng=JHB_LNG,
    category="water",
    title="",
    description="",
    age_hours=2.0,
    upvotes=0,
):
    created = NOW - timedelta(hours=age_hours) if age_hours is not None else None
    return Report(
        id=id,
        lat=lat,
        lng=lng,
        category=category,
        title=title,
        description=description,
        created_at=created,
        upvote_count=upvotes,
    )


class ManualScheduler:
    """Deterministic scheduler: timers only fire when the test advances the clock."""

    def __init__(self):
        self.now = 0.0
        self._timers = []

    class _Handle:
        def __init__(self, due, fn):
            self.due = due
            self.fn = fn
            self.cancelled = False

        def cancel(self):
            self.cancelled = True

    def schedule(self, fn, delay_s):
        handle = self._Handle(self.now + delay_s, fn)
        self._timers.append(handle)
        return handle

    @property
    def armed(self):
        return [t for t in self._timers if not t.cancelled]

    def advance(self, seconds):
        self.now += seconds
        due = sorted((t for t in self._timers if not t.cancelled and t.due <= self.now), key=lambda t: t.due)
        for t in due:
            self._timers.remove(t)
            if not t.cancelled:
                t.fn()


@pytest.fixture
def scheduler():
    return ManualScheduler()
