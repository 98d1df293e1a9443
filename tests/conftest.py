"""
Shared fixtures for authgate-core tests.
"""

from datetime import datetime, timedelta, timezone

import pytest


class FakeClock:
    """Controllable clock passed to stores in place of utcnow."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture
def t0():
    return datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(t0):
    return FakeClock(t0)


@pytest.fixture
def phone():
    from authgate_core.identity import Identifier

    return Identifier.create("+1 202 555 1234")


@pytest.fixture
def email():
    from authgate_core.identity import Identifier

    return Identifier.create("alice@example.com")


@pytest.fixture
def wall_clock():
    """Controllable clock starting at the current time, for backends with real key expiry."""
    return FakeClock(datetime.now(timezone.utc).replace(microsecond=0))
