"""Shared fixtures for the workflow engine test suite"""

from datetime import datetime, timedelta, timezone

import pytest


class FakeClock:
    """Deterministic clock injected into the engine"""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    """Controllable clock starting at 2024-01-01 09:00 UTC"""
    return FakeClock()
