"""
Shared test helpers: a controllable clock and timestamp conversion.
"""

from datetime import datetime, timedelta, timezone

EVENT_START = datetime(2024, 6, 1, 10, 0, 0, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock that only moves when a test advances it."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


def epoch_ms(dt: datetime) -> float:
    return dt.timestamp() * 1000.0
