"""Injectable wall clock.

Every status derivation, trend window and cache-age check asks a clock for
"now" instead of calling datetime directly, so tests can freeze time.
All values are naive UTC, matching how timestamps are stored.
"""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """System clock: current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class FrozenClock:
    """Clock that returns a fixed instant until moved.

    Used by tests and by one-off scripts that need to replay a past instant.
    """

    def __init__(self, now: datetime):
        self.now = to_naive_utc(now)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta) -> datetime:
        self.now = self.now + delta
        return self.now
