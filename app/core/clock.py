"""
Time source for the password-reset flow.

All expiry, cooldown and rate-limit comparisons read "now" from a Clock
instance instead of calling datetime directly, so the whole flow can be
driven deterministically in tests.
"""

import time
from datetime import datetime, timezone
from typing import Optional


class Clock:
    """Wall clock in UTC plus a monotonic timer for response padding."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


def as_aware_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes.

    SQLite drops tzinfo on DateTime(timezone=True) columns, so values read
    back from it are naive even though they were written in UTC.
    """
    if dt is None:
        return None
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


system_clock = Clock()
