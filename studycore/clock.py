from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone


def utc(dt: datetime) -> datetime:
    """Return dt as an aware UTC datetime; naive values are taken as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


@dataclass
class FixedClock:
    """Clock frozen at a given instant; advance() moves it forward."""

    current: datetime

    def now(self) -> datetime:
        return utc(self.current)

    def advance(self, **kwargs: float) -> datetime:
        self.current = utc(self.current) + timedelta(**kwargs)
        return self.current


clock = SystemClock()
