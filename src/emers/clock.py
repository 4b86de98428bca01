"""Clock collaborators used to timestamp events and compute stats windows."""

from __future__ import annotations

import datetime as dt
import time
from dataclasses import dataclass
from typing import Protocol


class Clock(Protocol):
    """Source of the current time."""

    def now(self) -> int:
        """Current time as Unix epoch seconds."""
        ...

    def today(self) -> dt.date:
        """Current calendar day."""
        ...


class SystemClock:
    """Wall-clock time of the running process."""

    def now(self) -> int:
        return int(time.time())

    def today(self) -> dt.date:
        return dt.date.today()


@dataclass(slots=True)
class FixedClock:
    """Clock frozen at a given instant, for replays and tests."""

    timestamp: int
    day: dt.date

    @classmethod
    def at(cls, day: dt.date) -> "FixedClock":
        """Clock frozen at midnight UTC of ``day``."""
        midnight = dt.datetime(day.year, day.month, day.day, tzinfo=dt.timezone.utc)
        return cls(timestamp=int(midnight.timestamp()), day=day)

    def now(self) -> int:
        return self.timestamp

    def today(self) -> dt.date:
        return self.day


__all__ = ["Clock", "SystemClock", "FixedClock"]
