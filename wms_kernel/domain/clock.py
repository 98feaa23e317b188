"""
Injectable clocks for lifecycle timestamps.

Status-history entries, ``closed_at`` and ``finalized_at`` use ``now()``
(UTC).  Calendar fields stamped by transitions (order date, ship date,
arrival, delivery, customs clearance) use ``today()``, which is the date
at the warehouse site: a container delivered at 23:30 in Los Angeles is
delivered that day, not the next UTC day.

Lifecycles and the services layer take a ``Clock`` in their constructor;
only ``SystemClock`` reads the wall clock.
"""

from abc import ABC, abstractmethod
from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo


class Clock(ABC):
    """Source of the current instant plus the site's calendar date."""

    def __init__(self, site_timezone: str = "UTC"):
        self.site_timezone = ZoneInfo(site_timezone)

    @abstractmethod
    def now(self) -> datetime:
        """Current instant, timezone-aware UTC."""

    def today(self) -> date:
        return self.now().astimezone(self.site_timezone).date()


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """
    Clock for tests and replays.

    Time stands still until moved with ``advance``, ``tick`` or
    ``set_time``.  Starts at 2024-01-01 12:00 UTC unless told otherwise.
    """

    START = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __init__(self, start: datetime | None = None, site_timezone: str = "UTC"):
        super().__init__(site_timezone)
        self._current = start or self.START
        if self._current.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware start time")

    def now(self) -> datetime:
        return self._current

    def set_time(self, moment: datetime) -> None:
        self._current = moment

    def advance(self, seconds: int | timedelta = 1) -> None:
        step = seconds if isinstance(seconds, timedelta) else timedelta(seconds=seconds)
        self._current += step

    def tick(self) -> datetime:
        """Move one second forward and return the new instant."""
        self.advance(1)
        return self._current
