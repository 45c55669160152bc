"""Injectable UTC clock.

Services read time through a ``Clock`` so tests and the debug routes can
move time forward without touching stored data.
"""
from datetime import datetime, timedelta
from typing import Callable, Optional


class Clock:
    """Naive-UTC clock with an adjustable offset."""

    def __init__(self, source: Optional[Callable[[], datetime]] = None):
        self._source = source
        self._offset = timedelta(0)

    def now(self) -> datetime:
        base = self._source() if self._source is not None else datetime.utcnow()
        return base + self._offset

    def advance(self, delta: timedelta) -> datetime:
        """Shift the clock forward by ``delta`` and return the new time."""
        self._offset += delta
        return self.now()

    def reset(self) -> None:
        self._offset = timedelta(0)

    @property
    def offset(self) -> timedelta:
        return self._offset


class FrozenClock(Clock):
    """Clock pinned to a fixed instant until advanced."""

    def __init__(self, start: datetime):
        super().__init__(source=lambda: start)


clock = Clock()


def day_key(moment: datetime) -> str:
    """Calendar day string used in weekly log dates."""
    return moment.date().isoformat()
