from datetime import datetime, timedelta
from typing import Optional, Protocol
from zoneinfo import ZoneInfo

from .config import LOCAL_TIMEZONE


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall-clock time in the household timezone, as naive local time.

    Stored timestamps are naive local times so midnight and Monday boundaries
    line up with what the household sees.
    """

    def __init__(self, timezone: str = LOCAL_TIMEZONE):
        self.zone = ZoneInfo(timezone)

    def now(self) -> datetime:
        return datetime.now(self.zone).replace(tzinfo=None, microsecond=0)


class FixedClock:
    def __init__(self, current: Optional[datetime] = None):
        self.current = current or datetime(2025, 1, 1, 12, 0)

    def now(self) -> datetime:
        return self.current

    def set(self, current: datetime) -> None:
        self.current = current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


_system_clock = SystemClock()


def get_clock() -> Clock:
    return _system_clock


def local_now() -> datetime:
    """Default for bookkeeping timestamps, in the same local time as lifecycle ones."""
    return _system_clock.now()
