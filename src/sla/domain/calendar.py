"""
Business calendars: turn a wall-clock span into SLA-active time.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta, timezone
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

if TYPE_CHECKING:
    from sla.domain.value_objects import BusinessHoursConfig


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BusinessCalendar(ABC):
    """Maps (start, end, paused minutes) onto active duration."""

    @abstractmethod
    def active_duration(
        self,
        start: datetime,
        end: datetime,
        paused_minutes: float = 0.0
    ) -> timedelta:
        """Active time between start and end, minus paused time, floored at zero."""


class WallClockCalendar(BusinessCalendar):
    """Every minute counts."""

    def active_duration(
        self,
        start: datetime,
        end: datetime,
        paused_minutes: float = 0.0
    ) -> timedelta:
        span = _as_utc(end) - _as_utc(start) - timedelta(minutes=paused_minutes or 0)
        return max(span, timedelta(0))


class BusinessHoursCalendar(BusinessCalendar):
    """
    Counts only time inside the weekly working schedule.

    Holidays contribute nothing. Paused minutes are subtracted from the
    in-hours total as a lump sum, the same approximation the wall-clock
    calendar uses.
    """

    def __init__(
        self,
        timezone_name: str,
        schedule: Dict[int, List[Tuple[time, time]]],
        holidays: Optional[Iterable[date]] = None,
    ):
        self._tz = ZoneInfo(timezone_name)
        self._schedule = schedule
        self._holidays = frozenset(holidays or ())

    @classmethod
    def from_config(cls, config: "BusinessHoursConfig") -> "BusinessHoursCalendar":
        return cls(
            timezone_name=config.timezone,
            schedule=config.schedule_by_weekday(),
            holidays=config.holidays,
        )

    def active_duration(
        self,
        start: datetime,
        end: datetime,
        paused_minutes: float = 0.0
    ) -> timedelta:
        start_utc, end_utc = _as_utc(start), _as_utc(end)
        if end_utc <= start_utc:
            return timedelta(0)

        total = timedelta(0)
        day = start_utc.astimezone(self._tz).date()
        last_day = end_utc.astimezone(self._tz).date()

        while day <= last_day:
            if day not in self._holidays:
                for open_at, close_at in self._schedule.get(day.weekday(), ()):
                    window_start = datetime.combine(day, open_at, tzinfo=self._tz).astimezone(timezone.utc)
                    window_end = datetime.combine(day, close_at, tzinfo=self._tz).astimezone(timezone.utc)
                    overlap = min(window_end, end_utc) - max(window_start, start_utc)
                    if overlap > timedelta(0):
                        total += overlap
            day += timedelta(days=1)

        total -= timedelta(minutes=paused_minutes or 0)
        return max(total, timedelta(0))
