"""Tests for wall-clock and business-hours calendars."""

from datetime import date, datetime, time, timedelta, timezone

import pytest

from config import SLAState
from sla.domain import (
    BusinessHoursCalendar,
    BusinessHoursConfig,
    DayScheduleConfig,
    SLACalculator,
    SLAConfig,
    WallClockCalendar,
)
from tests.factories import make_ticket

WORKWEEK = {day: [(time(9), time(17))] for day in range(5)}


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestWallClockCalendar:

    def test_full_span(self):
        calendar = WallClockCalendar()
        assert calendar.active_duration(utc(2024, 3, 6, 8), utc(2024, 3, 6, 10)) == timedelta(hours=2)

    def test_end_before_start_is_zero(self):
        calendar = WallClockCalendar()
        assert calendar.active_duration(utc(2024, 3, 6, 10), utc(2024, 3, 6, 8)) == timedelta(0)


class TestBusinessHoursCalendar:

    def test_counts_only_working_hours(self):
        calendar = BusinessHoursCalendar("UTC", WORKWEEK)
        # Wed 08:00 to 10:00, office opens at 09:00
        assert calendar.active_duration(utc(2024, 3, 6, 8), utc(2024, 3, 6, 10)) == timedelta(hours=1)

    def test_skips_weekend(self):
        calendar = BusinessHoursCalendar("UTC", WORKWEEK)
        # Fri 16:00 to Mon 10:00
        assert calendar.active_duration(utc(2024, 3, 8, 16), utc(2024, 3, 11, 10)) == timedelta(hours=2)

    def test_skips_holidays(self):
        calendar = BusinessHoursCalendar("UTC", WORKWEEK, holidays=[date(2024, 3, 6)])
        # Wed 10:00 to Thu 10:00 with Wednesday off
        assert calendar.active_duration(utc(2024, 3, 6, 10), utc(2024, 3, 7, 10)) == timedelta(hours=1)

    def test_lunch_break_excluded(self):
        schedule = {2: [(time(9), time(12)), (time(13), time(17))]}
        calendar = BusinessHoursCalendar("UTC", schedule)
        assert calendar.active_duration(utc(2024, 3, 6, 11), utc(2024, 3, 6, 14)) == timedelta(hours=2)

    def test_local_timezone(self):
        calendar = BusinessHoursCalendar("America/New_York", WORKWEEK)
        # 09:00 EST is 14:00 UTC
        assert calendar.active_duration(utc(2024, 3, 6, 13), utc(2024, 3, 6, 15)) == timedelta(hours=1)

    def test_paused_minutes_subtracted_and_floored(self):
        calendar = BusinessHoursCalendar("UTC", WORKWEEK)
        start, end = utc(2024, 3, 6, 9), utc(2024, 3, 6, 11)
        assert calendar.active_duration(start, end, paused_minutes=30) == timedelta(minutes=90)
        assert calendar.active_duration(start, end, paused_minutes=500) == timedelta(0)


class TestBusinessHoursConfig:

    def test_break_must_sit_inside_window(self):
        with pytest.raises(ValueError):
            DayScheduleConfig(start="09:00", end="17:00", break_start="08:00", break_end="10:00")

    def test_unknown_weekday_rejected(self):
        with pytest.raises(ValueError):
            BusinessHoursConfig(weekly_schedule={"funday": {"start": "09:00", "end": "17:00"}})

    def test_disabled_config_uses_wall_clock(self):
        assert isinstance(SLAConfig().build_calendar(), WallClockCalendar)

    def test_named_calendar(self):
        config = SLAConfig(calendars={
            "berlin": {"timezone": "Europe/Berlin", "weekly_schedule": {"mon": {"start": "08:00", "end": "16:00"}}},
        })

        named = config.build_calendar("berlin")

        assert isinstance(named, BusinessHoursCalendar)
        # Monday 2024-03-04, 08:00-16:00 Berlin is 07:00-15:00 UTC
        assert named.active_duration(utc(2024, 3, 4, 6), utc(2024, 3, 5, 6)) == timedelta(hours=8)
        assert isinstance(config.build_calendar("unknown"), WallClockCalendar)
        assert isinstance(config.build_calendar(None), WallClockCalendar)

    def test_overnight_ticket_not_breached_in_business_hours(self):
        """Urgent ticket opened Tue 16:00, checked Wed 11:00: 3 working hours, not 19."""
        config = SLAConfig(business_hours={"enabled": True, "timezone": "UTC"})
        now = utc(2024, 3, 6, 11)
        ticket = make_ticket(priority="Urgent", age=timedelta(hours=19), now=now)

        evaluation = SLACalculator.evaluate(ticket, config, now, calendar=config.build_calendar())

        assert evaluation.elapsed_minutes == pytest.approx(180)
        assert evaluation.state == SLAState.ON_TRACK
