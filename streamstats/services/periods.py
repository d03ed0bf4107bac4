"""
Period Helpers

Calendar boundaries for the rollup tiers and lookback windows for the
strength-score time ranges. All windows are half-open: [start, end).
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from enum import Enum
from zoneinfo import ZoneInfo

from streamstats.errors import InvalidTimeRangeError
from streamstats.services.analytics_models import Granularity


class TimeRange(str, Enum):
    LAST_24H = "24h"
    LAST_7D = "7d"
    LAST_30D = "30d"
    LAST_90D = "90d"
    LAST_3M = "3m"
    LAST_1Y = "1y"
    ALL = "all"

    @classmethod
    def parse(cls, value: "str | TimeRange") -> "TimeRange":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidTimeRangeError(value, cls.values()) from None

    @classmethod
    def values(cls) -> tuple[str, ...]:
        return tuple(member.value for member in cls)

    @property
    def days(self) -> int:
        """Nominal length in days, used for per-day play velocity."""
        return _DAYS_IN_RANGE[self]


_DAYS_IN_RANGE = {
    TimeRange.LAST_24H: 1,
    TimeRange.LAST_7D: 7,
    TimeRange.LAST_30D: 30,
    TimeRange.LAST_90D: 90,
    TimeRange.LAST_3M: 90,
    TimeRange.LAST_1Y: 365,
    TimeRange.ALL: 365 * 3,
}


@dataclass(frozen=True)
class Window:
    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def previous(self) -> "Window":
        """Equal-length window immediately preceding this one."""
        return Window(start=self.start - self.duration, end=self.start)


def get_timezone(name: str | None) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def day_window(day: date, tz: tzinfo = timezone.utc) -> Window:
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return Window(start=start, end=end)


def as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def week_start(day: date | datetime) -> date:
    """ISO week start (Monday) of the week containing ``day``."""
    day = as_date(day)
    return day - timedelta(days=day.weekday())


def week_end(start: date) -> date:
    return start + timedelta(days=6)


def month_start(day: date | datetime) -> date:
    return as_date(day).replace(day=1)


def month_end(start: date) -> date:
    last_day = calendar.monthrange(start.year, start.month)[1]
    return start.replace(day=last_day)


def year_bounds(year: int) -> tuple[date, date]:
    return date(year, 1, 1), date(year, 12, 31)


def first_week_start(day: date) -> date:
    """First Monday on or after ``day``."""
    return day + timedelta(days=(7 - day.weekday()) % 7)


def rollup_days(granularity: Granularity, start: date) -> tuple[date, date]:
    """
    Days summed into the rollup row of the period starting at ``start``.

    A week covers its seven days. Months and years hold the weeks that start
    inside them, so their days run from the first Monday of the period to
    the Sunday before the first Monday of the next period.
    """
    if granularity is Granularity.DAILY:
        return start, start
    if granularity is Granularity.WEEKLY:
        return start, week_end(start)
    if granularity is Granularity.MONTHLY:
        following = month_end(start) + timedelta(days=1)
    else:
        following = date(start.year + 1, 1, 1)
    return first_week_start(start), first_week_start(following) - timedelta(days=1)


def child_periods(granularity: Granularity, start: date) -> list[date]:
    """Start dates of the finer periods rolled into this one."""
    if granularity is Granularity.WEEKLY:
        return [start + timedelta(days=offset) for offset in range(7)]
    if granularity is Granularity.MONTHLY:
        first, last = start, month_end(start)
        monday = first_week_start(first)
        return [monday + timedelta(weeks=n) for n in range((last - monday).days // 7 + 1)]
    if granularity is Granularity.YEARLY:
        return [date(start.year, month, 1) for month in range(1, 13)]
    return []


def is_week_start(day: date) -> bool:
    return week_start(day) == day


def is_month_start(day: date) -> bool:
    return day.day == 1


def is_year_start(day: date) -> bool:
    return day.month == 1 and day.day == 1


def shift_months(moment: datetime, months: int) -> datetime:
    """Move ``moment`` by whole calendar months, clamping the day of month."""
    month_index = moment.year * 12 + (moment.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return moment.replace(year=year, month=month, day=min(moment.day, last_day))


def resolve_window(
    time_range: str | TimeRange,
    now: datetime,
    all_time_start: date = date(2020, 1, 1),
) -> Window:
    """
    Convert a time range into a lookback window ending at ``now``.

    Raises:
        InvalidTimeRangeError: if ``time_range`` is not a known range
    """
    time_range = TimeRange.parse(time_range)

    if time_range is TimeRange.LAST_3M:
        start = shift_months(now, -3)
    elif time_range is TimeRange.LAST_1Y:
        start = shift_months(now, -12)
    elif time_range is TimeRange.ALL:
        start = datetime.combine(all_time_start, time.min, tzinfo=now.tzinfo)
    else:
        start = now - timedelta(days=time_range.days)

    return Window(start=start, end=now)
