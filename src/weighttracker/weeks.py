"""Calendar week window utilities.

Helpers:
* parse weekday names (``monday``), abbreviations (``mon``) or digits (``0``..``6``)
* resolve the default first weekday (``calendar.firstweekday()`` unless configured)
* compute the start of the current week (start-of-day on the first weekday at/before ``now``)
* derive the two aggregation windows: this week so far and the full previous week

Windows are half-open: ``start`` inclusive, ``end`` exclusive. Datetimes keep the
tzinfo of ``now`` (naive in, naive out); day arithmetic is wall-clock arithmetic.
"""

import calendar
from dataclasses import dataclass
from datetime import datetime, time, timedelta

__all__ = [
    "WEEKDAY_NAMES",
    "WeekWindow",
    "parse_weekday",
    "default_week_start",
    "this_week_start",
    "weekly_windows",
    "week_code",
]

WEEKDAY_NAMES: tuple[str, ...] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


@dataclass(frozen=True)
class WeekWindow:
    start: datetime  # inclusive
    end: datetime  # exclusive

    def contains(self, ts: datetime) -> bool:
        return self.start <= ts < self.end


def parse_weekday(value: str | int) -> int:
    """Parse a weekday into Python numbering (Monday=0 .. Sunday=6).

    Accepts full English names, three-letter abbreviations and digits.
    Raises ValueError on anything else.
    """
    if isinstance(value, int):
        if not (0 <= value <= 6):
            raise ValueError(f"Weekday number out of range 0..6: {value}")
        return value
    text = value.strip().lower()
    if not text:
        raise ValueError("Weekday value is empty")
    if text.isdigit():
        return parse_weekday(int(text))
    for idx, name in enumerate(WEEKDAY_NAMES):
        if text == name or (len(text) == 3 and name.startswith(text)):
            return idx
    raise ValueError(f"Invalid weekday '{value}'")


def default_week_start(configured: int | None = None) -> int:
    """Return the configured first weekday, falling back to the calendar setting."""
    if configured is not None:
        return parse_weekday(configured)
    return calendar.firstweekday()


def this_week_start(now: datetime, week_starts_on: int) -> datetime:
    """Return midnight of the most recent ``week_starts_on`` day at/before ``now``."""
    days_back = (now.weekday() - week_starts_on) % 7
    day = (now - timedelta(days=days_back)).date()
    return datetime.combine(day, time.min, tzinfo=now.tzinfo)


def weekly_windows(now: datetime, week_starts_on: int) -> tuple[WeekWindow, WeekWindow]:
    """Return ``(this_week, last_week)``.

    This week runs from the week start up to ``now`` (partial week); last week is the
    seven days before it and ends exactly where this week starts.
    """
    start = this_week_start(now, week_starts_on)
    this_week = WeekWindow(start=start, end=now)
    last_week = WeekWindow(start=start - timedelta(days=7), end=start)
    return this_week, last_week


def week_code(dt: datetime) -> str:
    """ISO week label (``YYYYWww``) for display."""
    iso = dt.isocalendar()
    return f"{iso.year}W{str(iso.week).zfill(2)}"
