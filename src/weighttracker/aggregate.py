"""Weekly aggregation engine.

Pure functions: given samples and a reference instant, compute the arithmetic mean
weight of "this week so far" and of the complete previous week. Absent data is
``None``, never zero, and nothing here raises for valid input.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

import pandas as pd

from .samples import WeightSample, samples_to_frame
from .weeks import WeekWindow, default_week_start, weekly_windows

__all__ = [
    "WeeklyAverages",
    "filter_window",
    "window_average",
    "compute_weekly_averages",
]


@dataclass(frozen=True)
class WeeklyAverages:
    this_week: float | None
    last_week: float | None


def filter_window(df: pd.DataFrame, window: WeekWindow) -> pd.DataFrame:
    """Rows whose timestamp falls in ``[window.start, window.end)``."""
    if df.empty:
        return df
    return df[(df["timestamp"] >= window.start) & (df["timestamp"] < window.end)]


def window_average(df: pd.DataFrame, window: WeekWindow) -> float | None:
    values = filter_window(df, window)["weight_kg"].astype(float)
    if values.empty:
        return None
    return float(values.sum()) / len(values)


def compute_weekly_averages(
    samples: Iterable[WeightSample],
    now: datetime,
    week_starts_on: int | None = None,
) -> WeeklyAverages:
    """Average weight for this week (start of week up to ``now``) and last week.

    ``week_starts_on`` uses Python weekday numbering (Monday=0); ``None`` falls back to
    :func:`weighttracker.weeks.default_week_start`. Sample timestamps must agree with
    ``now`` on being naive or timezone-aware.
    """
    first_day = default_week_start(week_starts_on)
    this_week, last_week = weekly_windows(now, first_day)
    df = samples_to_frame(samples)
    return WeeklyAverages(
        this_week=window_average(df, this_week),
        last_week=window_average(df, last_week),
    )
