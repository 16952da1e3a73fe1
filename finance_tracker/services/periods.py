"""Chart period presets for performance requests."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum

import pandas as pd


class PerformancePeriod(str, Enum):
    ONE_DAY = "1d"
    ONE_WEEK = "1w"
    THREE_MONTHS = "3m"
    SIX_MONTHS = "6m"
    ONE_YEAR = "1y"
    YEAR_TO_DATE = "ytd"


@dataclass(frozen=True)
class PeriodWindow:
    start: date
    end: date
    # Number of trailing reference dates to keep, if the window is trimmed.
    max_points: int | None = None


# Short windows look back further than they render so that a weekend or
# holiday still leaves enough trading dates to trim from.
_OFFSETS: dict[PerformancePeriod, pd.DateOffset] = {
    PerformancePeriod.ONE_DAY: pd.DateOffset(days=5),
    PerformancePeriod.ONE_WEEK: pd.DateOffset(days=10),
    PerformancePeriod.THREE_MONTHS: pd.DateOffset(months=3),
    PerformancePeriod.SIX_MONTHS: pd.DateOffset(months=6),
    PerformancePeriod.ONE_YEAR: pd.DateOffset(years=1),
}

_MAX_POINTS: dict[PerformancePeriod, int] = {
    PerformancePeriod.ONE_DAY: 2,
    PerformancePeriod.ONE_WEEK: 7,
}


def parse_period(value: str | PerformancePeriod | None) -> PerformancePeriod:
    if isinstance(value, PerformancePeriod):
        return value
    try:
        return PerformancePeriod((value or "").lower())
    except ValueError:
        return PerformancePeriod.ONE_YEAR


def resolve_period(value: str | PerformancePeriod | None, today: date) -> PeriodWindow:
    """Map a period preset to a date window ending ``today``.

    Unknown presets fall back to one year.
    """

    period = parse_period(value)
    if period == PerformancePeriod.YEAR_TO_DATE:
        start = date(today.year, 1, 1)
    else:
        start = (pd.Timestamp(today) - _OFFSETS[period]).date()
    return PeriodWindow(start=start, end=today, max_points=_MAX_POINTS.get(period))


__all__ = ["PerformancePeriod", "PeriodWindow", "parse_period", "resolve_period"]
