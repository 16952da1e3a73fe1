from __future__ import annotations

from datetime import date

import pytest

from finance_tracker.services.periods import PerformancePeriod, PeriodWindow, parse_period, resolve_period

TODAY = date(2024, 3, 15)


@pytest.mark.parametrize(
    "period,expected",
    [
        ("1d", PeriodWindow(date(2024, 3, 10), TODAY, 2)),
        ("1w", PeriodWindow(date(2024, 3, 5), TODAY, 7)),
        ("3m", PeriodWindow(date(2023, 12, 15), TODAY)),
        ("6m", PeriodWindow(date(2023, 9, 15), TODAY)),
        ("1y", PeriodWindow(date(2023, 3, 15), TODAY)),
        ("ytd", PeriodWindow(date(2024, 1, 1), TODAY)),
        ("YTD", PeriodWindow(date(2024, 1, 1), TODAY)),
    ],
)
def test_presets_resolve_to_windows(period, expected):
    assert resolve_period(period, TODAY) == expected


def test_unknown_period_falls_back_to_one_year():
    assert parse_period("5y") == PerformancePeriod.ONE_YEAR
    assert parse_period(None) == PerformancePeriod.ONE_YEAR
    assert resolve_period("bogus", TODAY).start == date(2023, 3, 15)


def test_month_offsets_clamp_to_month_end():
    assert resolve_period("6m", date(2024, 8, 31)).start == date(2024, 2, 29)
