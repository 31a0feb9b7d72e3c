"""
Pytest fixtures for the work-hours tracker test suite.

Provides:
- Default settings with the standard 11h / 8h baseline
- An in-memory holiday calendar (no network)
- Record and override builders
"""

from datetime import date
from typing import Dict, Optional

import pytest

from models import DayRecord, HolidayKind, Settings, WeekOverride


class FakeHolidays:
    """Holiday facts backed by a plain dict."""

    def __init__(self, entries: Optional[Dict[date, HolidayKind]] = None):
        self.entries = dict(entries or {})

    def is_holiday(self, day: date) -> bool:
        return self.entries.get(day) == HolidayKind.HOLIDAY

    def is_compensatory_workday(self, day: date) -> bool:
        return self.entries.get(day) == HolidayKind.COMPENSATORY_WORKDAY

    def holiday_name(self, day: date) -> Optional[str]:
        kind = self.entries.get(day)
        return kind.value if kind else None


@pytest.fixture
def settings() -> Settings:
    return Settings(
        normal_hours=11,
        small_week_hours=8,
        payday_day=15,
        work_weeks=[],
        start_date=date(2025, 1, 1)
    )


@pytest.fixture
def small_week_settings(settings) -> Settings:
    """Week of 2025-03-03..09 marked as a small week."""
    return settings.with_changes(work_weeks=[
        WeekOverride(date(2025, 3, 3), date(2025, 3, 9), True)
    ])


@pytest.fixture
def make_facts():
    def _make(entries: Optional[Dict[date, HolidayKind]] = None) -> FakeHolidays:
        return FakeHolidays(entries)
    return _make


@pytest.fixture
def make_record():
    def _make(day: date, actual: float = 0, required: float = 0,
              small_week: bool = False, leave: bool = False, notes=None) -> DayRecord:
        return DayRecord(
            date=day,
            actual_hours=actual,
            required_hours=required,
            is_small_week=small_week,
            is_leave=leave,
            notes=notes
        )
    return _make
