"""
Data models for the work-hours tracker.

- DayRecord: one tracked calendar date
- WeekOverride: a Monday..Sunday interval marked as a small week
- Settings: user configuration
- Holiday: one fact from the public-holiday calendar

Wire format keeps camelCase keys so local slots, remote snapshots and
JSON exports stay interchangeable.
"""

from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional


DEFAULT_NORMAL_HOURS = 11.0
DEFAULT_SMALL_WEEK_HOURS = 8.0
DEFAULT_PAYDAY_DAY = 15


class HolidayKind(str, Enum):
    """Kind of a holiday-calendar fact."""
    HOLIDAY = "holiday"
    COMPENSATORY_WORKDAY = "compensatory_workday"


class DayKind(str, Enum):
    """Which required-hours rule applied to a date."""
    HOLIDAY = "holiday"
    COMPENSATORY_WORKDAY = "compensatory_workday"
    STANDARD_WORKDAY = "standard_workday"
    SMALL_WEEK_SATURDAY = "small_week_saturday"
    UNCONSTRAINED = "unconstrained"


def _parse_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


@dataclass(frozen=True)
class Holiday:
    """Normalized holiday-calendar entry."""
    date: date
    name: str
    kind: HolidayKind

    def to_dict(self) -> Dict[str, Any]:
        return {'date': self.date.isoformat(), 'name': self.name, 'kind': self.kind.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Holiday':
        return cls(
            date=_parse_date(data['date']),
            name=str(data.get('name') or ''),
            kind=HolidayKind(data['kind'])
        )


@dataclass(frozen=True)
class WeekOverride:
    """Closed Monday..Sunday interval with its small-week flag."""
    week_start: date
    week_end: date
    is_small_week: bool = True

    def contains(self, day: date) -> bool:
        return self.week_start <= day <= self.week_end

    def intersects(self, start: date, end: date) -> bool:
        return self.week_start <= end and start <= self.week_end

    def to_dict(self) -> Dict[str, Any]:
        return {
            'weekStart': self.week_start.isoformat(),
            'weekEnd': self.week_end.isoformat(),
            'isSmallWeek': self.is_small_week
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WeekOverride':
        return cls(
            week_start=_parse_date(data['weekStart']),
            week_end=_parse_date(data['weekEnd']),
            is_small_week=bool(data.get('isSmallWeek', False))
        )


@dataclass
class DayRecord:
    """Tracked hours for a single date."""
    date: date
    actual_hours: float = 0.0
    required_hours: float = 0.0
    is_small_week: bool = False
    is_leave: bool = False
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'date': self.date.isoformat(),
            'hours': self.actual_hours,
            'isSmallWeek': self.is_small_week,
            'isLeave': self.is_leave,
            'requiredHours': self.required_hours
        }
        if self.notes is not None:
            data['notes'] = self.notes
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DayRecord':
        return cls(
            date=_parse_date(data['date']),
            actual_hours=float(data.get('hours') or 0),
            required_hours=float(data.get('requiredHours') or 0),
            is_small_week=bool(data.get('isSmallWeek', False)),
            is_leave=bool(data.get('isLeave', False)),
            notes=data.get('notes')
        )


@dataclass
class Settings:
    """User configuration. `sync_space` is a local routing key only."""
    normal_hours: float = DEFAULT_NORMAL_HOURS
    small_week_hours: float = DEFAULT_SMALL_WEEK_HOURS
    payday_day: int = DEFAULT_PAYDAY_DAY
    work_weeks: List[WeekOverride] = field(default_factory=list)
    start_date: date = field(default_factory=date.today)
    sync_space: Optional[str] = None

    def with_changes(self, **changes) -> 'Settings':
        return replace(self, **changes)

    def to_dict(self, include_sync_space: bool = True) -> Dict[str, Any]:
        data = {
            'normalHours': self.normal_hours,
            'smallWeekHours': self.small_week_hours,
            'paydayDay': self.payday_day,
            'workWeeks': [week.to_dict() for week in self.work_weeks],
            'startDate': self.start_date.isoformat()
        }
        if include_sync_space and self.sync_space:
            data['syncSpace'] = self.sync_space
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Settings':
        start = data.get('startDate')
        return cls(
            normal_hours=float(data.get('normalHours', DEFAULT_NORMAL_HOURS)),
            small_week_hours=float(data.get('smallWeekHours', DEFAULT_SMALL_WEEK_HOURS)),
            payday_day=int(data.get('paydayDay', DEFAULT_PAYDAY_DAY)),
            work_weeks=[WeekOverride.from_dict(w) for w in data.get('workWeeks') or []],
            start_date=_parse_date(start) if start else date.today(),
            sync_space=data.get('syncSpace') or None
        )


@dataclass
class Snapshot:
    """Settings plus day records, the unit of remote synchronization."""
    settings: Settings
    day_records: List[DayRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        # syncSpace never leaves the device
        return {
            'workSettings': self.settings.to_dict(include_sync_space=False),
            'workDays': [record.to_dict() for record in self.day_records]
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Snapshot':
        return cls(
            settings=Settings.from_dict(data.get('workSettings') or {}),
            day_records=[DayRecord.from_dict(d) for d in data.get('workDays') or []]
        )
