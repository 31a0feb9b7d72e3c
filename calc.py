"""
Calendar rules and business logic for work-hour tracking.
Pure functions: required-hours rules, day records, small-week overrides,
monthly statistics and projections.
"""

import calendar
import json
import logging
import math
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple

from models import (
    DEFAULT_NORMAL_HOURS,
    DEFAULT_SMALL_WEEK_HOURS,
    DayKind,
    DayRecord,
    Settings,
    Snapshot,
    WeekOverride,
)

logger = logging.getLogger(__name__)

SATURDAY = 5
EXPORT_VERSION = '1.0'


class _NoHolidays:
    """Holiday facts used before any calendar data has been loaded."""

    def is_holiday(self, day: date) -> bool:
        return False

    def is_compensatory_workday(self, day: date) -> bool:
        return False

    def holiday_name(self, day: date) -> Optional[str]:
        return None


NO_HOLIDAYS = _NoHolidays()


class UpdateResult(NamedTuple):
    records: List[DayRecord]
    found: bool


def _check_date(day: Any) -> date:
    # datetime is a date subclass but carries a time component
    if not isinstance(day, date) or isinstance(day, datetime):
        raise TypeError(f"Expected datetime.date, got {type(day).__name__}")
    return day


# ---------------------------------------------------------------------------
# Rule engine
# ---------------------------------------------------------------------------

def is_weekday(day: date) -> bool:
    """Monday..Friday."""
    return day.weekday() < SATURDAY


def is_small_week_day(day: date, settings: Settings) -> bool:
    """
    True iff `day` is a Saturday covered by a small-week override.

    Overrides are expected not to overlap; if they do, the first one in
    list order decides.
    """
    _check_date(day)
    if day.weekday() != SATURDAY:
        return False
    for week in settings.work_weeks:
        if week.contains(day):
            return week.is_small_week
    return False


def classify_day(day: date, settings: Settings, facts=NO_HOLIDAYS) -> DayKind:
    """
    Determine which required-hours rule applies to a date.

    Precedence: holiday, compensatory workday, Mon-Fri, small-week
    Saturday, anything else.

    Args:
        day: Calendar date
        settings: User settings (work_weeks is consulted)
        facts: Holiday lookup with is_holiday / is_compensatory_workday

    Returns:
        The matching DayKind
    """
    _check_date(day)
    if facts.is_holiday(day):
        return DayKind.HOLIDAY
    if facts.is_compensatory_workday(day):
        return DayKind.COMPENSATORY_WORKDAY
    if is_weekday(day):
        return DayKind.STANDARD_WORKDAY
    if is_small_week_day(day, settings):
        return DayKind.SMALL_WEEK_SATURDAY
    return DayKind.UNCONSTRAINED


def required_hours(day: date, settings: Settings, facts=NO_HOLIDAYS) -> float:
    """Hours the user owes on `day`."""
    kind = classify_day(day, settings, facts)
    if kind in (DayKind.COMPENSATORY_WORKDAY, DayKind.STANDARD_WORKDAY):
        return settings.normal_hours
    if kind == DayKind.SMALL_WEEK_SATURDAY:
        return settings.small_week_hours
    return 0.0


# ---------------------------------------------------------------------------
# Week overrides
# ---------------------------------------------------------------------------

def week_bounds(day: date) -> Tuple[date, date]:
    """Return the Monday and Sunday of the week containing `day`."""
    _check_date(day)
    monday = day - timedelta(days=day.weekday())
    return monday, monday + timedelta(days=6)


def set_small_week(work_weeks: List[WeekOverride], day: date, enabled: bool) -> List[WeekOverride]:
    """
    Mark or unmark the week containing `day` as a small week.

    Enabling drops every override intersecting that week before adding
    the new one, so a week never carries two entries. Disabling drops
    every override containing `day`.

    Args:
        work_weeks: Current overrides (not modified)
        day: Any date inside the target week
        enabled: New small-week status

    Returns:
        New override list
    """
    start, end = week_bounds(day)
    if enabled:
        kept = [week for week in work_weeks if not week.intersects(start, end)]
        kept.append(WeekOverride(week_start=start, week_end=end, is_small_week=True))
        return kept
    return [week for week in work_weeks if not week.contains(day)]


def weeks_in_month(year: int, month: int, work_weeks: List[WeekOverride]) -> List[WeekOverride]:
    """List Monday-start weeks touching the month with their small-week status."""
    first = date(year, month, 1)
    last = date(year, month, calendar.monthrange(year, month)[1])
    lookup = Settings(work_weeks=work_weeks)
    weeks = []
    monday, _ = week_bounds(first)
    while monday <= last:
        sunday = monday + timedelta(days=6)
        saturday = monday + timedelta(days=SATURDAY)
        weeks.append(WeekOverride(monday, sunday, is_small_week_day(saturday, lookup)))
        monday += timedelta(days=7)
    return weeks


# ---------------------------------------------------------------------------
# Day records
# ---------------------------------------------------------------------------

UPDATABLE_FIELDS = {'actual_hours', 'is_leave', 'notes'}


def create_record(day: date, settings: Settings, facts=NO_HOLIDAYS) -> DayRecord:
    """Build a fresh record for `day` with derived fields filled in."""
    _check_date(day)
    return DayRecord(
        date=day,
        actual_hours=0.0,
        required_hours=required_hours(day, settings, facts),
        is_small_week=is_small_week_day(day, settings),
        is_leave=False
    )


def _in_month(day: date, year: int, month: int) -> bool:
    return day.year == year and day.month == month


def _rederive(record: DayRecord, settings: Settings, facts) -> DayRecord:
    return DayRecord(
        date=record.date,
        actual_hours=record.actual_hours,
        required_hours=required_hours(record.date, settings, facts),
        is_small_week=is_small_week_day(record.date, settings),
        is_leave=record.is_leave,
        notes=record.notes
    )


def regenerate_month(
    year: int,
    month: int,
    settings: Settings,
    existing: Iterable[DayRecord],
    facts=NO_HOLIDAYS
) -> List[DayRecord]:
    """
    Produce records for every day of a month.

    Hours, leave and notes of existing records are kept; required hours
    and the small-week flag are recomputed. Records from other months
    pass through untouched. Calling this repeatedly with the same inputs
    returns the same records.

    Args:
        year: Year (e.g., 2025)
        month: Month (1-12)
        settings: User settings
        existing: All currently stored records
        facts: Holiday lookup

    Returns:
        All records sorted by date
    """
    existing = list(existing)
    by_date = {record.date: record for record in existing if _in_month(record.date, year, month)}

    month_records = []
    for day_num in range(1, calendar.monthrange(year, month)[1] + 1):
        day = date(year, month, day_num)
        prior = by_date.get(day)
        if prior is None:
            month_records.append(create_record(day, settings, facts))
        else:
            month_records.append(_rederive(prior, settings, facts))

    others = [record for record in existing if not _in_month(record.date, year, month)]
    return sorted(others + month_records, key=lambda record: record.date)


def recompute_month(
    records: List[DayRecord],
    year: int,
    month: int,
    settings: Settings,
    facts=NO_HOLIDAYS
) -> List[DayRecord]:
    """Re-derive required hours for existing records of one month, e.g. after holidays load."""
    result = []
    changed = 0
    for record in records:
        if _in_month(record.date, year, month):
            fresh = _rederive(record, settings, facts)
            if fresh != record:
                changed += 1
            result.append(fresh)
        else:
            result.append(record)
    logger.debug("Recomputed %d-%02d: %d record(s) changed", year, month, changed)
    return result


def find_record(records: List[DayRecord], day: date) -> Optional[DayRecord]:
    for record in records:
        if record.date == day:
            return record
    return None


def update_record(records: List[DayRecord], day: date, **changes) -> UpdateResult:
    """
    Merge user-editable fields into the record at `day`.

    Args:
        records: Current records (not modified)
        day: Date of the record to update
        **changes: actual_hours, is_leave and/or notes

    Returns:
        UpdateResult with the new list; found is False when no record exists
    """
    _check_date(day)
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

    found = False
    result = []
    for record in records:
        if record.date != day:
            result.append(record)
            continue
        found = True
        merged = DayRecord(
            date=record.date,
            actual_hours=parse_hours(changes.get('actual_hours', record.actual_hours)),
            required_hours=record.required_hours,
            is_small_week=record.is_small_week,
            is_leave=bool(changes.get('is_leave', record.is_leave)),
            notes=changes.get('notes', record.notes)
        )
        if merged.is_leave:
            merged.actual_hours = 0.0
        result.append(merged)

    if not found:
        logger.debug("No record for %s, update skipped", day)
    return UpdateResult(result, found)


def set_hours(records: List[DayRecord], day: date, raw: Any) -> UpdateResult:
    """Store user-typed hours; anything unparseable counts as 0."""
    return update_record(records, day, actual_hours=parse_hours(raw))


def toggle_leave(records: List[DayRecord], day: date) -> UpdateResult:
    """Flip leave status; recorded hours are always reset."""
    record = find_record(records, _check_date(day))
    if record is None:
        return UpdateResult(list(records), False)
    return update_record(records, day, is_leave=not record.is_leave, actual_hours=0.0)


def toggle_small_week(
    records: List[DayRecord],
    settings: Settings,
    day: date,
    facts=NO_HOLIDAYS
) -> Tuple[Settings, UpdateResult]:
    """
    Flip the small-week status of a Saturday.

    The override list is rewritten through set_small_week, records in
    that week get re-derived, and the Saturday's hours are reset to 0.

    Returns:
        (new settings, UpdateResult)
    """
    _check_date(day)
    if day.weekday() != SATURDAY:
        raise ValueError(f"Small week can only be toggled on a Saturday, got {day.isoformat()}")

    record = find_record(records, day)
    if record is None:
        return settings, UpdateResult(list(records), False)

    enabled = not record.is_small_week
    new_settings = settings.with_changes(
        work_weeks=set_small_week(settings.work_weeks, day, enabled)
    )
    start, end = week_bounds(day)

    result = []
    for item in records:
        if start <= item.date <= end:
            item = _rederive(item, new_settings, facts)
            if item.date == day:
                item.actual_hours = 0.0
        result.append(item)

    logger.info("Small week %s for %s", "enabled" if enabled else "disabled", day.isoformat())
    return new_settings, UpdateResult(result, True)


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

def stats_scope(records: Iterable[DayRecord], year: int, month: int) -> List[DayRecord]:
    """Records of the viewed month that carry a requirement."""
    return [
        record for record in records
        if _in_month(record.date, year, month) and record.required_hours > 0
    ]


def compute_stats(records: List[DayRecord], today: date) -> Dict[str, Any]:
    """
    Compute monthly totals and the forward projection.

    `today` is never part of the future sums; its contribution is
    reported separately through today_pred / today_used so that callers
    do not count it twice against remaining_hours.

    Args:
        records: Day records of the period (already filtered by caller)
        today: Current date

    Returns:
        Dictionary of aggregates
    """
    total_hours = sum(r.actual_hours for r in records)
    total_required = sum(r.required_hours for r in records)
    worked_days = sum(1 for r in records if r.actual_hours > 0)

    # today is left out of normal_week_days but not of small_week_days
    small_week_days = sum(1 for r in records if r.is_small_week)
    normal_week_days = sum(
        1 for r in records
        if r.required_hours > 0 and not r.is_small_week and r.date != today
    )
    normal_week_leave_days = sum(1 for r in records if r.is_leave and not r.is_small_week)
    small_week_leave_days = sum(1 for r in records if r.is_leave and r.is_small_week)

    future = [r for r in records if r.date > today and not r.is_leave]
    future_work = [r for r in future if r.required_hours > 0]

    today_record = find_record(records, today)
    today_required = today_record.required_hours if today_record else 0.0
    today_actual = today_record.actual_hours if today_record else 0.0
    today_is_small_week = today_record.is_small_week if today_record else False
    today_is_leave = today_record.is_leave if today_record else False

    counts_today = not today_is_leave and today_required > 0
    today_pred = today_required if counts_today else 0.0
    if counts_today:
        today_used = today_actual if today_actual > 0 else today_required
    else:
        today_used = 0.0

    return {
        'total_days': len(records),
        'total_hours': total_hours,
        'total_required': total_required,
        'worked_days': worked_days,
        'average_hours': total_hours / worked_days if worked_days > 0 else 0.0,
        'remaining_hours': total_required - total_hours,
        'compliance_rate': (total_hours / total_required) * 100 if total_required > 0 else 0.0,
        'small_week_days': small_week_days,
        'normal_week_days': normal_week_days,
        'leave_days': normal_week_leave_days + small_week_leave_days,
        'normal_week_leave_days': normal_week_leave_days,
        'small_week_leave_days': small_week_leave_days,
        'future_work_days': len(future_work),
        'future_small_week_days': sum(1 for r in future if r.is_small_week),
        'future_required_sum': sum(r.required_hours for r in future_work),
        'today_required_hours': today_required,
        'today_actual_hours': today_actual,
        'today_is_small_week': today_is_small_week,
        'today_is_leave': today_is_leave,
        'today_pred': today_pred,
        'today_used': today_used
    }


def projection_outlook(stats: Dict[str, Any]) -> Dict[str, Any]:
    """
    Estimate whether the remaining requirement is still reachable.

    Today's requirement is added to capacity only while nothing has been
    recorded for it; once hours exist they are already reflected in
    remaining_hours.
    """
    today_open = (
        not stats['today_is_leave']
        and stats['today_required_hours'] > 0
        and stats['today_actual_hours'] == 0
    )
    today_fix = stats['today_pred'] if today_open else 0.0
    capacity = stats['future_required_sum'] + today_fix
    return {
        'today_fix': today_fix,
        'today_estimated': today_open,
        'capacity': capacity,
        'gap': capacity - stats['remaining_hours']
    }


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------

def payday_date(year: int, month: int, settings: Settings, facts=NO_HOLIDAYS) -> date:
    """
    Payday for a month: the configured day, moved back to the closest
    earlier day with a work obligation when it is a rest day.
    """
    day = date(year, month, min(max(int(settings.payday_day), 1), 28))
    candidate = day
    while candidate.day > 1 and required_hours(candidate, settings, facts) <= 0:
        candidate -= timedelta(days=1)
    if required_hours(candidate, settings, facts) <= 0:
        return day
    return candidate


def day_status(record: Optional[DayRecord]) -> str:
    """Display status for a calendar cell."""
    if record is None:
        return 'not-created'
    if record.is_leave:
        return 'leave'
    if record.required_hours <= 0:
        return 'partial' if record.actual_hours > 0 else 'weekend'
    if record.actual_hours >= record.required_hours:
        return 'completed'
    if record.actual_hours > 0:
        return 'partial'
    return 'empty'


def month_grid(year: int, month: int) -> List[List[Optional[date]]]:
    """
    Generate a Monday-first calendar grid for the given month.

    Returns:
        List of weeks, each containing 7 days (None for cells outside the month)
    """
    return [
        [date(year, month, day_num) if day_num else None for day_num in week]
        for week in calendar.monthcalendar(year, month)
    ]


def shift_month(year: int, month: int, delta: int) -> Tuple[int, int]:
    """Move (year, month) by `delta` months."""
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def get_month_name(month: int) -> str:
    """Get full month name from month number."""
    return calendar.month_name[month]


# ---------------------------------------------------------------------------
# Input clamping
# ---------------------------------------------------------------------------

def parse_hours(raw: Any, default: float = 0.0) -> float:
    """Parse user-entered hours; unparseable or negative input yields `default` / 0."""
    if raw is None or raw == '':
        return default
    try:
        value = float(str(raw).strip().replace(',', '.'))
    except (TypeError, ValueError):
        return default
    if math.isnan(value) or math.isinf(value):
        return default
    return max(value, 0.0)


def normalize_settings(
    base: Settings,
    normal_hours: Any = None,
    small_week_hours: Any = None,
    payday_day: Any = None,
    sync_space: Optional[str] = None
) -> Settings:
    """
    Apply form values to settings, clamping bad input.

    None leaves a field unchanged; an empty sync_space clears it.
    """
    changes: Dict[str, Any] = {}
    if normal_hours is not None:
        value = parse_hours(normal_hours)
        changes['normal_hours'] = value if value > 0 else DEFAULT_NORMAL_HOURS
    if small_week_hours is not None:
        value = parse_hours(small_week_hours)
        changes['small_week_hours'] = value if value > 0 else DEFAULT_SMALL_WEEK_HOURS
    if payday_day is not None:
        try:
            day = int(float(payday_day))
        except (TypeError, ValueError):
            day = base.payday_day
        changes['payday_day'] = min(max(day, 1), 28)
    if sync_space is not None:
        changes['sync_space'] = sync_space.strip().upper() or None
    return base.with_changes(**changes)


# ---------------------------------------------------------------------------
# Export / import
# ---------------------------------------------------------------------------

def serialize_snapshot(snapshot: Snapshot) -> str:
    """
    Serialize settings and records to JSON for export.
    The sync space code is never included.
    """
    export_data = {'version': EXPORT_VERSION}
    export_data.update(snapshot.to_dict())
    return json.dumps(export_data, indent=2, ensure_ascii=False)


def deserialize_snapshot(json_data: str) -> Snapshot:
    """
    Deserialize an exported snapshot.

    Raises:
        ValueError: If the JSON is malformed or misses required fields
    """
    try:
        data = json.loads(json_data)
        if not isinstance(data, dict):
            raise ValueError("top level must be an object")
        return Snapshot.from_dict(data)
    except (json.JSONDecodeError, ValueError, KeyError, TypeError) as e:
        raise ValueError(f"Invalid JSON format: {e}")
