"""Day record store: creation, month regeneration, editing flow."""

from datetime import date

import pytest

from calc import (
    create_record,
    find_record,
    recompute_month,
    regenerate_month,
    set_hours,
    toggle_leave,
    toggle_small_week,
    update_record,
)
from models import HolidayKind, WeekOverride


def test_create_record_defaults(small_week_settings):
    record = create_record(date(2025, 3, 8), small_week_settings)
    assert record.actual_hours == 0
    assert record.is_leave is False
    assert record.required_hours == 8
    assert record.is_small_week is True


def test_create_record_rejects_strings(settings):
    with pytest.raises(TypeError):
        create_record("2025-03-08", settings)


def test_regenerate_covers_every_day_of_month(settings):
    records = regenerate_month(2025, 2, settings, [])
    assert [r.date for r in records] == [date(2025, 2, d) for d in range(1, 29)]
    assert sum(1 for r in records if r.required_hours == 11) == 20


def test_regenerate_preserves_user_fields(settings, make_record):
    existing = [
        make_record(date(2025, 3, 4), actual=9.5, required=0, notes="late start"),
        make_record(date(2025, 3, 5), required=11, leave=True),
    ]
    records = regenerate_month(2025, 3, settings, existing)

    tuesday = find_record(records, date(2025, 3, 4))
    assert tuesday.actual_hours == 9.5
    assert tuesday.required_hours == 11
    assert tuesday.notes == "late start"
    assert find_record(records, date(2025, 3, 5)).is_leave is True


def test_regenerate_recomputes_derived_fields(settings, make_record):
    stale = [make_record(date(2025, 3, 8), actual=8, required=8, small_week=True)]
    records = regenerate_month(2025, 3, settings, stale)
    saturday = find_record(records, date(2025, 3, 8))
    assert saturday.required_hours == 0
    assert saturday.is_small_week is False
    assert saturday.actual_hours == 8


def test_regenerate_leaves_other_months_untouched(settings, make_record):
    february = make_record(date(2025, 2, 10), actual=3, required=99)
    records = regenerate_month(2025, 3, settings, [february])
    assert find_record(records, date(2025, 2, 10)) is february
    assert len(records) == 32


def test_regenerate_is_idempotent(small_week_settings, make_record, make_facts):
    facts = make_facts({date(2025, 3, 5): HolidayKind.HOLIDAY})
    existing = [make_record(date(2025, 3, 3), actual=11, required=11)]
    once = regenerate_month(2025, 3, small_week_settings, existing, facts)
    twice = regenerate_month(2025, 3, small_week_settings, once, facts)
    assert once == twice


def test_regenerate_never_changes_hours_or_leave(settings, make_record):
    existing = [
        make_record(date(2025, 3, d), actual=d % 5, leave=(d % 7 == 0))
        for d in range(1, 32)
    ]
    records = regenerate_month(2025, 3, settings, existing)
    for before, after in zip(existing, records):
        assert (before.date, before.actual_hours, before.is_leave) == \
            (after.date, after.actual_hours, after.is_leave)


def test_recompute_month_applies_late_holidays(settings, make_facts):
    records = regenerate_month(2025, 10, settings, [])
    assert find_record(records, date(2025, 10, 1)).required_hours == 11

    facts = make_facts({
        date(2025, 10, 1): HolidayKind.HOLIDAY,
        date(2025, 10, 11): HolidayKind.COMPENSATORY_WORKDAY,
    })
    updated = recompute_month(records, 2025, 10, settings, facts)
    assert find_record(updated, date(2025, 10, 1)).required_hours == 0
    assert find_record(updated, date(2025, 10, 11)).required_hours == 11
    assert len(updated) == len(records)


def test_update_record_merges_fields(settings):
    records = regenerate_month(2025, 3, settings, [])
    result = update_record(records, date(2025, 3, 4), actual_hours=10.5, notes="ok")
    assert result.found is True
    record = find_record(result.records, date(2025, 3, 4))
    assert record.actual_hours == 10.5
    assert record.notes == "ok"
    assert record.required_hours == 11
    # original list is not modified
    assert find_record(records, date(2025, 3, 4)).actual_hours == 0


def test_update_record_missing_date(settings):
    records = regenerate_month(2025, 3, settings, [])
    result = update_record(records, date(2025, 4, 1), actual_hours=3)
    assert result.found is False
    assert result.records == records


def test_update_record_rejects_derived_fields(settings):
    records = regenerate_month(2025, 3, settings, [])
    with pytest.raises(ValueError):
        update_record(records, date(2025, 3, 4), required_hours=3)
    with pytest.raises(ValueError):
        update_record(records, date(2025, 3, 4), date=date(2025, 3, 5))


def test_leave_forces_zero_hours(settings):
    records = regenerate_month(2025, 3, settings, [])
    result = update_record(records, date(2025, 3, 4), is_leave=True, actual_hours=5)
    assert find_record(result.records, date(2025, 3, 4)).actual_hours == 0


def test_set_hours_parses_input(settings):
    records = regenerate_month(2025, 3, settings, [])
    records = set_hours(records, date(2025, 3, 4), "10,5").records
    assert find_record(records, date(2025, 3, 4)).actual_hours == 10.5
    records = set_hours(records, date(2025, 3, 4), "abc").records
    assert find_record(records, date(2025, 3, 4)).actual_hours == 0


def test_toggle_leave_resets_hours_both_ways(settings):
    records = regenerate_month(2025, 3, settings, [])
    records = set_hours(records, date(2025, 3, 4), 11).records

    records = toggle_leave(records, date(2025, 3, 4)).records
    record = find_record(records, date(2025, 3, 4))
    assert record.is_leave is True
    assert record.actual_hours == 0
    assert record.required_hours == 11

    records = set_hours(records, date(2025, 3, 4), 4).records
    records = toggle_leave(records, date(2025, 3, 4)).records
    record = find_record(records, date(2025, 3, 4))
    assert record.is_leave is False
    assert record.actual_hours == 0


def test_toggle_leave_missing_record(settings):
    result = toggle_leave([], date(2025, 3, 4))
    assert result.found is False


def test_toggle_small_week_on_then_off(settings):
    saturday = date(2025, 3, 8)
    records = regenerate_month(2025, 3, settings, [])
    records = set_hours(records, saturday, 6).records
    before = find_record(records, saturday).required_hours

    settings_on, result = toggle_small_week(records, settings, saturday)
    record = find_record(result.records, saturday)
    assert record.required_hours == 8
    assert record.is_small_week is True
    assert record.actual_hours == 0
    assert settings_on.work_weeks == [WeekOverride(date(2025, 3, 3), date(2025, 3, 9), True)]

    records = set_hours(result.records, saturday, 8).records
    settings_off, result = toggle_small_week(records, settings_on, saturday)
    record = find_record(result.records, saturday)
    assert record.required_hours == before == 0
    assert record.is_small_week is False
    assert record.actual_hours == 0
    assert settings_off.work_weeks == []


def test_toggle_small_week_keeps_other_days_hours(settings):
    records = regenerate_month(2025, 3, settings, [])
    records = set_hours(records, date(2025, 3, 7), 11).records
    _, result = toggle_small_week(records, settings, date(2025, 3, 8))
    assert find_record(result.records, date(2025, 3, 7)).actual_hours == 11


def test_toggle_small_week_requires_saturday(settings):
    records = regenerate_month(2025, 3, settings, [])
    with pytest.raises(ValueError):
        toggle_small_week(records, settings, date(2025, 3, 7))
