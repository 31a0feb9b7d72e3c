"""On-disk settings and record slots."""

import json
from datetime import date

from db import RECORDS_SLOT, SETTINGS_SLOT, LocalStore
from models import DayRecord, Settings, Snapshot, WeekOverride


def test_empty_directory_gives_defaults(tmp_path):
    store = LocalStore(tmp_path / 'data')
    snapshot = store.load()
    assert snapshot.day_records == []
    assert snapshot.settings.normal_hours == Settings().normal_hours


def test_save_and_load(tmp_path, settings):
    store = LocalStore(tmp_path)
    snapshot = Snapshot(
        settings=settings.with_changes(
            sync_space="ABC234",
            work_weeks=[WeekOverride(date(2025, 3, 3), date(2025, 3, 9), True)]
        ),
        day_records=[
            DayRecord(date(2025, 3, 8), 8, 8, True),
            DayRecord(date(2025, 3, 10), 0, 11, is_leave=True, notes="dentist"),
        ]
    )
    store.save(snapshot)

    loaded = LocalStore(tmp_path).load()
    assert loaded.day_records == snapshot.day_records
    assert loaded.settings.work_weeks == snapshot.settings.work_weeks
    # sync space stays on the device
    assert loaded.settings.sync_space == "ABC234"
    assert not list(tmp_path.glob('*.tmp'))


def test_slots_use_wire_names(tmp_path, settings):
    store = LocalStore(tmp_path)
    store.save_records([DayRecord(date(2025, 3, 3), 11, 11)])
    store.save_settings(settings)
    assert json.loads((tmp_path / f'{RECORDS_SLOT}.json').read_text())[0]['hours'] == 11
    assert json.loads((tmp_path / f'{SETTINGS_SLOT}.json').read_text())['normalHours'] == 11


def test_corrupt_slots_fall_back(tmp_path):
    (tmp_path / f'{SETTINGS_SLOT}.json').write_text('{broken')
    (tmp_path / f'{RECORDS_SLOT}.json').write_text(json.dumps([
        {'date': '2025-03-03', 'hours': 11, 'requiredHours': 11},
        {'hours': 4},
        {'date': 'someday'},
    ]))
    store = LocalStore(tmp_path)
    assert store.load_settings().payday_day == Settings().payday_day
    records = store.load_records()
    assert [r.date for r in records] == [date(2025, 3, 3)]


def test_clear_removes_slots(tmp_path, settings):
    store = LocalStore(tmp_path)
    store.save(Snapshot(settings, [DayRecord(date(2025, 3, 3), 11, 11)]))
    store.clear()
    assert store.load().day_records == []
    assert not (tmp_path / f'{SETTINGS_SLOT}.json').exists()
