"""Sync session gating, bulk guard and the Supabase snapshot store."""

import json
from datetime import date
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from db import (
    KV_TABLE,
    SNAPSHOT_KEY,
    SPACE_CODE_ALPHABET,
    SnapshotStore,
    SyncError,
    SyncSession,
    generate_space_code,
)
from models import DayRecord, Snapshot


class FakeStore:
    """In-memory stand-in for SnapshotStore."""

    def __init__(self, remote=None, fail_fetch=False, fail_push=False):
        self.remote = remote
        self.fail_fetch = fail_fetch
        self.fail_push = fail_push
        self.pushes = []
        self.deleted = []

    def fetch_snapshot(self, space):
        if self.fail_fetch:
            raise SyncError("network down")
        return self.remote

    def upsert_snapshot(self, space, snapshot):
        if self.fail_push:
            raise SyncError("write refused")
        self.pushes.append((space, snapshot))
        self.remote = snapshot

    def delete_space(self, space):
        self.deleted.append(space)
        self.remote = None


@pytest.fixture
def local(settings):
    return Snapshot(
        settings=settings.with_changes(sync_space="ABC234"),
        day_records=[DayRecord(date(2025, 3, 3), 11, 11)]
    )


@pytest.fixture
def remote(settings):
    return Snapshot(
        settings=settings.with_changes(normal_hours=10),
        day_records=[DayRecord(date(2025, 3, 4), 9, 10)]
    )


def test_no_push_before_initial_pull(local, remote):
    store = FakeStore(remote=remote)
    session = SyncSession(store, "ABC234")
    assert session.notify_change(local) is False
    assert store.pushes == []
    assert store.remote is remote


def test_pull_adopts_remote_and_keeps_local_space(local, remote):
    store = FakeStore(remote=remote)
    session = SyncSession(store, "ABC234")
    adopted = session.pull(local)

    assert session.has_synced is True
    assert adopted.day_records == remote.day_records
    assert adopted.settings.normal_hours == 10
    assert adopted.settings.sync_space == "ABC234"
    assert store.pushes == []


def test_pull_seeds_empty_space(local):
    store = FakeStore(remote=None)
    session = SyncSession(store, "ABC234")
    assert session.pull(local) is local
    assert store.pushes == [("ABC234", local)]


def test_failed_pull_keeps_gate_closed(local):
    store = FakeStore(fail_fetch=True)
    session = SyncSession(store, "ABC234")
    assert session.pull(local) is local
    assert session.has_synced is False
    assert "network down" in session.last_error

    assert session.notify_change(local) is False
    assert store.pushes == []


def test_offline_edits_survive_when_network_returns(local, remote, settings):
    store = FakeStore(remote=remote, fail_fetch=True)
    session = SyncSession(store, "ABC234")
    session.pull(local)

    edited = Snapshot(local.settings, [DayRecord(date(2025, 3, 4), 11, 10)])
    assert session.notify_change(edited) is False

    store.fail_fetch = False
    adopted = session.pull(edited)
    assert adopted is edited
    assert adopted.day_records[0].actual_hours == 11
    assert session.pull_attempted is True
    assert session.has_synced is False
    assert store.pushes == []


def test_pull_talks_to_store_once(local, remote):
    store = FakeStore(remote=remote)
    session = SyncSession(store, "ABC234")
    session.pull(local)
    store.remote = None
    assert session.pull(local) is local
    assert store.pushes == []


def test_push_after_pull(local, remote):
    store = FakeStore(remote=remote)
    session = SyncSession(store, "ABC234")
    session.pull(local)
    assert session.notify_change(local) is True
    assert store.pushes == [("ABC234", local)]


def test_push_failure_is_recorded_not_raised(local, remote):
    store = FakeStore(remote=remote, fail_push=True)
    session = SyncSession(store, "ABC234")
    session.pull(local)
    assert session.notify_change(local) is False
    assert "write refused" in session.last_error


def test_bulk_update_pushes_once_with_final_state(local, remote, settings):
    store = FakeStore(remote=remote)
    session = SyncSession(store, "ABC234")
    session.pull(local)

    states = [
        Snapshot(settings, [DayRecord(date(2025, 3, d), 11, 11)])
        for d in range(3, 8)
    ]
    with session.bulk_update():
        for state in states:
            assert session.notify_change(state) is False
        with session.bulk_update():
            session.notify_change(states[-1])
        assert store.pushes == []

    assert store.pushes == [("ABC234", states[-1])]
    assert session.bulk_in_progress is False


def test_bulk_update_without_changes_does_not_push(local, remote):
    store = FakeStore(remote=remote)
    session = SyncSession(store, "ABC234")
    session.pull(local)
    with session.bulk_update():
        pass
    assert store.pushes == []


def test_disabled_session_is_local_only(local):
    session = SyncSession(None, None)
    assert session.enabled is False
    assert session.pull(local) is local
    assert session.has_synced is True
    assert session.notify_change(local) is False
    assert session.clear_remote() is False


def test_clear_remote(local, remote):
    store = FakeStore(remote=remote)
    session = SyncSession(store, "ABC234")
    assert session.clear_remote() is True
    assert store.deleted == ["ABC234"]


def _client_returning(rows):
    client = MagicMock()
    query = client.table.return_value.select.return_value
    query.eq.return_value.eq.return_value.limit.return_value.execute.return_value = \
        SimpleNamespace(data=rows)
    return client


def test_fetch_snapshot_reads_kv_row(remote):
    client = _client_returning([{'value': remote.to_dict()}])
    snapshot = SnapshotStore(client).fetch_snapshot("ABC234")

    client.table.assert_called_with(KV_TABLE)
    client.table.return_value.select.return_value.eq.assert_called_with('key', SNAPSHOT_KEY)
    assert snapshot.day_records == remote.day_records


def test_fetch_snapshot_accepts_json_string(remote):
    client = _client_returning([{'value': json.dumps(remote.to_dict())}])
    assert SnapshotStore(client).fetch_snapshot("ABC234").settings.normal_hours == 10


def test_fetch_snapshot_empty_space():
    assert SnapshotStore(_client_returning([])).fetch_snapshot("ABC234") is None


def test_fetch_snapshot_transport_error():
    client = MagicMock()
    client.table.side_effect = RuntimeError("boom")
    with pytest.raises(SyncError):
        SnapshotStore(client).fetch_snapshot("ABC234")


def test_fetch_snapshot_malformed_value():
    client = _client_returning([{'value': '{not json'}])
    with pytest.raises(SyncError):
        SnapshotStore(client).fetch_snapshot("ABC234")


def test_upsert_never_sends_sync_space(local):
    client = MagicMock()
    SnapshotStore(client).upsert_snapshot("ABC234", local)

    args, kwargs = client.table.return_value.upsert.call_args
    payload = args[0]
    assert payload['user_id'] == "ABC234"
    assert payload['key'] == SNAPSHOT_KEY
    assert 'syncSpace' not in payload['value']['workSettings']
    assert kwargs == {'on_conflict': 'user_id,key'}


def test_generate_space_code():
    code = generate_space_code()
    assert len(code) == 6
    assert set(code) <= set(SPACE_CODE_ALPHABET)
    assert len(generate_space_code(10)) == 10
