"""
Storage helpers: configuration, local persistence and Supabase sync.

Local state lives in two JSON slots (settings, day records). The remote
copy is a single snapshot row in a Supabase key-value table, partitioned
by an opaque sync-space code instead of a user account.
"""

import json
import logging
import os
import secrets
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional, Union

import streamlit as st
from supabase import Client, create_client

from models import DayRecord, Settings, Snapshot

logger = logging.getLogger(__name__)

KV_TABLE = 'kv_store'
SNAPSHOT_KEY = 'snapshot'
SETTINGS_SLOT = 'workSettings'
RECORDS_SLOT = 'workDays'
DEFAULT_DATA_DIR = '.work_hours'

# no O/0/1/I, they are easy to misread
SPACE_CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'


class SyncError(Exception):
    """Remote snapshot store failure."""


def get_secret(name: str, default=None):
    # prefer Streamlit secrets, fallback to env vars
    try:
        return st.secrets[name]
    except Exception:
        return os.getenv(name, default)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once, level from LOG_LEVEL."""
    level_name = str(level or get_secret('LOG_LEVEL', 'INFO')).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )


def generate_space_code(length: int = 6) -> str:
    """Random sync-space code for sharing data between devices."""
    return ''.join(secrets.choice(SPACE_CODE_ALPHABET) for _ in range(length))


# ---------------------------------------------------------------------------
# Local slots
# ---------------------------------------------------------------------------

class LocalStore:
    """Two named JSON slots on disk: settings and day records."""

    def __init__(self, data_dir: Optional[Union[str, Path]] = None):
        self.data_dir = Path(data_dir or get_secret('DATA_DIR', DEFAULT_DATA_DIR))

    def _slot_path(self, slot: str) -> Path:
        return self.data_dir / f"{slot}.json"

    def _read(self, slot: str) -> Optional[Any]:
        path = self._slot_path(slot)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding='utf-8'))
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Ignoring unreadable slot %s: %s", path, e)
            return None

    def _write(self, slot: str, value: Any) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        path = self._slot_path(slot)
        tmp = path.with_suffix('.tmp')
        tmp.write_text(json.dumps(value, ensure_ascii=False, indent=2), encoding='utf-8')
        tmp.replace(path)

    def load_settings(self) -> Settings:
        data = self._read(SETTINGS_SLOT)
        if not isinstance(data, dict):
            return Settings()
        try:
            return Settings.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Stored settings are invalid, using defaults: %s", e)
            return Settings()

    def save_settings(self, settings: Settings) -> None:
        # the sync space is kept locally, only the remote copy drops it
        self._write(SETTINGS_SLOT, settings.to_dict(include_sync_space=True))

    def load_records(self) -> List[DayRecord]:
        data = self._read(RECORDS_SLOT)
        if not isinstance(data, list):
            return []
        records = []
        for idx, item in enumerate(data):
            try:
                records.append(DayRecord.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping stored record %d: %s", idx, e)
        return records

    def save_records(self, records: List[DayRecord]) -> None:
        self._write(RECORDS_SLOT, [record.to_dict() for record in records])

    def load(self) -> Snapshot:
        return Snapshot(settings=self.load_settings(), day_records=self.load_records())

    def save(self, snapshot: Snapshot) -> None:
        self.save_settings(snapshot.settings)
        self.save_records(snapshot.day_records)

    def clear(self) -> None:
        for slot in (SETTINGS_SLOT, RECORDS_SLOT):
            path = self._slot_path(slot)
            if path.exists():
                path.unlink()


# ---------------------------------------------------------------------------
# Supabase
# ---------------------------------------------------------------------------

def sync_configured() -> bool:
    return bool(get_secret('SUPABASE_URL') and get_secret('SUPABASE_ANON_KEY'))


def get_supabase_client() -> Client:
    """Initialize and return Supabase client using Streamlit secrets / env vars."""
    url = get_secret('SUPABASE_URL')
    key = get_secret('SUPABASE_ANON_KEY')
    if not url or not key:
        raise RuntimeError("Missing SUPABASE_URL / SUPABASE_ANON_KEY.")
    return create_client(url, key)


class SnapshotStore:
    """
    Snapshot persistence in the `kv_store` table.

    Expected schema:
        create table kv_store (
            user_id text not null,
            key text not null,
            value jsonb,
            primary key (user_id, key)
        );
    """

    def __init__(self, client: Client):
        self.client = client

    def fetch_snapshot(self, space: str) -> Optional[Snapshot]:
        """
        Get the snapshot stored for a sync space.

        Returns:
            Snapshot, or None if the space has no data

        Raises:
            SyncError: On transport errors or a malformed stored value
        """
        try:
            result = (
                self.client
                .table(KV_TABLE)
                .select('value')
                .eq('key', SNAPSHOT_KEY)
                .eq('user_id', space)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise SyncError(f"Could not fetch snapshot: {e}") from e

        if not result.data:
            return None
        value = result.data[0].get('value')
        if not value:
            return None
        try:
            if isinstance(value, str):
                value = json.loads(value)
            return Snapshot.from_dict(value)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise SyncError(f"Remote snapshot is malformed: {e}") from e

    def upsert_snapshot(self, space: str, snapshot: Snapshot) -> None:
        """Write the snapshot for a space; the sync space itself is never sent."""
        payload = {'user_id': space, 'key': SNAPSHOT_KEY, 'value': snapshot.to_dict()}
        try:
            self.client.table(KV_TABLE).upsert(payload, on_conflict='user_id,key').execute()
        except Exception as e:
            raise SyncError(f"Could not store snapshot: {e}") from e

    def delete_space(self, space: str) -> None:
        """Delete every row of a sync space."""
        try:
            self.client.table(KV_TABLE).delete().eq('user_id', space).execute()
        except Exception as e:
            raise SyncError(f"Could not delete space {space}: {e}") from e


class SyncSession:
    """
    Outbound/inbound sync policy for one interactive session.

    - Nothing is pushed before the initial pull has resolved, so local
      defaults never overwrite a remote snapshot that has not loaded yet.
    - The initial pull is attempted once. After a failure the session
      stays local-only, so edits made meanwhile are never replaced by a
      later remote read.
    - Inside `bulk_update()` pushes are held back and one consolidated
      push happens when the outermost block exits.
    - Failures are logged and kept in `last_error`; they never raise.
    """

    def __init__(self, store: Optional[SnapshotStore], space: Optional[str]):
        self.store = store
        self.space = space or None
        self.has_synced = False
        self.pull_attempted = False
        self.last_error: Optional[str] = None
        self._bulk_depth = 0
        self._pending: Optional[Snapshot] = None

    @property
    def enabled(self) -> bool:
        return self.store is not None and bool(self.space)

    @property
    def bulk_in_progress(self) -> bool:
        return self._bulk_depth > 0

    def pull(self, local: Snapshot) -> Snapshot:
        """
        Initial pull. Returns the snapshot the session should adopt.

        A remote snapshot replaces local data (keeping the local sync
        space). An empty space is seeded with the local data. On failure
        local data is returned and the gate stays closed. Only the first
        call talks to the store; later calls return `local` unchanged.
        """
        if self.pull_attempted:
            return local
        self.pull_attempted = True
        if not self.enabled:
            self.has_synced = True
            return local

        try:
            remote = self.store.fetch_snapshot(self.space)
        except SyncError as e:
            logger.warning("Initial sync for space %s failed: %s", self.space, e)
            self.last_error = str(e)
            return local

        self.has_synced = True
        self.last_error = None
        if remote is None:
            logger.info("Space %s is empty, publishing local data", self.space)
            self._push(local)
            return local

        logger.info("Loaded %d record(s) from space %s", len(remote.day_records), self.space)
        return Snapshot(
            settings=remote.settings.with_changes(sync_space=local.settings.sync_space),
            day_records=remote.day_records
        )

    def notify_change(self, snapshot: Snapshot) -> bool:
        """Report a local mutation. Returns True if a push happened."""
        if self.bulk_in_progress:
            self._pending = snapshot
            return False
        if not self.enabled or not self.has_synced:
            return False
        return self._push(snapshot)

    @contextmanager
    def bulk_update(self) -> Iterator['SyncSession']:
        self._bulk_depth += 1
        try:
            yield self
        finally:
            self._bulk_depth -= 1
            if self._bulk_depth == 0 and self._pending is not None:
                pending, self._pending = self._pending, None
                self.notify_change(pending)

    def _push(self, snapshot: Snapshot) -> bool:
        try:
            self.store.upsert_snapshot(self.space, snapshot)
        except SyncError as e:
            logger.warning("Sync push to space %s failed: %s", self.space, e)
            self.last_error = str(e)
            return False
        logger.info("Pushed %d record(s) to space %s", len(snapshot.day_records), self.space)
        self.last_error = None
        return True

    def clear_remote(self) -> bool:
        """Delete the remote data of the current space."""
        if not self.enabled:
            return False
        try:
            self.store.delete_space(self.space)
        except SyncError as e:
            logger.warning("Could not clear space %s: %s", self.space, e)
            self.last_error = str(e)
            return False
        logger.info("Cleared remote space %s", self.space)
        return True
