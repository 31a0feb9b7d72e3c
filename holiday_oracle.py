"""
Public-holiday calendar for required-hours calculation.

Fetches holiday / compensatory-workday facts per year, keeps them in an
explicit cache object (memory for the life of the process, optionally a
JSON file with a 24h freshness window) and answers synchronous lookups
from whatever is already cached.

Usage:
    oracle = create_holiday_oracle(source='api')
    oracle.get_holidays(2025)          # blocks, shared by concurrent callers
    oracle.is_holiday(date(2025, 10, 1))
"""

import json
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import date
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

import holidays
import requests

from models import Holiday, HolidayKind

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = 'https://holiday.cyi.me'
CACHE_TTL_SECONDS = 24 * 60 * 60
RETRY_AFTER_SECONDS = 300

Fetcher = Callable[[int], List[Holiday]]


class HolidayFetchError(Exception):
    """Raised when the holiday source cannot deliver data for a year."""


def fetch_cn_holidays(
    year: int,
    base_url: str = DEFAULT_API_BASE,
    session: Optional[requests.Session] = None,
    timeout: float = 10
) -> List[Holiday]:
    """
    Load mainland China holidays and adjusted workdays for one year.

    The API answers {"days": [{"date", "name", "isOffDay"}, ...]};
    isOffDay=false marks a weekend that is worked to compensate.

    Raises:
        HolidayFetchError: On HTTP failure or an unexpected response body
    """
    url = f"{base_url.rstrip('/')}/api/holidays"
    http = session or requests
    try:
        response = http.get(url, params={'year': year}, timeout=timeout)
        response.raise_for_status()
        body = response.json()
    except (requests.RequestException, ValueError) as e:
        raise HolidayFetchError(f"Holiday API request for {year} failed: {e}") from e

    days = body.get('days') if isinstance(body, dict) else None
    if not isinstance(days, list):
        raise HolidayFetchError("Holiday API response format unexpected")

    result = []
    for entry in days:
        try:
            off_day = bool(entry.get('isOffDay'))
            result.append(Holiday(
                date=date.fromisoformat(str(entry['date'])[:10]),
                name=entry.get('name') or ('Holiday' if off_day else 'Adjusted workday'),
                kind=HolidayKind.HOLIDAY if off_day else HolidayKind.COMPENSATORY_WORKDAY
            ))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping malformed holiday entry %r: %s", entry, e)
    return result


def library_holidays(year: int, country: str = 'CN', subdiv: Optional[str] = None) -> List[Holiday]:
    """Offline source from the `holidays` package (no compensatory workdays)."""
    calendar_ = holidays.country_holidays(country, subdiv=subdiv or None, years=year)
    return [
        Holiday(date=day, name=name, kind=HolidayKind.HOLIDAY)
        for day, name in sorted(calendar_.items())
    ]


class HolidayCache:
    """Per-year holiday cache: memory plus an optional TTL-bounded JSON file."""

    def __init__(
        self,
        cache_file: Optional[Union[str, Path]] = None,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time
    ):
        """
        Args:
            cache_file: JSON file for persistence across restarts (optional)
            ttl_seconds: Freshness window for file entries
            clock: Time source, injectable for tests
        """
        self.cache_file = Path(cache_file) if cache_file else None
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._memory: Dict[int, List[Holiday]] = {}
        self._lock = threading.Lock()

    def _load_file(self) -> Dict[str, Dict]:
        if self.cache_file is None or not self.cache_file.exists():
            return {}
        try:
            with open(self.cache_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Could not read holiday cache %s: %s", self.cache_file, e)
            return {}

    def _save_file(self, data: Dict[str, Dict]) -> None:
        tmp = self.cache_file.with_suffix('.tmp')
        try:
            self.cache_file.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            tmp.replace(self.cache_file)
        except IOError as e:
            logger.warning("Could not write holiday cache %s: %s", self.cache_file, e)

    def peek(self, year: int) -> Optional[List[Holiday]]:
        """Memory-only lookup."""
        with self._lock:
            return self._memory.get(year)

    def get(self, year: int) -> Optional[List[Holiday]]:
        """Return cached holidays for `year`, or None when absent or stale."""
        cached = self.peek(year)
        if cached is not None:
            return cached

        entry = self._load_file().get(str(year))
        if not entry:
            return None
        cached_at = entry.get('cachedAt')
        if not isinstance(cached_at, (int, float)) or self._clock() - cached_at >= self.ttl_seconds:
            logger.debug("Holiday cache for %s is stale", year)
            return None
        try:
            data = [Holiday.from_dict(item) for item in entry.get('data') or []]
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Ignoring corrupt holiday cache entry for %s: %s", year, e)
            return None
        if not data:
            return None

        with self._lock:
            self._memory[year] = data
        logger.debug("Holiday cache hit for %s (%d entries)", year, len(data))
        return data

    def put(self, year: int, entries: List[Holiday]) -> None:
        """Store holidays for `year`; empty results are kept in memory only."""
        entries = list(entries)
        # one lock over memory and the file's read-modify-write
        with self._lock:
            self._memory[year] = entries
            if self.cache_file is None or not entries:
                return
            data = self._load_file()
            data[str(year)] = {
                'data': [item.to_dict() for item in entries],
                'cachedAt': self._clock()
            }
            self._save_file(data)

    def cached_at(self, year: int) -> Optional[float]:
        entry = self._load_file().get(str(year)) or {}
        return entry.get('cachedAt')

    def clear(self) -> None:
        with self._lock:
            self._memory.clear()
            if self.cache_file is not None and self.cache_file.exists():
                self.cache_file.unlink()


class HolidayOracle:
    """
    Holiday facts with per-year request coalescing.

    Only one fetch per year is in flight at a time; concurrent callers
    share its result. A failed year is not retried until `retry_after`
    seconds have passed, and meanwhile reads as "no holidays".
    """

    def __init__(
        self,
        fetcher: Optional[Fetcher] = None,
        cache: Optional[HolidayCache] = None,
        retry_after: float = RETRY_AFTER_SECONDS,
        clock: Callable[[], float] = time.time
    ):
        self.fetcher = fetcher or fetch_cn_holidays
        self.cache = cache if cache is not None else HolidayCache()
        self.retry_after = retry_after
        self._clock = clock
        self._pending: Dict[int, Future] = {}
        self._failed_at: Dict[int, float] = {}
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None

    def _claim(self, year: int) -> Tuple[Future, bool]:
        with self._lock:
            future = self._pending.get(year)
            if future is not None:
                return future, False
            failed_at = self._failed_at.get(year)
            if failed_at is not None and self._clock() - failed_at < self.retry_after:
                done: Future = Future()
                done.set_result([])
                return done, False
            future = Future()
            self._pending[year] = future
            return future, True

    def _run(self, year: int, future: Future) -> None:
        try:
            result = list(self.fetcher(year))
        except Exception as e:
            logger.warning("Could not load holidays for %s: %s", year, e)
            with self._lock:
                self._failed_at[year] = self._clock()
            result = []
        else:
            self.cache.put(year, result)
            with self._lock:
                self._failed_at.pop(year, None)
            logger.info("Loaded %d holiday entries for %s", len(result), year)
        finally:
            with self._lock:
                self._pending.pop(year, None)
        future.set_result(result)

    def get_holidays(self, year: int) -> List[Holiday]:
        """Holidays for `year`, fetching on a cache miss. Never raises on fetch failure."""
        cached = self.cache.get(year)
        if cached is not None:
            return cached
        future, owner = self._claim(year)
        if owner:
            self._run(year, future)
        return future.result()

    def prefetch(self, year: int) -> Future:
        """Start loading `year` in the background and return the shared future."""
        cached = self.cache.get(year)
        if cached is not None:
            done: Future = Future()
            done.set_result(cached)
            return done
        future, owner = self._claim(year)
        if owner:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix='holidays')
            self._executor.submit(self._run, year, future)
        return future

    def is_loaded(self, year: int) -> bool:
        return self.cache.peek(year) is not None

    def _entries_for(self, day: date) -> List[Holiday]:
        return [item for item in self.cache.peek(day.year) or [] if item.date == day]

    def is_holiday(self, day: date) -> bool:
        return any(item.kind == HolidayKind.HOLIDAY for item in self._entries_for(day))

    def is_compensatory_workday(self, day: date) -> bool:
        return any(item.kind == HolidayKind.COMPENSATORY_WORKDAY for item in self._entries_for(day))

    def holiday_name(self, day: date) -> Optional[str]:
        entries = self._entries_for(day)
        return entries[0].name if entries else None

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None


def create_holiday_oracle(
    source: str = 'api',
    country: str = 'CN',
    api_base: str = DEFAULT_API_BASE,
    cache_file: Optional[Union[str, Path]] = None
) -> HolidayOracle:
    """
    Build an oracle for the configured source.

    Args:
        source: 'api' (holiday API with adjusted workdays) or 'library' (holidays package)
        country: Country code for the library source
        api_base: Base URL of the holiday API
        cache_file: Optional persistent cache file
    """
    if source == 'library':
        def fetcher(year: int) -> List[Holiday]:
            return library_holidays(year, country)
    elif source == 'api':
        def fetcher(year: int) -> List[Holiday]:
            return fetch_cn_holidays(year, base_url=api_base)
    else:
        raise ValueError(f"Unknown holiday source: {source}")
    return HolidayOracle(fetcher=fetcher, cache=HolidayCache(cache_file))
