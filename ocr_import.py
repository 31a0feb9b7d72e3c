"""
Screenshot import: OCR text extraction, parsing of "date + hours" lines,
the merge rule for imported hours, and a best-effort guess of which
Saturdays belong to small weeks.
"""

import io
import logging
import re
from dataclasses import replace
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, NamedTuple

import pytesseract
from PIL import Image

from calc import NO_HOLIDAYS, SATURDAY, create_record, parse_hours, set_small_week
from models import DayRecord, Settings

logger = logging.getLogger(__name__)

OCR_LANGUAGES = {
    'chi_sim+eng': 'Chinese (simplified) + English',
    'eng': 'English'
}

DATE_PATTERN = re.compile(r'(\d{4})[-/年](\d{1,2})[-/月](\d{1,2})')
HOURS_PATTERN = re.compile(r'(\d{1,2}(?:[.,]\d+)?)\s*(?:小时|h)', re.IGNORECASE)
SMALL_WEEK_CYCLE_DAYS = 14


class ImportResult(NamedTuple):
    records: List[DayRecord]
    imported: int
    # items actually written, same shape as parse_ocr_text output
    written: List[Dict[str, Any]]


def recognize_image(data: bytes, lang: str = 'chi_sim+eng') -> str:
    """Run Tesseract over an uploaded screenshot and return the raw text."""
    with Image.open(io.BytesIO(data)) as image:
        return pytesseract.image_to_string(image, lang=lang)


def parse_ocr_text(text: str) -> List[Dict[str, Any]]:
    """
    Extract (date, hours) pairs from OCR output.

    A line counts when it holds a date such as 2025-08-01, 2025/08/01 or
    2025年08月01 and an amount such as 11.5小时 or 11.5h.

    Returns:
        List of {'date': 'YYYY-MM-DD', 'hours': float}
    """
    items = []
    for line in (raw.strip() for raw in text.splitlines()):
        if not line:
            continue
        date_match = DATE_PATTERN.search(line)
        if not date_match:
            continue
        # look for hours outside the date so "01 1" is never read as hours
        rest = line[:date_match.start()] + ' ' + line[date_match.end():]
        hours_match = HOURS_PATTERN.search(rest)
        if not hours_match:
            continue
        try:
            day = date(*(int(part) for part in date_match.groups()))
        except ValueError:
            logger.debug("Ignoring impossible date in OCR line %r", line)
            continue
        items.append({
            'date': day.isoformat(),
            'hours': float(hours_match.group(1).replace(',', '.'))
        })
    return items


def _parse_items(items: Iterable[Dict[str, Any]]) -> List[tuple]:
    parsed = []
    for item in items:
        try:
            parsed.append((date.fromisoformat(str(item['date'])[:10]), parse_hours(item['hours'])))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping OCR item %r: %s", item, e)
    return parsed


def apply_ocr_import(
    records: List[DayRecord],
    items: Iterable[Dict[str, Any]],
    year: int,
    month: int,
    overwrite: bool,
    settings: Settings,
    facts=NO_HOLIDAYS
) -> ImportResult:
    """
    Merge imported hours into the viewed month.

    Items outside (year, month) are ignored. Hours are written when
    `overwrite` is set, when no record exists, or when the record has no
    hours yet. Leave days are never written.
    """
    by_date = {record.date: record for record in records}
    written = []

    for day, hours in _parse_items(items):
        if day.year != year or day.month != month:
            continue
        existing = by_date.get(day)
        if existing is None:
            existing = create_record(day, settings, facts)
        elif existing.is_leave:
            # a leave day always carries zero hours, even with overwrite
            continue
        elif not (overwrite or existing.actual_hours == 0):
            continue
        by_date[day] = replace(existing, actual_hours=hours)
        written.append({'date': day.isoformat(), 'hours': hours})

    logger.info("OCR import for %d-%02d: %d item(s) written", year, month, len(written))
    records = sorted(by_date.values(), key=lambda record: record.date)
    return ImportResult(records, len(written), written)


def infer_small_weeks(
    items: Iterable[Dict[str, Any]],
    year: int,
    month: int,
    small_week_hours: float
) -> List[date]:
    """
    Guess the small-week Saturdays of a month from imported hours.

    Saturdays worked for at least `small_week_hours` are evidence. The
    earliest one anchors a 14-day cycle; Saturdays on that cycle are
    proposed too unless the import shows them with fewer hours.

    Pass `ImportResult.written`, not the raw parse: skipped items are
    not evidence.
    """
    saturday_hours = {
        day: hours for day, hours in _parse_items(items)
        if day.year == year and day.month == month and day.weekday() == SATURDAY
    }
    evidence = sorted(day for day, hours in saturday_hours.items() if hours >= small_week_hours)
    if not evidence:
        return []
    anchor = evidence[0]

    proposed = set(evidence)
    day = date(year, month, 1)
    day += timedelta(days=(SATURDAY - day.weekday()) % 7)
    while day.month == month:
        contradicted = day in saturday_hours and saturday_hours[day] < small_week_hours
        if (day - anchor).days % SMALL_WEEK_CYCLE_DAYS == 0 and not contradicted:
            proposed.add(day)
        day += timedelta(days=7)
    return sorted(proposed)


def apply_small_weeks(settings: Settings, saturdays: Iterable[date]) -> Settings:
    """Register inferred small weeks through the regular override rules."""
    work_weeks = list(settings.work_weeks)
    for saturday in saturdays:
        work_weeks = set_small_week(work_weeks, saturday, True)
    return settings.with_changes(work_weeks=work_weeks)
