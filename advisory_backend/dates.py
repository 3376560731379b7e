"""Date handling for spreadsheet cells and uploaded file names.

Spreadsheet exports mix two encodings for the same column: numeric day serials
counted from the 1900 epoch and delimited text such as ``2024.03.31``. Everything
here is pure and returns calendar dates without time or zone.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from dateutil import parser as date_parser

from .exceptions import MissingDateError

# Serial 1 is 1900-01-01, so day zero is the last day of 1899.
SPREADSHEET_EPOCH = date(1899, 12, 31)
# The 1900 date system counts a 1900-02-29 that never existed.
PHANTOM_LEAP_SERIAL = 60
MAX_SERIAL = (date(9999, 12, 31) - SPREADSHEET_EPOCH).days + 1

DELIMITED_DATE_RE = re.compile(r"^\s*(\d{4})[./-](\d{1,2})[./-](\d{1,2})\.?\s*$")
NUMERIC_RE = re.compile(r"^\s*\d+(\.\d+)?\s*$")
# Two fallbacks that differ in every field: a component the text leaves out shows up as a mismatch.
FALLBACK_DEFAULTS = (datetime(2000, 1, 1), datetime(2001, 2, 2))
FILENAME_DATE_RE = re.compile(r"(\d{4}-\d{2}-\d{2})")


def serial_to_date(serial: float) -> Optional[date]:
    if math.isnan(serial) or math.isinf(serial):
        return None
    days = math.floor(serial)
    if days < 1 or days > MAX_SERIAL:
        return None
    if days > PHANTOM_LEAP_SERIAL:
        days -= 1
    return SPREADSHEET_EPOCH + timedelta(days=days)


def _as_serial(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    if isinstance(value, str) and NUMERIC_RE.match(value):
        try:
            return float(Decimal(value.strip()))
        except InvalidOperation:
            return None
    return None


def _from_delimited(text: str) -> Optional[date]:
    match = DELIMITED_DATE_RE.match(text)
    if not match:
        return None
    year, month, day = (int(part) for part in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _parse_complete(text: str) -> Optional[date]:
    """Parse free-form text only when it names a year, a month and a day."""
    try:
        first, second = (date_parser.parse(text, default=default).date() for default in FALLBACK_DEFAULTS)
    except (ValueError, OverflowError):
        return None
    return first if first == second else None


def to_calendar_date(value: Any) -> Optional[date]:
    """Convert a raw cell value into a calendar date, or ``None``."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    serial = _as_serial(value)
    if serial is not None:
        return serial_to_date(serial)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    parsed = _from_delimited(text)
    if parsed is not None:
        return parsed
    return _parse_complete(text)


def normalize_date(value: Any) -> Optional[str]:
    """Return the ISO ``YYYY-MM-DD`` form of a raw cell value, or ``None``."""
    parsed = to_calendar_date(value)
    return parsed.isoformat() if parsed else None


def extract_date_from_filename(filename: Optional[str]) -> date:
    """Return the first valid ``YYYY-MM-DD`` date embedded in a file name.

    Raises:
        MissingDateError: the name carries no such date.
    """
    for candidate in FILENAME_DATE_RE.findall(filename or ""):
        try:
            return date.fromisoformat(candidate)
        except ValueError:
            continue
    raise MissingDateError(
        "Cannot extract a date from the file name; it must contain a YYYY-MM-DD date",
        context={"file_name": filename},
    )
