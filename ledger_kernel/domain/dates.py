"""
Movement date parsing (``ledger_kernel.domain.dates``).

Movement rows keep the date exactly as it was stored.  Legacy spreadsheet
imports carry ``D/M/YYYY`` strings or raw spreadsheet serial numbers next to
ISO dates, so every consumer parses through ``parse_movement_date``.  A row
whose date cannot be parsed is an opening-balance row for projection purposes.
"""

from __future__ import annotations

import calendar
import re
from datetime import date, timedelta

_ISO_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_SLASH_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")

# Spreadsheet day 0; serial 25569 is 1970-01-01.
_SERIAL_EPOCH = date(1899, 12, 30)
_SERIAL_MIN = 20000


def parse_movement_date(raw: object) -> date | None:
    """
    Parse a stored movement date.

    Accepts ``YYYY-MM-DD``, ``D/M/YYYY`` and spreadsheet serial numbers above
    20000.  Returns None for anything else, including impossible calendar
    dates.
    """
    if raw is None:
        return None
    if isinstance(raw, date):
        return raw
    text = str(raw).strip()
    if not text:
        return None

    try:
        match = _ISO_RE.match(text)
        if match:
            return date(int(match[1]), int(match[2]), int(match[3]))
        match = _SLASH_RE.match(text)
        if match:
            return date(int(match[3]), int(match[2]), int(match[1]))
    except ValueError:
        return None

    try:
        serial = float(text)
    except ValueError:
        return None
    if serial != serial or serial <= _SERIAL_MIN:  # NaN or too small
        return None
    try:
        return _SERIAL_EPOCH + timedelta(days=int(serial))
    except OverflowError:
        return None


def month_end(day: date) -> date:
    """Last calendar day of the month containing ``day``."""
    last = calendar.monthrange(day.year, day.month)[1]
    return date(day.year, day.month, last)


def month_key(day: date) -> str:
    """``YYYY-MM`` key for grouping."""
    return f"{day.year:04d}-{day.month:02d}"


def year_key(day: date) -> str:
    return f"{day.year:04d}"
