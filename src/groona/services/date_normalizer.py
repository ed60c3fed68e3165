"""Loose human date text to canonical ``YYYY-MM-DD``.

Only English month names are understood. When no year is given the current
calendar year is assumed, so "10 jan" typed in December lands in the past;
callers relying on future dates must check that themselves.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Optional, Tuple


MONTHS: Tuple[Tuple[int, str], ...] = (
    (1, "january|jan"),
    (2, "february|feb"),
    (3, "march|mar"),
    (4, "april|apr"),
    (5, "may"),
    (6, "june|jun"),
    (7, "july|jul"),
    (8, "august|aug"),
    (9, "september|sept|sep"),
    (10, "october|oct"),
    (11, "november|nov"),
    (12, "december|dec"),
)

_ORDINAL = re.compile(r"(\d+)(st|nd|rd|th)\b")
_ISO = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_SLASH = re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{4}|\d{2})\b")
_DASH = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b")

# Formats tried by the generic step, in order. US month-first wins for
# ambiguous slash dates; day-first slash dates are picked up afterwards.
_GENERIC_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%m-%d-%Y",
    "%B %d %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%b %d, %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%a %b %d %Y",
)


def _month_patterns():
    for month, names in MONTHS:
        day_first = re.compile(rf"\b(\d{{1,2}})\s+(?:{names})\b\.?(?:,?\s+(\d{{4}}))?")
        month_first = re.compile(rf"\b(?:{names})\b\.?\s+(\d{{1,2}})\b(?:,?\s+(\d{{4}}))?")
        yield month, day_first, month_first


_MONTH_PATTERNS = tuple(_month_patterns())


def is_iso_date(value: object) -> bool:
    return isinstance(value, str) and bool(_ISO.match(value.strip()))


def _build(year: int, month: int, day: int) -> Optional[str]:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def _generic(raw: str) -> Optional[str]:
    text = " ".join(raw.strip().split())
    try:
        return datetime.fromisoformat(text).date().isoformat()
    except ValueError:
        pass
    for fmt in _GENERIC_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def parse_date(raw: Optional[str], today: Optional[date] = None) -> Optional[str]:
    """Return an ISO date for ``raw`` or ``None`` when nothing matches.

    A month-name match with an impossible day (``31 feb``) yields ``None``
    straight away; the value is never clamped into a neighbouring date.
    """

    if not raw or not str(raw).strip():
        return None
    current_year = (today or date.today()).year
    text = _ORDINAL.sub(r"\1", str(raw).strip().lower())

    for month, day_first, month_first in _MONTH_PATTERNS:
        for pattern in (day_first, month_first):
            match = pattern.search(text)
            if not match:
                continue
            day = int(match.group(1))
            year = int(match.group(2)) if match.group(2) else current_year
            return _build(year, month, day)

    generic = _generic(str(raw))
    if generic:
        return generic

    match = _SLASH.search(text)
    if match:
        day, month, year_raw = int(match.group(1)), int(match.group(2)), match.group(3)
        year = int(year_raw) if len(year_raw) == 4 else current_year
        return _build(year, month, day)

    match = _DASH.search(text)
    if match:
        return _build(int(match.group(1)), int(match.group(2)), int(match.group(3)))

    return None
