from datetime import date

import pytest

from src.groona.services.date_normalizer import MONTHS, is_iso_date, parse_date


TODAY = date(2026, 3, 15)

_FULL_NAMES = [
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
]


@pytest.mark.parametrize("year", [2024, 2025, 2031])
@pytest.mark.parametrize("day", [1, 2, 3, 11, 22, 28])
@pytest.mark.parametrize("month", range(1, 13))
def test_day_month_year_forms_agree(year, day, month):
    name = _FULL_NAMES[month - 1]
    expected = date(year, month, day).isoformat()
    suffix = {1: "st", 2: "nd", 3: "rd", 22: "nd"}.get(day, "th")
    inputs = [
        f"{day} {name} {year}",
        f"{day}{suffix} {name} {year}",
        f"{name} {day} {year}",
        f"{name} {day}{suffix}, {year}",
        f"{name.capitalize()} {day}, {year}",
    ]
    for raw in inputs:
        assert parse_date(raw, today=TODAY) == expected, raw


def test_short_month_names_and_sept():
    assert parse_date("10 jan 2025") == "2025-01-10"
    assert parse_date("5 sept 2025") == "2025-09-05"
    assert parse_date("dec 31 2025") == "2025-12-31"


def test_invalid_calendar_date_is_not_clamped():
    assert parse_date("31 feb 2024") is None
    assert parse_date("30th february") is None


def test_missing_year_uses_current_year():
    assert parse_date("10th january", today=TODAY) == "2026-01-10"


def test_numeric_forms():
    assert parse_date("2025-01-10") == "2025-01-10"
    assert parse_date("2025/01/10") == "2025-01-10"
    # Month-first wins when both readings are valid.
    assert parse_date("01/02/2025") == "2025-01-02"
    # Day-first when the month-first reading is impossible.
    assert parse_date("25/12/2025") == "2025-12-25"
    assert parse_date("25/12/25", today=TODAY) == "2026-12-25"


def test_dates_inside_sentences():
    assert parse_date("we need it by 10 march 2027 please") == "2027-03-10"
    assert parse_date("ship on 2027-4-9 at the latest") == "2027-04-09"


@pytest.mark.parametrize("raw", [None, "", "   ", "soon", "next sprint", "maybe"])
def test_unparseable_returns_none(raw):
    assert parse_date(raw) is None


def test_is_iso_date():
    assert is_iso_date("2025-01-10")
    assert not is_iso_date("10 jan 2025")
    assert not is_iso_date(None)


def test_month_table_is_complete():
    assert [m for m, _ in MONTHS] == list(range(1, 13))
