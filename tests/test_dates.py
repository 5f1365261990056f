from datetime import datetime, timezone

import pytest
import pytz

from app.utils.dates import (
    format_clock,
    format_duration_minutes,
    minutes_between,
    parse_iso_instant,
    round_half_up,
    to_iso_date,
)


# Wednesday
BASE = pytz.timezone("Europe/London").localize(datetime(2025, 6, 4, 9, 0))


def test_parse_iso_instant_variants():
    assert parse_iso_instant("2025-06-01T08:00:00Z") == datetime(2025, 6, 1, 8, tzinfo=timezone.utc)
    assert parse_iso_instant("2025-06-01T10:00:00+02:00") == datetime(2025, 6, 1, 8, tzinfo=timezone.utc)
    # naive is read as UTC
    assert parse_iso_instant("2025-06-01T08:00:00").tzinfo is not None
    for bad in (None, "", "   ", "soon", 1717228800):
        assert parse_iso_instant(bad) is None


def test_minutes_between():
    assert minutes_between("2025-06-01T08:00:00Z", "2025-06-01T09:30:00Z") == 90
    assert minutes_between("2025-06-01T09:30:00Z", "2025-06-01T08:00:00Z") == -90
    assert minutes_between("x", "2025-06-01T08:00:00Z") is None


@pytest.mark.parametrize("value,expected", [(2.5, 3), (2.4999, 2), (-2.5, -2), (12.5, 13), (0.0, 0)])
def test_round_half_up(value, expected):
    assert round_half_up(value) == expected


@pytest.mark.parametrize("text,expected", [
    ("2025-06-01", "2025-06-01"),
    ("today", "2025-06-04"),
    ("tomorrow", "2025-06-05"),
    ("Friday", "2025-06-06"),
    ("next wednesday", "2025-06-11"),
    ("this wednesday", "2025-06-04"),
])
def test_to_iso_date(text, expected):
    assert to_iso_date(text, base_date=BASE) == expected


@pytest.mark.parametrize("text", ["", "2025-13-40", "??"])
def test_to_iso_date_rejects(text):
    assert to_iso_date(text, base_date=BASE) == ""


@pytest.mark.parametrize("minutes,expected", [(85, "1h 25min"), (120, "2h"), (45, "45min"), (0, "0min"), (-1, "")])
def test_format_duration_minutes(minutes, expected):
    assert format_duration_minutes(minutes) == expected


def test_format_clock():
    assert format_clock("2025-06-01T08:05:00Z") == "08:05"
    assert format_clock("2025-06-01T10:00:00+02:00") == "10:00"
    assert format_clock("garbage") == "--:--"
