import dateparser
from datetime import datetime, timedelta, timezone
from typing import Optional
import math
import pytz
import re

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def get_current_datetime(tz: str = "UTC") -> datetime:
    """Get current datetime with timezone"""
    return datetime.now(pytz.timezone(tz))


def round_half_up(value: float) -> int:
    """Round halves towards +inf (2.5 -> 3, -2.5 -> -2), unlike round()'s half-to-even."""
    return int(math.floor(value + 0.5))


def parse_iso_instant(value) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware datetime, or None.

    Accepts a trailing 'Z'. Naive timestamps are read as UTC.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def minutes_between(start_iso: str, end_iso: str) -> Optional[float]:
    """Elapsed minutes from start to end (may be negative), or None if unparseable."""
    start = parse_iso_instant(start_iso)
    end = parse_iso_instant(end_iso)
    if start is None or end is None:
        return None
    return (end - start).total_seconds() / 60.0


def _parse_next_weekday(text: str, base_date: datetime = None, tz: str = "UTC") -> datetime:
    """Parse 'next Monday', 'next Friday', etc. using live current date"""
    if base_date is None:
        base_date = get_current_datetime(tz)

    weekdays = {
        'monday': 0, 'tuesday': 1, 'wednesday': 2, 'thursday': 3,
        'friday': 4, 'saturday': 5, 'sunday': 6
    }

    text_lower = text.lower().strip()
    for day_name, day_num in weekdays.items():
        if day_name in text_lower:
            days_until = (day_num - base_date.weekday()) % 7
            if 'this' in text_lower:
                # "this Friday" on a Friday means today
                pass
            elif days_until == 0:
                # bare or "next" weekday on the same weekday means next week
                days_until = 7
            return base_date + timedelta(days=days_until)
    return None


def to_iso_date(text: str, tz: str = "UTC", base_date: datetime = None) -> str:
    """Convert an ISO date or a natural phrase ("tomorrow", "next Friday") to YYYY-MM-DD.

    Returns "" when the text cannot be understood.
    """
    if not text:
        return ""
    text_lower = text.lower().strip()
    if _ISO_DATE_RE.match(text_lower):
        try:
            return datetime.strptime(text_lower, "%Y-%m-%d").date().isoformat()
        except ValueError:
            return ""

    if base_date is None:
        base_date = get_current_datetime(tz)

    if re.search(r'\b(next|this)?\s*(monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b', text_lower):
        dt = _parse_next_weekday(text_lower, base_date, tz)
        if dt:
            return dt.date().isoformat()

    if text_lower == 'today':
        return base_date.date().isoformat()
    elif text_lower == 'tomorrow':
        return (base_date + timedelta(days=1)).date().isoformat()

    dt = dateparser.parse(text, settings={"RELATIVE_BASE": base_date.replace(tzinfo=None)})
    if dt:
        return dt.date().isoformat()

    return ""


def format_duration_minutes(total_minutes: int) -> str:
    """
    Convert duration in minutes to a compact human string, e.g. 85 -> "1h 25min".
    """
    if total_minutes is None or total_minutes < 0:
        return ""
    h = total_minutes // 60
    m = total_minutes % 60
    if h and m:
        return f"{h}h {m}min"
    if h:
        return f"{h}h"
    return f"{m}min"


def format_clock(iso_value: str) -> str:
    """Wall-clock "HH:MM" in the timestamp's own offset, or "--:--" when unparseable."""
    dt = parse_iso_instant(iso_value)
    if dt is None:
        return "--:--"
    return dt.strftime("%H:%M")
