from __future__ import annotations

import re

from timetabler.core.config import WEEK_DAYS

DAY_VALUES = set(WEEK_DAYS)

DAY_SHORT_MAP = {
    "Mon": "Monday",
    "Tue": "Tuesday",
    "Wed": "Wednesday",
    "Thu": "Thursday",
    "Fri": "Friday",
    "Sat": "Saturday",
    "Sun": "Sunday",
}

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def parse_time_to_minutes(value: str) -> int:
    if not TIME_PATTERN.match(value):
        raise ValueError("Time must be in HH:MM 24-hour format")
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def minutes_to_time(value: int) -> str:
    hours = value // 60
    minutes = value % 60
    return f"{hours:02d}:{minutes:02d}"


def normalize_day(value: str) -> str:
    """Accepts `Mon`, `monday` or `MONDAY` and returns the canonical `Monday` form."""
    cleaned = value.strip().capitalize()
    return DAY_SHORT_MAP.get(cleaned, cleaned)


def hour_range_label(start_time: str, end_time: str) -> str:
    return f"{start_time}-{end_time}"
