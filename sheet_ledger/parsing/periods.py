"""Period key helpers ("YY.MM" strings and calendar month arithmetic)."""

import re
from datetime import date
from typing import Iterator, Optional

PERIOD_KEY_PATTERN = re.compile(r"^(\d{2})\.(\d{2})$")


def period_key(year: int, month: int) -> str:
    """Format a calendar month as "YY.MM"."""
    return f"{year % 100:02d}.{month:02d}"


def period_key_for(day: date) -> str:
    return period_key(day.year, day.month)


def is_period_key(value: object) -> bool:
    if not isinstance(value, str):
        return False
    match = PERIOD_KEY_PATTERN.match(value.strip())
    return bool(match) and 1 <= int(match.group(2)) <= 12


def parse_period_key(value: str) -> Optional[tuple[int, int]]:
    """Return (year, month) for a "YY.MM" key, with the year taken as 20YY."""
    if not is_period_key(value):
        return None
    yy, mm = value.strip().split(".")
    return 2000 + int(yy), int(mm)


def year_month(year: int, month: int) -> str:
    """Format a calendar month as "YYYY-MM"."""
    return f"{year:04d}-{month:02d}"


def parse_year_month(value: str) -> tuple[int, int]:
    """Parse "YYYY-MM" into (year, month). Raises ValueError on bad input."""
    match = re.match(r"^(\d{4})-(\d{1,2})$", value.strip())
    if not match:
        raise ValueError(f"Expected YYYY-MM, got {value!r}")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValueError(f"Month out of range in {value!r}")
    return year, month


def next_month(year: int, month: int) -> tuple[int, int]:
    if month == 12:
        return year + 1, 1
    return year, month + 1


def months_between(start: tuple[int, int], end: tuple[int, int]) -> Iterator[tuple[int, int]]:
    """Yield every (year, month) from start to end, both inclusive."""
    current = start
    while current <= end:
        yield current
        current = next_month(*current)


def month_distance(start: tuple[int, int], end: tuple[int, int]) -> int:
    """Whole months from start to end (negative if end precedes start)."""
    return (end[0] - start[0]) * 12 + (end[1] - start[1])
