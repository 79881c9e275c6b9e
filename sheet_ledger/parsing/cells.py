"""
Cell Parsing

Spreadsheet cells arrive untyped: a balance may be the number 50000000,
the string "50,000,000" or "₩50,000,000", and a date may be a serial day
count or one of two textual layouts. Everything in this module turns such
values into Decimal / date / int and never raises on bad input.

DESIGN DECISION: Formula error markers ("#REF!" and friends) are NOT
mapped to zero here. A zero balance is a real value, an error marker
means the row is unusable, so callers check is_formula_error() and skip
the row themselves (see RowSkipped).
"""

import math
import re
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional


# Serial day 25569 is 1970-01-01 in spreadsheet day-count epochs
SERIAL_EPOCH_OFFSET = 25569
UNIX_EPOCH = date(1970, 1, 1)

# Magnitudes strictly inside this band are read as ratios, not percentages
RATIO_BAND = (Decimal("0"), Decimal("10"))

FORMULA_ERROR_MARKERS = frozenset({
    "#N/A",
    "#VALUE!",
    "#DIV/0!",
    "#NAME?",
    "#NUM!",
    "#NULL!",
    "#ERROR!",
})

_STRIP_PATTERN = re.compile(r"[₩$€¥£,%\"\s]")
_YMD_PATTERN = re.compile(r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})$")
_MDY_PATTERN = re.compile(r"^(\d{1,2})[-/](\d{1,2})[-/](\d{4})$")
_MONTH_LABEL_PATTERN = re.compile(r"^(\d{1,2})\s*월?$")

ZERO = Decimal("0")


class RowSkipped(Exception):
    """A single row cannot be decoded and must be skipped by the scan."""

    def __init__(self, reason: str, row_index: Optional[int] = None):
        self.reason = reason
        self.row_index = row_index
        super().__init__(reason)


def cell_at(row: list, index: int) -> Any:
    """Return row[index], or None when the row is shorter than that."""
    if index < 0 or index >= len(row):
        return None
    return row[index]


def is_blank(cell: Any) -> bool:
    """True for None and whitespace-only strings."""
    if cell is None:
        return True
    return isinstance(cell, str) and not cell.strip()


def is_formula_error(cell: Any) -> bool:
    """True when the cell holds a formula evaluation failure marker."""
    if not isinstance(cell, str):
        return False
    text = cell.strip().upper()
    return "#REF" in text or text in FORMULA_ERROR_MARKERS


def _is_number(cell: Any) -> bool:
    return isinstance(cell, (int, float, Decimal)) and not isinstance(cell, bool)


def _to_decimal(cell: Any) -> Optional[Decimal]:
    if _is_number(cell):
        if isinstance(cell, float) and not math.isfinite(cell):
            return None
        value = Decimal(str(cell))
    elif isinstance(cell, str):
        text = _STRIP_PATTERN.sub("", cell)
        if not text:
            return None
        try:
            value = Decimal(text)
        except InvalidOperation:
            return None
    else:
        return None
    if not value.is_finite():
        return None
    return value


def parse_amount(cell: Any) -> Decimal:
    """
    Parse a monetary cell into a Decimal.

    Currency symbols, thousands separators, percent signs and whitespace
    are stripped; a leading minus is kept. Anything unparseable is 0.
    """
    value = _to_decimal(cell)
    return ZERO if value is None else value


def parse_optional_amount(cell: Any) -> Optional[Decimal]:
    """Like parse_amount, but None when the cell carries no number."""
    return _to_decimal(cell)


def parse_percent(cell: Any) -> Decimal:
    """
    Parse a percentage cell.

    Upstream sheets mix two encodings: formatted percentages ("15.5%")
    and raw ratios ("1.566"). A magnitude strictly between 0 and 10 is
    taken as a ratio and multiplied by 100. Small real percentages such
    as "3" are therefore read as 300; that ambiguity is kept as is.
    """
    value = parse_amount(cell)
    low, high = RATIO_BAND
    if low < abs(value) < high:
        return value * 100
    return value


def parse_date(cell: Any) -> Optional[date]:
    """
    Parse a date cell.

    Accepts a numeric serial day count, YYYY-MM-DD / YYYY/MM/DD and
    MM-DD-YYYY / MM/DD/YYYY. Returns None when nothing matches; callers
    skip the row.
    """
    if _is_number(cell):
        serial = float(cell)
        if not math.isfinite(serial):
            return None
        try:
            return UNIX_EPOCH + timedelta(days=math.floor(serial - SERIAL_EPOCH_OFFSET))
        except OverflowError:
            return None

    if not isinstance(cell, str):
        return None

    text = cell.strip()
    match = _YMD_PATTERN.match(text)
    if match:
        year, month, day = (int(g) for g in match.groups())
    else:
        match = _MDY_PATTERN.match(text)
        if not match:
            return None
        month, day, year = (int(g) for g in match.groups())

    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_month_token(numeric: Any, label: Any = None) -> int:
    """
    Resolve a month number from a numeric column and/or a "N월" label.

    The numeric column wins when it holds a valid month; the label is
    only consulted otherwise. Returns 0 when neither yields 1..12.
    """
    value = _to_decimal(numeric)
    if value is not None and value == value.to_integral_value() and 1 <= value <= 12:
        return int(value)

    if isinstance(label, str):
        match = _MONTH_LABEL_PATTERN.match(label.strip())
        if match:
            month = int(match.group(1))
            if 1 <= month <= 12:
                return month
    elif _is_number(label):
        return parse_month_token(label)

    return 0


def parse_int(cell: Any) -> Optional[int]:
    """Parse an integral cell; None for blanks, garbage and fractions."""
    value = _to_decimal(cell)
    if value is None or value != value.to_integral_value():
        return None
    return int(value)
