"""Cell and period parsing package."""

from sheet_ledger.parsing.cells import (
    FORMULA_ERROR_MARKERS,
    RowSkipped,
    cell_at,
    is_blank,
    is_formula_error,
    parse_amount,
    parse_date,
    parse_int,
    parse_month_token,
    parse_optional_amount,
    parse_percent,
)
from sheet_ledger.parsing.periods import (
    is_period_key,
    month_distance,
    months_between,
    next_month,
    parse_period_key,
    parse_year_month,
    period_key,
    period_key_for,
    year_month,
)

__all__ = [
    "FORMULA_ERROR_MARKERS",
    "RowSkipped",
    "cell_at",
    "is_blank",
    "is_formula_error",
    "parse_amount",
    "parse_date",
    "parse_int",
    "parse_month_token",
    "parse_optional_amount",
    "parse_percent",
    "is_period_key",
    "month_distance",
    "months_between",
    "next_month",
    "parse_period_key",
    "parse_year_month",
    "period_key",
    "period_key_for",
    "year_month",
]
