"""Derived financial series package."""

from sheet_ledger.series.aggregator import (
    DEFAULT_CONVERSION_RATE,
    KRW,
    TOTAL,
    USD,
    compare_yields,
    cumulative,
    forward_fill,
    monthly_from_records,
    rolling_average,
    year_over_year,
    year_to_date_yields,
    yearly_totals,
    yield_comparison,
)
from sheet_ledger.series.enricher import IndexBlockLayout, RateEnricher

__all__ = [
    "DEFAULT_CONVERSION_RATE",
    "KRW",
    "TOTAL",
    "USD",
    "compare_yields",
    "cumulative",
    "forward_fill",
    "monthly_from_records",
    "rolling_average",
    "year_over_year",
    "year_to_date_yields",
    "yearly_totals",
    "yield_comparison",
    "IndexBlockLayout",
    "RateEnricher",
]
