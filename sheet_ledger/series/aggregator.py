"""
Series Aggregation

Turns decoded ledger records into the series the dashboards render.

DESIGN DECISION: The math functions (rolling_average, cumulative,
year_over_year) keep None for months without data. Only forward_fill
replaces gaps, and only for trend lines meant for display.

Series labels are "YY.MM" period keys, so a series can be joined with the
historical rate table directly.
"""

from collections import defaultdict
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Optional

from sheet_ledger.models.records import DividendRecord
from sheet_ledger.models.series import SeriesPoint, YieldComparison
from sheet_ledger.parsing.periods import (
    month_distance,
    months_between,
    parse_period_key,
    period_key,
)

DEFAULT_CONVERSION_RATE = Decimal("1400")
ROLLING_WINDOW = 12

# Value names of a monthly dividend point
KRW = "krw"
USD = "usd"
TOTAL = "total"

ZERO = Decimal("0")
_ONE_DECIMAL = Decimal("0.1")
_TWO_DECIMALS = Decimal("0.01")


def _conversion_rate(
    key: str,
    rates: Optional[Mapping[str, Decimal]],
    default_rate: Decimal,
) -> Decimal:
    if rates:
        rate = rates.get(key)
        if rate is not None and rate > 0:
            return rate
    return default_rate


def _grouped(
    records: Iterable[DividendRecord],
    rates: Optional[Mapping[str, Decimal]],
    default_rate: Decimal,
) -> dict[tuple[int, int], dict[str, Decimal]]:
    groups: dict[tuple[int, int], dict[str, Decimal]] = defaultdict(
        lambda: {KRW: ZERO, USD: ZERO, TOTAL: ZERO}
    )
    for record in records:
        month = (record.date.year, record.date.month)
        rate = _conversion_rate(period_key(*month), rates, default_rate)
        group = groups[month]
        group[KRW] += record.amount_krw
        group[USD] += record.amount_usd
        group[TOTAL] += record.converted_total(rate)
    return groups


def monthly_from_records(
    records: Iterable[DividendRecord],
    rates: Optional[Mapping[str, Decimal]] = None,
    default_rate: Decimal = DEFAULT_CONVERSION_RATE,
) -> list[SeriesPoint]:
    """
    Monthly sums in calendar order, one point per month from the first to
    the last month with data.

    USD amounts are converted with the rate of the record's own month,
    or `default_rate` when that month has no rate. Months in between
    without any record carry None values.
    """
    groups = _grouped(records, rates, default_rate)
    if not groups:
        return []

    months = sorted(groups)
    series = []
    for year, month in months_between(months[0], months[-1]):
        sums = groups.get((year, month))
        values = dict(sums) if sums is not None else {KRW: None, USD: None, TOTAL: None}
        series.append(SeriesPoint(label=period_key(year, month), values=values))
    return series


def rolling_average(
    series: list[SeriesPoint],
    field: str = TOTAL,
    window: int = ROLLING_WINDOW,
) -> list[SeriesPoint]:
    """
    Trailing average over up to `window` points.

    The divisor is the number of points in the window that actually hold
    a value, so the first year ramps up instead of being diluted by empty
    months. A window without any value yields None.
    """
    averages = []
    for index, point in enumerate(series):
        start = max(0, index - window + 1)
        present = [
            value for value in (p.get(field) for p in series[start:index + 1])
            if value is not None
        ]
        average = sum(present, ZERO) / len(present) if present else None
        averages.append(SeriesPoint(label=point.label, values={field: average}))
    return averages


def cumulative(series: list[SeriesPoint], field: str = TOTAL) -> list[SeriesPoint]:
    """Running total in series order; empty months add nothing."""
    running = ZERO
    totals = []
    for point in series:
        value = point.get(field)
        if value is not None:
            running += value
        totals.append(SeriesPoint(label=point.label, values={field: running}))
    return totals


def year_over_year(
    records: Iterable[DividendRecord],
    rates: Optional[Mapping[str, Decimal]] = None,
    default_rate: Decimal = DEFAULT_CONVERSION_RATE,
) -> dict[int, dict[int, Optional[Decimal]]]:
    """year -> month (1..12) -> converted total, None where the month has no record."""
    groups = _grouped(records, rates, default_rate)
    years = sorted({year for year, _ in groups})
    return {
        year: {
            month: groups[(year, month)][TOTAL] if (year, month) in groups else None
            for month in range(1, 13)
        }
        for year in years
    }


def yearly_totals(
    records: Iterable[DividendRecord],
    rates: Optional[Mapping[str, Decimal]] = None,
    default_rate: Decimal = DEFAULT_CONVERSION_RATE,
) -> dict[int, Decimal]:
    """Converted totals per calendar year, oldest first."""
    totals: dict[int, Decimal] = defaultdict(lambda: ZERO)
    for (year, _), sums in sorted(_grouped(records, rates, default_rate).items()):
        totals[year] += sums[TOTAL]
    return dict(totals)


def forward_fill(series: list[SeriesPoint], field: str) -> list[SeriesPoint]:
    """
    Display copy of `series` where a zero or missing value after the first
    point repeats the last non-zero value before it.
    """
    filled = []
    last: Optional[Decimal] = None
    for index, point in enumerate(series):
        value = point.get(field)
        if index > 0 and (value is None or value == 0) and last is not None:
            value = last
        if value is not None and value != 0:
            last = value
        filled.append(SeriesPoint(label=point.label, values={**point.values, field: value}))
    return filled


def yield_comparison(series: list[SeriesPoint], field: str, today: date) -> YieldComparison:
    """
    Current-year and annualized figures of a cumulative-return series.

    this_year is the latest populated value labelled with today's year.
    annualized divides the latest populated value by the years elapsed
    since the earliest populated point; under one month elapsed the raw
    value is returned unscaled.
    """
    populated = []
    for point in series:
        value = point.get(field)
        month = parse_period_key(point.label)
        if value is not None and month is not None:
            populated.append((month, value))

    if not populated:
        return YieldComparison()

    populated.sort()
    this_year = None
    for (year, _), value in populated:
        if year == today.year:
            this_year = value

    (first_month, _), (last_month, latest) = populated[0], populated[-1]
    elapsed = month_distance(first_month, last_month)
    if elapsed < 1:
        annualized = latest
    else:
        annualized = (latest * 12 / elapsed).quantize(_TWO_DECIMALS, rounding=ROUND_HALF_UP)

    return YieldComparison(this_year=this_year, annualized=annualized)


def compare_yields(
    series_by_name: Mapping[str, list[SeriesPoint]],
    field: str,
    today: date,
) -> dict[str, YieldComparison]:
    """yield_comparison for the account series and each index series side by side."""
    return {
        name: yield_comparison(series, field, today)
        for name, series in series_by_name.items()
    }


def year_to_date_yields(
    values: Mapping[str, Decimal],
    year: int,
    through_month: int = 12,
) -> list[Decimal]:
    """
    Monthly returns (percent, one decimal) against the previous December.

    The list starts with 0 for the baseline and has one entry per month
    up to `through_month`. A month without a value, or a missing
    baseline, repeats the previous entry.
    """
    baseline = values.get(period_key(year - 1, 12))
    yields = [ZERO]
    for month in range(1, through_month + 1):
        value = values.get(period_key(year, month))
        if baseline and baseline > 0 and value and value > 0:
            change = (value / baseline - 1) * 100
            yields.append(change.quantize(_ONE_DECIMAL, rounding=ROUND_HALF_UP))
        else:
            yields.append(yields[-1])
    return yields
