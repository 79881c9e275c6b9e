"""
Currency-Adjusted Index Enrichment

The account summary sheet carries a fixed block of monthly index rows
(G17:AB200): a "YY.MM" label in the first column and base-100 index
values for the account, KOSPI, S&P500 and NASDAQ. The USD indices only
compare fairly with a KRW account once the exchange rate move since the
first month is applied, which is what this module adds.
"""

from decimal import Decimal
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from sheet_ledger.audit.logger import get_logger
from sheet_ledger.parsing.cells import parse_amount
from sheet_ledger.parsing.periods import is_period_key, parse_period_key

logger = get_logger(__name__)

HUNDRED = Decimal("100")


class IndexBlockLayout(BaseModel):
    """Column contract of the index block, relative to its first column."""
    model_config = ConfigDict(frozen=True)

    period_column: int = 0
    rate_column: int = 23           # AD: rate applied to the row
    dollar_index_column: int = 33   # AN: rate / base rate * 100
    # raw index column -> columns receiving its dollar-adjusted value
    adjusted_columns: dict[int, tuple[int, ...]] = {
        10: (28, 34),   # S&P500
        11: (29, 35),   # NASDAQ
    }

    @property
    def width(self) -> int:
        targets = [self.rate_column, self.dollar_index_column]
        for columns in self.adjusted_columns.values():
            targets.extend(columns)
        return max(targets) + 1


class RateEnricher:
    """Adds dollar-index and dollar-adjusted columns to index block rows."""

    def __init__(self, layout: Optional[IndexBlockLayout] = None):
        self.layout = layout or IndexBlockLayout()

    def _label(self, row: list) -> str:
        if not row or len(row) <= self.layout.period_column:
            return ""
        return str(row[self.layout.period_column] or "").strip()

    def base_rate(self, rows: list[list], rates: Mapping[str, Decimal]) -> Optional[Decimal]:
        """
        Rate of the earliest labelled row that has one; otherwise the
        earliest rate in the table; None for an empty table.
        """
        for row in rows:
            label = self._label(row)
            if not is_period_key(label):
                continue
            rate = rates.get(label)
            if rate is not None and rate > 0:
                return rate

        dated = sorted(
            (parse_period_key(label), rate)
            for label, rate in rates.items()
            if is_period_key(label) and rate is not None and rate > 0
        )
        if dated:
            return dated[0][1]
        return None

    def enrich(
        self,
        rows: list[list],
        rates: Mapping[str, Decimal],
        current_rate: Optional[Decimal] = None,
    ) -> list[list[Any]]:
        """
        Return enriched copies of `rows`.

        A labelled row uses its month's rate, or `current_rate` for months
        missing from the table; rows without a label or without any rate
        are copied unchanged. With an empty rate table the rows come back
        unchanged. The input rows are never modified.
        """
        base = self.base_rate(rows, rates) if rates else None
        if base is None:
            logger.info("index_enrichment_skipped", reason="no exchange rates")
            return [list(row) for row in rows]

        enriched = []
        for row in rows:
            label = self._label(row)
            if not is_period_key(label):
                enriched.append(list(row))
                continue
            rate = rates.get(label) or current_rate
            if rate is None or rate <= 0:
                enriched.append(list(row))
                continue
            enriched.append(self._enrich_row(row, rate, base))
        return enriched

    def _enrich_row(self, row: list, rate: Decimal, base: Decimal) -> list[Any]:
        layout = self.layout
        dollar_index = rate / base * HUNDRED

        out = list(row)
        if len(out) < layout.width:
            out.extend([None] * (layout.width - len(out)))

        out[layout.rate_column] = rate
        out[layout.dollar_index_column] = dollar_index
        for raw_column, targets in layout.adjusted_columns.items():
            raw_index = parse_amount(row[raw_column] if raw_column < len(row) else None)
            adjusted = raw_index * dollar_index / HUNDRED
            for target in targets:
                out[target] = adjusted
        return out
