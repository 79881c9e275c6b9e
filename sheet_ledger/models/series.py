"""
Rate and Series Models

DESIGN DECISION: A missing value is None, never 0. Zero is a real
observation (no dividends that month), None means there is no data for
the period at all. Aggregations keep the two apart.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from sheet_ledger.models.records import LedgerKind


class RateTier(str, Enum):
    """Which cache tier produced a rate."""
    MEMORY = "memory"
    STORE = "store"
    PROVIDER = "provider"
    FALLBACK = "fallback"


class ExchangeRate(BaseModel):
    """A resolved conversion rate. Immutable once created."""
    model_config = ConfigDict(frozen=True)

    period_key: str = Field(
        ...,
        description='"YY.MM" for a historical month, or "today"'
    )
    rate: Decimal = Field(..., gt=0)
    source: RateTier
    fetched_at: datetime
    is_stale: bool = False


class SeriesPoint(BaseModel):
    """One period of a presentation series."""

    label: str
    values: dict[str, Optional[Decimal]] = Field(default_factory=dict)

    def get(self, field: str) -> Optional[Decimal]:
        return self.values.get(field)


class YieldComparison(BaseModel):
    this_year: Optional[Decimal] = None
    annualized: Optional[Decimal] = None


class HistoricalMarketData(BaseModel):
    """Auxiliary monthly market series from the historical rate document."""

    gold: dict[str, Decimal] = Field(default_factory=dict)
    bitcoin: dict[str, Decimal] = Field(default_factory=dict)
    real_estate: dict[str, Decimal] = Field(default_factory=dict)


class MutationAction(str, Enum):
    APPENDED = "appended"
    UPDATED = "updated"
    SOFT_DELETED = "soft_deleted"


class MutationResult(BaseModel):
    """Outcome of a ledger mutation, as reported to the caller."""

    ledger: LedgerKind
    action: MutationAction
    sheet_row: Optional[int] = Field(
        default=None,
        description="1-based sheet row that was written, when the ledger was hit"
    )
    ledger_hit: bool = True
    mirror_scheduled: bool = False
    message: str = ""


class DividendDashboard(BaseModel):
    """Everything the dividend screen renders, computed in one pass."""

    monthly: list[SeriesPoint] = Field(default_factory=list)
    rolling_average: list[SeriesPoint] = Field(default_factory=list)
    cumulative: list[SeriesPoint] = Field(default_factory=list)
    year_over_year: dict[int, dict[int, Optional[Decimal]]] = Field(default_factory=dict)
    yearly_totals: dict[int, Decimal] = Field(default_factory=dict)
    this_month_total: Decimal = Decimal("0")
    this_year_total: Decimal = Decimal("0")
