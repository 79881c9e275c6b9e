"""
Shared fixtures.

No network and no spreadsheet: the ledger and mirror are the in-memory
stores, rate sources are fakes and clocks are fixed.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import pytest

from sheet_ledger.config.settings import ExchangeRateSettings, LedgerSettings
from sheet_ledger.ledger.layouts import (
    DEFAULT_BALANCE_SHEET,
    DEFAULT_DEPOSIT_SHEET,
    DEFAULT_DIVIDEND_SHEET,
    DEFAULT_HOLDING_SHEET,
)
from sheet_ledger.services.rates.provider import (
    ExchangeRateProvider,
    HistoricalRateSource,
    ProviderUnavailableError,
)
from sheet_ledger.services.rates.rate_cache import RateCache
from sheet_ledger.services.storage.memory import InMemoryLedgerStore, InMemoryMirrorStore


class FixedClock:
    """Callable clock that tests move forward explicitly."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeProvider(ExchangeRateProvider):
    """Provider answering from a date -> rate dict; unknown dates are unavailable."""

    name = "fake"

    def __init__(self, rates: Optional[dict[date, Decimal]] = None, fail: bool = False):
        self.rates = rates or {}
        self.fail = fail
        self.calls: list[date] = []

    async def get_rate_for_date(self, day: date) -> Decimal:
        self.calls.append(day)
        if self.fail or day not in self.rates:
            raise ProviderUnavailableError(f"no rate for {day}")
        return self.rates[day]


class FakeHistoricalSource(HistoricalRateSource):
    def __init__(self, document: Optional[str] = None):
        self.document = document
        self.calls = 0

    async def fetch_document(self) -> str:
        self.calls += 1
        if self.document is None:
            raise ProviderUnavailableError("offline")
        return self.document


def historical_csv(rows: list[tuple[str, str]]) -> str:
    """Historical document with two header rows; label in G, rate in H."""
    lines = ["title", "header"]
    for label, rate in rows:
        cells = [""] * 27
        cells[6] = label
        cells[7] = rate
        lines.append(",".join(f'"{c}"' if "," in c else c for c in cells))
    return "\n".join(lines) + "\n"


@pytest.fixture
def clock() -> FixedClock:
    # Wednesday 2025-09-17 14:00 KST
    return FixedClock(datetime(2025, 9, 17, 5, 0, tzinfo=timezone.utc))


@pytest.fixture
def rate_settings() -> ExchangeRateSettings:
    return ExchangeRateSettings(api_key="test-key", fallback_rate=1350.0)


@pytest.fixture
def ledger_settings() -> LedgerSettings:
    return LedgerSettings(owner_id="user-1", default_dividend_rate=1400.0, balance_min_start_row=45)


@pytest.fixture
def mirror() -> InMemoryMirrorStore:
    return InMemoryMirrorStore()


@pytest.fixture
def ledger_store() -> InMemoryLedgerStore:
    store = InMemoryLedgerStore()
    store.create_sheet(DEFAULT_BALANCE_SHEET, [["", "연", "월", "연월", "연도", "월표시", "일자", "잔액"]])
    store.create_sheet(DEFAULT_DIVIDEND_SHEET, [["날짜", "연도", "월", "일", "종목코드", "종목명", "원화", "달러", "합계"]])
    store.create_sheet(DEFAULT_DEPOSIT_SHEET, [["날짜", "연도", "월", "일", "구분", "계좌", "금액", "메모"]])
    store.create_sheet(DEFAULT_HOLDING_SHEET, [[""]] * 7 + [["", "", "국가", "종목코드", "종목명", "수량", "평단가", "평단가($)"]])
    return store


@pytest.fixture
def rate_cache(rate_settings, clock, mirror) -> RateCache:
    provider = FakeProvider({date(2025, 9, 17): Decimal("1385.5")})
    source = FakeHistoricalSource(historical_csv([("25.06", "1,365.00"), ("25.07", "1,372.10")]))
    return RateCache(
        provider=provider,
        historical_source=source,
        mirror=mirror,
        settings=rate_settings,
        clock=clock,
    )
