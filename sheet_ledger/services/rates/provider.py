"""
Exchange Rate Providers

Two external sources feed the rate cache:

1. KoreaEximProvider - the Korea Exim Bank open API, queried per business
   date. The bank moved its API to a new host in 2025; the old host still
   answers for some keys, so each date tries the new host first and the
   legacy host second.
2. PublicSheetHistoricalSource - a public spreadsheet exported as CSV,
   one row per month. Column G holds the "YY.MM" month, column H the
   USD/KRW rate; columns V, W and AA carry gold, bitcoin and Seoul
   apartment series used for market comparisons.

Providers raise ProviderUnavailableError when they have nothing usable;
the rate cache catches it and falls through to the next tier.
"""

import csv
import io
from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Optional

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from sheet_ledger.audit.logger import get_logger
from sheet_ledger.config.settings import ExchangeRateSettings
from sheet_ledger.models.series import HistoricalMarketData
from sheet_ledger.parsing.cells import cell_at, parse_optional_amount
from sheet_ledger.parsing.periods import is_period_key

logger = get_logger(__name__)


# Historical CSV layout
HEADER_ROWS = 2
PERIOD_COLUMN = 6       # G
RATE_COLUMN = 7         # H
GOLD_COLUMN = 21        # V
BITCOIN_COLUMN = 22     # W
REAL_ESTATE_COLUMN = 26  # AA


class ProviderUnavailableError(Exception):
    """An external rate source returned nothing usable."""
    pass


class ExchangeRateProvider(ABC):
    """Source of the daily rate for a specific date."""

    name: str = "provider"

    @abstractmethod
    async def get_rate_for_date(self, day: date) -> Decimal:
        """
        Return the rate published for `day`.

        Raises:
            ProviderUnavailableError: If no endpoint returned a usable rate
        """
        pass


class HistoricalRateSource(ABC):
    """Source of the bulk monthly history document."""

    @abstractmethod
    async def fetch_document(self) -> str:
        """
        Return the raw delimited-text document.

        Raises:
            ProviderUnavailableError: If the document cannot be fetched
        """
        pass


class KoreaEximProvider(ExchangeRateProvider):
    """Korea Exim Bank daily exchange rate API."""

    name = "koreaexim"

    def __init__(
        self,
        settings: ExchangeRateSettings,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings
        self._client = client or httpx.AsyncClient(
            headers={"Accept": "application/json"},
            timeout=settings.http_timeout_seconds,
        )

    @property
    def endpoints(self) -> list[str]:
        return [self._settings.primary_url, self._settings.legacy_url]

    async def get_rate_for_date(self, day: date) -> Decimal:
        if not self._settings.api_key:
            logger.warning("exchange_rate_api_key_missing")
            raise ProviderUnavailableError("EXCHANGE_RATE_API_KEY not set")

        search_date = day.strftime("%Y%m%d")
        for url in self.endpoints:
            rate = await self._fetch_from_url(url, search_date)
            if rate is not None:
                logger.info("provider_rate_fetched", url=url, date=search_date, rate=str(rate))
                return rate

        raise ProviderUnavailableError(f"No rate published for {search_date}")

    async def _fetch_from_url(self, url: str, search_date: str) -> Optional[Decimal]:
        """One endpoint, one date. Every failure is logged and returns None."""
        params = {
            "authkey": self._settings.api_key,
            "searchdate": search_date,
            "data": "AP01",
        }
        try:
            response = await self._client.get(url, params=params)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as e:
            logger.error("provider_http_error", url=url, date=search_date, error=str(e))
            return None
        except ValueError as e:
            logger.error("provider_invalid_json", url=url, date=search_date, error=str(e))
            return None

        if not isinstance(payload, list) or not payload:
            logger.info("provider_no_data", url=url, date=search_date)
            return None

        entry = next(
            (
                item for item in payload
                if isinstance(item, dict)
                and item.get("cur_unit") == self._settings.currency_code
            ),
            None,
        )
        if entry is None:
            return None

        rate = parse_optional_amount(str(entry.get("deal_bas_r", "")))
        if rate is None or rate <= 0:
            return None
        return rate

    async def aclose(self) -> None:
        await self._client.aclose()


class PublicSheetHistoricalSource(HistoricalRateSource):
    """CSV export of the public historical rate spreadsheet."""

    def __init__(
        self,
        settings: ExchangeRateSettings,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._url = settings.historical_csv_url
        self._client = client or httpx.AsyncClient(
            timeout=settings.http_timeout_seconds,
            follow_redirects=True,
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _download(self) -> str:
        response = await self._client.get(self._url)
        response.raise_for_status()
        return response.text

    async def fetch_document(self) -> str:
        try:
            return await self._download()
        except httpx.HTTPError as e:
            logger.error("historical_fetch_failed", url=self._url, error=str(e))
            raise ProviderUnavailableError(f"Historical document unavailable: {e}")

    async def aclose(self) -> None:
        await self._client.aclose()


def _iter_period_rows(document: str):
    reader = csv.reader(io.StringIO(document))
    for index, row in enumerate(reader):
        if index < HEADER_ROWS or not row:
            continue
        label = (cell_at(row, PERIOD_COLUMN) or "").strip()
        if not is_period_key(label):
            continue
        yield label, row


def _positive(row: list, column: int) -> Optional[Decimal]:
    value = parse_optional_amount(cell_at(row, column))
    if value is None or value <= 0:
        return None
    return value


def parse_historical_rates(document: str) -> dict[str, Decimal]:
    """
    Parse "YY.MM" -> rate from the historical CSV.

    Header rows, rows without a month label and non-positive or
    unparseable rates ("1,069.02" with quotes is fine) are skipped.
    """
    rates: dict[str, Decimal] = {}
    for label, row in _iter_period_rows(document):
        rate = _positive(row, RATE_COLUMN)
        if rate is not None:
            rates[label] = rate
    return rates


def parse_market_data(document: str) -> HistoricalMarketData:
    """Parse the gold, bitcoin and real estate series from the same CSV."""
    data = HistoricalMarketData()
    columns = (
        (data.gold, GOLD_COLUMN),
        (data.bitcoin, BITCOIN_COLUMN),
        (data.real_estate, REAL_ESTATE_COLUMN),
    )
    for label, row in _iter_period_rows(document):
        for series, column in columns:
            value = _positive(row, column)
            if value is not None:
                series[label] = value
    return data
