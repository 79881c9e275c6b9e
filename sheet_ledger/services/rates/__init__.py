"""Exchange rate services package."""

from sheet_ledger.services.rates.cache import (
    CacheEntry,
    CacheLookup,
    MemoryCacheTier,
    StoreCacheTier,
)
from sheet_ledger.services.rates.provider import (
    ExchangeRateProvider,
    HistoricalRateSource,
    KoreaEximProvider,
    ProviderUnavailableError,
    PublicSheetHistoricalSource,
    parse_historical_rates,
    parse_market_data,
)
from sheet_ledger.services.rates.rate_cache import (
    RateCache,
    get_rate_cache,
    recent_business_dates,
)

__all__ = [
    "CacheEntry",
    "CacheLookup",
    "MemoryCacheTier",
    "StoreCacheTier",
    "ExchangeRateProvider",
    "HistoricalRateSource",
    "KoreaEximProvider",
    "ProviderUnavailableError",
    "PublicSheetHistoricalSource",
    "parse_historical_rates",
    "parse_market_data",
    "RateCache",
    "get_rate_cache",
    "recent_business_dates",
]
