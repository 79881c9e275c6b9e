"""
Rate Cache

Resolves the USD/KRW rate through a chain of tiers, top-down:

    memory (1h) -> store (1h) -> provider (5 business days x 2 endpoints)
        -> stale store entry -> stale memory entry -> static fallback

DESIGN DECISION: get_current_rate() never raises and never returns
None. Screens that convert USD amounts must always render; a rate that is
a few hours old (or the fallback constant) is better than an error page.
The tier that answered is reported through resolve_current_rate() so
callers that care can tell a live rate from a fallback.

Historical monthly rates come from a bulk document with a 24h cache. The
months between the document's last entry and today are filled with the
current rate, without ever replacing a month the document already has.
"""

import asyncio
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Any, Coroutine, Optional
from zoneinfo import ZoneInfo

from sheet_ledger.audit.logger import AuditLogger, get_logger
from sheet_ledger.config import get_settings
from sheet_ledger.config.settings import ExchangeRateSettings
from sheet_ledger.models.series import ExchangeRate, HistoricalMarketData, RateTier
from sheet_ledger.parsing.periods import (
    months_between,
    parse_period_key,
    period_key,
    period_key_for,
)
from sheet_ledger.services.rates.cache import (
    MISS,
    CacheEntry,
    CacheLookup,
    Clock,
    MemoryCacheTier,
    StoreCacheTier,
    utc_now,
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
from sheet_ledger.services.storage.interface import MirrorStoreInterface

logger = get_logger(__name__)

CURRENT_RATE_KEY = "usd_krw_rate"
HISTORICAL_RATES_KEY = "historical_exchange_rates"
MARKET_DATA_KEY = "historical_market_data"
TODAY = "today"


def recent_business_dates(now: datetime, count: int = 5, cutoff_hour: int = 11) -> list[date]:
    """
    The `count` most recent weekdays, newest first.

    Before `cutoff_hour` (local time of `now`) today's rate is not
    published yet, so the search starts from the previous day.
    """
    day = now.date()
    if now.hour < cutoff_hour:
        day -= timedelta(days=1)

    dates = []
    while len(dates) < count:
        if day.weekday() < 5:
            dates.append(day)
        day -= timedelta(days=1)
    return dates


def _entry_rate(entry: CacheEntry) -> Optional[Decimal]:
    try:
        rate = Decimal(str(entry.value.get("rate")))
    except (InvalidOperation, ValueError):
        return None
    if not rate.is_finite() or rate <= 0:
        return None
    return rate


def _entry_rates(entry: CacheEntry) -> dict[str, Decimal]:
    rates = {}
    raw = entry.value.get("rates")
    if not isinstance(raw, dict):
        return rates
    for label, value in raw.items():
        try:
            rate = Decimal(str(value))
        except (InvalidOperation, ValueError):
            continue
        if rate.is_finite() and rate > 0:
            rates[label] = rate
    return rates


class RateCache:
    """
    Multi-tier USD/KRW rate resolver.

    One instance is meant to live for the whole process (see
    get_rate_cache()); its memory tiers are the process-wide cache.
    """

    def __init__(
        self,
        provider: Optional[ExchangeRateProvider] = None,
        historical_source: Optional[HistoricalRateSource] = None,
        mirror: Optional[MirrorStoreInterface] = None,
        settings: Optional[ExchangeRateSettings] = None,
        clock: Optional[Clock] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._settings = settings or get_settings().exchange_rate
        self._provider = provider
        self._historical_source = historical_source
        self._clock = clock or utc_now
        self._audit_logger = audit_logger
        self._tz = ZoneInfo(self._settings.timezone)

        current_ttl = self._settings.current_ttl_seconds
        historical_ttl = self._settings.historical_ttl_seconds

        self._memory = MemoryCacheTier(current_ttl, self._clock)
        self._historical_memory = MemoryCacheTier(historical_ttl, self._clock)
        self._store: Optional[StoreCacheTier] = None
        self._historical_store: Optional[StoreCacheTier] = None
        if mirror is not None:
            self._store = StoreCacheTier(mirror, current_ttl, self._clock)
            self._historical_store = StoreCacheTier(mirror, historical_ttl, self._clock)

        self._background: set[asyncio.Task] = set()

    @property
    def fallback_rate(self) -> Decimal:
        return Decimal(str(self._settings.fallback_rate))

    # ------------------------------------------------------------------
    # Current rate
    # ------------------------------------------------------------------

    async def get_current_rate(self) -> Decimal:
        """Current USD/KRW rate. Always a positive number."""
        return (await self.resolve_current_rate()).rate

    async def resolve_current_rate(self) -> ExchangeRate:
        """Current rate together with the tier that produced it."""
        memory = await self._memory.get(CURRENT_RATE_KEY)
        if memory.hit:
            rate = _entry_rate(memory.entry)
            if rate is not None:
                logger.debug("rate_resolved", tier="memory", rate=str(rate))
                return self._to_rate(memory.entry, rate, RateTier.MEMORY)

        stored = MISS
        if self._store is not None:
            stored = await self._store.get(CURRENT_RATE_KEY)
            if stored.hit:
                rate = _entry_rate(stored.entry)
                if rate is not None:
                    await self._memory.put(CURRENT_RATE_KEY, stored.entry)
                    logger.info("rate_resolved", tier="store", rate=str(rate))
                    return self._to_rate(stored.entry, rate, RateTier.STORE)

        fetched = await self._query_provider()
        if fetched is not None:
            return fetched

        return await self._degrade(stored, memory)

    async def _query_provider(self) -> Optional[ExchangeRate]:
        if self._provider is None:
            return None

        local_now = self._clock().astimezone(self._tz)
        dates = recent_business_dates(
            local_now,
            count=self._settings.lookback_business_days,
            cutoff_hour=self._settings.provider_refresh_hour,
        )

        for day in dates:
            try:
                rate = await self._provider.get_rate_for_date(day)
            except ProviderUnavailableError as e:
                logger.info("provider_attempt_failed", date=day.isoformat(), error=str(e))
                continue
            except Exception as e:
                logger.error("provider_attempt_error", date=day.isoformat(), error=str(e))
                continue

            if rate is None or not rate.is_finite() or rate <= 0:
                continue

            entry = CacheEntry(
                value={"rate": str(rate)},
                source=self._provider.name,
                fetched_at=self._clock(),
            )
            await self._memory.put(CURRENT_RATE_KEY, entry)
            if self._store is not None:
                await self._store.put(CURRENT_RATE_KEY, entry)
            logger.info("rate_resolved", tier="provider", rate=str(rate), date=day.isoformat())
            return self._to_rate(entry, rate, RateTier.PROVIDER)

        return None

    async def _degrade(self, stored: CacheLookup, memory: CacheLookup) -> ExchangeRate:
        for lookup, tier in ((stored, RateTier.STORE), (memory, RateTier.MEMORY)):
            if lookup.entry is None:
                continue
            rate = _entry_rate(lookup.entry)
            if rate is None:
                continue
            logger.warning("rate_resolved_stale", tier=tier.value, rate=str(rate))
            await self._audit_fallback(tier, rate)
            return self._to_rate(lookup.entry, rate, tier, is_stale=True)

        rate = self.fallback_rate
        logger.warning("rate_resolved_fallback", rate=str(rate))
        await self._audit_fallback(RateTier.FALLBACK, rate)
        return ExchangeRate(
            period_key=TODAY,
            rate=rate,
            source=RateTier.FALLBACK,
            fetched_at=self._clock(),
            is_stale=True,
        )

    async def _audit_fallback(self, tier: RateTier, rate: Decimal) -> None:
        if self._audit_logger is not None:
            await self._audit_logger.log_rate_fallback(tier=tier.value, rate=str(rate))

    def _to_rate(
        self,
        entry: CacheEntry,
        rate: Decimal,
        tier: RateTier,
        is_stale: bool = False,
    ) -> ExchangeRate:
        return ExchangeRate(
            period_key=TODAY,
            rate=rate,
            source=tier,
            fetched_at=entry.fetched_at,
            is_stale=is_stale,
        )

    async def get_rate_info(self) -> ExchangeRate:
        """
        Rate details for display.

        Reports the in-memory entry as is (flagging it stale past its TTL)
        without triggering a lookup; resolves the chain only when the
        memory tier is empty.
        """
        memory = await self._memory.get(CURRENT_RATE_KEY)
        if memory.entry is not None:
            rate = _entry_rate(memory.entry)
            if rate is not None:
                return self._to_rate(
                    memory.entry, rate, RateTier.MEMORY, is_stale=not memory.is_fresh
                )
        return await self.resolve_current_rate()

    async def refresh_current_rate(self) -> Decimal:
        """Drop the memory tier and resolve again."""
        await self._memory.invalidate(CURRENT_RATE_KEY)
        return await self.get_current_rate()

    # ------------------------------------------------------------------
    # Historical rates
    # ------------------------------------------------------------------

    async def get_historical_rates(self) -> dict[str, Decimal]:
        """
        Monthly "YY.MM" -> rate table, supplemented up to the current month.

        Returns an empty mapping when neither the document nor any cached
        copy is available.
        """
        table = await self._load_historical_table()
        if not table:
            logger.warning("historical_rates_unavailable")
            return {}
        return await self.supplement_with_current_rate(table)

    async def supplement_with_current_rate(self, rates: dict[str, Decimal]) -> dict[str, Decimal]:
        """
        Fill months after the last known one with the current rate.

        Existing months are never overwritten. An empty table gets only
        the current month.
        """
        supplemented = dict(rates)
        current_rate = await self.get_current_rate()
        today = self._clock().astimezone(self._tz).date()
        current_month = (today.year, today.month)

        known = sorted(
            parsed for parsed in (parse_period_key(label) for label in rates) if parsed
        )
        if not known:
            supplemented[period_key(*current_month)] = current_rate
            return supplemented

        for year, month in months_between(known[-1], current_month):
            supplemented.setdefault(period_key(year, month), current_rate)
        return supplemented

    async def get_rate_for_period(self, key: str) -> Optional[Decimal]:
        """Rate of a single "YY.MM" month, or None if unknown."""
        return (await self.get_historical_rates()).get(key)

    async def get_rate_for_date(self, day: date) -> Optional[Decimal]:
        return await self.get_rate_for_period(period_key_for(day))

    async def refresh_historical_rates(self) -> dict[str, Decimal]:
        """Drop the in-memory table and load again."""
        await self._historical_memory.invalidate(HISTORICAL_RATES_KEY)
        await self._historical_memory.invalidate(MARKET_DATA_KEY)
        return await self.get_historical_rates()

    async def _load_historical_table(self) -> dict[str, Decimal]:
        memory = await self._historical_memory.get(HISTORICAL_RATES_KEY)
        if memory.hit:
            return _entry_rates(memory.entry)

        document = await self._fetch_document()
        if document is not None:
            rates = parse_historical_rates(document)
            if rates:
                entry = CacheEntry(
                    value={"rates": {label: str(rate) for label, rate in rates.items()}},
                    source="public_sheet",
                    fetched_at=self._clock(),
                )
                await self._historical_memory.put(HISTORICAL_RATES_KEY, entry)
                await self._cache_market_data(document)
                if self._historical_store is not None:
                    self._spawn(self._historical_store.put(HISTORICAL_RATES_KEY, entry))
                logger.info("historical_rates_fetched", months=len(rates))
                return rates
            logger.warning("historical_document_empty")

        if self._historical_store is not None:
            stored = await self._historical_store.get(HISTORICAL_RATES_KEY)
            if stored.entry is not None:
                rates = _entry_rates(stored.entry)
                if rates:
                    logger.info("historical_rates_from_store", months=len(rates))
                    await self._historical_memory.put(
                        HISTORICAL_RATES_KEY,
                        stored.entry.model_copy(update={"fetched_at": self._clock()}),
                    )
                    return rates

        if memory.entry is not None:
            return _entry_rates(memory.entry)
        return {}

    async def _fetch_document(self) -> Optional[str]:
        if self._historical_source is None:
            return None
        try:
            return await self._historical_source.fetch_document()
        except ProviderUnavailableError as e:
            logger.error("historical_fetch_unavailable", error=str(e))
        except Exception as e:
            logger.error("historical_fetch_error", error=str(e))
        return None

    async def _cache_market_data(self, document: str) -> HistoricalMarketData:
        market = parse_market_data(document)
        entry = CacheEntry(
            value={"market": market.model_dump(mode="json")},
            source="public_sheet",
            fetched_at=self._clock(),
        )
        await self._historical_memory.put(MARKET_DATA_KEY, entry)
        return market

    async def get_historical_market_data(self) -> HistoricalMarketData:
        """Gold, bitcoin and real estate monthly series (empty on failure)."""
        memory = await self._historical_memory.get(MARKET_DATA_KEY)
        if memory.hit:
            return HistoricalMarketData.model_validate(memory.entry.value["market"])

        document = await self._fetch_document()
        if document is None:
            return HistoricalMarketData()
        return await self._cache_market_data(document)

    # ------------------------------------------------------------------
    # Background writes
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for pending background cache writes (used at shutdown and in tests)."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)


@lru_cache()
def get_rate_cache() -> RateCache:
    """
    Process-wide rate cache built from settings.

    Uses LRU cache so every caller shares the same memory tiers.
    """
    settings = get_settings().exchange_rate
    return RateCache(
        provider=KoreaEximProvider(settings),
        historical_source=PublicSheetHistoricalSource(settings),
        settings=settings,
    )
