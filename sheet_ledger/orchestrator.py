"""
Main Orchestrator for Sheet Ledger

This module ties together all the components and defines the
end-to-end flows for:
1. Ledger maintenance (save / update / delete / list per ledger area)
2. Trade import (extracted trades -> trade log -> holdings)
3. Dashboards (dividend series, currency-adjusted index trend, market yields)

DESIGN DECISION: The orchestrator enforces the boundaries:
- The spreadsheet answers every read it can; the mirror is a side copy
- Without a spreadsheet (standalone mode) the mirror serves everything
- Every mutation is audited

Callers see typed records and MutationResult objects only; DuplicateError
and NotFoundError propagate so the caller can show "already exists" or
"nothing to update".
"""

from datetime import date
from decimal import Decimal
from typing import Optional, Union

from sheet_ledger.audit import AuditLogger, configure_logging, create_correlation_id, get_logger
from sheet_ledger.config import get_settings
from sheet_ledger.config.settings import GoogleSheetsSettings, LedgerSettings
from sheet_ledger.ledger import (
    AccountBalanceCodec,
    BackgroundMirror,
    DepositCodec,
    DividendCodec,
    HoldingCodec,
    LedgerMutator,
    MirrorLedger,
    RowCodec,
    TradeExtractor,
    TradeLog,
    account_balance_layout,
    apply_trade,
    deposit_layout,
    dividend_layout,
    holding_layout,
)
from sheet_ledger.models.records import (
    AccountBalanceRecord,
    BalanceKey,
    DepositKey,
    DepositRecord,
    DividendKey,
    DividendRecord,
    HoldingKey,
    HoldingRecord,
    TradeCandidate,
)
from sheet_ledger.models.series import DividendDashboard, MutationResult
from sheet_ledger.parsing.periods import period_key
from sheet_ledger.series import (
    TOTAL,
    RateEnricher,
    cumulative,
    monthly_from_records,
    rolling_average,
    year_over_year,
    year_to_date_yields,
    yearly_totals,
)
from sheet_ledger.services.rates import (
    KoreaEximProvider,
    PublicSheetHistoricalSource,
    RateCache,
)
from sheet_ledger.services.storage import (
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
    InMemoryMirrorStore,
    LedgerStoreInterface,
    MirrorStoreInterface,
    sheet_range,
)

logger = get_logger(__name__)

DEFAULT_ACCOUNTS = [
    "일반계좌1",
    "일반계좌2",
    "개인연금1",
    "개인연금2",
    "IRP 1",
    "IRP 2",
    "ISA",
    "퇴직연금DC",
]

DEFAULT_INDEX_SHEET = "1. 계좌현황(누적)"
DEFAULT_INDEX_BLOCK = "G17:AB200"

Book = Union[LedgerMutator, MirrorLedger]


class LedgerService:
    """
    Orchestrates every ledger flow.

    One "book" per ledger area: a LedgerMutator against the spreadsheet,
    or a MirrorLedger when no spreadsheet is configured.
    """

    def __init__(
        self,
        rate_cache: RateCache,
        store: Optional[LedgerStoreInterface] = None,
        mirror: Optional[MirrorStoreInterface] = None,
        sheets: Optional[GoogleSheetsSettings] = None,
        ledger_settings: Optional[LedgerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        trade_extractor: Optional[TradeExtractor] = None,
    ):
        if store is None and mirror is None:
            raise ValueError("A ledger store or a mirror store is required")

        self._store = store
        self._mirror_store = mirror
        self._rate_cache = rate_cache
        self._settings = ledger_settings or LedgerSettings()
        self._audit_logger = audit_logger
        self._trade_extractor = trade_extractor
        self._background = BackgroundMirror(mirror, audit_logger)
        self._enricher = RateEnricher()

        if sheets is not None:
            self._balance_layout = account_balance_layout(
                sheets.balance_sheet_name, self._settings.balance_min_start_row
            )
            self._dividend_layout = dividend_layout(sheets.dividend_sheet_name)
            self._deposit_layout = deposit_layout(sheets.deposit_sheet_name)
            self._holding_layout = holding_layout(sheets.holding_sheet_name)
            self._index_range = sheet_range(sheets.index_sheet_name, sheets.index_block_range)
        else:
            self._balance_layout = account_balance_layout(
                min_start_row=self._settings.balance_min_start_row
            )
            self._dividend_layout = dividend_layout()
            self._deposit_layout = deposit_layout()
            self._holding_layout = holding_layout()
            self._index_range = sheet_range(DEFAULT_INDEX_SHEET, DEFAULT_INDEX_BLOCK)

        self._default_rate = Decimal(str(self._settings.default_dividend_rate))
        self.balances = self._book(AccountBalanceCodec(self._balance_layout))
        self.dividends = self._book(DividendCodec(self._dividend_layout, self._default_rate))
        self.deposits = self._book(DepositCodec(self._deposit_layout))
        self.holdings = self._book(HoldingCodec(self._holding_layout))
        self._trade_log = TradeLog(mirror, self._settings.owner_id) if mirror is not None else None

    def _book(self, codec: RowCodec) -> Book:
        owner_id = self._settings.owner_id
        if self._store is None:
            return MirrorLedger(self._mirror_store, codec, owner_id)
        return LedgerMutator(
            self._store,
            codec,
            mirror=self._background,
            owner_id=owner_id,
            audit_logger=self._audit_logger,
        )

    @property
    def standalone(self) -> bool:
        return self._store is None

    @property
    def rate_cache(self) -> RateCache:
        return self._rate_cache

    async def drain(self) -> None:
        """Wait for background mirror and cache writes."""
        await self._background.drain()
        await self._rate_cache.drain()

    # =========================================================================
    # ACCOUNT BALANCES
    # =========================================================================

    async def save_account_balance(self, year_month: str, balance: Decimal) -> MutationResult:
        """Record the month-end balance of "YYYY-MM"; rejects a second entry."""
        record = AccountBalanceRecord.from_year_month(year_month, balance)
        return await self.balances.append(record)

    async def update_account_balance(
        self,
        old_year_month: str,
        year_month: str,
        balance: Decimal,
    ) -> MutationResult:
        record = AccountBalanceRecord.from_year_month(year_month, balance)
        return await self.balances.update(BalanceKey.from_year_month(old_year_month), record)

    async def delete_account_balance(
        self,
        year_month: str,
        balance: Optional[Decimal] = None,
    ) -> MutationResult:
        """Blank the balance of "YYYY-MM" (only if it equals `balance`, when given)."""
        return await self.balances.soft_delete(BalanceKey.from_year_month(year_month, balance))

    async def list_account_balances(self) -> list[AccountBalanceRecord]:
        """Newest month first."""
        records = await self.balances.list_records()
        return sorted(records, key=lambda r: (r.year, r.month), reverse=True)

    # =========================================================================
    # DIVIDENDS
    # =========================================================================

    async def save_dividend(self, record: DividendRecord) -> MutationResult:
        return await self.dividends.append(record)

    async def update_dividend(self, old_key: DividendKey, record: DividendRecord) -> MutationResult:
        return await self.dividends.update(old_key, record)

    async def delete_dividend(self, key: DividendKey) -> MutationResult:
        return await self.dividends.soft_delete(key)

    async def list_dividends(self, year: Optional[int] = None) -> list[DividendRecord]:
        """Newest first, optionally limited to one calendar year."""
        records = await self.dividends.list_records()
        if year is not None:
            records = [r for r in records if r.date.year == year]
        return sorted(records, key=lambda r: r.date, reverse=True)

    # =========================================================================
    # DEPOSITS
    # =========================================================================

    async def save_deposit(self, record: DepositRecord) -> MutationResult:
        return await self.deposits.append(record)

    async def update_deposit(self, old_key: DepositKey, record: DepositRecord) -> MutationResult:
        return await self.deposits.update(old_key, record)

    async def delete_deposit(self, key: DepositKey) -> MutationResult:
        return await self.deposits.soft_delete(key)

    async def list_deposits(self) -> list[DepositRecord]:
        records = await self.deposits.list_records()
        return sorted(records, key=lambda r: r.date, reverse=True)

    async def get_account_list(self) -> list[str]:
        """
        Account names used in the deposit log, in first-seen order.

        Falls back to the default account names when the log is empty or
        cannot be read.
        """
        try:
            records = await self.deposits.list_records()
        except Exception as e:
            logger.error("account_list_failed", error=str(e))
            return list(DEFAULT_ACCOUNTS)

        accounts = list(dict.fromkeys(r.account for r in records if r.account))
        return accounts or list(DEFAULT_ACCOUNTS)

    # =========================================================================
    # HOLDINGS
    # =========================================================================

    async def save_holding(self, record: HoldingRecord) -> MutationResult:
        """Update the row of the ticker in place, or fill the first free slot."""
        key = record.natural_key()
        if await self.holdings.find(key) is not None:
            return await self.holdings.update(key, record)
        return await self.holdings.append(record)

    async def delete_holding(self, ticker: str) -> MutationResult:
        return await self.holdings.soft_delete(HoldingKey(ticker=ticker))

    async def list_holdings(self) -> list[HoldingRecord]:
        return await self.holdings.list_records()

    # =========================================================================
    # TRADES
    # =========================================================================

    async def extract_trade_candidates(self, image: bytes) -> list[TradeCandidate]:
        """Trades found in a brokerage screenshot; empty without an extractor."""
        if self._trade_extractor is None:
            logger.warning("trade_extractor_missing")
            return []
        return await self._trade_extractor.extract_trade_candidates(image)

    async def import_trades(self, trades: list[TradeCandidate]) -> int:
        """
        Log trades to the mirror and fold each into the holdings ledger.

        A failed holding update is logged and the remaining trades are
        still applied.

        Returns:
            Number of trades written to the trade log

        Raises:
            ValueError: If `trades` is empty
        """
        if not trades:
            raise ValueError("No trades to save")

        correlation_id = create_correlation_id()
        written = 0
        if self._trade_log is not None:
            written = await self._trade_log.record(trades)

        for trade in trades:
            try:
                await self.apply_trade_to_holdings(trade)
            except Exception as e:
                logger.error("holding_update_failed", ticker=trade.ticker, error=str(e))

        if self._audit_logger:
            await self._audit_logger.log_trades_imported(
                count=len(trades),
                tickers=sorted({t.ticker for t in trades}),
                correlation_id=correlation_id,
            )
        return written

    async def apply_trade_to_holdings(self, trade: TradeCandidate) -> Optional[MutationResult]:
        """Moving-average update of one holding; None for a sell of an unheld ticker."""
        key = HoldingKey(ticker=trade.ticker)
        current = await self.holdings.find(key)
        updated = apply_trade(current, trade)
        if updated is None:
            logger.info("trade_ignored", ticker=trade.ticker, reason="sell without holding")
            return None
        if current is None:
            return await self.holdings.append(updated)
        return await self.holdings.update(key, updated)

    # =========================================================================
    # DASHBOARDS
    # =========================================================================

    async def dividend_dashboard(self, today: Optional[date] = None) -> DividendDashboard:
        """Monthly, rolling, cumulative and yearly dividend series in one pass."""
        today = today or date.today()
        records = await self.dividends.list_records()
        rates = await self._rate_cache.get_historical_rates()

        monthly = monthly_from_records(records, rates, self._default_rate)
        totals = yearly_totals(records, rates, self._default_rate)

        this_month = period_key(today.year, today.month)
        this_month_total = next(
            (p.get(TOTAL) or Decimal("0") for p in monthly if p.label == this_month),
            Decimal("0"),
        )

        return DividendDashboard(
            monthly=monthly,
            rolling_average=rolling_average(monthly),
            cumulative=cumulative(monthly),
            year_over_year=year_over_year(records, rates, self._default_rate),
            yearly_totals=totals,
            this_month_total=this_month_total,
            this_year_total=totals.get(today.year, Decimal("0")),
        )

    async def index_trend(self) -> list[list]:
        """
        The index block with dollar-adjusted columns added.

        Empty in standalone mode (the block only exists in the spreadsheet).
        """
        if self._store is None:
            return []
        rows = await self._store.read_range(self._index_range)
        rates = await self._rate_cache.get_historical_rates()
        current_rate = await self._rate_cache.get_current_rate()
        return self._enricher.enrich(rows, rates, current_rate)

    async def market_yields(
        self,
        year: Optional[int] = None,
        through_month: Optional[int] = None,
    ) -> dict[str, list[Decimal]]:
        """Year-to-date returns of gold, bitcoin, Seoul real estate and the dollar."""
        today = date.today()
        year = year or today.year
        if through_month is None:
            through_month = today.month if year == today.year else 12

        market = await self._rate_cache.get_historical_market_data()
        rates = await self._rate_cache.get_historical_rates()
        return {
            "gold": year_to_date_yields(market.gold, year, through_month),
            "bitcoin": year_to_date_yields(market.bitcoin, year, through_month),
            "real_estate": year_to_date_yields(market.real_estate, year, through_month),
            "dollar": year_to_date_yields(rates, year, through_month),
        }


def create_app_components(use_storage: bool = True) -> LedgerService:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to connect the Google Sheets ledger.
                    Set to False to run standalone on the mirror.

    Returns:
        A LedgerService wired from settings
    """
    settings = get_settings()
    app_settings = settings.app
    configure_logging(app_settings.log_level)

    rate_settings = settings.exchange_rate
    mirror = InMemoryMirrorStore()
    store = None
    sheets = None
    audit_logger = AuditLogger()  # Local-only logging

    if use_storage and not app_settings.standalone_mode:
        try:
            sheets = settings.google_sheets
            store = GoogleSheetsLedgerStore(GoogleSheetsClient(sheets))
            audit_logger = AuditLogger(store, sheets.audit_sheet_name)
        except Exception as e:
            # Spreadsheet not configured - continue standalone
            logger.warning("ledger_store_unavailable", error=str(e))
            store = None
            sheets = None

    rate_cache = RateCache(
        provider=KoreaEximProvider(rate_settings),
        historical_source=PublicSheetHistoricalSource(rate_settings),
        mirror=mirror,
        settings=rate_settings,
        audit_logger=audit_logger,
    )

    return LedgerService(
        rate_cache=rate_cache,
        store=store,
        mirror=mirror,
        sheets=sheets,
        ledger_settings=settings.ledger,
        audit_logger=audit_logger,
    )
