"""Tests for the LedgerService flows over in-memory stores."""

from datetime import date
from decimal import Decimal

import pytest

from sheet_ledger.audit.logger import AuditLogger
from sheet_ledger.ledger import TradeExtractor
from sheet_ledger.ledger.trades import TRANSACTIONS_TABLE
from sheet_ledger.models.records import (
    DepositRecord,
    DepositType,
    DividendRecord,
    HoldingRecord,
    TradeCandidate,
    TradeType,
)
from sheet_ledger.orchestrator import DEFAULT_ACCOUNTS, LedgerService, create_app_components
from sheet_ledger.services.rates import RateCache
from sheet_ledger.services.storage.interface import DuplicateError, NotFoundError
from tests.conftest import FakeHistoricalSource, FakeProvider


@pytest.fixture
def audit_logger(ledger_store) -> AuditLogger:
    ledger_store.create_sheet("AuditLog")
    return AuditLogger(store=ledger_store, sheet_name="AuditLog")


@pytest.fixture
def service(rate_cache, ledger_store, mirror, ledger_settings, audit_logger) -> LedgerService:
    return LedgerService(
        rate_cache=rate_cache,
        store=ledger_store,
        mirror=mirror,
        ledger_settings=ledger_settings,
        audit_logger=audit_logger,
    )


def buy(ticker: str, price: str, quantity: str, kind: TradeType = TradeType.BUY) -> TradeCandidate:
    return TradeCandidate(
        date=date(2025, 9, 1), ticker=ticker, price=Decimal(price), quantity=Decimal(quantity), type=kind,
    )


class TestServiceConstruction:
    def test_needs_some_store(self, rate_cache):
        with pytest.raises(ValueError):
            LedgerService(rate_cache=rate_cache)

    def test_standalone_factory(self):
        """Without a spreadsheet the factory wires a mirror-only service."""
        service = create_app_components(use_storage=False)
        assert service.standalone


class TestAccountBalances:
    """Tests for the balance flows."""

    @pytest.mark.asyncio
    async def test_save_list_update_delete(self, service):
        await service.save_account_balance("2025-08", Decimal("50000000"))
        await service.save_account_balance("2025-09", Decimal("52000000"))

        listed = await service.list_account_balances()
        assert [r.year_month for r in listed] == ["2025-09", "2025-08"]

        with pytest.raises(DuplicateError):
            await service.save_account_balance("2025-08", Decimal("1"))

        await service.update_account_balance("2025-08", "2025-08", Decimal("50100000"))
        await service.delete_account_balance("2025-09")
        listed = await service.list_account_balances()
        assert [(r.year_month, r.balance) for r in listed] == [("2025-08", Decimal("50100000"))]

        await service.drain()

    @pytest.mark.asyncio
    async def test_invalid_year_month(self, service):
        with pytest.raises(ValueError):
            await service.save_account_balance("2025-13", Decimal("1"))

    @pytest.mark.asyncio
    async def test_zero_balance_is_rejected(self, service):
        with pytest.raises(ValueError):
            await service.save_account_balance("2025-08", Decimal("0"))
        assert await service.list_account_balances() == []


class TestDividends:
    @pytest.mark.asyncio
    async def test_list_filters_by_year_newest_first(self, service):
        await service.save_dividend(DividendRecord(date=date(2024, 12, 5), ticker="O", amount_usd=Decimal("1")))
        await service.save_dividend(DividendRecord(date=date(2025, 3, 5), ticker="SCHD", amount_usd=Decimal("2")))
        await service.save_dividend(DividendRecord(date=date(2025, 6, 5), ticker="SCHD", amount_usd=Decimal("2.1")))

        records = await service.list_dividends(year=2025)

        assert [r.date for r in records] == [date(2025, 6, 5), date(2025, 3, 5)]
        await service.drain()

    @pytest.mark.asyncio
    async def test_dashboard(self, service):
        """USD dividends convert at their month's rate."""
        await service.save_dividend(DividendRecord(date=date(2025, 7, 5), ticker="SCHD", amount_usd=Decimal("10")))
        await service.save_dividend(DividendRecord(date=date(2025, 9, 5), ticker="005930", amount_krw=Decimal("10000")))

        dashboard = await service.dividend_dashboard(today=date(2025, 9, 17))
        await service.drain()

        assert [p.label for p in dashboard.monthly] == ["25.07", "25.08", "25.09"]
        assert dashboard.monthly[0].get("total") == Decimal("13721.00")
        assert dashboard.monthly[1].get("total") is None
        assert dashboard.this_month_total == Decimal("10000")
        assert dashboard.this_year_total == Decimal("23721.00")
        assert dashboard.cumulative[-1].get("total") == Decimal("23721.00")
        assert dashboard.year_over_year[2025][8] is None

    @pytest.mark.asyncio
    async def test_delete_unknown_dividend(self, service):
        record = DividendRecord(date=date(2025, 3, 5), ticker="SCHD", amount_usd=Decimal("2"))
        with pytest.raises(NotFoundError):
            await service.delete_dividend(record.natural_key())


class TestDeposits:
    @pytest.mark.asyncio
    async def test_account_list_defaults(self, service):
        assert await service.get_account_list() == DEFAULT_ACCOUNTS

    @pytest.mark.asyncio
    async def test_account_list_from_log(self, service):
        for account in ("ISA", "일반계좌1", "ISA"):
            await service.save_deposit(DepositRecord(
                date=date(2025, 8, 1), type=DepositType.DEPOSIT, amount=Decimal("100"), account=account,
            ))
        assert await service.get_account_list() == ["ISA", "일반계좌1"]
        assert len(await service.list_deposits()) == 3
        await service.drain()


class TestHoldingsAndTrades:
    """Tests for holdings upsert and trade import."""

    @pytest.mark.asyncio
    async def test_save_holding_is_an_upsert(self, service):
        await service.save_holding(HoldingRecord(ticker="AAPL", quantity=Decimal("1"), avg_price_usd=Decimal("150")))
        result = await service.save_holding(
            HoldingRecord(ticker="AAPL", quantity=Decimal("2"), avg_price_usd=Decimal("155"))
        )

        assert result.sheet_row == 9
        holdings = await service.list_holdings()
        assert [(h.ticker, h.quantity) for h in holdings] == [("AAPL", Decimal("2"))]

        await service.delete_holding("aapl")
        assert await service.list_holdings() == []
        await service.drain()

    @pytest.mark.asyncio
    async def test_import_trades(self, service, mirror, ledger_store):
        written = await service.import_trades([
            buy("AAPL", "150", "2"),
            buy("AAPL", "180", "1"),
            buy("TSLA", "250", "1", TradeType.SELL),
        ])
        await service.drain()

        assert written == 3
        assert len(await mirror.select(TRANSACTIONS_TABLE)) == 3
        holdings = await service.list_holdings()
        assert [(h.ticker, h.quantity, h.avg_price_usd) for h in holdings] == [
            ("AAPL", Decimal("3"), Decimal("160")),
        ]
        audit_types = [row[2] for row in ledger_store.sheet_rows("AuditLog")]
        assert audit_types[-1] == "trades_imported"

    @pytest.mark.asyncio
    async def test_import_nothing(self, service):
        with pytest.raises(ValueError):
            await service.import_trades([])

    @pytest.mark.asyncio
    async def test_trade_extraction(self, rate_cache, mirror):
        class StaticExtractor(TradeExtractor):
            async def extract_trade_candidates(self, image: bytes):
                return [buy("AAPL", "150", "1")]

        bare = LedgerService(rate_cache=rate_cache, mirror=mirror)
        assert await bare.extract_trade_candidates(b"png") == []

        service = LedgerService(rate_cache=rate_cache, mirror=mirror, trade_extractor=StaticExtractor())
        assert [t.ticker for t in await service.extract_trade_candidates(b"png")] == ["AAPL"]


class TestStandaloneMode:
    """Tests for the mirror-only service."""

    @pytest.mark.asyncio
    async def test_books_are_served_from_mirror(self, rate_cache, mirror, ledger_settings):
        service = LedgerService(rate_cache=rate_cache, mirror=mirror, ledger_settings=ledger_settings)

        result = await service.save_account_balance("2025-08", Decimal("50000000"))

        assert service.standalone
        assert result.ledger_hit is False
        assert [r.year_month for r in await service.list_account_balances()] == ["2025-08"]
        assert await service.index_trend() == []


class TestDashboards:
    @pytest.mark.asyncio
    async def test_index_trend(self, service, ledger_store):
        def block_row(label: str) -> list:
            return [""] * 6 + [label] + [""] * 9 + ["100", "100"]

        ledger_store.create_sheet("1. 계좌현황(누적)", [[]] * 16 + [
            block_row("25.06"),
            block_row("25.07"),
            block_row("25.09"),
        ])

        rows = await service.index_trend()
        await service.drain()

        assert rows[0][0] == "25.06"
        assert rows[0][33] == Decimal("100")
        assert rows[1][23] == Decimal("1372.10")
        assert rows[2][23] == Decimal("1385.5")

    @pytest.mark.asyncio
    async def test_market_yields(self, rate_settings, clock, mirror):
        def market_row(label: str, rate: str, gold: str) -> str:
            cells = [""] * 27
            cells[6], cells[7], cells[21] = label, rate, gold
            return ",".join(cells)

        document = "\n".join([
            "title",
            "header",
            market_row("24.12", "1400", "100"),
            market_row("25.01", "1470", "110"),
        ]) + "\n"
        cache = RateCache(
            provider=FakeProvider({date(2025, 9, 17): Decimal("1385.5")}),
            historical_source=FakeHistoricalSource(document),
            settings=rate_settings,
            clock=clock,
        )
        service = LedgerService(rate_cache=cache, mirror=mirror)

        yields = await service.market_yields(year=2025, through_month=1)

        assert yields["gold"] == [Decimal("0"), Decimal("10.0")]
        assert yields["dollar"] == [Decimal("0"), Decimal("5.0")]
        assert yields["bitcoin"] == [Decimal("0"), Decimal("0")]
