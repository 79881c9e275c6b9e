"""Tests for ledger layouts, row codecs, the locator and the mutator."""

from datetime import date
from decimal import Decimal

import pytest

from sheet_ledger.audit.logger import AuditLogger
from sheet_ledger.ledger import (
    NOT_FOUND,
    AccountBalanceCodec,
    BackgroundMirror,
    DepositCodec,
    DividendCodec,
    HoldingCodec,
    LedgerLocator,
    LedgerMutator,
    MirrorLedger,
    account_balance_layout,
    deposit_layout,
    dividend_layout,
    holding_layout,
)
from sheet_ledger.ledger.layouts import DEFAULT_BALANCE_SHEET
from sheet_ledger.models.records import (
    AccountBalanceRecord,
    BalanceKey,
    DepositKey,
    DepositRecord,
    DepositType,
    DividendRecord,
    HoldingKey,
    HoldingRecord,
    RecordSource,
)
from sheet_ledger.models.series import MutationAction
from sheet_ledger.parsing.cells import RowSkipped
from sheet_ledger.services.storage.interface import (
    DuplicateError,
    MirrorWriteError,
    NotFoundError,
)
from sheet_ledger.services.storage.memory import InMemoryLedgerStore, InMemoryMirrorStore


def balance(year: int, month: int, amount: str) -> AccountBalanceRecord:
    return AccountBalanceRecord(year=year, month=month, balance=Decimal(amount))


def balance_row(yy: str, month: str, amount: str) -> list:
    """A B:H balance row."""
    return [yy, month, f"20{yy}{int(month):02d}", f"20{yy}", f"{int(month)}월", "", amount]


class FailingMirror(InMemoryMirrorStore):
    async def upsert(self, table, rows, conflict_key):
        raise MirrorWriteError("mirror offline")

    async def delete(self, table, filters):
        raise MirrorWriteError("mirror offline")


@pytest.fixture
def audit_store(ledger_store) -> InMemoryLedgerStore:
    ledger_store.create_sheet("AuditLog")
    return ledger_store


@pytest.fixture
def audit_logger(audit_store) -> AuditLogger:
    return AuditLogger(store=audit_store, sheet_name="AuditLog")


@pytest.fixture
def balances(ledger_store, mirror, audit_logger) -> LedgerMutator:
    return LedgerMutator(
        ledger_store,
        AccountBalanceCodec(account_balance_layout()),
        mirror=BackgroundMirror(mirror, audit_logger),
        owner_id="user-1",
        audit_logger=audit_logger,
    )


@pytest.fixture
def dividends(ledger_store, mirror) -> LedgerMutator:
    return LedgerMutator(
        ledger_store,
        DividendCodec(dividend_layout()),
        mirror=BackgroundMirror(mirror),
        owner_id="user-1",
    )


@pytest.fixture
def deposits(ledger_store, mirror) -> LedgerMutator:
    return LedgerMutator(
        ledger_store,
        DepositCodec(deposit_layout()),
        mirror=BackgroundMirror(mirror),
        owner_id="user-1",
    )


@pytest.fixture
def holdings(ledger_store, mirror) -> LedgerMutator:
    return LedgerMutator(
        ledger_store,
        HoldingCodec(holding_layout()),
        mirror=BackgroundMirror(mirror),
        owner_id="user-1",
    )


def audit_types(store: InMemoryLedgerStore) -> list[str]:
    return [row[2] for row in store.sheet_rows("AuditLog")]


# =============================================================================
# LAYOUTS
# =============================================================================

class TestLayouts:
    """Tests for column contracts and positional writes."""

    def test_balance_write_skips_formula_column(self):
        """Column G is a formula, so the write splits around it."""
        layout = account_balance_layout()
        cells = AccountBalanceCodec(layout).encode(balance(2025, 9, "52000000"))

        writes = layout.writes_for(46, cells)

        assert [w.range for w in writes] == [
            "'5. 계좌내역(누적)'!B46:F46",
            "'5. 계좌내역(누적)'!H46",
        ]
        assert writes[0].values == [[25, 9, "202509", 2025, "9월"]]
        assert writes[1].values == [[52000000]]

    def test_balance_blank_writes_only_touch_balance(self):
        layout = account_balance_layout()
        writes = layout.blank_writes(46)
        assert [w.range for w in writes] == ["'5. 계좌내역(누적)'!H46"]
        assert writes[0].values == [[""]]

    def test_holding_columns_are_relative_to_c(self):
        layout = holding_layout()
        assert layout.first_column == 3
        assert layout.width == 6
        writes = layout.writes_for(9, {1: "AAPL", 2: "Apple", 3: 10, 4: "", 5: 150.5})
        assert [w.range for w in writes] == ["'3. 종목현황'!D9:H9"]

    def test_shifted_row_writes_move_right(self):
        layout = deposit_layout()
        writes = layout.blank_writes(5, shift=1)
        assert [w.range for w in writes] == ["'6. 입금내역'!B5:I5"]

    def test_full_row_fills_unowned_columns(self):
        layout = account_balance_layout()
        row = layout.full_row({0: 25, 6: 100})
        assert row == [25, "", "", "", "", "", 100]

    def test_sheet_row_mapping(self):
        assert account_balance_layout().sheet_row(0) == 1
        assert holding_layout().read_range == "'3. 종목현황'!C:H"


# =============================================================================
# CODECS
# =============================================================================

class TestAccountBalanceCodec:
    """Tests for balance row decoding."""

    codec = AccountBalanceCodec(account_balance_layout())

    def test_decode_full_row(self):
        record = self.codec.decode(["25", "8", "202508", "2025", "8월", "2025-08-31", "₩50,000,000"])
        assert (record.year, record.month, record.balance) == (2025, 8, Decimal("50000000"))
        assert record.source == RecordSource.LEDGER

    def test_month_from_label_and_year_from_prefix(self):
        record = self.codec.decode(["25", "", "", "", "8월", "", "1,000"])
        assert (record.year, record.month) == (2025, 8)

    @pytest.mark.parametrize("row", [
        [],
        ["", "", ""],
        ["25", "8", "202508", "2025", "8월", ""],
        ["25", "8", "202508", "2025", "8월", "", ""],
        ["25", "8", "202508", "2025", "8월", "", "0"],
        ["#REF!", "8", "202508", "2025", "8월", "", "100"],
        ["25", "8", "202508", "2025", "8월", "", "#REF!"],
        ["25", "", "", "", "", "", "100"],
        ["합계", "", "", "", "", "", "100"],
    ])
    def test_unusable_rows_are_skipped(self, row):
        """Blank, short, zero-balance, error-marked and monthless rows are skipped."""
        with pytest.raises(RowSkipped):
            self.codec.decode(row)

    def test_key_with_balance_matches_within_one_unit(self):
        record = balance(2025, 8, "50000000")
        assert self.codec.key_matches(record, BalanceKey(year=2025, month=8))
        assert self.codec.key_matches(record, BalanceKey(year=2025, month=8, balance=Decimal("50000000.4")))
        assert not self.codec.key_matches(record, BalanceKey(year=2025, month=8, balance=Decimal("49000000")))

    def test_encode_zero_pads_year_month(self):
        cells = self.codec.encode(balance(2025, 3, "100"))
        assert cells[2] == "202503"
        assert cells[4] == "3월"

    def test_mirror_row_round_trip(self):
        row = self.codec.to_mirror_row(balance(2025, 8, "50000000"), "user-1")
        assert row["year_month"] == "2025-08"
        assert row["sheet_synced"] is True
        record = self.codec.from_mirror_row(row)
        assert record.balance == Decimal("50000000")
        assert record.source == RecordSource.MIRROR


class TestDividendCodec:
    codec = DividendCodec(dividend_layout(), conversion_rate=Decimal("1400"))

    def test_decode(self):
        record = self.codec.decode(
            ["2025-08-15", "2025", "08월", "15일", "schd", "Schwab US Dividend", "", "3.5", "₩4,900"]
        )
        assert record.ticker == "SCHD"
        assert record.amount_usd == Decimal("3.5")
        assert record.amount_krw == Decimal("0")

    def test_row_without_amounts_is_skipped(self):
        with pytest.raises(RowSkipped):
            self.codec.decode(["2025-08-15", "2025", "08월", "15일", "SCHD", "", "", "", ""])

    def test_encode_converts_usd_total(self):
        record = DividendRecord(date=date(2025, 8, 5), ticker="SCHD", amount_usd=Decimal("3.5"))
        cells = self.codec.encode(record)
        assert cells[0] == "2025-08-05"
        assert cells[2] == "08월"
        assert cells[3] == "05일"
        assert cells[5] == "SCHD"
        assert cells[6] == ""
        assert cells[7] == 3.5
        assert cells[8] == "₩4,900"

    def test_encode_mixed_currency(self):
        record = DividendRecord(
            date=date(2025, 8, 5), ticker="005930", name="삼성전자",
            amount_krw=Decimal("12000"), amount_usd=Decimal("1"),
        )
        assert self.codec.encode(record)[8] == "₩13,400"

    def test_key_match_tolerances(self):
        record = DividendRecord(
            date=date(2025, 8, 5), ticker="SCHD",
            amount_krw=Decimal("1000"), amount_usd=Decimal("3.50"),
        )
        key = record.natural_key()
        assert self.codec.key_matches(record, key.model_copy(update={"amount_usd": Decimal("3.505")}))
        assert not self.codec.key_matches(record, key.model_copy(update={"amount_usd": Decimal("3.52")}))
        assert not self.codec.key_matches(record, key.model_copy(update={"ticker": "VOO"}))


class TestDepositCodec:
    codec = DepositCodec(deposit_layout())

    def test_withdrawal_from_label(self):
        record = self.codec.decode(["2025-08-15", "2025", "08월", "15일", "출금", "연금계좌", "-₩500,000", "rent"])
        assert record.type is DepositType.WITHDRAW
        assert record.amount == Decimal("500000")
        assert record.account == "연금계좌"
        assert record.memo == "rent"

    def test_type_from_sign_when_label_missing(self):
        record = self.codec.decode(["2025-08-15", "", "", "", "", "", "-300", ""])
        assert record.type is DepositType.WITHDRAW
        assert record.account == "일반계좌1"

    def test_leading_helper_column_is_detected(self):
        row = ["", "2025-08-15", "2025", "08월", "15일", "입금", "일반계좌1", "₩1,000,000"]
        assert self.codec.column_shift(row) == 1
        record = self.codec.decode(row)
        assert record.date == date(2025, 8, 15)
        assert record.amount == Decimal("1000000")

    def test_encode_signs_withdrawals(self):
        record = DepositRecord(date=date(2025, 8, 15), type=DepositType.WITHDRAW, amount=Decimal("500000"))
        cells = self.codec.encode(record)
        assert cells[4] == "출금"
        assert cells[6] == "-₩500,000"

    def test_mirror_rows_get_distinct_ids(self):
        record = DepositRecord(date=date(2025, 8, 15), type=DepositType.DEPOSIT, amount=Decimal("1"))
        first = self.codec.to_mirror_row(record, "user-1")
        second = self.codec.to_mirror_row(record, "user-1")
        assert first["id"] != second["id"]


class TestHoldingCodec:
    codec = HoldingCodec(holding_layout())

    def test_decode_reads_country_but_never_writes_it(self):
        record = self.codec.decode(["미국", "AAPL", "Apple", "10", "", "150.5"])
        assert record.country == "미국"
        assert 0 not in self.codec.encode(record)

    def test_formula_error_country_is_dropped(self):
        record = self.codec.decode(["#N/A", "AAPL", "Apple", "10", "", "150.5"])
        assert record.country is None

    def test_empty_slot(self):
        assert self.codec.is_empty_slot(["미국", "", "", ""])
        assert not self.codec.is_empty_slot(["", "AAPL"])


# =============================================================================
# LOCATOR
# =============================================================================

class TestLedgerLocator:
    """Tests for key lookups and position rules."""

    locator = LedgerLocator(AccountBalanceCodec(account_balance_layout()))

    def test_find_by_key_skips_header(self):
        rows = [balance_row("25", "8", "1"), balance_row("25", "8", "2")]
        assert self.locator.find_by_key(rows, BalanceKey(year=2025, month=8)) == 1

    def test_find_by_key_miss(self):
        rows = [[], balance_row("25", "8", "100")]
        assert self.locator.find_by_key(rows, BalanceKey(year=2025, month=9)) == NOT_FOUND

    def test_find_all_by_key(self):
        rows = [[], balance_row("25", "8", "100"), balance_row("25", "9", "1"), balance_row("25", "8", "200")]
        assert self.locator.find_all_by_key(rows, BalanceKey(year=2025, month=8)) == [1, 3]

    def test_last_valid_row_ignores_broken_tail(self):
        """Trailing error-marked and blank-balance rows are not anchors."""
        rows = [
            [],
            balance_row("25", "7", "100"),
            balance_row("25", "8", "200"),
            ["#REF!", "9", "202509", "2025", "9월", "", "300"],
            balance_row("25", "10", ""),
        ]
        assert self.locator.find_last_valid_row(rows) == 2
        assert self.locator.next_append_row(rows) == 4

    def test_last_valid_row_skips_error_marked_balances(self):
        rows = [
            [],
            balance_row("25", "7", "100"),
            balance_row("25", "8", "#REF!"),
            balance_row("25", "9", "#REF!"),
        ]
        assert self.locator.find_last_valid_row(rows) == 1

    def test_empty_ledger_starts_at_minimum_row(self):
        assert self.locator.find_last_valid_row([[]]) == NOT_FOUND
        assert self.locator.next_append_row([[]]) == 45

    def test_first_empty_slot(self):
        locator = LedgerLocator(HoldingCodec(holding_layout()))
        rows = [[]] * 8 + [["", "AAPL"], ["미국", ""], ["", "MSFT"]]
        assert locator.find_first_empty_slot(rows) == 9

    def test_first_empty_slot_past_the_end(self):
        locator = LedgerLocator(HoldingCodec(holding_layout()))
        rows = [[]] * 8 + [["", "AAPL"]]
        assert locator.find_first_empty_slot(rows) == 9
        assert locator.find_first_empty_slot([[]] * 3) == 8

    def test_decode_all_keeps_indices(self):
        rows = [[], balance_row("25", "7", "100"), ["", ""], balance_row("25", "8", "200")]
        assert [index for index, _ in self.locator.decode_all(rows)] == [1, 3]


# =============================================================================
# MUTATOR
# =============================================================================

class TestBalanceLedgerScenario:
    """Lookup, duplicate rejection and append position on a small sheet."""

    @pytest.mark.asyncio
    async def test_end_to_end(self):
        store = InMemoryLedgerStore()
        store.create_sheet(DEFAULT_BALANCE_SHEET, [
            ["", "", "", ""],
            ["", "25", "8", "202508", "2025", "8월", "", "50000000"],
        ])
        mutator = LedgerMutator(store, AccountBalanceCodec(account_balance_layout()))

        rows = await store.read_range(mutator.layout.read_range)
        assert mutator.locator.find_by_key(rows, BalanceKey(year=2025, month=8)) == 1

        with pytest.raises(DuplicateError):
            await mutator.append(balance(2025, 8, "51000000"))

        result = await mutator.append(balance(2025, 9, "52000000"))

        assert result.sheet_row == 3
        grid = store.sheet_rows(DEFAULT_BALANCE_SHEET)
        assert grid[1] == ["", "25", "8", "202508", "2025", "8월", "", "50000000"]
        assert grid[2] == ["", 25, 9, "202509", 2025, "9월", "", 52000000]
        assert result.mirror_scheduled is False


class TestLedgerMutator:
    """Tests for append, update and soft delete."""

    @pytest.mark.asyncio
    async def test_first_balance_goes_to_minimum_row(self, balances, ledger_store, mirror):
        result = await balances.append(balance(2025, 8, "50000000"))
        await balances._mirror.drain()

        assert result.action is MutationAction.APPENDED
        assert result.sheet_row == 45
        assert result.mirror_scheduled
        rows = await mirror.select("account_balances", {"user_id": "user-1"})
        assert rows[0]["year_month"] == "2025-08"
        assert rows[0]["balance"] == 50000000

    @pytest.mark.asyncio
    async def test_duplicate_is_audited(self, balances, audit_store):
        await balances.append(balance(2025, 8, "50000000"))
        with pytest.raises(DuplicateError) as exc:
            await balances.append(balance(2025, 8, "1"))

        assert exc.value.key == BalanceKey(year=2025, month=8)
        assert audit_types(audit_store) == ["record_appended", "duplicate_rejected"]

    @pytest.mark.asyncio
    async def test_update_same_key_rewrites_in_place(self, balances, ledger_store):
        await balances.append(balance(2025, 8, "50000000"))
        result = await balances.update(BalanceKey(year=2025, month=8), balance(2025, 8, "50500000"))

        assert result.sheet_row == 45
        records = await balances.list_records()
        assert [(r.month, r.balance) for r in records] == [(8, Decimal("50500000"))]

    @pytest.mark.asyncio
    async def test_update_changed_key_moves_and_blanks_old_row(self, balances, ledger_store, mirror):
        await balances.append(balance(2025, 8, "50000000"))
        await balances.append(balance(2025, 9, "51000000"))

        result = await balances.update(BalanceKey(year=2025, month=8), balance(2025, 10, "52000000"))
        await balances._mirror.drain()

        assert result.sheet_row == 47
        grid = ledger_store.sheet_rows(DEFAULT_BALANCE_SHEET)
        assert grid[44][1:6] == [25, 8, "202508", 2025, "8월"]
        assert grid[44][7] == ""
        records = await balances.list_records()
        assert [r.month for r in records] == [9, 10]
        mirrored = sorted(row["year_month"] for row in await mirror.select("account_balances"))
        assert mirrored == ["2025-09", "2025-10"]

    @pytest.mark.asyncio
    async def test_update_into_existing_key_fails_before_writing(self, balances, ledger_store):
        await balances.append(balance(2025, 8, "50000000"))
        await balances.append(balance(2025, 9, "51000000"))
        writes_before = len(ledger_store.write_log)

        with pytest.raises(DuplicateError):
            await balances.update(BalanceKey(year=2025, month=8), balance(2025, 9, "1"))

        assert len(ledger_store.write_log) == writes_before

    @pytest.mark.asyncio
    async def test_update_missing_key(self, balances, audit_store):
        with pytest.raises(NotFoundError, match="Nothing to update"):
            await balances.update(BalanceKey(year=2025, month=1), balance(2025, 1, "1"))
        assert audit_types(audit_store) == ["record_not_found"]

    @pytest.mark.asyncio
    async def test_soft_delete_blanks_balance_only(self, balances, ledger_store, audit_store, mirror):
        await balances.append(balance(2025, 8, "50000000"))
        await balances._mirror.drain()

        result = await balances.soft_delete(BalanceKey(year=2025, month=8))
        await balances._mirror.drain()

        assert result.action is MutationAction.SOFT_DELETED
        assert result.sheet_row == 45
        grid = ledger_store.sheet_rows(DEFAULT_BALANCE_SHEET)
        assert grid[44] == ["", 25, 8, "202508", 2025, "8월", "", ""]
        assert await balances.list_records() == []
        assert await mirror.select("account_balances") == []
        assert audit_types(audit_store)[-1] == "record_soft_deleted"

    @pytest.mark.asyncio
    async def test_soft_delete_with_mismatched_balance(self, balances):
        """A key carrying a balance only matches rows with that balance."""
        await balances.append(balance(2025, 8, "50000000"))
        with pytest.raises(NotFoundError):
            await balances.soft_delete(BalanceKey(year=2025, month=8, balance=Decimal("49000000")))

    @pytest.mark.asyncio
    async def test_soft_delete_near_balance_clears_mirror_copy(self, balances, mirror):
        """The mirror is filtered by the row that matched, not the caller's key."""
        await balances.append(balance(2025, 8, "50000000"))
        await balances._mirror.drain()

        result = await balances.soft_delete(
            BalanceKey(year=2025, month=8, balance=Decimal("50000000.4"))
        )
        await balances._mirror.drain()

        assert result.sheet_row == 45
        assert await mirror.select("account_balances") == []

    @pytest.mark.asyncio
    async def test_update_with_near_key_replaces_mirror_copy(self, balances, mirror):
        await balances.append(balance(2025, 8, "50000000"))
        await balances._mirror.drain()

        await balances.update(
            BalanceKey(year=2025, month=8, balance=Decimal("50000000.4")),
            balance(2025, 9, "51000000"),
        )
        await balances._mirror.drain()

        mirrored = [row["year_month"] for row in await mirror.select("account_balances")]
        assert mirrored == ["2025-09"]

    @pytest.mark.asyncio
    async def test_soft_delete_ledger_miss_removes_mirror_copy(self, balances, mirror):
        await mirror.upsert(
            "account_balances",
            [{"user_id": "user-1", "year_month": "2024-01", "balance": 1}],
            ("user_id", "year_month"),
        )

        result = await balances.soft_delete(BalanceKey(year=2024, month=1))

        assert result.ledger_hit is False
        assert await mirror.select("account_balances") == []

    @pytest.mark.asyncio
    async def test_soft_delete_missing_everywhere(self, balances):
        with pytest.raises(NotFoundError, match="Nothing to delete"):
            await balances.soft_delete(BalanceKey(year=2024, month=1))

    @pytest.mark.asyncio
    async def test_mirror_failure_never_reaches_caller(self, ledger_store, audit_logger, audit_store):
        """The ledger write stands; the failure is logged and audited."""
        mutator = LedgerMutator(
            ledger_store,
            AccountBalanceCodec(account_balance_layout()),
            mirror=BackgroundMirror(FailingMirror(), audit_logger),
            owner_id="user-1",
            audit_logger=audit_logger,
        )

        result = await mutator.append(balance(2025, 8, "50000000"))
        await mutator._mirror.drain()

        assert result.sheet_row == 45
        assert len(await mutator.list_records()) == 1
        assert "mirror_write_failed" in audit_types(audit_store)


class TestOtherLedgers:
    """Append modes and multiplicity of the dividend, deposit and holding ledgers."""

    @pytest.mark.asyncio
    async def test_dividends_append_after_table(self, dividends, ledger_store):
        first = DividendRecord(date=date(2025, 8, 5), ticker="SCHD", amount_usd=Decimal("3.5"))
        second = DividendRecord(date=date(2025, 9, 5), ticker="O", amount_usd=Decimal("1.2"))

        result = await dividends.append(first)
        await dividends.append(second)

        assert result.sheet_row is None
        assert [r.ticker for r in await dividends.list_records()] == ["SCHD", "O"]
        with pytest.raises(DuplicateError):
            await dividends.append(first)

    @pytest.mark.asyncio
    async def test_dividend_update_with_new_amount(self, dividends):
        original = DividendRecord(date=date(2025, 8, 5), ticker="SCHD", amount_usd=Decimal("3.5"))
        await dividends.append(original)

        corrected = original.model_copy(update={"amount_usd": Decimal("3.75")})
        await dividends.update(original.natural_key(), corrected)

        records = await dividends.list_records()
        assert [r.amount_usd for r in records] == [Decimal("3.75")]

    @pytest.mark.asyncio
    async def test_dividend_delete_within_tolerance_clears_mirror(self, dividends, mirror):
        record = DividendRecord(date=date(2025, 8, 5), ticker="SCHD", amount_usd=Decimal("12.34"))
        await dividends.append(record)
        await dividends._mirror.drain()
        assert len(await mirror.select("dividends")) == 1

        await dividends.soft_delete(record.natural_key().model_copy(update={"amount_usd": Decimal("12.339")}))
        await dividends._mirror.drain()

        assert await dividends.list_records() == []
        assert await mirror.select("dividends") == []

    @pytest.mark.asyncio
    async def test_identical_deposits_are_allowed(self, deposits):
        record = DepositRecord(date=date(2025, 8, 15), type=DepositType.DEPOSIT, amount=Decimal("500000"))
        await deposits.append(record)
        await deposits.append(record)
        assert len(await deposits.list_records()) == 2

        await deposits.soft_delete(DepositKey(date=date(2025, 8, 15), type=DepositType.DEPOSIT, amount=Decimal("500000")))
        assert len(await deposits.list_records()) == 1

    @pytest.mark.asyncio
    async def test_holdings_fill_first_free_slot(self, holdings, ledger_store):
        for ticker in ("AAPL", "MSFT", "VOO"):
            await holdings.append(HoldingRecord(ticker=ticker, quantity=Decimal("1"), avg_price_usd=Decimal("100")))
        await holdings.soft_delete(HoldingKey(ticker="MSFT"))

        result = await holdings.append(HoldingRecord(ticker="SCHD", quantity=Decimal("5"), avg_price_usd=Decimal("27")))

        assert result.sheet_row == 10
        assert [r.ticker for r in await holdings.list_records()] == ["AAPL", "SCHD", "VOO"]

    @pytest.mark.asyncio
    async def test_first_holding_lands_on_row_nine(self, holdings, ledger_store):
        result = await holdings.append(HoldingRecord(ticker="005930", name="삼성전자", quantity=Decimal("3"), avg_price_krw=Decimal("71000")))
        assert result.sheet_row == 9
        assert ledger_store.sheet_rows("3. 종목현황")[8][3:6] == ["005930", "삼성전자", 3]


class TestMirrorLedger:
    """Tests for the mirror-only rendition used without a spreadsheet."""

    @pytest.mark.asyncio
    async def test_append_update_delete(self, mirror):
        book = MirrorLedger(mirror, AccountBalanceCodec(account_balance_layout()), owner_id="user-1")

        await book.append(balance(2025, 8, "50000000"))
        with pytest.raises(DuplicateError):
            await book.append(balance(2025, 8, "1"))

        await book.update(BalanceKey(year=2025, month=8), balance(2025, 9, "51000000"))
        records = await book.list_records()
        assert [(r.month, r.source) for r in records] == [(9, RecordSource.MIRROR)]

        await book.soft_delete(BalanceKey(year=2025, month=9))
        assert await book.list_records() == []
        with pytest.raises(NotFoundError):
            await book.soft_delete(BalanceKey(year=2025, month=9))

    @pytest.mark.asyncio
    async def test_delete_with_near_balance(self, mirror):
        book = MirrorLedger(mirror, AccountBalanceCodec(account_balance_layout()), owner_id="user-1")
        await book.append(balance(2025, 8, "50000000"))

        await book.soft_delete(BalanceKey(year=2025, month=8, balance=Decimal("50000000.4")))

        assert await mirror.select("account_balances") == []

    @pytest.mark.asyncio
    async def test_other_owners_are_invisible(self, mirror):
        codec = AccountBalanceCodec(account_balance_layout())
        await MirrorLedger(mirror, codec, owner_id="someone-else").append(balance(2025, 8, "1"))
        assert await MirrorLedger(mirror, codec, owner_id="user-1").list_records() == []
