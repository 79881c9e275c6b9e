"""
Row Codecs

One codec per ledger turns a raw row into a typed record (decode), a
record into owned-column cell values (encode), and a record or key into
mirror rows and filters. This is the parsing boundary: nothing above the
codecs sees raw cell arrays.

Decoding raises RowSkipped for any row that is blank, malformed or
carries a formula error marker in a column the ledger reads. Scans catch
it and move on.
"""

import re
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Generic, TypeVar
from uuid import uuid4

from pydantic import BaseModel, ValidationError

from sheet_ledger.ledger.layouts import LedgerLayout
from sheet_ledger.models.records import (
    AccountBalanceRecord,
    BalanceKey,
    DepositKey,
    DepositRecord,
    DepositType,
    DividendKey,
    DividendRecord,
    HoldingKey,
    HoldingRecord,
    LedgerRecord,
    RecordSource,
)
from sheet_ledger.parsing.cells import (
    RowSkipped,
    cell_at,
    is_blank,
    is_formula_error,
    parse_amount,
    parse_date,
    parse_int,
    parse_month_token,
)

R = TypeVar("R", bound=LedgerRecord)
K = TypeVar("K", bound=BaseModel)

# Currency amounts match within one unit, foreign amounts within a cent
LOCAL_EPSILON = Decimal("1")
FOREIGN_EPSILON = Decimal("0.01")

DEFAULT_DEPOSIT_ACCOUNT = "일반계좌1"

_ISO_DATE_CELL = re.compile(r"^\d{4}[-/]\d{2}[-/]\d{2}$")


def cell_number(value: Decimal) -> Any:
    """Decimal -> int or float, the types the Sheets API and JSON accept."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def won(value: Decimal) -> str:
    """Format a KRW amount the way the sheet displays it: ₩1,234."""
    return f"₩{cell_number(value):,}"


def _decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Not a number: {value!r}")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RowCodec(ABC, Generic[R, K]):
    """Decode/encode contract of one ledger layout."""

    # Relative columns checked for formula error markers before decoding
    guarded_columns: tuple[int, ...] = ()

    def __init__(self, layout: LedgerLayout):
        self.layout = layout

    def column_shift(self, row: list) -> int:
        """Extra column offset of this particular row (0 for fixed layouts)."""
        return 0

    def decode(self, row: list) -> R:
        """
        Decode a raw row.

        Raises:
            RowSkipped: If the row is blank, malformed or carries an error marker
        """
        if not row or all(is_blank(cell) for cell in row):
            raise RowSkipped("blank row")
        shift = self.column_shift(row)
        for column in self.guarded_columns:
            if is_formula_error(cell_at(row, column + shift)):
                raise RowSkipped(f"formula error in column {column}")
        try:
            return self._decode(row, shift)
        except (ValidationError, ValueError, ArithmeticError) as e:
            raise RowSkipped(f"invalid row: {e}")

    @abstractmethod
    def _decode(self, row: list, shift: int) -> R:
        pass

    def is_valid_anchor(self, row: list) -> bool:
        """Whether the row counts as real data when locating the append position."""
        try:
            self.decode(row)
        except RowSkipped:
            return False
        return True

    def is_empty_slot(self, row: list) -> bool:
        """Whether a pre-allocated row is free (primary key cell blank)."""
        return all(is_blank(cell_at(row, column)) for column in self.guarded_columns[:1])

    @abstractmethod
    def key_matches(self, record: R, key: K) -> bool:
        pass

    @abstractmethod
    def encode(self, record: R) -> dict[int, Any]:
        """Owned-column values for a record, keyed by relative column."""
        pass

    @abstractmethod
    def key_label(self, key: K) -> str:
        pass

    @abstractmethod
    def to_mirror_row(self, record: R, owner_id: str) -> dict[str, Any]:
        pass

    @abstractmethod
    def from_mirror_row(self, row: dict[str, Any]) -> R:
        pass

    @abstractmethod
    def mirror_filter(self, key: K, owner_id: str) -> dict[str, Any]:
        pass


class AccountBalanceCodec(RowCodec[AccountBalanceRecord, BalanceKey]):
    """B:H balance rows. A zero or blank balance means "no record"."""

    guarded_columns = (0, 1, 3, 6)

    def _decode(self, row: list, shift: int) -> AccountBalanceRecord:
        if len(row) < 7:
            raise RowSkipped("balance column missing")

        short_year = parse_int(row[0])
        if short_year is None or short_year <= 0:
            raise RowSkipped("year prefix missing")

        year = parse_int(row[3]) or 2000 + short_year
        month = parse_month_token(row[1], row[4])
        if month == 0:
            raise RowSkipped("month missing")

        balance = parse_amount(row[6])
        if balance <= 0:
            raise RowSkipped("balance blank")

        return AccountBalanceRecord(year=year, month=month, balance=balance)

    def key_matches(self, record: AccountBalanceRecord, key: BalanceKey) -> bool:
        if (record.year, record.month) != (key.year, key.month):
            return False
        if key.balance is not None:
            return abs(record.balance - key.balance) < LOCAL_EPSILON
        return True

    def encode(self, record: AccountBalanceRecord) -> dict[int, Any]:
        return {
            0: record.year % 100,
            1: record.month,
            2: f"{record.year}{record.month:02d}",
            3: record.year,
            4: f"{record.month}월",
            6: cell_number(record.balance),
        }

    def key_label(self, key: BalanceKey) -> str:
        return key.year_month

    def to_mirror_row(self, record: AccountBalanceRecord, owner_id: str) -> dict[str, Any]:
        return {
            "user_id": owner_id,
            "year_month": record.year_month,
            "balance": cell_number(record.balance),
            "sheet_synced": True,
            "updated_at": _now_iso(),
        }

    def from_mirror_row(self, row: dict[str, Any]) -> AccountBalanceRecord:
        return AccountBalanceRecord.from_year_month(
            row["year_month"],
            _decimal(row["balance"]),
            source=RecordSource.MIRROR,
        )

    def mirror_filter(self, key: BalanceKey, owner_id: str) -> dict[str, Any]:
        filters = {"user_id": owner_id, "year_month": key.year_month}
        if key.balance is not None:
            filters["balance"] = cell_number(key.balance)
        return filters


class DividendCodec(RowCodec[DividendRecord, DividendKey]):
    """A:I dividend rows."""

    guarded_columns = (4, 0, 6, 7)

    def __init__(self, layout: LedgerLayout, conversion_rate: Decimal = Decimal("1400")):
        super().__init__(layout)
        self._conversion_rate = conversion_rate

    def _decode(self, row: list, shift: int) -> DividendRecord:
        day = parse_date(cell_at(row, 0))
        if day is None:
            raise RowSkipped("date missing")

        ticker = str(cell_at(row, 4) or "").strip()
        if not ticker:
            raise RowSkipped("ticker missing")

        name = str(cell_at(row, 5) or "").strip() or ticker
        amount_krw = parse_amount(cell_at(row, 6))
        amount_usd = parse_amount(cell_at(row, 7))

        return DividendRecord(
            date=day,
            ticker=ticker,
            name=name,
            amount_krw=amount_krw,
            amount_usd=amount_usd,
        )

    def key_matches(self, record: DividendRecord, key: DividendKey) -> bool:
        return (
            record.date == key.date
            and record.ticker == key.ticker.upper()
            and abs(record.amount_krw - key.amount_krw) < LOCAL_EPSILON
            and abs(record.amount_usd - key.amount_usd) < FOREIGN_EPSILON
        )

    def encode(self, record: DividendRecord) -> dict[int, Any]:
        converted = (record.amount_usd * self._conversion_rate).quantize(Decimal("1"))
        total = record.amount_krw + converted
        return {
            0: record.date.isoformat(),
            1: str(record.date.year),
            2: f"{record.date.month:02d}월",
            3: f"{record.date.day:02d}일",
            4: record.ticker,
            5: record.name or record.ticker,
            6: won(record.amount_krw) if record.amount_krw > 0 else "",
            7: cell_number(record.amount_usd) if record.amount_usd > 0 else "",
            8: won(total) if total > 0 else "",
        }

    def key_label(self, key: DividendKey) -> str:
        return f"{key.date.isoformat()}|{key.ticker}|{key.amount_krw}|{key.amount_usd}"

    def to_mirror_row(self, record: DividendRecord, owner_id: str) -> dict[str, Any]:
        return {
            "user_id": owner_id,
            "dividend_date": record.date.isoformat(),
            "ticker": record.ticker,
            "name": record.name,
            "amount_krw": cell_number(record.amount_krw),
            "amount_usd": cell_number(record.amount_usd),
            "updated_at": _now_iso(),
        }

    def from_mirror_row(self, row: dict[str, Any]) -> DividendRecord:
        return DividendRecord(
            date=date.fromisoformat(row["dividend_date"]),
            ticker=row["ticker"],
            name=row.get("name") or "",
            amount_krw=_decimal(row.get("amount_krw") or 0),
            amount_usd=_decimal(row.get("amount_usd") or 0),
            source=RecordSource.MIRROR,
        )

    def mirror_filter(self, key: DividendKey, owner_id: str) -> dict[str, Any]:
        return {
            "user_id": owner_id,
            "dividend_date": key.date.isoformat(),
            "ticker": key.ticker.upper(),
            "amount_krw": cell_number(key.amount_krw),
            "amount_usd": cell_number(key.amount_usd),
        }


class DepositCodec(RowCodec[DepositRecord, DepositKey]):
    """
    A:H deposit rows.

    Some sheets carry one or two leading helper columns; the date column
    is located per row among the first three cells.
    """

    guarded_columns = (0, 4, 6)

    def column_shift(self, row: list) -> int:
        for index in range(min(3, len(row))):
            if _ISO_DATE_CELL.match(str(row[index] or "").strip()):
                return index
        return 0

    def _decode(self, row: list, shift: int) -> DepositRecord:
        day = parse_date(cell_at(row, shift))
        if day is None:
            raise RowSkipped("date missing")

        amount_cell = cell_at(row, shift + 6)
        signed = parse_amount(amount_cell)
        if signed == 0:
            raise RowSkipped("amount blank")

        label = str(cell_at(row, shift + 4) or "").strip()
        if "입금" in label or label == DepositType.DEPOSIT.value:
            deposit_type = DepositType.DEPOSIT
        elif "출금" in label or label == DepositType.WITHDRAW.value:
            deposit_type = DepositType.WITHDRAW
        else:
            deposit_type = DepositType.DEPOSIT if signed > 0 else DepositType.WITHDRAW

        account = str(cell_at(row, shift + 5) or "").strip() or DEFAULT_DEPOSIT_ACCOUNT
        memo = str(cell_at(row, shift + 7) or "").strip() or None

        return DepositRecord(
            date=day,
            type=deposit_type,
            amount=abs(signed),
            account=account,
            memo=memo,
        )

    def is_empty_slot(self, row: list) -> bool:
        return is_blank(cell_at(row, self.column_shift(row)))

    def key_matches(self, record: DepositRecord, key: DepositKey) -> bool:
        return (
            record.date == key.date
            and record.type == key.type
            and abs(record.amount - key.amount) < LOCAL_EPSILON
        )

    def encode(self, record: DepositRecord) -> dict[int, Any]:
        sign = "" if record.type is DepositType.DEPOSIT else "-"
        return {
            0: record.date.isoformat(),
            1: str(record.date.year),
            2: f"{record.date.month:02d}월",
            3: f"{record.date.day:02d}일",
            4: record.type.sheet_label,
            5: record.account,
            6: f"{sign}{won(record.amount)}",
            7: record.memo or "",
        }

    def key_label(self, key: DepositKey) -> str:
        return f"{key.date.isoformat()}|{key.type.value}|{key.amount}"

    def to_mirror_row(self, record: DepositRecord, owner_id: str) -> dict[str, Any]:
        return {
            "id": str(uuid4()),
            "user_id": owner_id,
            "deposit_date": record.date.isoformat(),
            "type": record.type.value,
            "amount": cell_number(record.amount),
            "account": record.account,
            "memo": record.memo,
            "updated_at": _now_iso(),
        }

    def from_mirror_row(self, row: dict[str, Any]) -> DepositRecord:
        return DepositRecord(
            date=date.fromisoformat(row["deposit_date"]),
            type=DepositType(row["type"]),
            amount=_decimal(row["amount"]),
            account=row.get("account") or DEFAULT_DEPOSIT_ACCOUNT,
            memo=row.get("memo"),
            source=RecordSource.MIRROR,
        )

    def mirror_filter(self, key: DepositKey, owner_id: str) -> dict[str, Any]:
        return {
            "user_id": owner_id,
            "deposit_date": key.date.isoformat(),
            "type": key.type.value,
            "amount": cell_number(key.amount),
        }


class HoldingCodec(RowCodec[HoldingRecord, HoldingKey]):
    """C:H holding rows; C is a formula and only read."""

    guarded_columns = (1, 3)

    def _decode(self, row: list, shift: int) -> HoldingRecord:
        ticker = str(cell_at(row, 1) or "").strip()
        if not ticker:
            raise RowSkipped("ticker blank")

        country = cell_at(row, 0)
        if is_blank(country) or is_formula_error(country):
            country = None

        return HoldingRecord(
            ticker=ticker,
            name=str(cell_at(row, 2) or "").strip(),
            country=str(country) if country is not None else None,
            quantity=parse_amount(cell_at(row, 3)),
            avg_price_krw=parse_amount(cell_at(row, 4)),
            avg_price_usd=parse_amount(cell_at(row, 5)),
        )

    def key_matches(self, record: HoldingRecord, key: HoldingKey) -> bool:
        return record.ticker == key.ticker.upper()

    def encode(self, record: HoldingRecord) -> dict[int, Any]:
        return {
            1: record.ticker,
            2: record.name,
            3: cell_number(record.quantity),
            4: cell_number(record.avg_price_krw) if record.avg_price_krw > 0 else "",
            5: cell_number(record.avg_price_usd) if record.avg_price_usd > 0 else "",
        }

    def key_label(self, key: HoldingKey) -> str:
        return key.ticker.upper()

    def to_mirror_row(self, record: HoldingRecord, owner_id: str) -> dict[str, Any]:
        return {
            "user_id": owner_id,
            "ticker": record.ticker,
            "name": record.name,
            "quantity": cell_number(record.quantity),
            "avg_price_krw": cell_number(record.avg_price_krw),
            "avg_price_usd": cell_number(record.avg_price_usd),
            "updated_at": _now_iso(),
        }

    def from_mirror_row(self, row: dict[str, Any]) -> HoldingRecord:
        return HoldingRecord(
            ticker=row["ticker"],
            name=row.get("name") or "",
            quantity=_decimal(row.get("quantity") or 0),
            avg_price_krw=_decimal(row.get("avg_price_krw") or 0),
            avg_price_usd=_decimal(row.get("avg_price_usd") or 0),
            source=RecordSource.MIRROR,
        )

    def mirror_filter(self, key: HoldingKey, owner_id: str) -> dict[str, Any]:
        return {"user_id": owner_id, "ticker": key.ticker.upper()}
