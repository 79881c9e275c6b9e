"""
Ledger Record Models

These models are the typed view of rows living in the ledger spreadsheet.
Raw cell arrays never travel past the row codecs; everything above them
works with these records.

DESIGN DECISION: Records are identified by a natural key, never by row
position. Row numbers are a detail of the backing sheet that changes when
rows are blanked or appended, so no model here stores one.

Amounts are always non-negative. Direction (deposit vs withdrawal,
buy vs sell) is carried by an explicit type field.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from sheet_ledger.parsing.periods import parse_year_month, period_key, year_month


# =============================================================================
# ENUMS
# =============================================================================

class RecordSource(str, Enum):
    """Where a record was read from."""
    LEDGER = "ledger"
    MIRROR = "mirror"


class LedgerKind(str, Enum):
    """The ledger areas of the spreadsheet."""
    ACCOUNT_BALANCE = "account_balance"
    DIVIDEND = "dividend"
    DEPOSIT = "deposit"
    HOLDING = "holding"


class DepositType(str, Enum):
    """
    Direction of a cash movement.

    The sheet shows these as 입금 / 출금.
    """
    DEPOSIT = "DEPOSIT"
    WITHDRAW = "WITHDRAW"

    @property
    def sheet_label(self) -> str:
        return "입금" if self is DepositType.DEPOSIT else "출금"

    @classmethod
    def from_sheet_label(cls, label: str) -> "DepositType":
        text = (label or "").strip()
        if text in ("입금", "DEPOSIT"):
            return cls.DEPOSIT
        if text in ("출금", "WITHDRAW"):
            return cls.WITHDRAW
        raise ValueError(f"Unknown deposit type: {label!r}")


class TradeType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


# =============================================================================
# NATURAL KEYS
# =============================================================================

class BalanceKey(BaseModel):
    """
    Natural key of a month-end balance.

    balance is optional: when given, a row only matches if its balance is
    within one currency unit of it (used when deleting a specific entry).
    """
    model_config = ConfigDict(frozen=True)

    year: int = Field(..., ge=2000, le=2100)
    month: int = Field(..., ge=1, le=12)
    balance: Optional[Decimal] = None

    @classmethod
    def from_year_month(cls, value: str, balance: Optional[Decimal] = None) -> "BalanceKey":
        year, month = parse_year_month(value)
        return cls(year=year, month=month, balance=balance)

    @property
    def year_month(self) -> str:
        return year_month(self.year, self.month)


class DividendKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: date
    ticker: str
    amount_krw: Decimal = Decimal("0")
    amount_usd: Decimal = Decimal("0")


class DepositKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: date
    type: DepositType
    amount: Decimal


class HoldingKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    ticker: str


# =============================================================================
# RECORDS
# =============================================================================

class LedgerRecord(BaseModel):
    """
    Base class of every ledger fact.

    Subclasses set `kind` and implement natural_key().
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    kind: ClassVar[LedgerKind]

    source: RecordSource = Field(
        default=RecordSource.LEDGER,
        description="Whether this record was decoded from the ledger or the mirror"
    )

    def natural_key(self) -> BaseModel:
        raise NotImplementedError


class AccountBalanceRecord(LedgerRecord):
    """Month-end total account balance."""

    kind: ClassVar[LedgerKind] = LedgerKind.ACCOUNT_BALANCE

    year: int = Field(..., ge=2000, le=2100)
    month: int = Field(..., ge=1, le=12)
    balance: Decimal = Field(
        ...,
        gt=0,
        description="Balance in KRW"
    )

    @classmethod
    def from_year_month(cls, value: str, balance: Decimal, **kwargs) -> "AccountBalanceRecord":
        year, month = parse_year_month(value)
        return cls(year=year, month=month, balance=balance, **kwargs)

    @property
    def year_month(self) -> str:
        return year_month(self.year, self.month)

    @property
    def period_key(self) -> str:
        return period_key(self.year, self.month)

    def natural_key(self) -> BalanceKey:
        return BalanceKey(year=self.year, month=self.month)


class DividendRecord(LedgerRecord):
    """A dividend receipt, possibly paid in both KRW and USD."""

    kind: ClassVar[LedgerKind] = LedgerKind.DIVIDEND

    date: date
    ticker: str = Field(..., min_length=1, max_length=20)
    name: str = Field(default="", max_length=100)
    amount_krw: Decimal = Field(default=Decimal("0"), ge=0)
    amount_usd: Decimal = Field(default=Decimal("0"), ge=0)

    @field_validator('ticker')
    @classmethod
    def normalize_ticker(cls, v: str) -> str:
        return v.upper()

    @model_validator(mode='after')
    def validate_has_amount(self) -> 'DividendRecord':
        if self.amount_krw == 0 and self.amount_usd == 0:
            raise ValueError("Dividend must carry a KRW or USD amount")
        return self

    def converted_total(self, rate: Decimal) -> Decimal:
        """KRW total, converting the USD part at the given rate."""
        return self.amount_krw + self.amount_usd * rate

    def natural_key(self) -> DividendKey:
        return DividendKey(
            date=self.date,
            ticker=self.ticker,
            amount_krw=self.amount_krw,
            amount_usd=self.amount_usd,
        )


class DepositRecord(LedgerRecord):
    """A deposit into or withdrawal from a brokerage account."""

    kind: ClassVar[LedgerKind] = LedgerKind.DEPOSIT

    date: date
    type: DepositType
    amount: Decimal = Field(..., gt=0)
    account: str = Field(default="일반계좌1", min_length=1, max_length=50)
    memo: Optional[str] = Field(default=None, max_length=200)

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.type is DepositType.DEPOSIT else -self.amount

    def natural_key(self) -> DepositKey:
        return DepositKey(date=self.date, type=self.type, amount=self.amount)


class HoldingRecord(LedgerRecord):
    """A portfolio position. One row per ticker."""

    kind: ClassVar[LedgerKind] = LedgerKind.HOLDING

    ticker: str = Field(..., min_length=1, max_length=20)
    name: str = Field(default="", max_length=100)
    country: Optional[str] = Field(
        default=None,
        description="Derived by a sheet formula; read-only"
    )
    quantity: Decimal = Field(default=Decimal("0"), ge=0)
    avg_price_krw: Decimal = Field(default=Decimal("0"), ge=0)
    avg_price_usd: Decimal = Field(default=Decimal("0"), ge=0)

    @field_validator('ticker')
    @classmethod
    def normalize_ticker(cls, v: str) -> str:
        return v.upper()

    def natural_key(self) -> HoldingKey:
        return HoldingKey(ticker=self.ticker)


class TradeCandidate(BaseModel):
    """
    A trade extracted from a brokerage screenshot or typed in by the user.

    Trades are logged to the mirror only; they never touch the ledger.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    date: date
    ticker: str = Field(..., min_length=1, max_length=20)
    name: str = Field(default="", max_length=100)
    price: Decimal = Field(..., gt=0)
    quantity: Decimal = Field(..., gt=0)
    type: TradeType

    @field_validator('ticker')
    @classmethod
    def normalize_ticker(cls, v: str) -> str:
        return v.upper()

    @property
    def total_amount(self) -> Decimal:
        return self.price * self.quantity
