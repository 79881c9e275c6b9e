"""Spreadsheet ledger package: layouts, row codecs, locator and mutator."""

from sheet_ledger.ledger.codecs import (
    AccountBalanceCodec,
    DepositCodec,
    DividendCodec,
    HoldingCodec,
    RowCodec,
)
from sheet_ledger.ledger.layouts import (
    AppendMode,
    LedgerLayout,
    account_balance_layout,
    deposit_layout,
    dividend_layout,
    holding_layout,
)
from sheet_ledger.ledger.locator import NOT_FOUND, LedgerLocator
from sheet_ledger.ledger.mutator import BackgroundMirror, LedgerMutator, MirrorLedger
from sheet_ledger.ledger.trades import (
    TradeExtractor,
    TradeLog,
    apply_trade,
    calculate_new_avg_price,
    normalize_extracted_trades,
)

__all__ = [
    "AccountBalanceCodec",
    "DepositCodec",
    "DividendCodec",
    "HoldingCodec",
    "RowCodec",
    "AppendMode",
    "LedgerLayout",
    "account_balance_layout",
    "deposit_layout",
    "dividend_layout",
    "holding_layout",
    "NOT_FOUND",
    "LedgerLocator",
    "BackgroundMirror",
    "LedgerMutator",
    "MirrorLedger",
    "TradeExtractor",
    "TradeLog",
    "apply_trade",
    "calculate_new_avg_price",
    "normalize_extracted_trades",
]
