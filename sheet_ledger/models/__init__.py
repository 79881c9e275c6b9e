"""
Data Models Package

All Pydantic models used by Sheet Ledger. Raw spreadsheet cells are
decoded into these before any business logic sees them.
"""

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
    LedgerKind,
    LedgerRecord,
    RecordSource,
    TradeCandidate,
    TradeType,
)
from sheet_ledger.models.series import (
    DividendDashboard,
    ExchangeRate,
    HistoricalMarketData,
    MutationAction,
    MutationResult,
    RateTier,
    SeriesPoint,
    YieldComparison,
)
from sheet_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger records
    "AccountBalanceRecord",
    "BalanceKey",
    "DepositKey",
    "DepositRecord",
    "DepositType",
    "DividendKey",
    "DividendRecord",
    "HoldingKey",
    "HoldingRecord",
    "LedgerKind",
    "LedgerRecord",
    "RecordSource",
    "TradeCandidate",
    "TradeType",
    # Rates and series
    "DividendDashboard",
    "ExchangeRate",
    "HistoricalMarketData",
    "MutationAction",
    "MutationResult",
    "RateTier",
    "SeriesPoint",
    "YieldComparison",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
