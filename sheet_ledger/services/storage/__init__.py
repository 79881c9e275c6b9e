"""
Storage Services Package

Provides abstract interfaces and concrete implementations for the ledger
(Google Sheets) and the relational mirror.
"""

from sheet_ledger.services.storage.interface import (
    ConnectionError,
    DuplicateError,
    LedgerStoreInterface,
    MirrorStoreInterface,
    MirrorWriteError,
    NotFoundError,
    RangeWrite,
    StorageError,
    sheet_range,
    split_range,
)
from sheet_ledger.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
)
from sheet_ledger.services.storage.memory import (
    InMemoryLedgerStore,
    InMemoryMirrorStore,
)

__all__ = [
    # Interfaces
    "LedgerStoreInterface",
    "MirrorStoreInterface",
    "RangeWrite",
    "sheet_range",
    "split_range",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "MirrorWriteError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStore",
    "InMemoryLedgerStore",
    "InMemoryMirrorStore",
]
