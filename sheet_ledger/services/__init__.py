"""Services package."""

from sheet_ledger.services.storage import (
    ConnectionError,
    DuplicateError,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
    InMemoryLedgerStore,
    InMemoryMirrorStore,
    LedgerStoreInterface,
    MirrorStoreInterface,
    MirrorWriteError,
    NotFoundError,
    StorageError,
)

__all__ = [
    # Storage services
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStore",
    "InMemoryLedgerStore",
    "InMemoryMirrorStore",
    "LedgerStoreInterface",
    "MirrorStoreInterface",
    "MirrorWriteError",
    "NotFoundError",
    "StorageError",
]
