"""
Abstract Storage Interfaces

DESIGN DECISION: Two storage capabilities are kept separate:

1. The ledger store is the system of record: a loosely typed grid
   addressed by A1 ranges (Google Sheets in production).
2. The mirror store is a relational copy kept eventually consistent for
   fast reads. It is best-effort and never required for a read that the
   ledger can serve.

Both are async so the business logic does not care whether a backend
blocks on network I/O.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel, Field


# A raw cell as returned by the backend: str, number, bool or None
CellValue = Any
Row = list[CellValue]


def sheet_range(sheet: str, cells: str) -> str:
    """Build an A1 range with a quoted sheet name: 'My Sheet'!B2:F2."""
    escaped = sheet.replace("'", "''")
    return f"'{escaped}'!{cells}"


def split_range(range_spec: str) -> tuple[str, str]:
    """Inverse of sheet_range(): return (sheet name, cell range)."""
    sheet, sep, cells = range_spec.rpartition("!")
    if not sep:
        raise ValueError(f"Range has no sheet name: {range_spec!r}")
    if len(sheet) >= 2 and sheet[0] == sheet[-1] == "'":
        sheet = sheet[1:-1].replace("''", "'")
    return sheet, cells


class RangeWrite(BaseModel):
    """A positional write of a rectangular block of values."""

    range: str = Field(..., description="A1 range, e.g. \"'Sheet'!B46:F46\"")
    values: list[Row]


class LedgerStoreInterface(ABC):
    """
    Abstract interface for the ledger (spreadsheet) backend.

    Cell values are untyped on the way in and out.
    """

    @abstractmethod
    async def read_range(self, range_spec: str) -> list[Row]:
        """
        Read a block of cells.

        Rows are returned in sheet order starting at the first row of the
        range. Trailing empty rows and trailing empty cells of a row may be
        omitted, as the Sheets API does.

        Raises:
            ConnectionError: If the backend cannot be reached
            StorageError: On any other backend failure
        """
        pass

    @abstractmethod
    async def append_rows(self, range_spec: str, rows: list[Row]) -> None:
        """
        Append rows after the last non-empty row of the range's table.

        Raises:
            StorageError: If the append fails
        """
        pass

    @abstractmethod
    async def write_ranges(self, writes: list[RangeWrite]) -> None:
        """
        Write several positional blocks in one batch.

        Raises:
            StorageError: If the write fails
        """
        pass


class MirrorStoreInterface(ABC):
    """
    Abstract interface for the relational mirror.

    Rows are plain dicts. Filters are equality matches on columns.
    """

    @abstractmethod
    async def upsert(
        self,
        table: str,
        rows: list[dict[str, Any]],
        conflict_key: tuple[str, ...],
    ) -> int:
        """
        Insert rows, replacing any existing row with the same conflict key.

        Returns:
            Number of rows written

        Raises:
            MirrorWriteError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, table: str, filters: dict[str, Any]) -> int:
        """
        Delete rows matching every filter.

        Returns:
            Number of rows deleted
        """
        pass

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        """Return copies of the rows matching every filter."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """No row matches the requested natural key."""

    def __init__(self, message: str, key: Optional[BaseModel] = None):
        self.key = key
        super().__init__(message)


class DuplicateError(StorageError):
    """A record with the same natural key already exists."""

    def __init__(self, message: str, key: Optional[BaseModel] = None):
        self.key = key
        super().__init__(message)


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class MirrorWriteError(StorageError):
    """A best-effort mirror write failed."""
    pass
