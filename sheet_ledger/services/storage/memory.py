"""
In-Memory Storage

Grid-backed ledger store and dict-backed mirror store. They serve the
standalone mode (no spreadsheet configured) and every test in the suite.

The ledger store imitates the parts of the Sheets values API the rest of
the code relies on: whole-column ranges read from row 1, trailing empty
rows and cells are trimmed, blanks come back as "".
"""

import copy
from typing import Any, Optional

from gspread.utils import a1_range_to_grid_range

from sheet_ledger.services.storage.interface import (
    LedgerStoreInterface,
    MirrorStoreInterface,
    RangeWrite,
    Row,
    StorageError,
    split_range,
)


def _blank(cell: Any) -> bool:
    return cell is None or cell == ""


def _trim_row(row: Row) -> Row:
    end = len(row)
    while end and _blank(row[end - 1]):
        end -= 1
    return row[:end]


class InMemoryLedgerStore(LedgerStoreInterface):
    """
    Ledger store holding one grid per sheet name.

    Sheets must be created up front (create_sheet) so a typo in a sheet
    name fails the same way it would against the real API.
    """

    def __init__(self):
        self._sheets: dict[str, list[Row]] = {}
        self.write_log: list[RangeWrite] = []

    def create_sheet(self, name: str, rows: Optional[list[Row]] = None) -> None:
        """Create a sheet, optionally seeded with rows starting at A1."""
        self._sheets[name] = [list(row) for row in rows or []]

    def sheet_rows(self, name: str) -> list[Row]:
        """Raw grid of a sheet, for assertions."""
        return self._grid(name)

    def _grid(self, name: str) -> list[Row]:
        try:
            return self._sheets[name]
        except KeyError:
            raise StorageError(f"Unable to parse range: sheet {name!r} not found")

    def _bounds(self, range_spec: str) -> tuple[str, dict[str, int]]:
        sheet, cells = split_range(range_spec)
        try:
            grid_range = a1_range_to_grid_range(cells)
        except Exception as e:
            raise StorageError(f"Invalid range {range_spec!r}: {e}")
        return sheet, grid_range

    def _put(self, grid: list[Row], row_idx: int, col_idx: int, values: list[Row]) -> None:
        for offset, values_row in enumerate(values):
            target = row_idx + offset
            while len(grid) <= target:
                grid.append([])
            row = grid[target]
            needed = col_idx + len(values_row)
            if len(row) < needed:
                row.extend([""] * (needed - len(row)))
            for j, value in enumerate(values_row):
                row[col_idx + j] = "" if value is None else value

    async def read_range(self, range_spec: str) -> list[Row]:
        sheet, bounds = self._bounds(range_spec)
        grid = self._grid(sheet)

        start_row = bounds.get("startRowIndex", 0)
        end_row = bounds.get("endRowIndex", len(grid))
        start_col = bounds.get("startColumnIndex", 0)
        end_col = bounds.get("endColumnIndex")

        rows = []
        for row in grid[start_row:end_row]:
            cells = row[start_col:end_col] if end_col is not None else row[start_col:]
            rows.append(_trim_row(list(cells)))

        while rows and not rows[-1]:
            rows.pop()
        return copy.deepcopy(rows)

    async def append_rows(self, range_spec: str, rows: list[Row]) -> None:
        sheet, bounds = self._bounds(range_spec)
        grid = self._grid(sheet)

        start_col = bounds.get("startColumnIndex", 0)
        end_col = bounds.get("endColumnIndex")

        last_used = -1
        for idx, row in enumerate(grid):
            cells = row[start_col:end_col] if end_col is not None else row[start_col:]
            if any(not _blank(cell) for cell in cells):
                last_used = idx

        start_row = max(last_used + 1, bounds.get("startRowIndex", 0))
        self._put(grid, start_row, start_col, rows)

    async def write_ranges(self, writes: list[RangeWrite]) -> None:
        for write in writes:
            sheet, bounds = self._bounds(write.range)
            grid = self._grid(sheet)
            self._put(
                grid,
                bounds.get("startRowIndex", 0),
                bounds.get("startColumnIndex", 0),
                write.values,
            )
            self.write_log.append(write)


class InMemoryMirrorStore(MirrorStoreInterface):
    """Mirror store keeping each table as a list of dict rows."""

    def __init__(self):
        self._tables: dict[str, list[dict[str, Any]]] = {}

    @staticmethod
    def _matches(row: dict[str, Any], filters: Optional[dict[str, Any]]) -> bool:
        if not filters:
            return True
        return all(row.get(column) == value for column, value in filters.items())

    async def upsert(
        self,
        table: str,
        rows: list[dict[str, Any]],
        conflict_key: tuple[str, ...],
    ) -> int:
        existing = self._tables.setdefault(table, [])
        for row in rows:
            key = {column: row.get(column) for column in conflict_key}
            existing[:] = [r for r in existing if not self._matches(r, key)]
            existing.append(dict(row))
        return len(rows)

    async def delete(self, table: str, filters: dict[str, Any]) -> int:
        existing = self._tables.get(table, [])
        kept = [row for row in existing if not self._matches(row, filters)]
        deleted = len(existing) - len(kept)
        self._tables[table] = kept
        return deleted

    async def select(
        self,
        table: str,
        filters: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        return [
            dict(row)
            for row in self._tables.get(table, [])
            if self._matches(row, filters)
        ]
