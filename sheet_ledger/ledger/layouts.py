"""
Ledger Layouts

Each ledger area of the spreadsheet has a fixed column contract: which
columns are read, where data starts, which columns this code owns (and
may write) and which are driven by in-sheet formulas (and must never be
touched). Column indices below are relative to the first column of the
read range.

DESIGN DECISION: Offsets and start rows are named constants per ledger,
never re-derived from the data. Sheets carry header blocks, summary rows
and formula regions that a heuristic would misread.
"""

from enum import Enum
from typing import Any, Optional

from gspread.utils import a1_range_to_grid_range, rowcol_to_a1
from pydantic import BaseModel, ConfigDict

from sheet_ledger.models.records import LedgerKind
from sheet_ledger.services.storage.interface import RangeWrite, sheet_range


DEFAULT_BALANCE_SHEET = "5. 계좌내역(누적)"
DEFAULT_DEPOSIT_SHEET = "6. 입금내역"
DEFAULT_DIVIDEND_SHEET = "7. 배당내역"
DEFAULT_HOLDING_SHEET = "3. 종목현황"


class AppendMode(str, Enum):
    """Where a new record lands in the sheet."""
    AFTER_LAST_VALID = "after_last_valid"    # row after the last well-formed row
    FIRST_EMPTY_SLOT = "first_empty_slot"    # first pre-allocated row with a blank key
    SHEET_APPEND = "sheet_append"            # values.append after the table


class LedgerLayout(BaseModel):
    """Column contract of one ledger area."""
    model_config = ConfigDict(frozen=True)

    kind: LedgerKind
    sheet: str
    columns: str
    data_offset: int
    first_sheet_row: int = 1
    min_start_row: Optional[int] = None
    owned_columns: tuple[int, ...]
    value_columns: tuple[int, ...]
    append_mode: AppendMode
    allows_multiple_per_key: bool = False
    mirror_table: str
    mirror_conflict_key: tuple[str, ...]

    @property
    def read_range(self) -> str:
        return sheet_range(self.sheet, self.columns)

    @property
    def first_column(self) -> int:
        """1-based sheet column of relative column 0."""
        return a1_range_to_grid_range(self.columns).get("startColumnIndex", 0) + 1

    @property
    def width(self) -> int:
        bounds = a1_range_to_grid_range(self.columns)
        return bounds["endColumnIndex"] - bounds.get("startColumnIndex", 0)

    def sheet_row(self, index: int) -> int:
        """1-based sheet row of a fetched row index."""
        return self.first_sheet_row + index

    def cell_range(self, row: int, start: int, end: int, shift: int = 0) -> str:
        first = rowcol_to_a1(row, self.first_column + start + shift)
        if start == end:
            return sheet_range(self.sheet, first)
        last = rowcol_to_a1(row, self.first_column + end + shift)
        return sheet_range(self.sheet, f"{first}:{last}")

    def writes_for(self, row: int, cells: dict[int, Any], shift: int = 0) -> list[RangeWrite]:
        """
        Positional writes for the owned columns present in `cells`.

        Contiguous owned columns are merged into one range; a column that
        is not owned splits the write so formula cells are left alone.
        """
        owned = [column for column in self.owned_columns if column in cells]
        writes = []
        run: list[int] = []
        for column in owned:
            if run and column != run[-1] + 1:
                writes.append(self._run_write(row, run, cells, shift))
                run = []
            run.append(column)
        if run:
            writes.append(self._run_write(row, run, cells, shift))
        return writes

    def _run_write(self, row: int, run: list[int], cells: dict[int, Any], shift: int) -> RangeWrite:
        return RangeWrite(
            range=self.cell_range(row, run[0], run[-1], shift),
            values=[[cells[column] for column in run]],
        )

    def blank_writes(self, row: int, shift: int = 0) -> list[RangeWrite]:
        """Writes that clear this ledger's value columns on one row."""
        return self.writes_for(row, {column: "" for column in self.value_columns}, shift)

    def full_row(self, cells: dict[int, Any]) -> list[Any]:
        """A complete row for values.append, blanks where nothing is owned."""
        return [cells.get(column, "") for column in range(self.width)]


def account_balance_layout(
    sheet: str = DEFAULT_BALANCE_SHEET,
    min_start_row: int = 45,
) -> LedgerLayout:
    """
    Month-end balances, read as B:H.

    B yy, C month, D yyyymm, E year, F "N월", G date (formula), H balance.
    Columns right of H are formulas. Soft delete blanks H only.
    """
    return LedgerLayout(
        kind=LedgerKind.ACCOUNT_BALANCE,
        sheet=sheet,
        columns="B:H",
        data_offset=1,
        min_start_row=min_start_row,
        owned_columns=(0, 1, 2, 3, 4, 6),
        value_columns=(6,),
        append_mode=AppendMode.AFTER_LAST_VALID,
        mirror_table="account_balances",
        mirror_conflict_key=("user_id", "year_month"),
    )


def dividend_layout(sheet: str = DEFAULT_DIVIDEND_SHEET) -> LedgerLayout:
    """
    Dividend receipts, read as A:I.

    A date, B year, C "MM월", D "DD일", E ticker, F name, G KRW amount,
    H USD amount, I KRW-converted total.
    """
    return LedgerLayout(
        kind=LedgerKind.DIVIDEND,
        sheet=sheet,
        columns="A:I",
        data_offset=1,
        owned_columns=tuple(range(9)),
        value_columns=tuple(range(9)),
        append_mode=AppendMode.SHEET_APPEND,
        mirror_table="dividends",
        mirror_conflict_key=("user_id", "dividend_date", "ticker", "amount_krw", "amount_usd"),
    )


def deposit_layout(sheet: str = DEFAULT_DEPOSIT_SHEET) -> LedgerLayout:
    """
    Deposit/withdrawal log, read as A:H.

    A date, B year, C "MM월", D "DD일", E 입금/출금, F account,
    G signed amount, H memo. Several identical rows are legitimate.
    """
    return LedgerLayout(
        kind=LedgerKind.DEPOSIT,
        sheet=sheet,
        columns="A:H",
        data_offset=1,
        owned_columns=tuple(range(8)),
        value_columns=tuple(range(8)),
        append_mode=AppendMode.SHEET_APPEND,
        allows_multiple_per_key=True,
        mirror_table="deposits",
        mirror_conflict_key=("id",),
    )


def holding_layout(sheet: str = DEFAULT_HOLDING_SHEET) -> LedgerLayout:
    """
    Portfolio positions, read as C:H with data from sheet row 9.

    C country (formula), D ticker, E name, F quantity, G average price
    in KRW, H average price in USD. Rows are pre-allocated with formulas
    further right, so new tickers go into the first row with a blank D.
    """
    return LedgerLayout(
        kind=LedgerKind.HOLDING,
        sheet=sheet,
        columns="C:H",
        data_offset=8,
        min_start_row=9,
        owned_columns=(1, 2, 3, 4, 5),
        value_columns=(1, 2, 3, 4, 5),
        append_mode=AppendMode.FIRST_EMPTY_SLOT,
        mirror_table="holdings",
        mirror_conflict_key=("user_id", "ticker"),
    )
