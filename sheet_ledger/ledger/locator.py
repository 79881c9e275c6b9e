"""
Ledger Locator

Pure scans over a fetched row block. Indices returned here are indices
into the fetched block; LedgerLayout.sheet_row() turns them into sheet
rows. Rows before the layout's data offset (headers, summary blocks) are
never considered.

Every scan swallows RowSkipped for the individual row and continues.
"""

from typing import Generic, Optional

from sheet_ledger.audit.logger import get_logger
from sheet_ledger.ledger.codecs import K, R, RowCodec
from sheet_ledger.parsing.cells import RowSkipped

logger = get_logger(__name__)

NOT_FOUND = -1


class LedgerLocator(Generic[R, K]):
    """Find rows of one ledger by natural key or by position rules."""

    def __init__(self, codec: RowCodec[R, K]):
        self.codec = codec
        self.layout = codec.layout

    def _data_indices(self, rows: list[list]) -> range:
        return range(self.layout.data_offset, len(rows))

    def decode_at(self, rows: list[list], index: int) -> Optional[R]:
        """Decoded record at `index`, or None when the row is unusable."""
        try:
            return self.codec.decode(rows[index])
        except RowSkipped as e:
            logger.debug(
                "row_skipped",
                ledger=self.layout.kind.value,
                row=self.layout.sheet_row(index),
                reason=e.reason,
            )
            return None

    def find_by_key(self, rows: list[list], key: K) -> int:
        """First data row whose decoded record matches `key`, else NOT_FOUND."""
        for index in self._data_indices(rows):
            record = self.decode_at(rows, index)
            if record is not None and self.codec.key_matches(record, key):
                return index
        return NOT_FOUND

    def find_all_by_key(self, rows: list[list], key: K) -> list[int]:
        """Every matching data row, in sheet order."""
        matches = []
        for index in self._data_indices(rows):
            record = self.decode_at(rows, index)
            if record is not None and self.codec.key_matches(record, key):
                matches.append(index)
        return matches

    def find_last_valid_row(self, rows: list[list]) -> int:
        """Scan backward for the last well-formed row, else NOT_FOUND."""
        for index in range(len(rows) - 1, self.layout.data_offset - 1, -1):
            if self.codec.is_valid_anchor(rows[index]):
                return index
        return NOT_FOUND

    def next_append_row(self, rows: list[list]) -> int:
        """
        1-based sheet row a new record should be written to.

        The row after the last valid one, or the layout's minimum start
        row when the ledger holds no valid row yet.
        """
        last = self.find_last_valid_row(rows)
        if last == NOT_FOUND:
            return self.layout.min_start_row or self.layout.sheet_row(self.layout.data_offset)
        return self.layout.sheet_row(last) + 1

    def find_first_empty_slot(self, rows: list[list], from_offset: Optional[int] = None) -> int:
        """
        First row index at or after `from_offset` whose primary key cell is
        blank. When every fetched row is taken, the index just past the
        fetched block.
        """
        start = self.layout.data_offset if from_offset is None else from_offset
        for index in range(start, len(rows)):
            if self.codec.is_empty_slot(rows[index]):
                return index
        return max(len(rows), start)

    def decode_all(self, rows: list[list]) -> list[tuple[int, R]]:
        """(index, record) for every usable data row."""
        decoded = []
        for index in self._data_indices(rows):
            record = self.decode_at(rows, index)
            if record is not None:
                decoded.append((index, record))
        return decoded
