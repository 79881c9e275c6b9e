"""
Google Sheets Ledger Store

DESIGN DECISION: The user's spreadsheet is the system of record. It
already carries formulas, charts and formatting the user maintains by
hand, so this store never restructures it: it only reads ranges, appends
rows and writes positional blocks. Row deletion is never issued because
formula columns elsewhere in the sheet depend on row positions.

TRADEOFFS:
- No transactions (the ledger mutator orders writes so a failure never
  leaves two copies of a key)
- Reads use UNFORMATTED_VALUE so numbers come back as numbers where the
  sheet stores them as numbers; text cells still need CellParser
"""

from typing import Optional

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from sheet_ledger.config import get_settings
from sheet_ledger.config.settings import GoogleSheetsSettings
from sheet_ledger.services.storage.interface import (
    ConnectionError,
    LedgerStoreInterface,
    RangeWrite,
    Row,
    StorageError,
)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet


class GoogleSheetsLedgerStore(LedgerStoreInterface):
    """
    Google Sheets implementation of the ledger store.

    Writes use USER_ENTERED so strings such as "₩1,000" or "2025-08-01"
    are interpreted by Sheets the same way as if typed by the user.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def read_range(self, range_spec: str) -> list[Row]:
        """Read a block of cells with unformatted values."""
        spreadsheet = self._client.get_spreadsheet()
        try:
            response = spreadsheet.values_get(
                range_spec,
                params={"valueRenderOption": "UNFORMATTED_VALUE"},
            )
        except gspread.exceptions.APIError as e:
            raise StorageError(f"Failed to read {range_spec}: {e}")
        return response.get("values", [])

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_rows(self, range_spec: str, rows: list[Row]) -> None:
        """Append rows after the table found in the range."""
        spreadsheet = self._client.get_spreadsheet()
        try:
            spreadsheet.values_append(
                range_spec,
                params={
                    "valueInputOption": "USER_ENTERED",
                    "insertDataOption": "OVERWRITE",
                },
                body={"values": rows},
            )
        except gspread.exceptions.APIError as e:
            raise StorageError(f"Failed to append to {range_spec}: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def write_ranges(self, writes: list[RangeWrite]) -> None:
        """Write several blocks in a single batchUpdate call."""
        if not writes:
            return
        spreadsheet = self._client.get_spreadsheet()
        try:
            spreadsheet.values_batch_update(
                body={
                    "valueInputOption": "USER_ENTERED",
                    "data": [
                        {"range": write.range, "values": write.values}
                        for write in writes
                    ],
                }
            )
        except gspread.exceptions.APIError as e:
            ranges = ", ".join(write.range for write in writes)
            raise StorageError(f"Failed to write {ranges}: {e}")
