"""Google Sheets tabular store addressed by sheet name and 1-based offsets."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import date
from decimal import Decimal
from typing import Any

from googleapiclient.discovery import Resource

from crm_ingestor.core.backoff import BackoffPolicy
from crm_ingestor.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def column_letter(index: int) -> str:
    """Convert a 1-based column index to A1 notation (1 -> A, 27 -> AA)."""
    if index < 1:
        raise ValueError(f"Column index must be >= 1, got {index}")
    letters = ""
    while index:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


def _quote(sheet: str) -> str:
    return "'" + sheet.replace("'", "''") + "'"


def _serialize_cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


def _serialize_rows(rows: Sequence[Sequence[Any]]) -> list[list[Any]]:
    return [[_serialize_cell(cell) for cell in row] for row in rows]


class SheetsTabularStore:
    """Reads and writes spreadsheet rows and cells through the Sheets v4 API."""

    def __init__(
        self,
        service: Resource,
        spreadsheet_id: str,
        *,
        backoff: BackoffPolicy | None = None,
    ) -> None:
        if not spreadsheet_id:
            raise ConfigurationError("No spreadsheet configured (CRM_SPREADSHEET_ID)")
        self._service = service
        self._spreadsheet_id = spreadsheet_id
        self._backoff = backoff or BackoffPolicy()
        self._sheet_names: list[str] | None = None

    def _execute(self, request: Any, context: str) -> Any:
        return self._backoff.run(request.execute, context)

    def sheet_names(self, *, refresh: bool = False) -> list[str]:
        if self._sheet_names is None or refresh:
            request = self._service.spreadsheets().get(
                spreadsheetId=self._spreadsheet_id,
                fields="sheets.properties.title",
            )
            response = self._execute(request, "list sheets")
            self._sheet_names = [
                sheet["properties"]["title"] for sheet in response.get("sheets", [])
            ]
        return self._sheet_names

    def _require_sheet(self, sheet: str) -> None:
        if sheet in self.sheet_names() or sheet in self.sheet_names(refresh=True):
            return
        raise ConfigurationError(f"Sheet {sheet!r} not found in spreadsheet")

    def get_all_rows(self, sheet: str) -> list[list[Any]]:
        self._require_sheet(sheet)
        request = self._service.spreadsheets().values().get(
            spreadsheetId=self._spreadsheet_id,
            range=_quote(sheet),
            valueRenderOption="UNFORMATTED_VALUE",
        )
        response = self._execute(request, f"read {sheet}")
        return response.get("values", [])

    def set_rows(
        self,
        sheet: str,
        start_row: int,
        rows: Sequence[Sequence[Any]],
        start_column: int = 1,
    ) -> None:
        self._require_sheet(sheet)
        cell = f"{column_letter(start_column)}{start_row}"
        request = self._service.spreadsheets().values().update(
            spreadsheetId=self._spreadsheet_id,
            range=f"{_quote(sheet)}!{cell}",
            valueInputOption="USER_ENTERED",
            body={"values": _serialize_rows(rows)},
        )
        self._execute(request, f"write {sheet}!{cell}")
        logger.debug("Wrote %d rows to %s!%s", len(rows), sheet, cell)

    def set_cells(self, sheet: str, row_number: int, cells: Mapping[int, Any]) -> None:
        """Write scattered cells of one row (1-based column -> value) in one request.

        Cells not named are not sent, so their formulas and formats stay as they are.
        """
        if not cells:
            return
        self._require_sheet(sheet)
        data = [
            {
                "range": f"{_quote(sheet)}!{column_letter(column)}{row_number}",
                "values": [[_serialize_cell(value)]],
            }
            for column, value in sorted(cells.items())
        ]
        request = self._service.spreadsheets().values().batchUpdate(
            spreadsheetId=self._spreadsheet_id,
            body={"valueInputOption": "USER_ENTERED", "data": data},
        )
        self._execute(request, f"write {sheet} row {row_number}")
        logger.debug("Wrote %d cells to %s row %d", len(data), sheet, row_number)

    def append_rows(self, sheet: str, rows: Sequence[Sequence[Any]]) -> None:
        self._require_sheet(sheet)
        request = self._service.spreadsheets().values().append(
            spreadsheetId=self._spreadsheet_id,
            range=f"{_quote(sheet)}!A1",
            valueInputOption="USER_ENTERED",
            insertDataOption="INSERT_ROWS",
            body={"values": _serialize_rows(rows)},
        )
        self._execute(request, f"append {sheet}")
        logger.debug("Appended %d rows to %s", len(rows), sheet)
