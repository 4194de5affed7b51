"""Apply parsed records to the spreadsheet: stock upsert, sale/purchase append, counter bump."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import date
from decimal import Decimal
from typing import Any

from crm_ingestor.config.service import ConfigService
from crm_ingestor.core.exceptions import ConfigurationError, WriteError
from crm_ingestor.core.interfaces import TabularStore
from crm_ingestor.core.margin import compute_fee, gross_margin, to_decimal
from crm_ingestor.core.models import (
    CounterKind,
    FavoriteOrOfferEvent,
    ParsedRecord,
    PurchaseEvent,
    SaleEvent,
    StockItem,
    WriteOutcome,
)

logger = logging.getLogger(__name__)

STOCK_HEADERS = (
    "SKU", "Title", "Photos", "Category", "Brand", "Size", "Condition",
    "Platform", "Purchase Price", "Favorites", "Offers", "Created",
)
SALES_HEADERS = (
    "Date", "Platform", "Title", "SKU", "Price", "Commission %", "Flat Fee",
    "Fees", "Purchase Price", "Margin", "Message ID",
)
PURCHASES_HEADERS = ("Date", "Supplier", "Brand", "Size", "Price", "Message ID")
LOGS_HEADERS = ("Timestamp", "Level", "Source", "Message", "Detail")

_COUNTER_COLUMNS = {CounterKind.FAVORITE: "favorites", CounterKind.OFFER: "offers"}


class SheetLayout:
    """Column positions resolved from a sheet's header row, case-insensitively."""

    def __init__(self, sheet: str, header: Sequence[Any]) -> None:
        self.sheet = sheet
        self.names = [str(cell).strip().lower() for cell in header]
        self._positions = {name: i for i, name in enumerate(self.names) if name}

    @property
    def width(self) -> int:
        return len(self.names)

    def index(self, name: str) -> int | None:
        """0-based position of a column, or None if the sheet lacks it."""
        return self._positions.get(name.lower())

    def require(self, name: str) -> int:
        position = self.index(name)
        if position is None:
            raise ConfigurationError(f"Sheet {self.sheet!r} has no {name!r} column")
        return position

    def build_row(self, values: dict[str, Any]) -> list[Any]:
        return [values.get(name, "") for name in self.names]


def _pad(row: Sequence[Any], width: int) -> list[Any]:
    return list(row) + [""] * (width - len(row))


def _blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


class RecordWriter:
    """Writes each record with one bounded read and one bounded write.

    Header rows are read once per writer and cached, so appends need no read.
    A writer is meant to live for one ingestion run.
    """

    def __init__(
        self,
        tabular: TabularStore,
        config: ConfigService,
        *,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._tabular = tabular
        self._config = config
        self._today = today
        self._layouts: dict[str, SheetLayout] = {}

    def write(self, record: ParsedRecord) -> WriteOutcome:
        if isinstance(record, StockItem):
            return self.upsert_stock(record)
        if isinstance(record, SaleEvent):
            return self.append_sale(record)
        if isinstance(record, PurchaseEvent):
            return self.append_purchase(record)
        if isinstance(record, FavoriteOrOfferEvent):
            return self.bump_counter(record)
        raise WriteError(f"No writer for {type(record).__name__}")

    # ------------------------------------------------------------------
    # Layout helpers
    # ------------------------------------------------------------------

    def _layout_from_rows(self, sheet: str, rows: list[list[Any]]) -> SheetLayout:
        if not rows or not any(str(cell).strip() for cell in rows[0]):
            raise ConfigurationError(f"Sheet {sheet!r} has no header row")
        layout = SheetLayout(sheet, rows[0])
        self._layouts[sheet] = layout
        return layout

    def _layout(self, sheet: str) -> SheetLayout:
        if sheet not in self._layouts:
            self._layout_from_rows(sheet, self._tabular.get_all_rows(sheet))
        return self._layouts[sheet]

    @staticmethod
    def _find_sku_row(rows: list[list[Any]], sku_column: int, sku: str) -> int | None:
        """0-based index into ``rows`` of the first row whose SKU matches, ignoring case."""
        target = sku.strip().lower()
        for i, row in enumerate(rows[1:], start=1):
            if sku_column < len(row) and str(row[sku_column]).strip().lower() == target:
                return i
        return None

    def _write_row(
        self, sheet: str, row_number: int, before: list[Any], after: list[Any]
    ) -> None:
        """Persist the changed cells of a row (1-based ``row_number``) in one call.

        Untouched cells are never sent back, so formulas, text that looks
        numeric and date formats survive the round trip.
        """
        changed = {
            position + 1: new
            for position, (old, new) in enumerate(zip(before, after))
            if old != new
        }
        if changed:
            self._tabular.set_cells(sheet, row_number, changed)

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------

    def upsert_stock(self, item: StockItem) -> WriteOutcome:
        """Merge ``item`` into the stock row with the same SKU, or append a new row."""
        sheet = self._config.sheet_name_for("stock")
        rows = self._tabular.get_all_rows(sheet)
        layout = self._layout_from_rows(sheet, rows)
        sku_column = layout.require("sku")
        fields = item.present_fields()

        found = self._find_sku_row(rows, sku_column, item.sku)
        if found is None:
            values: dict[str, Any] = {"sku": item.sku, "favorites": 0, "offers": 0, **fields}
            values["created"] = self._today()
            self._tabular.append_rows(sheet, [layout.build_row(values)])
            logger.debug("Inserted stock row for %s", item.sku)
            return WriteOutcome.INSERTED

        before = _pad(rows[found], layout.width)
        after = list(before)
        for name, value in fields.items():
            position = layout.index(name)
            if position is not None:
                after[position] = value
        created = layout.index("created")
        if created is not None and _blank(after[created]):
            after[created] = self._today()

        self._write_row(sheet, found + 1, before, after)
        logger.debug("Updated stock row %d for %s", found + 1, item.sku)
        return WriteOutcome.UPDATED

    def _purchase_price_for(self, sku: str) -> Decimal | None:
        sheet = self._config.sheet_name_for("stock")
        rows = self._tabular.get_all_rows(sheet)
        layout = self._layout_from_rows(sheet, rows)
        price_column = layout.index("purchase price")
        if price_column is None:
            return None
        found = self._find_sku_row(rows, layout.require("sku"), sku)
        if found is None or price_column >= len(rows[found]):
            return None
        cell = rows[found][price_column]
        return None if _blank(cell) else to_decimal(cell)

    def append_sale(self, sale: SaleEvent) -> WriteOutcome:
        """Append a sale row with its commission fee and, when the cost is known, margin."""
        sheet = self._config.sheet_name_for("sales")
        layout = self._layout(sheet)
        for name in ("platform", "title", "price"):
            layout.require(name)

        commission = self._config.commission_for(sale.platform)
        fee = compute_fee(sale.price, commission)
        purchase_price = self._purchase_price_for(sale.sku) if sale.sku else None

        values: dict[str, Any] = {
            "date": sale.sold_at or self._today(),
            "platform": str(sale.platform),
            "title": sale.title,
            "sku": sale.sku or "",
            "price": sale.price,
            "commission %": commission.percentage_points,
            "flat fee": commission.flat_fee,
            "fees": fee,
            "message id": sale.message_id,
        }
        if purchase_price is not None:
            values["purchase price"] = purchase_price
            values["margin"] = gross_margin(sale.price, purchase_price, fee)

        self._tabular.append_rows(sheet, [layout.build_row(values)])
        logger.debug(
            "Appended %s sale %r at %s (fee %s)", sale.platform, sale.title, sale.price, fee
        )
        return WriteOutcome.APPENDED

    def append_purchase(self, purchase: PurchaseEvent) -> WriteOutcome:
        sheet = self._config.sheet_name_for("purchases")
        layout = self._layout(sheet)
        layout.require("supplier")
        layout.require("price")

        values = {
            "date": purchase.date,
            "supplier": purchase.supplier,
            "brand": purchase.brand or "",
            "size": purchase.size or "",
            "price": purchase.price,
            "message id": purchase.message_id,
        }
        self._tabular.append_rows(sheet, [layout.build_row(values)])
        return WriteOutcome.APPENDED

    def bump_counter(self, event: FavoriteOrOfferEvent) -> WriteOutcome:
        """Add 1 to the favorite or offer counter of a stock row; unknown SKUs are dropped."""
        sheet = self._config.sheet_name_for("stock")
        rows = self._tabular.get_all_rows(sheet)
        layout = self._layout_from_rows(sheet, rows)
        column = layout.require(_COUNTER_COLUMNS[event.kind])

        found = self._find_sku_row(rows, layout.require("sku"), event.sku)
        if found is None:
            logger.info("No stock row for %s, dropping %s", event.sku, event.kind)
            return WriteOutcome.DROPPED

        before = _pad(rows[found], layout.width)
        after = list(before)
        after[column] = int(to_decimal(before[column])) + 1
        self._write_row(sheet, found + 1, before, after)
        return WriteOutcome.BUMPED


class CellwiseRecordWriter(RecordWriter):
    """Compatibility variant: updates rows one changed cell per call."""

    def _write_row(
        self, sheet: str, row_number: int, before: list[Any], after: list[Any]
    ) -> None:
        for position, (old, new) in enumerate(zip(before, after)):
            if old != new:
                self._tabular.set_rows(sheet, row_number, [[new]], start_column=position + 1)
