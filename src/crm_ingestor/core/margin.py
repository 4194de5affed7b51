"""Commission, margin and sales KPI arithmetic on Decimal amounts."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from crm_ingestor.core.models import Commission

CENT = Decimal("0.01")

_NUMBER = re.compile(r"-?\d(?:[\d., \u00a0\u202f']*\d)?")
_GROUPING = re.compile(r"[ \u00a0\u202f']")


def parse_price(text: object) -> Decimal:
    """Parse the first amount in ``text``, with either a comma or a dot as decimal separator.

    Currency symbols, spaces and thousands separators are dropped. Text with
    no readable number yields 0 rather than an error, so a bad price never
    blocks the rest of a record.
    """
    match = _NUMBER.search(str(text))
    if match is None:
        return Decimal("0")
    cleaned = _GROUPING.sub("", match.group(0))
    if "," in cleaned and "." in cleaned:
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif cleaned.count(",") + cleaned.count(".") == 1:
        # A lone separator followed by exactly three digits groups thousands.
        whole, _, fraction = cleaned.replace(",", ".").partition(".")
        cleaned = whole + fraction if len(fraction) == 3 else f"{whole}.{fraction}"
    elif cleaned.count(",") > 1 or cleaned.count(".") > 1:
        cleaned = cleaned.replace(",", "").replace(".", "")
    try:
        return Decimal(cleaned) if cleaned else Decimal("0")
    except InvalidOperation:
        return Decimal("0")


def to_decimal(value: object) -> Decimal:
    """Coerce a cell value to Decimal; blanks and garbage become 0."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        return Decimal("0")
    if isinstance(value, int | float):
        return Decimal(str(value))
    return parse_price(value)


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_fee(price: Decimal, commission: Commission) -> Decimal:
    """``price * pct / 100 + flat_fee``, rounded half-up to cents."""
    return round_money(price * commission.percentage_points / 100 + commission.flat_fee)


def gross_margin(price: Decimal, purchase_price: Decimal, fee: Decimal) -> Decimal:
    return round_money(price - purchase_price - fee)


@dataclass
class SalesSummary:
    """Aggregated sales KPIs as shown on the dashboard."""

    sales_count: int = 0
    revenue: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    margin: Decimal = Decimal("0")
    revenue_by_platform: dict[str, Decimal] = field(default_factory=dict)

    @property
    def average_basket(self) -> Decimal:
        if not self.sales_count:
            return Decimal("0")
        return round_money(self.revenue / self.sales_count)


def summarize_sales(rows: Sequence[Sequence[object]]) -> SalesSummary:
    """Compute KPIs from Sales sheet rows (header row first).

    Columns are located by header name (Platform, Price, Fees, Margin),
    case-insensitively; rows without a price are ignored.
    """
    summary = SalesSummary()
    if not rows:
        return summary

    header = [str(cell).strip().lower() for cell in rows[0]]

    def cell(row: Sequence[object], name: str) -> object:
        if name not in header:
            return None
        index = header.index(name)
        return row[index] if index < len(row) else None

    for row in _non_blank(rows[1:]):
        price = to_decimal(cell(row, "price"))
        if not price:
            continue
        platform = str(cell(row, "platform") or "").strip() or "Unknown"
        summary.sales_count += 1
        summary.revenue += price
        summary.fees += to_decimal(cell(row, "fees"))
        summary.margin += to_decimal(cell(row, "margin"))
        summary.revenue_by_platform[platform] = (
            summary.revenue_by_platform.get(platform, Decimal("0")) + price
        )

    summary.revenue = round_money(summary.revenue)
    summary.fees = round_money(summary.fees)
    summary.margin = round_money(summary.margin)
    return summary


def _non_blank(rows: Iterable[Sequence[object]]) -> Iterable[Sequence[object]]:
    return (row for row in rows if any(str(c).strip() for c in row))
