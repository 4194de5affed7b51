"""Frozen dataclasses for the CRM Ingestor domain model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum


class Platform(StrEnum):
    """Marketplaces a sale can come from. Values are matched case-sensitively."""

    VINTED = "Vinted"
    VESTIAIRE = "Vestiaire"
    EBAY = "eBay"
    LEBONCOIN = "Leboncoin"
    WHATNOT = "Whatnot"

    @classmethod
    def match(cls, name: object) -> Platform | None:
        """Return the platform whose value equals ``name`` exactly, else None."""
        if not isinstance(name, str):
            return None
        try:
            return cls(name)
        except ValueError:
            return None


class SourceCategory(StrEnum):
    """Ingestion categories, one mailbox label each. Declaration order is run order."""

    STOCK = "stock"
    SALE_VINTED = "sale_vinted"
    SALE_VESTIAIRE = "sale_vestiaire"
    SALE_EBAY = "sale_ebay"
    SALE_LEBONCOIN = "sale_leboncoin"
    SALE_WHATNOT = "sale_whatnot"
    PURCHASE = "purchase"
    FAVORITE_OFFER = "favorite_offer"

    @property
    def platform(self) -> Platform | None:
        return _SALE_PLATFORMS.get(self)


_SALE_PLATFORMS = {
    SourceCategory.SALE_VINTED: Platform.VINTED,
    SourceCategory.SALE_VESTIAIRE: Platform.VESTIAIRE,
    SourceCategory.SALE_EBAY: Platform.EBAY,
    SourceCategory.SALE_LEBONCOIN: Platform.LEBONCOIN,
    SourceCategory.SALE_WHATNOT: Platform.WHATNOT,
}


class CounterKind(StrEnum):
    FAVORITE = "favorite"
    OFFER = "offer"


class WriteOutcome(StrEnum):
    """What a record writer did with a record."""

    INSERTED = "inserted"
    UPDATED = "updated"
    APPENDED = "appended"
    BUMPED = "bumped"
    DROPPED = "dropped"


@dataclass(frozen=True)
class Thread:
    """Lightweight thread reference from the Gmail threads list API."""

    thread_id: str
    snippet: str = ""


@dataclass(frozen=True)
class Message:
    """A decoded mailbox message. ``message_id`` is the unit of idempotence."""

    message_id: str
    thread_id: str
    sender: str = ""
    subject: str = ""
    date: datetime | None = None
    plain_text: str | None = None
    html: str | None = None
    label_ids: tuple[str, ...] = field(default_factory=tuple)
    snippet: str = ""


@dataclass(frozen=True)
class Commission:
    percentage_points: Decimal = Decimal("0")
    flat_fee: Decimal = Decimal("0")


@dataclass(frozen=True)
class StockItem:
    """Partial or complete stock row keyed by SKU. None means "leave the cell alone"."""

    sku: str
    title: str | None = None
    photos: tuple[str, ...] | None = None
    category: str | None = None
    brand: str | None = None
    size: str | None = None
    condition: str | None = None
    platform: Platform | None = None
    purchase_price: Decimal | None = None

    def present_fields(self) -> dict[str, object]:
        """Fields carried by this record, excluding the SKU."""
        values = {
            "title": self.title,
            "photos": ", ".join(self.photos) if self.photos is not None else None,
            "category": self.category,
            "brand": self.brand,
            "size": self.size,
            "condition": self.condition,
            "platform": str(self.platform) if self.platform is not None else None,
            "purchase price": self.purchase_price,
        }
        return {name: value for name, value in values.items() if value is not None}


@dataclass(frozen=True)
class SaleEvent:
    platform: Platform
    title: str
    price: Decimal
    sku: str | None = None
    sold_at: date | None = None
    message_id: str = ""


@dataclass(frozen=True)
class PurchaseEvent:
    date: date
    supplier: str
    price: Decimal
    brand: str | None = None
    size: str | None = None
    message_id: str = ""


@dataclass(frozen=True)
class FavoriteOrOfferEvent:
    sku: str
    kind: CounterKind


ParsedRecord = StockItem | SaleEvent | PurchaseEvent | FavoriteOrOfferEvent


@dataclass
class IngestProgress:
    """Mutable progress tracker for pipeline status reporting."""

    threads_seen: int = 0
    messages_written: int = 0
    messages_skipped: int = 0
    messages_unparseable: int = 0
    messages_failed: int = 0
    categories_aborted: int = 0
    current_stage: str = "idle"

