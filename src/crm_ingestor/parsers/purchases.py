"""Purchase confirmations written as ``Key: value`` lines."""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import date

from crm_ingestor.core.margin import parse_price
from crm_ingestor.core.models import Message, PurchaseEvent
from crm_ingestor.parsers.base import body_text, extract_fields, first_field, sender_name

_DATE_KEYS = ("date", "date d'achat", "date de commande", "purchase date", "order date")
_SUPPLIER_KEYS = ("fournisseur", "supplier", "vendeur", "seller", "boutique", "shop")
_PRICE_KEYS = ("prix", "price", "montant", "total", "amount", "prix d'achat")
_BRAND_KEYS = ("marque", "brand")
_SIZE_KEYS = ("taille", "size")

_DMY = re.compile(r"(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{4})")
_ISO = re.compile(r"(\d{4})-(\d{2})-(\d{2})")


def _parse_date(text: str | None) -> date | None:
    if not text:
        return None
    try:
        if match := _ISO.search(text):
            year, month, day = (int(g) for g in match.groups())
            return date(year, month, day)
        if match := _DMY.search(text):
            day, month, year = (int(g) for g in match.groups())
            return date(year, month, day)
    except ValueError:
        return None
    return None


class PurchaseParser:
    """Parses stock purchase emails into PurchaseEvent records.

    A price line is required. The supplier defaults to the sender's display
    name and the date to the message date.
    """

    def __init__(self, today: Callable[[], date] = date.today) -> None:
        self._today = today

    def parse(self, message: Message) -> PurchaseEvent | None:
        fields = extract_fields(body_text(message))
        price_text = first_field(fields, *_PRICE_KEYS)
        if price_text is None:
            return None

        purchased_on = _parse_date(first_field(fields, *_DATE_KEYS))
        if purchased_on is None:
            purchased_on = message.date.date() if message.date else self._today()

        supplier = first_field(fields, *_SUPPLIER_KEYS) or sender_name(message.sender)

        return PurchaseEvent(
            date=purchased_on,
            supplier=supplier.strip(),
            price=parse_price(price_text),
            brand=first_field(fields, *_BRAND_KEYS),
            size=first_field(fields, *_SIZE_KEYS),
            message_id=message.message_id,
        )
