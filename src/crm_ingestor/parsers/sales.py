"""Sale notifications from the five supported marketplaces."""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal

from crm_ingestor.core.margin import parse_price
from crm_ingestor.core.models import Message, Platform, SaleEvent
from crm_ingestor.parsers.base import body_text, find_sku

_I = re.IGNORECASE


@dataclass(frozen=True)
class SaleFormat:
    """How one marketplace words its sale emails.

    ``markers`` are lowercase fragments one of which must appear in the
    subject or body. Title patterns are tried against the subject, then the
    body; price patterns against the body, then the subject.
    """

    platform: Platform
    markers: tuple[str, ...]
    title_patterns: tuple[re.Pattern[str], ...]
    price_patterns: tuple[re.Pattern[str], ...]


SALE_FORMATS: dict[Platform, SaleFormat] = {
    Platform.VINTED: SaleFormat(
        platform=Platform.VINTED,
        markers=("vendu", "sold", "a été acheté"),
        title_patterns=(
            re.compile(r"«\s*(.+?)\s*»"),
            re.compile(r"^\s*(?:Article|Item)\s*:\s*(.+)$", _I | re.MULTILINE),
        ),
        price_patterns=(
            re.compile(r"(?:Montant|Total|Prix|Price)(?:\s+total)?\s*:\s*([^\n]+)", _I),
        ),
    ),
    Platform.VESTIAIRE: SaleFormat(
        platform=Platform.VESTIAIRE,
        markers=("vendu", "sold", "confirm"),
        title_patterns=(
            re.compile(r"^\s*(?:Article|Item|Produit|Product)\s*:\s*(.+)$", _I | re.MULTILINE),
        ),
        price_patterns=(
            re.compile(r"(?:Prix de vente|Selling price|Sale price|Montant)\s*:\s*([^\n]+)", _I),
        ),
    ),
    Platform.EBAY: SaleFormat(
        platform=Platform.EBAY,
        markers=("vendu", "sold", "sale"),
        title_patterns=(
            re.compile(r"(?:vous avez vendu|you made the sale for|you sold)\s*:?\s*(.+)", _I),
            re.compile(r"^\s*(?:Objet|Item)\s*:\s*(.+)$", _I | re.MULTILINE),
        ),
        price_patterns=(
            re.compile(r"(?:Vendu pour|Sold for|Prix de vente|Sale price)\s*:?\s*([^\n]+)", _I),
        ),
    ),
    Platform.LEBONCOIN: SaleFormat(
        platform=Platform.LEBONCOIN,
        markers=("vendu", "vente", "paiement"),
        title_patterns=(
            re.compile(r"annonce\s*«\s*(.+?)\s*»", _I),
            re.compile(r"^\s*(?:Annonce|Article)\s*:\s*(.+)$", _I | re.MULTILINE),
        ),
        price_patterns=(
            re.compile(r"(?:Montant|Prix|Total)\s*:\s*([^\n]+)", _I),
        ),
    ),
    Platform.WHATNOT: SaleFormat(
        platform=Platform.WHATNOT,
        markers=("sold", "order", "vendu"),
        title_patterns=(
            re.compile(r"^\s*(?:Item|Product|Article)\s*:\s*(.+)$", _I | re.MULTILINE),
            re.compile(r"you sold\s+(.+?)(?:\s+for\b|$)", _I),
        ),
        price_patterns=(
            re.compile(r"(?:Sale price|Sold for|Total|Price)\s*:?\s*([^\n]+)", _I),
        ),
    ),
}


def _first_match(patterns: tuple[re.Pattern[str], ...], *texts: str) -> str | None:
    for text in texts:
        for pattern in patterns:
            match = pattern.search(text)
            if match and match.group(1).strip():
                return match.group(1).strip()
    return None


class SaleParser:
    """Parses sale notifications for one marketplace into SaleEvent records.

    The price is lenient: a missing or unreadable amount becomes 0 so the sale
    is still recorded.
    """

    def __init__(self, platform: Platform) -> None:
        self._format = SALE_FORMATS[platform]

    @property
    def platform(self) -> Platform:
        return self._format.platform

    def parse(self, message: Message) -> SaleEvent | None:
        subject = message.subject or ""
        body = body_text(message)
        haystack = f"{subject}\n{body}".lower()
        if not any(marker in haystack for marker in self._format.markers):
            return None

        title = _first_match(self._format.title_patterns, subject, body)
        if not title:
            return None
        title = title.strip(" \"'«»")

        price_text = _first_match(self._format.price_patterns, body, subject)
        price = parse_price(price_text) if price_text else Decimal("0")

        return SaleEvent(
            platform=self._format.platform,
            title=title,
            price=price,
            sku=find_sku(body, subject),
            sold_at=message.date.date() if message.date else None,
            message_id=message.message_id,
        )
