"""Favorite and offer notifications that bump per-item counters."""

from __future__ import annotations

from crm_ingestor.core.models import CounterKind, FavoriteOrOfferEvent, Message
from crm_ingestor.parsers.base import body_text, find_sku

_OFFER_MARKERS = ("offre", "offer", "proposition")
_FAVORITE_MARKERS = ("favori", "favorite", "favourite", "aimé", "liked", "coup de coeur")


class FavoriteOfferParser:
    """Classifies a notification as an offer or a favorite and finds its SKU.

    Offer wording wins over favorite wording since offer emails often mention
    that the buyer had favorited the item first.
    """

    def parse(self, message: Message) -> FavoriteOrOfferEvent | None:
        subject = message.subject or ""
        body = body_text(message)
        haystack = f"{subject}\n{body}".lower()

        if any(marker in haystack for marker in _OFFER_MARKERS):
            kind = CounterKind.OFFER
        elif any(marker in haystack for marker in _FAVORITE_MARKERS):
            kind = CounterKind.FAVORITE
        else:
            return None

        sku = find_sku(subject, body)
        if sku is None:
            return None
        return FavoriteOrOfferEvent(sku=sku, kind=kind)
