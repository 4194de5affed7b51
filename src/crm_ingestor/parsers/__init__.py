"""Message parsers, one per source category."""

from __future__ import annotations

from crm_ingestor.core.models import SourceCategory
from crm_ingestor.parsers.base import MessageParser
from crm_ingestor.parsers.favorites import FavoriteOfferParser
from crm_ingestor.parsers.purchases import PurchaseParser
from crm_ingestor.parsers.sales import SaleParser
from crm_ingestor.parsers.stock import StockJsonParser


def parser_for(category: SourceCategory) -> MessageParser:
    """Return the parser handling messages filed under ``category``."""
    if category is SourceCategory.STOCK:
        return StockJsonParser()
    if category is SourceCategory.PURCHASE:
        return PurchaseParser()
    if category is SourceCategory.FAVORITE_OFFER:
        return FavoriteOfferParser()
    platform = category.platform
    if platform is None:
        raise ValueError(f"No parser for category {category}")
    return SaleParser(platform)


__all__ = [
    "FavoriteOfferParser",
    "MessageParser",
    "PurchaseParser",
    "SaleParser",
    "StockJsonParser",
    "parser_for",
]
