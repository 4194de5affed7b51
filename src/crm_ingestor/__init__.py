"""CRM Ingestor - Turn labeled marketplace emails into spreadsheet stock, sales and purchases."""

from crm_ingestor.core.models import (
    CounterKind,
    FavoriteOrOfferEvent,
    IngestProgress,
    Message,
    Platform,
    PurchaseEvent,
    SaleEvent,
    SourceCategory,
    StockItem,
    Thread,
)
from crm_ingestor.pipeline.ingestor import CrmIngestor

__all__ = [
    "CounterKind",
    "CrmIngestor",
    "FavoriteOrOfferEvent",
    "IngestProgress",
    "Message",
    "Platform",
    "PurchaseEvent",
    "SaleEvent",
    "SourceCategory",
    "StockItem",
    "Thread",
]
