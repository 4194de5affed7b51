"""Stock intake emails carrying a JSON object per item."""

from __future__ import annotations

import json
import logging
from typing import Any

from crm_ingestor.core.margin import parse_price
from crm_ingestor.core.models import Message, Platform, StockItem
from crm_ingestor.parsers.base import body_text

logger = logging.getLogger(__name__)

_TEXT_FIELDS = ("title", "category", "brand", "size", "condition")


def _extract_json_object(text: str) -> dict[str, Any] | None:
    """Decode the outermost ``{...}`` span of ``text``, tolerating prose around it."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _photos(value: Any) -> tuple[str, ...] | None:
    """Photo URLs from a list or a comma string; None when there are none."""
    if isinstance(value, list):
        photos = tuple(str(p).strip() for p in value if str(p).strip())
    elif isinstance(value, str):
        photos = tuple(p.strip() for p in value.split(",") if p.strip())
    else:
        return None
    return photos or None


class StockJsonParser:
    """Turns ``{"sku": ..., "title": ..., ...}`` bodies into StockItem records.

    Keys are matched case-insensitively. Only ``sku`` is required; absent or
    empty fields stay None so the writer leaves existing cells alone. A
    ``platform`` that is not exactly one of the known marketplaces is ignored.
    """

    def parse(self, message: Message) -> StockItem | None:
        data = _extract_json_object(body_text(message))
        if data is None:
            logger.debug("No JSON object in %s", message.message_id)
            return None

        data = {str(key).strip().lower(): value for key, value in data.items()}
        sku = _optional_text(data.get("sku"))
        if sku is None:
            return None

        platform = Platform.match(data.get("platform"))
        if data.get("platform") is not None and platform is None:
            logger.info("Unknown platform %r for %s, ignoring field", data.get("platform"), sku)

        purchase_price = data.get("purchase_price")
        return StockItem(
            sku=sku,
            photos=_photos(data.get("photos")),
            platform=platform,
            purchase_price=None if purchase_price in (None, "") else parse_price(purchase_price),
            **{name: _optional_text(data.get(name)) for name in _TEXT_FIELDS},
        )
