"""Shared helpers for marketplace notification parsers."""

from __future__ import annotations

import html as html_lib
import logging
import re
from typing import Protocol

import trafilatura

from crm_ingestor.core.models import Message, ParsedRecord

logger = logging.getLogger(__name__)

_SKU_PATTERNS = (
    re.compile(r"\bSKU\s*[:#]\s*([A-Za-z0-9][\w\-]*)", re.IGNORECASE),
    re.compile(r"\bR[ée]f(?:[ée]rence)?\s*[:#]\s*([A-Za-z0-9][\w\-]*)", re.IGNORECASE),
    re.compile(r"\[([A-Za-z0-9][\w\-]{2,})\]"),
)
_FIELD_LINE = re.compile(r"^\s*([^:\n]{1,40}?)\s*:\s*(.+?)\s*$", re.MULTILINE)
_BLOCK_TAGS = re.compile(r"<\s*(?:br|/p|/div|/tr|/li|/h\d)\b[^>]*>", re.IGNORECASE)
_ANY_TAG = re.compile(r"<[^>]+>")


class MessageParser(Protocol):
    """Maps a message to a record, or None when it is not this category's payload.

    Malformed input returns None. Exceptions are reserved for internal faults.
    """

    def parse(self, message: Message) -> ParsedRecord | None: ...


def strip_tags(markup: str) -> str:
    text = _BLOCK_TAGS.sub("\n", markup)
    return html_lib.unescape(_ANY_TAG.sub("", text))


def body_text(message: Message) -> str:
    """Plain-text body of a message, extracting from HTML when there is no text part."""
    if message.plain_text and message.plain_text.strip():
        return message.plain_text
    if not message.html:
        return ""

    extracted: str | None = None
    try:
        extracted = trafilatura.extract(
            message.html,
            output_format="txt",
            favor_recall=True,
            include_tables=True,
        )
    except Exception as e:
        logger.warning("Trafilatura extraction failed for %s: %s", message.message_id, e)
    return extracted if extracted else strip_tags(message.html)


def find_sku(*texts: str) -> str | None:
    """First SKU found in ``texts``: a "SKU:"/"Réf:" line, else a bracketed code."""
    for pattern in _SKU_PATTERNS:
        for text in texts:
            match = pattern.search(text or "")
            if match:
                return match.group(1)
    return None


def extract_fields(text: str) -> dict[str, str]:
    """Collect ``Key: value`` lines into a dict keyed by lowercased key. First wins."""
    fields: dict[str, str] = {}
    for key, value in _FIELD_LINE.findall(text):
        fields.setdefault(key.strip().lower(), value)
    return fields


def first_field(fields: dict[str, str], *names: str) -> str | None:
    for name in names:
        value = fields.get(name)
        if value:
            return value
    return None


def sender_name(sender: str) -> str:
    """Display name of a From header, or the address when there is none."""
    name, _, address = sender.partition("<")
    name = name.strip().strip('"')
    return name or address.rstrip(">").strip()
