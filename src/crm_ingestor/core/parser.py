"""Decode Gmail API message dicts into Message objects."""

from __future__ import annotations

import base64
import logging
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any

from crm_ingestor.core.exceptions import ParseError
from crm_ingestor.core.models import Message

logger = logging.getLogger(__name__)


class GmailParser:
    """Parses raw Gmail API message dicts (format=full) into Message objects."""

    def parse(self, raw_message: dict[str, Any]) -> Message:
        """Parse one message dict.

        Raises:
            ParseError: If the message structure is invalid.
        """
        try:
            payload = raw_message.get("payload", {})
            headers = self._extract_headers(payload)
            plain_text, html = self._walk_parts(payload)

            if plain_text is None and html is None:
                body_data = payload.get("body", {}).get("data")
                if body_data:
                    decoded = self._decode_body(body_data)
                    if "html" in payload.get("mimeType", ""):
                        html = decoded
                    else:
                        plain_text = decoded

            return Message(
                message_id=raw_message["id"],
                thread_id=raw_message.get("threadId", ""),
                sender=headers.get("from", ""),
                subject=headers.get("subject", ""),
                date=self._parse_date(headers.get("date", "")),
                plain_text=plain_text,
                html=html,
                label_ids=tuple(raw_message.get("labelIds", [])),
                snippet=raw_message.get("snippet", ""),
            )
        except ParseError:
            raise
        except Exception as e:
            raise ParseError(f"Failed to parse message {raw_message.get('id', '?')}: {e}") from e

    @staticmethod
    def _extract_headers(payload: dict[str, Any]) -> dict[str, str]:
        headers: dict[str, str] = {}
        for h in payload.get("headers", []):
            name = h.get("name", "").lower()
            if name in ("subject", "from", "date"):
                headers[name] = h.get("value", "")
        return headers

    def _walk_parts(self, part: dict[str, Any]) -> tuple[str | None, str | None]:
        """Recursively walk MIME parts to find text/plain and text/html.

        Returns:
            Tuple of (plain_text, html); either may be None.
        """
        plain_text: str | None = None
        html: str | None = None
        mime_type = part.get("mimeType", "")

        if mime_type == "text/plain":
            data = part.get("body", {}).get("data")
            if data:
                plain_text = self._decode_body(data)
        elif mime_type == "text/html":
            data = part.get("body", {}).get("data")
            if data:
                html = self._decode_body(data)
        elif mime_type.startswith("multipart/"):
            for sub_part in part.get("parts", []):
                # Attachments carry a filename; stock JSON always arrives inline.
                if sub_part.get("filename"):
                    continue
                sub_plain, sub_html = self._walk_parts(sub_part)
                if sub_plain and not plain_text:
                    plain_text = sub_plain
                if sub_html and not html:
                    html = sub_html

        return plain_text, html

    @staticmethod
    def _decode_body(data: str) -> str:
        # Gmail uses base64url encoding (RFC 4648 §5)
        padded = data + "=" * (4 - len(data) % 4) if len(data) % 4 else data
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")

    @staticmethod
    def _parse_date(date_str: str) -> datetime | None:
        if not date_str:
            return None
        try:
            return parsedate_to_datetime(date_str)
        except Exception:
            logger.warning("Failed to parse date: %s", date_str)
            return None
