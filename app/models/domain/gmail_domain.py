# app/models/domain/gmail_domain.py
"""
Gmail Domain Models
Transient representation of a fetched message, built from a Gmail API
``format=full`` payload and handed to the classifier.
"""

import base64
import binascii
import html
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any


@dataclass(frozen=True)
class RawMessage:
    """One mailbox message as the classifier sees it."""

    message_id: str
    sender: str = ""
    subject: str = ""
    body: str = ""
    received_at: datetime | None = None
    is_html: bool = False

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "RawMessage":
        """Build a RawMessage from a users.messages.get response."""
        payload = data.get("payload") or {}
        headers = {
            h.get("name", "").lower(): h.get("value", "") for h in payload.get("headers", [])
        }

        text, markup = _collect_bodies(payload)
        if text.strip():
            body, is_html = text, False
        elif markup:
            body, is_html = markup, True
        else:
            # Snippets arrive entity-escaped (&amp;, &#39;)
            body, is_html = html.unescape(data.get("snippet", "")), False

        return cls(
            message_id=data.get("id", ""),
            sender=headers.get("from", ""),
            subject=headers.get("subject", ""),
            body=body,
            received_at=_parse_internal_date(data.get("internalDate")),
            is_html=is_html,
        )

    @property
    def sender_address(self) -> str:
        """Bare address from a From header such as ``Acme <jobs@acme.com>``."""
        value = self.sender.strip()
        if "<" in value and ">" in value:
            value = value.split("<", 1)[1].split(">", 1)[0]
        return value.strip().strip('"').lower()


def _collect_bodies(payload: dict[str, Any]) -> tuple[str, str]:
    """Walk a (possibly nested) multipart payload, returning (text, html)."""
    text_parts: list[str] = []
    html_parts: list[str] = []

    def walk(part: dict[str, Any]) -> None:
        mime_type = part.get("mimeType", "")
        data = (part.get("body") or {}).get("data")

        if data and not part.get("filename"):
            decoded = _decode_base64_data(data)
            if mime_type == "text/html":
                html_parts.append(decoded)
            elif mime_type in ("text/plain", ""):
                text_parts.append(decoded)

        for child in part.get("parts") or []:
            walk(child)

    walk(payload)
    return "\n".join(text_parts), "\n".join(html_parts)


def _decode_base64_data(data: str) -> str:
    """Decode base64 URL-safe encoded data."""
    try:
        # Gmail uses URL-safe base64 without padding
        decoded_bytes = base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
        return decoded_bytes.decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return ""


def _parse_internal_date(internal_date: Any) -> datetime | None:
    """internalDate is epoch milliseconds as a string."""
    if internal_date is None:
        return None
    try:
        return datetime.fromtimestamp(int(internal_date) / 1000, tz=UTC)
    except (TypeError, ValueError, OverflowError, OSError):
        return None
