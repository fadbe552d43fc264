"""
Turn raw RFC 822 bytes fetched over IMAP into the fields a :class:`Message`
needs.  Bodies prefer ``text/plain``; when only HTML is present it is
flattened to readable text.
"""

from __future__ import annotations

import datetime as dt
import email
import email.errors
import re
from dataclasses import dataclass, field
from email.header import decode_header, make_header
from email.message import Message as MimeMessage
from email.utils import getaddresses, parsedate_to_datetime
from html.parser import HTMLParser
from typing import List, Optional, Tuple

from mail_errors import DecodeError


@dataclass
class DecodedMessage:
    subject: str = ""
    sender: str = ""
    to: List[str] = field(default_factory=list)
    date: str = ""
    text: str = ""
    html: str = ""

    @property
    def body(self) -> str:
        if self.text:
            return self.text
        if self.html:
            return html_to_text(self.html)
        return ""


def decode_header_value(value: Optional[str]) -> str:
    """Decode an RFC 2047 encoded header into Unicode."""
    if not value:
        return ""
    try:
        return str(make_header(decode_header(value)))
    except (LookupError, UnicodeError, email.errors.HeaderParseError):
        return str(value)


class _HTMLTextExtractor(HTMLParser):
    """Simple HTML to plain text converter for fallback bodies."""

    _BREAK_TAGS = {"br", "p", "div", "section", "article", "li", "tr", "hr", "h1", "h2", "h3", "h4", "h5", "h6"}
    _SKIP_TAGS = {"script", "style", "head"}

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._chunks: List[str] = []
        self._skip_depth = 0

    def handle_starttag(self, tag: str, attrs: List[Tuple[str, Optional[str]]]) -> None:  # type: ignore[override]
        if tag in self._SKIP_TAGS:
            self._skip_depth += 1
        elif tag in {"br", "hr"}:
            self._chunks.append("\n")

    def handle_endtag(self, tag: str) -> None:  # type: ignore[override]
        if tag in self._SKIP_TAGS:
            self._skip_depth = max(0, self._skip_depth - 1)
        elif tag in self._BREAK_TAGS:
            self._chunks.append("\n")

    def handle_data(self, data: str) -> None:  # type: ignore[override]
        if data and not self._skip_depth:
            self._chunks.append(data)

    def get_text(self) -> str:
        raw = "".join(self._chunks)
        # Normalize whitespace while preserving intentional breaks
        normalized = re.sub(r"\r\n?", "\n", raw)
        normalized = re.sub(r"[ \t]+\n", "\n", normalized)
        normalized = re.sub(r"\n{3,}", "\n\n", normalized)
        return normalized.strip()


def html_to_text(value: str) -> str:
    parser = _HTMLTextExtractor()
    parser.feed(value)
    parser.close()
    return parser.get_text()


def _iso_date(value: Optional[str]) -> str:
    """Normalise a Date header to ISO 8601 in UTC; empty when unparseable."""
    if not value:
        return ""
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return ""
    if parsed is None:
        return ""
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed.astimezone(dt.timezone.utc).isoformat()


def _addresses(values: List[str]) -> List[str]:
    seen: List[str] = []
    for _, address in getaddresses([decode_header_value(v) for v in values]):
        address = address.strip()
        if address and address not in seen:
            seen.append(address)
    return seen


def _part_text(part: MimeMessage) -> str:
    payload = part.get_payload(decode=True)
    if payload is None:
        # Some 7bit/8bit sections return str unless explicitly decoded.
        raw_payload = part.get_payload(decode=False)
        return raw_payload if isinstance(raw_payload, str) else ""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def decode_message(raw: bytes) -> DecodedMessage:
    """
    Decode one fetched message.

    Raises:
        DecodeError: the payload is empty or the MIME structure cannot be
            walked.
    """
    if not raw:
        raise DecodeError("Empty message payload")
    try:
        msg = email.message_from_bytes(raw)
        decoded = DecodedMessage(
            subject=decode_header_value(msg.get("Subject")),
            sender=decode_header_value(msg.get("From")),
            to=_addresses(msg.get_all("To", [])),
            date=_iso_date(msg.get("Date")),
        )
        text_parts: List[str] = []
        html_parts: List[str] = []
        for part in msg.walk():
            if part.get_content_maintype() == "multipart":
                continue
            disposition = (part.get_content_disposition() or "").lower()
            if disposition == "attachment" or part.get_filename():
                continue
            content_type = part.get_content_type()
            if content_type == "text/plain":
                text_parts.append(_part_text(part))
            elif content_type == "text/html":
                html_parts.append(_part_text(part))
    except (email.errors.MessageError, LookupError, TypeError, ValueError) as exc:
        raise DecodeError(f"Failed to decode message: {exc}") from exc
    decoded.text = "".join(text_parts).strip()
    decoded.html = "".join(html_parts).strip()
    return decoded
