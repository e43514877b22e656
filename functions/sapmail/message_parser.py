"""
Gmail message parsing: body text and threading envelope.

The body walk keeps the FIRST text/html and the FIRST text/plain part found
(depth-first) and never overwrites either. HTML wins when present.
"""

import base64
import binascii
import logging
import quopri
import re
from dataclasses import dataclass, field
from email.utils import getaddresses, formataddr
from typing import List

from bs4 import BeautifulSoup

logger = logging.getLogger("sapmail.message_parser")

_WHITESPACE = re.compile(r"\s+")
_QP_ESCAPE = re.compile(r"=(?:[0-9A-Fa-f]{2}|\r?\n)")


@dataclass
class MessageEnvelope:
    """Provenance needed to thread a later reply. Missing values are empty, never None."""
    message_id: str = ""
    thread_id: str = ""
    message_id_header: str = ""
    references_header: str = ""
    from_address: str = ""
    to_addresses: List[str] = field(default_factory=list)
    cc_addresses: List[str] = field(default_factory=list)
    subject: str = ""
    date: str = ""


def _decode_part_data(data):
    """Gmail body.data is base64url, sometimes without padding."""
    if not data:
        return ""
    try:
        raw = base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
    except (binascii.Error, ValueError) as e:
        logger.warning(f"Undecodable base64 body part: {e}")
        return ""
    return raw.decode("utf-8", errors="replace")


def _find_text_parts(part, found):
    mime_type = (part.get("mimeType") or "").lower()
    data = (part.get("body") or {}).get("data")

    if data and mime_type in ("text/html", "text/plain") and mime_type not in found:
        found[mime_type] = _decode_part_data(data)

    for sub_part in part.get("parts") or []:
        _find_text_parts(sub_part, found)
    return found


def decode_quoted_printable(text):
    """
    Best-effort quoted-printable decode (=XX escapes, =\\r\\n soft breaks).

    Returns the input unchanged when it carries no escapes or when the
    decoded bytes are not valid UTF-8.
    """
    if not text or not _QP_ESCAPE.search(text):
        return text
    try:
        return quopri.decodestring(text.encode("utf-8")).decode("utf-8")
    except (UnicodeDecodeError, ValueError) as e:
        logger.warning(f"Quoted-printable decode failed, keeping raw text: {e}")
        return text


def html_to_text(html):
    """Strip markup, decode entities, collapse whitespace."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()
    text = soup.get_text(separator=" ")
    return _WHITESPACE.sub(" ", text).strip()


def extract_body(message):
    """
    Best textual representation of a Gmail message.

    Args:
        message: Gmail message resource (format=full)

    Returns:
        one normalized line of text, "" when no text part exists
    """
    payload = (message or {}).get("payload")
    if not payload:
        return ""

    parts = _find_text_parts(payload, {})

    if "text/html" in parts:
        return html_to_text(decode_quoted_printable(parts["text/html"]))
    if "text/plain" in parts:
        text = decode_quoted_printable(parts["text/plain"])
        return _WHITESPACE.sub(" ", text).strip()
    return ""


def _headers(payload):
    headers = {}
    for h in payload.get("headers") or []:
        name = (h.get("name") or "").lower()
        if name and name not in headers:
            headers[name] = h.get("value") or ""
    return headers


def _address_list(value):
    addresses = []
    for name, addr in getaddresses([value]) if value else []:
        if addr:
            addresses.append(formataddr((name, addr)) if name else addr)
    return addresses


def extract_envelope(message):
    """Ids and threading headers of a Gmail message."""
    message = message or {}
    headers = _headers(message.get("payload") or {})
    return MessageEnvelope(
        message_id=message.get("id") or "",
        thread_id=message.get("threadId") or "",
        message_id_header=headers.get("message-id", "").strip(),
        references_header=headers.get("references", "").strip(),
        from_address=headers.get("from", "").strip(),
        to_addresses=_address_list(headers.get("to", "")),
        cc_addresses=_address_list(headers.get("cc", "")),
        subject=headers.get("subject", "").strip(),
        date=headers.get("date", "").strip(),
    )
