# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Email message parsing utilities.

Turns raw RFC 5322 bytes fetched from the mailbox into the subject and
text content the processor works with, and applies the Unicode and size
safeguards to that content.
"""

import email.errors
import logging
import unicodedata
from dataclasses import dataclass
from email.header import decode_header
from email.message import Message
from email.parser import BytesParser


logger = logging.getLogger(__name__)

TRUNCATION_NOTICE = "\n\n[Content truncated due to size limit]"


class ParseError(Exception):
    """Raised when a fetched message cannot be turned into content."""


@dataclass(frozen=True)
class InboundMessage:
    """A parsed inbound email.

    Attributes:
        uid: Mailbox UID used to flag the message read.
        subject: Decoded subject line.
        sender: Raw From header.
        content: Body text (plain text, or HTML markup as a fallback).
        content_type: MIME type the content came from, or empty string
            if the message had no text part.
    """

    uid: str
    subject: str
    sender: str
    content: str
    content_type: str


def _decode_bytes(data: bytes, charset: str | None) -> str:
    """Decode bytes with a declared charset, tolerating bogus ones."""
    try:
        return data.decode(charset or "utf-8", errors="replace")
    except LookupError:
        logger.debug("Unknown charset %r, decoding as UTF-8", charset)
        return data.decode("utf-8", errors="replace")


def decode_subject(message: Message) -> str:
    """Decode the Subject header from an email message.

    Mail clients may encode headers using RFC 2047 encoded-words
    (e.g. ``=?utf-8?B?...?=``); ``Message.get()`` returns the raw form.

    Args:
        message: Parsed email message.

    Returns:
        Decoded subject, or empty string if not present.
    """
    raw = message.get("Subject", "")
    if not raw:
        return ""

    decoded_parts: list[str] = []
    # Unencoded runs keep their surrounding whitespace, and whitespace
    # between adjacent encoded-words is already dropped.
    for data, charset in decode_header(str(raw)):
        if isinstance(data, bytes):
            decoded_parts.append(_decode_bytes(data, charset))
        else:
            decoded_parts.append(data)
    return "".join(decoded_parts).strip()


def _part_text(part: Message) -> str | None:
    payload = part.get_payload(decode=True)
    if not payload or not isinstance(payload, bytes):
        return None
    return _decode_bytes(payload, part.get_content_charset())


def extract_content(message: Message) -> tuple[str, str]:
    """Extract the answer text from an email message.

    Prefers the first ``text/plain`` part.  When a message has only
    HTML, the markup is returned unmodified.  Attachments are skipped.

    Args:
        message: Parsed email message.

    Returns:
        Tuple of (content, content_type).  ``("", "")`` if the message
        has no text part.
    """
    for wanted in ("text/plain", "text/html"):
        for part in message.walk():
            if part.is_multipart():
                continue
            if part.get_content_type() != wanted:
                continue
            if part.get_content_disposition() == "attachment":
                continue
            text = _part_text(part)
            if text is not None:
                logger.debug(
                    "Extracted %s content (%d chars, charset=%s)",
                    wanted,
                    len(text),
                    part.get_content_charset(),
                )
                return text, wanted

    logger.warning("No text content found in message")
    return "", ""


def parse_message(uid: str, raw: bytes) -> InboundMessage:
    """Parse raw message bytes.

    Args:
        uid: Mailbox UID of the message.
        raw: RFC 5322 message bytes.

    Returns:
        Parsed message.

    Raises:
        ParseError: If the bytes cannot be parsed into a message.
    """
    if not isinstance(raw, bytes) or not raw.strip():
        raise ParseError(f"Message {uid} has no content")

    try:
        message = BytesParser().parsebytes(raw)
        subject = decode_subject(message)
        content, content_type = extract_content(message)
    except (email.errors.MessageError, UnicodeError, ValueError) as e:
        raise ParseError(f"Failed to parse message {uid}: {e}") from e

    if message.defects:
        logger.debug(
            "Message %s parsed with defects: %s",
            uid,
            ", ".join(type(d).__name__ for d in message.defects),
        )

    return InboundMessage(
        uid=uid,
        subject=subject,
        sender=str(message.get("From", "")),
        content=content,
        content_type=content_type,
    )


def normalize_content(
    text: str,
    *,
    form: str = "NFD",
    max_length: int = 1_000_000,
) -> str:
    """Apply Unicode normalization and the size ceiling.

    Normalization runs first so the ceiling applies to the text that is
    actually delivered.

    Args:
        text: Raw content.
        form: Unicode normalization form.
        max_length: Ceiling in characters.

    Returns:
        Normalized content, cut to ``max_length`` characters followed by
        ``TRUNCATION_NOTICE`` when longer.
    """
    normalized = unicodedata.normalize(form, text)  # type: ignore[arg-type]
    if len(normalized) <= max_length:
        return normalized
    logger.warning(
        "Content truncated from %d to %d characters",
        len(normalized),
        max_length,
    )
    return normalized[:max_length] + TRUNCATION_NOTICE
