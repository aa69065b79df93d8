"""
Message normalization for the IMAP sync pipeline.

Turns one raw fetched record (RFC 822 bytes + IMAP flags) into the
canonical message dict stored by db_service.upsert_message.

Handles:
1. Envelope fields (Message-ID, Subject, From, To, Date)
2. Flag mapping (\\Seen -> is_read, \\Flagged -> is_starred)
3. Body extraction (text/plain, text/html, HTML-only fallback)
4. Snippet + attachment detection
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email import policy
from email.parser import BytesParser
from email.utils import getaddresses, parsedate_to_datetime
from typing import Optional

from app.exceptions import ParseError
from app.logging_config import get_logger
from app.services.text_cleaner import html_to_text

logger = get_logger(__name__)

SNIPPET_LENGTH = 200
NO_SUBJECT = "(No Subject)"

SEEN_FLAG = "\\Seen"
FLAGGED_FLAG = "\\Flagged"

FALLBACK_SYNTHETIC = "synthetic"
FALLBACK_UID = "uid"


@dataclass
class RawMessage:
    """One message as returned by an IMAP FETCH."""
    seq: int
    uid: Optional[int]
    flags: list = field(default_factory=list)
    raw: bytes = b""


@dataclass
class ParsedBody:
    text: Optional[str]
    html: Optional[str]
    attachments: list


def fallback_message_id(raw: RawMessage, folder: str, mode: str = FALLBACK_SYNTHETIC) -> str:
    """
    Identifier for messages without a Message-ID header.

    "synthetic" changes on every sync (current time + sequence number), so
    the same message is stored again on each pass. "uid" is stable for as
    long as the folder's UIDVALIDITY holds.
    """
    if mode == FALLBACK_UID and raw.uid is not None:
        return f"uid-{folder}-{raw.uid}"
    return f"gen-{int(time.time() * 1000)}-{raw.seq}"


def _to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _parse_date(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        return _to_utc_naive(parsedate_to_datetime(str(value)))
    except (TypeError, ValueError, IndexError):
        logger.debug("Unparseable Date header: %r", value)
        return None


def _first_address(value) -> tuple[str, str]:
    """(display name, address) of the first entry in an address header."""
    if not value:
        return "", ""
    addresses = getaddresses([str(value)])
    if not addresses:
        return "", ""
    name, address = addresses[0]
    return name or "", address or ""


def parse_body(msg) -> ParsedBody:
    """
    Extract text/HTML bodies and attachment metadata.

    Raises:
        ParseError: if the MIME structure or a charset cannot be decoded
    """
    try:
        text = html = None

        text_part = msg.get_body(preferencelist=("plain",))
        if text_part is not None:
            text = text_part.get_content()

        html_part = msg.get_body(preferencelist=("html",))
        if html_part is not None:
            html = html_part.get_content()

        attachments = []
        for part in msg.walk():
            if part.is_multipart():
                continue
            if part.get_content_disposition() != "attachment":
                continue
            payload = part.get_payload(decode=True) or b""
            attachments.append({
                "filename": part.get_filename() or "unknown",
                "content_type": part.get_content_type(),
                "size": len(payload),
            })
    except (LookupError, ValueError, TypeError, AttributeError, KeyError) as e:
        raise ParseError(f"Could not parse message body: {e}") from e

    # HTML-only messages still get a searchable text body
    if text is None and html:
        text = html_to_text(html)

    return ParsedBody(text=text, html=html, attachments=attachments)


def normalize_message(
    raw: RawMessage,
    folder: str = "INBOX",
    fallback_ids: str = FALLBACK_SYNTHETIC
) -> dict:
    """
    Normalize one fetched message into the Message column layout.

    Body parse failures are not fatal: the snippet falls back to the first
    200 characters of the raw bytes and the bodies are left unset.

    Args:
        raw: Raw IMAP fetch record
        folder: Folder the message was fetched from
        fallback_ids: "synthetic" or "uid" (see fallback_message_id)

    Returns:
        Dict with message_id, uid, subject, sender/recipient, flags, bodies,
        snippet, attachments, etc.
    """
    msg = BytesParser(policy=policy.default).parsebytes(raw.raw or b"")

    message_id = (str(msg.get("Message-ID") or "")).strip()
    if not message_id:
        message_id = fallback_message_id(raw, folder, fallback_ids)

    sender_name, sender_email = _first_address(msg.get("From"))
    _, recipient_email = _first_address(msg.get("To"))
    subject = str(msg.get("Subject") or "").strip() or NO_SUBJECT

    flags = set(raw.flags or [])
    record = {
        "message_id": message_id,
        "uid": raw.uid,
        "thread_id": None,
        "subject": subject,
        "sender_name": sender_name,
        "sender_email": sender_email,
        "recipient_email": recipient_email,
        "received_at": _parse_date(msg.get("Date")),
        "is_read": SEEN_FLAG in flags,
        "is_starred": FLAGGED_FLAG in flags,
        "folder": folder,
        "snippet": "",
        "body_text": None,
        "body_html": None,
        "has_attachments": False,
        "attachments": [],
    }

    try:
        body = parse_body(msg)
    except ParseError as e:
        logger.warning("Error parsing message %s: %s", message_id, e)
        record["snippet"] = (raw.raw or b"").decode("utf-8", errors="replace")[:SNIPPET_LENGTH]
        return record

    record["body_text"] = body.text or ""
    record["body_html"] = body.html or ""
    record["snippet"] = (body.text or "")[:SNIPPET_LENGTH]
    record["attachments"] = body.attachments
    record["has_attachments"] = len(body.attachments) > 0
    return record
