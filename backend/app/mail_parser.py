"""Parse raw RFC 822 messages into the fields stored on Email rows."""
import email
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.header import decode_header, make_header
from email.message import Message
from email.utils import getaddresses, parsedate_to_datetime
from typing import List, Optional, Tuple

REPLY_PREFIX_RE = re.compile(r"^\s*(re|fwd|fw|tr|aw|ref)\s*:\s*", re.IGNORECASE)
MESSAGE_ID_RE = re.compile(r"<([^>]+)>")


@dataclass
class ParsedMessage:
    message_id: str
    subject: str
    from_address: str
    from_name: str
    to_addresses: List[str] = field(default_factory=list)
    cc_addresses: List[str] = field(default_factory=list)
    in_reply_to: Optional[str] = None
    references: List[str] = field(default_factory=list)
    received_at: Optional[datetime] = None
    body_text: str = ""
    body_html: str = ""


def strip_reply_prefix(subject: str) -> str:
    """Drop any stack of Re:/Fwd:/Fw:/TR:/AW:/Ref: prefixes."""
    s = subject or ""
    while True:
        stripped = REPLY_PREFIX_RE.sub("", s, count=1)
        if stripped == s:
            return s.strip()
        s = stripped


def decode_mime_header(value: Optional[str]) -> str:
    if not value:
        return ""
    try:
        return str(make_header(decode_header(value))).strip()
    except (UnicodeDecodeError, LookupError, ValueError):
        return str(value).strip()


def _clean_message_id(value: Optional[str]) -> str:
    return (value or "").replace("<", "").replace(">", "").strip()


def _message_ids(value: Optional[str]) -> List[str]:
    if not value:
        return []
    found = MESSAGE_ID_RE.findall(value)
    if found:
        return [m.strip() for m in found if m.strip()]
    return [_clean_message_id(p) for p in value.split() if _clean_message_id(p)]


def _addresses(msg: Message, header: str) -> List[Tuple[str, str]]:
    values = msg.get_all(header, [])
    pairs = getaddresses([decode_mime_header(v) for v in values])
    return [(decode_mime_header(name), addr.strip()) for name, addr in pairs if addr and "@" in addr]


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _decode_part(part: Message) -> str:
    payload = part.get_payload(decode=True)
    if payload is None:
        return ""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def extract_bodies(msg: Message) -> Tuple[str, str]:
    """First text/plain and first text/html part, skipping attachments."""
    text, html = "", ""
    for part in msg.walk():
        if part.is_multipart():
            continue
        if "attachment" in str(part.get("Content-Disposition", "")).lower():
            continue
        content_type = part.get_content_type()
        if content_type == "text/plain" and not text:
            text = _decode_part(part).strip()
        elif content_type == "text/html" and not html:
            html = _decode_part(part).strip()
    return text, html


def parse_message(raw: bytes, fallback_message_id: str) -> ParsedMessage:
    """Parse one raw message; messages without a Message-ID get fallback_message_id."""
    msg = email.message_from_bytes(raw)
    senders = _addresses(msg, "From")
    from_name, from_address = senders[0] if senders else ("", "")
    text, html = extract_bodies(msg)
    return ParsedMessage(
        message_id=_clean_message_id(msg.get("Message-ID")) or fallback_message_id,
        subject=decode_mime_header(msg.get("Subject")),
        from_address=from_address,
        from_name=from_name,
        to_addresses=[addr for _, addr in _addresses(msg, "To")],
        cc_addresses=[addr for _, addr in _addresses(msg, "Cc")],
        in_reply_to=next(iter(_message_ids(msg.get("In-Reply-To"))), None),
        references=_message_ids(msg.get("References")),
        received_at=_parse_date(msg.get("Date")),
        body_text=text,
        body_html=html,
    )
