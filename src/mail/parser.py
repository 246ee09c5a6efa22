"""Raw message parsing and body rendering."""

import html
import logging
from datetime import datetime
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import parsedate_to_datetime

from src.mail.types import ParsedEmail

logger = logging.getLogger(__name__)

_PRE_OPEN = '<pre style="white-space: pre-wrap; word-wrap: break-word;">'
_PRE_CLOSE = "</pre>"


def parse_message(raw: bytes) -> ParsedEmail:
    """Decode a raw RFC 822 message into sender, subject, date and bodies.

    Uses the modern ``policy.default`` so headers come back decoded (RFC 2047
    encoded-words resolved) and ``get_body()`` picks the best alternative part.
    """
    msg = BytesParser(policy=policy.default).parsebytes(raw)
    return ParsedEmail(
        sender=str(msg.get("From", "") or ""),
        subject=str(msg.get("Subject", "") or ""),
        date=_parse_date(msg),
        text=_body_text(msg, "plain"),
        html=_body_text(msg, "html"),
    )


def render_body(parsed: ParsedEmail) -> str | None:
    """Return markup for display, or None when the message has no content.

    HTML is passed through verbatim.  Plain text is escaped so nothing in it
    can become live markup, then wrapped in a whitespace-preserving ``<pre>``.
    """
    if parsed.html:
        return parsed.html
    if parsed.text:
        return f"{_PRE_OPEN}{html.escape(parsed.text)}{_PRE_CLOSE}"
    return None


# ── Internal helpers ───────────────────────────────────────────────────────────


def _body_text(msg: EmailMessage, subtype: str) -> str:
    part = msg.get_body(preferencelist=(subtype,))
    if part is None:
        return ""
    try:
        content = part.get_content()
    except (LookupError, UnicodeError) as exc:
        # Unknown or lying charset declaration; fall back to a lossy decode
        logger.debug("get_content() failed for text/%s part: %s", subtype, exc)
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")
    return content if isinstance(content, str) else ""


def _parse_date(msg: EmailMessage) -> datetime | None:
    try:
        value = msg.get("Date")
        return parsedate_to_datetime(str(value)) if value else None
    except (TypeError, ValueError) as exc:
        logger.debug("Unparseable Date header: %s", exc)
        return None
