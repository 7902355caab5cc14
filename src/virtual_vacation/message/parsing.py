"""Header scanning for inbound messages.

Reads the header block of a raw message, unfolds continuation lines of the
headers we care about and stops the pipeline as soon as a line signals bulk
mail, spam, a mailing list or another autoresponder.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from email.header import decode_header, make_header

import structlog

from virtual_vacation.exceptions import ReplySuppressed
from virtual_vacation.models import MessageHeaders

logger = structlog.get_logger()


_RECOGNIZED = {
    "from": "from_",
    "to": "to",
    "cc": "cc",
    "reply-to": "reply_to",
    "subject": "subject",
    "message-id": "message_id",
}

# (reason, pattern); any single match suppresses the reply.
_SUPPRESSION_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("spam_flag", re.compile(r"^x-spam-(flag|status):\s+yes", re.I)),
    ("facebook_notification", re.compile(r"^x-facebook-notify:", re.I)),
    ("amazon_notification", re.compile(r"^x-amazon-mail-relay-type:\s*notification", re.I)),
    ("precedence", re.compile(r"^precedence:\s+(bulk|list|junk)", re.I)),
    ("mailing_list", re.compile(r"^list-(id|post|unsubscribe):", re.I)),
    ("spam_status", re.compile(r"^x-(barracuda-)?spam-status:\s+yes", re.I)),
    ("dspam_result", re.compile(r"^x-dspam-result:\s+(spam|bl[ao]cklisted)", re.I)),
    ("virus_status", re.compile(r"^x-(anti-?|avas-)?virus-status:\s+infected", re.I)),
    (
        "content_filter_status",
        re.compile(r"^x-(avas-spam|spamtest|crm114|razor|pyzor)-status:\s+spam", re.I),
    ),
    ("osbf_lua_score", re.compile(r"^x-osbf-lua-score:\s+[0-9/.\-+]+\s+\[([-S])\]", re.I)),
    ("autogenerated_reply", re.compile(r"^x-autogenerated:\s*reply", re.I)),
    ("auto_response_suppress", re.compile(r"^x-auto-response-suppress:\s*(oof|all)", re.I)),
]

_AUTO_SUBMITTED = re.compile(r"^auto-submitted:(.*)$", re.I)


def _suppression_reason(line: str, loop_marker: str) -> str | None:
    for reason, pattern in _SUPPRESSION_PATTERNS:
        if pattern.search(line):
            return reason

    m = _AUTO_SUBMITTED.match(line)
    if m:
        value = m.group(1).strip()
        if value and value.lower() != "no":
            return "auto_submitted"

    name, _, value = line.partition(":")
    if name.strip().lower() == "x-loop" and value.strip().lower().startswith(loop_marker.lower()):
        return "x_loop"

    return None


def decode_subject(value: str) -> str:
    """Turn RFC 2047 encoded-words into text, keeping the raw value on failure."""
    if "=?" not in value:
        return value
    try:
        return str(make_header(decode_header(value)))
    except (UnicodeDecodeError, LookupError, ValueError):
        return value


def iter_header_lines(raw: bytes | Iterable[bytes]) -> Iterable[str]:
    """Yield decoded header lines up to, not including, the first empty line."""
    lines = raw.splitlines() if isinstance(raw, bytes) else raw
    for line in lines:
        text = line.decode("utf-8", errors="replace").rstrip("\r\n")
        if text == "":
            return
        yield text


def read_headers(lines: Iterable[str], loop_marker: str) -> MessageHeaders:
    """Scan header lines and capture the recognized headers.

    Args:
        lines: Header lines without line terminators, ending at the body.
        loop_marker: X-Loop value written by this system.

    Returns:
        MessageHeaders: The captured headers.

    Raises:
        ReplySuppressed: If any line signals that no reply may be sent.
    """

    values: dict[str, str] = {}
    last: str | None = None

    for line in lines:
        if line[:1] in (" ", "\t"):
            if last is not None:
                values[last] += " " + line.strip()
            continue

        last = None
        name, sep, value = line.partition(":")
        field = _RECOGNIZED.get(name.strip().lower()) if sep else None
        if field is not None:
            values[field] = value.strip()
            last = field
            continue

        reason = _suppression_reason(line, loop_marker)
        if reason is not None:
            logger.debug("message_suppressed_by_header", reason=reason, header=line[:200])
            raise ReplySuppressed(reason)

    if "subject" in values:
        values["subject"] = decode_subject(values["subject"])
    if not values.get("message_id"):
        values.pop("message_id", None)

    return MessageHeaders(**values)
