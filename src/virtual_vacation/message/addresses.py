"""Address normalization and no-reply sender checks."""

from __future__ import annotations

import re
from email.errors import HeaderParseError
from email.headerregistry import Address
from email.utils import getaddresses, parseaddr

import structlog

from virtual_vacation.config import Settings
from virtual_vacation.exceptions import ReplySuppressed

logger = structlog.get_logger()


DEFAULT_NOREPLY_PATTERN = re.compile(
    r"^(noreply|no\-reply|do_not_reply|no_reply|postmaster|mailer\-daemon|listserv"
    r"|majordomo|owner\-|request\-|bounces\-)|(\-(owner|request|bounces)\@)",
    re.I,
)

# Permissive scan used when the header does not parse as an address list.
_ADDRESS_TOKEN = re.compile(r"[\w.\-+'=^|$/{}~?*\\&!`%]+@[\w.\-]+\w+")


def is_valid_email(value: str) -> bool:
    """Return True if ``value`` is exactly one syntactically valid mailbox."""
    if "@" not in value or any(c.isspace() for c in value):
        return False
    name, addr = parseaddr(value)
    if name or addr != value:
        return False
    try:
        parsed = Address(addr_spec=addr)
    except (HeaderParseError, ValueError, IndexError):
        return False
    return bool(parsed.username) and bool(parsed.domain)


def _parse_address_list(value: str) -> list[str] | None:
    """RFC 822 parse; None when the header is not a clean address list."""
    pairs = getaddresses([value])
    if not pairs or any(not addr for _, addr in pairs):
        return None
    return [addr for _, addr in pairs]


def _unique_valid(candidates: list[str]) -> list[str]:
    seen: set[str] = set()
    valid: list[str] = []
    for candidate in candidates:
        addr = candidate.strip().lower()
        if addr in seen or not is_valid_email(addr):
            continue
        seen.add(addr)
        valid.append(addr)
    return valid


def strip_address(value: str) -> str:
    """Extract the valid addresses of a header value.

    Args:
        value: Raw header value, e.g. ``"Jane <Jane@Example.org>, bob@x.net"``.

    Returns:
        Comma-joined, lower-cased, de-duplicated addresses in order of
        appearance. Empty string when nothing valid was found.
    """

    if not value:
        return ""

    parsed = _parse_address_list(value)
    valid = _unique_valid(parsed) if parsed is not None else []
    if not valid:
        valid = _unique_valid(_ADDRESS_TOKEN.findall(value))

    return ", ".join(valid)


def split_addresses(value: str) -> list[str]:
    """Split the output of :func:`strip_address` back into a list."""
    return [part.strip() for part in value.split(",") if part.strip()]


def check_and_clean_from_address(value: str, settings: Settings) -> str:
    """Normalize a sender-like address, refusing automated senders.

    Raises:
        ReplySuppressed: If the address belongs to an automated sender or
            contains no valid address at all.
    """

    if DEFAULT_NOREPLY_PATTERN.search(value):
        logger.debug("sender_matches_default_noreply_pattern", address=value)
        raise ReplySuppressed("noreply_sender")

    if settings.custom_noreply_pattern and re.search(settings.noreply_pattern, value, re.I):
        logger.debug("sender_matches_custom_noreply_pattern", address=value)
        raise ReplySuppressed("noreply_sender")

    cleaned = strip_address(value)
    if not cleaned:
        logger.error("invalid_sender_address", address=value)
        raise ReplySuppressed("invalid_address")

    return cleaned
