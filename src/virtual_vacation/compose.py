"""Build the out-of-office reply."""

from __future__ import annotations

import re
from datetime import date, datetime
from email.message import EmailMessage
from email.utils import formataddr, formatdate, make_msgid

import structlog

from virtual_vacation.config import Settings
from virtual_vacation.models import MessageHeaders, StoredDate, VacationConfig

logger = structlog.get_logger()


SUBJECT_TOKEN = "$SUBJECT"

_HEADER_BREAKS = re.compile(r"[\r\n\t]+")


def _clean(value: str) -> str:
    return _HEADER_BREAKS.sub(" ", value or "").strip()


def format_stored_date(value: StoredDate, fmt: str) -> str:
    """Render a stored activation date with ``fmt``.

    Text that does not start with a ``YYYY-MM-DD`` date is returned unchanged.
    """

    if isinstance(value, (datetime, date)):
        return value.strftime(fmt)
    try:
        parsed = datetime.strptime(value[:10], "%Y-%m-%d")
    except ValueError:
        return value
    return parsed.strftime(fmt)


def render_subject(template: str, original_subject: str) -> str:
    return _clean(template.replace(SUBJECT_TOKEN, original_subject))


def render_body(vacation: VacationConfig, settings: Settings) -> str:
    from_date = format_stored_date(vacation.activefrom, settings.date_format)
    until_date = format_stored_date(vacation.activeuntil, settings.date_format)
    logger.debug("vacation_dates", email=vacation.email, from_date=from_date, until_date=until_date)
    return vacation.body.replace(settings.replace_from, from_date).replace(
        settings.replace_until, until_date
    )


def render_from(owner: str, settings: Settings, account_name: str | None = None) -> str:
    """From header value: the owner address, optionally with a display name.

    A mailbox display name (when ``accountname_check`` is on) wins over the
    configured ``friendly_from``.
    """

    name = ""
    if settings.friendly_from:
        name = settings.friendly_from
    if settings.accountname_check and account_name:
        name = account_name
    if not name:
        return owner
    return formataddr((_clean(name), owner), charset="utf-8")


def build_reply(
    vacation: VacationConfig,
    sender: str,
    original: MessageHeaders,
    settings: Settings,
    account_name: str | None = None,
) -> EmailMessage:
    """Compose the reply from ``vacation.email`` to ``sender``.

    Args:
        vacation: Vacation row of the resolved owner.
        sender: Sanitized envelope sender of the inbound message.
        original: Headers of the inbound message.
        settings: Application settings.
        account_name: Mailbox display name of the owner, if known.

    Returns:
        EmailMessage: The reply, ready to be serialized.
    """

    owner = vacation.email
    message = EmailMessage()
    message["To"] = sender
    message["From"] = render_from(owner, settings, account_name)
    message["Subject"] = render_subject(vacation.subject, original.subject)
    message["Date"] = formatdate(localtime=True)
    message["Message-ID"] = make_msgid(domain=owner.partition("@")[2] or None)
    if original.message_id and original.message_id != "unknown":
        message["In-Reply-To"] = _clean(original.message_id)
    message["Precedence"] = "junk"
    message["X-Loop"] = settings.loop_marker
    message["Auto-Submitted"] = "auto-replied"
    message.set_content(render_body(vacation, settings), charset="utf-8")
    return message
