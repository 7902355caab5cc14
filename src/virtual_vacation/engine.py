"""Vacation engine implementation.

This module provides the pipeline that turns one inbound message into at
most one out-of-office reply: header filter, address sanitizing, alias
resolution, notification gate, composition and delivery.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from datetime import datetime
from email.message import EmailMessage

import structlog

from virtual_vacation.compose import build_reply
from virtual_vacation.config import Settings
from virtual_vacation.delivery import Transport
from virtual_vacation.exceptions import DeliveryError, ReplySuppressed, StorageError
from virtual_vacation.gate import NotificationGate
from virtual_vacation.message import (
    check_and_clean_from_address,
    read_headers,
    split_addresses,
    strip_address,
)
from virtual_vacation.resolver import AliasResolver
from virtual_vacation.store import DirectoryStore

logger = structlog.get_logger()


def unwrap_autoreply_recipient(recipient: str, vacation_domain: str, delimiter: str) -> str:
    """``user#example.org+ext@<vacation_domain>`` -> ``user@example.org``."""

    suffix = "@" + vacation_domain
    if not recipient.lower().endswith(suffix.lower()):
        return recipient

    address = recipient[: -len(suffix)].replace("#", "@")
    if delimiter:
        local, sep, domain = address.partition("@")
        local = local.split(delimiter, 1)[0]
        address = f"{local}{sep}{domain}"
    logger.debug("autoreply_recipient_converted", original=recipient, converted=address)
    return address


class VacationEngine:
    """Main vacation engine.

    This engine coordinates the per-message pipeline. It never decides the
    process exit status itself: policy suppressions are raised as
    :class:`ReplySuppressed`, fatal problems as their own exceptions.
    """

    def __init__(
        self,
        store: DirectoryStore,
        transport: Transport,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Initialize the vacation engine.

        Args:
            store: Directory store holding vacations, aliases and the ledger.
            transport: Where composed replies go.
            settings: Application settings. If None, uses default settings.
            clock: Source of "now" for activation windows and the ledger.
        """
        from virtual_vacation.config import get_settings

        self.settings = settings or get_settings()
        self.store = store
        self.transport = transport
        self.resolver = AliasResolver(
            store,
            self.settings.vacation_domain,
            max_depth=self.settings.max_alias_depth,
            strict_autoreply_alias=self.settings.strict_autoreply_alias,
            clock=clock,
        )
        self.gate = NotificationGate(store, clock=clock)

    def process(
        self,
        header_lines: Iterable[str],
        envelope_sender: str,
        envelope_recipient: str,
    ) -> EmailMessage | None:
        """Run the pipeline for one inbound message.

        Args:
            header_lines: Header lines of the inbound message.
            envelope_sender: SMTP envelope sender.
            envelope_recipient: SMTP envelope recipient.

        Returns:
            The reply that was handed to the transport, or None when no
            reply was due or it could not be sent.

        Raises:
            ReplySuppressed: If policy forbids a reply.
            AliasLoopError: If alias resolution does not terminate.
            StorageError: If the directory cannot be read during resolution.
        """

        settings = self.settings
        headers = read_headers(header_lines, settings.loop_marker)

        recipient = unwrap_autoreply_recipient(
            envelope_recipient.strip(), settings.vacation_domain, settings.recipient_delimiter
        )
        sender = envelope_sender.strip()

        if not (headers.from_ and headers.to and headers.message_id and sender and recipient):
            logger.info(
                "required_value_missing",
                from_=headers.from_,
                to=headers.to,
                message_id=headers.message_id,
                smtp_sender=sender,
                smtp_recipient=recipient,
            )
            raise ReplySuppressed("missing_required_value")

        if settings.no_vacation_pattern and re.search(settings.no_vacation_pattern, headers.to, re.I):
            logger.debug("no_vacation_pattern_matched", to=headers.to)
            raise ReplySuppressed("no_vacation_pattern")

        to = strip_address(headers.to)
        cc = strip_address(headers.cc)
        check_and_clean_from_address(headers.from_, settings)
        if headers.reply_to:
            check_and_clean_from_address(headers.reply_to, settings)
        sender = check_and_clean_from_address(sender, settings)
        recipient = check_and_clean_from_address(recipient, settings)

        if sender == recipient:
            logger.debug("sender_is_recipient", sender=sender)
            raise ReplySuppressed("self_addressed")

        if sender in split_addresses(to) + split_addresses(cc):
            logger.debug("sender_in_recipient_headers", sender=sender)
            raise ReplySuppressed("self_addressed")

        found, owner = self.resolver.resolve(recipient)
        if not found:
            logger.debug("no_active_vacation", recipient=recipient)
            return None

        logger.debug(
            "vacation_reply_candidate",
            message_id=headers.message_id,
            sender=sender,
            recipient=recipient,
            owner=owner,
        )

        if not self.gate.should_notify(owner, sender):
            logger.debug("reply_not_due", owner=owner, sender=sender)
            return None

        return self._reply(owner, sender, headers)

    def _reply(self, owner, sender, headers) -> EmailMessage | None:
        try:
            vacation = self.store.get_vacation(owner)
            account_name = (
                self.store.get_mailbox_name(owner) if self.settings.accountname_check else None
            )
        except StorageError as exc:
            logger.error("vacation_lookup_failed", owner=owner, error=str(exc))
            return None

        if vacation is None:
            logger.error("vacation_details_missing", owner=owner)
            return None

        reply = build_reply(vacation, sender, headers, self.settings, account_name=account_name)

        try:
            self.transport.send(reply, owner, sender)
        except DeliveryError as exc:
            logger.error(
                "vacation_reply_failed",
                to=sender,
                owner=owner,
                subject=str(reply["Subject"]),
                error=str(exc),
            )
            return None

        logger.info("vacation_reply_sent", to=sender, owner=owner, subject=str(reply["Subject"]))
        return reply
