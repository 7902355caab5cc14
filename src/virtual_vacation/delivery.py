"""Hand a composed reply to the next hop.

Three transports: a local relay binary (sendmail compatible), direct SMTP
to a fixed relay or the owner domain's MX, and a dry-run transport that
prints the message instead. None of them retries; the MTA that invoked us
owns retries.
"""

from __future__ import annotations

import smtplib
import ssl
import subprocess
import sys
from email.message import EmailMessage
from email.policy import SMTP
from typing import Protocol, TextIO

import dns.exception
import dns.resolver
import structlog

from virtual_vacation.config import Settings
from virtual_vacation.exceptions import DeliveryError

logger = structlog.get_logger()


class Transport(Protocol):
    """Something that can deliver one message."""

    def send(self, message: EmailMessage, from_addr: str, to_addr: str) -> None: ...


def resolve_mx(domain: str, timeout: float = 30.0) -> list[str]:
    """Return the mail exchangers of ``domain``, most preferred first.

    Raises:
        DeliveryError: If the lookup fails or yields no host.
    """

    try:
        answers = dns.resolver.resolve(domain, "MX", lifetime=timeout)
    except dns.exception.DNSException as exc:
        raise DeliveryError(f"Unable to find MX record for {domain}: {exc}") from exc

    records = sorted(answers, key=lambda r: r.preference)
    hosts = [r.exchange.to_text().rstrip(".") for r in records]
    hosts = [h for h in hosts if h]
    if not hosts:
        raise DeliveryError(f"No MX host for {domain}")
    return hosts


class SendmailTransport:
    """Pipe the message into a local relay binary."""

    def __init__(self, binary: str, timeout: float | None = None) -> None:
        self.binary = binary
        self.timeout = timeout

    def send(self, message: EmailMessage, from_addr: str, to_addr: str) -> None:
        cmd = [self.binary, "-f", from_addr, "--", to_addr]
        logger.info("delivering_via_sendmail", binary=self.binary, from_addr=from_addr, to=to_addr)
        try:
            result = subprocess.run(
                cmd,
                input=message.as_bytes(policy=SMTP),
                capture_output=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise DeliveryError(f"{self.binary} failed: {exc}") from exc

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise DeliveryError(f"{self.binary} exited with {result.returncode}: {stderr}")


class SMTPTransport:
    """Deliver over SMTP to a fixed relay, or to the MX of the owner's domain."""

    def __init__(self, settings: Settings, mx_lookup=resolve_mx) -> None:
        self.settings = settings
        self._mx_lookup = mx_lookup

    def relay_for(self, from_addr: str) -> str:
        """Host to connect to for a reply sent by ``from_addr``."""
        if self.settings.smtp_server:
            return self.settings.smtp_server

        _, sep, domain = from_addr.partition("@")
        if not sep or not domain:
            raise DeliveryError(f"Invalid email address: {from_addr}")
        host = self._mx_lookup(domain)[0]
        logger.debug("mx_found", host=host, owner=from_addr)
        return host

    def send(self, message: EmailMessage, from_addr: str, to_addr: str) -> None:
        s = self.settings
        host = self.relay_for(from_addr)
        port = s.smtp_server_port
        context = ssl.create_default_context()

        try:
            if s.smtp_ssl:
                srv: smtplib.SMTP = smtplib.SMTP_SSL(
                    host, port, local_hostname=s.smtp_helo, timeout=s.smtp_timeout, context=context
                )
            else:
                srv = smtplib.SMTP(host, port, local_hostname=s.smtp_helo, timeout=s.smtp_timeout)

            with srv:
                srv.ehlo_or_helo_if_needed()
                if s.smtp_starttls and not s.smtp_ssl:
                    srv.starttls(context=context)
                    srv.ehlo()
                if s.smtp_auth_id:
                    srv.login(s.smtp_auth_id, s.smtp_auth_pwd)
                srv.send_message(message, from_addr=from_addr, to_addrs=[to_addr])
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryError(f"SMTP delivery via {host}:{port} failed: {exc}") from exc

        logger.debug("smtp_delivered", host=host, port=port, to=to_addr)


class DryRunTransport:
    """Write the message to a stream instead of sending it."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream if stream is not None else sys.stdout

    def send(self, message: EmailMessage, from_addr: str, to_addr: str) -> None:
        logger.info("test_mode_reply_not_sent", from_addr=from_addr, to=to_addr)
        self.stream.write(message.as_string())
        self.stream.flush()


def select_transport(
    settings: Settings,
    test_mode: bool = False,
    stream: TextIO | None = None,
) -> Transport:
    """Pick the transport for this invocation."""

    if test_mode:
        return DryRunTransport(stream)
    if settings.sendmail_bin:
        return SendmailTransport(settings.sendmail_bin, timeout=settings.smtp_timeout)
    return SMTPTransport(settings)
