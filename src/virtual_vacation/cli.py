"""Command-line interface for Virtual Vacation.

The MTA pipes each message to this command:

    vacation -f sender@example.com [-t] recipient@example.com < message
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import BinaryIO

import structlog
from pydantic import ValidationError

from virtual_vacation import __version__
from virtual_vacation.config import Settings, get_settings
from virtual_vacation.delivery import select_transport
from virtual_vacation.engine import VacationEngine
from virtual_vacation.exceptions import (
    AliasLoopError,
    ConfigurationError,
    ReplySuppressed,
    StorageError,
)
from virtual_vacation.message import iter_header_lines
from virtual_vacation.store import open_store

logger = structlog.get_logger()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vacation",
        description="Send out-of-office replies for mailboxes on vacation",
    )
    parser.add_argument(
        "-f",
        dest="sender",
        required=True,
        help="SMTP envelope sender",
    )
    parser.add_argument(
        "-t",
        "--test",
        action="store_true",
        help="Test mode: print the reply instead of sending it",
    )
    parser.add_argument("recipient", help="SMTP envelope recipient")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _stderr_logger(*args) -> structlog.PrintLogger:
    return structlog.PrintLogger(file=sys.stderr)


def configure_logging(settings: Settings) -> None:
    """Send structured logs to stderr; stdout is reserved for test mode output.

    The stream is looked up on every call so a replaced ``sys.stderr`` is honoured.
    """
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level, logging.INFO)
        ),
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )


def main(args: list[str] | None = None, stdin: BinaryIO | None = None) -> int:
    """Main entry point for the vacation command.

    Args:
        args: Command-line arguments. If None, uses sys.argv.
        stdin: Raw message stream. If None, uses the process stdin.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    if args is None:
        args = sys.argv[1:]

    parsed = _build_parser().parse_args(args)

    try:
        settings = get_settings()
    except ValidationError as exc:
        print(f"vacation: invalid configuration: {exc}", file=sys.stderr)
        return 1

    configure_logging(settings)
    logger.debug(
        "vacation_started",
        version=__version__,
        smtp_sender=parsed.sender,
        smtp_recipient=parsed.recipient,
        test_mode=parsed.test,
    )

    raw = stdin if stdin is not None else sys.stdin.buffer

    try:
        store = open_store(settings)
    except ConfigurationError as exc:
        logger.error("store_configuration_invalid", error=str(exc))
        return 1

    try:
        engine = VacationEngine(store, select_transport(settings, parsed.test), settings=settings)
        engine.process(iter_header_lines(raw), parsed.sender, parsed.recipient)
    except ReplySuppressed as exc:
        logger.debug("reply_suppressed", reason=exc.reason)
        return 0
    except AliasLoopError as exc:
        logger.error("alias_loop", error=str(exc))
        return 1
    except StorageError as exc:
        logger.error("storage_unavailable", error=str(exc))
        return 1
    finally:
        store.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
