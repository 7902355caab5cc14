"""Decide whether a sender is due for a vacation reply.

Several deliveries of the same message may run at once in separate
processes. The ledger's primary key on (owner, sender) is the only thing
serializing them: whoever inserts the row sends, everyone else reads the
winner's row and checks the re-notify interval.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

import structlog

from virtual_vacation.exceptions import StorageError
from virtual_vacation.store import DirectoryStore

logger = structlog.get_logger()


def _elapsed_seconds(now: datetime, then: datetime) -> float:
    # timestamptz columns come back aware, the clock is naive local time.
    if (now.tzinfo is None) != (then.tzinfo is None):
        now = now.astimezone() if now.tzinfo is None else now
        then = then.astimezone() if then.tzinfo is None else then
    return (now - then).total_seconds()


class NotificationGate:
    """At-most-one-reply-per-interval bookkeeping on the notification ledger."""

    def __init__(
        self,
        store: DirectoryStore,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._store = store
        self._clock = clock

    def should_notify(self, owner: str, sender: str) -> bool:
        """Return True if ``sender`` must be told that ``owner`` is away.

        A True result has already been recorded in the ledger. Storage
        problems always end in False: a missed reply is better than a flood.
        """

        now = self._clock()

        try:
            self._store.prune_notifications(owner, sender)
        except StorageError as exc:
            logger.error("notification_prune_failed", owner=owner, sender=sender, error=str(exc))
            return False

        try:
            inserted = self._store.insert_notification(owner, sender, now)
        except StorageError as exc:
            logger.error("notification_insert_failed", owner=owner, sender=sender, error=str(exc))
            return False

        if inserted:
            return True

        try:
            vacation = self._store.get_vacation(owner)
        except StorageError as exc:
            logger.error("notification_interval_lookup_failed", owner=owner, error=str(exc))
            return False

        interval = vacation.interval_time if vacation is not None else 0
        if interval == 0:
            logger.debug("already_notified", owner=owner, sender=sender)
            return False

        try:
            entry = self._store.get_notification(owner, sender)
        except StorageError as exc:
            logger.error("notification_lookup_failed", owner=owner, sender=sender, error=str(exc))
            return False

        if entry is None:
            # Swept or deleted by someone else between our insert and read.
            logger.debug("notification_row_vanished", owner=owner, sender=sender)
            return False

        elapsed = _elapsed_seconds(now, entry.notified_at)
        if elapsed < interval:
            logger.debug(
                "notification_interval_not_elapsed",
                owner=owner,
                sender=sender,
                elapsed=int(elapsed),
                interval=interval,
            )
            return False

        try:
            refreshed = self._store.touch_notification(owner, sender, entry.notified_at, now)
        except StorageError as exc:
            logger.error("notification_update_failed", owner=owner, sender=sender, error=str(exc))
            return False

        if refreshed:
            logger.info("notification_interval_elapsed", owner=owner, sender=sender)
        return refreshed
