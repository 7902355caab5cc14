"""Storage interface shared by all directory backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from virtual_vacation.models import AliasRecord, NotificationLedgerEntry, VacationConfig


class DirectoryStore(ABC):
    """Point reads on the mail directory plus the notification ledger.

    Every method is a single statement executed in its own transaction.
    Driver errors are raised as :class:`~virtual_vacation.exceptions.StorageError`.
    """

    # Vacation

    @abstractmethod
    def has_active_vacation(self, email: str, now: datetime) -> bool:
        """Return True if ``email`` has an active vacation covering ``now``."""

    @abstractmethod
    def get_vacation(self, email: str) -> VacationConfig | None:
        """Load the vacation row of ``email``, active or not."""

    @abstractmethod
    def get_mailbox_name(self, email: str) -> str | None:
        """Display name of the mailbox, if any."""

    # Aliases

    @abstractmethod
    def get_alias(self, address: str) -> AliasRecord | None:
        """Load the active alias keyed by ``address`` (``@domain`` for wildcards)."""

    @abstractmethod
    def get_alias_domain_target(self, domain: str) -> str | None:
        """Target domain of an active alias domain."""

    # Ledger

    @abstractmethod
    def prune_notifications(self, on_vacation: str, notified: str) -> int:
        """Delete the ledger row if it predates the current activation start."""

    @abstractmethod
    def insert_notification(self, on_vacation: str, notified: str, now: datetime) -> bool:
        """Insert a ledger row.

        Returns:
            True if the row was created, False if the pair already exists.
        """

    @abstractmethod
    def get_notification(self, on_vacation: str, notified: str) -> NotificationLedgerEntry | None:
        """Load the ledger row for the pair."""

    @abstractmethod
    def touch_notification(
        self,
        on_vacation: str,
        notified: str,
        previous: datetime,
        now: datetime,
    ) -> bool:
        """Move the ledger timestamp from ``previous`` to ``now``.

        Returns:
            True if this call changed the row, False if another writer got there first.
        """

    def close(self) -> None:
        """Release backend resources."""
