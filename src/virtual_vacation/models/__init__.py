"""Data models for Virtual Vacation.

This module contains Pydantic models mirroring the directory tables the
engine reads and the ledger it writes.
"""

from datetime import date, datetime
from typing import Union

from pydantic import BaseModel, Field

from .message_headers import MessageHeaders

# Drivers hand back datetimes; SQLite hands back the stored text.
StoredDate = Union[datetime, date, str]


class VacationConfig(BaseModel):
    """Out-of-office configuration of a mailbox."""

    email: str = Field(description="Owner mailbox address")
    subject: str = Field(default="", description="Reply subject, may contain $SUBJECT")
    body: str = Field(default="", description="Reply body, may contain date placeholders")
    activefrom: StoredDate = Field(description="Start of the active window")
    activeuntil: StoredDate = Field(description="End of the active window")
    interval_time: int = Field(
        default=0,
        ge=0,
        description="Seconds between two replies to the same sender, 0 = only once",
    )
    active: bool = Field(default=True, description="Whether the vacation is switched on")


class AliasRecord(BaseModel):
    """A forwarding alias."""

    address: str = Field(description="Source address, or @domain for a wildcard")
    goto: list[str] = Field(default_factory=list, description="Destinations in stored order")
    domain: str = Field(default="", description="Owning domain")
    active: bool = Field(default=True, description="Whether the alias is in use")

    @classmethod
    def split_goto(cls, value: str | None) -> list[str]:
        """Split the comma-separated goto column into lower-cased addresses."""
        if not value:
            return []
        return [part.strip().lower() for part in value.split(",") if part.strip()]


class AliasDomainRecord(BaseModel):
    """Maps every address of one domain onto another domain."""

    alias_domain: str = Field(description="Aliased domain")
    target_domain: str = Field(description="Domain the traffic belongs to")
    active: bool = Field(default=True, description="Whether the mapping is in use")


class NotificationLedgerEntry(BaseModel):
    """Last time a sender was told that an owner is away."""

    on_vacation: str = Field(description="Vacation owner address")
    notified: str = Field(description="Original sender address")
    notified_at: datetime = Field(description="Time of the last reply")


__all__ = [
    "AliasDomainRecord",
    "AliasRecord",
    "MessageHeaders",
    "NotificationLedgerEntry",
    "StoredDate",
    "VacationConfig",
]
