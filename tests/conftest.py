"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path

import pytest
import structlog

from virtual_vacation.store.sqlite import SQLiteDirectoryStore, format_timestamp

NOW = datetime(2024, 5, 20, 12, 0, 0)


class FakeClock:
    """A clock tests can move forward."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class Directory:
    """Writes directory rows the way the admin application would."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    def _execute(self, sql: str, params: tuple) -> None:
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute(sql, params)
            conn.commit()
        finally:
            conn.close()

    def add_vacation(
        self,
        email: str,
        subject: str = "Out of office: $SUBJECT",
        body: str = "I am away until <%Until_Date>.",
        activefrom: datetime | str = datetime(2024, 5, 1),
        activeuntil: datetime | str = datetime(2024, 6, 1),
        interval_time: int = 0,
        active: bool = True,
    ) -> None:
        if isinstance(activefrom, datetime):
            activefrom = format_timestamp(activefrom)
        if isinstance(activeuntil, datetime):
            activeuntil = format_timestamp(activeuntil)
        self._execute(
            """
            INSERT INTO vacation (email, subject, body, domain, activefrom, activeuntil,
                                  interval_time, active)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                email,
                subject,
                body,
                email.partition("@")[2],
                activefrom,
                activeuntil,
                interval_time,
                1 if active else 0,
            ),
        )

    def add_alias(self, address: str, goto: str, active: bool = True) -> None:
        self._execute(
            "INSERT INTO alias (address, goto, domain, active) VALUES (?, ?, ?, ?)",
            (address, goto, address.partition("@")[2], 1 if active else 0),
        )

    def add_alias_domain(self, alias_domain: str, target_domain: str, active: bool = True) -> None:
        self._execute(
            "INSERT INTO alias_domain (alias_domain, target_domain, active) VALUES (?, ?, ?)",
            (alias_domain, target_domain, 1 if active else 0),
        )

    def add_mailbox(self, username: str, name: str) -> None:
        self._execute(
            "INSERT INTO mailbox (username, name, domain) VALUES (?, ?, ?)",
            (username, name, username.partition("@")[2]),
        )

    def add_notification(self, on_vacation: str, notified: str, notified_at: datetime) -> None:
        self._execute(
            "INSERT INTO vacation_notification (on_vacation, notified, notified_at) VALUES (?, ?, ?)",
            (on_vacation, notified, format_timestamp(notified_at)),
        )

    def notifications(self) -> list[tuple[str, str, str]]:
        conn = sqlite3.connect(self.db_path)
        try:
            return conn.execute(
                "SELECT on_vacation, notified, notified_at FROM vacation_notification "
                "ORDER BY on_vacation, notified"
            ).fetchall()
        finally:
            conn.close()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "directory.sqlite3"


@pytest.fixture
def store(db_path: Path) -> SQLiteDirectoryStore:
    """An initialized, empty SQLite directory store."""
    s = SQLiteDirectoryStore(db_path)
    s.initialize()
    return s


@pytest.fixture
def directory(store: SQLiteDirectoryStore, db_path: Path) -> Directory:
    return Directory(db_path)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture
def settings(db_path: Path):
    """Settings pointing at the test database, independent of the environment."""
    from virtual_vacation.config import Settings

    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{db_path}",
        vacation_domain="autoreply.example.org",
        smtp_server="localhost",
        log_level="DEBUG",
    )


@pytest.fixture
def sample_headers() -> str:
    """Header block of an ordinary personal message."""
    return (
        "Return-Path: <alice@example.net>\n"
        "From: Alice Example <alice@example.net>\n"
        "To: User <user@example.org>\n"
        "Subject: Lunch on\n"
        " Friday?\n"
        "Message-ID: <msg-1@example.net>\n"
        "Date: Mon, 20 May 2024 11:58:00 +0200\n"
        "\n"
        "Are you free?\n"
    )


@pytest.fixture(autouse=True)
def _reset_logging():
    """Undo structlog configuration done by the command under test."""
    from virtual_vacation.cli import _stderr_logger

    structlog.reset_defaults()
    structlog.configure(logger_factory=_stderr_logger)
    yield
    structlog.reset_defaults()
