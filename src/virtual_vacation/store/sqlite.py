"""SQLite-backed directory store.

Uses the postfixadmin table layout so a single-host installation (or a test
suite) can run the engine without a database server. Every statement runs in
autocommit mode on its own connection, so concurrent processes serialize on
SQLite's database lock and the ledger primary key.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

import structlog

from virtual_vacation.exceptions import StorageError
from virtual_vacation.models import AliasRecord, NotificationLedgerEntry, VacationConfig

from .base import DirectoryStore

logger = structlog.get_logger()


_SCHEMA_VERSION = 1

_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_timestamp(value: datetime) -> str:
    """Render a datetime the way timestamps are stored in SQLite."""
    return value.strftime(_TIMESTAMP_FORMAT)


def _is_duplicate(exc: sqlite3.IntegrityError) -> bool:
    return "UNIQUE constraint failed" in str(exc)


class SQLiteDirectoryStore(DirectoryStore):
    """Directory store on a local SQLite database file."""

    def __init__(self, db_path: Path, timeout: float = 30.0) -> None:
        """Create a store.

        Args:
            db_path: Path to the SQLite database file.
            timeout: Seconds to wait for a lock held by another process.
        """

        self._db_path = db_path
        self._timeout = timeout

    def initialize(self) -> None:
        """Create the directory schema if it does not exist yet."""

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL;")

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS _schema_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )

            current_version = self._get_schema_version(conn)
            if current_version is None:
                self._create_schema_v1(conn)
                self._set_schema_version(conn, _SCHEMA_VERSION)
                logger.info("directory_schema_created", version=_SCHEMA_VERSION)
                return

            if current_version != _SCHEMA_VERSION:
                raise StorageError(
                    f"Unsupported schema version {current_version}; expected {_SCHEMA_VERSION}"
                )

    def has_active_vacation(self, email: str, now: datetime) -> bool:
        ts = format_timestamp(now)
        row = self._fetchone(
            """
            SELECT COUNT(*) FROM vacation
            WHERE email = ? AND active = 1 AND activefrom <= ? AND activeuntil >= ?;
            """,
            (email, ts, ts),
        )
        return bool(row and row[0])

    def get_vacation(self, email: str) -> VacationConfig | None:
        row = self._fetchone(
            """
            SELECT email, subject, body, activefrom, activeuntil, interval_time, active
            FROM vacation WHERE email = ?;
            """,
            (email,),
        )
        if row is None:
            return None
        return VacationConfig(
            email=row["email"],
            subject=row["subject"] or "",
            body=row["body"] or "",
            activefrom=row["activefrom"],
            activeuntil=row["activeuntil"],
            interval_time=int(row["interval_time"] or 0),
            active=bool(row["active"]),
        )

    def get_mailbox_name(self, email: str) -> str | None:
        row = self._fetchone("SELECT name FROM mailbox WHERE username = ?;", (email,))
        return row["name"] if row else None

    def get_alias(self, address: str) -> AliasRecord | None:
        row = self._fetchone(
            "SELECT address, goto, domain FROM alias WHERE address = ? AND active = 1;",
            (address,),
        )
        if row is None:
            return None
        return AliasRecord(
            address=row["address"],
            goto=AliasRecord.split_goto(row["goto"]),
            domain=row["domain"] or "",
        )

    def get_alias_domain_target(self, domain: str) -> str | None:
        row = self._fetchone(
            "SELECT target_domain FROM alias_domain WHERE alias_domain = ? AND active = 1;",
            (domain,),
        )
        return row["target_domain"] if row else None

    def prune_notifications(self, on_vacation: str, notified: str) -> int:
        with self._connect() as conn:
            try:
                cursor = conn.execute(
                    """
                    DELETE FROM vacation_notification
                    WHERE on_vacation = ? AND notified = ?
                    AND notified_at < (SELECT activefrom FROM vacation WHERE email = ?);
                    """,
                    (on_vacation, notified, on_vacation),
                )
            except sqlite3.Error as exc:
                raise StorageError(str(exc)) from exc
            return cursor.rowcount

    def insert_notification(self, on_vacation: str, notified: str, now: datetime) -> bool:
        with self._connect() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO vacation_notification (on_vacation, notified, notified_at)
                    VALUES (?, ?, ?);
                    """,
                    (on_vacation, notified, format_timestamp(now)),
                )
            except sqlite3.IntegrityError as exc:
                if _is_duplicate(exc):
                    return False
                raise StorageError(str(exc)) from exc
            except sqlite3.Error as exc:
                raise StorageError(str(exc)) from exc
        return True

    def get_notification(self, on_vacation: str, notified: str) -> NotificationLedgerEntry | None:
        row = self._fetchone(
            """
            SELECT on_vacation, notified, notified_at FROM vacation_notification
            WHERE on_vacation = ? AND notified = ?;
            """,
            (on_vacation, notified),
        )
        if row is None:
            return None
        try:
            notified_at = datetime.fromisoformat(row["notified_at"])
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Unreadable notified_at {row['notified_at']!r}") from exc
        return NotificationLedgerEntry(
            on_vacation=row["on_vacation"],
            notified=row["notified"],
            notified_at=notified_at,
        )

    def touch_notification(
        self,
        on_vacation: str,
        notified: str,
        previous: datetime,
        now: datetime,
    ) -> bool:
        with self._connect() as conn:
            try:
                cursor = conn.execute(
                    """
                    UPDATE vacation_notification SET notified_at = ?
                    WHERE on_vacation = ? AND notified = ? AND notified_at = ?;
                    """,
                    (format_timestamp(now), on_vacation, notified, format_timestamp(previous)),
                )
            except sqlite3.Error as exc:
                raise StorageError(str(exc)) from exc
            return cursor.rowcount == 1

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self._db_path, timeout=self._timeout, isolation_level=None)
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open {self._db_path}: {exc}") from exc
        try:
            conn.row_factory = sqlite3.Row
            yield conn
        finally:
            conn.close()

    def _fetchone(self, sql: str, params: tuple) -> sqlite3.Row | None:
        with self._connect() as conn:
            try:
                return conn.execute(sql, params).fetchone()
            except sqlite3.Error as exc:
                raise StorageError(str(exc)) from exc

    def _get_schema_version(self, conn: sqlite3.Connection) -> int | None:
        row = conn.execute(
            "SELECT value FROM _schema_meta WHERE key = 'schema_version'"
        ).fetchone()
        if row is None:
            return None
        return int(row[0])

    def _set_schema_version(self, conn: sqlite3.Connection, version: int) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO _schema_meta(key, value) VALUES('schema_version', ?) ",
            (str(version),),
        )

    def _create_schema_v1(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS vacation (
                email TEXT PRIMARY KEY,
                subject TEXT NOT NULL DEFAULT '',
                body TEXT NOT NULL DEFAULT '',
                cache TEXT NOT NULL DEFAULT '',
                domain TEXT NOT NULL DEFAULT '',
                created TEXT NOT NULL DEFAULT '2000-01-01 00:00:00',
                active INTEGER NOT NULL DEFAULT 1,
                modified TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                activefrom TEXT NOT NULL DEFAULT '2000-01-01 00:00:00',
                activeuntil TEXT NOT NULL DEFAULT '2000-01-01 00:00:00',
                interval_time INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS vacation_notification (
                on_vacation TEXT NOT NULL,
                notified TEXT NOT NULL,
                notified_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (on_vacation, notified)
            );

            CREATE TABLE IF NOT EXISTS alias (
                address TEXT PRIMARY KEY,
                goto TEXT NOT NULL,
                domain TEXT NOT NULL DEFAULT '',
                created TEXT NOT NULL DEFAULT '2000-01-01 00:00:00',
                modified TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                active INTEGER NOT NULL DEFAULT 1
            );

            CREATE INDEX IF NOT EXISTS idx_alias_domain ON alias(domain);

            CREATE TABLE IF NOT EXISTS alias_domain (
                alias_domain TEXT PRIMARY KEY,
                target_domain TEXT NOT NULL,
                created TEXT NOT NULL DEFAULT '2000-01-01 00:00:00',
                modified TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                active INTEGER NOT NULL DEFAULT 1
            );

            CREATE INDEX IF NOT EXISTS idx_alias_domain_target ON alias_domain(target_domain);

            CREATE TABLE IF NOT EXISTS mailbox (
                username TEXT PRIMARY KEY,
                name TEXT NOT NULL DEFAULT '',
                domain TEXT NOT NULL DEFAULT '',
                active INTEGER NOT NULL DEFAULT 1
            );
            """
        )
