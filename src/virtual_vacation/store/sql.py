"""SQLAlchemy-backed directory stores for PostgreSQL and MySQL/MariaDB.

The postfixadmin schema is owned by the admin application; these stores only
read it and write the notification ledger. Dialect differences (boolean
literals, the multi-table DELETE used by the ledger sweep and the way a
duplicate key is reported) live in the subclasses.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Mapping
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, Row
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from virtual_vacation.exceptions import StorageError
from virtual_vacation.models import AliasRecord, NotificationLedgerEntry, VacationConfig

from .base import DirectoryStore

logger = structlog.get_logger()


class SQLDirectoryStore(DirectoryStore):
    """Directory store on a SQL server reached through SQLAlchemy."""

    # SQL literal for a true boolean column value.
    true_literal = "TRUE"

    # Ledger sweep DELETE; the multi-table form differs per dialect.
    prune_sql: str

    def __init__(self, url: str | None = None, *, engine: Engine | None = None) -> None:
        """Create a store.

        Args:
            url: SQLAlchemy database URL.
            engine: Pre-built engine; takes precedence over ``url``.
        """

        if engine is None:
            if url is None:
                raise ValueError("either url or engine is required")
            engine = create_engine(url, pool_pre_ping=True)
        self._engine = engine

    def has_active_vacation(self, email: str, now: datetime) -> bool:
        row = self._fetchone(
            f"""
            SELECT COUNT(*) FROM vacation
            WHERE email = :email AND active = {self.true_literal}
            AND activefrom <= :now AND activeuntil >= :now
            """,
            {"email": email, "now": now},
        )
        return bool(row and row[0])

    def get_vacation(self, email: str) -> VacationConfig | None:
        row = self._fetchone(
            """
            SELECT email, subject, body, activefrom, activeuntil, interval_time, active
            FROM vacation WHERE email = :email
            """,
            {"email": email},
        )
        if row is None:
            return None
        m = row._mapping
        return VacationConfig(
            email=m["email"],
            subject=m["subject"] or "",
            body=m["body"] or "",
            activefrom=m["activefrom"],
            activeuntil=m["activeuntil"],
            interval_time=int(m["interval_time"] or 0),
            active=bool(m["active"]),
        )

    def get_mailbox_name(self, email: str) -> str | None:
        row = self._fetchone(
            "SELECT name FROM mailbox WHERE username = :email",
            {"email": email},
        )
        return None if row is None else row[0]

    def get_alias(self, address: str) -> AliasRecord | None:
        row = self._fetchone(
            f"""
            SELECT address, goto, domain FROM alias
            WHERE address = :address AND active = {self.true_literal}
            """,
            {"address": address},
        )
        if row is None:
            return None
        m = row._mapping
        return AliasRecord(
            address=m["address"],
            goto=AliasRecord.split_goto(m["goto"]),
            domain=m["domain"] or "",
        )

    def get_alias_domain_target(self, domain: str) -> str | None:
        row = self._fetchone(
            f"""
            SELECT target_domain FROM alias_domain
            WHERE alias_domain = :domain AND active = {self.true_literal}
            """,
            {"domain": domain},
        )
        return None if row is None else row[0]

    def prune_notifications(self, on_vacation: str, notified: str) -> int:
        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    text(self.prune_sql),
                    {"on_vacation": on_vacation, "notified": notified},
                )
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        return result.rowcount

    def insert_notification(self, on_vacation: str, notified: str, now: datetime) -> bool:
        query = text(
            """
            INSERT INTO vacation_notification (on_vacation, notified, notified_at)
            VALUES (:on_vacation, :notified, :now)
            """
        )
        try:
            with self._engine.begin() as conn:
                conn.execute(query, {"on_vacation": on_vacation, "notified": notified, "now": now})
        except IntegrityError as exc:
            if self.is_duplicate_key(exc):
                return False
            raise StorageError(str(exc)) from exc
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        return True

    def get_notification(self, on_vacation: str, notified: str) -> NotificationLedgerEntry | None:
        row = self._fetchone(
            """
            SELECT on_vacation, notified, notified_at FROM vacation_notification
            WHERE on_vacation = :on_vacation AND notified = :notified
            """,
            {"on_vacation": on_vacation, "notified": notified},
        )
        if row is None:
            return None
        m = row._mapping
        return NotificationLedgerEntry(
            on_vacation=m["on_vacation"],
            notified=m["notified"],
            notified_at=m["notified_at"],
        )

    def touch_notification(
        self,
        on_vacation: str,
        notified: str,
        previous: datetime,
        now: datetime,
    ) -> bool:
        query = text(
            """
            UPDATE vacation_notification SET notified_at = :now
            WHERE on_vacation = :on_vacation AND notified = :notified
            AND notified_at = :previous
            """
        )
        params = {"on_vacation": on_vacation, "notified": notified, "previous": previous, "now": now}
        try:
            with self._engine.begin() as conn:
                result = conn.execute(query, params)
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        return result.rowcount == 1

    def close(self) -> None:
        self._engine.dispose()

    @abstractmethod
    def is_duplicate_key(self, exc: IntegrityError) -> bool:
        """Whether ``exc`` reports a primary key / unique violation."""

    def _fetchone(self, sql: str, params: Mapping[str, Any]) -> Row | None:
        try:
            with self._engine.begin() as conn:
                return conn.execute(text(sql), params).fetchone()
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc


class PostgresDirectoryStore(SQLDirectoryStore):
    """PostgreSQL flavour of the directory store."""

    true_literal = "TRUE"

    prune_sql = """
        DELETE FROM vacation_notification USING vacation
        WHERE vacation.email = vacation_notification.on_vacation
        AND on_vacation = :on_vacation AND notified = :notified
        AND notified_at < vacation.activefrom
    """

    def is_duplicate_key(self, exc: IntegrityError) -> bool:
        # 23505 = unique_violation
        code = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
        if code is not None:
            return code == "23505"
        return "_pkey" in str(exc.orig)


class MySQLDirectoryStore(SQLDirectoryStore):
    """MySQL / MariaDB flavour of the directory store."""

    true_literal = "1"

    prune_sql = """
        DELETE vacation_notification.* FROM vacation_notification
        LEFT JOIN vacation ON vacation.email = vacation_notification.on_vacation
        WHERE on_vacation = :on_vacation AND notified = :notified
        AND notified_at < vacation.activefrom
    """

    def is_duplicate_key(self, exc: IntegrityError) -> bool:
        # ER_DUP_ENTRY
        args = getattr(exc.orig, "args", ())
        if args and isinstance(args[0], int):
            return args[0] == 1062
        return "Duplicate entry" in str(exc.orig)
