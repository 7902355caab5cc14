"""Directory store access.

One implementation per database backend, selected from the configured
database URL.
"""

from __future__ import annotations

from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from virtual_vacation.config import Settings
from virtual_vacation.exceptions import ConfigurationError

from .base import DirectoryStore
from .sql import MySQLDirectoryStore, PostgresDirectoryStore, SQLDirectoryStore
from .sqlite import SQLiteDirectoryStore

_BACKENDS: dict[str, type[SQLDirectoryStore]] = {
    "postgresql": PostgresDirectoryStore,
    "mysql": MySQLDirectoryStore,
    "mariadb": MySQLDirectoryStore,
}


def open_store(settings: Settings) -> DirectoryStore:
    """Build the directory store configured by ``settings.database_url``.

    Raises:
        ConfigurationError: If the URL cannot be parsed or names an unknown backend.
    """

    try:
        url = make_url(settings.database_url)
    except ArgumentError as exc:
        raise ConfigurationError(f"Invalid database_url: {exc}") from exc

    backend = url.get_backend_name()
    if backend == "sqlite":
        if not url.database:
            raise ConfigurationError("sqlite database_url needs a file path")
        return SQLiteDirectoryStore(Path(url.database), timeout=settings.sqlite_timeout)

    store_cls = _BACKENDS.get(backend)
    if store_cls is None:
        raise ConfigurationError(f"Unsupported database backend: {backend}")

    try:
        return store_cls(url.render_as_string(hide_password=False))
    except (ArgumentError, ImportError) as exc:
        raise ConfigurationError(f"Cannot set up {backend} store: {exc}") from exc


__all__ = [
    "DirectoryStore",
    "MySQLDirectoryStore",
    "PostgresDirectoryStore",
    "SQLDirectoryStore",
    "SQLiteDirectoryStore",
    "open_store",
]
