"""Engine helpers for the relational storage backend."""

from __future__ import annotations

import importlib
import logging
import sqlite3
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.pool import NullPool

from ..exceptions import ConfigurationError
from ..settings import DatabaseSettings

logger = logging.getLogger(__name__)

DRIVERS = {
    "postgresql": "postgresql+psycopg",
    "mysql": "mysql+pymysql",
    "sqlite": "sqlite",
}

_DRIVER_MODULES = {
    "postgresql": "psycopg",
    "mysql": "pymysql",
    "sqlite": "sqlite3",
}

_INSTALL_HINTS = {
    "postgresql": "pip install 'iplog[postgres]'",
    "mysql": "pip install 'iplog[mysql]'",
}

_SQLITE_MEMORY_IDENTIFIERS = {"", ":memory:", "file::memory:"}


def detect_driver_support(dialect: str) -> bool:
    """Detect if the DB-API driver for ``dialect`` is importable.

    Returns:
        True if the driver is installed, False otherwise.
    """
    module = _DRIVER_MODULES.get(dialect)
    if module is None:
        return False
    try:
        importlib.import_module(module)
        return True
    except ImportError:
        return False


def build_url(settings: DatabaseSettings) -> URL:
    """Return the SQLAlchemy URL for ``settings``.

    An explicit ``url`` wins; bare ``postgresql://``/``postgres://`` and
    ``mysql://`` schemes are pinned to the psycopg and PyMySQL drivers.

    Raises:
        ConfigurationError: If the URL cannot be parsed or names an unsupported dialect
    """
    if settings.url:
        try:
            url = make_url(settings.url)
        except ArgumentError as exc:
            raise ConfigurationError(f"invalid database url: {exc}") from exc
        backend = url.get_backend_name()
        if backend == "postgres":
            backend = "postgresql"
        if backend not in DRIVERS:
            raise ConfigurationError(f"unsupported database dialect {backend!r}")
        if "+" not in url.drivername:
            url = url.set(drivername=DRIVERS[backend])
        elif backend == "postgresql" and url.get_backend_name() == "postgres":
            url = url.set(drivername=f"postgresql+{url.get_driver_name()}")
        return url

    if settings.dialect not in DRIVERS:
        raise ConfigurationError(f"unsupported database dialect {settings.dialect!r}")

    if settings.dialect == "sqlite":
        return URL.create(DRIVERS["sqlite"], database=settings.database)

    return URL.create(
        DRIVERS[settings.dialect],
        username=settings.username,
        password=settings.password,
        host=settings.host,
        port=settings.port,
        database=settings.database,
    )


def _is_memory_database(url: URL) -> bool:
    if url.get_backend_name() != "sqlite":
        return False
    database = url.database or ""
    return database in _SQLITE_MEMORY_IDENTIFIERS or "mode=memory" in database or url.query.get("mode") == "memory"


def _connect_args(url: URL, settings: DatabaseSettings) -> dict[str, Any]:
    backend = url.get_backend_name()
    connect_args: dict[str, Any] = {}
    if backend == "sqlite":
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = settings.connect_timeout
    elif backend == "postgresql":
        connect_args["connect_timeout"] = settings.connect_timeout
        if settings.ssl:
            connect_args["sslmode"] = "require"
    elif backend == "mysql":
        connect_args["connect_timeout"] = settings.connect_timeout
        connect_args["charset"] = "utf8mb4"
        if settings.ssl:
            connect_args["ssl"] = {"check_hostname": False}
    return connect_args


def _sqlite_on_connect(settings: DatabaseSettings):
    def configure(dbapi_connection: sqlite3.Connection, _: Any) -> None:
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute(f"PRAGMA busy_timeout={int(settings.sqlite_busy_timeout)}")
            if settings.sqlite_wal:
                try:
                    cursor.execute("PRAGMA journal_mode=WAL")
                    cursor.fetchone()
                except sqlite3.DatabaseError as exc:
                    logger.warning(f"Could not enable SQLite WAL mode: {exc}")
            cursor.execute(f"PRAGMA synchronous={settings.sqlite_synchronous}")
            cursor.execute(f"PRAGMA cache_size={int(settings.sqlite_cache_size)}")
            cursor.execute("PRAGMA foreign_keys=ON")
        finally:
            cursor.close()

    return configure


def create_engine_from_settings(settings: DatabaseSettings) -> Engine:
    """Create a SQLAlchemy engine configured for the target backend.

    The engine does not pool connections; reuse is the job of
    :class:`iplog.db.pool.ConnectionPool`.

    Raises:
        ConfigurationError: If the URL is invalid, points at an in-memory
            SQLite database, or the driver is not installed
    """
    url = build_url(settings)
    backend = url.get_backend_name()

    if _is_memory_database(url):
        raise ConfigurationError("in-memory SQLite cannot be shared by pooled connections; use a file path")

    if not detect_driver_support(backend):
        hint = _INSTALL_HINTS.get(backend, "install the database driver")
        raise ConfigurationError(f"{backend} driver not installed. Install with: {hint}")

    engine = create_engine(
        url,
        echo=settings.echo,
        poolclass=NullPool,
        connect_args=_connect_args(url, settings),
    )
    if backend == "sqlite":
        event.listen(engine, "connect", _sqlite_on_connect(settings))

    logger.debug(f"Created {backend} engine for {url.render_as_string(hide_password=True)}")
    return engine


__all__ = ["DRIVERS", "build_url", "create_engine_from_settings", "detect_driver_support"]
