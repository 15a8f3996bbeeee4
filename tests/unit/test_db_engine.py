"""Unit tests for database URL building and engine creation."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from iplog.db.engine import _connect_args, build_url, create_engine_from_settings, detect_driver_support
from iplog.exceptions import ConfigurationError
from iplog.settings import DatabaseSettings


class TestBuildUrl:
    """Test build_url."""

    def test_explicit_url_wins(self) -> None:
        """The url field is used as given when it names a driver."""
        settings = DatabaseSettings(url="postgresql+psycopg://u:p@db/iplog", dialect="mysql", host="ignored")

        assert build_url(settings).render_as_string(hide_password=False) == "postgresql+psycopg://u:p@db/iplog"

    @pytest.mark.parametrize(
        ("raw", "driver"),
        [
            ("postgresql://u@db/iplog", "postgresql+psycopg"),
            ("postgres://u@db/iplog", "postgresql+psycopg"),
            ("mysql://u@db/iplog", "mysql+pymysql"),
            ("sqlite:///data/iplog.sqlite", "sqlite"),
        ],
    )
    def test_bare_schemes_are_pinned_to_drivers(self, raw: str, driver: str) -> None:
        """Bare dialect schemes get the supported driver."""
        assert build_url(DatabaseSettings(url=raw)).drivername == driver

    def test_discrete_fields(self) -> None:
        """Without a url the discrete parameters are assembled."""
        settings = DatabaseSettings(
            dialect="mysql", host="db.internal", port=3307, database="logs", username="iplog", password="s3cret"
        )

        url = build_url(settings)

        assert url.drivername == "mysql+pymysql"
        assert (url.host, url.port, url.database, url.username, url.password) == (
            "db.internal",
            3307,
            "logs",
            "iplog",
            "s3cret",
        )

    def test_sqlite_discrete_fields_use_database_as_path(self) -> None:
        """For SQLite the database field is the file path."""
        url = build_url(DatabaseSettings(dialect="sqlite", database="/var/lib/iplog.sqlite"))

        assert url.drivername == "sqlite"
        assert url.database == "/var/lib/iplog.sqlite"

    @pytest.mark.parametrize("raw", ["oracle://u@db/x", "not a url"])
    def test_unsupported_urls_raise(self, raw: str) -> None:
        """Unknown dialects and garbage raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            build_url(DatabaseSettings(url=raw))


class TestConnectArgs:
    """Test per-dialect connect arguments."""

    def test_postgresql_tls_and_timeout(self) -> None:
        """PostgreSQL gets sslmode=require when TLS is on."""
        settings = DatabaseSettings(url="postgresql://u@db/iplog", ssl=True, connect_timeout=12)

        args = _connect_args(build_url(settings), settings)

        assert args == {"connect_timeout": 12, "sslmode": "require"}

    def test_mysql_tls_and_charset(self) -> None:
        """MySQL gets an ssl mapping and utf8mb4."""
        settings = DatabaseSettings(url="mysql://u@db/iplog", ssl=True)

        args = _connect_args(build_url(settings), settings)

        assert args["ssl"] == {"check_hostname": False}
        assert args["charset"] == "utf8mb4"

    def test_sqlite_allows_cross_thread_use(self, tmp_path: Path) -> None:
        """Pooled SQLite connections are handed between threads."""
        settings = DatabaseSettings(url=f"sqlite:///{tmp_path / 'x.sqlite'}")

        args = _connect_args(build_url(settings), settings)

        assert args["check_same_thread"] is False


class TestCreateEngine:
    """Test create_engine_from_settings."""

    @pytest.mark.parametrize("wal", [True, False])
    def test_sqlite_engine_pragmas(self, tmp_path: Path, wal: bool) -> None:
        """SQLite engines apply the configured PRAGMAs on connect."""
        settings = DatabaseSettings(
            url=f"sqlite:///{tmp_path / 'engine.sqlite'}",
            sqlite_wal=wal,
            sqlite_cache_size=-1024,
            sqlite_busy_timeout=1234,
        )

        engine = create_engine_from_settings(settings)

        with engine.connect() as conn:
            journal_mode = conn.exec_driver_sql("PRAGMA journal_mode").scalar_one()
            assert (journal_mode.lower() == "wal") is wal
            assert conn.exec_driver_sql("PRAGMA cache_size").scalar_one() == -1024
            assert conn.exec_driver_sql("PRAGMA busy_timeout").scalar_one() == 1234
            assert conn.exec_driver_sql("PRAGMA foreign_keys").scalar_one() == 1
        engine.dispose()

    @pytest.mark.parametrize("raw", ["sqlite://", "sqlite:///:memory:"])
    def test_in_memory_sqlite_rejected(self, raw: str) -> None:
        """Pooled connections cannot share an in-memory database."""
        with pytest.raises(ConfigurationError):
            create_engine_from_settings(DatabaseSettings(url=raw))

    def test_missing_driver_is_configuration_error(self) -> None:
        """A dialect whose driver is not installed is rejected up front."""
        with patch("iplog.db.engine.detect_driver_support", return_value=False):
            with pytest.raises(ConfigurationError, match="driver not installed"):
                create_engine_from_settings(DatabaseSettings(url="postgresql://u@db/iplog"))

    def test_detect_driver_support(self) -> None:
        """sqlite3 is always available; unknown dialects are not."""
        assert detect_driver_support("sqlite") is True
        assert detect_driver_support("oracle") is False
