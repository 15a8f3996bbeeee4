"""Runtime configuration for the address tracker."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .exceptions import ConfigurationError
from .history.policy import DEFAULT_MAX_HISTORY_SIZE

_DEFAULT_DATA_FILE = Path("data") / "iplog.json"
_DEFAULT_LOOKUP_URL = "https://api.ipplus360.com/ip/geo/v1/street/biz/"
_STORAGE_TYPES = {"file", "relational"}
_DIALECTS = {"postgresql", "mysql", "sqlite"}
_LOOKUP_PROVIDERS = {"http", "maxmind"}
_TABLE_PREFIX_PATTERN = re.compile(r"^[A-Za-z0-9_]*$")


def _coerce_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "f", "no", "n", "off"}:
        return False
    return default


def _coerce_int(value: Any, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return default


def _coerce_float(value: Any, default: float) -> float:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError:
        return default


def _coerce_str(value: Any, default: str | None) -> str | None:
    if value is None:
        return default
    text = str(value).strip()
    return text if text else default


def _section(config: Mapping[str, Any] | None, name: str) -> dict[str, Any]:
    if not config:
        return {}
    section = config.get(name)
    if section is None:
        return {}
    if not isinstance(section, Mapping):
        raise ConfigurationError(f"configuration section [{name}] must be a table")
    return {key: value for key, value in section.items() if value is not None}


@dataclass(slots=True)
class DatabaseSettings:
    """Connection parameters for the relational storage backend.

    ``url`` wins over the discrete fields when set.
    """

    url: str | None = None
    dialect: str = "postgresql"
    host: str = "localhost"
    port: int | None = None
    database: str = "iplog"
    username: str | None = None
    password: str | None = None
    table_prefix: str = "iplog_"
    ssl: bool = False
    pool_size: int = 5
    pool_timeout: float = 5.0
    connect_timeout: int = 30
    echo: bool = False
    sqlite_wal: bool = True
    sqlite_cache_size: int = -64000
    sqlite_synchronous: str = "NORMAL"
    sqlite_busy_timeout: int = 5000

    @classmethod
    def from_sources(
        cls,
        config: Mapping[str, Any] | None = None,
        env_prefix: str = "IPLOG_",
    ) -> DatabaseSettings:
        """Build settings from defaults, the [database] table and the environment.

        Precedence order (highest to lowest):
        1. Environment variables (``<prefix>DB_*``)
        2. Config mapping values
        3. Default values
        """
        cfg = dict(config or {})
        env = os.environ
        prefix = env_prefix.upper()
        defaults = cls()

        def pick(key: str, env_name: str) -> Any:
            override = env.get(f"{prefix}{env_name}")
            if override is not None and override.strip():
                return override
            return cfg.get(key)

        port = pick("port", "DB_PORT")
        return cls(
            url=_coerce_str(pick("url", "DB_URL"), defaults.url),
            dialect=str(_coerce_str(pick("dialect", "DB_DIALECT"), defaults.dialect)).lower(),
            host=str(_coerce_str(pick("host", "DB_HOST"), defaults.host)),
            port=_coerce_int(port, 0) or None,
            database=str(_coerce_str(pick("database", "DB_NAME"), defaults.database)),
            username=_coerce_str(pick("username", "DB_USER"), defaults.username),
            password=_coerce_str(pick("password", "DB_PASSWORD"), defaults.password),
            table_prefix=str(pick("table_prefix", "DB_TABLE_PREFIX") or defaults.table_prefix),
            ssl=_coerce_bool(pick("ssl", "DB_SSL"), defaults.ssl),
            pool_size=_coerce_int(pick("pool_size", "DB_POOL_SIZE"), defaults.pool_size),
            pool_timeout=_coerce_float(pick("pool_timeout", "DB_POOL_TIMEOUT"), defaults.pool_timeout),
            connect_timeout=_coerce_int(pick("connect_timeout", "DB_CONNECT_TIMEOUT"), defaults.connect_timeout),
            echo=_coerce_bool(pick("echo", "DB_ECHO"), defaults.echo),
            sqlite_wal=_coerce_bool(pick("sqlite_wal", "DB_SQLITE_WAL"), defaults.sqlite_wal),
            sqlite_cache_size=_coerce_int(
                pick("sqlite_cache_size", "DB_SQLITE_CACHE_SIZE"), defaults.sqlite_cache_size
            ),
            sqlite_synchronous=str(
                _coerce_str(pick("sqlite_synchronous", "DB_SQLITE_SYNCHRONOUS"), defaults.sqlite_synchronous)
            ).upper(),
            sqlite_busy_timeout=_coerce_int(
                pick("sqlite_busy_timeout", "DB_SQLITE_BUSY_TIMEOUT"), defaults.sqlite_busy_timeout
            ),
        )

    def validate(self) -> None:
        """Raise ConfigurationError for values no backend could work with."""
        if self.url is None and self.dialect not in _DIALECTS:
            raise ConfigurationError(f"unsupported database dialect {self.dialect!r}")
        if not _TABLE_PREFIX_PATTERN.match(self.table_prefix):
            raise ConfigurationError(f"table prefix {self.table_prefix!r} may only contain letters, digits and '_'")
        if self.pool_size < 1:
            raise ConfigurationError(f"database pool_size must be at least 1, got {self.pool_size}")
        if self.pool_timeout < 0:
            raise ConfigurationError(f"database pool_timeout must not be negative, got {self.pool_timeout}")
        if self.connect_timeout < 1:
            raise ConfigurationError(f"database connect_timeout must be positive, got {self.connect_timeout}")


@dataclass(slots=True)
class LookupSettings:
    """Configuration of the geolocation lookup collaborator."""

    enabled: bool = True
    provider: str = "http"
    url: str = _DEFAULT_LOOKUP_URL
    api_key: str | None = None
    timeout: float = 10.0
    maxmind_db_path: str = str(Path("data") / "maxmind")

    @classmethod
    def from_sources(
        cls,
        config: Mapping[str, Any] | None = None,
        env_prefix: str = "IPLOG_",
    ) -> LookupSettings:
        """Build lookup settings from the [lookup] table and ``<prefix>LOOKUP_*`` variables."""
        cfg = dict(config or {})
        env = os.environ
        prefix = env_prefix.upper()
        defaults = cls()

        def pick(key: str, env_name: str) -> Any:
            override = env.get(f"{prefix}{env_name}")
            if override is not None and override.strip():
                return override
            return cfg.get(key)

        return cls(
            enabled=_coerce_bool(pick("enabled", "LOOKUP_ENABLED"), defaults.enabled),
            provider=str(_coerce_str(pick("provider", "LOOKUP_PROVIDER"), defaults.provider)).lower(),
            url=str(_coerce_str(pick("url", "LOOKUP_URL"), defaults.url)),
            api_key=_coerce_str(pick("api_key", "LOOKUP_API_KEY"), defaults.api_key),
            timeout=_coerce_float(pick("timeout", "LOOKUP_TIMEOUT"), defaults.timeout),
            maxmind_db_path=str(_coerce_str(pick("maxmind_db_path", "MAXMIND_DB"), defaults.maxmind_db_path)),
        )

    def validate(self) -> None:
        """Raise ConfigurationError for an unusable lookup configuration."""
        if self.provider not in _LOOKUP_PROVIDERS:
            raise ConfigurationError(f"unsupported lookup provider {self.provider!r}")
        if self.timeout <= 0:
            raise ConfigurationError(f"lookup timeout must be positive, got {self.timeout}")


@dataclass(slots=True)
class IPLogSettings:
    """Top-level settings: storage selection, history policy and feature toggles."""

    storage_type: str = "file"
    data_file: Path = _DEFAULT_DATA_FILE
    max_history_size: int = DEFAULT_MAX_HISTORY_SIZE
    auto_record: bool = True
    query_location: bool = True
    check_duplicate: bool = True
    display_timezone: str = "Asia/Shanghai"
    workers: int = 4
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    lookup: LookupSettings = field(default_factory=LookupSettings)

    @classmethod
    def from_sources(
        cls,
        config: Mapping[str, Any] | None = None,
        env_prefix: str = "IPLOG_",
        overrides: Mapping[str, Any] | None = None,
    ) -> IPLogSettings:
        """Build settings from defaults, a config mapping, the environment and overrides.

        Precedence order (highest to lowest):
        1. Explicit ``overrides`` (top-level field names; ``database`` and
           ``lookup`` take mappings of their own field names)
        2. Environment variables
        3. Config mapping values (``[storage]``, ``[features]``, ``[display]``,
           ``[database]`` and ``[lookup]`` tables)
        4. Default values

        Raises:
            ConfigurationError: If the resulting settings are invalid
        """
        storage = _section(config, "storage")
        features = _section(config, "features")
        display = _section(config, "display")
        env = os.environ
        prefix = env_prefix.upper()
        defaults = cls()

        def pick(section: Mapping[str, Any], key: str, env_name: str) -> Any:
            override = env.get(f"{prefix}{env_name}")
            if override is not None and override.strip():
                return override
            return section.get(key)

        data_file = _coerce_str(pick(storage, "data_file", "DATA_FILE"), None)
        settings = cls(
            storage_type=str(_coerce_str(pick(storage, "type", "STORAGE_TYPE"), defaults.storage_type)).lower(),
            data_file=Path(data_file) if data_file else defaults.data_file,
            max_history_size=_coerce_int(
                pick(storage, "max_history_size", "MAX_HISTORY_SIZE"), defaults.max_history_size
            ),
            auto_record=_coerce_bool(pick(features, "auto_record", "AUTO_RECORD"), defaults.auto_record),
            query_location=_coerce_bool(pick(features, "query_location", "QUERY_LOCATION"), defaults.query_location),
            check_duplicate=_coerce_bool(
                pick(features, "check_duplicate", "CHECK_DUPLICATE"), defaults.check_duplicate
            ),
            display_timezone=str(_coerce_str(pick(display, "timezone", "DISPLAY_TIMEZONE"), defaults.display_timezone)),
            workers=_coerce_int(pick(display, "workers", "WORKERS"), defaults.workers),
            database=DatabaseSettings.from_sources(_section(config, "database"), env_prefix),
            lookup=LookupSettings.from_sources(_section(config, "lookup"), env_prefix),
        )

        if overrides:
            settings = settings.with_overrides(overrides)

        settings.validate()
        return settings

    def with_overrides(self, overrides: Mapping[str, Any]) -> IPLogSettings:
        """Return a copy with ``overrides`` applied (``None`` values are ignored)."""
        known = {item.name for item in fields(self)}
        changes: dict[str, Any] = {}
        for key, value in overrides.items():
            if value is None:
                continue
            if key not in known:
                raise ConfigurationError(f"unknown setting {key!r}")
            if key in {"database", "lookup"} and isinstance(value, Mapping):
                nested = getattr(self, key)
                nested_known = {item.name for item in fields(nested)}
                unknown = set(value) - nested_known
                if unknown:
                    raise ConfigurationError(f"unknown {key} setting(s): {', '.join(sorted(unknown))}")
                value = replace(nested, **{k: v for k, v in value.items() if v is not None})
            elif key == "data_file":
                value = Path(value)
            changes[key] = value
        return replace(self, **changes)

    def validate(self) -> None:
        """Raise ConfigurationError when any setting is out of range."""
        if self.storage_type not in _STORAGE_TYPES:
            raise ConfigurationError(
                f"unknown storage type {self.storage_type!r}; expected one of {', '.join(sorted(_STORAGE_TYPES))}"
            )
        if self.max_history_size < 1:
            raise ConfigurationError(f"max_history_size must be at least 1, got {self.max_history_size}")
        if self.workers < 1:
            raise ConfigurationError(f"workers must be at least 1, got {self.workers}")
        try:
            ZoneInfo(self.display_timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigurationError(f"unknown display time zone {self.display_timezone!r}") from exc
        if self.storage_type == "relational":
            self.database.validate()
        if self.query_location:
            self.lookup.validate()


def load_settings(
    path: Path | str | None = None,
    env_prefix: str = "IPLOG_",
    overrides: Mapping[str, Any] | None = None,
) -> IPLogSettings:
    """Convenience wrapper used by CLI entry points."""
    from .utils.config import load_config_file

    return IPLogSettings.from_sources(load_config_file(path), env_prefix=env_prefix, overrides=overrides)


__all__ = ["DatabaseSettings", "IPLogSettings", "LookupSettings", "load_settings"]
