"""Configuration loading utilities for iplog.toml."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATHS = (Path("config/iplog.toml"), Path("iplog.toml"))


def _find_config_file() -> Path | None:
    for candidate in DEFAULT_CONFIG_PATHS:
        if candidate.exists():
            return candidate
    return None


def resolve_secret_references(value: Any) -> Any:
    """Replace ``env:NAME`` strings with the value of environment variable NAME.

    Nested tables and arrays are resolved recursively. A reference to an
    unset variable resolves to None so the setting falls back to its default.
    """
    if isinstance(value, dict):
        return {key: resolve_secret_references(item) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_secret_references(item) for item in value]
    if isinstance(value, str) and value.startswith("env:"):
        env_var = value[4:]
        resolved = os.getenv(env_var)
        if resolved is None:
            logger.warning(f"Environment variable {env_var} referenced in configuration is not set")
        return resolved
    return value


def load_config_file(path: Path | str | None = None) -> dict[str, Any]:
    """Load iplog.toml.

    Args:
        path: Explicit file to read. When omitted, ``config/iplog.toml`` and then
            ``iplog.toml`` in the working directory are tried.

    Returns:
        Parsed configuration with secret references resolved, or an empty dict
        when no file was found.

    Raises:
        ConfigurationError: If an explicit file is missing or any file cannot be parsed
    """
    if path is not None:
        config_file = Path(path)
        if not config_file.exists():
            raise ConfigurationError(f"configuration file {config_file} does not exist")
    else:
        found = _find_config_file()
        if found is None:
            logger.debug("No iplog.toml found, using defaults and environment")
            return {}
        config_file = found

    try:
        # Try tomllib first (Python 3.11+)
        try:
            import tomllib

            toml_loader = tomllib
        except ImportError:
            # Fall back to tomli for older Python versions
            import tomli

            toml_loader = tomli

        with config_file.open("rb") as handle:
            data = toml_loader.load(handle)
    except OSError as exc:
        raise ConfigurationError(f"could not read {config_file}: {exc}") from exc
    except ValueError as exc:
        # TOMLDecodeError subclasses ValueError in both tomllib and tomli
        raise ConfigurationError(f"failed to parse {config_file}: {exc}") from exc

    logger.debug(f"Loaded configuration from {config_file}")
    return resolve_secret_references(data)


__all__ = ["DEFAULT_CONFIG_PATHS", "load_config_file", "resolve_secret_references"]
