"""Shared argument, logging and settings helpers for the CLI tools."""

from __future__ import annotations

import argparse
import logging
from typing import Any

from ..settings import IPLogSettings, load_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    """Add the options every iplog tool accepts.

    Args:
        parser: ArgumentParser instance to add the arguments to
    """
    parser.add_argument(
        "--config",
        default=None,
        help="Path to iplog.toml. If not provided, config/iplog.toml or ./iplog.toml is used when present.",
    )
    parser.add_argument(
        "--storage",
        choices=("file", "relational"),
        default=None,
        help="Override the configured storage type",
    )
    parser.add_argument("--data-file", default=None, help="Override the JSON data file used by file storage")
    parser.add_argument("--db-url", default=None, help="Override the database URL used by relational storage")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-file", default=None, help="Also write log output to this file")


def configure_logging(args: argparse.Namespace) -> None:
    """Configure root logging from ``--verbose`` and ``--log-file``."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if args.log_file:
        handlers.append(logging.FileHandler(args.log_file, encoding="utf-8"))
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format=LOG_FORMAT if args.verbose else "%(levelname)s: %(message)s",
        handlers=handlers,
        force=True,
    )


def resolve_settings(args: argparse.Namespace) -> IPLogSettings:
    """Resolve settings from the config file, environment and CLI overrides.

    Raises:
        ConfigurationError: If the configuration is invalid
    """
    overrides: dict[str, Any] = {
        "storage_type": args.storage,
        "data_file": args.data_file,
    }
    if args.db_url:
        overrides["database"] = {"url": args.db_url}
    return load_settings(args.config, overrides=overrides)


__all__ = ["LOG_FORMAT", "add_common_arguments", "configure_logging", "resolve_settings"]
