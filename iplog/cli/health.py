"""Lightweight health check CLI for the configured storage backend."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from typing import Any, Iterable

from ..exceptions import ConfigurationError, StorageError
from ..settings import IPLogSettings
from ..storage import create_backend
from .common import add_common_arguments, configure_logging, resolve_settings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class HealthReport:
    """Consolidated health information for the storage backend."""

    status: str
    summary: str
    storage_type: str
    storage_ok: bool
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Return this report as a plain dictionary for JSON/text output."""
        return {
            "status": self.status,
            "summary": self.summary,
            "storage_type": self.storage_type,
            "storage_ok": self.storage_ok,
            "details": self.details,
        }


def check_storage(settings: IPLogSettings) -> HealthReport:
    """Initialise the configured backend once and report whether it is usable."""
    details: dict[str, Any] = {"max_history_size": settings.max_history_size}
    if settings.storage_type == "file":
        details["data_file"] = str(settings.data_file)
    else:
        details["table_prefix"] = settings.database.table_prefix

    try:
        backend = create_backend(settings)
    except ConfigurationError as exc:
        return HealthReport("critical", f"invalid storage configuration: {exc}", settings.storage_type, False, details)

    try:
        with backend:
            # A read exercises the medium end to end
            backend.load("__iplog_health_check__")
            pool_stats = getattr(backend, "pool_stats", None)
            if pool_stats is not None:
                details["pool"] = pool_stats()
    except StorageError as exc:
        return HealthReport("critical", f"storage check failed: {exc}", settings.storage_type, False, details)

    return HealthReport("ok", f"{settings.storage_type} storage accessible", settings.storage_type, True, details)


def main(argv: Iterable[str] | None = None) -> int:
    """Run the health check CLI and return an exit status."""
    parser = argparse.ArgumentParser(description="iplog storage health check")
    parser.add_argument("--output", choices=("json", "text"), default="text")
    add_common_arguments(parser)
    args = parser.parse_args(list(argv) if argv is not None else None)
    configure_logging(args)

    try:
        settings = resolve_settings(args)
    except ConfigurationError as exc:
        report = HealthReport("critical", f"invalid configuration: {exc}", args.storage or "unknown", False)
    else:
        report = check_storage(settings)

    if args.output == "json":
        print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    else:
        print(f"Status: {report.status}")
        print(f"Summary: {report.summary}")
        print(f"Storage: {report.storage_type} (ok={report.storage_ok})")
        for key, value in report.details.items():
            print(f"  - {key}: {value}")

    return 0 if report.status == "ok" else 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
