"""Operator query: show the address history of a user by display name."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Iterable

from ..exceptions import ConfigurationError, StorageUnavailable, TransientIOError
from ..history.models import UserProfile
from ..storage import create_backend
from ..tracker import AddressTracker
from ..utils.timestamps import to_display
from .common import add_common_arguments, configure_logging, resolve_settings

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10


def format_profile(profile: UserProfile, limit: int = DEFAULT_LIMIT, tz_name: str = "UTC") -> list[str]:
    """Render a profile as text lines, showing at most ``limit`` history rows."""
    lines = [
        f"=== Address information for {profile.display_name} ===",
        f"Current address: {profile.current_address or 'unknown'}",
        f"Location: {profile.current_location or 'unknown'}",
        f"ISP: {profile.current_isp or 'unknown'}",
        f"Last seen: {to_display(profile.last_seen, tz_name)}",
    ]
    if not profile.history:
        lines.append("Address history: none")
        return lines

    lines.append("Address history:")
    for index, record in enumerate(profile.history[:limit], start=1):
        location = f" ({record.location})" if record.location else ""
        lines.append(
            f"  {index}. {record.address} - first {to_display(record.first_seen, tz_name)}, "
            f"last {to_display(record.last_seen, tz_name)}{location}"
        )
    remaining = len(profile.history) - limit
    if remaining > 0:
        lines.append(f"  ... {remaining} more records")
    return lines


def main(argv: Iterable[str] | None = None) -> int:
    """Run the query CLI and return an exit status (0 found, 1 not found or failed, 2 unavailable)."""
    parser = argparse.ArgumentParser(description="Show the address history of a user")
    parser.add_argument("name", help="Display name to look up (case-insensitive)")
    parser.add_argument("--limit", type=int, default=DEFAULT_LIMIT, help="History rows to show in text output")
    parser.add_argument("--output", choices=("json", "text"), default="text")
    add_common_arguments(parser)
    args = parser.parse_args(list(argv) if argv is not None else None)
    if args.limit < 1:
        parser.error("--limit must be at least 1")
    configure_logging(args)

    try:
        settings = resolve_settings(args)
        backend = create_backend(settings)
    except ConfigurationError as exc:
        logger.error(f"Invalid configuration: {exc}")
        return 2

    try:
        with backend:
            profile = AddressTracker.from_settings(settings, backend).find_by_name(args.name)
    except StorageUnavailable as exc:
        logger.error(f"Storage unavailable: {exc}")
        return 2
    except TransientIOError as exc:
        logger.error(f"Query for {args.name!r} failed: {exc}")
        return 1

    if profile is None:
        print(f"No records found for {args.name}")
        return 1

    if args.output == "json":
        payload = {"userId": profile.user_id, **profile.to_dict()}
        print(json.dumps(payload, indent=2, ensure_ascii=False))
    else:
        for line in format_profile(profile, args.limit, settings.display_timezone):
            print(line)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
