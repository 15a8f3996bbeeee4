"""Record one address sighting (the user-connect trigger)."""

from __future__ import annotations

import argparse
import ipaddress
import logging
import sys
from typing import Iterable

from ..enrichment.lookup import create_lookup
from ..exceptions import ConfigurationError, StorageUnavailable, TransientIOError
from ..storage import create_backend
from ..tracker import AddressTracker
from .common import add_common_arguments, configure_logging, resolve_settings

logger = logging.getLogger(__name__)


def _address(value: str) -> str:
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not an IP address: {value!r}") from exc


def main(argv: Iterable[str] | None = None) -> int:
    """Record a sighting and return an exit status.

    Exit codes: 0 recorded (or recording disabled), 1 the save failed,
    2 storage unavailable or invalid configuration.
    """
    parser = argparse.ArgumentParser(description="Record an address sighting for a user")
    parser.add_argument("--user-id", required=True, help="Stable user identifier")
    parser.add_argument("--name", required=True, help="Current display name of the user")
    parser.add_argument("--address", required=True, type=_address, help="Observed IP address")
    add_common_arguments(parser)
    args = parser.parse_args(list(argv) if argv is not None else None)
    configure_logging(args)

    try:
        settings = resolve_settings(args)
        if not settings.auto_record:
            print("Automatic recording is disabled; nothing recorded")
            return 0
        backend = create_backend(settings)
    except ConfigurationError as exc:
        logger.error(f"Invalid configuration: {exc}")
        return 2

    try:
        backend.initialize()
    except StorageUnavailable as exc:
        logger.error(f"Storage unavailable, address not recorded: {exc}")
        return 2

    lookup = create_lookup(settings.lookup) if settings.query_location else None
    try:
        tracker = AddressTracker.from_settings(settings, backend, lookup)
        outcome = tracker.record_sighting(args.user_id, args.name, args.address)
    except TransientIOError as exc:
        logger.error(f"Failed to record address {args.address} for {args.name}: {exc}")
        return 1
    finally:
        if lookup is not None:
            lookup.close()
        backend.shutdown()

    profile = outcome.profile
    state = "new address" if outcome.new_address else "known address"
    print(f"Recorded {args.address} for {profile.display_name} ({state}, {len(profile.history)} records)")
    if profile.current_location or profile.current_isp:
        print(f"Location: {profile.current_location or 'unknown'} / ISP: {profile.current_isp or 'unknown'}")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
