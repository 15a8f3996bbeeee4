"""Dedup, ordering and cap rules applied to a user's address history.

The same rules are used by every storage backend: history is observed
most-recent-first by ``last_seen`` (ties keep insertion order) and the cap
evicts from the tail of that order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable

from ..enrichment.lookup import LookupResult, LookupUnavailable
from .models import AddressRecord, UserProfile

logger = logging.getLogger(__name__)

DEFAULT_MAX_HISTORY_SIZE = 100

LookupFn = Callable[[str], LookupResult]


@dataclass(frozen=True, slots=True)
class SightingOutcome:
    """Result of applying one sighting to a profile."""

    profile: UserProfile
    new_address: bool
    enriched: bool


def new_profile(user_id: str, display_name: str) -> UserProfile:
    """Return an empty profile for a user seen for the first time."""
    return UserProfile(user_id=user_id, display_name=display_name)


def order_history(records: Iterable[AddressRecord]) -> list[AddressRecord]:
    """Return records ordered by ``last_seen`` descending.

    ``sorted`` is stable with ``reverse=True``, so records sharing a timestamp
    keep their current relative order.
    """
    return sorted(records, key=lambda record: record.last_seen, reverse=True)


def enforce_cap(records: list[AddressRecord], max_history_size: int) -> list[AddressRecord]:
    """Return the canonical order truncated to ``max_history_size`` records."""
    _check_cap(max_history_size)
    return order_history(records)[:max_history_size]


def _check_cap(max_history_size: int) -> None:
    if max_history_size < 1:
        raise ValueError(f"max_history_size must be at least 1, got {max_history_size}")


def _enrich(lookup: LookupFn | None, address: str) -> LookupResult | None:
    if lookup is None:
        return None
    try:
        return lookup(address)
    except LookupUnavailable as exc:
        logger.warning(f"Lookup failed for {address}, recording without enrichment: {exc}")
        return None


def apply_sighting(
    profile: UserProfile,
    display_name: str,
    address: str,
    now: datetime,
    lookup: LookupFn | None,
    max_history_size: int = DEFAULT_MAX_HISTORY_SIZE,
    *,
    check_duplicates: bool = True,
) -> SightingOutcome:
    """Record that ``address`` was observed for ``profile`` at ``now``.

    A known address is collapsed into its existing record (``last_seen``
    refreshed, no lookup). An unknown address gets a new record at the head of
    the history, enriched through ``lookup`` when it succeeds; lookup failure
    never prevents the record from being kept.

    Args:
        profile: Profile to mutate in place
        display_name: Latest display name for the user
        address: Observed address
        now: Observation time (aware UTC)
        lookup: Enrichment collaborator, or None when lookups are disabled
        max_history_size: Upper bound for the history length
        check_duplicates: When False, a known address is re-enriched through
            ``lookup`` instead of being treated as already recorded

    Returns:
        SightingOutcome with the mutated profile

    Raises:
        ValueError: If ``max_history_size`` is smaller than 1
    """
    _check_cap(max_history_size)

    profile.display_name = display_name
    profile.current_address = address
    profile.last_seen = now

    record = profile.find_record(address)
    new_address = record is None
    enriched = False

    if record is not None:
        record.touch(now)
        if check_duplicates:
            logger.debug(f"Address {address} already recorded for {profile.user_id}, skipping lookup")
        else:
            result = _enrich(lookup, address)
            if result is not None:
                record.location = result.location
                record.isp = result.isp
                enriched = True
    else:
        record = AddressRecord(address=address, first_seen=now, last_seen=now)
        result = _enrich(lookup, address)
        if result is not None:
            record.location = result.location
            record.isp = result.isp
            enriched = True
        profile.history.insert(0, record)

    profile.current_location = record.location
    profile.current_isp = record.isp
    profile.history = enforce_cap(profile.history, max_history_size)

    return SightingOutcome(profile=profile, new_address=new_address, enriched=enriched)


__all__ = [
    "DEFAULT_MAX_HISTORY_SIZE",
    "LookupFn",
    "SightingOutcome",
    "apply_sighting",
    "enforce_cap",
    "new_profile",
    "order_history",
]
