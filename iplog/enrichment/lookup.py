"""Geolocation lookup contract shared by all lookup providers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..settings import LookupSettings

logger = logging.getLogger(__name__)


class LookupUnavailable(Exception):
    """The lookup collaborator failed, timed out or returned an unusable payload."""


@dataclass(frozen=True, slots=True)
class LookupResult:
    """Enrichment for one address.

    Attributes:
        location: Human readable location (e.g. "China Zhejiang Hangzhou")
        isp: Network operator name
        source: Provider identifier
    """

    location: str | None
    isp: str | None
    source: str = "unknown"


class GeoLookup(Protocol):
    """Structured lookup contract: return a result or raise LookupUnavailable."""

    def lookup(self, address: str) -> LookupResult:
        """Return enrichment for ``address``."""
        ...

    def close(self) -> None:
        """Release provider resources."""
        ...


def create_lookup(settings: LookupSettings) -> GeoLookup | None:
    """Build the configured lookup provider.

    Args:
        settings: Lookup configuration

    Returns:
        Provider instance, or None when lookups are disabled
    """
    if not settings.enabled:
        logger.info("Address lookup disabled by configuration")
        return None

    if settings.provider == "maxmind":
        from pathlib import Path

        from .maxmind_client import MaxMindLookup

        return MaxMindLookup(db_path=Path(settings.maxmind_db_path))

    if not settings.api_key:
        logger.warning("Address lookup enabled but no API key configured; recording without enrichment")
        return None

    from .ipplus_client import IpPlusClient

    return IpPlusClient(
        api_key=settings.api_key,
        base_url=settings.url,
        timeout=settings.timeout,
    )


__all__ = ["GeoLookup", "LookupResult", "LookupUnavailable", "create_lookup"]
