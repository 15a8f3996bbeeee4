"""Geolocation enrichment for observed addresses."""

from .lookup import GeoLookup, LookupResult, LookupUnavailable, create_lookup

__all__ = ["GeoLookup", "LookupResult", "LookupUnavailable", "create_lookup"]
