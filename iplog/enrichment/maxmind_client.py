"""MaxMind GeoLite2 offline database lookup."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import geoip2.database
import geoip2.errors
from maxminddb.errors import InvalidDatabaseError

from .lookup import LookupResult, LookupUnavailable

logger = logging.getLogger(__name__)


class MaxMindLookup:
    """Offline location/ISP lookup backed by GeoLite2 databases.

    Database files (in ``db_path``):
        - GeoLite2-City.mmdb: country and city names
        - GeoLite2-ASN.mmdb: autonomous system organisation, used as ISP

    Either database may be missing; the lookup fails only when neither
    yields data for the address.
    """

    def __init__(self, db_path: Path, locale: str = "en") -> None:
        """Initialize the lookup with the database directory.

        Args:
            db_path: Directory containing the .mmdb files
            locale: Preferred language for place names
        """
        self.db_path = db_path
        self.locale = locale
        self.city_db_path = db_path / "GeoLite2-City.mmdb"
        self.asn_db_path = db_path / "GeoLite2-ASN.mmdb"

        # Readers are opened on first use
        self._city_reader: Optional[geoip2.database.Reader] = None
        self._asn_reader: Optional[geoip2.database.Reader] = None

        self.stats: Dict[str, int] = {
            "lookups": 0,
            "city_hits": 0,
            "asn_hits": 0,
            "errors": 0,
            "not_found": 0,
        }

        logger.info(f"MaxMind lookup configured with database path: {db_path}")

    def _open_reader(self, path: Path) -> Optional[geoip2.database.Reader]:
        if not path.exists():
            logger.warning(f"MaxMind database not found: {path}")
            return None
        try:
            reader = geoip2.database.Reader(str(path), locales=[self.locale, "en"])
        except (OSError, ValueError, InvalidDatabaseError) as e:
            logger.error(f"Failed to open MaxMind database {path}: {e}")
            return None
        logger.debug(f"Opened MaxMind database {path.name}")
        return reader

    def _get_city_reader(self) -> Optional[geoip2.database.Reader]:
        if self._city_reader is None:
            self._city_reader = self._open_reader(self.city_db_path)
        return self._city_reader

    def _get_asn_reader(self) -> Optional[geoip2.database.Reader]:
        if self._asn_reader is None:
            self._asn_reader = self._open_reader(self.asn_db_path)
        return self._asn_reader

    def lookup(self, address: str) -> LookupResult:
        """Return location ("country city") and ISP (ASN organisation) for ``address``.

        Raises:
            LookupUnavailable: If no database is readable, the address is not
                in any database, or it is not a valid IP address
        """
        self.stats["lookups"] += 1
        city_reader = self._get_city_reader()
        asn_reader = self._get_asn_reader()
        if city_reader is None and asn_reader is None:
            self.stats["errors"] += 1
            raise LookupUnavailable(f"no MaxMind database available in {self.db_path}")

        location: str | None = None
        isp: str | None = None

        if city_reader is not None:
            try:
                city_response = city_reader.city(address)
            except geoip2.errors.AddressNotFoundError:
                logger.debug(f"IP {address} not found in City database")
            except (ValueError, InvalidDatabaseError) as e:
                self.stats["errors"] += 1
                logger.warning(f"City lookup failed for {address}: {e}")
                raise LookupUnavailable(f"City lookup failed for {address}") from e
            else:
                self.stats["city_hits"] += 1
                parts = [city_response.country.name, city_response.city.name]
                location = " ".join(part for part in parts if part) or None

        if asn_reader is not None:
            try:
                asn_response = asn_reader.asn(address)
            except geoip2.errors.AddressNotFoundError:
                logger.debug(f"IP {address} not found in ASN database")
            except (ValueError, InvalidDatabaseError) as e:
                self.stats["errors"] += 1
                logger.warning(f"ASN lookup failed for {address}: {e}")
                raise LookupUnavailable(f"ASN lookup failed for {address}") from e
            else:
                self.stats["asn_hits"] += 1
                isp = asn_response.autonomous_system_organization or None

        if location is None and isp is None:
            self.stats["not_found"] += 1
            raise LookupUnavailable(f"{address} not found in MaxMind databases")

        return LookupResult(location=location, isp=isp, source="maxmind")

    def close(self) -> None:
        """Close all database readers and release resources."""
        if self._city_reader:
            self._city_reader.close()
            self._city_reader = None
        if self._asn_reader:
            self._asn_reader.close()
            self._asn_reader = None
        logger.debug("MaxMind lookup closed")

    def get_stats(self) -> Dict[str, int]:
        """Get lookup statistics."""
        return dict(self.stats)

    def __enter__(self) -> MaxMindLookup:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit - close readers."""
        self.close()


__all__ = ["MaxMindLookup"]
