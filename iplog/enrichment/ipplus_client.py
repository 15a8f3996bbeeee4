"""HTTP client for the ipplus360 street-level geolocation API."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping

import requests

from .lookup import LookupResult, LookupUnavailable

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.ipplus360.com/ip/geo/v1/street/biz/"
USER_AGENT = "iplog/1.0"

_STATUS_HINTS = {
    400: "bad request, check the query parameters",
    401: "authentication failed",
    403: "access denied (invalid or expired key, exhausted balance, caller not whitelisted or rate limited)",
    404: "API endpoint not found, check the configured url",
    429: "too many requests",
    500: "internal server error",
    503: "service unavailable",
}


class IpPlusClient:
    """Look up location and ISP for an address through the ipplus360 API.

    Every failure (network error, timeout, HTTP error, non-JSON body, business
    error code, unexpected payload shape) raises :class:`LookupUnavailable`.
    One attempt per call; there is no retry or rate limiting.
    """

    def __init__(
        self,
        api_key: str | None,
        base_url: str = DEFAULT_API_URL,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: ipplus360 API key
            base_url: Endpoint URL
            timeout: Connect and read timeout in seconds
            session: Optional pre-configured requests session
        """
        self.api_key = api_key or ""
        self.base_url = base_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT, "Accept": "application/json"})
        self.stats: Dict[str, int] = {
            "lookups": 0,
            "successes": 0,
            "http_errors": 0,
            "api_errors": 0,
            "errors": 0,
        }

    def lookup(self, address: str) -> LookupResult:
        """Return location and ISP for ``address``.

        Raises:
            LookupUnavailable: On any failure
        """
        self.stats["lookups"] += 1
        params = {"key": self.api_key, "ip": address, "coordsys": "WGS84", "area": "multi"}
        logger.debug(f"Querying {self.base_url} for {address} (key {self._masked_key()})")

        try:
            response = self.session.get(self.base_url, params=params, timeout=self.timeout)
        except requests.exceptions.Timeout as exc:
            self.stats["errors"] += 1
            logger.warning(f"Lookup API timed out for {address}: {self._redact(exc)}")
            raise LookupUnavailable(f"lookup for {address} timed out") from exc
        except requests.exceptions.ConnectionError as exc:
            self.stats["errors"] += 1
            logger.warning(f"Could not reach lookup API for {address}: {self._redact(exc)}")
            raise LookupUnavailable(f"lookup API unreachable for {address}") from exc
        except requests.exceptions.RequestException as exc:
            self.stats["errors"] += 1
            logger.warning(f"Lookup API request failed for {address}: {self._redact(exc)}")
            raise LookupUnavailable(f"lookup request failed for {address}") from exc

        if response.status_code != 200:
            self.stats["http_errors"] += 1
            hint = _STATUS_HINTS.get(response.status_code, "unexpected HTTP status")
            logger.warning(f"Lookup API returned HTTP {response.status_code} for {address}: {hint}")
            body = (response.text or "").strip()
            if body:
                logger.debug(f"Lookup API error body: {self._redact(body[:500])}")
            raise LookupUnavailable(f"lookup API returned HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            self.stats["errors"] += 1
            logger.warning(f"Lookup API returned a non-JSON body for {address}")
            raise LookupUnavailable("lookup API returned a non-JSON body") from exc

        result = self._parse_payload(address, payload)
        self.stats["successes"] += 1
        return result

    def _parse_payload(self, address: str, payload: Any) -> LookupResult:
        """Decode ``{"code": "Success", "data": {"country", "prov", "city", "isp"}}``."""
        if not isinstance(payload, Mapping):
            self.stats["errors"] += 1
            raise LookupUnavailable("lookup API payload is not an object")

        code = payload.get("code")
        if code is not None and code != "Success":
            self.stats["api_errors"] += 1
            logger.warning(f"Lookup API business error for {address}: {code} {payload.get('msg', '')}".rstrip())
            raise LookupUnavailable(f"lookup API error {code}")

        data = payload.get("data")
        if not isinstance(data, Mapping):
            self.stats["errors"] += 1
            raise LookupUnavailable("lookup API payload has no data object")

        parts = [_text(data.get(key)) for key in ("country", "prov", "city")]
        location = " ".join(part for part in parts if part) or None
        isp = _text(data.get("isp"))
        logger.debug(f"Lookup for {address}: location={location!r} isp={isp!r}")
        return LookupResult(location=location, isp=isp, source="ipplus360")

    def _masked_key(self) -> str:
        if not self.api_key:
            return "<unset>"
        if len(self.api_key) <= 8:
            return "***"
        return f"{self.api_key[:5]}..."

    def _redact(self, value: Any) -> str:
        text = str(value)
        if self.api_key:
            text = text.replace(self.api_key, "***")
        return text

    def get_stats(self) -> Dict[str, int]:
        """Get client statistics."""
        return dict(self.stats)

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.session.close()

    def __enter__(self) -> IpPlusClient:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit - close the session."""
        self.close()


def _text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


__all__ = ["DEFAULT_API_URL", "IpPlusClient"]
