"""Unit tests for the ipplus360 HTTP lookup client."""

from __future__ import annotations

from unittest.mock import Mock

import pytest
import requests

from iplog.enrichment.ipplus_client import DEFAULT_API_URL, IpPlusClient
from iplog.enrichment.lookup import LookupUnavailable

API_KEY = "abcdef1234567890"


def _response(status_code: int = 200, payload=None, text: str = "") -> Mock:
    response = Mock()
    response.status_code = status_code
    response.text = text
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def session():
    """Mock requests session."""
    session = Mock(spec=requests.Session)
    session.headers = {}
    return session


@pytest.fixture
def client(session):
    """Client wired to the mock session."""
    return IpPlusClient(API_KEY, session=session, timeout=3.0)


class TestIpPlusClientLookup:
    """Test successful lookups and request shape."""

    def test_successful_lookup(self, client, session):
        """Test location parts are joined and ISP is extracted."""
        session.get.return_value = _response(
            payload={
                "code": "Success",
                "data": {"country": "中国", "prov": "浙江省", "city": "杭州市", "isp": "中国电信"},
            }
        )

        result = client.lookup("203.0.113.7")

        assert result.location == "中国 浙江省 杭州市"
        assert result.isp == "中国电信"
        assert result.source == "ipplus360"
        assert client.get_stats()["successes"] == 1

    def test_request_parameters(self, client, session):
        """Test the API key, address and coordinate system are sent."""
        session.get.return_value = _response(payload={"code": "Success", "data": {"country": "US"}})

        client.lookup("8.8.8.8")

        session.get.assert_called_once_with(
            DEFAULT_API_URL,
            params={"key": API_KEY, "ip": "8.8.8.8", "coordsys": "WGS84", "area": "multi"},
            timeout=3.0,
        )
        assert session.headers["User-Agent"] == "iplog/1.0"

    def test_blank_parts_are_skipped(self, client, session):
        """Test empty location components and ISP become None."""
        session.get.return_value = _response(
            payload={"code": "Success", "data": {"country": "", "prov": " ", "city": None, "isp": ""}}
        )

        result = client.lookup("8.8.8.8")

        assert result.location is None
        assert result.isp is None


class TestIpPlusClientErrors:
    """Test failure handling."""

    @pytest.mark.parametrize(
        "error",
        [
            requests.exceptions.Timeout("read timed out"),
            requests.exceptions.ConnectionError("refused"),
            requests.exceptions.RequestException("boom"),
        ],
    )
    def test_network_errors(self, client, session, error):
        """Test transport failures raise LookupUnavailable."""
        session.get.side_effect = error

        with pytest.raises(LookupUnavailable):
            client.lookup("8.8.8.8")

        assert client.get_stats()["errors"] == 1

    @pytest.mark.parametrize("status_code", [401, 403, 429, 500, 503, 418])
    def test_http_errors(self, client, session, status_code):
        """Test non-200 responses raise LookupUnavailable."""
        session.get.return_value = _response(status_code=status_code, text="denied")

        with pytest.raises(LookupUnavailable, match=str(status_code)):
            client.lookup("8.8.8.8")

        assert client.get_stats()["http_errors"] == 1

    def test_non_json_body(self, client, session):
        """Test an HTML body raises LookupUnavailable."""
        session.get.return_value = _response(payload=ValueError("no json"), text="<html>")

        with pytest.raises(LookupUnavailable):
            client.lookup("8.8.8.8")

    def test_business_error_code(self, client, session):
        """Test a non-Success code raises LookupUnavailable."""
        session.get.return_value = _response(payload={"code": "Failed", "msg": "balance exhausted"})

        with pytest.raises(LookupUnavailable, match="Failed"):
            client.lookup("8.8.8.8")

        assert client.get_stats()["api_errors"] == 1

    @pytest.mark.parametrize("payload", [[], {"code": "Success"}, {"code": "Success", "data": "x"}])
    def test_unexpected_payload_shape(self, client, session, payload):
        """Test payloads without a data object raise LookupUnavailable."""
        session.get.return_value = _response(payload=payload)

        with pytest.raises(LookupUnavailable):
            client.lookup("8.8.8.8")


class TestIpPlusClientHelpers:
    """Test key masking and cleanup."""

    def test_key_is_masked_and_redacted(self, client):
        """Test the API key never appears in log text."""
        assert client._masked_key() == "abcde..."
        assert API_KEY not in client._redact(f"https://api/?key={API_KEY}&ip=1.2.3.4")

    def test_short_and_missing_keys(self, session):
        """Test short keys are fully masked."""
        assert IpPlusClient("short", session=session)._masked_key() == "***"
        assert IpPlusClient(None, session=session)._masked_key() == "<unset>"

    def test_context_manager_closes_session(self, session):
        """Test the session is closed on exit."""
        with IpPlusClient(API_KEY, session=session):
            pass

        session.close.assert_called_once()
