# =============================================================================
# tests/test_session_info.py - Session Device / Location Tests
# =============================================================================
# User-Agent parsing runs against the real user-agents parser; the GeoIP
# reader is replaced with a stub since no MaxMind database ships with tests.
# =============================================================================

from types import SimpleNamespace

import geoip2.errors
import pytest

from lib import session_info

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
SAMSUNG_INTERNET = (
    "Mozilla/5.0 (Linux; Android 13; SM-S911B) AppleWebKit/537.36 "
    "(KHTML, like Gecko) SamsungBrowser/23.0 Chrome/115.0.0.0 Mobile Safari/537.36"
)


class FakeReader:
    """Stands in for geoip2.database.Reader."""

    def __init__(self):
        self.looked_up = []

    def city(self, ip):
        self.looked_up.append(ip)
        if ip.startswith("10."):
            raise geoip2.errors.AddressNotFoundError(f"{ip} not in database")
        return SimpleNamespace(
            country=SimpleNamespace(iso_code="PH"),
            subdivisions=SimpleNamespace(most_specific=SimpleNamespace(name="Calabarzon")),
            city=SimpleNamespace(name="Calamba"),
            location=SimpleNamespace(time_zone="Asia/Manila"),
        )


@pytest.fixture
def reader(monkeypatch):
    fake = FakeReader()
    monkeypatch.setattr(session_info, "_geoip_reader", lambda: fake)
    return fake


class TestDescribeUserAgent:
    """Tests for describe_user_agent."""

    def test_desktop_chrome(self):
        info = session_info.describe_user_agent(CHROME_WINDOWS)

        assert info["browser"] == "Chrome"
        assert info["browser_version"].startswith("120")
        assert info["os"] == "Windows"
        assert info["device"] == "desktop"

    def test_iphone(self):
        info = session_info.describe_user_agent(SAFARI_IPHONE)

        assert info["os"] == "iOS"
        assert info["device"] == "mobile"
        assert info["device_vendor"] == "Apple"
        assert info["device_model"] == "iPhone"

    def test_samsung_internet_is_not_chrome(self):
        info = session_info.describe_user_agent(SAMSUNG_INTERNET)

        assert info["browser"] == "Samsung Internet"
        assert info["os"] == "Android"

    @pytest.mark.parametrize("user_agent", [None, ""])
    def test_missing_header(self, user_agent):
        info = session_info.describe_user_agent(user_agent)

        assert info["browser"] == session_info.UNKNOWN_BROWSER
        assert info["os"] == session_info.UNKNOWN_OS
        assert info["device_model"] is None


class TestLocateIp:
    """Tests for locate_ip."""

    def test_without_database_everything_is_none(self, monkeypatch):
        monkeypatch.setattr(session_info, "_geoip_reader", lambda: None)

        assert session_info.locate_ip("203.0.113.7") == {
            "country": None, "region": None, "city": None, "timezone": None,
        }

    def test_known_address(self, reader):
        location = session_info.locate_ip("::ffff:203.0.113.7")

        assert location == {
            "country": "PH", "region": "Calabarzon", "city": "Calamba", "timezone": "Asia/Manila",
        }
        # IPv4-mapped prefix stripped before the lookup
        assert reader.looked_up == ["203.0.113.7"]

    def test_private_address_not_found(self, reader):
        assert session_info.locate_ip("10.0.0.1")["country"] is None

    def test_missing_ip_skips_lookup(self, reader):
        assert session_info.locate_ip(None)["city"] is None
        assert reader.looked_up == []


class TestDescribeSession:
    """Tests for the combined session description."""

    def test_merges_device_and_location(self, reader):
        details = session_info.describe_session(CHROME_WINDOWS, "203.0.113.7")

        assert details["browser"] == "Chrome"
        assert details["city"] == "Calamba"
