# =============================================================================
# lib/session_info.py - Device and Location Details for Sessions
# =============================================================================
# Describes a sign-in for the session list: browser, OS and device from the
# User-Agent header (user-agents / ua-parser), and an approximate location
# from the client IP (MaxMind GeoIP2 database, when GEOIP_DATABASE_PATH is set).
#
# Usage:
#   from lib.session_info import describe_session
#   details = describe_session(request.headers.get("user-agent"), ip)
# =============================================================================

import logging
from functools import lru_cache
from typing import Any

import geoip2.database
import geoip2.errors
from user_agents import parse as parse_user_agent

from app.config import settings

logger = logging.getLogger(__name__)

UNKNOWN_BROWSER = "Unknown Browser"
UNKNOWN_OS = "Unknown OS"

# ua-parser reports unrecognised families as "Other"
_UNKNOWN_FAMILY = "Other"


# =============================================================================
# User Agent
# =============================================================================

def describe_user_agent(user_agent: str | None) -> dict[str, str | None]:
    """
    Browser, OS and device fields for a User-Agent header.

    Returns:
        Dict with `browser`, `browser_version`, `os`, `os_version`, `device`
        ("mobile", "tablet", "desktop" or None), `device_vendor` and
        `device_model`
    """
    ua = parse_user_agent(user_agent or "")

    if ua.is_tablet:
        device = "tablet"
    elif ua.is_mobile:
        device = "mobile"
    elif ua.is_pc:
        device = "desktop"
    else:
        device = None

    browser = ua.browser.family
    os_name = ua.os.family
    return {
        "browser": browser if browser != _UNKNOWN_FAMILY else UNKNOWN_BROWSER,
        "browser_version": ua.browser.version_string,
        "os": os_name if os_name != _UNKNOWN_FAMILY else UNKNOWN_OS,
        "os_version": ua.os.version_string,
        "device": device,
        "device_vendor": ua.device.brand or None,
        "device_model": ua.device.model or None,
    }


# =============================================================================
# Location
# =============================================================================

@lru_cache
def _geoip_reader() -> geoip2.database.Reader | None:
    """Open the GeoIP2 City database once; None when not configured."""
    if not settings.GEOIP_DATABASE_PATH:
        return None
    try:
        return geoip2.database.Reader(settings.GEOIP_DATABASE_PATH)
    except (OSError, ValueError) as e:
        logger.warning(f"GeoIP database unavailable at {settings.GEOIP_DATABASE_PATH}: {e}")
        return None


def normalize_ip(ip_address: str) -> str:
    """Strip the IPv4-mapped IPv6 prefix ("::ffff:1.2.3.4" -> "1.2.3.4")."""
    return ip_address.removeprefix("::ffff:")


def locate_ip(ip_address: str | None) -> dict[str, str | None]:
    """
    Approximate location of an IP address.

    Private, unknown or malformed addresses (and a missing database) give
    all-None fields.

    Returns:
        Dict with `country` (ISO code), `region`, `city` and `timezone`
    """
    location: dict[str, str | None] = {"country": None, "region": None, "city": None, "timezone": None}

    reader = _geoip_reader()
    if reader is None or not ip_address:
        return location

    try:
        response = reader.city(normalize_ip(ip_address))
    except (geoip2.errors.AddressNotFoundError, ValueError):
        return location

    location["country"] = response.country.iso_code
    location["region"] = response.subdivisions.most_specific.name
    location["city"] = response.city.name
    location["timezone"] = response.location.time_zone
    return location


def describe_session(user_agent: str | None, ip_address: str | None) -> dict[str, Any]:
    """Every descriptive UserSession column for a new sign-in."""
    return {**describe_user_agent(user_agent), **locate_ip(ip_address)}
