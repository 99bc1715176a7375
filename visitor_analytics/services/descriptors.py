"""Best-effort device and geo descriptors for events that arrive without them."""

from functools import lru_cache
from urllib.parse import urlparse

import pytz


def parse_user_agent(user_agent: str | None) -> dict[str, str]:
    """Derive os, browser and device_type from a user-agent with simple heuristics"""
    ua = (user_agent or "").lower()

    if "windows" in ua:
        os = "Windows"
    elif "iphone" in ua or "ipad" in ua:
        os = "iOS"
    elif "macintosh" in ua or "mac os" in ua:
        os = "macOS"
    elif "android" in ua:
        os = "Android"
    elif "linux" in ua:
        os = "Linux"
    else:
        os = "Unknown"

    if "edg/" in ua:
        browser = "Edge"
    elif "opr/" in ua or "opera" in ua:
        browser = "Opera"
    elif "chrome/" in ua:
        browser = "Chrome"
    elif "firefox/" in ua:
        browser = "Firefox"
    elif "safari/" in ua:
        browser = "Safari"
    else:
        browser = "Other"

    if "ipad" in ua or "tablet" in ua:
        device_type = "Tablet"
    elif "mobile" in ua or "android" in ua or "iphone" in ua:
        device_type = "Mobile"
    else:
        device_type = "Desktop"

    return {"os": os, "browser": browser, "device_type": device_type}


@lru_cache(maxsize=1)
def _timezone_countries() -> dict[str, str]:
    mapping = {}
    for country, zones in pytz.country_timezones.items():
        for zone in zones:
            # First country listed wins for zones shared between countries
            mapping.setdefault(zone, country.upper())
    return mapping


def country_from_timezone(timezone: str | None) -> str | None:
    """Map an IANA timezone name to an ISO country code, or None when unknown"""
    if not timezone:
        return None
    return _timezone_countries().get(timezone.strip())


def referrer_host(referrer: str | None) -> str | None:
    """Reduce a referrer URL to its host name"""
    if not referrer:
        return None
    parsed = urlparse(referrer if "//" in referrer else f"//{referrer}")
    host = parsed.hostname
    return host or referrer
