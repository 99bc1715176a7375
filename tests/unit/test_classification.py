import pytest

from conftest import CHROME_UA, GOOGLEBOT_UA, IPHONE_UA
from visitor_analytics.services.bots import is_bot
from visitor_analytics.services.descriptors import (
    country_from_timezone,
    parse_user_agent,
    referrer_host,
)
from visitor_analytics.services.identity import IDENTITY_LENGTH, client_address, resolve_identity


@pytest.mark.parametrize("user_agent", [CHROME_UA, IPHONE_UA])
def test_browsers_are_human(user_agent):
    assert is_bot(user_agent) is False


@pytest.mark.parametrize("user_agent", [
    GOOGLEBOT_UA,
    "curl/8.4.0",
    "python-requests/2.31.0",
    "Wget/1.21",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) HeadlessChrome/120.0",
    "PostmanRuntime/7.36.0",
])
def test_known_clients_are_bots(user_agent):
    assert is_bot(user_agent) is True


def test_missing_user_agent_is_bot():
    assert is_bot(None) is True
    assert is_bot("   ") is True


def test_unrecognized_user_agent_fails_closed():
    assert is_bot("SomethingNobodyHasSeen/1.0") is True


def test_automation_flag_overrides_browser_user_agent():
    assert is_bot(CHROME_UA, automation=True) is True


def test_classification_is_deterministic():
    assert {is_bot(CHROME_UA) for _ in range(5)} == {False}


def test_identity_is_stable_hex_digest():
    first = resolve_identity("198.51.100.1", CHROME_UA)
    second = resolve_identity("198.51.100.1", CHROME_UA)

    assert first == second
    assert len(first) == IDENTITY_LENGTH
    int(first, 16)
    assert "198.51.100.1" not in first


def test_identity_changes_with_inputs():
    base = resolve_identity("198.51.100.1", CHROME_UA)

    assert resolve_identity("198.51.100.2", CHROME_UA) != base
    assert resolve_identity("198.51.100.1", IPHONE_UA) != base
    assert resolve_identity("198.51.100.1", CHROME_UA, session_token="abc") != base
    assert resolve_identity("198.51.100.1", CHROME_UA, salt="pepper") != base


def test_identity_without_user_agent():
    assert resolve_identity("198.51.100.1", None) == resolve_identity("198.51.100.1", "")


def test_client_address_ignores_proxy_headers_by_default():
    headers = {"x-forwarded-for": "1.2.3.4"}
    assert client_address("10.0.0.1", headers) == "10.0.0.1"


def test_client_address_trusts_forwarded_for_when_enabled():
    headers = {"x-forwarded-for": " 1.2.3.4 , 10.0.0.1", "x-real-ip": "5.6.7.8"}
    assert client_address("10.0.0.1", headers, trust_forwarded_for=True) == "1.2.3.4"
    assert client_address("10.0.0.1", {"x-real-ip": "5.6.7.8"}, trust_forwarded_for=True) == "5.6.7.8"


def test_client_address_unknown_peer():
    assert client_address(None, {}) == "unknown"


def test_parse_user_agent():
    assert parse_user_agent(CHROME_UA) == {"os": "Windows", "browser": "Chrome", "device_type": "Desktop"}
    assert parse_user_agent(IPHONE_UA) == {"os": "iOS", "browser": "Safari", "device_type": "Mobile"}
    assert parse_user_agent(CHROME_UA + " Edg/120.0.0.0")["browser"] == "Edge"
    assert parse_user_agent(None) == {"os": "Unknown", "browser": "Other", "device_type": "Desktop"}


def test_country_from_timezone():
    assert country_from_timezone("Europe/Berlin") == "DE"
    assert country_from_timezone("America/New_York") == "US"
    assert country_from_timezone("Mars/Olympus") is None
    assert country_from_timezone(None) is None


def test_referrer_host():
    assert referrer_host("https://www.google.com/search?q=x") == "www.google.com"
    assert referrer_host("example.org/path") == "example.org"
    assert referrer_host(None) is None
