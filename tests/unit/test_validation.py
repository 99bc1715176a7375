import base64
import json

import pytest

from visitor_analytics.core.errors import PayloadTooLarge, ValidationError
from visitor_analytics.schemas.event import EventType
from visitor_analytics.services.validation import validate_payload


def _json(**fields):
    return json.dumps({"event_type": "pageview", "page": "/home", **fields})


def test_valid_payload():
    validated = validate_payload(_json(referrer="https://example.com/", page_load_ms=120))

    assert validated.payload.event_type == EventType.PAGEVIEW
    assert validated.payload.page == "/home"
    assert validated.payload.page_load_ms == 120
    assert validated.raw_payload is not None


def test_oversized_payload_rejected_before_decoding():
    raw = "x" * 5000  # not even JSON

    with pytest.raises(PayloadTooLarge) as exc_info:
        validate_payload(raw, max_bytes=4096)

    assert exc_info.value.size == 5000
    assert exc_info.value.limit == 4096


@pytest.mark.parametrize("raw", ["", "   ", "{not json", "[]", "null"])
def test_malformed_payload(raw):
    with pytest.raises(ValidationError):
        validate_payload(raw)


def test_missing_page():
    with pytest.raises(ValidationError) as exc_info:
        validate_payload(json.dumps({"event_type": "pageview"}))

    assert any(reason.startswith("page") for reason in exc_info.value.reasons)


def test_blank_page_rejected():
    with pytest.raises(ValidationError):
        validate_payload(_json(page="   "))


def test_unknown_event_type():
    with pytest.raises(ValidationError):
        validate_payload(json.dumps({"event_type": "teleport", "page": "/"}))


def test_event_type_aliases():
    validated = validate_payload(json.dumps({"event_type": "Page_View", "page": "/"}))
    assert validated.payload.event_type == EventType.PAGEVIEW


def test_negative_page_load_rejected():
    with pytest.raises(ValidationError):
        validate_payload(_json(page_load_ms=-5))


def test_long_fields_are_truncated():
    validated = validate_payload(_json(page="/" + "a" * 700, country="C" * 80, resolution="1920x1080" * 5))

    assert len(validated.payload.page) == 500
    assert len(validated.payload.country) == 50
    assert len(validated.payload.resolution) == 20


def test_empty_optional_fields_become_none():
    validated = validate_payload(_json(referrer="", country="  "))

    assert validated.payload.referrer is None
    assert validated.payload.country is None


def test_unknown_fields_ignored():
    validated = validate_payload(_json(favourite_colour="blue"))
    assert not hasattr(validated.payload, "favourite_colour")


def test_aliases_and_client_timestamp():
    validated = validate_payload(_json(webdriver=True, sid="tok", user_agent="ua", client_ts=1700000000000))

    assert validated.payload.automation is True
    assert validated.payload.session_token == "tok"
    assert validated.payload.ua == "ua"
    assert validated.payload.client_ts_ns == 1700000000000 * 1_000_000


def test_base64_payload():
    encoded = base64.b64encode(_json().encode()).decode()

    validated = validate_payload(encoded, base64_encoded=True)
    assert validated.payload.page == "/home"


def test_invalid_base64():
    with pytest.raises(ValidationError):
        validate_payload("%%%not-base64%%%", base64_encoded=True)


def test_raw_payload_kept_only_when_small():
    small = validate_payload(_json(), raw_payload_max_bytes=1000)
    large = validate_payload(_json(referrer="https://example.com/" + "r" * 480, page="/" + "p" * 490),
                             raw_payload_max_bytes=1000)

    assert small.raw_payload == _json()
    assert large.raw_payload is None


@pytest.mark.parametrize("client_ts", ["inf", "-inf", "nan", "1e999", 10**30, "garbage"])
def test_unusable_client_timestamp_is_dropped(client_ts):
    validated = validate_payload(_json(client_ts=client_ts))

    assert validated.payload.page == "/home"
    assert validated.payload.client_ts_ns is None


@pytest.mark.parametrize("fields", [
    {"page_load_ms": 10**20},
    {"page_load_ms": 2**31},
    {"client_ts_ns": 2**70},
])
def test_numbers_beyond_column_range_rejected(fields):
    with pytest.raises(ValidationError):
        validate_payload(_json(**fields))


def test_largest_storable_page_load_accepted():
    validated = validate_payload(_json(page_load_ms=2**31 - 1))
    assert validated.payload.page_load_ms == 2**31 - 1
