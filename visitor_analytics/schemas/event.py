# Pydantic schemas

from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


# Per-field storage caps; values are cut to length, never rejected for it
FIELD_LIMITS = {
    "page": 500,
    "referrer": 500,
    "country": 50,
    "os": 50,
    "browser": 50,
    "device_type": 50,
    "timezone": 50,
    "resolution": 20,
    "ua": 512,
    "session_token": 128,
}


# Column ranges of events.page_load_ms (Integer) and events.client_ts_ns (BigInteger)
INT32_MAX = 2**31 - 1
INT64_MIN, INT64_MAX = -2**63, 2**63 - 1


class EventType(str, Enum):
    """Accepted event types"""

    PAGEVIEW = "pageview"
    CLICK = "click"
    SCROLL = "scroll"
    CUSTOM = "custom"
    PAGE_LOAD = "page_load"
    UNLOAD = "unload"
    VISIBILITY = "visibility"


EVENT_TYPE_ALIASES = {
    "page_view": EventType.PAGEVIEW,
    "page-view": EventType.PAGEVIEW,
    "view": EventType.PAGEVIEW,
    "pageload": EventType.PAGE_LOAD,
    "page-load": EventType.PAGE_LOAD,
    "visibilitychange": EventType.VISIBILITY,
}


class VisitorClass(str, Enum):
    """Classification embedded into every stored event"""

    NEW = "new"
    RETURNING = "returning"
    BOT = "bot"


class EventPayload(BaseModel):
    """Event payload sent by the tracking snippet, normalized on validation"""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    event_type: EventType
    page: str = Field(..., min_length=1)
    referrer: str | None = None
    country: str | None = None
    os: str | None = None
    browser: str | None = None
    device_type: str | None = None
    resolution: str | None = None
    timezone: str | None = None
    page_load_ms: int | None = Field(default=None, ge=0, le=INT32_MAX)
    automation: bool = Field(default=False, validation_alias=AliasChoices("webdriver", "automation"))
    client_ts_ns: int | None = Field(default=None, ge=INT64_MIN, le=INT64_MAX)
    ua: str | None = Field(default=None, validation_alias=AliasChoices("ua", "user_agent"))
    session_token: str | None = Field(default=None, validation_alias=AliasChoices("session_token", "sid"))

    @field_validator("event_type", mode="before")
    @classmethod
    def resolve_event_type(cls, v: Any) -> Any:
        if isinstance(v, str):
            key = v.strip().lower()
            return EVENT_TYPE_ALIASES.get(key, key)
        return v

    @field_validator(*FIELD_LIMITS.keys(), mode="before")
    @classmethod
    def truncate(cls, v: Any, info) -> Any:
        if v is None:
            return None
        if not isinstance(v, str):
            v = str(v)
        v = v.strip()[:FIELD_LIMITS[info.field_name]]
        if not v and info.field_name != "page":
            return None
        return v

    @model_validator(mode="before")
    @classmethod
    def client_timestamp(cls, data: Any) -> Any:
        # The browser sends milliseconds as `client_ts`; it is advisory only
        if isinstance(data, dict) and "client_ts_ns" not in data and "client_ts" in data:
            data = dict(data)
            try:
                client_ts_ns = int(float(data.pop("client_ts")) * 1_000_000)
            except (TypeError, ValueError, OverflowError):
                # Unparseable or non-finite
                client_ts_ns = None
            if client_ts_ns is not None and not INT64_MIN <= client_ts_ns <= INT64_MAX:
                client_ts_ns = None
            data["client_ts_ns"] = client_ts_ns
        return data


class IngestResult(BaseModel):
    """Outcome of one accepted event"""

    identity: str
    classification: VisitorClass
    server_ts_ns: int


class LiveEventResponse(BaseModel):
    """One entry of the live activity feed"""

    id: int
    timestamp: int
    page: str
    referrer: str | None
    country: str | None
    os: str | None
    browser: str | None
    event_type: str
    is_bot: bool
    page_load_ms: int | None

    model_config = {"from_attributes": True}
