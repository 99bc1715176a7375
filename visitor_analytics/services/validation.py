import base64
import binascii
from dataclasses import dataclass

import pydantic

from visitor_analytics.core.errors import PayloadTooLarge, ValidationError
from visitor_analytics.schemas.event import EventPayload


@dataclass(frozen=True)
class ValidatedEvent:
    """Normalized event candidate, ready to be classified and stored"""

    payload: EventPayload
    raw_payload: str | None


def _format_errors(exc: pydantic.ValidationError) -> list[str]:
    reasons = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "payload"
        reasons.append(f"{location}: {error['msg']}")
    return reasons


def validate_payload(
        raw: bytes | str,
        *,
        max_bytes: int = 4096,
        raw_payload_max_bytes: int = 1000,
        base64_encoded: bool = False
) -> ValidatedEvent:
    """
    Validate and normalize an inbound event payload.

    The size cap is enforced on the encoded payload before any decoding happens.
    Nothing is written here; callers store the returned candidate.

    Raises:
        PayloadTooLarge: payload exceeds ``max_bytes``
        ValidationError: payload cannot be decoded or misses required fields
    """
    if isinstance(raw, str):
        raw = raw.encode("utf-8")

    if len(raw) > max_bytes:
        raise PayloadTooLarge(len(raw), max_bytes)

    if not raw.strip():
        raise ValidationError("Empty payload")

    if base64_encoded:
        try:
            raw = base64.b64decode(raw, validate=True)
        except (binascii.Error, ValueError):
            raise ValidationError("Payload is not valid base64")

    try:
        payload = EventPayload.model_validate_json(raw)
    except pydantic.ValidationError as e:
        raise ValidationError(_format_errors(e)) from e

    raw_payload = None
    if len(raw) <= raw_payload_max_bytes:
        raw_payload = raw.decode("utf-8", errors="replace")

    return ValidatedEvent(payload=payload, raw_payload=raw_payload)
