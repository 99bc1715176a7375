"""Engine error taxonomy.

Classification never raises: unrecognized user-agents fail closed to bot.
Lookups for unknown identities return an ``absent`` summary instead of an error.
"""


class EngineError(Exception):
    """Base class for errors raised by the visitor engine"""


class ValidationError(EngineError):
    """Payload rejected before anything was written"""

    def __init__(self, reasons: list[str] | str):
        if isinstance(reasons, str):
            reasons = [reasons]
        self.reasons = list(reasons)
        super().__init__("; ".join(self.reasons))


class PayloadTooLarge(ValidationError):
    """Payload exceeded the size cap and was not decoded"""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Payload of {size} bytes exceeds limit of {limit} bytes")


class PersistenceError(EngineError):
    """Store unavailable or write failed"""
